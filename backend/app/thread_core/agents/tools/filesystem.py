"""Built-in filesystem tools, sandboxed to the configured workspace root."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict

from pydantic import BaseModel, Field

from thread_core.agents.lib_agent.tool import tool
from thread_core.configs import settings

SERVER_NAME = "filesystem"


class PathInput(BaseModel):
    """Arguments naming a path inside the workspace."""

    path: str = Field(".", description="Path relative to the workspace root")


class WriteFileInput(BaseModel):
    """Arguments for the write_file tool."""

    path: str = Field(..., description="File path relative to the workspace root")
    content: str = Field(..., description="Full text content to write")


def resolve_in_workspace(path: str) -> Path:
    """Resolve ``path`` under the workspace root, refusing escapes."""
    root = Path(settings.WORKSPACE_ROOT).resolve()
    target = (root / path).resolve()
    if target != root and root not in target.parents:
        raise ValueError(f"Path {path!r} is outside the workspace")
    return target


@tool(
    name="list_directory",
    description="List the entries of a directory in the workspace.",
    schema=PathInput,
    server_name=SERVER_NAME,
    permission_type="read",
)
def list_directory(args: Dict[str, Any]) -> Dict[str, Any]:
    target = resolve_in_workspace(args["path"])
    if not target.is_dir():
        raise NotADirectoryError(f"{args['path']} is not a directory")
    entries = [
        {"name": p.name, "type": "directory" if p.is_dir() else "file"}
        for p in sorted(target.iterdir())
    ]
    return {"path": args["path"], "entries": entries}


@tool(
    name="read_file",
    description="Read a UTF-8 text file from the workspace.",
    schema=PathInput,
    server_name=SERVER_NAME,
    permission_type="read",
)
def read_file(args: Dict[str, Any]) -> str:
    return resolve_in_workspace(args["path"]).read_text(encoding="utf-8")


@tool(
    name="write_file",
    description="Create or overwrite a UTF-8 text file in the workspace.",
    schema=WriteFileInput,
    server_name=SERVER_NAME,
    permission_type="write",
)
def write_file(args: Dict[str, Any]) -> str:
    target = resolve_in_workspace(args["path"])
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(args["content"], encoding="utf-8")
    return f"Wrote {len(args['content'])} characters to {args['path']}"


FILESYSTEM_TOOLS = [list_directory, read_file, write_file]
