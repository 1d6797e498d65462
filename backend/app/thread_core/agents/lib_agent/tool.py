"""Tool registration and the permission-aware tool runtime."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple, TypeVar, Union

from pydantic import BaseModel, ValidationError

from thread_core.configs import settings

from .base_permission_store import PermissionStore

logger = logging.getLogger(__name__)


@dataclass
class ToolSpec:
    """A registered tool and the permission it needs."""

    name: str
    description: str
    schema: Optional[type[BaseModel]]
    func: Callable[..., Union[str, Dict[str, Any], List[Any]]]
    server_name: str = "builtin"
    permission_type: str = "execute"


F = TypeVar("F", bound=Callable[..., Any])


def tool(
    name: str,
    description: str,
    schema: Optional[type[BaseModel]] = None,
    server_name: str = "builtin",
    permission_type: str = "execute",
) -> Callable[[F], F]:
    """Register a function as a Tool via decorator."""

    def decorator(func: F) -> F:
        spec = ToolSpec(
            name=name,
            description=description,
            schema=schema,
            func=func,
            server_name=server_name,
            permission_type=permission_type,
        )
        setattr(func, "_tool_spec", spec)
        return func

    return decorator


class ToolRuntime:
    """
    Registry of tools grouped by server, gated by permissions.

    Permission types listed in ``auto_approved`` never prompt. Other grants
    live for the process unless remembered, in which case they are saved to
    the permission store.
    """

    def __init__(
        self,
        tools: Optional[Iterable[Callable[..., Any]]] = None,
        auto_approved: Optional[Iterable[str]] = None,
        permission_store: Optional[PermissionStore] = None,
    ) -> None:
        self.tool_specs: Dict[str, ToolSpec] = {}
        self.auto_approved: Set[str] = set(
            settings.AUTO_APPROVED_PERMISSIONS if auto_approved is None else auto_approved
        )
        self.permission_store = permission_store or PermissionStore()
        self._session_grants: Set[Tuple[str, str]] = set()
        self._stopped_servers: Set[str] = set()
        for func in tools or []:
            self.add_tool(func)

    def add_tool(self, func: Callable[..., Any]) -> None:
        """Register a function marked with the @tool decorator."""
        spec: Optional[ToolSpec] = getattr(func, "_tool_spec", None)
        if not spec:
            raise ValueError("Function is not decorated with @tool")
        if spec.name in self.tool_specs:
            raise ValueError(f"Tool '{spec.name}' already registered")
        self.tool_specs[spec.name] = spec

    def get_spec(self, name: str) -> Optional[ToolSpec]:
        return self.tool_specs.get(name)

    def tool_definitions(self, names: Optional[Iterable[str]] = None) -> List[Dict[str, Any]]:
        """Render tool specs into the OpenAI tools payload, optionally filtered."""
        wanted = set(names) if names is not None else None
        out = []
        for spec in self.tool_specs.values():
            if wanted is not None and spec.name not in wanted:
                continue
            if not self.is_server_running(spec.server_name):
                continue
            parameters: Dict[str, Any] = {"type": "object", "properties": {}, "required": []}
            if spec.schema:
                parameters = spec.schema.model_json_schema()
            out.append(
                {
                    "type": "function",
                    "function": {
                        "name": spec.name,
                        "description": spec.description,
                        "parameters": parameters,
                    },
                }
            )
        return out

    def is_server_running(self, server_name: str) -> bool:
        """Return whether a server has tools registered and was not stopped."""
        if server_name in self._stopped_servers:
            return False
        return any(s.server_name == server_name for s in self.tool_specs.values())

    def stop_server(self, server_name: str) -> None:
        self._stopped_servers.add(server_name)

    def start_server(self, server_name: str) -> None:
        self._stopped_servers.discard(server_name)

    def has_permission(self, server_name: str, permission_type: str) -> bool:
        """Return whether tools of ``server_name`` may run with ``permission_type``."""
        if permission_type in self.auto_approved:
            return True
        if (server_name, permission_type) in self._session_grants:
            return True
        return self.permission_store.has(server_name, permission_type)

    def grant_permission(
        self, server_name: str, permission_type: str, remember: bool = False
    ) -> None:
        """Enable ``permission_type`` on a server, durably when ``remember`` is set."""
        self._session_grants.add((server_name, permission_type))
        if remember:
            self.permission_store.save(server_name, permission_type)
        logger.info(
            "Granted %s permission on %s (remember=%s)", permission_type, server_name, remember
        )

    def call_tool(self, server_name: str, tool_name: str, params: Dict[str, Any]) -> Tuple[str, bool]:
        """
        Validate arguments and run a tool.

        Returns:
            Tuple[str, bool]: The textual response and whether it is an error.
        """
        spec = self.tool_specs.get(tool_name)
        if spec is None or spec.server_name != server_name:
            return f'Error: tool "{tool_name}" is not registered on {server_name}.', True
        if not self.is_server_running(server_name):
            return f"Error: server {server_name} is not running.", True

        args = dict(params)
        if spec.schema:
            try:
                args = spec.schema(**args).model_dump()
            except ValidationError as ve:
                return f"Invalid arguments: {ve}", True
        try:
            result = spec.func(args)
        except Exception as exc:
            logger.warning("Tool %s failed: %s", tool_name, exc)
            return f"Error calling tool: {exc}", True
        if isinstance(result, (dict, list)):
            return json.dumps(result, ensure_ascii=False), False
        return str(result), False
