"""Load prompt templates from TOML files."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

import tomli as toml


class AgentPromptLoader:
    """Resolve and cache ``<name>_prompt.toml`` files from the prompts directory."""

    def __init__(self, base_dir: Optional[Path] = None) -> None:
        """Initialize loader using a base directory for prompts."""
        base_path = base_dir or Path(__file__).resolve().parent.parent / "prompts"
        self.base: Path = base_path.resolve()
        self._cache: Dict[str, Dict[str, Any]] = {}

    def _path_for(self, prompt_name: str) -> Path:
        """Return the TOML file path for the given prompt name."""
        return self.base / f"{prompt_name}_prompt.toml"

    def _load(self, prompt_name: str) -> Dict[str, Any]:
        """Read and parse the TOML prompt file, once per name."""
        if prompt_name not in self._cache:
            path = self._path_for(prompt_name)
            if not path.exists():
                raise FileNotFoundError(f"Prompt file not found: {path} (cwd={Path.cwd()})")
            with path.open("rb") as f:
                self._cache[prompt_name] = toml.load(f)
        return self._cache[prompt_name]

    def get_template(self, prompt_name: str) -> str:
        """Return the ``template`` string of a prompt file."""
        data = self._load(prompt_name)
        return data.get("template") or data.get("system") or ""
