"""In-memory store of remembered tool permissions."""

from typing import List, Set, Tuple


class PermissionStore:
    """Keep remembered ``(server_name, permission_type)`` grants; override to persist."""

    def __init__(self) -> None:
        self._grants: Set[Tuple[str, str]] = set()

    def has(self, server_name: str, permission_type: str) -> bool:
        return (server_name, permission_type) in self._grants

    def save(self, server_name: str, permission_type: str) -> None:
        self._grants.add((server_name, permission_type))

    def all(self) -> List[Tuple[str, str]]:
        return sorted(self._grants)
