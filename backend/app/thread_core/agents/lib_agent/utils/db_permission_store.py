"""DB-backed PermissionStore that survives restarts."""

from typing import List, Tuple

from sqlalchemy import select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from thread_core.agents.lib_agent.base_permission_store import PermissionStore
from thread_core.agents.lib_agent.utils.db_permission_models import ToolPermissionRow


class DBPermissionStore(PermissionStore):
    """Permission store backed by the ``tool_permissions`` table."""

    def __init__(self, engine: Engine) -> None:
        """Initialize with the engine holding the permissions table."""
        super().__init__()
        self.engine = engine

    def has(self, server_name: str, permission_type: str) -> bool:
        with Session(self.engine) as s:
            row = s.scalars(
                select(ToolPermissionRow).where(
                    ToolPermissionRow.server_name == server_name,
                    ToolPermissionRow.permission_type == permission_type,
                )
            ).first()
        return row is not None

    def save(self, server_name: str, permission_type: str) -> None:
        """Persist a grant; saving an existing grant is a no-op."""
        if self.has(server_name, permission_type):
            return
        with Session(self.engine) as s:
            s.add(ToolPermissionRow(server_name=server_name, permission_type=permission_type))
            s.commit()

    def all(self) -> List[Tuple[str, str]]:
        with Session(self.engine) as s:
            rows = s.scalars(select(ToolPermissionRow)).all()
        return sorted((r.server_name, r.permission_type) for r in rows)
