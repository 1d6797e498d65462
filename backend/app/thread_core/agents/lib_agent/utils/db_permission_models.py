"""SQLAlchemy model for remembered tool permissions."""

from datetime import datetime

from sqlalchemy import DateTime, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from thread_core.repositories.threads.database import Base


class ToolPermissionRow(Base):  # type: ignore
    """A permission the user chose to remember for a tool server."""

    __tablename__ = "tool_permissions"
    __table_args__ = (
        UniqueConstraint("server_name", "permission_type", name="uq_server_permission"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    server_name: Mapped[str] = mapped_column(String(255))
    permission_type: Mapped[str] = mapped_column(String(16))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)
