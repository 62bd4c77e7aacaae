from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel


class AuditEntry(SQLModel, table=True):
    """One delivered process event, kept for compliance reporting."""

    __tablename__ = "process_audit_log"

    id: Optional[int] = Field(default=None, primary_key=True)
    event_id: str = Field(index=True, unique=True)
    event_type: str = Field(index=True)
    instance_id: str = Field(index=True)
    definition_name: Optional[str] = Field(default=None, index=True)
    definition_version: Optional[int] = None
    from_step_id: Optional[str] = None
    to_step_id: Optional[str] = None
    actor_id: Optional[str] = None
    actor_role: Optional[str] = None
    occurred_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    payload: dict = Field(default_factory=dict, sa_column=Column(JSON))
