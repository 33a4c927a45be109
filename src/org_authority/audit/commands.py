"""
Audit Commands - Intentions to write an audit record
"""

from typing import Any

from pydantic import BaseModel, Field


class RecordChange(BaseModel):
    """
    Record one change with its before/after snapshots

    The record is written even when nothing changed.
    """

    actor_user_id: str | None = None
    action: str = Field(..., min_length=1, max_length=100)
    resource: str = Field(..., min_length=1, max_length=100)
    resource_id: str | None = None
    before: dict[str, Any] | None = None
    after: dict[str, Any] | None = None
    source_address: str | None = None
