from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class SnapshotDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    loan_application_id: UUID
    created_by: UUID
    approval_stage: str
    created_at: datetime | None = None
    snapshot_data: dict[str, Any]


class SnapshotListResponse(BaseModel):
    items: list[SnapshotDTO]
    total: int
