from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from app.schemas.common import parse_json_text


class AuditTrailEntryDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: UUID
    loan_application_id: UUID
    user_id: UUID
    action: str
    reason: str | None = None
    details: Any = None
    metadata: Any = Field(default=None, validation_alias=AliasChoices("entry_metadata", "metadata"))
    before_data: Any = None
    after_data: Any = None
    created_at: datetime | None = None

    @field_validator("details", "metadata", "before_data", "after_data", mode="before")
    @classmethod
    def _decode_json(cls, value: Any) -> Any:
        return parse_json_text(value)


class AuditTrailListResponse(BaseModel):
    items: list[AuditTrailEntryDTO]
    limit: int
    offset: int


class AuditTrailSummaryDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_entries: int
    last_action: str | None = None
    last_action_at: datetime | None = None
    action_counts: dict[str, int]
