from __future__ import annotations

import json
from enum import Enum
from typing import Any

from pydantic import BaseModel


class LoanPurpose(str, Enum):
    WORKING_CAPITAL = "working_capital"
    BUSINESS_EXPANSION = "business_expansion"
    EQUIPMENT_PURCHASE = "equipment_purchase"
    INVENTORY_FINANCING = "inventory_financing"
    DEBT_CONSOLIDATION = "debt_consolidation"
    SEASONAL_FINANCING = "seasonal_financing"
    EMERGENCY_FUNDING = "emergency_funding"
    OTHER = "other"


class MessageResponse(BaseModel):
    success: bool = True
    message: str


def parse_json_text(value: Any) -> Any:
    """Decode JSON stored as text columns; other values pass through."""
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8")
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return None
        if stripped[0] in "[{":
            try:
                return json.loads(stripped)
            except ValueError:
                return value
    return value


def normalize_currency(value: str) -> str:
    cleaned = (value or "").strip().upper()
    if not cleaned.isalpha() or not 3 <= len(cleaned) <= 10:
        raise ValueError("currency must be an alphabetic code such as USD or KES")
    return cleaned
