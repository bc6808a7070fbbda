"""Loan-application lifecycle states and the table of permitted transitions.

The table is data: adding a state means adding one enum member and one table
row. A missing row fails at import time.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Mapping

from app.core.errors import InvalidStatusTransitionError


class LoanApplicationStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    OFFER_LETTER_SENT = "offer_letter_sent"
    OFFER_LETTER_SIGNED = "offer_letter_signed"
    OFFER_LETTER_DECLINED = "offer_letter_declined"
    DISBURSED = "disbursed"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"
    EXPIRED = "expired"


S = LoanApplicationStatus

STATUS_TRANSITIONS: Mapping[LoanApplicationStatus, frozenset[LoanApplicationStatus]] = MappingProxyType(
    {
        S.DRAFT: frozenset({S.SUBMITTED, S.WITHDRAWN}),
        S.SUBMITTED: frozenset({S.UNDER_REVIEW, S.WITHDRAWN}),
        S.UNDER_REVIEW: frozenset({S.APPROVED, S.REJECTED, S.WITHDRAWN}),
        S.APPROVED: frozenset({S.OFFER_LETTER_SENT, S.DISBURSED, S.WITHDRAWN}),
        S.OFFER_LETTER_SENT: frozenset(
            {S.OFFER_LETTER_SIGNED, S.OFFER_LETTER_DECLINED, S.WITHDRAWN}
        ),
        S.OFFER_LETTER_SIGNED: frozenset({S.DISBURSED, S.WITHDRAWN}),
        S.OFFER_LETTER_DECLINED: frozenset({S.APPROVED, S.REJECTED, S.WITHDRAWN}),
        S.REJECTED: frozenset({S.SUBMITTED, S.WITHDRAWN}),
        S.WITHDRAWN: frozenset(),
        S.DISBURSED: frozenset(),
        S.EXPIRED: frozenset(),
    }
)

_missing = set(LoanApplicationStatus) - set(STATUS_TRANSITIONS)
if _missing:
    raise RuntimeError(
        f"statuses without a transition entry: {sorted(s.value for s in _missing)}"
    )
del S, _missing


@dataclass(frozen=True)
class TransitionValidation:
    is_valid: bool
    allowed_transitions: tuple[str, ...] = field(default_factory=tuple)
    error: str | None = None


def parse_status(value: str | LoanApplicationStatus) -> LoanApplicationStatus | None:
    if isinstance(value, LoanApplicationStatus):
        return value
    try:
        return LoanApplicationStatus(value)
    except ValueError:
        return None


def all_statuses() -> list[str]:
    return [status.value for status in LoanApplicationStatus]


def allowed_transitions(status: str | LoanApplicationStatus) -> list[str]:
    parsed = parse_status(status)
    if parsed is None:
        return []
    return sorted(target.value for target in STATUS_TRANSITIONS[parsed])


def is_terminal(status: str | LoanApplicationStatus) -> bool:
    parsed = parse_status(status)
    return parsed is not None and not STATUS_TRANSITIONS[parsed]


def validate_transition(
    current: str | LoanApplicationStatus,
    requested: str | LoanApplicationStatus,
) -> TransitionValidation:
    """Check ``current -> requested`` against the transition table.

    An unknown requested status is simply invalid. An unknown *current* status
    means a row holds a value outside the lifecycle and raises instead.
    """
    current_status = parse_status(current)
    if current_status is None:
        raise InvalidStatusTransitionError(
            f"Loan application has unrecognised status '{current}'",
            code="INVALID_CURRENT_STATUS",
        )

    allowed = tuple(allowed_transitions(current_status))
    requested_status = parse_status(requested)
    if requested_status is None:
        return TransitionValidation(
            is_valid=False,
            allowed_transitions=allowed,
            error=f"Unknown status '{requested}'",
        )

    if requested_status not in STATUS_TRANSITIONS[current_status]:
        if allowed:
            error = (
                f"Cannot transition from '{current_status.value}' to "
                f"'{requested_status.value}'. Allowed transitions: {', '.join(allowed)}"
            )
        else:
            error = (
                f"Cannot transition from '{current_status.value}' to "
                f"'{requested_status.value}': '{current_status.value}' is a final status"
            )
        return TransitionValidation(is_valid=False, allowed_transitions=allowed, error=error)

    return TransitionValidation(is_valid=True, allowed_transitions=allowed)
