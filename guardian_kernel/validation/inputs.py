"""
Boundary validation for guardian requests.

Parsing never raises: each `parse_*` returns a ParseResult holding either the
validated input or an error code. The value domain of a proposal is decided by
its setting type, not declared by the caller.
"""

from enum import Enum
from typing import Any, Dict, Generic, Optional, TypeVar

from pydantic import BaseModel, Field, ValidationError

from guardian_kernel.lifecycle.machine import ResponseAction
from guardian_kernel.models.errors import ProposalErrorCode
from guardian_kernel.models.proposal import (
    ID_MAX_LENGTH,
    MESSAGE_MAX_LENGTH,
    VALUE_TEXT_MAX_LENGTH,
    SafetySettingType,
    SettingValue,
)

T = TypeVar("T")

MINUTES_PER_DAY = 24 * 60


class ValueKind(str, Enum):
    MINUTES = "minutes"                 # Non-negative duration in minutes
    DAYS = "days"
    AGE = "age"
    CLOCK = "clock"                     # Minutes past midnight, 0..1439
    TEXT = "text"                       # Non-empty string


SETTING_VALUE_KINDS: Dict[SafetySettingType, ValueKind] = {
    SafetySettingType.MONITORING_INTERVAL: ValueKind.MINUTES,
    SafetySettingType.RETENTION_PERIOD: ValueKind.DAYS,
    SafetySettingType.AGE_RESTRICTION: ValueKind.AGE,
    SafetySettingType.SCREEN_TIME_DAILY: ValueKind.MINUTES,
    SafetySettingType.SCREEN_TIME_PER_APP: ValueKind.MINUTES,
    SafetySettingType.BEDTIME_START: ValueKind.CLOCK,
    SafetySettingType.BEDTIME_END: ValueKind.CLOCK,
    SafetySettingType.CRISIS_ALLOWLIST: ValueKind.TEXT,
}

_SCREEN_TIME_SETTINGS = (SafetySettingType.SCREEN_TIME_DAILY, SafetySettingType.SCREEN_TIME_PER_APP)


class ParseResult(BaseModel, Generic[T]):
    ok: bool
    value: Optional[T] = None
    error: Optional[ProposalErrorCode] = None
    detail: Optional[str] = None

    @classmethod
    def success(cls, value: T) -> "ParseResult[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: ProposalErrorCode, detail: Optional[str] = None) -> "ParseResult[T]":
        return cls(ok=False, error=error, detail=detail)


# --- Request models ---

class CreateProposalInput(BaseModel):
    child_id: str = Field(min_length=1, max_length=ID_MAX_LENGTH)
    proposed_by: str = Field(min_length=1, max_length=ID_MAX_LENGTH)
    setting_type: SafetySettingType
    proposed_value: SettingValue


class RespondInput(BaseModel):
    proposal_id: str = Field(min_length=1, max_length=ID_MAX_LENGTH)
    actor_id: str = Field(min_length=1, max_length=ID_MAX_LENGTH)
    action: ResponseAction
    message: Optional[str] = Field(default=None, max_length=MESSAGE_MAX_LENGTH)


class DisputeInput(BaseModel):
    proposal_id: str = Field(min_length=1, max_length=ID_MAX_LENGTH)
    actor_id: str = Field(min_length=1, max_length=ID_MAX_LENGTH)
    reason: Optional[str] = Field(default=None, max_length=MESSAGE_MAX_LENGTH)


class CancelCoolingInput(BaseModel):
    proposal_id: str = Field(min_length=1, max_length=ID_MAX_LENGTH)
    actor_id: str = Field(min_length=1, max_length=ID_MAX_LENGTH)


# --- Value domain ---

def parse_setting_type(raw: Any) -> ParseResult[SafetySettingType]:
    try:
        return ParseResult.success(SafetySettingType(raw))
    except ValueError:
        return ParseResult.failure(
            ProposalErrorCode.INVALID_SETTING, f"Unknown setting type: {raw!r}"
        )


def parse_setting_value(setting_type: SafetySettingType, raw: Any) -> ParseResult[SettingValue]:
    """Check `raw` against the value kind of `setting_type`."""
    kind = SETTING_VALUE_KINDS[SafetySettingType(setting_type)]

    if kind == ValueKind.TEXT:
        if not isinstance(raw, str) or not raw.strip():
            return ParseResult.failure(ProposalErrorCode.INVALID_VALUE, "Expected a non-empty text value.")
        if len(raw) > VALUE_TEXT_MAX_LENGTH:
            return ParseResult.failure(
                ProposalErrorCode.INVALID_VALUE,
                f"Text values are limited to {VALUE_TEXT_MAX_LENGTH} characters.",
            )
        return ParseResult.success(raw.strip())

    if isinstance(raw, bool) or not isinstance(raw, int):
        return ParseResult.failure(ProposalErrorCode.INVALID_VALUE, "Expected a whole number.")
    if raw < 0:
        return ParseResult.failure(ProposalErrorCode.INVALID_VALUE, "Value cannot be negative.")
    if kind == ValueKind.CLOCK and raw >= MINUTES_PER_DAY:
        return ParseResult.failure(
            ProposalErrorCode.INVALID_VALUE, "Bedtimes are minutes past midnight (0-1439)."
        )
    if setting_type == SafetySettingType.MONITORING_INTERVAL and raw == 0:
        return ParseResult.failure(
            ProposalErrorCode.INVALID_VALUE, "Monitoring interval must be at least 1 minute."
        )
    if setting_type in _SCREEN_TIME_SETTINGS and raw > MINUTES_PER_DAY:
        return ParseResult.failure(
            ProposalErrorCode.INVALID_VALUE, "Screen time cannot exceed 24 hours."
        )
    return ParseResult.success(raw)


# --- Requests ---

def _first_error_field(exc: ValidationError) -> str:
    errors = exc.errors()
    if errors and errors[0].get("loc"):
        return str(errors[0]["loc"][0])
    return ""


def parse_create_input(data: Any) -> ParseResult[CreateProposalInput]:
    if not isinstance(data, dict):
        return ParseResult.failure(ProposalErrorCode.INVALID_VALUE, "Expected an object.")

    setting = parse_setting_type(data.get("setting_type"))
    if not setting.ok:
        return ParseResult.failure(setting.error, setting.detail)

    value = parse_setting_value(setting.value, data.get("proposed_value"))
    if not value.ok:
        return ParseResult.failure(value.error, value.detail)

    try:
        parsed = CreateProposalInput(
            child_id=data.get("child_id"),
            proposed_by=data.get("proposed_by"),
            setting_type=setting.value,
            proposed_value=value.value,
        )
    except ValidationError as exc:
        return ParseResult.failure(
            ProposalErrorCode.INVALID_VALUE, f"Invalid field: {_first_error_field(exc)}"
        )
    return ParseResult.success(parsed)


def _parse_model(model: type, data: Any) -> ParseResult:
    if not isinstance(data, dict):
        return ParseResult.failure(ProposalErrorCode.INVALID_VALUE, "Expected an object.")
    try:
        return ParseResult.success(model.model_validate(data))
    except ValidationError as exc:
        return ParseResult.failure(
            ProposalErrorCode.INVALID_VALUE, f"Invalid field: {_first_error_field(exc)}"
        )


def parse_respond_input(data: Any) -> ParseResult[RespondInput]:
    return _parse_model(RespondInput, data)


def parse_dispute_input(data: Any) -> ParseResult[DisputeInput]:
    return _parse_model(DisputeInput, data)


def parse_cancel_cooling_input(data: Any) -> ParseResult[CancelCoolingInput]:
    return _parse_model(CancelCoolingInput, data)
