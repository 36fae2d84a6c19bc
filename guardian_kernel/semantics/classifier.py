"""
Setting Semantics — does a proposed change make the child safer or less safe?

Direction is setting-specific and NOT simply "bigger is safer":

  monitoring_interval   smaller (more frequent captures) = increase
  retention_period      larger (kept longer)             = increase
  age_restriction       larger (more restrictive)        = increase
  screen_time_daily     smaller allowance                = increase
  screen_time_per_app   smaller allowance                = increase
  bedtime_start         earlier                          = increase
  bedtime_end           later wake                       = increase
  crisis_allowlist      always increase

Equal values, and any non-numeric pair outside crisis_allowlist, are neutral:
they go through ordinary dual approval with no immediate effect and no cooling.

Pure functions. An unknown setting type is a programming error and raises.
"""

from typing import Dict

from guardian_kernel.models.proposal import (
    SETTING_TYPE_LABELS,
    ChangeDirection,
    SafetySettingsProposal,
    SafetySettingType,
    SettingValue,
)


# True when a smaller value is the more protective one.
_SMALLER_IS_SAFER: Dict[SafetySettingType, bool] = {
    SafetySettingType.MONITORING_INTERVAL: True,
    SafetySettingType.RETENTION_PERIOD: False,
    SafetySettingType.AGE_RESTRICTION: False,
    SafetySettingType.SCREEN_TIME_DAILY: True,
    SafetySettingType.SCREEN_TIME_PER_APP: True,
    SafetySettingType.BEDTIME_START: True,
    SafetySettingType.BEDTIME_END: False,
}


def _is_number(value: SettingValue) -> bool:
    # bool is an int subclass; a toggle is never a magnitude.
    return isinstance(value, int) and not isinstance(value, bool)


def _require_known(setting_type: SafetySettingType) -> SafetySettingType:
    try:
        return SafetySettingType(setting_type)
    except ValueError:
        raise ValueError(f"Unknown safety setting type: {setting_type!r}") from None


def classify(
    setting_type: SafetySettingType,
    current_value: SettingValue,
    proposed_value: SettingValue,
) -> ChangeDirection:
    """Classify a (current, proposed) change as increase, decrease or neutral."""
    setting_type = _require_known(setting_type)

    if setting_type == SafetySettingType.CRISIS_ALLOWLIST:
        return ChangeDirection.INCREASE

    if not (_is_number(current_value) and _is_number(proposed_value)):
        return ChangeDirection.NEUTRAL
    if proposed_value == current_value:
        return ChangeDirection.NEUTRAL

    went_down = proposed_value < current_value
    if went_down == _SMALLER_IS_SAFER[setting_type]:
        return ChangeDirection.INCREASE
    return ChangeDirection.DECREASE


def invert(direction: ChangeDirection) -> ChangeDirection:
    if direction == ChangeDirection.INCREASE:
        return ChangeDirection.DECREASE
    if direction == ChangeDirection.DECREASE:
        return ChangeDirection.INCREASE
    return ChangeDirection.NEUTRAL


def is_emergency_increase(
    setting_type: SafetySettingType,
    current_value: SettingValue,
    proposed_value: SettingValue,
) -> bool:
    """
    Is the change strictly more protective?

    Emergency increases take effect immediately and can be disputed for 48 hours.
    """
    setting_type = _require_known(setting_type)

    if setting_type == SafetySettingType.CRISIS_ALLOWLIST:
        return True

    if not (_is_number(current_value) and _is_number(proposed_value)):
        return False

    if setting_type == SafetySettingType.MONITORING_INTERVAL:
        return proposed_value < current_value
    if setting_type == SafetySettingType.RETENTION_PERIOD:
        return proposed_value > current_value
    if setting_type == SafetySettingType.AGE_RESTRICTION:
        return proposed_value > current_value
    if setting_type in (SafetySettingType.SCREEN_TIME_DAILY, SafetySettingType.SCREEN_TIME_PER_APP):
        return proposed_value < current_value
    if setting_type == SafetySettingType.BEDTIME_START:
        return proposed_value < current_value
    if setting_type == SafetySettingType.BEDTIME_END:
        return proposed_value > current_value
    raise ValueError(f"No emergency rule for setting type: {setting_type.value}")


def requires_cooling_period(
    setting_type: SafetySettingType,
    current_value: SettingValue,
    proposed_value: SettingValue,
) -> bool:
    """
    Is the change strictly less protective?

    Approved reductions wait 48 hours before taking effect.
    """
    setting_type = _require_known(setting_type)

    if setting_type == SafetySettingType.CRISIS_ALLOWLIST:
        return False

    if not (_is_number(current_value) and _is_number(proposed_value)):
        return False

    if setting_type == SafetySettingType.MONITORING_INTERVAL:
        return proposed_value > current_value
    if setting_type == SafetySettingType.RETENTION_PERIOD:
        return proposed_value < current_value
    if setting_type == SafetySettingType.AGE_RESTRICTION:
        return proposed_value < current_value
    if setting_type in (SafetySettingType.SCREEN_TIME_DAILY, SafetySettingType.SCREEN_TIME_PER_APP):
        return proposed_value > current_value
    if setting_type == SafetySettingType.BEDTIME_START:
        return proposed_value > current_value
    if setting_type == SafetySettingType.BEDTIME_END:
        return proposed_value < current_value
    raise ValueError(f"No cooling rule for setting type: {setting_type.value}")


# --- Display ---

def _plural(n: int, unit: str) -> str:
    return f"1 {unit}" if n == 1 else f"{n} {unit}s"


def _format_clock(minutes_past_midnight: int) -> str:
    hours, minutes = divmod(minutes_past_midnight, 60)
    period = "PM" if hours >= 12 else "AM"
    display_hour = 12 if hours == 0 else hours - 12 if hours > 12 else hours
    return f"{display_hour}:{minutes:02d} {period}"


def format_setting_value(setting_type: SafetySettingType, value: SettingValue) -> str:
    """Format a setting value for human-readable display."""
    if isinstance(value, bool):
        return "Enabled" if value else "Disabled"
    if isinstance(value, str):
        return value

    if setting_type == SafetySettingType.MONITORING_INTERVAL:
        return _plural(value, "minute")
    if setting_type == SafetySettingType.RETENTION_PERIOD:
        return _plural(value, "day")
    if setting_type == SafetySettingType.AGE_RESTRICTION:
        return f"Age {value}+"
    if setting_type in (SafetySettingType.SCREEN_TIME_DAILY, SafetySettingType.SCREEN_TIME_PER_APP):
        if value < 60:
            return _plural(value, "minute")
        hours, minutes = divmod(value, 60)
        if minutes == 0:
            return _plural(hours, "hour")
        return f"{hours}h {minutes}m"
    if setting_type in (SafetySettingType.BEDTIME_START, SafetySettingType.BEDTIME_END):
        return _format_clock(value)
    return str(value)


def format_proposal_diff(proposal: SafetySettingsProposal) -> str:
    """e.g. "Daily screen time limit: 1 hour → 2 hours"."""
    label = SETTING_TYPE_LABELS[proposal.setting_type]
    current = format_setting_value(proposal.setting_type, proposal.current_value)
    proposed = format_setting_value(proposal.setting_type, proposal.proposed_value)
    return f"{label}: {current} → {proposed}"
