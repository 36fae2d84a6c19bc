"""
Effective Settings Store — the supervision settings currently in force per child.

Updated by: auto-applied, approved, cooling-completed and reverted proposals
Queried by: proposal creation (to capture the current value)
"""

from typing import Dict, List, Optional

from guardian_kernel.models.proposal import SafetySettingType, SettingValue


DEFAULT_SETTINGS: Dict[SafetySettingType, SettingValue] = {
    SafetySettingType.MONITORING_INTERVAL: 5,       # minutes
    SafetySettingType.RETENTION_PERIOD: 30,         # days
    SafetySettingType.AGE_RESTRICTION: 13,
    SafetySettingType.SCREEN_TIME_DAILY: 120,       # minutes
    SafetySettingType.SCREEN_TIME_PER_APP: 60,      # minutes
    SafetySettingType.BEDTIME_START: 21 * 60,       # 9:00 PM
    SafetySettingType.BEDTIME_END: 7 * 60,          # 7:00 AM
}


class SettingsStore:
    """
    In-memory settings store for the prototype.
    Production would read and write the family's settings document.

    The crisis allowlist is a set of entries: proposals add one entry each,
    and its "current value" is always the empty string.
    """

    def __init__(self, defaults: Optional[Dict[SafetySettingType, SettingValue]] = None):
        self._defaults = dict(defaults or DEFAULT_SETTINGS)
        self._values: Dict[str, Dict[SafetySettingType, SettingValue]] = {}
        self._allowlists: Dict[str, List[str]] = {}

    def get_value(self, child_id: str, setting_type: SafetySettingType) -> SettingValue:
        setting_type = SafetySettingType(setting_type)
        if setting_type == SafetySettingType.CRISIS_ALLOWLIST:
            return ""
        child = self._values.get(child_id, {})
        return child.get(setting_type, self._defaults[setting_type])

    def get_allowlist(self, child_id: str) -> List[str]:
        return list(self._allowlists.get(child_id, []))

    def apply(self, child_id: str, setting_type: SafetySettingType, value: SettingValue) -> None:
        """Put a value in force."""
        setting_type = SafetySettingType(setting_type)
        if setting_type == SafetySettingType.CRISIS_ALLOWLIST:
            entries = self._allowlists.setdefault(child_id, [])
            if value not in entries:
                entries.append(value)
            return
        self._values.setdefault(child_id, {})[setting_type] = value

    def restore(
        self,
        child_id: str,
        setting_type: SafetySettingType,
        original_value: SettingValue,
        reverted_value: SettingValue,
    ) -> None:
        """Undo a live change, restoring `original_value`."""
        setting_type = SafetySettingType(setting_type)
        if setting_type == SafetySettingType.CRISIS_ALLOWLIST:
            entries = self._allowlists.get(child_id, [])
            if reverted_value in entries:
                entries.remove(reverted_value)
            return
        self._values.setdefault(child_id, {})[setting_type] = original_value

    def snapshot(self, child_id: str) -> dict:
        """All effective settings for a child, serializable."""
        result = {
            t.value: self.get_value(child_id, t)
            for t in SafetySettingType
            if t != SafetySettingType.CRISIS_ALLOWLIST
        }
        result[SafetySettingType.CRISIS_ALLOWLIST.value] = self.get_allowlist(child_id)
        return result
