from pydantic import BaseModel
from typing import Optional

from ..models.proctoring_violations import ViolationKind


class EffectiveRules(BaseModel):
    """Resolved proctoring rules, snapshotted onto an attempt when it starts."""

    no_refresh: bool = True
    no_tab_switch: bool = True
    force_fullscreen: bool = True
    disable_shortcuts: bool = True
    auto_submit_on_violation: bool = True
    max_warning_count: int = 2
    additional_rules: Optional[str] = None

    class Config:
        frozen = True
        from_attributes = True

    def is_enforced(self, kind: str) -> bool:
        """Whether violations of this kind count toward the warning threshold"""
        flag = VIOLATION_RULE_FLAGS.get(kind)
        return bool(flag and getattr(self, flag))

    def limit_exceeded(self, violation_count: int) -> bool:
        return self.auto_submit_on_violation and violation_count > self.max_warning_count


VIOLATION_RULE_FLAGS = {
    ViolationKind.TAB_SWITCH: "no_tab_switch",
    ViolationKind.FULLSCREEN_EXIT: "force_fullscreen",
    ViolationKind.REFRESH_ATTEMPT: "no_refresh",
    ViolationKind.SHORTCUT_BLOCKED: "disable_shortcuts",
}

RULE_FIELDS = (
    "no_refresh",
    "no_tab_switch",
    "force_fullscreen",
    "disable_shortcuts",
    "auto_submit_on_violation",
    "max_warning_count",
    "additional_rules",
)

