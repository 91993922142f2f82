from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Tuple

from mistroll.domain.models.roll import Roll


class FailureReason(str, Enum):
    SESSION_EXPIRED = "session_expired"
    PERMISSION_DENIED = "permission_denied"
    INVALID_TRANSITION = "invalid_transition"
    STRATEGY_PRECONDITION = "strategy_precondition"
    NOT_FOUND = "not_found"
    INVALID_INPUT = "invalid_input"
    RECONFIRM_REQUIRED = "reconfirm_required"


@dataclass(frozen=True)
class PowerBreakdown:
    help_status: int = 0
    help_tags: int = 0
    burn_bonus: int = 0
    hinder_status: int = 0
    hinder_tags: int = 0
    might: int = 0

    @property
    def help_total(self) -> int:
        return self.help_status + self.help_tags + self.burn_bonus

    @property
    def hinder_total(self) -> int:
        return self.hinder_status + self.hinder_tags

    @property
    def total(self) -> int:
        return self.help_total - self.hinder_total + self.might


@dataclass(frozen=True)
class ExecutionReport:
    dice: Tuple[int, int]
    power: int
    strategy: str
    roll_modifier: int
    total: int
    outcome: str
    successful: bool
    spendable_power: Optional[int] = None
    consumed_tags: Tuple[str, ...] = ()


@dataclass
class WorkflowResult:
    ok: bool
    roll: Optional[Roll] = None
    session: Any = None
    reason: Optional[FailureReason] = None
    message: str = ""
    purged_count: int = 0
    execution: Optional[ExecutionReport] = None
    power: Optional[int] = None
    breakdown: Optional[PowerBreakdown] = None

    @classmethod
    def success(
        cls,
        *,
        roll=None,
        session=None,
        message: str = "",
        purged_count: int = 0,
        execution=None,
        breakdown: Optional[PowerBreakdown] = None,
    ):
        return cls(
            ok=True,
            roll=roll,
            session=session,
            message=message,
            purged_count=purged_count,
            execution=execution,
            power=breakdown.total if breakdown is not None else None,
            breakdown=breakdown,
        )

    @classmethod
    def failure(cls, reason: FailureReason, message: str, *, roll=None, session=None, purged_count: int = 0):
        return cls(
            ok=False,
            roll=roll,
            session=session,
            reason=reason,
            message=message,
            purged_count=purged_count,
        )
