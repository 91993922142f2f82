from __future__ import annotations

import random
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from mistroll.application.dtos import ExecutionReport


STRATEGY_POWER_THRESHOLD = 2
STANDARD_SUCCESS_THRESHOLD = 7
FULL_SUCCESS_THRESHOLD = 10
REACTION_SUCCESS_THRESHOLD = 10


class ExecutionStrategy(str, Enum):
    NONE = "none"
    THROW_CAUTION = "throw_caution"
    HEDGE_RISKS = "hedge_risks"

    @classmethod
    def parse(cls, value) -> ExecutionStrategy:
        if value is None or value == "":
            return cls.NONE
        if isinstance(value, cls):
            return value
        raw = str(value).strip().lower()
        for member in cls:
            if member.value == raw or member.name.lower() == raw:
                return member
        raise ValueError(f"Unknown execution strategy: {value!r}")

    @property
    def label(self) -> str:
        return _LABELS[self]

    @property
    def roll_modifier(self) -> int:
        return _ROLL_MODIFIERS[self]

    @property
    def spend_delta(self) -> int:
        return -self.roll_modifier

    def allows(self, power: int) -> bool:
        if self == ExecutionStrategy.THROW_CAUTION:
            return power <= STRATEGY_POWER_THRESHOLD
        if self == ExecutionStrategy.HEDGE_RISKS:
            return power >= STRATEGY_POWER_THRESHOLD
        return True


_LABELS = {
    ExecutionStrategy.NONE: "No strategy",
    ExecutionStrategy.THROW_CAUTION: "Throw caution to the wind",
    ExecutionStrategy.HEDGE_RISKS: "Hedge your risks",
}

_ROLL_MODIFIERS = {
    ExecutionStrategy.NONE: 0,
    ExecutionStrategy.THROW_CAUTION: -1,
    ExecutionStrategy.HEDGE_RISKS: 1,
}


class Outcome(str, Enum):
    SUCCESS = "Success"
    SUCCESS_WITH_CONSEQUENCES = "Success & Consequences"
    CONSEQUENCES = "Consequences"
    SPEND_POWER_PLUS_ONE = "Reaction: Spend Power +1"
    SPEND_POWER = "Reaction: Spend Power"
    SUFFER_CONSEQUENCES = "Reaction: Suffer Consequences"


class StrategyPreconditionError(ValueError):
    def __init__(self, strategy: ExecutionStrategy, power: int) -> None:
        comparison = "at most" if strategy == ExecutionStrategy.THROW_CAUTION else "at least"
        super().__init__(
            f"{strategy.label} needs Power {comparison} {STRATEGY_POWER_THRESHOLD}; current Power is {power}"
        )
        self.strategy = strategy
        self.power = power
        self.threshold = STRATEGY_POWER_THRESHOLD


@dataclass(frozen=True)
class OutcomeClassification:
    outcome: Outcome
    successful: bool
    automatic: bool = False


def validate_strategy(strategy: ExecutionStrategy, power: int) -> None:
    if not strategy.allows(power):
        raise StrategyPreconditionError(strategy, power)


def roll_dice(rng: random.Random | None = None) -> Tuple[int, int]:
    rng = rng or random.Random()
    return rng.randint(1, 6), rng.randint(1, 6)


def classify_outcome(dice: Tuple[int, int], total: int, *, is_reaction: bool = False) -> OutcomeClassification:
    die1, die2 = dice
    automatic_success = die1 == 6 and die2 == 6
    automatic_failure = die1 == 1 and die2 == 1

    if is_reaction:
        if automatic_failure:
            return OutcomeClassification(Outcome.SUFFER_CONSEQUENCES, False, automatic=True)
        if automatic_success:
            return OutcomeClassification(Outcome.SPEND_POWER_PLUS_ONE, True, automatic=True)
        if total >= REACTION_SUCCESS_THRESHOLD:
            return OutcomeClassification(Outcome.SPEND_POWER_PLUS_ONE, True)
        # 7-9 lets the power soften consequences but is not a success
        if total >= STANDARD_SUCCESS_THRESHOLD:
            return OutcomeClassification(Outcome.SPEND_POWER, False)
        return OutcomeClassification(Outcome.SUFFER_CONSEQUENCES, False)

    if automatic_failure:
        return OutcomeClassification(Outcome.CONSEQUENCES, False, automatic=True)
    if automatic_success:
        return OutcomeClassification(Outcome.SUCCESS, True, automatic=True)
    if total >= FULL_SUCCESS_THRESHOLD:
        return OutcomeClassification(Outcome.SUCCESS, True)
    if total >= STANDARD_SUCCESS_THRESHOLD:
        return OutcomeClassification(Outcome.SUCCESS_WITH_CONSEQUENCES, True)
    return OutcomeClassification(Outcome.CONSEQUENCES, False)


def spendable_power(power: int, strategy: ExecutionStrategy, successful: bool) -> Optional[int]:
    if not successful:
        return None
    return max(power, 1) + strategy.spend_delta


def resolve_execution(
    power: int,
    strategy: ExecutionStrategy = ExecutionStrategy.NONE,
    *,
    is_reaction: bool = False,
    rng: random.Random | None = None,
    dice: Tuple[int, int] | None = None,
) -> ExecutionReport:
    """Validate the strategy, roll 2d6 and classify the result.

    Raises StrategyPreconditionError before any dice are rolled.
    """
    validate_strategy(strategy, power)
    rolled = dice if dice is not None else roll_dice(rng)
    total = rolled[0] + rolled[1] + power + strategy.roll_modifier
    classification = classify_outcome(rolled, total, is_reaction=is_reaction)
    return ExecutionReport(
        dice=(rolled[0], rolled[1]),
        power=power,
        strategy=strategy.value,
        roll_modifier=strategy.roll_modifier,
        total=total,
        outcome=classification.outcome.value,
        successful=classification.successful,
        spendable_power=spendable_power(power, strategy, classification.successful),
    )
