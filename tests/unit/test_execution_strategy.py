import random
import sys
from pathlib import Path
import unittest
from unittest import mock

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from mistroll.application.services.execution_strategy import (
    ExecutionStrategy,
    Outcome,
    StrategyPreconditionError,
    classify_outcome,
    resolve_execution,
    roll_dice,
    spendable_power,
)


class ExecutionStrategyTests(unittest.TestCase):
    def test_parse_accepts_values_names_and_blank(self) -> None:
        self.assertIs(ExecutionStrategy.NONE, ExecutionStrategy.parse(None))
        self.assertIs(ExecutionStrategy.NONE, ExecutionStrategy.parse(""))
        self.assertIs(ExecutionStrategy.HEDGE_RISKS, ExecutionStrategy.parse("hedge_risks"))
        self.assertIs(ExecutionStrategy.THROW_CAUTION, ExecutionStrategy.parse("THROW_CAUTION"))
        with self.assertRaises(ValueError):
            ExecutionStrategy.parse("all_in")

    def test_throw_caution_requires_power_at_most_two(self) -> None:
        self.assertTrue(ExecutionStrategy.THROW_CAUTION.allows(2))
        self.assertFalse(ExecutionStrategy.THROW_CAUTION.allows(3))
        with self.assertRaises(StrategyPreconditionError) as raised:
            resolve_execution(3, ExecutionStrategy.THROW_CAUTION, dice=(3, 3))
        self.assertEqual(3, raised.exception.power)
        self.assertEqual(2, raised.exception.threshold)

    def test_hedge_risks_requires_power_at_least_two(self) -> None:
        self.assertTrue(ExecutionStrategy.HEDGE_RISKS.allows(2))
        with self.assertRaises(StrategyPreconditionError):
            resolve_execution(1, ExecutionStrategy.HEDGE_RISKS, dice=(3, 3))

    def test_precondition_fails_before_dice_are_rolled(self) -> None:
        rng = mock.Mock(spec=random.Random)

        with self.assertRaises(StrategyPreconditionError):
            resolve_execution(5, ExecutionStrategy.THROW_CAUTION, rng=rng)

        rng.randint.assert_not_called()

    def test_no_strategy_allows_any_power(self) -> None:
        for power in (-6, 0, 2, 9):
            self.assertTrue(ExecutionStrategy.NONE.allows(power))

    def test_dice_are_two_six_sided_dice(self) -> None:
        rng = random.Random(7)
        for _ in range(50):
            die1, die2 = roll_dice(rng)
            self.assertTrue(1 <= die1 <= 6)
            self.assertTrue(1 <= die2 <= 6)


class OutcomeTests(unittest.TestCase):
    def test_standard_outcome_tiers(self) -> None:
        cases = [
            ((3, 4), 10, Outcome.SUCCESS, True),
            ((3, 4), 9, Outcome.SUCCESS_WITH_CONSEQUENCES, True),
            ((3, 4), 7, Outcome.SUCCESS_WITH_CONSEQUENCES, True),
            ((3, 4), 6, Outcome.CONSEQUENCES, False),
        ]
        for dice, total, outcome, successful in cases:
            with self.subTest(total=total):
                result = classify_outcome(dice, total)
                self.assertEqual(outcome, result.outcome)
                self.assertEqual(successful, result.successful)

    def test_double_ones_always_fail_and_double_sixes_always_succeed(self) -> None:
        snake_eyes = classify_outcome((1, 1), 14)
        boxcars = classify_outcome((6, 6), 4)

        self.assertEqual(Outcome.CONSEQUENCES, snake_eyes.outcome)
        self.assertTrue(snake_eyes.automatic)
        self.assertEqual(Outcome.SUCCESS, boxcars.outcome)
        self.assertTrue(boxcars.automatic)

    def test_reaction_outcome_tiers(self) -> None:
        self.assertEqual(Outcome.SPEND_POWER_PLUS_ONE, classify_outcome((5, 5), 10, is_reaction=True).outcome)
        middle = classify_outcome((4, 4), 8, is_reaction=True)
        self.assertEqual(Outcome.SPEND_POWER, middle.outcome)
        self.assertFalse(middle.successful)
        self.assertEqual(Outcome.SUFFER_CONSEQUENCES, classify_outcome((2, 3), 5, is_reaction=True).outcome)

    def test_reactions_honour_doubles(self) -> None:
        self.assertEqual(Outcome.SUFFER_CONSEQUENCES, classify_outcome((1, 1), 12, is_reaction=True).outcome)
        self.assertEqual(Outcome.SPEND_POWER_PLUS_ONE, classify_outcome((6, 6), 3, is_reaction=True).outcome)

    def test_spendable_power_is_at_least_one_before_strategy(self) -> None:
        self.assertIsNone(spendable_power(4, ExecutionStrategy.NONE, successful=False))
        self.assertEqual(1, spendable_power(-2, ExecutionStrategy.NONE, successful=True))
        self.assertEqual(3, spendable_power(3, ExecutionStrategy.NONE, successful=True))
        self.assertEqual(2, spendable_power(1, ExecutionStrategy.THROW_CAUTION, successful=True))
        self.assertEqual(2, spendable_power(3, ExecutionStrategy.HEDGE_RISKS, successful=True))


class ResolveExecutionTests(unittest.TestCase):
    def test_hedge_risks_adds_one_to_the_roll(self) -> None:
        report = resolve_execution(2, ExecutionStrategy.HEDGE_RISKS, dice=(4, 4))

        self.assertEqual((4, 4), report.dice)
        self.assertEqual(1, report.roll_modifier)
        self.assertEqual(11, report.total)
        self.assertEqual(Outcome.SUCCESS.value, report.outcome)
        self.assertEqual(1, report.spendable_power)
        self.assertEqual("hedge_risks", report.strategy)

    def test_throw_caution_subtracts_one_from_the_roll(self) -> None:
        report = resolve_execution(0, ExecutionStrategy.THROW_CAUTION, dice=(3, 4))

        self.assertEqual(6, report.total)
        self.assertEqual(Outcome.CONSEQUENCES.value, report.outcome)
        self.assertFalse(report.successful)
        self.assertIsNone(report.spendable_power)

    def test_seeded_rng_is_deterministic(self) -> None:
        first = resolve_execution(1, rng=random.Random(42))
        second = resolve_execution(1, rng=random.Random(42))

        self.assertEqual(first, second)


if __name__ == "__main__":
    unittest.main()
