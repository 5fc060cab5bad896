import unittest
from decimal import Decimal

from fakes import make_project
from unicornfactory.constants import UNIT_SCALE
from unicornfactory.curve import (
    curve_points,
    price,
    price_base_units,
    reconcile,
    tokens_for,
)


class PriceTests(unittest.TestCase):
    def test_endpoints(self) -> None:
        goal = 10 * UNIT_SCALE
        self.assertEqual(price(0, goal), 1)
        self.assertEqual(price(goal, goal), 101)
        self.assertEqual(price(goal // 2, goal), 51)

    def test_zero_goal_guard(self) -> None:
        for raised in (0, 1, 10**18):
            self.assertEqual(price(raised, 0), 1)
        self.assertEqual(price_base_units(5, 0), UNIT_SCALE)

    def test_non_decreasing(self) -> None:
        goal = 7 * UNIT_SCALE + 3
        samples = [price(raised, goal) for raised in range(0, goal + 1, goal // 97)]
        self.assertEqual(samples, sorted(samples))

    def test_returns_exact_decimal(self) -> None:
        self.assertEqual(price(1, 3), Decimal(1) + Decimal(1) / Decimal(3) * 100)

    def test_price_base_units(self) -> None:
        goal = 10 * UNIT_SCALE
        self.assertEqual(price_base_units(0, goal), UNIT_SCALE)
        self.assertEqual(price_base_units(goal, goal), 101 * UNIT_SCALE)
        self.assertEqual(price_base_units(goal // 4, goal), 26 * UNIT_SCALE)

    def test_tokens_for(self) -> None:
        self.assertEqual(tokens_for(5 * UNIT_SCALE, UNIT_SCALE), 5)
        self.assertEqual(tokens_for(5, 0), 0)


class CurvePointsTests(unittest.TestCase):
    def test_samples_from_zero_to_goal(self) -> None:
        raised, prices = curve_points(10 * UNIT_SCALE, steps=10)
        self.assertEqual(len(raised), 11)
        self.assertAlmostEqual(raised[0], 0.0)
        self.assertAlmostEqual(raised[-1], 10.0)
        self.assertAlmostEqual(prices[0], 1.0)
        self.assertAlmostEqual(prices[-1], 101.0)

    def test_zero_goal_is_flat(self) -> None:
        _, prices = curve_points(0, steps=4)
        self.assertEqual(prices.tolist(), [1.0] * 5)

    def test_rejects_non_positive_steps(self) -> None:
        with self.assertRaises(ValueError):
            curve_points(1, steps=0)


class ReconcileTests(unittest.TestCase):
    def test_matching_price(self) -> None:
        project = make_project(funding_goal=10 * UNIT_SCALE, total_raised=0, token_price=UNIT_SCALE)
        result = reconcile(project)
        self.assertTrue(result.matches)
        self.assertEqual(result.delta, 0)

    def test_mismatch_is_logged(self) -> None:
        # program stores the unscaled price
        project = make_project(funding_goal=10 * UNIT_SCALE, total_raised=5 * UNIT_SCALE, token_price=51)
        with self.assertLogs("unicornfactory.curve", level="WARNING") as logs:
            result = reconcile(project)
        self.assertFalse(result.matches)
        self.assertEqual(result.model_price, 51)
        self.assertIn("token price mismatch", logs.output[0])

    def test_fractional_price_matches_stored_base_units(self) -> None:
        goal, raised = 3 * UNIT_SCALE, UNIT_SCALE
        stored = price_base_units(raised, goal)
        self.assertEqual(stored, 34_333_333_333)
        project = make_project(funding_goal=goal, total_raised=raised, token_price=stored)
        result = reconcile(project)
        self.assertTrue(result.matches)
        self.assertEqual(result.delta, 0)
        self.assertEqual(result.model_price, Decimal("34.333333333"))

    def test_tolerance(self) -> None:
        project = make_project(funding_goal=10 * UNIT_SCALE, total_raised=0, token_price=UNIT_SCALE + 10)
        self.assertTrue(reconcile(project, tolerance=Decimal("0.0001")).matches)


if __name__ == "__main__":
    unittest.main()
