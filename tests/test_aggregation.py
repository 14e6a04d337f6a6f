from __future__ import annotations

from unittest import TestCase

from fakes import MONDAY, recipe
from planner.domain import DayPlan, MealSlot
from planner.services.aggregation import aggregate, coerce_quantity, iter_planned_recipe_ids
from planner.services.week_plan import week_dates


def _week(*assignments: tuple) -> list[DayPlan]:
    """Days of MONDAY's week with (day offset, meal key, recipe id) assignments."""
    days = [DayPlan(date=day, meals={}) for day in week_dates(MONDAY)]
    for offset, meal_key, recipe_id in assignments:
        days[offset].meals.setdefault(meal_key, []).append(MealSlot(recipe_id=recipe_id))
    return days


class CoerceQuantityTest(TestCase):
    def test_numbers_pass_through(self):
        self.assertEqual(coerce_quantity(3), 3.0)
        self.assertEqual(coerce_quantity(2.5), 2.5)

    def test_strings_are_parsed(self):
        self.assertEqual(coerce_quantity("200"), 200.0)
        self.assertEqual(coerce_quantity("200g"), 200.0)
        self.assertEqual(coerce_quantity("1,5"), 1.5)
        self.assertEqual(coerce_quantity("1/2"), 0.5)
        self.assertEqual(coerce_quantity("1 1/2"), 1.5)

    def test_malformed_values_become_zero(self):
        with self.assertLogs("planner.services.aggregation", level="WARNING"):
            self.assertEqual(coerce_quantity("a handful"), 0.0)
        self.assertEqual(coerce_quantity(None), 0.0)
        self.assertEqual(coerce_quantity(float("nan")), 0.0)
        self.assertEqual(coerce_quantity(True), 0.0)

    def test_out_of_range_values_become_zero(self):
        for value in (10**400, "9" * 400, "1" + "0" * 400 + "/3"):
            with self.assertLogs("planner.services.aggregation", level="WARNING") as logs:
                self.assertEqual(coerce_quantity(value, ingredient_name="flour"), 0.0)
            self.assertIn("flour", logs.output[0])


class AggregateTest(TestCase):
    def test_sums_quantities_and_unions_recipes(self):
        recipes = {
            "r1": recipe("r1", "Bread", ("flour", 100, "g")),
            "r2": recipe("r2", "Cake", ("Flour", "150", "grams")),
        }
        entries = aggregate(_week((0, "dinner", "r1"), (2, "dessert", "r2")), recipes)

        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0].ingredient_key, "flour")
        self.assertEqual(entries[0].unit, "g")
        self.assertEqual(entries[0].total_quantity, 250.0)
        self.assertEqual(entries[0].recipe_ids, ["r1", "r2"])

    def test_bilingual_names_merge(self):
        recipes = {
            "r1": recipe("r1", "Porridge", ("Milk", 200, "ml")),
            "r2": recipe("r2", "Clatite", ("Lapte", 300, "ml", "Milk")),
        }
        entries = aggregate(_week((0, "breakfast", "r1"), (1, "breakfast", "r2")), recipes)

        self.assertEqual(len(entries), 1)
        entry = entries[0]
        self.assertEqual(entry.ingredient_key, "lapte||milk")
        self.assertEqual(entry.total_quantity, 500.0)
        self.assertEqual(entry.ingredient_name, "Milk")
        self.assertEqual(entry.ingredient_name_secondary, "Lapte")

    def test_same_recipe_twice_counts_twice_but_lists_once(self):
        recipes = {"r1": recipe("r1", "Omelette", ("eggs", 2, "pcs"))}
        entries = aggregate(_week((0, "breakfast", "r1"), (3, "lunch", "r1")), recipes)

        self.assertEqual(entries[0].total_quantity, 4.0)
        self.assertEqual(entries[0].recipe_ids, ["r1"])

    def test_units_stay_separate(self):
        recipes = {
            "r1": recipe("r1", "Soup", ("onion", 1, "pcs")),
            "r2": recipe("r2", "Stew", ("onion", 200, "g")),
        }
        entries = aggregate(_week((0, "lunch", "r1"), (1, "lunch", "r2")), recipes)

        self.assertEqual([(e.unit, e.total_quantity) for e in entries], [("g", 200.0), ("pcs", 1.0)])

    def test_zero_quantity_variant_is_dropped(self):
        recipes = {
            "r1": recipe("r1", "Soup", ("salt", 0, "pinch")),
            "r2": recipe("r2", "Bread", ("salt", 5, "g")),
        }
        entries = aggregate(_week((0, "lunch", "r1"), (1, "dinner", "r2")), recipes)

        self.assertEqual(len(entries), 1)
        self.assertEqual((entries[0].unit, entries[0].total_quantity), ("g", 5.0))

    def test_all_zero_variants_keep_one_entry(self):
        recipes = {
            "r1": recipe("r1", "Soup", ("pepper", 0, "pinch")),
            "r2": recipe("r2", "Salad", ("pepper", "to taste", "tsp")),
        }
        entries = aggregate(_week((0, "lunch", "r1"), (1, "dinner", "r2")), recipes)

        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0].unit, "pinch")
        self.assertEqual(entries[0].total_quantity, 0.0)

    def test_unknown_recipes_and_empty_slots_are_skipped(self):
        recipes = {"r1": recipe("r1", "Toast", ("bread", 2, "slice"), ("", 1, "g"))}
        days = _week((0, "breakfast", "r1"), (1, "breakfast", "ghost"), (2, "breakfast", None))

        with self.assertLogs("planner.services.aggregation", level="INFO") as logs:
            entries = aggregate(days, recipes)

        self.assertEqual([e.ingredient_key for e in entries], ["bread"])
        self.assertTrue(any("ghost" in line for line in logs.output))

    def test_planned_ids_follow_meal_order(self):
        days = _week((0, "dinner", "c"), (0, "breakfast", "a"), (0, "lunch", "b"))
        self.assertEqual(list(iter_planned_recipe_ids(days)), ["a", "b", "c"])

    def test_output_is_sorted_by_name(self):
        recipes = {"r1": recipe("r1", "Mix", ("tomatoes", 3, "pcs"), ("Basil", 1, "bunch"), ("garlic", 2, "clove"))}
        entries = aggregate(_week((0, "dinner", "r1")), recipes)
        self.assertEqual([e.ingredient_name for e in entries], ["Basil", "garlic", "tomatoes"])
