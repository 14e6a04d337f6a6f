from __future__ import annotations

from unittest import TestCase

from planner.services.checked_state import apply_toggle


class ApplyToggleTest(TestCase):
    def test_item_stays_checked_until_every_member_unchecks(self):
        state = apply_toggle([], "user-a", True)
        self.assertTrue(state.checked)

        state = apply_toggle(state.checked_by, "user-b", True)
        self.assertEqual(state.checked_by, ["user-a", "user-b"])

        state = apply_toggle(state.checked_by, "user-a", False)
        self.assertTrue(state.checked)
        self.assertEqual(state.checked_by, ["user-b"])

        state = apply_toggle(state.checked_by, "user-b", False)
        self.assertFalse(state.checked)
        self.assertEqual(state.checked_by, [])

    def test_repeated_checks_do_not_duplicate_members(self):
        state = apply_toggle(["user-a"], "user-a", True)
        self.assertEqual(state.checked_by, ["user-a"])

    def test_unchecking_an_absent_member_is_harmless(self):
        state = apply_toggle(None, "user-a", False)
        self.assertFalse(state.checked)
        self.assertEqual(state.checked_by, [])

    def test_input_is_not_mutated(self):
        members = ["user-a"]
        apply_toggle(members, "user-b", True)
        self.assertEqual(members, ["user-a"])
