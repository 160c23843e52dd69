import unittest

from mess_exchange.core.routing import (
    PARTITIONS,
    STATUS_PARTITIONS,
    TERMINAL_STATUSES,
    needs_relocation,
    status_to_partition,
)


class TestStatusRouting(unittest.TestCase):
    def test_table(self):
        self.assertEqual(status_to_partition("pending"), "received")
        for s in ("claimed", "in-progress", "waiting", "held", "needs_input", "needs_confirmation"):
            self.assertEqual(status_to_partition(s), "executing", s)
        for s in ("completed", "partial"):
            self.assertEqual(status_to_partition(s), "finished", s)
        for s in ("failed", "declined", "cancelled", "expired", "delegated", "superseded"):
            self.assertEqual(status_to_partition(s), "canceled", s)

    def test_total_over_unknown_input(self):
        for s in ("", "PENDING", "archived", None, 42):
            self.assertIn(status_to_partition(s), PARTITIONS)
            self.assertEqual(status_to_partition(s), "received")

    def test_terminal_statuses_leave_active_partitions(self):
        for s in TERMINAL_STATUSES:
            self.assertIn(STATUS_PARTITIONS[s], ("finished", "canceled"))

    def test_needs_relocation(self):
        self.assertTrue(needs_relocation("pending", "claimed"))
        self.assertFalse(needs_relocation("claimed", "in-progress"))
        self.assertFalse(needs_relocation("failed", "cancelled"))
        self.assertTrue(needs_relocation("in-progress", "completed"))


if __name__ == "__main__":
    unittest.main()
