import tempfile
import unittest
from datetime import date
from unittest import mock

from allocation_engine import AllocationEngine, AllocationKind, AlreadyHeld, Conflict, InvalidWindow, Slot, TimeWindow
from support import NOW, FixedClock, build_repository, insert_booking

WEEKEND = TimeWindow.for_nights(date(2025, 6, 14), date(2025, 6, 16))


def _reservations(repo, resource_id=None):
    with repo.transaction(NOW) as tx:
        return tx.list_allocations(resource_id, [AllocationKind.RESERVATION])


class TestReserve(unittest.TestCase):
    def test_reserve_marks_every_resource(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = build_repository(temp_dir)
            engine = AllocationEngine(repo, now_provider=FixedClock())

            result = engine.reserve(["R101", "R102"], WEEKEND, actor_id="admin-1")

            self.assertEqual(result.count, 2)
            self.assertEqual(result.superseded, 0)
            self.assertEqual({record.created_by for record in _reservations(repo)}, {"admin-1"})
            self.assertTrue(engine.resource_status("R101")["has_reservation"])
            self.assertFalse(engine.resource_status("R103")["has_reservation"])

    def test_same_window_is_superseded_without_duplicates(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = build_repository(temp_dir)
            engine = AllocationEngine(repo, now_provider=FixedClock())
            engine.reserve(["R101"], WEEKEND, actor_id="admin-1")

            result = engine.reserve(["R101"], WEEKEND, actor_id="admin-2")

            self.assertEqual(result.superseded, 1)
            rows = _reservations(repo, "R101")
            self.assertEqual(len(rows), 1)
            self.assertEqual(rows[0].created_by, "admin-2")

    def test_overlapping_reservation_is_a_conflict(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = build_repository(temp_dir)
            engine = AllocationEngine(repo, now_provider=FixedClock())
            engine.reserve(["R101"], WEEKEND)

            with self.assertRaises(Conflict):
                engine.reserve(["R101"], TimeWindow.for_nights(date(2025, 6, 15), date(2025, 6, 17)))

    def test_conflict_on_one_resource_rejects_whole_batch(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = build_repository(temp_dir)
            booking = insert_booking(repo, "R102", WEEKEND)
            engine = AllocationEngine(repo, now_provider=FixedClock())

            with self.assertRaises(Conflict) as raised:
                engine.reserve(["R101", "R102", "R103"], WEEKEND)

            self.assertEqual(raised.exception.reports[0].entries[0].allocation_id, booking.allocation_id)
            self.assertEqual(_reservations(repo), [])
            self.assertFalse(engine.resource_status("R101")["has_reservation"])

    def test_supersede_is_rolled_back_when_batch_conflicts(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = build_repository(temp_dir)
            engine = AllocationEngine(repo, now_provider=FixedClock())
            original = engine.reserve(["R101"], WEEKEND)
            insert_booking(repo, "R102", WEEKEND)

            with self.assertRaises(Conflict):
                engine.reserve(["R101", "R102"], WEEKEND)

            self.assertEqual([row.allocation_id for row in _reservations(repo)], list(original.allocation_ids))

    def test_held_resource_cannot_be_reserved(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = build_repository(temp_dir)
            engine = AllocationEngine(repo, now_provider=FixedClock())
            engine.place_hold(["R101"], TimeWindow.for_nights(date(2025, 6, 20), date(2025, 6, 21)))

            with self.assertRaises(AlreadyHeld):
                engine.reserve(["R101"], WEEKEND)

    def test_different_hall_slots_can_both_be_reserved(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = build_repository(temp_dir)
            engine = AllocationEngine(repo, now_provider=FixedClock())

            engine.reserve(["H1"], TimeWindow.for_slot(date(2025, 7, 3), Slot.MORNING))
            engine.reserve(["H1"], TimeWindow.for_slot(date(2025, 7, 3), Slot.NIGHT))

            self.assertEqual(len(_reservations(repo, "H1")), 2)

    def test_past_window_is_rejected_before_store_access(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = build_repository(temp_dir)
            engine = AllocationEngine(repo, now_provider=FixedClock())

            with mock.patch.object(repo, "transaction") as transaction:
                with self.assertRaises(InvalidWindow):
                    engine.reserve(["R101"], TimeWindow.for_nights(date(2025, 5, 1), date(2025, 5, 3)))
            transaction.assert_not_called()


class TestUnreserve(unittest.TestCase):
    def test_removes_exact_matches_only(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = build_repository(temp_dir)
            engine = AllocationEngine(repo, now_provider=FixedClock())
            engine.reserve(["R101", "R102"], WEEKEND)
            engine.reserve(["R101"], TimeWindow.for_nights(date(2025, 6, 20), date(2025, 6, 22)))

            shifted = engine.unreserve(["R101"], TimeWindow.for_nights(date(2025, 6, 14), date(2025, 6, 15)))
            self.assertEqual(shifted.count, 0)

            result = engine.unreserve(["R101", "R102"], WEEKEND)

            self.assertEqual(result.count, 2)
            self.assertEqual(len(_reservations(repo)), 1)
            self.assertTrue(engine.resource_status("R101")["has_reservation"])
            self.assertFalse(engine.resource_status("R102")["has_reservation"])

    def test_bookings_are_never_removed(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = build_repository(temp_dir)
            insert_booking(repo, "R101", WEEKEND)
            engine = AllocationEngine(repo, now_provider=FixedClock())

            result = engine.unreserve(["R101"], WEEKEND)

            self.assertEqual(result.count, 0)
            with repo.transaction(NOW) as tx:
                self.assertEqual(len(tx.list_allocations("R101", [AllocationKind.BOOKING])), 1)

    def test_unreserve_does_not_touch_hold_placeholders(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = build_repository(temp_dir)
            engine = AllocationEngine(repo, now_provider=FixedClock())
            engine.place_hold(["R101"], WEEKEND)

            self.assertEqual(engine.unreserve(["R101"], WEEKEND).count, 0)
            self.assertTrue(engine.is_held("R101"))


if __name__ == "__main__":
    unittest.main()
