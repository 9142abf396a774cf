import tempfile
import unittest
from datetime import date, timedelta
from uuid import uuid4

from allocation_engine import AllocationKind, AllocationRecord, NotFound, Slot, TimeWindow, check_conflicts
from support import NOW, build_repository, insert_booking


def _insert(repo, resource_id, kind, window, **fields):
    with repo.transaction(NOW) as tx:
        return tx.insert_allocation(
            AllocationRecord(
                allocation_id=str(uuid4()),
                resource_id=resource_id,
                kind=kind,
                window=window,
                created_at=NOW,
                **fields,
            )
        )


class TestCheckConflicts(unittest.TestCase):
    def test_back_to_back_stay_has_no_conflict(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = build_repository(temp_dir)
            insert_booking(repo, "R101", TimeWindow.for_nights(date(2025, 6, 10), date(2025, 6, 12)))

            with repo.transaction(NOW) as tx:
                report = check_conflicts(tx, "R101", TimeWindow.for_nights(date(2025, 6, 12), date(2025, 6, 14)), now=NOW)

            self.assertTrue(report.is_empty)

    def test_overlapping_stay_lists_existing_booking(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = build_repository(temp_dir)
            booking = insert_booking(repo, "R101", TimeWindow.for_nights(date(2025, 6, 10), date(2025, 6, 12)))

            with repo.transaction(NOW) as tx:
                report = check_conflicts(tx, "R101", TimeWindow.for_nights(date(2025, 6, 11), date(2025, 6, 13)), now=NOW)

            self.assertEqual([entry.allocation_id for entry in report.entries], [booking.allocation_id])
            self.assertEqual(report.kinds, {AllocationKind.BOOKING})

    def test_collects_every_blocker_not_just_the_first(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = build_repository(temp_dir)
            insert_booking(repo, "R101", TimeWindow.for_nights(date(2025, 6, 12), date(2025, 6, 14)))
            _insert(repo, "R101", AllocationKind.RESERVATION, TimeWindow.for_nights(date(2025, 6, 10), date(2025, 6, 11)))
            _insert(
                repo,
                "R101",
                AllocationKind.MAINTENANCE,
                TimeWindow.for_nights(date(2025, 6, 14), date(2025, 6, 16)),
                reason="plumbing",
            )

            with repo.transaction(NOW) as tx:
                report = check_conflicts(tx, "R101", TimeWindow.for_nights(date(2025, 6, 9), date(2025, 6, 20)), now=NOW)

            self.assertEqual(
                [entry.kind for entry in report.entries],
                [AllocationKind.RESERVATION, AllocationKind.BOOKING, AllocationKind.MAINTENANCE],
            )
            self.assertEqual(report.of_kind(AllocationKind.MAINTENANCE)[0].reason, "plumbing")
            self.assertIn("plumbing", report.describe())

    def test_other_resources_and_slots_do_not_conflict(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = build_repository(temp_dir)
            insert_booking(repo, "H1", TimeWindow.for_slot(date(2025, 7, 3), Slot.MORNING))

            with repo.transaction(NOW) as tx:
                other_slot = check_conflicts(tx, "H1", TimeWindow.for_slot(date(2025, 7, 3), Slot.EVENING), now=NOW)
                other_hall = check_conflicts(tx, "H2", TimeWindow.for_slot(date(2025, 7, 3), Slot.MORNING), now=NOW)
                same_slot = check_conflicts(tx, "H1", TimeWindow.for_slot(date(2025, 7, 3), Slot.MORNING), now=NOW)

            self.assertTrue(other_slot.is_empty)
            self.assertTrue(other_hall.is_empty)
            self.assertFalse(same_slot.is_empty)

    def test_excluded_allocation_and_kind_filter(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = build_repository(temp_dir)
            window = TimeWindow.for_nights(date(2025, 6, 10), date(2025, 6, 12))
            booking = insert_booking(repo, "R101", window)

            with repo.transaction(NOW) as tx:
                excluded = check_conflicts(tx, "R101", window, exclude_allocation_id=booking.allocation_id, now=NOW)
                maintenance_only = check_conflicts(tx, "R101", window, kinds=[AllocationKind.MAINTENANCE], now=NOW)

            self.assertTrue(excluded.is_empty)
            self.assertTrue(maintenance_only.is_empty)

    def test_expired_placeholder_is_ignored(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = build_repository(temp_dir)
            window = TimeWindow.for_nights(date(2025, 6, 10), date(2025, 6, 12))
            _insert(
                repo,
                "R101",
                AllocationKind.RESERVATION,
                window,
                hold_set_id="abandoned",
                hold_expires_at=NOW + timedelta(minutes=3),
            )

            with repo.transaction(NOW) as tx:
                while_held = check_conflicts(tx, "R101", window, now=NOW + timedelta(minutes=2))
                after_expiry = check_conflicts(tx, "R101", window, now=NOW + timedelta(minutes=3, seconds=1))

            self.assertFalse(while_held.is_empty)
            self.assertTrue(after_expiry.is_empty)

    def test_unknown_resource_is_not_found(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = build_repository(temp_dir)
            with repo.transaction(NOW) as tx:
                with self.assertRaises(NotFound):
                    check_conflicts(tx, "R999", TimeWindow.for_nights(date(2025, 6, 10), date(2025, 6, 12)), now=NOW)

    def test_check_performs_no_writes(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = build_repository(temp_dir)
            insert_booking(repo, "R101", TimeWindow.for_nights(date(2025, 6, 10), date(2025, 6, 12)))
            before = repo.allocations_file.read_text(encoding="utf-8")

            with repo.transaction(NOW) as tx:
                check_conflicts(tx, "R101", TimeWindow.for_nights(date(2025, 6, 11), date(2025, 6, 13)), now=NOW)

            self.assertEqual(repo.allocations_file.read_text(encoding="utf-8"), before)


if __name__ == "__main__":
    unittest.main()
