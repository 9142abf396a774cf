import tempfile
import threading
import unittest
from datetime import date
from pathlib import Path

from allocation_engine import (
    AllocationEngine,
    AllocationYamlRepository,
    AlreadyHeld,
    Conflict,
    TimeWindow,
)
from support import NOW, FixedClock, build_repository

STAY = TimeWindow.for_nights(date(2025, 6, 10), date(2025, 6, 12))


class TestConcurrentWriters(unittest.TestCase):
    def _race(self, *calls):
        barrier = threading.Barrier(len(calls))
        outcomes: list[object] = [None] * len(calls)

        def run(index, call):
            barrier.wait()
            try:
                outcomes[index] = call()
            except (Conflict, AlreadyHeld) as error:
                outcomes[index] = error

        threads = [threading.Thread(target=run, args=(index, call)) for index, call in enumerate(calls)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)
        return outcomes

    def test_reserve_and_hold_race_on_separate_repositories(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            build_repository(temp_dir)
            data_dir = Path(temp_dir) / "data"
            admin = AllocationEngine(AllocationYamlRepository(data_dir), now_provider=FixedClock())
            member = AllocationEngine(AllocationYamlRepository(data_dir), now_provider=FixedClock())

            outcomes = self._race(
                lambda: admin.reserve(["R101"], STAY, "admin"),
                lambda: member.place_hold(["R101"], STAY),
            )

            rejected = [outcome for outcome in outcomes if isinstance(outcome, (Conflict, AlreadyHeld))]
            self.assertEqual(len(rejected), 1)
            self.assertEqual(len([outcome for outcome in outcomes if outcome is not None]), 2)
            with AllocationYamlRepository(data_dir).transaction(NOW) as tx:
                self.assertEqual(len(tx.list_allocations("R101")), 1)

    def test_competing_holds_on_one_engine_admit_exactly_one(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            engine = AllocationEngine(build_repository(temp_dir), now_provider=FixedClock())

            outcomes = self._race(*[lambda: engine.place_hold(["R102"], STAY) for _ in range(4)])

            rejected = [outcome for outcome in outcomes if isinstance(outcome, (Conflict, AlreadyHeld))]
            self.assertEqual(len(rejected), 3)
            self.assertTrue(engine.is_held("R102"))
            with engine.repository.transaction(NOW) as tx:
                self.assertEqual(len(tx.list_holds()), 1)
                self.assertEqual(len(tx.list_allocations("R102")), 1)


if __name__ == "__main__":
    unittest.main()
