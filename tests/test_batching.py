"""Tests for bounded fan-out."""

import threading
import time

import pytest

from kg_sheet_sync.batching import chunked, run_in_batches


class TestChunked:
    """Tests for chunked."""

    def test_groups(self) -> None:
        assert chunked([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]

    def test_empty(self) -> None:
        assert chunked([], 3) == []

    def test_rejects_zero(self) -> None:
        with pytest.raises(ValueError, match="positive"):
            chunked([1], 0)


class TestRunInBatches:
    """Tests for run_in_batches."""

    def test_results_in_input_order(self) -> None:
        """Results come back in input order regardless of completion order."""

        def slow_square(n: int) -> int:
            time.sleep(0.01 * (5 - n))
            return n * n

        assert run_in_batches([1, 2, 3, 4], slow_square, batch_size=2) == [1, 4, 9, 16]

    def test_concurrency_is_bounded(self) -> None:
        """No more than batch_size calls are in flight at once."""
        lock = threading.Lock()
        active = 0
        peak = 0

        def work(n: int) -> int:
            nonlocal active, peak
            with lock:
                active += 1
                peak = max(peak, active)
            time.sleep(0.01)
            with lock:
                active -= 1
            return n

        run_in_batches(list(range(12)), work, batch_size=3)
        assert peak <= 3

    def test_failure_stops_later_batches(self) -> None:
        """An exception propagates and no later group is started."""
        called: list[int] = []
        lock = threading.Lock()

        def work(n: int) -> int:
            with lock:
                called.append(n)
            if n == 1:
                raise RuntimeError("boom")
            return n

        with pytest.raises(RuntimeError, match="boom"):
            run_in_batches([0, 1, 2, 3, 4, 5], work, batch_size=2)

        assert sorted(called) == [0, 1]

    def test_empty_input(self) -> None:
        assert run_in_batches([], lambda n: n, batch_size=5) == []
