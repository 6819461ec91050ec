#tests\test_await_condition.py

"""Test bounded condition polling."""

from fleet_scheduler.simulation.await_condition import await_condition
from fleet_scheduler.simulation.clock import ManualClock


class TestAwaitCondition:
    """Test success and timeout results."""

    def test_immediate_success(self):
        result = await_condition(lambda: True, timeout=5, sleep=lambda s: None)

        assert result.succeeded
        assert result.attempts == 1
        assert bool(result)

    def test_success_after_steps(self):
        clock = ManualClock()
        counter = {"n": 0}

        def step():
            counter["n"] += 1

        result = await_condition(
            lambda: counter["n"] >= 3,
            timeout=10,
            interval=1,
            step=step,
            monotonic=clock.monotonic,
            sleep=clock.sleep,
        )

        assert result.succeeded
        assert result.attempts == 3
        assert result.duration_seconds == 2

    def test_timeout_returns_failure(self):
        clock = ManualClock()

        result = await_condition(
            lambda: False,
            timeout=5,
            interval=1,
            monotonic=clock.monotonic,
            sleep=clock.sleep,
            name="never",
            describe=lambda: "still false",
        )

        assert not result.succeeded
        assert result.name == "never"
        assert result.details == "still false"
        assert result.duration_seconds == 5
        assert result.attempts == 6
