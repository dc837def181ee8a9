"""Tests for duplicate commit protection."""

import asyncio
from datetime import datetime, timezone

import pytest

from conftest import FakeMonotonic
from use_cases.rental_returns.domain.models import ProcessingMode
from use_cases.rental_returns.domain.services import ReturnRequest
from use_cases.rental_returns.errors import AlreadyReturnedError, DuplicateSubmissionError, GatewayError
from use_cases.rental_returns.guard import ReturnSubmissionGuard, SubmissionFingerprint


class CountingOperation:
    """Awaitable commit stand-in that records how often it ran."""

    def __init__(self, result="committed", delay=0.0, error=None):
        self.result = result
        self.delay = delay
        self.error = error
        self.calls = 0
        self.finished = 0

    async def __call__(self):
        self.calls += 1
        await asyncio.sleep(self.delay)
        if self.error is not None:
            error, self.error = self.error, None
            raise error
        self.finished += 1
        return self.result


def already_returned(exc):
    return f"already:{exc.transaction_code}"


def make_request(notes=None, returned_at=datetime(2025, 1, 12, tzinfo=timezone.utc), quantity=2):
    return ReturnRequest(
        transaction_code="TXN-1",
        items=[
            {
                "line_id": "LN-2",
                "mode": "single",
                "conditions": [{"condition_label": "Baik", "quantity": 1, "original_cost_override": None}],
            },
            {
                "line_id": "LN-1",
                "mode": "single",
                "conditions": [{"condition_label": "Kusut", "quantity": quantity, "original_cost_override": None}],
            },
        ],
        actual_return_date=returned_at,
        total_penalty=10000,
        processing_mode=ProcessingMode.SINGLE_CONDITION,
        notes=notes,
    )


@pytest.fixture
def monotonic():
    return FakeMonotonic()


@pytest.fixture
def guard(monotonic):
    return ReturnSubmissionGuard(cooldown_seconds=30.0, clock=monotonic)


@pytest.fixture
def fingerprint():
    return SubmissionFingerprint.from_request(make_request())


class TestFingerprint:

    def test_ignores_return_date(self):
        early = SubmissionFingerprint.from_request(make_request(returned_at=datetime(2025, 1, 12, tzinfo=timezone.utc)))
        late = SubmissionFingerprint.from_request(make_request(returned_at=datetime(2025, 1, 12, 0, 0, 1, tzinfo=timezone.utc)))
        assert early == late

    def test_ignores_item_order(self):
        request = make_request()
        reordered = make_request()
        reordered.items.reverse()
        assert SubmissionFingerprint.from_request(request) == SubmissionFingerprint.from_request(reordered)

    def test_content_changes_fingerprint(self):
        base = SubmissionFingerprint.from_request(make_request())
        assert SubmissionFingerprint.from_request(make_request(notes="noda di kerah")) != base
        assert SubmissionFingerprint.from_request(make_request(quantity=3)) != base


class TestConcurrentSubmissions:

    def test_double_click_hits_gateway_once(self, guard, fingerprint):
        operation = CountingOperation(delay=0.05)

        async def scenario():
            return await asyncio.gather(
                guard.submit(fingerprint, operation, already_returned),
                guard.submit(fingerprint, operation, already_returned),
            )

        results = asyncio.run(scenario())

        assert results == ["committed", "committed"]
        assert operation.calls == 1
        assert not guard.is_in_flight

    def test_late_caller_joins_in_flight_commit(self, guard, fingerprint):
        operation = CountingOperation(delay=0.05)

        async def scenario():
            first = asyncio.ensure_future(guard.submit(fingerprint, operation, already_returned))
            await asyncio.sleep(0.02)
            second = await guard.submit(fingerprint, operation, already_returned)
            return await first, second

        assert asyncio.run(scenario()) == ("committed", "committed")
        assert operation.calls == 1

    def test_joiners_share_the_failure(self, guard, fingerprint):
        operation = CountingOperation(delay=0.05, error=GatewayError("timeout"))

        async def scenario():
            return await asyncio.gather(
                guard.submit(fingerprint, operation, already_returned),
                guard.submit(fingerprint, operation, already_returned),
                return_exceptions=True,
            )

        results = asyncio.run(scenario())

        assert all(isinstance(r, GatewayError) for r in results)
        assert operation.calls == 1

    def test_abandoned_caller_does_not_cancel_commit(self, guard, fingerprint):
        operation = CountingOperation(delay=0.05)

        async def scenario():
            caller = asyncio.ensure_future(guard.submit(fingerprint, operation, already_returned))
            await asyncio.sleep(0.01)
            caller.cancel()
            await asyncio.sleep(0.1)
            return caller.cancelled()

        assert asyncio.run(scenario())
        assert operation.finished == 1
        assert guard.remaining_cooldown(fingerprint) > 0


class TestCooldown:

    def test_identical_commit_rejected_within_window(self, guard, monotonic, fingerprint):
        operation = CountingOperation()
        asyncio.run(guard.submit(fingerprint, operation, already_returned))

        monotonic.now += 10.2
        with pytest.raises(DuplicateSubmissionError) as exc_info:
            asyncio.run(guard.submit(fingerprint, operation, already_returned))

        assert exc_info.value.remaining_seconds == 20
        assert "Please wait 20 seconds" in str(exc_info.value)
        assert operation.calls == 1

    def test_allowed_after_window(self, guard, monotonic, fingerprint):
        operation = CountingOperation()
        asyncio.run(guard.submit(fingerprint, operation, already_returned))

        monotonic.now += 30
        asyncio.run(guard.submit(fingerprint, operation, already_returned))

        assert operation.calls == 2

    def test_different_content_is_not_a_duplicate(self, guard):
        operation = CountingOperation()
        asyncio.run(guard.submit(SubmissionFingerprint.from_request(make_request()), operation, already_returned))
        asyncio.run(guard.submit(
            SubmissionFingerprint.from_request(make_request(notes="koreksi")), operation, already_returned
        ))

        assert operation.calls == 2

    def test_failure_does_not_start_cooldown(self, guard, fingerprint):
        operation = CountingOperation(error=GatewayError("503 from server", status_code=503))

        with pytest.raises(GatewayError):
            asyncio.run(guard.submit(fingerprint, operation, already_returned))

        assert guard.remaining_cooldown(fingerprint) == 0
        assert asyncio.run(guard.submit(fingerprint, operation, already_returned)) == "committed"
        assert operation.calls == 2

    def test_already_returned_counts_as_success(self, guard, fingerprint):
        operation = CountingOperation(error=AlreadyReturnedError("TXN-1"))

        result = asyncio.run(guard.submit(fingerprint, operation, already_returned))

        assert result == "already:TXN-1"
        assert guard.remaining_cooldown(fingerprint) == 30.0

    def test_reset_forgets_completed_commit(self, guard, fingerprint):
        asyncio.run(guard.submit(fingerprint, CountingOperation(), already_returned))
        guard.reset()
        assert guard.remaining_cooldown(fingerprint) == 0

    def test_idle_once_cooldown_expires(self, guard, monotonic, fingerprint):
        assert guard.is_idle

        asyncio.run(guard.submit(fingerprint, CountingOperation(), already_returned))
        assert not guard.is_idle

        monotonic.now += 30
        assert guard.is_idle
