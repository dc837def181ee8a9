"""
Return Submission Guard.

Makes sure one logical "confirm return" reaches the transaction gateway
exactly once, however many times it is triggered:

- A commit for a transaction that already has a commit in flight waits
  for and returns that same in-flight result.
- An identical commit within the cooldown after a successful one is
  rejected with DuplicateSubmissionError.
- A failed commit leaves no cooldown behind, so a retry goes through.

The in-flight call is shielded: a caller that gives up (navigates away,
times out) does not cancel the commit itself.
"""

import asyncio
import hashlib
import json
import logging
import math
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple, TypeVar

from .domain.services import ReturnRequest
from .errors import AlreadyReturnedError, DuplicateSubmissionError

T = TypeVar("T")

DEFAULT_COOLDOWN_SECONDS = 30.0


@dataclass(frozen=True)
class SubmissionFingerprint:
    """Stable identity of a commit request. Never persisted."""
    transaction_code: str
    digest: str

    @classmethod
    def from_request(cls, request: ReturnRequest) -> "SubmissionFingerprint":
        canonical = json.dumps(
            request.fingerprint_payload(),
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
        )
        return cls(
            transaction_code=request.transaction_code,
            digest=hashlib.sha256(canonical.encode("utf-8")).hexdigest(),
        )


class ReturnSubmissionGuard:
    """
    Deduplicates concurrent and rapidly repeated commits.

    Args:
        cooldown_seconds: How long an identical commit is refused after a success
        clock: Monotonic clock in seconds (injectable for tests)
        logger: Logger for submission events
    """

    def __init__(
        self,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        logger: Optional[logging.Logger] = None,
    ):
        self.cooldown_seconds = cooldown_seconds
        self.clock = clock
        self.logger = logger or logging.getLogger(__name__)
        self._in_flight: Optional["asyncio.Future"] = None
        self._in_flight_fingerprint: Optional[SubmissionFingerprint] = None
        self._last_completed: Optional[Tuple[SubmissionFingerprint, float]] = None

    @property
    def is_in_flight(self) -> bool:
        return self._in_flight is not None

    @property
    def is_idle(self) -> bool:
        """Nothing in flight and no cooldown left, so the guard holds no state worth keeping."""
        if self._in_flight is not None:
            return False
        if self._last_completed is None:
            return True
        _, completed_at = self._last_completed
        return self.clock() - completed_at >= self.cooldown_seconds

    def remaining_cooldown(self, fingerprint: SubmissionFingerprint) -> float:
        """Seconds left before ``fingerprint`` may be submitted again (0 if allowed)."""
        if self._last_completed is None:
            return 0.0
        last_fingerprint, completed_at = self._last_completed
        if last_fingerprint != fingerprint:
            return 0.0
        return max(0.0, self.cooldown_seconds - (self.clock() - completed_at))

    async def submit(
        self,
        fingerprint: SubmissionFingerprint,
        operation: Callable[[], Awaitable[T]],
        on_already_returned: Callable[[AlreadyReturnedError], T],
    ) -> T:
        """
        Run ``operation`` unless an equivalent submission makes it redundant.

        Args:
            fingerprint: Identity of this submission
            operation: Zero-argument coroutine factory performing the commit
            on_already_returned: Builds the success result when the gateway
                reports the return was already recorded

        Raises:
            DuplicateSubmissionError: Identical commit succeeded within the cooldown
        """
        if (
            self._in_flight is not None
            and self._in_flight_fingerprint.transaction_code == fingerprint.transaction_code
        ):
            self.logger.info(f"{fingerprint.transaction_code}: joining in-flight commit")
            return await asyncio.shield(self._in_flight)

        remaining = self.remaining_cooldown(fingerprint)
        if remaining > 0:
            seconds = max(1, math.ceil(remaining))
            self.logger.warning(
                f"{fingerprint.transaction_code}: duplicate commit rejected, {seconds}s cooldown left"
            )
            raise DuplicateSubmissionError(seconds, fingerprint.transaction_code)

        task = asyncio.ensure_future(self._run(fingerprint, operation, on_already_returned))
        task.add_done_callback(self._log_outcome)
        self._in_flight = task
        self._in_flight_fingerprint = fingerprint
        return await asyncio.shield(task)

    async def _run(
        self,
        fingerprint: SubmissionFingerprint,
        operation: Callable[[], Awaitable[T]],
        on_already_returned: Callable[[AlreadyReturnedError], T],
    ) -> T:
        try:
            try:
                result = await operation()
            except AlreadyReturnedError as exc:
                self.logger.info(f"{fingerprint.transaction_code}: already returned, treating as success")
                result = on_already_returned(exc)
            self._last_completed = (fingerprint, self.clock())
            return result
        finally:
            self._in_flight = None
            self._in_flight_fingerprint = None

    def _log_outcome(self, task: "asyncio.Future"):
        if task.cancelled():
            self.logger.warning("Commit task was cancelled")
            return
        exc = task.exception()
        if exc is not None:
            self.logger.error(f"Commit failed: {exc}")

    def reset(self):
        """Forget completed submissions. An in-flight commit is left alone."""
        self._last_completed = None
