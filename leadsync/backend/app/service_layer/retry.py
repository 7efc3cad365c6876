# app/service_layer/retry.py
from __future__ import annotations

import asyncio
import enum
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Protocol

from ..adapters.repos.dead_letters import DeadLetterRepository
from ..domain.errors import PermanentWriteError, SyncError, TransientInfraError
from ..domain.types import CanonicalLeadCandidate
from ..models import ErrorKind
from .writer import IdempotentUpsertWriter

log = logging.getLogger(__name__)


class AttemptState(str, enum.Enum):
    pending = "pending"
    in_flight = "in_flight"
    success = "success"
    retryable_failure = "retryable_failure"
    fatal_failure = "fatal_failure"
    dead_letter = "dead_letter"


@dataclass
class SyncAttempt:
    """
    In-flight retry tracking for one candidate. Lives until SUCCESS or DEAD_LETTER.

    attempt_number counts write attempts made so far (0 before the first one).
    """
    candidate: CanonicalLeadCandidate
    attempt_number: int = 0
    state: AttemptState = AttemptState.pending
    last_error: str | None = None
    next_retry_at: datetime | None = None
    done: asyncio.Future | None = field(default=None, repr=False, compare=False)

    @property
    def canonical_id(self) -> str:
        return self.candidate.canonical_id


class DeadLetterSink(Protocol):
    async def publish(self, attempt: SyncAttempt, error: SyncError) -> None:
        ...


class DbDeadLetterSink:
    """Shared dead-letter channel backed by the dead_letters table."""

    def __init__(self, session_maker: Callable[[], Any]) -> None:
        self.session_maker = session_maker

    async def publish(self, attempt: SyncAttempt, error: SyncError) -> None:
        c = attempt.candidate
        kind = ErrorKind.permanent if isinstance(error, PermanentWriteError) else ErrorKind.transient
        async with self.session_maker() as session:
            await DeadLetterRepository(session).append(
                canonical_id=c.canonical_id,
                original_id=c.original_id,
                source_id=c.source_database,
                error=str(error) or type(error).__name__,
                error_kind=kind,
                attempts=attempt.attempt_number,
                payload=dict(c.fields),
            )
            await session.commit()


def compute_backoff_seconds(
    attempt_number: int,
    *,
    base_s: float,
    cap_s: float,
    rng: random.Random | None = None,
) -> float:
    """
    Exponential backoff with jitter.
    attempt_number: 1,2,3,... (the attempt that just failed)
    """
    exp = base_s * (2 ** max(0, attempt_number - 1))
    capped = min(exp, cap_s)
    uniform = (rng or random).uniform
    jitter = uniform(0.0, min(base_s, capped))
    return capped + jitter


class RetryController:
    """
    Owns every write attempt for one pipeline.

      PENDING -> IN_FLIGHT -> SUCCESS
      IN_FLIGHT -> RETRYABLE_FAILURE -> PENDING   (after backoff)
      IN_FLIGHT -> FATAL_FAILURE -> DEAD_LETTER
      RETRYABLE_FAILURE at max_attempts -> DEAD_LETTER

    Failures never propagate to the caller: the delivery is acknowledged
    and the outcome shows up in the store or the dead-letter channel.
    """

    def __init__(
        self,
        writer: IdempotentUpsertWriter,
        dead_letters: DeadLetterSink,
        *,
        max_attempts: int = 5,
        backoff_base_s: float = 1.0,
        backoff_cap_s: float = 300.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: random.Random | None = None,
        name: str = "sync",
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.writer = writer
        self.dead_letters = dead_letters
        self.max_attempts = int(max_attempts)
        self.backoff_base_s = float(backoff_base_s)
        self.backoff_cap_s = float(backoff_cap_s)
        self.name = name
        self._sleep = sleep
        self._rng = rng

        self._accepting_retries = True
        self._tasks: dict[asyncio.Task, SyncAttempt] = {}
        self._abandoned: list[SyncAttempt] = []

        self.counters: dict[str, int] = {
            "attempts": 0,
            "succeeded": 0,
            "retried": 0,
            "dead_lettered": 0,
            "abandoned": 0,
        }

    @property
    def scheduled_retries(self) -> int:
        return sum(1 for a in self._tasks.values() if a.state is AttemptState.pending)

    async def submit(self, candidate: CanonicalLeadCandidate) -> asyncio.Future:
        """
        Run attempt 1 now. Returns a future that resolves to the SyncAttempt
        once it reaches SUCCESS or DEAD_LETTER (or is abandoned by drain()).
        """
        attempt = SyncAttempt(candidate=candidate)
        attempt.done = asyncio.get_running_loop().create_future()
        await self._run_attempt(attempt)
        return attempt.done

    async def _run_attempt(self, attempt: SyncAttempt) -> None:
        attempt.attempt_number += 1
        attempt.state = AttemptState.in_flight
        attempt.next_retry_at = None
        self.counters["attempts"] += 1

        result = await self.writer.upsert(attempt.candidate, attempt_number=attempt.attempt_number)

        if result.ok:
            attempt.state = AttemptState.success
            attempt.last_error = None
            self.counters["succeeded"] += 1
            if attempt.attempt_number > 1:
                log.info(
                    "[%s] synced %s/%s after %d attempts",
                    self.name,
                    attempt.candidate.source_database,
                    attempt.candidate.original_id,
                    attempt.attempt_number,
                )
            self._resolve(attempt)
            return

        err = result.error or TransientInfraError("write failed without an error")
        attempt.last_error = str(err) or type(err).__name__

        if isinstance(err, PermanentWriteError):
            attempt.state = AttemptState.fatal_failure
            await self._dead_letter(attempt, err)
            return

        attempt.state = AttemptState.retryable_failure
        if attempt.attempt_number >= self.max_attempts:
            await self._dead_letter(attempt, err)
            return

        self._schedule_retry(attempt)

    def _schedule_retry(self, attempt: SyncAttempt) -> None:
        if not self._accepting_retries:
            self._abandon(attempt)
            return

        delay = compute_backoff_seconds(
            attempt.attempt_number,
            base_s=self.backoff_base_s,
            cap_s=self.backoff_cap_s,
            rng=self._rng,
        )
        attempt.state = AttemptState.pending
        attempt.next_retry_at = datetime.utcnow() + timedelta(seconds=delay)
        self.counters["retried"] += 1
        log.info(
            "[%s] attempt %d/%d for %s/%s failed (%s); retrying in %.2fs",
            self.name,
            attempt.attempt_number,
            self.max_attempts,
            attempt.candidate.source_database,
            attempt.candidate.original_id,
            attempt.last_error,
            delay,
        )

        task = asyncio.create_task(self._retry_after(attempt, delay))
        self._tasks[task] = attempt
        task.add_done_callback(self._forget_task)

    def _forget_task(self, task: asyncio.Task) -> None:
        attempt = self._tasks.pop(task, None)
        if attempt is None:
            return
        if task.cancelled():
            # cancelled during backoff, possibly before the coroutine even started
            if attempt.done is not None and not attempt.done.done():
                self._abandon(attempt)
        elif task.exception() is not None:
            log.error(
                "[%s] retry task for %s crashed",
                self.name,
                attempt.canonical_id,
                exc_info=task.exception(),
            )

    async def _retry_after(self, attempt: SyncAttempt, delay: float) -> None:
        await self._sleep(delay)
        await self._run_attempt(attempt)

    async def _dead_letter(self, attempt: SyncAttempt, err: SyncError) -> None:
        log.error(
            "[%s] dead-lettering %s/%s after %d attempt(s): %s",
            self.name,
            attempt.candidate.source_database,
            attempt.candidate.original_id,
            attempt.attempt_number,
            attempt.last_error,
        )
        try:
            await self.dead_letters.publish(attempt, err)
        except Exception:
            # nothing left to escalate to; keep the record visible in the logs
            log.exception(
                "[%s] could not persist dead-letter entry for %s",
                self.name,
                attempt.canonical_id,
            )
        attempt.state = AttemptState.dead_letter
        self.counters["dead_lettered"] += 1
        self._resolve(attempt)

    def _abandon(self, attempt: SyncAttempt) -> None:
        attempt.state = AttemptState.pending
        attempt.next_retry_at = None
        self._abandoned.append(attempt)
        self.counters["abandoned"] += 1
        log.warning(
            "[%s] shutdown: not retrying %s/%s (attempts=%d, last_error=%s)",
            self.name,
            attempt.candidate.source_database,
            attempt.candidate.original_id,
            attempt.attempt_number,
            attempt.last_error,
        )
        self._resolve(attempt)

    @staticmethod
    def _resolve(attempt: SyncAttempt) -> None:
        if attempt.done is not None and not attempt.done.done():
            attempt.done.set_result(attempt)

    async def join(self) -> None:
        """Wait until no retry is scheduled or running."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def drain(self) -> list[SyncAttempt]:
        """
        Stop scheduling retries. Retries still waiting out their backoff are
        cancelled; retries already writing are allowed to finish.
        Returns the attempts that were given up on.
        """
        self._accepting_retries = False
        for task, attempt in list(self._tasks.items()):
            if attempt.state is AttemptState.pending:
                task.cancel()
        await self.join()
        return list(self._abandoned)
