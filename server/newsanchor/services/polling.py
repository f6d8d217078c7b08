from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Protocol

from newsanchor.services.models import JobStatus, RemoteJob


logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]
JobFetcher = Callable[[], Awaitable[RemoteJob]]
ReadinessCheck = Callable[[RemoteJob], Awaitable[bool]]


class PollingPolicy(Protocol):
    """Decides how long to wait between status polls and when to give up."""

    max_attempts: int
    initial_delay: float

    def interval(self, attempt: int) -> float:
        """Return the delay (seconds) to wait after the zero-based ``attempt``."""
        raise NotImplementedError


@dataclass(slots=True)
class FixedIntervalPolicy:
    interval_seconds: float = 10.0
    max_attempts: int = 30
    initial_delay: float = 0.0

    def __post_init__(self) -> None:
        if self.interval_seconds < 0:
            raise ValueError("interval_seconds must be >= 0")
        if self.max_attempts <= 0:
            raise ValueError("max_attempts must be > 0")

    def interval(self, attempt: int) -> float:
        _ = attempt
        return self.interval_seconds


@dataclass(slots=True)
class ExponentialBackoffPolicy:
    """Exponential backoff capped at ``max_delay`` plus uniform random jitter."""

    base_delay: float = 5.0
    max_delay: float = 60.0
    max_jitter: float = 5.0
    max_attempts: int = 30
    initial_delay: float = 10.0
    rng: random.Random = field(default_factory=random.Random)

    def __post_init__(self) -> None:
        if self.base_delay <= 0:
            raise ValueError("base_delay must be > 0")
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")
        if self.max_jitter < 0:
            raise ValueError("max_jitter must be >= 0")
        if self.max_attempts <= 0:
            raise ValueError("max_attempts must be > 0")

    def interval(self, attempt: int) -> float:
        # Cap the exponent so large attempt numbers cannot overflow the float.
        exponent = min(max(attempt, 0), 32)
        delay = min(self.base_delay * (2**exponent), self.max_delay)
        jitter = self.rng.uniform(0, self.max_jitter) if self.max_jitter else 0.0
        return delay + jitter


class PollingTimeout(Exception):
    """Raised when a job is still non-terminal after the attempt budget."""

    def __init__(self, job_id: str, attempts: int, latest: Optional[RemoteJob]) -> None:
        super().__init__(f"Job {job_id} did not finish after {attempts} status checks")
        self.job_id = job_id
        self.attempts = attempts
        self.latest = latest


async def poll_until_terminal(
    job_id: str,
    fetch: JobFetcher,
    policy: PollingPolicy,
    *,
    is_ready: Optional[ReadinessCheck] = None,
    transient: tuple[type[Exception], ...] = (),
    sleep: Sleep = asyncio.sleep,
) -> RemoteJob:
    """Poll ``fetch`` until the job completes, fails, or the budget runs out.

    A completed status only counts when it carries a result URL and, if given,
    ``is_ready`` confirms the asset. Otherwise polling continues. Failed jobs are
    returned as-is so callers can wrap the provider's own error message.

    A status check that raises one of ``transient`` uses up its attempt but does
    not end polling; any other exception propagates.
    """
    if policy.initial_delay > 0:
        await sleep(policy.initial_delay)

    latest: Optional[RemoteJob] = None
    for attempt in range(policy.max_attempts):
        try:
            current = await fetch()
        except transient as exc:
            logger.warning("Status check %d for job %s failed, will retry: %s", attempt + 1, job_id, exc)
        else:
            latest = current
            if current.status == JobStatus.FAILED:
                return current
            if current.status == JobStatus.COMPLETED:
                if not current.result_url:
                    logger.info("Job %s reported completed without a result URL; polling again", job_id)
                elif is_ready is not None and not await is_ready(current):
                    logger.info("Job %s result URL is not reachable yet; polling again", job_id)
                else:
                    return current
        if attempt < policy.max_attempts - 1:
            await sleep(policy.interval(attempt))

    raise PollingTimeout(job_id, policy.max_attempts, latest)
