"""
Bounded worker pool for per-host work.

Runs one coroutine per host with at most max_workers in flight. The first
failure stops the pool: in-flight hosts are cancelled and hosts not yet
started are never attempted. Hosts that finished keep whatever they did.

With max_workers=1 hosts are processed strictly in order, one at a time.

Invariants:
    - No host is started after a failure has been recorded
    - The reported error is that of the earliest failing host in input
      order, so error reporting is deterministic under parallelism
    - completed preserves input order
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)


@dataclass
class PoolOutcome:
    """What happened to each host.

    Attributes:
        completed: Hosts that finished, in input order
        failed_host: Earliest failing host in input order, if any
        error: Exception raised for failed_host
        cancelled: Hosts that were in flight when the pool stopped
        not_started: Hosts never attempted
    """

    completed: List[str] = field(default_factory=list)
    failed_host: Optional[str] = None
    error: Optional[Exception] = None
    cancelled: List[str] = field(default_factory=list)
    not_started: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.error is None


class HostPool:
    """Process hosts with bounded concurrency and first-error cancellation.

    Example:
        >>> pool = HostPool(max_workers=4)
        >>> outcome = await pool.run(hosts, backup_host)
        >>> if not outcome.success:
        ...     raise outcome.error
    """

    def __init__(self, max_workers: int = 1) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.max_workers = max_workers

    async def run(
        self,
        hosts: Sequence[str],
        fn: Callable[[str], Awaitable[None]],
    ) -> PoolOutcome:
        order = {host: i for i, host in enumerate(hosts)}
        pending = iter(hosts)
        done: List[str] = []
        started: List[str] = []
        failures: Dict[int, Tuple[str, Exception]] = {}
        workers: List[asyncio.Task] = []

        async def worker() -> None:
            for host in pending:
                if failures:
                    return
                started.append(host)
                try:
                    await fn(host)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    failures[order[host]] = (host, e)
                    current = asyncio.current_task()
                    for task in workers:
                        if task is not current:
                            task.cancel()
                    return
                done.append(host)

        for _ in range(min(self.max_workers, len(hosts))):
            workers.append(asyncio.create_task(worker()))

        try:
            await asyncio.gather(*workers, return_exceptions=True)
        except asyncio.CancelledError:
            for task in workers:
                task.cancel()
            raise

        outcome = PoolOutcome(completed=sorted(done, key=order.__getitem__))
        if failures:
            index = min(failures)
            outcome.failed_host, outcome.error = failures[index]
            finished = set(done) | {host for host, _ in failures.values()}
            outcome.cancelled = [h for h in hosts if h in started and h not in finished]
            outcome.not_started = [h for h in hosts if h not in started]
            logger.warning(
                "Host pool stopped on failure",
                extra={
                    "failed_host": outcome.failed_host,
                    "completed": len(outcome.completed),
                    "cancelled": len(outcome.cancelled),
                    "not_started": len(outcome.not_started),
                },
            )
        return outcome
