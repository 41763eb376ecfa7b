import asyncio
import logging
from typing import Callable, List, Optional

from issue_arena.application.issue_writer import IssueWriter
from issue_arena.application.ports import StateStore
from issue_arena.application.snapshot_cache import SnapshotCache
from issue_arena.domain import state_machine
from issue_arena.infrastructure.acl import utc_now_ms

logger = logging.getLogger(__name__)

DEFAULT_SWEEP_INTERVAL = 5.0


class ExpirySweeper:
    """
    Periodically reverts overdue occupied issues to open and charges the
    holding team. It is the only place timeouts are enforced.

    Each breach is committed conditioned on the issue version the sweeper saw,
    in the same transaction as the penalty, so a sweep racing another sweep
    (or a close) charges at most once. A failed tick is logged and the next
    tick looks again.
    """

    def __init__(
        self,
        store: StateStore,
        cache: SnapshotCache,
        interval: float = DEFAULT_SWEEP_INTERVAL,
        clock: Callable[[], int] = utc_now_ms,
        refresh: bool = True,
    ):
        self.store = store
        self.cache = cache
        self.writer = IssueWriter(store)
        self.interval = interval
        self.clock = clock
        self.refresh = refresh
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            logger.warning("Expiry sweeper is already running.")
            return
        self._task = asyncio.create_task(self._run())
        logger.info(f"Expiry sweeper started (every {self.interval}s).")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Expiry sweeper stopped.")

    async def _run(self) -> None:
        while True:
            try:
                await self.tick()
            except Exception as e:
                logger.error(f"Expiry sweep failed: {e}. Retrying in {self.interval}s.")
            await asyncio.sleep(self.interval)

    async def tick(self, now: Optional[int] = None) -> List[str]:
        """Runs one sweep and returns the ids of the issues it expired."""
        if self.refresh:
            await self.store.refresh()
        now = self.clock() if now is None else now

        expired = []
        for issue in self.cache.occupied_issues():
            transition = state_machine.expire(issue, now)
            if transition is None:
                continue
            if await self.writer.commit(issue, transition):
                expired.append(issue.id)
                logger.info(
                    f"Issue {issue.id} expired for {issue.assigned_to}; "
                    f"penalty {sum(transition.point_deltas.values())} points."
                )
            else:
                logger.debug(f"Issue {issue.id} moved before it could be expired, skipping.")
        return expired
