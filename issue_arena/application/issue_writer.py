import logging
from typing import Awaitable, Callable, Optional

from issue_arena.application.ports import Collection, StateStore
from issue_arena.domain.exceptions import (
    NotFoundException,
    QuotaExceededException,
    WriteConflictException,
)
from issue_arena.domain.models import Issue, IssueStatus
from issue_arena.domain.rules import MAX_OCCUPIED_ISSUES
from issue_arena.domain.state_machine import Transition
from issue_arena.infrastructure.acl import StoreTranslator

logger = logging.getLogger(__name__)

MAX_WRITE_ATTEMPTS = 3


class IssueWriter:
    """
    Persists issue transitions with optimistic concurrency.

    Each write is conditioned on the version (and status) the transition was
    computed from, and lands together with its point deltas in a single store
    transaction. A lost race is re-read and re-evaluated, so the state machine
    decides what the loser sees.
    """

    def __init__(self, store: StateStore):
        self.store = store

    async def load(self, issue_id: str) -> Issue:
        record = await self.store.get(Collection.ISSUES, issue_id)
        if record is None:
            raise NotFoundException(f"Issue {issue_id} does not exist.")
        return StoreTranslator.issue_to_domain(record)

    async def commit(self, before: Issue, transition: Transition, quota_team: Optional[str] = None) -> bool:
        """
        Returns False, having written nothing, when the stored issue no longer
        matches `before`.
        """
        async with self.store.transaction() as tx:
            written = await tx.update(
                Collection.ISSUES,
                before.id,
                StoreTranslator.issue_state_to_record(transition.issue),
                expected={"version": before.version, "status": before.status.value},
            )
            if not written:
                return False

            if quota_team is not None:
                held = await tx.count(
                    Collection.ISSUES, status=IssueStatus.OCCUPIED.value, assigned_to=quota_team
                )
                if held > MAX_OCCUPIED_ISSUES:
                    # Rolls the issue write back with the transaction.
                    raise QuotaExceededException()

            for team, delta in transition.point_deltas.items():
                if not await tx.increment(Collection.TEAMS, team, "points", delta, floor=0):
                    logger.warning(f"Issue {before.id}: no team named {team} to apply {delta:+d} points to.")
        return True

    async def apply(
        self,
        issue_id: str,
        compute: Callable[[Issue], Awaitable[Transition]],
        quota_team: Optional[str] = None,
    ) -> Transition:
        for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
            before = await self.load(issue_id)
            transition = await compute(before)
            if await self.commit(before, transition, quota_team=quota_team):
                return transition
            logger.info(
                f"Issue {issue_id} changed while writing, re-evaluating (attempt {attempt}/{MAX_WRITE_ATTEMPTS})."
            )
        raise WriteConflictException()
