import asyncio
import unittest

from issue_arena.application.expiry_sweeper import ExpirySweeper
from issue_arena.application.ports import Collection
from issue_arena.application.snapshot_cache import SnapshotCache
from issue_arena.domain.exceptions import StoreUnavailableException
from issue_arena.domain.models import IssueStatus

from support import SqliteStoreTestCase


class TestExpirySweep(SqliteStoreTestCase):
    async def asyncSetUp(self) -> None:
        await super().asyncSetUp()
        self.admin = await self.make_admin()
        self.alpha = await self.make_team("TeamAlpha")

    async def _points(self, team: str) -> int:
        return (await self.store.get(Collection.TEAMS, team))["points"]

    async def test_easy_issue_expires_after_twenty_minutes(self) -> None:
        await self.admin.award_points("TeamAlpha", 12)
        issue_id = await self.add_issue(self.admin, "easy")
        self.assertTrue((await self.alpha.occupy_issue(issue_id)).ok)

        self.clock.advance(19)
        self.assertEqual(await self.admin.sweeper.tick(), [])
        self.assertEqual(self.admin.issue(issue_id).status, IssueStatus.OCCUPIED)

        self.clock.advance(2)
        self.assertEqual(await self.admin.sweeper.tick(), [issue_id])

        issue = self.admin.issue(issue_id)
        self.assertEqual(issue.status, IssueStatus.OPEN)
        self.assertIsNone(issue.assigned_to)
        self.assertIsNone(issue.occupied_at)
        self.assertEqual(await self._points("TeamAlpha"), 7)

    async def test_penalty_is_floored_at_zero(self) -> None:
        await self.admin.award_points("TeamAlpha", 3)
        issue_id = await self.add_issue(self.admin, "easy")
        await self.alpha.occupy_issue(issue_id)

        self.clock.advance(21)
        await self.admin.sweeper.tick()

        self.assertEqual(await self._points("TeamAlpha"), 0)

    async def test_repeated_ticks_charge_once(self) -> None:
        await self.admin.award_points("TeamAlpha", 50)
        issue_id = await self.add_issue(self.admin, "hard")
        await self.alpha.occupy_issue(issue_id)

        self.clock.advance(61)
        await self.admin.sweeper.tick()
        await self.admin.sweeper.tick()
        await self.alpha.sweeper.tick()

        self.assertEqual(await self._points("TeamAlpha"), 35)

    async def test_two_sweepers_racing_charge_once(self) -> None:
        await self.admin.award_points("TeamAlpha", 50)
        issue_id = await self.add_issue(self.admin, "medium")
        await self.alpha.occupy_issue(issue_id)
        self.clock.advance(45)

        # Both sweepers act on the same cached snapshot.
        self.admin.sweeper.refresh = False
        self.alpha.sweeper.refresh = False
        results = await asyncio.gather(self.admin.sweeper.tick(), self.alpha.sweeper.tick())

        self.assertEqual(sorted(len(expired) for expired in results), [0, 1])
        self.assertEqual(await self._points("TeamAlpha"), 40)

    async def test_stale_cache_does_not_expire_a_closed_issue(self) -> None:
        issue_id = await self.add_issue(self.admin, "easy")
        await self.alpha.occupy_issue(issue_id)
        self.admin.sweeper.refresh = False
        stale = self.admin.issue(issue_id)

        await self.alpha.close_issue(issue_id, "https://github.com/x/y/pull/7")
        self.admin.cache.replace_issues([stale])
        self.clock.advance(30)

        self.assertEqual(await self.admin.sweeper.tick(), [])
        record = await self.store.get(Collection.ISSUES, issue_id)
        self.assertEqual(record["status"], "closed")

    async def test_other_occupied_issues_are_left_alone(self) -> None:
        easy = await self.add_issue(self.admin, "easy")
        hard = await self.add_issue(self.admin, "hard")
        await self.alpha.occupy_issue(easy)
        await self.alpha.occupy_issue(hard)

        self.clock.advance(30)

        self.assertEqual(await self.admin.sweeper.tick(), [easy])
        self.assertEqual(self.admin.issue(hard).status, IssueStatus.OCCUPIED)


class _UnavailableStore:
    def __init__(self) -> None:
        self.refreshes = 0

    async def refresh(self) -> None:
        self.refreshes += 1
        raise StoreUnavailableException()


class TestSweeperLoop(unittest.IsolatedAsyncioTestCase):
    async def test_failed_ticks_are_retried_on_the_next_interval(self) -> None:
        store = _UnavailableStore()
        sweeper = ExpirySweeper(store, SnapshotCache(), interval=0.01)

        sweeper.start()
        with self.assertLogs("issue_arena.application.expiry_sweeper", level="ERROR"):
            await asyncio.sleep(0.05)
        self.assertTrue(sweeper.running)

        await sweeper.stop()
        self.assertFalse(sweeper.running)
        self.assertGreaterEqual(store.refreshes, 2)

    async def test_start_twice_keeps_one_task(self) -> None:
        sweeper = ExpirySweeper(_UnavailableStore(), SnapshotCache(), interval=10)

        sweeper.start()
        task = sweeper._task
        sweeper.start()

        self.assertIs(sweeper._task, task)
        await sweeper.stop()
