import os
import tempfile
import unittest

from issue_arena.application.arena_service import ArenaService
from issue_arena.config import Settings
from issue_arena.infrastructure.database import SqlStateStore

T0 = 1_700_000_000_000
MINUTE = 60_000

PASSWORDS = {
    "TeamAlpha": "alpha-2025",
    "TeamBravo": "bravo-2025",
    "TeamCharlie": "charlie-2025",
    "TeamDelta": "delta-2025",
}


class FakeClock:
    def __init__(self, now: int = T0) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, minutes: float) -> None:
        self.now += int(minutes * MINUTE)


class SqliteStoreTestCase(unittest.IsolatedAsyncioTestCase):
    """Gives every test a fresh SQLite-backed store in a temporary directory."""

    async def asyncSetUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        db_path = os.path.join(self._tmp.name, "arena.db")
        self.store = SqlStateStore(f"sqlite+aiosqlite:///{db_path}")
        await self.store.create_schema()
        self.clock = FakeClock()
        self.settings = Settings(command_timeout=5.0)

    async def asyncTearDown(self) -> None:
        await self.store.dispose()
        self._tmp.cleanup()

    async def make_service(self, **start_kwargs) -> ArenaService:
        service = ArenaService(store=self.store, settings=self.settings, clock=self.clock)
        start_kwargs.setdefault("run_sweeper", False)
        await service.start(**start_kwargs)
        self.addAsyncCleanup(service.close)
        return service

    async def make_admin(self) -> ArenaService:
        admin = await self.make_service(reset_sessions=False)
        result = await admin.login_admin("dvadmin", "2025")
        self.assertTrue(result.ok, result.message)
        return admin

    async def make_team(self, name: str) -> ArenaService:
        client = await self.make_service(reset_sessions=False)
        result = await client.login_team(name, PASSWORDS[name])
        self.assertTrue(result.ok, result.message)
        return client

    async def add_issue(self, admin: ArenaService, difficulty: str = "easy", repo: str = "awesome-repo") -> str:
        result = await admin.add_issue({"title": f"A {difficulty} task", "tags": [difficulty], "repo": repo})
        self.assertTrue(result.ok, result.message)
        return result.value
