import asyncio

from issue_arena.application.ports import Collection
from issue_arena.application.session_guard import SessionGuard
from issue_arena.domain.exceptions import (
    AlreadyActiveException,
    BadCredentialsException,
    UnknownTeamException,
)

from support import PASSWORDS, SqliteStoreTestCase


class TestSessionGuard(SqliteStoreTestCase):
    async def asyncSetUp(self) -> None:
        await super().asyncSetUp()
        for name in PASSWORDS:
            await self.store.create(Collection.TEAMS, {"name": name, "points": 0, "active": False})
        self.guard = SessionGuard(self.store, PASSWORDS, admin_user="dvadmin", admin_password="2025")

    async def test_login_marks_team_active(self) -> None:
        team = await self.guard.login("TeamAlpha", "alpha-2025")

        self.assertTrue(team.active)
        self.assertTrue((await self.store.get(Collection.TEAMS, "TeamAlpha"))["active"])

    async def test_unknown_team_and_bad_password(self) -> None:
        with self.assertRaises(UnknownTeamException):
            await self.guard.login("TeamOmega", "whatever")
        with self.assertRaises(BadCredentialsException):
            await self.guard.login("TeamAlpha", "bravo-2025")

        self.assertFalse((await self.store.get(Collection.TEAMS, "TeamAlpha"))["active"])

    async def test_second_session_is_rejected_until_logout(self) -> None:
        await self.guard.login("TeamBravo", "bravo-2025")

        with self.assertRaises(AlreadyActiveException):
            await self.guard.login("TeamBravo", "bravo-2025")

        await self.guard.logout("TeamBravo")
        team = await self.guard.login("TeamBravo", "bravo-2025")
        self.assertTrue(team.active)

    async def test_logout_is_idempotent(self) -> None:
        await self.guard.logout("TeamCharlie")
        await self.guard.logout("TeamCharlie")

        self.assertFalse((await self.store.get(Collection.TEAMS, "TeamCharlie"))["active"])

    async def test_concurrent_logins_have_one_winner(self) -> None:
        results = await asyncio.gather(
            self.guard.login("TeamDelta", "delta-2025"),
            self.guard.login("TeamDelta", "delta-2025"),
            return_exceptions=True,
        )

        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, AlreadyActiveException)]
        self.assertEqual(len(winners), 1)
        self.assertEqual(len(losers), 1)

    async def test_admin_credentials(self) -> None:
        self.assertTrue(self.guard.login_admin("dvadmin", "2025"))
        self.assertFalse(self.guard.login_admin("dvadmin", "2024"))
        self.assertFalse(self.guard.login_admin("admin", "2025"))

    async def test_reset_sessions(self) -> None:
        await self.guard.login("TeamAlpha", "alpha-2025")
        await self.guard.login("TeamBravo", "bravo-2025")

        self.assertEqual(await self.guard.reset_sessions(), 2)

        teams = await self.store.get_all(Collection.TEAMS)
        self.assertFalse(any(team["active"] for team in teams))
