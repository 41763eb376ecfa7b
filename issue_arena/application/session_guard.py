import asyncio
import hmac
import logging
from typing import Dict, Iterable

from issue_arena.application.ports import Collection, StateStore
from issue_arena.domain.exceptions import (
    AlreadyActiveException,
    ArenaException,
    BadCredentialsException,
    NotFoundException,
    UnknownTeamException,
)
from issue_arena.domain.models import Team
from issue_arena.infrastructure.acl import StoreTranslator

logger = logging.getLogger(__name__)


class SessionGuard:
    """
    Enforces the fixed credentials and the "one active session per team" rule.

    A session is nothing more than the team's `active` flag in the store, so
    claiming it is a conditional write on `active == false`: of two clients
    racing to log in as the same team, exactly one wins.
    """

    def __init__(
        self,
        store: StateStore,
        team_passwords: Dict[str, str],
        admin_user: str,
        admin_password: str,
        allowed_teams: Iterable[str] = None,
    ):
        self.store = store
        self.team_passwords = dict(team_passwords)
        self.allowed_teams = tuple(allowed_teams) if allowed_teams is not None else tuple(self.team_passwords)
        self.admin_user = admin_user
        self.admin_password = admin_password

    @staticmethod
    def _matches(given: str, expected: str) -> bool:
        return hmac.compare_digest((given or "").encode(), (expected or "").encode())

    def check_team_credentials(self, team_name: str, password: str) -> None:
        if team_name not in self.allowed_teams:
            raise UnknownTeamException()
        if not self._matches(password, self.team_passwords.get(team_name, "")):
            raise BadCredentialsException()

    async def login(self, team_name: str, password: str) -> Team:
        """
        Claims the team's session. The claim is the last store call, so once
        it succeeds nothing else can fail before the caller gets the team.
        """
        self.check_team_credentials(team_name, password)

        record = await self.store.get(Collection.TEAMS, team_name)
        if record is None:
            raise NotFoundException(f"Team {team_name} has not been set up yet.")

        claim = asyncio.ensure_future(
            self.store.update(Collection.TEAMS, team_name, {"active": True}, expected={"active": False})
        )
        try:
            claimed = await asyncio.shield(claim)
        except asyncio.CancelledError:
            await self._release_if_claimed(claim, team_name)
            raise
        if not claimed:
            logger.warning(f"Rejected login for {team_name}: a session is already active.")
            raise AlreadyActiveException()

        logger.info(f"Team {team_name} logged in.")
        return StoreTranslator.team_to_domain({**record, "active": True})

    async def _release_if_claimed(self, claim: "asyncio.Future[bool]", team_name: str) -> None:
        # The caller gave up while the claim was in flight; let it finish and
        # hand the session back so the team is not locked out.
        try:
            claimed = await claim
        except ArenaException as e:
            logger.warning(f"Abandoned login for {team_name} did not land: {e.message}")
            return
        if claimed:
            logger.warning(f"Login for {team_name} was abandoned after it landed, releasing the session.")
            await self.logout(team_name)

    async def logout(self, team_name: str) -> None:
        """Idempotent: logging out an inactive team changes nothing."""
        await self.store.update(Collection.TEAMS, team_name, {"active": False})
        logger.info(f"Team {team_name} logged out.")

    def login_admin(self, username: str, password: str) -> bool:
        ok = self._matches(username, self.admin_user) and self._matches(password, self.admin_password)
        if not ok:
            logger.warning("Rejected admin login.")
        return ok

    async def reset_sessions(self) -> int:
        """Marks every team inactive, dropping sessions left behind by abandoned clients."""
        active = [record["name"] for record in await self.store.get_all(Collection.TEAMS) if record.get("active")]
        reset = 0
        async with self.store.transaction() as tx:
            for name in active:
                if await tx.update(Collection.TEAMS, name, {"active": False}):
                    reset += 1
        if reset:
            logger.info(f"Reset {reset} stale team session(s).")
        return reset
