import asyncio
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError

from issue_arena.application.expiry_sweeper import ExpirySweeper
from issue_arena.application.issue_writer import IssueWriter
from issue_arena.application.ports import Collection, Record, StateStore
from issue_arena.application.session_guard import SessionGuard
from issue_arena.application.snapshot_cache import Listener, SnapshotCache
from issue_arena.config import Settings
from issue_arena.domain import state_machine
from issue_arena.domain.exceptions import (
    AlreadyActiveException,
    AlreadyExistsException,
    ArenaException,
    BadCredentialsException,
    CommandTimeoutException,
    FailureKind,
    InvalidInputException,
    NotAuthorizedException,
    NotFoundException,
    NotLoggedInException,
    StoreUnavailableException,
    UnknownTeamException,
)
from issue_arena.domain.models import (
    Issue,
    IssueStatus,
    NewIssue,
    PrDecision,
    PrStatus,
    Repository,
    Team,
)
from issue_arena.domain.state_machine import Transition
from issue_arena.infrastructure.acl import StoreTranslator, utc_now_ms

logger = logging.getLogger(__name__)

# Decisions may also be given as the resulting PR status.
_DECISION_ALIASES = {
    PrStatus.APPROVED.value: PrDecision.APPROVE,
    PrStatus.MERGED.value: PrDecision.MERGE,
    PrStatus.REJECTED.value: PrDecision.REJECT,
}


class CommandResult(BaseModel):
    """Outcome of a command, ready to be shown to the user as-is."""
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    ok: bool
    kind: Optional[FailureKind] = None
    message: str = ""
    value: Any = None

    @classmethod
    def success(cls, value: Any = None, message: str = "Done.") -> "CommandResult":
        return cls(ok=True, message=message, value=value)

    @classmethod
    def failure(cls, error: ArenaException) -> "CommandResult":
        return cls(ok=False, kind=error.kind, message=error.message)


def _invalid_input(error: ValidationError) -> InvalidInputException:
    first = error.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or "input"
    return InvalidInputException(f"{field}: {first.get('msg', 'invalid value')}")


class ArenaService:
    """
    The single entry point for presentation code.

    Commands validate against the session and the state machine, persist
    through the store, and return a CommandResult; they never raise. The
    local cache is refreshed only by store snapshots, so after a command the
    caller sees the state the store accepted, not the state it asked for.
    """

    def __init__(
        self,
        store: StateStore,
        settings: Settings = None,
        clock: Callable[[], int] = utc_now_ms,
    ):
        self.store = store
        self.settings = settings or Settings()
        self.clock = clock
        self.cache = SnapshotCache()
        self.guard = SessionGuard(
            store,
            team_passwords=self.settings.team_passwords,
            admin_user=self.settings.admin_user,
            admin_password=self.settings.admin_password,
            allowed_teams=self.settings.teams,
        )
        self.writer = IssueWriter(store)
        self.sweeper = ExpirySweeper(
            store, self.cache, interval=self.settings.sweep_interval, clock=clock
        )
        self.current_team: Optional[str] = None
        self.is_admin = False
        self._unsubscribers: List[Callable[[], None]] = []

    # ---- lifecycle ----

    async def start(self, run_sweeper: bool = True, reset_sessions: bool = True) -> None:
        """
        Seeds missing reference data, clears stale sessions, then subscribes.
        Session cleanup must happen before the first snapshot is delivered.
        """
        await self._seed()
        if reset_sessions:
            await self.guard.reset_sessions()

        self._unsubscribers = [
            self.store.subscribe(Collection.TEAMS, self._on_teams),
            self.store.subscribe(Collection.REPOSITORIES, self._on_repositories),
            self.store.subscribe(Collection.ISSUES, self._on_issues),
        ]
        await self.store.refresh()

        if run_sweeper:
            self.sweeper.start()
        logger.info("Arena service started.")

    async def close(self) -> None:
        await self.sweeper.stop()
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    async def _seed(self) -> None:
        if not await self.store.get_all(Collection.TEAMS):
            teams = [Team(name=name) for name in self.settings.teams]
            await self._seed_collection(Collection.TEAMS, [StoreTranslator.team_to_record(t) for t in teams])
        if not await self.store.get_all(Collection.REPOSITORIES):
            await self._seed_collection(
                Collection.REPOSITORIES,
                [StoreTranslator.repository_to_record(r) for r in self.settings.initial_repositories],
            )
        if self.settings.seed_issues and not await self.store.get_all(Collection.ISSUES):
            await self._seed_collection(
                Collection.ISSUES,
                [StoreTranslator.issue_to_record(issue) for issue in self.settings.sample_issues],
            )

    async def _seed_collection(self, collection: Collection, records: List[Record]) -> None:
        try:
            async with self.store.transaction() as tx:
                for record in records:
                    await tx.create(collection, record)
        except AlreadyExistsException:
            logger.info(f"{collection.value} were seeded concurrently by another client.")
            return
        logger.info(f"Seeded {len(records)} {collection.value}.")

    # ---- subscriptions ----

    @staticmethod
    def _translate_all(records: List[Record], translate: Callable[[Record], Any], label: str) -> List[Any]:
        entities = []
        for record in records:
            try:
                entities.append(translate(record))
            except (ValueError, KeyError) as e:
                logger.warning(f"Skipping malformed {label} record {record!r}: {e}")
        return entities

    def _on_teams(self, records: List[Record]) -> None:
        self.cache.replace_teams(self._translate_all(records, StoreTranslator.team_to_domain, "team"))

    def _on_repositories(self, records: List[Record]) -> None:
        self.cache.replace_repositories(
            self._translate_all(records, StoreTranslator.repository_to_domain, "repository")
        )

    def _on_issues(self, records: List[Record]) -> None:
        self.cache.replace_issues(self._translate_all(records, StoreTranslator.issue_to_domain, "issue"))

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        return self.cache.add_listener(listener)

    # ---- command plumbing ----

    async def _run(self, name: str, command: Awaitable[Any], message: str = "Done.") -> CommandResult:
        try:
            value = await asyncio.wait_for(command, timeout=self.settings.command_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"{name} timed out after {self.settings.command_timeout}s.")
            return CommandResult.failure(CommandTimeoutException())
        except ArenaException as e:
            logger.warning(f"{name} rejected ({e.kind.value}): {e.message}")
            return CommandResult.failure(e)
        except Exception:
            logger.exception(f"{name} failed unexpectedly.")
            return CommandResult.failure(StoreUnavailableException())
        return CommandResult.success(value, message)

    def _require_team(self) -> str:
        if self.current_team is None:
            raise NotLoggedInException()
        return self.current_team

    def _require_admin(self) -> None:
        if not self.is_admin:
            raise NotAuthorizedException()

    async def _require_known_team(self, team_name: str) -> None:
        if await self.store.get(Collection.TEAMS, team_name) is None:
            raise UnknownTeamException(f"No team named {team_name}.")

    async def _transition(
        self,
        issue_id: str,
        compute: Callable[[Issue], Transition],
        quota_team: Optional[str] = None,
    ) -> Issue:
        async def evaluate(issue: Issue) -> Transition:
            return compute(issue)

        transition = await self.writer.apply(issue_id, evaluate, quota_team=quota_team)
        return transition.issue

    # ---- team session ----

    async def login_team(self, team_name: str, password: str) -> CommandResult:
        async def command() -> Team:
            if self.current_team is not None:
                raise AlreadyActiveException(f"This client is already logged in as {self.current_team}.")
            team = await self.guard.login(team_name, password)
            self.current_team = team.name
            return team

        return await self._run("login_team", command(), f"Welcome, {team_name}!")

    async def logout_team(self) -> CommandResult:
        async def command() -> None:
            if self.current_team is None:
                return
            await self.guard.logout(self.current_team)
            self.current_team = None

        return await self._run("logout_team", command(), "Logged out.")

    # ---- admin session ----

    async def login_admin(self, username: str, password: str) -> CommandResult:
        async def command() -> bool:
            if not self.guard.login_admin(username, password):
                raise BadCredentialsException("Invalid admin credentials.")
            self.is_admin = True
            return True

        return await self._run("login_admin", command(), "Admin access granted.")

    async def logout_admin(self) -> CommandResult:
        async def command() -> None:
            self.is_admin = False

        return await self._run("logout_admin", command(), "Admin logged out.")

    # ---- team commands ----

    async def occupy_issue(self, issue_id: str) -> CommandResult:
        async def command() -> Issue:
            team = self._require_team()

            async def evaluate(issue: Issue) -> Transition:
                held = await self.store.count(
                    Collection.ISSUES, status=IssueStatus.OCCUPIED.value, assigned_to=team
                )
                return Transition(issue=state_machine.occupy(issue, team, held, self.clock()))

            transition = await self.writer.apply(issue_id, evaluate, quota_team=team)
            logger.info(f"{team} occupied issue {issue_id}.")
            return transition.issue

        return await self._run("occupy_issue", command(), "Issue occupied successfully!")

    async def close_issue(self, issue_id: str, pr_url: str) -> CommandResult:
        async def command() -> Issue:
            team = self._require_team()
            issue = await self._transition(
                issue_id, lambda current: Transition(issue=state_machine.close(current, team, pr_url, self.clock()))
            )
            logger.info(f"{team} closed issue {issue_id} with {issue.pr_url}.")
            return issue

        return await self._run("close_issue", command(), "Issue closed. Your pull request is awaiting review.")

    # ---- admin commands ----

    @staticmethod
    def _parse_decision(decision: Union[str, PrDecision]) -> PrDecision:
        value = decision.value if isinstance(decision, PrDecision) else str(decision).strip().lower()
        if value in _DECISION_ALIASES:
            return _DECISION_ALIASES[value]
        try:
            return PrDecision(value)
        except ValueError:
            raise InvalidInputException(f"Unknown review decision: {decision!r}.")

    async def update_pr_status(self, issue_id: str, decision: Union[str, PrDecision]) -> CommandResult:
        async def command() -> Issue:
            self._require_admin()
            parsed = self._parse_decision(decision)

            async def evaluate(issue: Issue) -> Transition:
                return state_machine.review_pr(issue, parsed)

            transition = await self.writer.apply(issue_id, evaluate)
            for team, delta in transition.point_deltas.items():
                logger.info(f"Merged issue {issue_id}: awarded {delta} points to {team}.")
            return transition.issue

        return await self._run("update_pr_status", command(), "Pull request status updated.")

    async def award_points(self, team_name: str, points: int) -> CommandResult:
        async def command() -> int:
            self._require_admin()
            if isinstance(points, bool) or not isinstance(points, int):
                raise InvalidInputException("Points must be a whole number.")
            if not await self.store.increment(Collection.TEAMS, team_name, "points", points, floor=0):
                raise UnknownTeamException(f"No team named {team_name}.")
            logger.info(f"Awarded {points} points to {team_name}.")
            return points

        return await self._run("award_points", command(), f"Awarded {points} points to {team_name}!")

    async def assign_issue(self, issue_id: str, team_name: Optional[str]) -> CommandResult:
        async def command() -> Issue:
            self._require_admin()
            if team_name is not None:
                await self._require_known_team(team_name)
            return await self._transition(issue_id, lambda current: Transition(issue=state_machine.assign(current, team_name)))

        return await self._run("assign_issue", command(), "Issue assignment updated.")

    async def move_issue(self, issue_id: str, status: Union[str, IssueStatus]) -> CommandResult:
        async def command() -> Issue:
            self._require_admin()
            try:
                target = IssueStatus(status)
            except ValueError:
                raise InvalidInputException(f"Unknown issue status: {status!r}.")
            return await self._transition(issue_id, lambda current: Transition(issue=state_machine.move_status(current, target)))

        return await self._run("move_issue", command(), "Issue moved.")

    async def add_issue(self, fields: Union[NewIssue, Dict[str, Any]]) -> CommandResult:
        async def command() -> str:
            self._require_admin()
            try:
                new_issue = NewIssue.model_validate(fields)
            except ValidationError as e:
                raise _invalid_input(e)
            if await self.store.get(Collection.REPOSITORIES, new_issue.repo) is None:
                raise NotFoundException(f"No repository named {new_issue.repo}.")

            issue = Issue(id=uuid.uuid4().hex, title=new_issue.title, tags=new_issue.tags, repo=new_issue.repo)
            issue_id = await self.store.create(Collection.ISSUES, StoreTranslator.issue_to_record(issue))
            logger.info(f"Created issue {issue_id} in {new_issue.repo}.")
            return issue_id

        return await self._run("add_issue", command(), "Issue created.")

    async def delete_issue(self, issue_id: str) -> CommandResult:
        async def command() -> None:
            self._require_admin()
            if not await self.store.delete(Collection.ISSUES, issue_id):
                raise NotFoundException(f"Issue {issue_id} does not exist.")

        return await self._run("delete_issue", command(), "Issue deleted.")

    async def add_repository(self, fields: Union[Repository, Dict[str, Any]]) -> CommandResult:
        async def command() -> str:
            self._require_admin()
            try:
                repository = Repository.model_validate(fields)
            except ValidationError as e:
                raise _invalid_input(e)
            return await self.store.create(Collection.REPOSITORIES, StoreTranslator.repository_to_record(repository))

        return await self._run("add_repository", command(), "Repository added.")

    async def delete_repository(self, name: str) -> CommandResult:
        async def command() -> None:
            self._require_admin()
            if not await self.store.delete(Collection.REPOSITORIES, name):
                raise NotFoundException(f"No repository named {name}.")

        return await self._run("delete_repository", command(), "Repository deleted.")

    # ---- queries (served from the cache) ----

    @property
    def teams(self) -> List[Team]:
        return self.cache.teams

    @property
    def issues(self) -> List[Issue]:
        return self.cache.issues

    @property
    def repositories(self) -> List[Repository]:
        return self.cache.repositories

    @property
    def team(self) -> Optional[Team]:
        """Latest snapshot of the logged-in team."""
        return self.cache.team(self.current_team) if self.current_team else None

    def issue(self, issue_id: str) -> Optional[Issue]:
        return self.cache.issue(issue_id)

    def leaderboard(self) -> List[Team]:
        return self.cache.leaderboard()

    def issues_for_repo(self, repo: str) -> Dict[IssueStatus, List[Issue]]:
        return self.cache.issues_for_repo(repo)

    def issues_for_team(self, team_name: str = None) -> List[Issue]:
        return self.cache.issues_for_team(team_name or self.current_team)

    def team_progress(self, team_name: str = None) -> Dict[str, Dict[str, int]]:
        return self.cache.team_progress(team_name or self.current_team)

    def inconsistent_issues(self) -> List[Issue]:
        return self.cache.inconsistent_issues()

    def remaining_ms(self, issue_id: str) -> Optional[int]:
        """Countdown until the sweeper may expire the issue, or None when it has no deadline."""
        issue = self.cache.issue(issue_id)
        return state_machine.remaining_ms(issue, self.clock()) if issue else None
