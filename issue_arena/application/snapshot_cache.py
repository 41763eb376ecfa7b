import logging
from typing import Callable, Dict, List, Optional

from issue_arena.application.ports import Collection
from issue_arena.domain.models import Issue, IssueStatus, Repository, Team

logger = logging.getLogger(__name__)

Listener = Callable[[Collection], None]


class SnapshotCache:
    """
    Local, eventually consistent replica of the three collections.

    It is only ever replaced wholesale with a snapshot pushed by the store;
    nothing writes to it ahead of the store.
    """

    def __init__(self):
        self._teams: Dict[str, Team] = {}
        self._repositories: Dict[str, Repository] = {}
        self._issues: Dict[str, Issue] = {}
        self._listeners: List[Listener] = []

    def replace_teams(self, teams: List[Team]) -> None:
        self._teams = {team.name: team for team in teams}
        self._notify(Collection.TEAMS)

    def replace_repositories(self, repositories: List[Repository]) -> None:
        self._repositories = {repo.name: repo for repo in repositories}
        self._notify(Collection.REPOSITORIES)

    def replace_issues(self, issues: List[Issue]) -> None:
        self._issues = {issue.id: issue for issue in issues}
        self._notify(Collection.ISSUES)

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _notify(self, collection: Collection) -> None:
        for listener in list(self._listeners):
            try:
                listener(collection)
            except Exception:
                logger.exception(f"Cache listener failed on {collection.value} update.")

    @property
    def teams(self) -> List[Team]:
        return list(self._teams.values())

    @property
    def repositories(self) -> List[Repository]:
        return list(self._repositories.values())

    @property
    def issues(self) -> List[Issue]:
        return list(self._issues.values())

    def team(self, name: str) -> Optional[Team]:
        return self._teams.get(name)

    def issue(self, issue_id: str) -> Optional[Issue]:
        return self._issues.get(issue_id)

    def occupied_issues(self) -> List[Issue]:
        return [issue for issue in self._issues.values() if issue.status == IssueStatus.OCCUPIED]

    def leaderboard(self) -> List[Team]:
        """Teams by points, highest first; ties keep name order."""
        return sorted(self._teams.values(), key=lambda team: (-team.points, team.name))

    def issues_for_repo(self, repo: str) -> Dict[IssueStatus, List[Issue]]:
        grouped: Dict[IssueStatus, List[Issue]] = {status: [] for status in IssueStatus}
        for issue in self._issues.values():
            if issue.repo == repo:
                grouped[issue.status].append(issue)
        return grouped

    def issues_for_team(self, team: str) -> List[Issue]:
        return [issue for issue in self._issues.values() if issue.assigned_to == team]

    def team_progress(self, team: str) -> Dict[str, Dict[str, int]]:
        """
        In-progress and closed counts for a team, per repository plus a
        "total" entry.
        """
        progress = {repo: {"in_progress": 0, "closed": 0} for repo in self._repositories}
        total = {"in_progress": 0, "closed": 0}
        for issue in self.issues_for_team(team):
            if issue.status == IssueStatus.OCCUPIED:
                key = "in_progress"
            elif issue.status == IssueStatus.CLOSED:
                key = "closed"
            else:
                continue
            progress.setdefault(issue.repo, {"in_progress": 0, "closed": 0})[key] += 1
            total[key] += 1
        progress["total"] = total
        return progress

    def inconsistent_issues(self) -> List[Issue]:
        return [issue for issue in self._issues.values() if issue.warnings()]
