from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from issue_arena.domain.models import Issue, PrStatus, Repository, Team, settle_state

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
ONE_MS = timedelta(milliseconds=1)


def to_epoch_ms(value: Any) -> Optional[int]:
    """
    Normalizes a store-native time value into epoch milliseconds.

    Naive datetimes are read as UTC (SQLite drops the offset on the way out).
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return (value - EPOCH) // ONE_MS
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return int(value)
    raise ValueError(f"Unsupported timestamp value: {value!r}")


def from_epoch_ms(value: Optional[int]) -> Optional[datetime]:
    if value is None:
        return None
    return EPOCH + timedelta(milliseconds=value)


def utc_now_ms() -> int:
    return to_epoch_ms(datetime.now(timezone.utc))


class StoreTranslator:
    """
    Anti-corruption layer between raw store records and the domain models.
    The domain never sees store-specific time types.
    """

    @staticmethod
    def team_to_domain(record: Dict[str, Any]) -> Team:
        return Team(
            name=record["name"],
            points=max(int(record.get("points") or 0), 0),
            active=bool(record.get("active", False)),
        )

    @staticmethod
    def team_to_record(team: Team) -> Dict[str, Any]:
        return {"name": team.name, "points": team.points, "active": team.active}

    @staticmethod
    def repository_to_domain(record: Dict[str, Any]) -> Repository:
        return Repository(name=record["name"], url=record["url"])

    @staticmethod
    def repository_to_record(repository: Repository) -> Dict[str, Any]:
        return {"name": repository.name, "url": repository.url}

    @staticmethod
    def issue_to_domain(record: Dict[str, Any]) -> Issue:
        """
        Builds an Issue from a raw record. Fields that do not line up with
        the stored status end up in an OverrideState instead of failing.
        """
        if not record.get("status"):
            raise ValueError("status is required to build an Issue.")

        pr_status = record.get("pr_status")
        state = settle_state(
            status=record["status"],
            assigned_to=record.get("assigned_to"),
            occupied_at=to_epoch_ms(record.get("occupied_at")),
            closed_at=to_epoch_ms(record.get("closed_at")),
            pr_url=record.get("pr_url"),
            pr_status=PrStatus(pr_status) if pr_status else None,
        )
        return Issue(
            id=str(record["id"]),
            title=record.get("title", ""),
            tags=list(record.get("tags") or []),
            repo=record.get("repo", ""),
            state=state,
            rewarded=bool(record.get("rewarded", False)),
            version=int(record.get("version") or 0),
        )

    @staticmethod
    def issue_state_to_record(issue: Issue) -> Dict[str, Any]:
        """Only the lifecycle fields, in store layout."""
        fields = issue.flat_fields()
        return {
            "status": fields["status"].value,
            "assigned_to": fields["assigned_to"],
            "occupied_at": from_epoch_ms(fields["occupied_at"]),
            "closed_at": from_epoch_ms(fields["closed_at"]),
            "pr_url": fields["pr_url"],
            "pr_status": fields["pr_status"].value if fields["pr_status"] else None,
            "rewarded": issue.rewarded,
        }

    @staticmethod
    def issue_to_record(issue: Issue) -> Dict[str, Any]:
        record = {
            "id": issue.id,
            "title": issue.title,
            "tags": list(issue.tags),
            "repo": issue.repo,
            "version": issue.version,
        }
        record.update(StoreTranslator.issue_state_to_record(issue))
        return record
