from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator


class IssueStatus(str, Enum):
    OPEN = "open"
    OCCUPIED = "occupied"
    CLOSED = "closed"


class PrStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    MERGED = "merged"
    REJECTED = "rejected"


class PrDecision(str, Enum):
    APPROVE = "approve"
    MERGE = "merge"
    REJECT = "reject"


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class Team(BaseModel):
    """
    A competing team. Created once from the allow-list and never deleted.
    """
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Unique, immutable team name")
    points: int = Field(0, ge=0, description="Score, never negative")
    active: bool = Field(False, description="True while a session is open for this team")


class Repository(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Unique repository name")
    url: str = Field(..., description="External link to the repository")

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        value = value.strip()
        scheme, sep, rest = value.partition("://")
        if not sep or scheme not in ("http", "https") or not rest.split("/")[0]:
            raise ValueError("url must be an http(s) link")
        return value


# Issue lifecycle variants. Each one carries only the fields that make sense
# for its status, so an open issue cannot hold an owner or a running clock.

class OpenState(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["open"] = "open"

    @property
    def status(self) -> IssueStatus:
        return IssueStatus.OPEN


class OccupiedState(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["occupied"] = "occupied"
    team: str = Field(..., min_length=1)
    since: int = Field(..., ge=0, description="Epoch ms when the issue was occupied")

    @property
    def status(self) -> IssueStatus:
        return IssueStatus.OCCUPIED


class ClosedState(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["closed"] = "closed"
    team: Optional[str] = None
    closed_at: int = Field(..., ge=0, description="Epoch ms when the issue was closed")
    occupied_at: Optional[int] = Field(None, description="Kept for history only")
    pr_url: str = ""
    pr_status: PrStatus = PrStatus.PENDING

    @property
    def status(self) -> IssueStatus:
        return IssueStatus.CLOSED


class OverrideState(BaseModel):
    """
    Escape hatch for admin corrections that leave the issue in a combination
    the normal lifecycle cannot produce (e.g. occupied with nobody assigned).
    The sweeper ignores issues in this state until an admin settles them.
    """
    model_config = ConfigDict(frozen=True)

    kind: Literal["override"] = "override"
    status: IssueStatus
    assigned_to: Optional[str] = None
    occupied_at: Optional[int] = None
    closed_at: Optional[int] = None
    pr_url: Optional[str] = None
    pr_status: Optional[PrStatus] = None


IssueState = Annotated[
    Union[OpenState, OccupiedState, ClosedState, OverrideState],
    Field(discriminator="kind"),
]


def state_fields(state: IssueState) -> Dict[str, Any]:
    """Flattens a lifecycle variant into the field layout the store uses."""
    fields: Dict[str, Any] = {
        "status": state.status,
        "assigned_to": None,
        "occupied_at": None,
        "closed_at": None,
        "pr_url": None,
        "pr_status": None,
    }
    if isinstance(state, OccupiedState):
        fields.update(assigned_to=state.team, occupied_at=state.since)
    elif isinstance(state, ClosedState):
        fields.update(
            assigned_to=state.team,
            occupied_at=state.occupied_at,
            closed_at=state.closed_at,
            pr_url=state.pr_url,
            pr_status=state.pr_status,
        )
    elif isinstance(state, OverrideState):
        fields.update(state.model_dump(exclude={"kind", "status"}))
    return fields


def settle_state(
    status: IssueStatus,
    assigned_to: Optional[str] = None,
    occupied_at: Optional[int] = None,
    closed_at: Optional[int] = None,
    pr_url: Optional[str] = None,
    pr_status: Optional[PrStatus] = None,
) -> IssueState:
    """
    Builds the lifecycle variant matching a set of flat fields.

    Combinations that satisfy the lifecycle invariants become the matching
    variant; anything else becomes an OverrideState.
    """
    status = IssueStatus(status)
    if status == IssueStatus.OPEN and assigned_to is None:
        return OpenState()
    if status == IssueStatus.OCCUPIED and assigned_to and occupied_at is not None:
        return OccupiedState(team=assigned_to, since=occupied_at)
    if status == IssueStatus.CLOSED and closed_at is not None:
        return ClosedState(
            team=assigned_to,
            closed_at=closed_at,
            occupied_at=occupied_at,
            pr_url=pr_url or "",
            pr_status=pr_status or PrStatus.PENDING,
        )
    return OverrideState(
        status=status,
        assigned_to=assigned_to,
        occupied_at=occupied_at,
        closed_at=closed_at,
        pr_url=pr_url,
        pr_status=pr_status,
    )


class Issue(BaseModel):
    """
    A unit of work tied to a repository.

    The lifecycle lives in `state`; the flat properties below mirror the
    stored layout for read-only callers.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    tags: List[str] = Field(..., min_length=1, description="First tag is the difficulty marker")
    repo: str = Field(..., description="Name of the owning repository")
    state: IssueState = Field(default_factory=OpenState)
    rewarded: bool = Field(False, description="Merge points already paid for this issue")
    version: int = Field(0, ge=0, description="Optimistic concurrency counter")

    def flat_fields(self) -> Dict[str, Any]:
        return state_fields(self.state)

    @property
    def status(self) -> IssueStatus:
        return self.state.status

    @property
    def assigned_to(self) -> Optional[str]:
        return self.flat_fields()["assigned_to"]

    @property
    def occupied_at(self) -> Optional[int]:
        return self.flat_fields()["occupied_at"]

    @property
    def closed_at(self) -> Optional[int]:
        return self.flat_fields()["closed_at"]

    @property
    def pr_url(self) -> Optional[str]:
        return self.flat_fields()["pr_url"]

    @property
    def pr_status(self) -> Optional[PrStatus]:
        return self.flat_fields()["pr_status"]

    @property
    def consistent(self) -> bool:
        return not isinstance(self.state, OverrideState)

    def with_state(self, state: IssueState, **changes: Any) -> "Issue":
        return self.model_copy(update={"state": state, **changes})

    def warnings(self) -> List[str]:
        """Human-readable problems an admin should look at."""
        problems = []
        if not self.consistent:
            problems.append(
                f"Issue {self.id} is '{self.status.value}' with fields that do not match that status."
            )
        if self.status == IssueStatus.CLOSED and not self.pr_url:
            problems.append(f"Issue {self.id} is closed without a pull request link.")
        return problems


class NewIssue(BaseModel):
    """Fields an admin submits to create an issue. New issues always start open."""
    model_config = ConfigDict(frozen=True)

    title: str = Field(..., min_length=1)
    tags: List[str] = Field(..., min_length=1)
    repo: str = Field(..., min_length=1)

    @field_validator("title", "repo")
    @classmethod
    def _strip(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("tags")
    @classmethod
    def _one_difficulty_first(cls, tags: List[str]) -> List[str]:
        cleaned = []
        for tag in tags:
            tag = tag.strip().lower()
            if tag and tag not in cleaned:
                cleaned.append(tag)
        markers = [tag for tag in cleaned if tag in {d.value for d in Difficulty}]
        if len(markers) != 1:
            raise ValueError("exactly one of easy, medium or hard is required")
        # The difficulty lookup reads the first tag only.
        return markers + [tag for tag in cleaned if tag != markers[0]]
