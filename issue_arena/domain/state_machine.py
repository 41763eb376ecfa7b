"""
Issue and team transitions.

Every function here is pure: it takes frozen models plus the current time in
epoch milliseconds and returns new models, raising a domain exception when a
precondition does not hold. Persisting the result is the caller's job.

    open --occupy--> occupied --close--> closed --review_pr--> closed (pr decided)
      ^                  |
      +-----expire-------+

Admin overrides (`assign`, `move_status`) may jump anywhere and can leave an
issue in an OverrideState.
"""
from typing import Dict, Optional
from pydantic import BaseModel, ConfigDict, Field

from issue_arena.domain import rules
from issue_arena.domain.exceptions import (
    AlreadyOccupiedException,
    InvalidPrUrlException,
    InvalidStateException,
    NotOwnerException,
    QuotaExceededException,
)
from issue_arena.domain.models import (
    ClosedState,
    Issue,
    IssueStatus,
    OccupiedState,
    OpenState,
    PrDecision,
    PrStatus,
    Team,
    settle_state,
)

_DECISION_STATUS = {
    PrDecision.APPROVE: PrStatus.APPROVED,
    PrDecision.MERGE: PrStatus.MERGED,
    PrDecision.REJECT: PrStatus.REJECTED,
}


class Transition(BaseModel):
    """New issue state plus the point deltas it implies, keyed by team name."""
    model_config = ConfigDict(frozen=True)

    issue: Issue
    point_deltas: Dict[str, int] = Field(default_factory=dict)


def occupy(issue: Issue, team: str, occupied_count: int, now: int) -> Issue:
    if issue.status != IssueStatus.OPEN or not issue.consistent:
        raise AlreadyOccupiedException()
    if occupied_count >= rules.MAX_OCCUPIED_ISSUES:
        raise QuotaExceededException(
            f"Your team already holds {rules.MAX_OCCUPIED_ISSUES} issues. Close one first."
        )
    return issue.with_state(OccupiedState(team=team, since=now))


def close(issue: Issue, team: str, pr_url: str, now: int) -> Issue:
    state = issue.state
    if not isinstance(state, OccupiedState):
        raise InvalidStateException("Only occupied issues can be closed.")
    if state.team != team:
        raise NotOwnerException(f"This issue is occupied by {state.team}.")
    if not rules.is_valid_pr_url(pr_url):
        raise InvalidPrUrlException()
    return issue.with_state(
        ClosedState(
            team=team,
            closed_at=now,
            occupied_at=state.since,
            pr_url=pr_url.strip(),
            pr_status=PrStatus.PENDING,
        )
    )


def review_pr(issue: Issue, decision: PrDecision) -> Transition:
    """
    Records an admin decision on a closed issue's pull request.

    Only a merge pays, and only the first one: `rewarded` is flipped on the
    issue so re-reviews never pay twice.
    """
    state = issue.state
    if not isinstance(state, ClosedState):
        raise InvalidStateException("Only closed issues have a pull request to review.")

    decision = PrDecision(decision)
    reviewed = state.model_copy(update={"pr_status": _DECISION_STATUS[decision]})
    deltas: Dict[str, int] = {}
    rewarded = issue.rewarded
    # An unassigned merge pays nobody and leaves the reward for a later merge.
    if decision == PrDecision.MERGE and not issue.rewarded and state.team:
        rewarded = True
        reward = rules.merge_reward(issue.tags)
        if reward:
            deltas[state.team] = reward
    return Transition(issue=issue.with_state(reviewed, rewarded=rewarded), point_deltas=deltas)


def deadline_at(issue: Issue) -> Optional[int]:
    if not isinstance(issue.state, OccupiedState):
        return None
    limit = rules.deadline_ms(issue.tags)
    if limit is None:
        return None
    return issue.state.since + limit


def remaining_ms(issue: Issue, now: int) -> Optional[int]:
    deadline = deadline_at(issue)
    if deadline is None:
        return None
    return max(deadline - now, 0)


def is_expired(issue: Issue, now: int) -> bool:
    deadline = deadline_at(issue)
    return deadline is not None and now >= deadline


def expire(issue: Issue, now: int) -> Optional[Transition]:
    """
    Resets an overdue occupied issue to open and charges the holder.

    Returns None when there is nothing to do, which makes repeated sweeps over
    the same issue harmless.
    """
    if not is_expired(issue, now):
        return None
    team = issue.state.team
    penalty = rules.expiry_penalty(issue.tags)
    deltas = {team: -penalty} if penalty else {}
    return Transition(issue=issue.with_state(OpenState()), point_deltas=deltas)


def apply_points(team: Team, delta: int) -> Team:
    return team.model_copy(update={"points": rules.clamp_points(team.points + delta)})


def award_adhoc(team: Team, points: int) -> Team:
    return apply_points(team, points)


def assign(issue: Issue, team: Optional[str]) -> Issue:
    """Admin override: force the assignee without touching status or clocks."""
    fields = issue.flat_fields()
    fields["assigned_to"] = team
    return issue.with_state(settle_state(**fields))


def move_status(issue: Issue, status: IssueStatus) -> Issue:
    """Admin override: force the status without touching assignee or clocks."""
    fields = issue.flat_fields()
    fields["status"] = IssueStatus(status)
    return issue.with_state(settle_state(**fields))
