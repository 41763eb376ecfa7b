import re
from typing import Dict, Iterable, Optional

from issue_arena.domain.models import Difficulty

MAX_OCCUPIED_ISSUES = 3
MINUTE_MS = 60_000

DEADLINE_MS: Dict[Difficulty, int] = {
    Difficulty.EASY: 20 * MINUTE_MS,
    Difficulty.MEDIUM: 40 * MINUTE_MS,
    Difficulty.HARD: 60 * MINUTE_MS,
}
EXPIRY_PENALTY: Dict[Difficulty, int] = {
    Difficulty.EASY: 5,
    Difficulty.MEDIUM: 10,
    Difficulty.HARD: 15,
}
MERGE_REWARD: Dict[Difficulty, int] = {
    Difficulty.EASY: 10,
    Difficulty.MEDIUM: 20,
    Difficulty.HARD: 30,
}

# https://<host>/<owner>/<repo>/pull/<number>
PR_URL_PATTERN = re.compile(r"^https://[^/\s]+/[^/\s]+/[^/\s]+/pull/[0-9]+/?$")


def difficulty_of(tags: Iterable[str]) -> Optional[Difficulty]:
    """Only the first tag is looked up; multi-tag issues are not disambiguated."""
    for tag in tags:
        try:
            return Difficulty(tag.strip().lower())
        except ValueError:
            return None
    return None


def deadline_ms(tags: Iterable[str]) -> Optional[int]:
    difficulty = difficulty_of(tags)
    return DEADLINE_MS[difficulty] if difficulty else None


def expiry_penalty(tags: Iterable[str]) -> int:
    difficulty = difficulty_of(tags)
    return EXPIRY_PENALTY[difficulty] if difficulty else 0


def merge_reward(tags: Iterable[str]) -> int:
    difficulty = difficulty_of(tags)
    return MERGE_REWARD[difficulty] if difficulty else 0


def is_valid_pr_url(url: Optional[str]) -> bool:
    return bool(url) and PR_URL_PATTERN.match(url.strip()) is not None


def clamp_points(points: int) -> int:
    return max(points, 0)
