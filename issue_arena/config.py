import os
from typing import Dict, List, Tuple

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, model_validator

from issue_arena.domain.models import Issue, Repository

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///issue_arena.db"

ALLOWED_TEAMS = ("TeamAlpha", "TeamBravo", "TeamCharlie", "TeamDelta")

DEFAULT_TEAM_PASSWORDS = {
    "TeamAlpha": "alpha-2025",
    "TeamBravo": "bravo-2025",
    "TeamCharlie": "charlie-2025",
    "TeamDelta": "delta-2025",
}

DEFAULT_ADMIN_USER = "dvadmin"
DEFAULT_ADMIN_PASSWORD = "2025"

INITIAL_REPOSITORIES = (
    Repository(name="awesome-repo", url="https://github.com/example/awesome-repo"),
    Repository(name="ui-kit", url="https://github.com/example/ui-kit"),
    Repository(name="lib-helpers", url="https://github.com/example/lib-helpers"),
)

# Sample work for a fresh install. Fixed ids keep concurrent seeding from duplicating them.
SAMPLE_ISSUES = (
    Issue(id="sample-1", title="Fix navigation bug", tags=["easy"], repo="awesome-repo"),
    Issue(id="sample-2", title="Implement dark mode", tags=["medium"], repo="ui-kit"),
    Issue(id="sample-3", title="Optimize performance", tags=["hard"], repo="lib-helpers"),
    Issue(id="sample-4", title="Add unit tests", tags=["medium"], repo="awesome-repo"),
    Issue(id="sample-5", title="Update documentation", tags=["easy"], repo="ui-kit"),
)

_TRUTHY = {"1", "true", "yes", "on"}


class Settings(BaseModel):
    """Runtime configuration. Credentials are static by design; this is not a security boundary."""
    model_config = ConfigDict(frozen=True)

    database_url: str = DEFAULT_DATABASE_URL
    teams: Tuple[str, ...] = ALLOWED_TEAMS
    team_passwords: Dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_TEAM_PASSWORDS))
    admin_user: str = DEFAULT_ADMIN_USER
    admin_password: str = DEFAULT_ADMIN_PASSWORD
    initial_repositories: Tuple[Repository, ...] = INITIAL_REPOSITORIES
    seed_issues: bool = Field(False, description="Create SAMPLE_ISSUES when the store has no issues")
    sample_issues: Tuple[Issue, ...] = SAMPLE_ISSUES
    sweep_interval: float = Field(5.0, gt=0, description="Seconds between expiry sweeps")
    command_timeout: float = Field(10.0, gt=0, description="Seconds before a command reports a timeout")

    @model_validator(mode="after")
    def _every_team_has_password(self) -> "Settings":
        missing = [name for name in self.teams if name not in self.team_passwords]
        if missing:
            raise ValueError(f"No password configured for teams: {', '.join(missing)}")
        return self


def _split(raw: str) -> List[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


def _parse_passwords(raw: str) -> Dict[str, str]:
    passwords = {}
    for entry in _split(raw):
        name, sep, password = entry.partition(":")
        if not sep or not name.strip():
            raise ValueError(f"Malformed team password entry: {entry!r} (expected name:password)")
        passwords[name.strip()] = password
    return passwords


def load_settings() -> Settings:
    """Reads settings from the environment, after loading variables from a .env file."""
    load_dotenv()

    values = {}
    if os.getenv("DATABASE_URL"):
        values["database_url"] = os.getenv("DATABASE_URL")
    if os.getenv("ARENA_TEAMS"):
        values["teams"] = tuple(_split(os.getenv("ARENA_TEAMS")))
    if os.getenv("ARENA_TEAM_PASSWORDS"):
        values["team_passwords"] = {**DEFAULT_TEAM_PASSWORDS, **_parse_passwords(os.getenv("ARENA_TEAM_PASSWORDS"))}
    if os.getenv("ARENA_ADMIN_USER"):
        values["admin_user"] = os.getenv("ARENA_ADMIN_USER")
    if os.getenv("ARENA_ADMIN_PASSWORD"):
        values["admin_password"] = os.getenv("ARENA_ADMIN_PASSWORD")
    if os.getenv("ARENA_SWEEP_INTERVAL"):
        values["sweep_interval"] = float(os.getenv("ARENA_SWEEP_INTERVAL"))
    if os.getenv("ARENA_COMMAND_TIMEOUT"):
        values["command_timeout"] = float(os.getenv("ARENA_COMMAND_TIMEOUT"))
    if os.getenv("ARENA_SEED_ISSUES"):
        values["seed_issues"] = os.getenv("ARENA_SEED_ISSUES").strip().lower() in _TRUTHY

    return Settings(**values)
