from enum import Enum
from typing import Any, AsyncContextManager, Callable, Dict, List, Optional, Protocol


class Collection(str, Enum):
    TEAMS = "teams"
    REPOSITORIES = "repositories"
    ISSUES = "issues"


Record = Dict[str, Any]
SnapshotCallback = Callable[[List[Record]], None]
Unsubscribe = Callable[[], None]


class StoreWriter(Protocol):
    """Write operations that can run inside a single store transaction."""

    async def create(self, collection: Collection, record: Record) -> str: ...

    async def delete(self, collection: Collection, entity_id: str) -> bool: ...

    async def update(
        self,
        collection: Collection,
        entity_id: str,
        fields: Record,
        expected: Optional[Record] = None,
    ) -> bool: ...

    async def increment(
        self, collection: Collection, entity_id: str, field: str, delta: int, floor: Optional[int] = 0
    ) -> bool: ...

    async def count(self, collection: Collection, **where: Any) -> int: ...


class StateStore(StoreWriter, Protocol):
    """
    The document store the application talks to.

    Records are plain dicts keyed by column name; timestamps are store-native
    datetimes and must go through the translator before reaching the domain.
    """

    async def get_all(self, collection: Collection) -> List[Record]: ...

    async def get(self, collection: Collection, entity_id: str) -> Optional[Record]: ...

    def subscribe(self, collection: Collection, on_change: SnapshotCallback) -> Unsubscribe: ...

    async def refresh(self) -> None: ...

    def transaction(self) -> AsyncContextManager[StoreWriter]: ...
