from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Protocol

from careconnect.core.errors import SubscriptionError
from careconnect.core.sync.filters import Filter


Record = Dict[str, Any]
OnNext = Callable[[List[Record]], None]
OnError = Callable[[SubscriptionError], None]
Unsubscribe = Callable[[], None]


class PartitionSource(Protocol):
    """
    Push-shaped remote data source.

    `subscribe` may call `on_next` synchronously (initial snapshot) or later
    from another thread. Mutations raise MutationError on failure; `update`
    merges fields unless `replace` is set, which overwrites the record.
    """

    def subscribe(self, partition: str, flt: Optional[Filter], on_next: OnNext, on_error: OnError) -> Unsubscribe: ...

    def create(self, partition: str, data: Record) -> Record: ...

    def update(self, partition: str, record_id: Any, data: Record, *, replace: bool = False) -> Record: ...

    def delete(self, partition: str, record_id: Any) -> None: ...
