from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Any

from lockstep.protocol.request import RequestDescriptor


@dataclass
class RegistryEntry:
    """Bookkeeping for the live request of one tracker."""

    tracker_id: str
    request: RequestDescriptor[Any]
    cancel: Callable[[], None]

    # Id of the operation whose messages are routed to subscribers. None
    # while a rate-limited tracker has nothing in flight.
    operation_id: int | None = None
    settled: bool = False
    rate_limited: bool = False
    fingerprint: tuple[Any, ...] = field(init=False)

    def __post_init__(self) -> None:
        self.fingerprint = self.request.fingerprint()

    def replace_request(self, request: RequestDescriptor[Any]) -> None:
        self.request = request
        self.fingerprint = request.fingerprint()


class TrackerRegistry:
    """Owns the mapping of tracker id to its live request.

    Only the engine's control loop touches a registry, so it holds no locks.
    """

    def __init__(self) -> None:
        self._entries: dict[str, RegistryEntry] = {}

    def __contains__(self, tracker_id: str) -> bool:
        return tracker_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[RegistryEntry]:
        return iter(list(self._entries.values()))

    def get(self, tracker_id: str) -> RegistryEntry | None:
        return self._entries.get(tracker_id)

    def add(self, entry: RegistryEntry) -> None:
        """Insert an entry.

        Raises:
            ValueError: If the tracker already has an entry. The old one must
                be cancelled and removed first.
        """
        if entry.tracker_id in self._entries:
            raise ValueError(f"Tracker '{entry.tracker_id}' already has a live entry")
        self._entries[entry.tracker_id] = entry

    def remove(self, tracker_id: str) -> RegistryEntry | None:
        return self._entries.pop(tracker_id, None)

    def tracker_ids(self) -> list[str]:
        return sorted(self._entries)

    def fingerprints(self) -> dict[str, tuple[Any, ...]]:
        return {tid: entry.fingerprint for tid, entry in self._entries.items()}

    def is_current(self, tracker_id: str | None, operation_id: int) -> bool:
        """True if the operation is the one currently routed for the tracker."""
        if tracker_id is None:
            return False
        entry = self._entries.get(tracker_id)
        return (
            entry is not None
            and not entry.settled
            and entry.operation_id == operation_id
        )

    def clear(self) -> None:
        self._entries.clear()
