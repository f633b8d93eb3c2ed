"""Three-way diff between the running and the desired request sets."""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from lockstep.errors import InvalidDesiredSetError
from lockstep.protocol.request import RequestDescriptor

Fingerprint = tuple[Any, ...]


@dataclass
class ReconcilePlan:
    """What a reconciliation pass has to do, by tracker id, each list sorted.

    ``changed`` ids appear in both ``dead`` and ``new``: the running request
    has to go before its replacement starts.
    """

    dead: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    new: list[str] = field(default_factory=list)
    changed: list[str] = field(default_factory=list)

    @property
    def is_noop(self) -> bool:
        return not self.dead and not self.new


def diff(
    running: Mapping[str, Fingerprint],
    desired: Mapping[str, RequestDescriptor[Any]],
) -> ReconcilePlan:
    """Merge the two id sets in one pass over their sorted keys.

    Args:
        running: Fingerprint of each tracker's live request
        desired: The request each tracker should be running

    Returns:
        ReconcilePlan: Dead, unchanged, new and changed tracker ids
    """
    plan = ReconcilePlan()
    running_ids = sorted(running)
    desired_ids = sorted(desired)
    i = j = 0

    while i < len(running_ids) and j < len(desired_ids):
        running_id = running_ids[i]
        desired_id = desired_ids[j]

        if running_id < desired_id:
            plan.dead.append(running_id)
            i += 1
        elif desired_id < running_id:
            plan.new.append(desired_id)
            j += 1
        else:
            if running[running_id] == desired[desired_id].fingerprint():
                plan.unchanged.append(running_id)
            else:
                plan.dead.append(running_id)
                plan.new.append(desired_id)
                plan.changed.append(desired_id)
            i += 1
            j += 1

    plan.dead.extend(running_ids[i:])
    plan.new.extend(desired_ids[j:])
    return plan


def desired_set(
    requests: Mapping[str, RequestDescriptor[Any]] | Sequence[RequestDescriptor[Any]],
) -> dict[str, RequestDescriptor[Any]]:
    """Normalize a desired set into a ``tracker id -> descriptor`` dict.

    A mapping is taken as is, except that a descriptor whose own tracker id
    disagrees with its key is rejected. A sequence is keyed by each
    descriptor's tracker id.

    Raises:
        InvalidDesiredSetError: If a descriptor is untracked, or a tracker id
            appears twice.
    """
    if isinstance(requests, Mapping):
        for tracker_id, request in requests.items():
            if request.tracker_id is not None and request.tracker_id != tracker_id:
                raise InvalidDesiredSetError(
                    f"Request for '{request.url}' is keyed as '{tracker_id}' "
                    f"but tracks '{request.tracker_id}'"
                )
        return dict(requests)

    result: dict[str, RequestDescriptor[Any]] = {}
    for request in requests:
        if request.tracker_id is None:
            raise InvalidDesiredSetError(
                f"Request for '{request.url}' has no tracker id; use send() instead"
            )
        if request.tracker_id in result:
            raise InvalidDesiredSetError(
                f"Tracker '{request.tracker_id}' is requested more than once"
            )
        result[request.tracker_id] = request
    return result
