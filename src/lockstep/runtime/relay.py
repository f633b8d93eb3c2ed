import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from lockstep.protocol.events import ProgressEvent

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Awaitable[None] | None]
ToMsg = Callable[[ProgressEvent], Any]


class Subscription:
    """One application listener for one tracker id."""

    def __init__(
        self,
        relay: "ProgressRelay",
        tracker_id: str,
        handler: Handler,
        to_msg: ToMsg | None = None,
    ):
        self.tracker_id = tracker_id
        self.handler = handler
        self.to_msg = to_msg
        self._relay = relay

    @property
    def active(self) -> bool:
        return self._relay.is_subscribed(self)

    def unsubscribe(self) -> None:
        """Stop receiving events. Safe to call multiple times."""
        self._relay.remove(self)


class ProgressRelay:
    """Routes tracker events to whoever currently listens for them.

    The relay has no memory of past events. An event for a tracker nobody
    listens to is dropped: the application's subscriptions are the only
    statement of what it wants to hear.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Subscription]] = {}

    def subscribe(
        self, tracker_id: str, handler: Handler, to_msg: ToMsg | None = None
    ) -> Subscription:
        """Register your handler for events of ``tracker_id``.

        Args:
            tracker_id: Tracker to listen to
            handler: Sync or async callable receiving each message
            to_msg: Translates each event into your own message type before
                it reaches the handler. Events pass through unchanged when
                omitted.
        """
        subscription = Subscription(self, tracker_id, handler, to_msg)
        self._subscribers.setdefault(tracker_id, []).append(subscription)
        return subscription

    def remove(self, subscription: Subscription) -> None:
        subscribers = self._subscribers.get(subscription.tracker_id)
        if not subscribers or subscription not in subscribers:
            return
        subscribers.remove(subscription)
        if not subscribers:
            del self._subscribers[subscription.tracker_id]

    def is_subscribed(self, subscription: Subscription) -> bool:
        return subscription in self._subscribers.get(subscription.tracker_id, [])

    def subscriber_count(self, tracker_id: str) -> int:
        return len(self._subscribers.get(tracker_id, []))

    def clear(self) -> None:
        self._subscribers.clear()

    async def dispatch(self, tracker_id: str, event: ProgressEvent) -> int:
        """Deliver ``event`` to every current subscriber of the tracker.

        Handler failures are logged and do not stop delivery to the others.

        Returns:
            int: Number of subscribers the event was delivered to.
        """
        subscribers = list(self._subscribers.get(tracker_id, []))
        if not subscribers:
            return 0

        delivered = 0
        for subscription in subscribers:
            try:
                message = (
                    subscription.to_msg(event)
                    if subscription.to_msg is not None
                    else event
                )
                result = subscription.handler(message)
                if inspect.isawaitable(result):
                    await result
                delivered += 1
            except Exception as e:
                logger.warning(f"Subscriber for '{tracker_id}' failed: {e!r}")
        return delivered
