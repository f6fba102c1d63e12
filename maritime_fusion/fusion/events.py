"""
Track Event Channel

Publishes track lifecycle events (created / updated / removed) to any
number of subscribers. Each subscriber owns a queue and drains it on its
own schedule; the track manager never calls into consumer code.
"""

import logging
import queue
import threading
from typing import List, Optional

from .schema import TrackEvent

logger = logging.getLogger(__name__)


class Subscription:
    """One consumer's view of the channel"""

    def __init__(self, channel: "TrackEventChannel", maxsize: int = 0):
        self._channel = channel
        self.queue: "queue.Queue[TrackEvent]" = queue.Queue(maxsize=maxsize)
        self.dropped = 0

    def get(self, timeout: Optional[float] = None) -> Optional[TrackEvent]:
        """Next event, waiting up to timeout seconds (None if nothing arrived)"""
        try:
            if timeout is None:
                return self.queue.get_nowait()
            return self.queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self, max_items: Optional[int] = None) -> List[TrackEvent]:
        """All pending events, oldest first"""
        events: List[TrackEvent] = []
        while max_items is None or len(events) < max_items:
            try:
                events.append(self.queue.get_nowait())
            except queue.Empty:
                break
        return events

    def pending(self) -> int:
        return self.queue.qsize()

    def close(self):
        self._channel.unsubscribe(self)


class TrackEventChannel:
    """
    Fan-out channel for track lifecycle events.

    publish() never blocks: a full subscriber queue drops the event for
    that subscriber and counts it.
    """

    def __init__(self, maxsize: int = 0):
        self.maxsize = maxsize
        self._subscribers: List[Subscription] = []
        self._lock = threading.Lock()
        self.published = 0

    def subscribe(self, maxsize: Optional[int] = None) -> Subscription:
        subscription = Subscription(self, self.maxsize if maxsize is None else maxsize)
        with self._lock:
            self._subscribers.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription):
        with self._lock:
            if subscription in self._subscribers:
                self._subscribers.remove(subscription)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, event: TrackEvent):
        with self._lock:
            subscribers = list(self._subscribers)
            self.published += 1

        for subscription in subscribers:
            try:
                subscription.queue.put_nowait(event)
            except queue.Full:
                subscription.dropped += 1
                logger.warning(f"Event queue full, dropped {event.kind.value} for {event.track_id}")
