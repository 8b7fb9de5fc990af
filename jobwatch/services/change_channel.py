"""
Change channel subscription.

Wraps a notifier feed for one job and turns raw documents into
JobSnapshot deliveries. The wrapper:

- ignores documents that do not exist yet,
- drops anything that arrives after a terminal snapshot was delivered,
- reports a channel error exactly once and treats the feed as dead,
- makes unsubscribe() idempotent.
"""
import threading
from typing import Any, Callable

from jobwatch.errors import ChannelError
from jobwatch.logging_config import get_logger
from jobwatch.models.job import JobSnapshot
from jobwatch.services.notifiers import ChangeNotifier, StopListening

logger = get_logger(component="change_channel")


class ChangeSubscription:
    """Live snapshot feed for one job."""

    def __init__(
        self,
        notifier: ChangeNotifier,
        collection: str,
        job_id: str,
        on_snapshot: Callable[[JobSnapshot], None],
        on_channel_error: Callable[[ChannelError], None],
    ):
        self.notifier = notifier
        self.collection = collection
        self.job_id = job_id
        self.on_snapshot = on_snapshot
        self.on_channel_error = on_channel_error
        self._lock = threading.RLock()
        self._stop: StopListening | None = None
        self._closed = False
        self._dead = False
        self._terminal_seen = False
        self.log = logger.bind(job_id=job_id)

    @property
    def active(self) -> bool:
        return not (self._closed or self._dead)

    def start(self) -> "ChangeSubscription":
        stop = self.notifier.listen(
            self.collection, self.job_id, self._handle_change, self._handle_error
        )
        with self._lock:
            self._stop = stop
            # A terminal snapshot delivered during listen() may already
            # have closed us.
            release = self._closed or self._dead
        if release:
            self._release()
        self.log.debug("subscribed", collection=self.collection)
        return self

    def unsubscribe(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._release()
        self.log.debug("unsubscribed")

    def _release(self) -> None:
        with self._lock:
            stop, self._stop = self._stop, None
        if stop is not None:
            stop()

    def _handle_change(self, data: dict[str, Any] | None) -> None:
        with self._lock:
            if not self.active:
                self.log.debug("snapshot_after_close_dropped")
                return

        snapshot = JobSnapshot.from_document(self.job_id, data)
        if not snapshot.exists:
            self.log.debug("snapshot_for_missing_document")
            return
        if snapshot.status is None:
            return

        with self._lock:
            if self._terminal_seen:
                self.log.debug("duplicate_terminal_snapshot_dropped", status=snapshot.status.value)
                return
            if snapshot.is_terminal:
                self._terminal_seen = True

        self.on_snapshot(snapshot)

    def _handle_error(self, error: Exception) -> None:
        with self._lock:
            if not self.active:
                return
            self._dead = True

        self._release()
        self.log.warning("channel_error", error=str(error))
        channel_error = error if isinstance(error, ChannelError) else ChannelError(str(error))
        self.on_channel_error(channel_error)


def subscribe(
    notifier: ChangeNotifier,
    collection: str,
    job_id: str,
    on_snapshot: Callable[[JobSnapshot], None],
    on_channel_error: Callable[[ChannelError], None],
) -> ChangeSubscription:
    """Open a snapshot feed for a job."""
    return ChangeSubscription(
        notifier, collection, job_id, on_snapshot, on_channel_error
    ).start()
