"""
Document change notifiers.

A notifier pushes every change of one job document to a listener. Two
implementations are provided: an in-process one used by tests and local
runs, and a Redis pub/sub one for real deployments.
"""
import asyncio
import json
import threading
from typing import Any, Callable, Protocol

import redis.asyncio as redis

from jobwatch.config import settings
from jobwatch.logging_config import get_logger

logger = get_logger(component="notifier")

ChangeCallback = Callable[[dict[str, Any] | None], None]
ErrorCallback = Callable[[Exception], None]
StopListening = Callable[[], None]


class ChangeNotifier(Protocol):
    """
    Live document feed.

    listen() delivers the current document (None if it does not exist yet)
    and then every subsequent change. It returns a function that stops
    the feed.
    """

    def listen(
        self,
        collection: str,
        doc_id: str,
        on_change: ChangeCallback,
        on_error: ErrorCallback,
    ) -> StopListening: ...


class InMemoryChangeNotifier:
    """In-process document store with synchronous change delivery."""

    def __init__(self):
        self._lock = threading.RLock()
        self._documents: dict[tuple[str, str], dict[str, Any]] = {}
        self._listeners: dict[tuple[str, str], list[tuple[ChangeCallback, ErrorCallback]]] = {}

    def listen(self, collection, doc_id, on_change, on_error) -> StopListening:
        key = (collection, doc_id)
        entry = (on_change, on_error)
        with self._lock:
            self._listeners.setdefault(key, []).append(entry)
            current = self._documents.get(key)

        def stop():
            with self._lock:
                listeners = self._listeners.get(key, [])
                if entry in listeners:
                    listeners.remove(entry)

        on_change(dict(current) if current is not None else None)
        return stop

    def set(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        """Replace a document and notify listeners."""
        key = (collection, doc_id)
        with self._lock:
            self._documents[key] = dict(data)
            listeners = list(self._listeners.get(key, []))
        for on_change, _ in listeners:
            on_change(dict(data))

    def update(self, collection: str, doc_id: str, **fields) -> None:
        """Merge fields into a document and notify listeners."""
        with self._lock:
            merged = dict(self._documents.get((collection, doc_id), {}))
        merged.update(fields)
        self.set(collection, doc_id, merged)

    def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        with self._lock:
            document = self._documents.get((collection, doc_id))
            return dict(document) if document is not None else None

    def fail(self, collection: str, doc_id: str, error: Exception) -> None:
        """Break every feed on a document, as a dropped connection would."""
        key = (collection, doc_id)
        with self._lock:
            listeners = self._listeners.pop(key, [])
        for _, on_error in listeners:
            on_error(error)

    def listener_count(self, collection: str, doc_id: str) -> int:
        with self._lock:
            return len(self._listeners.get((collection, doc_id), []))


def document_key(collection: str, doc_id: str) -> str:
    return f"{collection}:{doc_id}"


class RedisChangeNotifier:
    """
    Redis-backed notifier.

    Documents are stored as JSON strings under "<collection>:<doc_id>" and
    every write is published on a channel with the same name.
    """

    def __init__(self, redis_url: str = None):
        self.redis_url = redis_url or settings.REDIS_URL
        self._redis = None

    def get_redis(self):
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url)
        return self._redis

    async def publish(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        """Store a document and announce the change."""
        r = self.get_redis()
        key = document_key(collection, doc_id)
        payload = json.dumps(data, default=str)
        await r.set(key, payload)
        await r.publish(key, payload)

    def listen(self, collection, doc_id, on_change, on_error) -> StopListening:
        """
        Follow a document from a background task.

        Subscribes before reading the current document, so no change is
        missed between the two. Nothing is delivered after stop() returns,
        even when stop() is called from inside on_change.
        """
        stopped = asyncio.Event()
        task = asyncio.get_running_loop().create_task(
            self._reader(collection, doc_id, on_change, on_error, stopped)
        )

        def stop():
            stopped.set()
            # From inside on_change the reader returns on its own and closes the pubsub
            if not task.done() and _current_task() is not task:
                task.cancel()

        return stop

    async def _reader(self, collection, doc_id, on_change, on_error, stopped: asyncio.Event) -> None:
        r = self.get_redis()
        key = document_key(collection, doc_id)
        pubsub = r.pubsub()
        try:
            await pubsub.subscribe(key)
            current = await r.get(key)
            if stopped.is_set():
                return
            on_change(decode_document(current, key) if current is not None else None)

            async for message in pubsub.listen():
                if stopped.is_set():
                    return
                if message.get("type") != "message":
                    continue
                data = decode_document(message["data"], key)
                if data is None:
                    continue
                on_change(data)
                if stopped.is_set():
                    return
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("notifier_connection_lost", key=key, error=str(e))
            if not stopped.is_set():
                on_error(e)
        finally:
            try:
                await pubsub.unsubscribe(key)
                await pubsub.aclose()
            except Exception as e:
                logger.debug("pubsub_close_failed", key=key, error=str(e))

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


def decode_document(raw, key: str) -> dict[str, Any] | None:
    """Parse a stored document; undecodable payloads are logged and skipped."""
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        logger.warning("undecodable_document", key=key, error=str(e))
        return None
    if not isinstance(data, dict):
        logger.warning("undecodable_document", key=key, error="not an object")
        return None
    return data


def _current_task() -> asyncio.Task | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None
