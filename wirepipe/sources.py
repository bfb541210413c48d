"""Sources that read pipeline records from MongoDB and Kafka."""

from __future__ import annotations

import base64
import datetime as _dt
import json
import logging
import uuid
from collections.abc import Callable, Iterable, Iterator, Mapping
from decimal import Decimal
from typing import Any, Protocol

from bson import Decimal128, ObjectId

from wirepipe.config import ConfigError, SourceConfig

log = logging.getLogger(__name__)

_POLL_BACKOFF_SECONDS = 0.1

_TRUE_WORDS = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_WORDS = frozenset({"0", "f", "F", "FALSE", "false", "False"})


class _Stop(Protocol):
    def is_set(self) -> bool: ...

    def wait(self, timeout: float | None = None) -> bool: ...


def parse_bool(text: str) -> bool:
    """Parse a boolean written as 1/0, t/f, true/false in any of the usual cases."""
    if text in _TRUE_WORDS:
        return True
    if text in _FALSE_WORDS:
        return False
    raise ValueError(f"invalid boolean value: {text!r}")


def _info(key: str, name: str, connection_type: str) -> str:
    return f"Key:{key}|Name:{name}|Type:{connection_type}"


def _json_default(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, _dt.datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=_dt.timezone.utc)
        text = value.isoformat()
        return text[:-6] + "Z" if text.endswith("+00:00") else text
    if isinstance(value, (Decimal128, Decimal, uuid.UUID)):
        return str(value)
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    raise TypeError(f"cannot encode {type(value).__name__} as JSON")


def _to_json(document: Any) -> bytes:
    """Encode a document as compact JSON with sorted keys."""
    return json.dumps(
        document,
        default=_json_default,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")


ClientFactory = Callable[[str], Any]


class MongoSource:
    """Read documents and change events from a MongoDB collection.

    ``client_factory(uri)`` must return a client that can be indexed as
    ``client[database][collection]`` and has ``close()``.
    """

    def __init__(self, config: SourceConfig, client_factory: ClientFactory) -> None:
        self._pipeline_key = config.key
        self.name = config.name
        self.connection_type = config.connection_type
        try:
            self.load_initial = parse_bool(config.config.get("load_initial_data", ""))
        except ValueError as exc:
            log.error(
                "error when reading value for load_initial_data, defaulting to false: %s",
                exc,
            )
            self.load_initial = False
        self.uri = config.config.get("uri", "")
        self.database = config.config.get("database", "")
        self.collection_name = config.config.get("collection", "")
        self._client_factory = client_factory
        self._client: Any = None
        self._collection: Any = None

    def connect(self) -> None:
        """Create the client and look up the collection, unless already connected."""
        if self._client is not None:
            log.debug("Client already exists, not creating a new instance")
            return
        log.debug("Connecting to mongodb...")
        self._client = self._client_factory(self.uri)
        self._collection = self._client[self.database][self.collection_name]

    def _require_collection(self) -> Any:
        if self._collection is None:
            raise RuntimeError("mongodb source is not connected")
        return self._collection

    def load_initial_data(self, stop: _Stop) -> Iterator[bytes]:
        """Yield every document of the collection as JSON, then wait for ``stop``.

        Yields nothing when initial loading is disabled. The whole result set
        is held in memory before the first document is yielded.
        """
        if not self.load_initial:
            return iter(())
        collection = self._require_collection()
        return self._initial_documents(collection, stop)

    def _initial_documents(self, collection: Any, stop: _Stop) -> Iterator[bytes]:
        log.info("Loading initial data from the source...")
        try:
            results = list(collection.find({}))
        except Exception:
            log.exception("Error when loading initial data from mongodb")
            results = []
        for result in results:
            try:
                encoded = _to_json(result)
            except (TypeError, ValueError):
                log.exception("Error marshalling change document to JSON")
                continue
            yield encoded
        stop.wait()

    def read(self, stop: _Stop) -> Iterator[bytes]:
        """Open a change stream and return an iterator of full documents as JSON."""
        collection = self._require_collection()
        try:
            stream = collection.watch([], full_document="updateLookup")
        except Exception:
            log.exception("Error when watching for changes on the mongodb collection")
            raise
        return self._changes(stream, stop)

    def _changes(self, stream: Any, stop: _Stop) -> Iterator[bytes]:
        try:
            for change in stream:
                log.debug("Got a new event")
                if not isinstance(change, Mapping):
                    log.error("Error decoding change document")
                    continue
                document_key = change.get("documentKey")
                if isinstance(document_key, Mapping):
                    log.debug("The change document id is: %s", document_key.get("_id"))
                try:
                    encoded = _to_json(change.get("fullDocument"))
                except (TypeError, ValueError):
                    log.exception("Error marshalling change document to JSON")
                    continue
                if stop.is_set():
                    log.debug("Closing read from mongodb")
                    return
                yield encoded
        finally:
            log.debug("Closing the mongo change stream")
            close = getattr(stream, "close", None)
            if close is not None:
                close()

    def key(self) -> str:
        """Return the pipeline key this source belongs to."""
        if not self._pipeline_key:
            raise ConfigError("no pipeline key is set")
        return self._pipeline_key

    def info(self) -> str:
        """Return a one-line description of the source."""
        return _info(self._pipeline_key, self.name, self.connection_type)

    def disconnect(self) -> None:
        """Close the client."""
        log.info("Closing MongoDB connection")
        if self._client is None:
            return
        try:
            self._client.close()
        except Exception:
            log.exception("Error when dis-connecting from mongodb database!")
        self._client = None
        self._collection = None


class _Consumer(Protocol):
    def poll(self) -> Iterable[bytes] | None: ...

    def close(self) -> Any: ...


ConsumerFactory = Callable[[str, str, str], _Consumer]


class KafkaSource:
    """Consume JSON records from a Kafka topic.

    ``consumer_factory(bootstrap_servers, group, topic)`` must return an object
    whose ``poll()`` gives the next batch of record values (``None`` once the
    consumer is closed) and that has ``close()``.
    """

    def __init__(self, config: SourceConfig, consumer_factory: ConsumerFactory) -> None:
        self._pipeline_key = config.key
        self.name = config.name
        self.connection_type = config.connection_type
        servers = config.config.get("bootstrap_servers", "")
        group = config.config.get("group", "")
        topic = config.config.get("topic", "")
        if not servers or not group or not topic:
            log.error("Error missing config values")
            raise ConfigError(
                "missing config values: bootstrap_servers, group and topic are required"
            )
        log.debug("bootstrap_servers=%s topic=%s group=%s", servers, topic, group)
        self.bootstrap_servers = servers
        self.consumer_group = group
        self.topic = topic
        self._consumer_factory = consumer_factory
        self._consumer: _Consumer | None = None

    def connect(self) -> None:
        """Create the consumer."""
        log.debug("Connecting to kafka cluster as a source...")
        self._consumer = self._consumer_factory(
            self.bootstrap_servers, self.consumer_group, self.topic
        )

    def load_initial_data(self, stop: _Stop) -> Iterator[bytes]:
        """Kafka has no separate initial load; the stream is always empty."""
        return iter(())

    def read(self, stop: _Stop) -> Iterator[bytes]:
        """Return an iterator of record values that hold JSON objects."""
        if self._consumer is None:
            raise RuntimeError("kafka source is not connected")
        return self._records(self._consumer, stop)

    def _records(self, consumer: _Consumer, stop: _Stop) -> Iterator[bytes]:
        seen = 0
        try:
            while not stop.is_set():
                try:
                    batch = consumer.poll()
                except Exception:
                    log.exception("Error when polling the kafka consumer")
                    stop.wait(_POLL_BACKOFF_SECONDS)
                    continue
                if batch is None:
                    return
                batch = list(batch)
                if not batch:
                    stop.wait(_POLL_BACKOFF_SECONDS)
                    continue
                for value in batch:
                    seen += 1
                    try:
                        document = json.loads(value)
                    except (TypeError, ValueError) as exc:
                        log.error("Error un-marshalling change document: %s", exc)
                        continue
                    if not isinstance(document, dict):
                        log.error("Error un-marshalling change document: not an object")
                        continue
                    log.debug("processed %d records-- %s", seen, document)
                    if stop.is_set():
                        return
                    yield value.encode("utf-8") if isinstance(value, str) else bytes(value)
        finally:
            log.debug("Done Reading from the kafka source")

    def key(self) -> str:
        """Return the pipeline key this source belongs to."""
        if not self._pipeline_key:
            raise ConfigError("no pipeline key is set")
        return self._pipeline_key

    def info(self) -> str:
        """Return a one-line description of the source."""
        return _info(self._pipeline_key, self.name, self.connection_type)

    def disconnect(self) -> None:
        """Close the consumer."""
        log.debug("Disconnecting kafka source")
        if self._consumer is not None:
            self._consumer.close()
            self._consumer = None