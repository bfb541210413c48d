"""Sinks that write pipeline records to Elasticsearch and Kafka."""

from __future__ import annotations

import base64
import binascii
import json
import logging
import os
import threading
from collections.abc import Callable, Iterable
from typing import Any, Protocol, Union
from urllib.parse import quote

import requests

from wirepipe.config import ConfigError, SinkConfig

log = logging.getLogger(__name__)

Record = Union[bytes, str]

_DEFAULT_ELASTIC_URL = "http://localhost:9200"


def _info(key: str, name: str, connection_type: str) -> str:
    return f"Key:{key}|Name:{name}|Type:{connection_type}"


def _decode_cloud_id(cloud_id: str) -> str:
    """Turn an Elastic Cloud ID into the base URL of its Elasticsearch endpoint."""
    _, _, encoded = cloud_id.rpartition(":")
    try:
        decoded = base64.b64decode(encoded, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise ConfigError(f"cannot decode cloud id: {exc}") from exc
    parts = decoded.split("$")
    if len(parts) < 2:
        raise ConfigError(f"invalid cloud id: {decoded!r}")
    host, es_uuid = parts[0], parts[1]
    return f"https://{es_uuid}.{host}"


def _default_elastic_url() -> str:
    addresses = os.environ.get("ELASTICSEARCH_URL", "")
    first = next((a.strip() for a in addresses.split(",") if a.strip()), "")
    return (first or _DEFAULT_ELASTIC_URL).rstrip("/")


def _decode_document(raw: Record) -> dict[str, Any] | None:
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = bytes(raw).decode("utf-8")
        except UnicodeDecodeError:
            log.error("Error un-marshalling change document: not valid UTF-8")
            return None
    try:
        document = json.loads(raw)
    except json.JSONDecodeError as exc:
        log.error("Error un-marshalling change document: %s", exc)
        return None
    if not isinstance(document, dict):
        log.error("No 'doc' object in the document")
        return None
    return document


def _format_id(value: Any) -> str:
    if value is None:
        return "<nil>"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer() and abs(value) < 1e21:
        return str(int(value))
    return str(value)


def _as_bytes(value: Record) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else bytes(value)


class ElasticSink:
    """Index JSON documents into an Elasticsearch index, keyed by their ``_id``."""

    def __init__(self, config: SinkConfig, session: requests.Session | None = None) -> None:
        self._pipeline_key = config.key
        self.name = config.name
        self.connection_type = config.connection_type
        self.cloud_id = config.config.get("cloud_id", "")
        self.url = config.config.get("url", "")
        self.api_key = config.config.get("api_key", "")
        self.index = config.config.get("index_name", "")
        self._session = session
        self._owns_session = False
        self._base_url: str | None = None

    def connect(self) -> None:
        """Resolve the endpoint and prepare the HTTP session."""
        log.debug("Connecting to elasticsearch...")
        if self.cloud_id:
            self._base_url = _decode_cloud_id(self.cloud_id)
        else:
            self._base_url = _default_elastic_url()
        if self._session is None:
            self._session = requests.Session()
            self._owns_session = True

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"ApiKey {self.api_key}"
        return headers

    def write(self, data: Iterable[Record], initial_data: Iterable[Record] = ()) -> int:
        """Index every document from ``data`` and return how many were indexed.

        Only the change stream is indexed; ``initial_data`` is accepted so that
        all sinks share one calling convention.
        """
        if self._session is None or self._base_url is None:
            raise RuntimeError("elasticsearch sink is not connected")
        indexed = 0
        for raw in data:
            document = _decode_document(raw)
            if document is None:
                continue
            if "_id" not in document:
                log.error("Change document is missing _id field")
                continue
            document_id = _format_id(document["_id"])
            body = json.dumps({"doc": document}, sort_keys=True, separators=(",", ":"))
            url = (
                f"{self._base_url}/{quote(self.index, safe='')}"
                f"/_doc/{quote(document_id, safe='')}"
            )
            log.debug("Event document ID: %s", document_id)
            try:
                response = self._session.put(
                    url,
                    data=body.encode("utf-8"),
                    headers=self._headers(),
                    params={"refresh": "true"},
                )
            except requests.RequestException:
                log.exception("Error indexing document to Elasticsearch")
                continue
            if response.status_code >= 400:
                message = f"[{response.status_code}] {response.text}"
                log.error("Elasticsearch indexing error: %s", message)
                raise requests.HTTPError(message, response=response)
            log.info("Document indexed successfully to Elasticsearch: %s", document_id)
            indexed += 1
        log.debug("Upstream stream ended for the elastic sink")
        return indexed

    def key(self) -> str:
        """Return the pipeline key this sink belongs to."""
        if not self._pipeline_key:
            raise ConfigError("no pipeline key is set")
        return self._pipeline_key

    def info(self) -> str:
        """Return a one-line description of the sink."""
        return _info(self._pipeline_key, self.name, self.connection_type)

    def disconnect(self) -> None:
        """Release the HTTP session if this sink created it."""
        log.info("Closing Elasticsearch connection")
        if self._owns_session and self._session is not None:
            self._session.close()
            self._session = None
            self._owns_session = False


class _Producer(Protocol):
    def produce(self, value: bytes) -> Any: ...

    def close(self) -> Any: ...


ProducerFactory = Callable[[str, str], _Producer]


class KafkaSink:
    """Publish records to a Kafka topic through a producer from ``producer_factory``.

    The factory is called as ``producer_factory(bootstrap_servers, topic)`` and
    must return an object with ``produce(value)`` and ``close()``.
    """

    def __init__(self, config: SinkConfig, producer_factory: ProducerFactory) -> None:
        self._pipeline_key = config.key
        self.name = config.name
        self.connection_type = config.connection_type
        servers = config.config.get("bootstrap_servers", "")
        topic = config.config.get("topic", "")
        if not servers or not topic:
            log.error("Error missing config values")
            raise ConfigError("missing config values: bootstrap_servers and topic are required")
        log.debug("bootstrap_servers=%s topic=%s", servers, topic)
        self.bootstrap_servers = servers
        self.topic = topic
        self._producer_factory = producer_factory
        self._producer: _Producer | None = None

    def connect(self) -> None:
        """Create the producer."""
        log.debug("Connecting to kafka cluster as a sink...")
        self._producer = self._producer_factory(self.bootstrap_servers, self.topic)

    def write(self, data: Iterable[Record], initial_data: Iterable[Record] = ()) -> None:
        """Publish every record of both streams; returns once both are exhausted."""
        producer = self._producer
        if producer is None:
            raise RuntimeError("kafka sink is not connected")
        lock = threading.Lock()

        def send(value: Record) -> None:
            with lock:
                try:
                    producer.produce(_as_bytes(value))
                except Exception:
                    log.exception("record had a produce error")
                else:
                    log.debug("Successfully produced message")

        def drain(items: Iterable[Record]) -> None:
            for item in items:
                send(item)

        initial_worker = threading.Thread(
            target=drain, args=(initial_data,), name="kafka-sink-initial", daemon=True
        )
        initial_worker.start()
        drain(data)
        log.debug("The upstream data stream closed")
        initial_worker.join()

    def key(self) -> str:
        """Return the pipeline key this sink belongs to."""
        if not self._pipeline_key:
            raise ConfigError("no pipeline key is set")
        return self._pipeline_key

    def info(self) -> str:
        """Return a one-line description of the sink."""
        return _info(self._pipeline_key, self.name, self.connection_type)

    def disconnect(self) -> None:
        """Close the producer."""
        log.info("Disconnecting kafka sink")
        if self._producer is not None:
            self._producer.close()
            self._producer = None