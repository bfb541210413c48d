"""A registry that groups configured sources and sinks into pipelines by key."""

from __future__ import annotations

import functools
import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, TypeVar

import pymongo

from wirepipe.config import ConfigError, SinkConfig, SourceConfig
from wirepipe.pipeline import DataPipeline, DataSink, DataSource
from wirepipe.sinks import ElasticSink, KafkaSink
from wirepipe.sources import KafkaSource, MongoSource

log = logging.getLogger(__name__)

_C = TypeVar("_C", SourceConfig, SinkConfig)


def _mongo_client(uri: str) -> Any:
    return pymongo.MongoClient(uri or None)


def _missing_kafka_consumer(bootstrap_servers: str, group: str, topic: str) -> Any:
    raise ConfigError("no Kafka consumer is configured; set connectors.kafka_consumer")


def _missing_kafka_producer(bootstrap_servers: str, topic: str) -> Any:
    raise ConfigError("no Kafka producer is configured; set connectors.kafka_producer")


@dataclass
class Connectors:
    """Client factories used when sources and sinks connect."""

    mongo_client: Callable[[str], Any] = _mongo_client
    kafka_consumer: Callable[[str, str, str], Any] = _missing_kafka_consumer
    kafka_producer: Callable[[str, str], Any] = _missing_kafka_producer


connectors = Connectors()


def data_source_factory(config: SourceConfig) -> DataSource:
    """Create the source that matches ``config.connection_type``."""
    kind = config.connection_type
    log.debug("Creating and allocating object for source: %s", kind)
    if kind == "mongodb":
        return MongoSource(config, lambda uri: connectors.mongo_client(uri))
    if kind == "kafka":
        return KafkaSource(
            config,
            lambda servers, group, topic: connectors.kafka_consumer(servers, group, topic),
        )
    raise ConfigError(f"unknown source type: {kind}")


def data_sink_factory(config: SinkConfig) -> DataSink:
    """Create the sink that matches ``config.connection_type``."""
    kind = config.connection_type
    log.debug("Creating and allocating object for sink: %s", kind)
    if kind == "elasticsearch":
        return ElasticSink(config)
    if kind == "kafka":
        return KafkaSink(
            config, lambda servers, topic: connectors.kafka_producer(servers, topic)
        )
    raise ConfigError(f"unknown sink type: {kind}")


def _key_of(endpoint: DataSource | DataSink) -> str:
    try:
        return endpoint.key()
    except ConfigError:
        return ""


def _read_section(settings: Mapping[str, Any], section: str, kind: type[_C]) -> list[_C]:
    raw = settings.get(section)
    if raw is None:
        return []
    if isinstance(raw, (str, bytes)) or not isinstance(raw, Sequence):
        log.error("Error when un-marshaling %s", section)
        raise ConfigError(f"'{section}' must be a list of entries")
    try:
        return [kind.from_dict(entry) for entry in raw]
    except ConfigError:
        log.error("Error when un-marshaling %s", section)
        raise


def _describe(endpoint: DataSource | DataSink | None) -> str:
    return endpoint.info() if endpoint is not None else "<nil>"


class DataPipelineConfig:
    """All configured sources and sinks, and the pipelines they form by key."""

    def __init__(self) -> None:
        self._sources: list[DataSource] = []
        self._sinks: list[DataSink] = []
        self._source_index: dict[str, list[int]] = {}
        self._sink_index: dict[str, list[int]] = {}
        self._keys: dict[str, bool] = {}
        self._pipelines: dict[str, DataPipeline] = {}

    def parse_config(
        self, settings: Mapping[str, Any]
    ) -> tuple[list[SourceConfig], list[SinkConfig]]:
        """Read the ``sources`` and ``sinks`` sections of ``settings``."""
        return (
            _read_section(settings, "sources", SourceConfig),
            _read_section(settings, "sinks", SinkConfig),
        )

    def configure(self, settings: Mapping[str, Any]) -> bool:
        """Add every source and sink in ``settings``; bad entries are logged and skipped."""
        source_configs, sink_configs = self.parse_config(settings)
        for source_config in source_configs:
            try:
                self.add_source(source_config)
            except ConfigError:
                log.exception("Error when creating data source object")
        for sink_config in sink_configs:
            try:
                self.add_sink(sink_config)
            except ConfigError:
                log.exception("Error when creating data sink object")
        return True

    def add_source(self, config: SourceConfig) -> None:
        """Create a source from ``config`` and attach it to the pipeline of its key."""
        log.debug("Creating a source")
        source = data_source_factory(config)
        key = _key_of(source)
        self._source_index.setdefault(key, []).append(len(self._sources))
        self._sources.append(source)
        self._keys.setdefault(key, True)
        pipeline = self._pipelines.get(key)
        if pipeline is not None:
            log.debug("Mapped source key(%s) exists, updating it", key)
            pipeline.set_source(source)
        else:
            log.debug("Mapped source key(%s) does NOT exist, creating it", key)
            self._pipelines[key] = DataPipeline(source=source, sink=None, key=key)

    def add_sink(self, config: SinkConfig) -> None:
        """Create a sink from ``config`` and attach it to the pipeline of its key."""
        log.debug("Creating a sink")
        sink = data_sink_factory(config)
        key = _key_of(sink)
        self._sink_index.setdefault(key, []).append(len(self._sinks))
        self._sinks.append(sink)
        self._keys.setdefault(key, True)
        pipeline = self._pipelines.get(key)
        if pipeline is not None:
            log.debug("Mapped sink key(%s) exists, updating it", key)
            pipeline.set_sink(sink)
        else:
            log.debug("Mapped sink key(%s) does NOT exist, creating it", key)
            self._pipelines[key] = DataPipeline(source=None, sink=sink, key=key)

    def mapped_pipelines(self) -> dict[str, DataPipeline]:
        """Return the pipelines by key."""
        return dict(self._pipelines)

    def close(self, key: str) -> bool:
        """Close the pipeline of ``key`` and its source and sink."""
        if not self._keys.get(key):
            raise KeyError("key does not exist")
        pipeline = self._pipelines.get(key)
        if pipeline is not None:
            if pipeline.source is not None and pipeline.sink is not None:
                pipeline.close()
            else:
                for endpoint in (pipeline.source, pipeline.sink):
                    if endpoint is not None:
                        endpoint.disconnect()
        self._keys[key] = False
        return True

    def info(self) -> str:
        """Return a text summary of keys, indices, endpoints and pipelines."""
        parts = ["Keys\n"]
        parts.extend(f"{key} " for key in self._keys)
        parts.append("\nMaps\n")
        for index in (self._source_index, self._sink_index):
            for key, positions in index.items():
                parts.append(f"{key} [{' '.join(str(p) for p in positions)}]\n")
        parts.append("Interfaces\n")
        parts.extend(source.info() for source in self._sources)
        parts.append("\n")
        parts.extend(sink.info() for sink in self._sinks)
        parts.append("\nMaps\n")
        for key, pipeline in self._pipelines.items():
            parts.append(f"{key}| {_describe(pipeline.source)} {_describe(pipeline.sink)}\n")
        return "".join(parts)


@functools.lru_cache(maxsize=None)
def get_pipeline_instance() -> DataPipelineConfig:
    """Return the process-wide pipeline registry."""
    return DataPipelineConfig()