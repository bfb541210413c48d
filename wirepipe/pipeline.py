"""Pipelines that move records from one source to one sink."""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections.abc import Iterable, Iterator
from typing import Protocol, Union

log = logging.getLogger(__name__)

Record = Union[bytes, str]

JOB_COUNT = 5
"""Number of concurrent write jobs a running pipeline starts."""

_JOIN_TIMEOUT = 5.0
_POLL_INTERVAL = 0.05
_END = object()


class Stop(Protocol):
    """The part of ``threading.Event`` that sources and pipelines rely on."""

    def is_set(self) -> bool: ...

    def wait(self, timeout: float | None = None) -> bool: ...


class DataSource(Protocol):
    """Anything that can feed records into a pipeline."""

    name: str

    def connect(self) -> None: ...

    def load_initial_data(self, stop: Stop) -> Iterable[Record]: ...

    def read(self, stop: Stop) -> Iterable[Record]: ...

    def key(self) -> str: ...

    def info(self) -> str: ...

    def disconnect(self) -> None: ...


class DataSink(Protocol):
    """Anything that can take records out of a pipeline."""

    name: str

    def connect(self) -> None: ...

    def write(self, data: Iterable[Record], initial_data: Iterable[Record]) -> object: ...

    def key(self) -> str: ...

    def info(self) -> str: ...

    def disconnect(self) -> None: ...


def _fnv1a(data: bytes) -> int:
    """32-bit FNV-1a hash."""
    value = 0x811C9DC5
    for byte in data:
        value ^= byte
        value = (value * 0x01000193) & 0xFFFFFFFF
    return value


def _as_bytes(record: Record) -> bytes:
    return record.encode("utf-8") if isinstance(record, str) else bytes(record)


class _EitherStop:
    """A stop signal that is set as soon as any of its events is set."""

    def __init__(self, *events: Stop) -> None:
        self._events = events

    def is_set(self) -> bool:
        return any(event.is_set() for event in self._events)

    def wait(self, timeout: float | None = None) -> bool:
        deadline = None if timeout is None else time.monotonic() + timeout
        while not self.is_set():
            if deadline is None:
                step = _POLL_INTERVAL
            else:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                step = min(_POLL_INTERVAL, remaining)
            self._events[0].wait(step)
        return True


def _partition(records: Iterable[Record], outputs: list[queue.Queue]) -> None:
    """Route each record to a queue chosen by its hash, then end every queue."""
    try:
        for record in records:
            outputs[_fnv1a(_as_bytes(record)) % len(outputs)].put(record)
    except Exception:
        log.exception("Error while reading from the data source")
    finally:
        for output in outputs:
            output.put(_END)


def _drain(source: queue.Queue) -> Iterator[Record]:
    while True:
        item = source.get()
        if item is _END:
            return
        yield item


class DataPipeline:
    """One source connected to one sink under a shared pipeline key."""

    def __init__(
        self,
        source: DataSource | None = None,
        sink: DataSink | None = None,
        key: str = "",
    ) -> None:
        self.source = source
        self.sink = sink
        self.key = key
        self._halt = threading.Event()
        self._workers: list[threading.Thread] = []

    def __repr__(self) -> str:
        return f"DataPipeline(key={self.key!r}, source={self.source!r}, sink={self.sink!r})"

    def set_source(self, source: DataSource) -> None:
        """Replace the source of the pipeline."""
        log.debug("Setting source %s", source.info())
        self.source = source

    def set_sink(self, sink: DataSink) -> None:
        """Replace the sink of the pipeline."""
        log.debug("Setting sink %s", sink.info())
        self.sink = sink

    def _ends(self) -> tuple[DataSource, DataSink]:
        if self.source is None or self.sink is None:
            raise RuntimeError("pipeline needs both a source and a sink")
        return self.source, self.sink

    def run(self, stop: Stop) -> None:
        """Move records from source to sink until ``stop`` is set or the pipeline closes.

        Records are spread over ``JOB_COUNT`` concurrent writes by their hash,
        so the order of writes may differ from the order of reads.
        """
        source, sink = self._ends()
        self._halt = threading.Event()
        signal = _EitherStop(stop, self._halt)

        try:
            source.connect()
        except Exception:
            log.exception("Error when connecting to source")
        try:
            sink.connect()
        except Exception:
            log.exception("Error when connecting to sink")

        try:
            initial: Iterable[Record] = source.load_initial_data(signal)
        except Exception:
            log.exception("Error when loading initial data")
            initial = ()
        try:
            data = source.read(signal)
        except Exception:
            log.exception("Error when reading from the data source")
            return

        initial_queues: list[queue.Queue] = [queue.Queue() for _ in range(JOB_COUNT)]
        data_queues: list[queue.Queue] = [queue.Queue() for _ in range(JOB_COUNT)]
        for name, records, outputs in (
            ("initial", initial, initial_queues),
            ("data", data, data_queues),
        ):
            threading.Thread(
                target=_partition,
                args=(records, outputs),
                name=f"pipeline-{self.key}-{name}",
                daemon=True,
            ).start()

        self._workers = [
            threading.Thread(
                target=self._process_job,
                args=(sink, _drain(data_q), _drain(initial_q)),
                name=f"pipeline-{self.key}-job-{number}",
                daemon=True,
            )
            for number, (data_q, initial_q) in enumerate(zip(data_queues, initial_queues))
        ]
        for worker in self._workers:
            worker.start()

        signal.wait()
        if not self._halt.is_set():
            self.close()
        for worker in self._workers:
            worker.join(_JOIN_TIMEOUT)
        log.debug("Pipeline run finished [%s]", sink.info())

    @staticmethod
    def _process_job(
        sink: DataSink, data: Iterable[Record], initial_data: Iterable[Record]
    ) -> None:
        try:
            sink.write(data, initial_data)
        except Exception:
            log.exception("Error when writing to the data sink")

    def show(self) -> str:
        """Return ``"<source name> -> <sink name>"``."""
        source, sink = self._ends()
        return f"{source.name} -> {sink.name}"

    def close(self) -> None:
        """Stop a running pipeline and disconnect both source and sink."""
        log.info("Closing data pipeline: %s", self.show())
        self._halt.set()
        source, sink = self._ends()
        source.disconnect()
        sink.disconnect()