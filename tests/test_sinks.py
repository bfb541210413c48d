import base64
import json

import pytest
import requests

from wirepipe.config import ConfigError, SinkConfig
from wirepipe.sinks import ElasticSink, KafkaSink

CLOUD_ID = "deployment:" + base64.b64encode(b"es.example.com:443$abc123$kib456").decode()


class FakeResponse:
    def __init__(self, status_code=201, text="{}"):
        self.status_code = status_code
        self.text = text


class FakeSession:
    def __init__(self, status_code=201, failures=0):
        self.status_code = status_code
        self.failures = failures
        self.calls = []
        self.closed = False

    def put(self, url, data=None, headers=None, params=None):
        if self.failures:
            self.failures -= 1
            raise requests.ConnectionError("unreachable")
        self.calls.append({"url": url, "data": data, "headers": headers, "params": params})
        return FakeResponse(self.status_code)

    def close(self):
        self.closed = True


def elastic_config(**settings):
    base = {"cloud_id": CLOUD_ID, "api_key": "placeholder", "index_name": "orders"}
    base.update(settings)
    return SinkConfig(name="search", connection_type="elasticsearch", config=base, key="p1")


def connected_elastic(session):
    sink = ElasticSink(elastic_config(), session)
    sink.connect()
    return sink


def test_elastic_indexes_document_by_id():
    session = FakeSession()
    sink = connected_elastic(session)
    count = sink.write([b'{"_id": "a1", "total": 3}'], [])
    assert count == 1
    call = session.calls[0]
    assert call["url"] == "https://abc123.es.example.com:443/orders/_doc/a1"
    assert call["params"] == {"refresh": "true"}
    assert json.loads(call["data"]) == {"doc": {"_id": "a1", "total": 3}}


def test_elastic_sends_api_key_header():
    session = FakeSession()
    sink = connected_elastic(session)
    sink.write(['{"_id": 7}'])
    assert session.calls[0]["headers"]["Authorization"] == "ApiKey placeholder"
    assert session.calls[0]["url"].endswith("/_doc/7")


def test_elastic_skips_invalid_and_idless_documents():
    session = FakeSession()
    sink = connected_elastic(session)
    count = sink.write([b"not json", b'{"name": "x"}', b"[1, 2]", b'{"_id": "ok"}'])
    assert count == 1
    assert len(session.calls) == 1


def test_elastic_ignores_initial_data():
    session = FakeSession()
    sink = connected_elastic(session)
    assert sink.write([], [b'{"_id": "x"}']) == 0
    assert session.calls == []


def test_elastic_error_status_raises():
    sink = connected_elastic(FakeSession(status_code=400))
    with pytest.raises(requests.HTTPError):
        sink.write([b'{"_id": "a"}'])


def test_elastic_request_failure_is_skipped():
    session = FakeSession(failures=1)
    sink = connected_elastic(session)
    assert sink.write([b'{"_id": "a"}', b'{"_id": "b"}']) == 1
    assert session.calls[0]["url"].endswith("/_doc/b")


def test_elastic_uses_environment_url_without_cloud_id(monkeypatch):
    monkeypatch.setenv("ELASTICSEARCH_URL", "http://search.example.com:9200")
    session = FakeSession()
    sink = ElasticSink(elastic_config(cloud_id=""), session)
    sink.connect()
    sink.write([b'{"_id": "z"}'])
    assert session.calls[0]["url"].startswith("http://search.example.com:9200/orders/")


def test_elastic_invalid_cloud_id_raises():
    sink = ElasticSink(elastic_config(cloud_id="name:%%%"), FakeSession())
    with pytest.raises(ConfigError):
        sink.connect()


def test_elastic_write_before_connect_raises():
    sink = ElasticSink(elastic_config(), FakeSession())
    with pytest.raises(RuntimeError):
        sink.write([b'{"_id": "a"}'])


def test_elastic_key_and_info():
    sink = ElasticSink(elastic_config(), FakeSession())
    assert sink.key() == "p1"
    assert sink.info() == "Key:p1|Name:search|Type:elasticsearch"


def test_elastic_empty_key_raises():
    sink = ElasticSink(SinkConfig(name="s", connection_type="elasticsearch"), FakeSession())
    with pytest.raises(ConfigError):
        sink.key()


def test_elastic_disconnect_leaves_borrowed_session_open():
    session = FakeSession()
    sink = connected_elastic(session)
    sink.disconnect()
    assert session.closed is False


class FakeProducer:
    def __init__(self, fail_on=None):
        self.sent = []
        self.closed = False
        self.fail_on = fail_on

    def produce(self, value):
        if value == self.fail_on:
            raise RuntimeError("broker rejected record")
        self.sent.append(value)

    def close(self):
        self.closed = True


def kafka_config(**settings):
    base = {"bootstrap_servers": "broker.example.com:9092", "topic": "events"}
    base.update(settings)
    return SinkConfig(name="stream", connection_type="kafka", config=base, key="p2")


def test_kafka_connect_passes_settings_to_factory():
    seen = []
    producer = FakeProducer()

    def factory(servers, topic):
        seen.append((servers, topic))
        return producer

    sink = KafkaSink(kafka_config(), factory)
    sink.connect()
    sink.write([b"x"], [])
    assert seen == [("broker.example.com:9092", "events")]
    assert producer.sent == [b"x"]
    assert sink.key() == "p2"
    assert sink.info() == "Key:p2|Name:stream|Type:kafka"


def test_kafka_write_sends_both_streams():
    producer = FakeProducer()
    sink = KafkaSink(kafka_config(), lambda servers, topic: producer)
    sink.connect()
    sink.write([b'{"a": 1}', '{"b": 2}'], [b"init"])
    assert sorted(producer.sent) == sorted([b'{"a": 1}', b'{"b": 2}', b"init"])


def test_kafka_produce_error_does_not_stop_writing():
    producer = FakeProducer(fail_on=b"bad")
    sink = KafkaSink(kafka_config(), lambda servers, topic: producer)
    sink.connect()
    sink.write([b"one", b"bad", b"two"], [])
    assert producer.sent == [b"one", b"two"]


@pytest.mark.parametrize("missing", ["bootstrap_servers", "topic"])
def test_kafka_missing_setting_raises(missing):
    with pytest.raises(ConfigError):
        KafkaSink(kafka_config(**{missing: ""}), lambda servers, topic: FakeProducer())


def test_kafka_write_before_connect_raises():
    sink = KafkaSink(kafka_config(), lambda servers, topic: FakeProducer())
    with pytest.raises(RuntimeError):
        sink.write([b"x"])


def test_kafka_disconnect_closes_producer():
    producer = FakeProducer()
    sink = KafkaSink(kafka_config(), lambda servers, topic: producer)
    sink.connect()
    sink.disconnect()
    assert producer.closed is True


def test_kafka_key_and_info():
    sink = KafkaSink(kafka_config(), lambda servers, topic: FakeProducer())
    assert sink.key() == "p2"
    assert sink.info() == "Key:p2|Name:stream|Type:kafka"


def test_kafka_empty_key_raises():
    config = SinkConfig(
        name="s", connection_type="kafka",
        config={"bootstrap_servers": "b", "topic": "t"},
    )
    sink = KafkaSink(config, lambda servers, topic: FakeProducer())
    with pytest.raises(ConfigError):
        sink.key()