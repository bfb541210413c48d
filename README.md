# wirepipe

wirepipe moves documents from a data source to a data sink. Sources and
sinks are paired by a shared *key*: a source and a sink that carry the same
key form one `DataPipeline`.

| Kind   | `type`          | `config` entries                                              |
|--------|-----------------|---------------------------------------------------------------|
| source | `mongodb`       | `uri`, `database`, `collection`, optional `load_initial_data` |
| source | `kafka`         | `bootstrap_servers`, `group`, `topic` (all required)          |
| sink   | `elasticsearch` | optional `cloud_id`, `api_key`, `index_name`                  |
| sink   | `kafka`         | `bootstrap_servers`, `topic` (both required)                  |

## Installation

```
pip install wirepipe
```

## Configuration

Settings are a mapping with a `sources` list and a `sinks` list. Each entry
has a `name`, a `type`, a `key` and a `config` mapping; scalar values in
`config` are turned into strings (`SourceConfig.from_dict`,
`SinkConfig.from_dict` in `wirepipe.config`). A malformed entry raises
`ConfigError`.

```python
settings = {
    "sources": [
        {
            "name": "orders-db",
            "type": "mongodb",
            "key": "orders",
            "config": {
                "uri": "mongodb://localhost:27017",
                "database": "shop",
                "collection": "orders",
                "load_initial_data": "true",
            },
        }
    ],
    "sinks": [
        {
            "name": "orders-index",
            "type": "elasticsearch",
            "key": "orders",
            "config": {
                "api_key": "placeholder",
                "index_name": "orders",
            },
        }
    ],
}
```

`load_initial_data` accepts `1`, `t`, `T`, `true`, `True`, `TRUE` and their
false counterparts (`wirepipe.sources.parse_bool`); any other value is
logged and taken as false.

## Running pipelines

```python
import threading

from wirepipe.registry import get_pipeline_instance

registry = get_pipeline_instance()
registry.configure(settings)

stop = threading.Event()
threads = []
for key, pipeline in registry.mapped_pipelines().items():
    thread = threading.Thread(target=pipeline.run, args=(stop,))
    thread.start()
    threads.append(thread)

# ... later
stop.set()
for thread in threads:
    thread.join()
```

`DataPipelineConfig.configure` creates a source or sink for every entry;
entries with an unknown `type` or missing required settings are logged and
skipped. `parse_config` only reads the two sections and returns the
configuration objects. `add_source` and `add_sink` add single entries and
raise `ConfigError` on bad ones.

`DataPipeline.run(stop)` connects the source and the sink, takes the
source's initial documents and its change stream, spreads records over five
concurrent write jobs by an FNV-1a hash (so writes need not keep the order
of reads), and waits until `stop` is set or `close()` is called. Closing
disconnects both ends. `DataPipeline.show()` returns
`"<source name> -> <sink name>"`.

`DataPipelineConfig.close(key)` closes the pipeline of that key and raises
`KeyError` for an unknown key. `DataPipelineConfig.info()` returns a text
summary of every key, index, source, sink and pipeline.

## Endpoints

- **MongoDB source** – connects with `pymongo.MongoClient(uri)`. With
  `load_initial_data` set, every document of the collection is emitted first.
  Changes come from a change stream opened with
  `full_document="updateLookup"`; each `fullDocument` is emitted as compact
  JSON with sorted keys (ObjectIds, dates, decimals and UUIDs as strings,
  binary as base64).
- **Kafka source** – polls a consumer and passes on record values that are
  JSON objects; others are logged and dropped. It has no initial load.
- **Elasticsearch sink** – the endpoint comes from `cloud_id` when given,
  otherwise from the first address in the `ELASTICSEARCH_URL` environment
  variable, otherwise `http://localhost:9200`. The `url` entry is read but not
  used to pick the endpoint. Each document is sent with
  `PUT <endpoint>/<index_name>/_doc/<_id>?refresh=true` as `{"doc": ...}`,
  with `Authorization: ApiKey <api_key>` when a key is set. Documents without
  `_id` are skipped; an HTTP error status raises `requests.HTTPError`. Only the
  change stream is indexed: initial documents are not written to this sink.
- **Kafka sink** – publishes every record of both the initial and the change
  stream.

## What the package does not do

There is no Kafka client inside the package. Kafka sources and sinks use the
factories in `wirepipe.registry.connectors`, which raise `ConfigError` until
you set them:

```python
from wirepipe.registry import connectors

# consumer_factory(bootstrap_servers, group, topic) -> object with
#   poll() returning an iterable of record values (None once closed) and close()
connectors.kafka_consumer = my_consumer_factory

# producer_factory(bootstrap_servers, topic) -> object with produce(value) and close()
connectors.kafka_producer = my_producer_factory
```

`connectors.mongo_client` can be replaced the same way. The package has no
command-line program and does not read configuration files; pass the
settings mapping yourself.