"""Pipelines that stream documents from MongoDB or Kafka sources into Elasticsearch or Kafka sinks."""

__version__ = "0.1.0"