import pytest

from wirepipe.config import ConfigError, SinkConfig, SourceConfig


def test_source_from_dict_maps_type_to_connection_type():
    cfg = SourceConfig.from_dict(
        {
            "name": "orders",
            "type": "mongodb",
            "key": "p1",
            "config": {"uri": "mongodb://localhost", "database": "shop"},
        }
    )
    assert cfg.name == "orders"
    assert cfg.connection_type == "mongodb"
    assert cfg.key == "p1"
    assert cfg.config == {"uri": "mongodb://localhost", "database": "shop"}


def test_sink_from_dict_maps_fields():
    cfg = SinkConfig.from_dict(
        {"name": "search", "type": "elasticsearch", "key": "p1", "config": {"index_name": "orders"}}
    )
    assert cfg == SinkConfig(
        name="search", connection_type="elasticsearch", config={"index_name": "orders"}, key="p1"
    )


def test_missing_fields_default_to_empty():
    cfg = SinkConfig.from_dict({})
    assert (cfg.name, cfg.connection_type, cfg.key, cfg.config) == ("", "", "", {})


def test_scalar_settings_are_coerced_to_text():
    cfg = SourceConfig.from_dict({"config": {"load_initial_data": True, "port": 27017, "off": False}})
    assert cfg.config["port"] == "27017"
    assert cfg.config["load_initial_data"] == "1"
    assert cfg.config["off"] == "0"


def test_source_and_sink_configs_are_distinct_types():
    data = {"name": "a", "type": "kafka", "key": "k"}
    assert SourceConfig.from_dict(data) != SinkConfig.from_dict(data)
    assert SourceConfig.from_dict(data) == SourceConfig.from_dict(data)


def test_non_mapping_entry_is_rejected():
    with pytest.raises(ConfigError):
        SourceConfig.from_dict(["name", "type"])


def test_non_mapping_settings_are_rejected():
    with pytest.raises(ConfigError):
        SinkConfig.from_dict({"config": ["a", "b"]})


def test_nested_setting_value_is_rejected():
    with pytest.raises(ConfigError):
        SinkConfig.from_dict({"config": {"topic": {"nested": "x"}}})


def test_config_error_is_a_value_error():
    with pytest.raises(ValueError):
        SourceConfig.from_dict({"name": {"bad": 1}})