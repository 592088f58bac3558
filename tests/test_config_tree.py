"""Tests for the host configuration tree: flattening, layering, sections, YAML source."""

import pytest
from pydantic import BaseModel

from dbconfig.config.tree import (
    ConfigurationBuilder,
    ConfigurationProvider,
    ConfigurationRoot,
    MemoryConfigurationSource,
    YamlConfigurationSource,
    flatten,
)


def test_flatten_nested_mapping_and_lists():
    out = flatten({"A": {"B": 1, "C": [True, None]}, "D": "x"})
    assert out == {"A:B": "1", "A:C:0": "true", "A:C:1": "", "D": "x"}


async def test_later_sources_override_earlier():
    root = await (
        ConfigurationBuilder()
        .add(MemoryConfigurationSource({"S": {"K": "first", "Only": "1"}}))
        .add(MemoryConfigurationSource({"S": {"K": "second"}}))
        .build()
    )
    assert root.get("S:K") == "second"
    assert root["S:Only"] == "1"
    assert root.get("missing", "fallback") == "fallback"
    with pytest.raises(KeyError):
        root["missing"]


async def test_get_section_strips_prefix_only_for_that_section():
    root = await ConfigurationBuilder().add(
        MemoryConfigurationSource({"ConfigOptions": {"Foo": "bar"}, "ConfigOptionsX": {"Foo": "no"}, "Other": "v"})
    ).build()
    assert root.get_section("ConfigOptions") == {"Foo": "bar"}


class Limits(BaseModel):
    MaxItems: int
    Enabled: bool = False


async def test_bind_validates_section_into_model():
    root = await ConfigurationBuilder().add(
        MemoryConfigurationSource({"Limits": {"MaxItems": "10", "Enabled": "true"}})
    ).build()
    limits = root.bind("Limits", Limits)
    assert limits.MaxItems == 10
    assert limits.Enabled is True


async def test_yaml_source_flattens_and_substitutes_env(tmp_path, monkeypatch):
    monkeypatch.setenv("GREETING_TARGET", "world")
    path = tmp_path / "defaults.yaml"
    path.write_text("ConfigOptions:\n  Greeting: hello ${GREETING_TARGET}\n  Ports: [80, 443]\n")
    root = await ConfigurationBuilder().add(YamlConfigurationSource(path)).build()
    assert root.get_section("ConfigOptions") == {"Greeting": "hello world", "Ports:0": "80", "Ports:1": "443"}
    await root.aclose()


async def test_optional_yaml_source_missing_is_empty(tmp_path):
    root = await ConfigurationBuilder().add(YamlConfigurationSource(tmp_path / "nope.yaml")).build()
    assert root.as_dict() == {}


async def test_required_yaml_source_missing_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        await ConfigurationBuilder().add(YamlConfigurationSource(tmp_path / "nope.yaml", optional=False)).build()


async def test_reload_rereads_yaml_and_notifies(tmp_path):
    path = tmp_path / "defaults.yaml"
    path.write_text("A: 1\n")
    root = await ConfigurationBuilder().add(YamlConfigurationSource(path)).build()
    changes = []
    unsubscribe = root.on_change(lambda: changes.append(1))
    path.write_text("A: 2\n")
    assert await root.reload() is True
    assert root.get("A") == "2"
    assert changes == [1]
    unsubscribe()
    await root.reload()
    assert changes == [1]


async def test_yaml_watcher_reloads_on_file_change(tmp_path):
    import asyncio

    path = tmp_path / "defaults.yaml"
    path.write_text("A: 1\n")
    root = await ConfigurationBuilder().add(YamlConfigurationSource(path, reload_on_change=True)).build()
    try:
        path.write_text("A: 2\n")
        for _ in range(100):
            if root.get("A") == "2":
                break
            await asyncio.sleep(0.05)
        assert root.get("A") == "2"
    finally:
        await root.aclose()


def test_empty_root_has_no_keys():
    root = ConfigurationRoot([])
    assert root.as_dict() == {}
    assert root.get_section("ConfigOptions") == {}


def test_provider_without_load_cannot_be_constructed():
    class Incomplete(ConfigurationProvider):
        pass

    with pytest.raises(TypeError):
        Incomplete()


async def test_provider_subclass_publishes_on_load():
    class Fixed(ConfigurationProvider):
        async def load(self) -> None:
            self.set_data({"A": "1"})

    provider = Fixed()
    assert await provider.reload() is True
    assert provider.try_get("A") == "1"
