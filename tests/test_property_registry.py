import json
from collections.abc import Callable
from pathlib import Path

import pytest

import shaderblocks
from conftest import block_entry

TORCH = shaderblocks.BlockIdentifier("minecraft", "redstone_torch")
FENCE = shaderblocks.BlockIdentifier("minecraft", "oak_fence")
CHEST = shaderblocks.BlockIdentifier("minecraft", "chest")


@pytest.fixture
def registry(
    make_host: Callable[..., shaderblocks.SnapshotHost],
) -> shaderblocks.PropertyRegistry:
    return shaderblocks.PropertyRegistry(make_host())


def test_missing_state_reported_for_unused_value(
    registry: shaderblocks.PropertyRegistry,
) -> None:
    registry.ingest_shader_blocks(["minecraft:redstone_torch:lit=false"])

    assert registry.find_all_missing_property_states() == [
        "minecraft:redstone_torch:lit=true"
    ]


def test_no_missing_states_when_every_value_is_used(
    registry: shaderblocks.PropertyRegistry,
) -> None:
    registry.ingest_shader_blocks(
        ["minecraft:redstone_torch:lit=false", "minecraft:redstone_torch:lit=TRUE"]
    )

    assert registry.find_all_missing_property_states() == []


def test_unused_properties_are_not_compared(
    registry: shaderblocks.PropertyRegistry,
) -> None:
    registry.ingest_shader_blocks(["minecraft:stone", "minecraft:chest"])

    assert registry.find_all_missing_property_states() == []


def test_missing_states_are_sorted_and_skip_unknown_blocks(
    registry: shaderblocks.PropertyRegistry,
) -> None:
    registry.ingest_shader_blocks(
        [
            "minecraft:chest:facing=north",
            "minecraft:oak_fence:waterlogged=true",
            "modx:ghost:lit=true",
            "minecraft:redstone_torch:powered=true",
        ]
    )

    assert registry.find_all_missing_property_states() == [
        "minecraft:chest:facing=east",
        "minecraft:chest:facing=south",
        "minecraft:chest:facing=west",
        "minecraft:oak_fence:waterlogged=false",
    ]


def test_unreachable_states_are_not_reported() -> None:
    host = shaderblocks.SnapshotHost(
        {
            "modx:pipe": block_entry(
                properties={"mode": ["in", "out", "off"]},
                states=[{"mode": "in"}, {"mode": "out"}],
            )
        },
        minecraft_version="1.21.5",
    )
    registry = shaderblocks.PropertyRegistry(host)
    registry.ingest_shader_blocks(["modx:pipe:mode=in"])

    assert registry.find_all_missing_property_states() == ["modx:pipe:mode=out"]


def test_reset_isolates_runs(registry: shaderblocks.PropertyRegistry) -> None:
    registry.ingest_shader_blocks(["minecraft:redstone_torch:lit=false"])
    registry.reset()
    registry.ingest_shader_blocks(["minecraft:oak_fence:waterlogged=true"])

    assert registry.find_all_missing_property_states() == [
        "minecraft:oak_fence:waterlogged=false"
    ]
    assert TORCH not in registry.used_properties()


def test_register_used_lowercases_and_reports_novelty(
    registry: shaderblocks.PropertyRegistry,
) -> None:
    assert registry.register_used(TORCH, "lit", "TRUE")
    assert not registry.register_used(TORCH, "lit", "true")
    assert registry.used_properties() == {TORCH: {"lit": frozenset({"true"})}}


def test_ingest_counts_blocks_and_skips_bad_entries(
    registry: shaderblocks.PropertyRegistry,
) -> None:
    count = registry.ingest_shader_blocks(
        ["minecraft:stone", ":lit=true", "minecraft:redstone_torch:lit=true"]
    )

    assert count == 1


def test_get_available_lowercases_and_handles_unknown(
    registry: shaderblocks.PropertyRegistry,
) -> None:
    assert registry.get_available(CHEST) == {
        "facing": frozenset({"north", "south", "west", "east"})
    }
    assert registry.get_available(shaderblocks.BlockIdentifier("modx", "ghost")) == {}


def test_matches_host_checks_names_and_values(
    registry: shaderblocks.PropertyRegistry,
) -> None:
    parse = shaderblocks.parse_block_state

    assert registry.matches_host(parse("redstone_torch:lit=true"))
    assert registry.matches_host(parse("stone"))
    assert not registry.matches_host(parse("redstone_torch:lit=maybe"))
    assert not registry.matches_host(parse("redstone_torch:facing=up"))


def test_is_valid_property_state_asks_host_again(
    registry: shaderblocks.PropertyRegistry,
) -> None:
    assert registry.is_valid_property_state(TORCH, "lit", "TRUE")
    assert not registry.is_valid_property_state(TORCH, "facing", "up")


def test_save_used_groups_by_namespace(
    registry: shaderblocks.PropertyRegistry, tmp_path: Path
) -> None:
    registry.ingest_shader_blocks(
        ["minecraft:redstone_torch:lit=true", "minecraft:chest:facing=north"]
    )
    path = tmp_path / "cache" / shaderblocks.USED_PROPERTIES_FILENAME

    registry.save_used(path)

    saved = json.loads(path.read_text(encoding="utf-8"))
    assert saved == {
        "minecraft": {
            "chest": {"facing": ["north"]},
            "redstone_torch": {"lit": ["true"]},
        }
    }


def test_reset_leaves_nothing_to_report(registry: shaderblocks.PropertyRegistry) -> None:
    registry.ingest_shader_blocks(
        ["minecraft:redstone_torch:lit=false", "minecraft:chest:facing=north"]
    )
    registry.reset()

    assert registry.find_all_missing_property_states() == []
