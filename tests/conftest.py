import argparse
import json
import logging
import sys
import zipfile
from collections.abc import Callable
from pathlib import Path

import pytest

TOOL_DIR = Path(__file__).resolve().parent.parent
if str(TOOL_DIR) not in sys.path:
    sys.path.insert(0, str(TOOL_DIR))

import shaderblocks  # noqa: E402


def block_entry(
    *,
    properties: dict[str, list[str]] | None = None,
    states: list[dict[str, str]] | None = None,
    opacity: int = 15,
    opaque: bool = True,
    solid_faces: list[bool] | None = None,
    render_layer: str = "solid",
    luminance: int = 0,
    block_entity: bool = False,
) -> dict[str, object]:
    """Registry dump entry; defaults describe an ordinary full stone-like cube."""
    entry: dict[str, object] = {
        "properties": properties or {},
        "opacity": opacity,
        "opaque": opaque,
        "solid_faces": [True] * 6 if solid_faces is None else solid_faces,
        "render_layer": render_layer,
        "luminance": luminance,
        "block_entity": block_entity,
    }
    if states is not None:
        entry["states"] = states
    return entry


def glass_entry() -> dict[str, object]:
    return block_entry(opacity=0, opaque=False, render_layer="translucent")


def torch_entry() -> dict[str, object]:
    return block_entry(
        properties={"lit": ["true", "false"]},
        opacity=0,
        opaque=False,
        solid_faces=[False] * 6,
        render_layer="cutout",
        luminance=7,
    )


def sample_blocks() -> dict[str, dict[str, object]]:
    return {
        "minecraft:stone": block_entry(),
        "minecraft:dirt": block_entry(),
        "minecraft:glass": glass_entry(),
        "minecraft:redstone_torch": torch_entry(),
        "minecraft:oak_fence": block_entry(
            properties={"waterlogged": ["true", "false"]},
            opaque=False,
            solid_faces=[False] * 6,
            render_layer="cutout",
        ),
        "minecraft:chest": block_entry(
            properties={"facing": ["north", "south", "west", "east"]},
            opaque=False,
            solid_faces=[False] * 6,
            block_entity=True,
        ),
    }


@pytest.fixture
def make_host() -> Callable[..., shaderblocks.SnapshotHost]:
    def _make_host(
        blocks: dict[str, dict[str, object]] | None = None,
        *,
        mods: dict[str, str] | None = None,
        minecraft_version: str = "1.21.5",
    ) -> shaderblocks.SnapshotHost:
        return shaderblocks.SnapshotHost(
            sample_blocks() if blocks is None else blocks,
            mods=mods,
            minecraft_version=minecraft_version,
        )

    return _make_host


@pytest.fixture
def write_dump(tmp_path: Path) -> Callable[..., Path]:
    def _write_dump(
        blocks: dict[str, dict[str, object]] | None = None,
        *,
        mods: dict[str, str] | None = None,
        minecraft_version: str = "1.21.5",
        name: str = "registry.json",
    ) -> Path:
        path = tmp_path / name
        payload = {
            "minecraft_version": minecraft_version,
            "mods": mods or {},
            "blocks": sample_blocks() if blocks is None else blocks,
        }
        path.write_text(json.dumps(payload), encoding="utf-8")
        return path

    return _write_dump


@pytest.fixture
def write_pack() -> Callable[..., Path]:
    def _write_pack(root: Path, name: str, block_properties: str | None) -> Path:
        pack = root / name
        shaders = pack / "shaders"
        shaders.mkdir(parents=True)
        if block_properties is not None:
            (shaders / "block.properties").write_text(block_properties, encoding="utf-8")
        return pack

    return _write_pack


@pytest.fixture
def write_zip_pack() -> Callable[..., Path]:
    def _write_zip_pack(root: Path, name: str, block_properties: str | None) -> Path:
        root.mkdir(parents=True, exist_ok=True)
        path = root / name
        with zipfile.ZipFile(path, "w") as archive:
            archive.writestr("shaders/final.fsh", "void main() {}\n")
            if block_properties is not None:
                archive.writestr("shaders/block.properties", block_properties)
        return path

    return _write_zip_pack


@pytest.fixture
def make_args(tmp_path: Path) -> Callable[..., argparse.Namespace]:
    registry = tmp_path / "registry.json"
    registry.write_text('{"blocks": {}}', encoding="utf-8")

    def _make_args(**overrides: object) -> argparse.Namespace:
        base_args: dict[str, object] = {
            "registry": registry,
            "game_dir": tmp_path,
            "shaderpacks_dir": None,
            "logs_dir": None,
            "cache_dir": None,
            "mc_version": None,
            "export_categories": False,
            "no_cache": False,
            "inspect": None,
            "verbose": 0,
        }
        base_args.update(overrides)
        return argparse.Namespace(**base_args)

    return _make_args


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., shaderblocks.AnalyzeConfig]:
    def _make_config(**overrides: object) -> shaderblocks.AnalyzeConfig:
        base: dict[str, object] = {
            "registry": tmp_path / "registry.json",
            "game_dir": tmp_path,
            "shaderpacks_dir": tmp_path / "shaderpacks",
            "logs_dir": tmp_path / "logs",
            "cache_dir": tmp_path / ".shaderblocks",
            "mc_version": None,
            "export_categories": False,
            "use_cache": True,
        }
        base.update(overrides)
        return shaderblocks.AnalyzeConfig(**base)

    return _make_config


@pytest.fixture(autouse=True)
def reset_logging() -> object:
    yield
    if shaderblocks._stream_handler is not None:
        shaderblocks._log.removeHandler(shaderblocks._stream_handler)
        shaderblocks._stream_handler = None
    shaderblocks._log.setLevel(logging.NOTSET)
