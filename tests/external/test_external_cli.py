from __future__ import annotations

import json
import shutil
import subprocess
import sys
import zipfile
from pathlib import Path

REGISTRY_DUMP = {
    "minecraft_version": "1.21.5",
    "mods": {"modx": "1.0.0"},
    "blocks": {
        "minecraft:stone": {
            "opacity": 15,
            "opaque": True,
            "solid_faces": [True] * 6,
        },
        "minecraft:dirt": {
            "opacity": 15,
            "opaque": True,
            "solid_faces": [True] * 6,
        },
        "minecraft:redstone_torch": {
            "properties": {"lit": ["true", "false"]},
            "opacity": 0,
            "render_layer": "cutout",
            "luminance": 7,
        },
    },
}

BLOCK_PROPERTIES = """\
#if MC_VERSION >= 12102
block.1=minecraft:stone modx:ore
#else
block.1=minecraft:dirt
#endif
block.2=redstone_torch:lit=false
"""


def _tool_root() -> Path:
    return Path(__file__).resolve().parents[2]


def _run(args: list[str], cwd: Path | None = None) -> subprocess.CompletedProcess[str]:
    run_cwd = _tool_root() if cwd is None else cwd
    return subprocess.run(
        [sys.executable, "shaderblocks.py", *args],
        cwd=run_cwd,
        capture_output=True,
        text=True,
        check=False,
    )


def _make_game_dir(root: Path) -> Path:
    game_dir = root / "game"
    packs = game_dir / "shaderpacks"
    packs.mkdir(parents=True)
    with zipfile.ZipFile(packs / "Sample Pack.zip", "w") as archive:
        archive.writestr("shaders/block.properties", BLOCK_PROPERTIES)
    (game_dir / "registry.json").write_text(json.dumps(REGISTRY_DUMP), encoding="utf-8")
    return game_dir


def test_t_01_analysis_writes_reports_and_summary(tmp_path: Path) -> None:
    game_dir = _make_game_dir(tmp_path)

    result = _run(
        [
            "--registry",
            str(game_dir / "registry.json"),
            "--game-dir",
            str(game_dir),
            "--export-categories",
        ]
    )

    assert result.returncode == 0
    assert "Shader block analysis complete:" in result.stdout
    report = game_dir / "logs" / "block_comparison_Sample_Pack.zip.txt"
    text = report.read_text(encoding="utf-8")
    assert "== BLOCK COMPARISON SUMMARY FOR SAMPLE PACK.ZIP ==" in text
    assert "Blocks missing from shader: 1" in text
    assert "modx:ore" in text
    missing = (game_dir / "logs" / "missing_property_states.txt").read_text(encoding="utf-8")
    assert "minecraft:redstone_torch:lit=true" in missing
    assert (game_dir / ".shaderblocks" / "block_render_categories.json").exists()


def test_t_02_second_run_uses_registry_cache(tmp_path: Path) -> None:
    game_dir = _make_game_dir(tmp_path)
    args = ["--registry", str(game_dir / "registry.json"), "--game-dir", str(game_dir), "-v"]

    first = _run(args)
    second = _run(args)

    assert first.returncode == 0
    assert second.returncode == 0
    assert "Using cached block registry data" in second.stderr


def test_t_03_inspect_prints_parse_result(tmp_path: Path) -> None:
    game_dir = _make_game_dir(tmp_path)

    result = _run(
        [
            "--inspect",
            str(game_dir / "shaderpacks" / "Sample Pack.zip"),
            "--mc-version",
            "1.20.1",
        ]
    )

    assert result.returncode == 0
    assert "MC_VERSION=12001" in result.stdout
    assert "minecraft:redstone_torch  lit=false" in result.stdout


def test_t_04_unknown_flag_returns_argparse_usage_code() -> None:
    result = _run(["--not-a-flag"])

    assert result.returncode == 2


def test_t_05_missing_registry_degrades_without_traceback(tmp_path: Path) -> None:
    isolated = tmp_path / "shaderblocks.py"
    shutil.copy2(_tool_root() / "shaderblocks.py", isolated)

    result = subprocess.run(
        [sys.executable, str(isolated)],
        cwd=tmp_path,
        capture_output=True,
        text=True,
        check=False,
    )

    combined_output = result.stdout + result.stderr
    assert result.returncode == 1
    assert "PATH_NOT_FOUND" in combined_output
    assert "--registry" in combined_output
    assert "Traceback (most recent call last)" not in combined_output


def test_t_06_invalid_version_is_a_config_error(tmp_path: Path) -> None:
    game_dir = _make_game_dir(tmp_path)

    result = _run(["--registry", str(game_dir / "registry.json"), "--mc-version", "banana"])

    assert result.returncode == 1
    assert "INVALID_MC_VERSION" in result.stdout


def test_t_07_help_stable_surface_includes_public_flags() -> None:
    result = _run(["--help"])

    assert result.returncode == 0
    for flag in (
        "--registry",
        "--game-dir",
        "--shaderpacks-dir",
        "--logs-dir",
        "--cache-dir",
        "--mc-version",
        "--export-categories",
        "--no-cache",
        "--inspect",
        "--verbose",
    ):
        assert flag in result.stdout
