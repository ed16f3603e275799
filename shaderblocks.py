"""Shader pack block coverage analyzer.

Compares the blocks a game registers against the blocks a shader pack lists
in its shaders/block.properties file. Reports game blocks the pack never
mentions, pack entries that name no game block, and block state variants
(property values) the pack only partially covers.

Usage:
    python shaderblocks.py --registry registry_dump.json --game-dir ~/.minecraft
    python shaderblocks.py --inspect shaderpacks/MyPack.zip --mc-version 1.21.5
"""

import abc
import argparse
import hashlib
import json
import logging
import operator
import re
import sys
import threading
import time
import zipfile
from collections import defaultdict
from collections.abc import Callable, Iterable, Iterator, Mapping
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import NamedTuple

DEFAULT_GAME_DIR = Path(".")
DEFAULT_NAMESPACE = "minecraft"
TAG_PREFIX = "tags_"
BLOCK_PROPERTIES_PATH = "shaders/block.properties"

REGISTRY_CACHE_FILENAME = "block_registry_cache.json"
USED_PROPERTIES_FILENAME = "block_properties.json"
CATEGORIES_FILENAME = "block_render_categories.json"
MISSING_STATES_FILENAME = "missing_property_states.txt"
DEBUG_LOG_FILENAME = "shader_blocks_debug.log"

LOGGER_NAME = "shaderblocks"
_log = logging.getLogger(LOGGER_NAME)


# ===--- CLI config contracts ---=== #


class McVersion(NamedTuple):
    major: int
    minor: int
    patch: int = 0

    def __str__(self) -> str:
        if self.patch:
            return f"{self.major}.{self.minor}.{self.patch}"
        return f"{self.major}.{self.minor}"

    def as_int(self) -> int:
        """Integer form used by MC_VERSION conditions, e.g. 1.21.5 -> 12105."""
        return self.major * 10000 + self.minor * 100 + self.patch


@dataclass(frozen=True)
class AnalyzeConfig:
    registry: Path
    game_dir: Path
    shaderpacks_dir: Path
    logs_dir: Path
    cache_dir: Path
    mc_version: McVersion | None
    export_categories: bool
    use_cache: bool
    verbosity: int = 0


@dataclass(frozen=True)
class InspectConfig:
    pack: Path
    registry: Path | None
    mc_version: McVersion | None
    verbosity: int = 0


VALID_ERROR_CODES = {
    "INVALID_MC_VERSION",
    "MISSING_MC_VERSION",
    "CONFLICT_INSPECT_EXPORT",
    "PATH_NOT_FOUND",
}
LATEST_MC_VERSION = 99999
_MC_VERSION_RE = re.compile(r"^(\d+)\.(\d+)(?:\.(\d+))?(?:-([0-9A-Za-z.]+))?$")


class ConfigError(Exception):
    def __init__(self, code: str, message: str, suggestion: str | None = None):
        if code not in VALID_ERROR_CODES:
            raise ValueError(f"Unknown config error code: {code}")
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion


def parse_mc_version(raw: str) -> McVersion:
    text = raw.strip()
    if text.isdigit():
        value = int(text)
        return McVersion(value // 10000, value // 100 % 100, value % 100)

    match = _MC_VERSION_RE.match(text)
    if match is None:
        raise ConfigError(
            "INVALID_MC_VERSION",
            f"Unsupported Minecraft version: {raw}",
            "Use a release version like 1.21.5 or the integer form 12105.",
        )
    if match.group(4):
        _log.warning(
            "Detected snapshot/pre-release version %s, using only the numeric part",
            raw,
        )
    return McVersion(
        int(match.group(1)),
        int(match.group(2)),
        int(match.group(3) or 0),
    )


def version_int_or_latest(raw: str) -> int:
    """Integer form of raw, or LATEST_MC_VERSION when it cannot be parsed.

    Treating an unreadable version as the newest one makes every
    ``MC_VERSION >= N`` check pass, which matches what packs target first.
    """
    try:
        return parse_mc_version(raw).as_int()
    except ConfigError:
        _log.error("Failed to parse Minecraft version %r, assuming latest", raw)
        return LATEST_MC_VERSION


def validate_path_exists(
    path: Path | None, flag: str, suggestion: str | None = None
) -> Path:
    if path is None:
        raise ConfigError(
            "PATH_NOT_FOUND",
            f"{flag} is required: no path provided.",
            suggestion or f"Pass the path explicitly: {flag} /path/to/resource",
        )
    if path.exists():
        return path
    raise ConfigError(
        "PATH_NOT_FOUND",
        f"Path for {flag} does not exist: {path}",
        suggestion or "Provide an existing path for this flag.",
    )


def build_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Compare game blocks against shader pack block.properties"
    )

    parser.add_argument("--registry", type=Path, default=None)
    parser.add_argument("--game-dir", type=Path, default=DEFAULT_GAME_DIR)
    parser.add_argument("--shaderpacks-dir", type=Path, default=None)
    parser.add_argument("--logs-dir", type=Path, default=None)
    parser.add_argument("--cache-dir", type=Path, default=None)
    parser.add_argument("--mc-version", type=str, default=None)

    parser.add_argument("--export-categories", action="store_true", default=False)
    parser.add_argument("--no-cache", action="store_true", default=False)

    parser.add_argument("--inspect", type=Path, default=None)
    parser.add_argument("-v", "--verbose", action="count", default=0)

    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = build_argument_parser()
    return parser.parse_args(argv)


def validate_config(args: argparse.Namespace) -> AnalyzeConfig | InspectConfig:
    if args.inspect is not None and args.export_categories:
        raise ConfigError(
            "CONFLICT_INSPECT_EXPORT",
            "--inspect cannot be combined with --export-categories.",
            "Inspect one pack, or run a full analysis with --export-categories.",
        )

    mc_version = (
        parse_mc_version(args.mc_version) if args.mc_version is not None else None
    )

    if args.inspect is not None:
        pack = validate_path_exists(args.inspect, "--inspect")
        registry = None
        if mc_version is None:
            if args.registry is None:
                raise ConfigError(
                    "MISSING_MC_VERSION",
                    "--inspect needs a game version to evaluate #if directives.",
                    "Pass --mc-version 1.21.5, or --registry with a registry dump.",
                )
            registry = validate_path_exists(args.registry, "--registry")
        return InspectConfig(
            pack=pack,
            registry=registry,
            mc_version=mc_version,
            verbosity=args.verbose,
        )

    registry = validate_path_exists(
        args.registry,
        "--registry",
        "Dump the game's block registry to JSON and pass it:\n"
        "  --registry /path/to/registry_dump.json",
    )
    game_dir = args.game_dir
    return AnalyzeConfig(
        registry=registry,
        game_dir=game_dir,
        shaderpacks_dir=args.shaderpacks_dir or game_dir / "shaderpacks",
        logs_dir=args.logs_dir or game_dir / "logs",
        cache_dir=args.cache_dir or game_dir / ".shaderblocks",
        mc_version=mc_version,
        export_categories=bool(args.export_categories),
        use_cache=not args.no_cache,
        verbosity=args.verbose,
    )


def build_config(argv: list[str] | None = None) -> AnalyzeConfig | InspectConfig:
    return validate_config(parse_args(argv))


# ===--- Logging ---=== #

_stream_handler: logging.Handler | None = None


def configure_logging(verbosity: int) -> None:
    """Attach a stderr handler to the ``shaderblocks`` logger.

    0 -> WARNING, 1 -> INFO, 2+ -> DEBUG. The logger itself stays at DEBUG so
    the per-batch debug file receives everything regardless of verbosity.
    Calling again replaces the previous stderr handler.
    """
    global _stream_handler

    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    if _stream_handler is not None:
        _log.removeHandler(_stream_handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s [%(levelname)-5.5s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    _log.setLevel(logging.DEBUG)
    _log.addHandler(handler)
    _stream_handler = handler


@dataclass(frozen=True)
class DebugLogSession:
    """A debug file handler attached for the duration of one batch."""

    handler: logging.Handler
    path: Path
    previous_level: int


def open_debug_log(logs_dir: Path) -> DebugLogSession | None:
    """Start the per-batch debug log, truncating any previous one.

    Returns None when the log file cannot be created; the batch still runs.
    """
    path = logs_dir / DEBUG_LOG_FILENAME
    try:
        logs_dir.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(path, mode="w", encoding="utf-8")
    except OSError as err:
        _log.error("Failed to create debug log file %s: %s", path, err)
        return None

    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter("%(levelname)-5.5s %(message)s"))
    session = DebugLogSession(handler=handler, path=path, previous_level=_log.level)
    _log.setLevel(logging.DEBUG)
    _log.addHandler(handler)
    _log.debug(
        "--- Shader Block Debug Log - %s ---", time.strftime("%Y-%m-%d %H:%M:%S")
    )
    return session


def close_debug_log(session: DebugLogSession | None) -> None:
    if session is None:
        return
    _log.removeHandler(session.handler)
    session.handler.close()
    _log.setLevel(session.previous_level)


# ===--- Identifier model ---=== #

PARSE_ERROR_CODES = {"EMPTY", "MALFORMED_DIRECTIVE"}
_NUMERIC_SEGMENT_RE = re.compile(r"^[+-]?\d+$")


class ParseError(Exception):
    """An identifier or directive that cannot be interpreted.

    Callers skip the offending token or line and keep going; line_number is
    filled in where the error is tied to a position in a properties file.
    """

    def __init__(self, code: str, message: str, line_number: int | None = None):
        if code not in PARSE_ERROR_CODES:
            raise ValueError(f"Unknown parse error code: {code}")
        super().__init__(message)
        self.code = code
        self.message = message
        self.line_number = line_number


@dataclass(frozen=True, order=True)
class BlockIdentifier:
    namespace: str
    path: str

    def __post_init__(self) -> None:
        if not self.namespace or not self.path:
            raise ValueError(
                f"Block identifiers need a namespace and a path: {self.namespace!r}:{self.path!r}"
            )

    def __str__(self) -> str:
        return f"{self.namespace}:{self.path}"


@dataclass(frozen=True, order=True)
class PropertyAssignment:
    name: str
    value: str

    def __str__(self) -> str:
        return f"{self.name}={self.value}"


@dataclass(frozen=True, eq=False)
class QualifiedBlockState:
    """A block identifier plus the property assignments naming one variant.

    properties keeps parse order for the canonical string; equality and
    hashing compare the property *set*, so order never matters for lookups.
    """

    block: BlockIdentifier
    properties: tuple[PropertyAssignment, ...] = ()

    def property_set(self) -> frozenset[PropertyAssignment]:
        return frozenset(self.properties)

    def property_map(self) -> dict[str, str]:
        return {prop.name: prop.value for prop in self.properties}

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, QualifiedBlockState):
            return NotImplemented
        return self.block == other.block and self.property_set() == other.property_set()

    def __hash__(self) -> int:
        return hash((self.block, self.property_set()))

    def __str__(self) -> str:
        return str(self.block) + "".join(f":{prop}" for prop in self.properties)


def is_numeric_segment(segment: str) -> bool:
    return bool(_NUMERIC_SEGMENT_RE.match(segment))


def parse_block_id(text: str) -> BlockIdentifier:
    """Resolve a property-free identifier using the legacy shader rules.

    Segments are split on ':'; splitting stops at the first segment holding
    '=' and empty segments are ignored.

    - ``stone``         -> ``minecraft:stone``
    - ``stone:5``       -> ``minecraft:stone`` (numeric metadata is dropped)
    - ``modx:stone``    -> ``modx:stone``
    - ``modx:stone:3``  -> ``modx:stone``

    Args:
        text: Raw identifier text.

    Returns:
        Fully namespaced BlockIdentifier.

    Raises:
        ParseError: EMPTY when no usable segment remains.
    """
    segments: list[str] = []
    for raw_segment in text.split(":"):
        if "=" in raw_segment:
            break
        segment = raw_segment.strip()
        if segment:
            segments.append(segment)

    if not segments:
        raise ParseError("EMPTY", f"Empty block identifier: {text!r}")
    if len(segments) == 1:
        return BlockIdentifier(DEFAULT_NAMESPACE, segments[0])

    # Only the second segment is checked for metadata, so ``modx:5:stone``
    # reads as ``minecraft:modx`` and a canonical id always re-parses to itself.
    namespace, path = segments[0], segments[1]
    if is_numeric_segment(path):
        # Legacy numeric metadata has no block-state equivalent.
        return BlockIdentifier(DEFAULT_NAMESPACE, namespace)
    return BlockIdentifier(namespace, path)


def parse_property_string(text: str) -> tuple[PropertyAssignment, ...]:
    """Parse ``name=value:name=value`` into assignments in first-seen order.

    Values are trimmed and lowercased. Tokens without '=' or with an empty
    name are dropped. A repeated name keeps its first position and takes the
    last value.
    """
    by_name: dict[str, PropertyAssignment] = {}
    for part in text.split(":"):
        if "=" not in part:
            continue
        name, value = part.split("=", 1)
        name = name.strip()
        if not name:
            continue
        by_name[name] = PropertyAssignment(name, value.strip().lower())
    return tuple(by_name.values())


def parse_block_state(text: str) -> QualifiedBlockState:
    """Parse a possibly property-qualified identifier.

    The block name ends at the last ':' before the first '='; everything
    after that colon is the property list.

    Args:
        text: Identifier such as ``oak_fence:waterlogged=true``.

    Returns:
        Fully namespaced QualifiedBlockState.

    When no block name precedes the properties, the name before the first
    '=' is kept and the properties are dropped; failing that, the text after
    the '=' is parsed instead.

    Raises:
        ParseError: EMPTY when no block name can be found at all.
    """
    stripped = text.strip()
    if not stripped:
        raise ParseError("EMPTY", "Empty block identifier")

    equals_at = stripped.find("=")
    if equals_at == -1:
        return QualifiedBlockState(parse_block_id(stripped))

    colon_at = stripped.rfind(":", 0, equals_at)
    if colon_at != -1:
        try:
            block = parse_block_id(stripped[:colon_at])
        except ParseError:
            pass
        else:
            return QualifiedBlockState(
                block, parse_property_string(stripped[colon_at + 1 :])
            )

    try:
        return QualifiedBlockState(parse_block_id(stripped[:equals_at]))
    except ParseError:
        return parse_block_state(stripped[equals_at + 1 :])


def canonicalize(text: str) -> str:
    return str(parse_block_state(text))


# ===--- Preprocessor parser ---=== #

_CONDITION_RE = re.compile(r"^MC_VERSION\s*(>=|<=|==|!=|>|<)\s*([+-]?\d+)$")
_COMPARATORS: dict[str, Callable[[int, int], bool]] = {
    ">=": operator.ge,
    ">": operator.gt,
    "<=": operator.le,
    "<": operator.lt,
    "==": operator.eq,
    "!=": operator.ne,
}


def evaluate_condition(expression: str, current_version: int) -> bool:
    """Evaluate an ``MC_VERSION <op> <int>`` expression.

    Raises:
        ParseError: MALFORMED_DIRECTIVE for anything else.
    """
    match = _CONDITION_RE.match(expression.strip())
    if match is None:
        raise ParseError(
            "MALFORMED_DIRECTIVE", f"Unsupported #if condition: {expression!r}"
        )
    return _COMPARATORS[match.group(1)](current_version, int(match.group(2)))


class ConditionStack:
    """Nesting of #if blocks; a line is live only when every frame is true."""

    def __init__(self) -> None:
        self._frames: list[bool] = []

    def __len__(self) -> int:
        return len(self._frames)

    @property
    def active(self) -> bool:
        return all(self._frames)

    def push(self, condition: bool) -> bool:
        value = self.active and condition
        self._frames.append(value)
        return value

    def flip(self) -> bool | None:
        if not self._frames:
            return None
        self._frames[-1] = not self._frames[-1]
        return self._frames[-1]

    def pop(self) -> None:
        if self._frames:
            self._frames.pop()


class LogicalLine(NamedTuple):
    line_number: int
    text: str


def iter_logical_lines(
    text: str, current_version: int, source: str = "<text>"
) -> Iterator[LogicalLine]:
    """Yield the live, continuation-joined lines of a block.properties file.

    line_number is the physical line where the logical line starts.
    """
    stack = ConditionStack()
    pending: list[str] = []
    pending_start = 0

    for line_number, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.strip()

        if line.startswith("#if "):
            expression = line[4:].strip()
            try:
                condition = evaluate_condition(expression, current_version)
            except ParseError as err:
                _log.warning("%s:%d: %s", source, line_number, err.message)
                condition = False
            value = stack.push(condition)
            _log.debug("%s:%d: #if %s -> %s", source, line_number, expression, value)
            continue
        if line == "#else":
            value = stack.flip()
            _log.debug("%s:%d: #else -> %s", source, line_number, value)
            continue
        if line == "#endif":
            stack.pop()
            _log.debug("%s:%d: #endif", source, line_number)
            continue

        if not stack.active:
            pending.clear()
            _log.debug("%s:%d: skipped by preprocessor condition", source, line_number)
            continue

        if not line or line.startswith("#"):
            pending.clear()
            continue

        if line.endswith("\\"):
            if not pending:
                pending_start = line_number
            pending.append(line[:-1] + " ")
            continue

        start = pending_start if pending else line_number
        pending.append(line)
        yield LogicalLine(start, "".join(pending).strip())
        pending.clear()

    if pending:
        _log.debug("%s: flushing continuation at end of file", source)
        yield LogicalLine(pending_start, "".join(pending).strip())


@dataclass
class ParsedBlockProperties:
    """Everything one block.properties file contributes.

    raw_blocks holds canonical identifier strings, some property-qualified.
    key_properties maps each block to every property assignment seen for it.
    """

    raw_blocks: set[str] = field(default_factory=set)
    key_properties: dict[BlockIdentifier, set[PropertyAssignment]] = field(
        default_factory=dict
    )

    def add_state(self, state: QualifiedBlockState) -> bool:
        entry = str(state)
        is_new = entry not in self.raw_blocks
        self.raw_blocks.add(entry)
        if state.properties:
            self.key_properties.setdefault(state.block, set()).update(state.properties)
        return is_new

    def merge(self, other: "ParsedBlockProperties") -> None:
        self.raw_blocks |= other.raw_blocks
        for block, props in other.key_properties.items():
            self.key_properties.setdefault(block, set()).update(props)


_SPACED_SEPARATOR_RE = re.compile(r"\s=|=\s")


def split_key_value(line: str) -> tuple[str, str] | None:
    """Split a logical line into key and value at the first '='.

    A whitespace-padded '=' takes precedence, so a key may carry its own
    ``name=value`` suffix as in ``stage:particle=true = minecraft:stone``.
    """
    if "=" not in line:
        return None
    spaced = _SPACED_SEPARATOR_RE.search(line)
    if spaced is not None:
        at = spaced.start() + spaced.group().index("=")
    else:
        at = line.index("=")
    return line[:at].strip(), line[at + 1 :].strip()


def resolve_value_token(token: str) -> QualifiedBlockState:
    """Resolve one whitespace-separated value token.

    Tokens carrying '=' go through parse_block_state; everything else
    through the plain legacy identifier rules.
    """
    if "=" in token:
        return parse_block_state(token)
    return QualifiedBlockState(parse_block_id(token))


def parse_block_line(
    line: str,
    result: ParsedBlockProperties,
    line_number: int | None = None,
    source: str = "<text>",
) -> None:
    split = split_key_value(line)
    if split is None:
        _log.debug("%s:%s: no '=' in line, skipping", source, line_number)
        return
    key, values = split

    key_state: QualifiedBlockState | None = None
    if ":" in key and "=" in key:
        try:
            key_state = parse_block_state(key)
        except ParseError as err:
            _log.info("%s:%s: ignoring key properties: %s", source, line_number, err.message)
        if key_state is not None and not key_state.properties:
            key_state = None

    for token in values.split():
        if token.startswith(TAG_PREFIX):
            _log.debug("%s:%s: skipping tag entry %r", source, line_number, token)
            continue

        if key_state is not None:
            result.add_state(key_state)
            continue

        try:
            state = resolve_value_token(token)
        except ParseError as err:
            _log.info(
                "%s:%s: could not process block value %r: %s",
                source,
                line_number,
                token,
                err.message,
            )
            continue
        if result.add_state(state):
            _log.debug("%s:%s: added %s from %r", source, line_number, state, token)


def parse_block_properties(
    text: str, current_version: int, source: str = "<text>"
) -> ParsedBlockProperties:
    """Parse block.properties text into raw block entries and property map.

    Args:
        text: Full file contents.
        current_version: Integer game version for MC_VERSION conditions.
        source: Label used in log lines (pack name and path).

    Returns:
        ParsedBlockProperties for this file.
    """
    result = ParsedBlockProperties()
    for logical in iter_logical_lines(text, current_version, source):
        parse_block_line(logical.text, result, logical.line_number, source)
    _log.debug("Total blocks read from %s: %d", source, len(result.raw_blocks))
    return result


# ===--- Shader pack sources ---=== #


class ShaderPack(abc.ABC):
    """A shader pack tree: path lookup plus UTF-8 text reads."""

    is_archive = False

    def __init__(self, path: Path):
        self.path = path
        self.name = path.name

    @abc.abstractmethod
    def exists(self, member: str) -> bool: ...

    @abc.abstractmethod
    def read_text(self, member: str) -> str: ...

    def close(self) -> None:
        pass

    def __enter__(self) -> "ShaderPack":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class DirectoryShaderPack(ShaderPack):
    def exists(self, member: str) -> bool:
        return (self.path / member.lstrip("/")).is_file()

    def read_text(self, member: str) -> str:
        return (self.path / member.lstrip("/")).read_text(encoding="utf-8")


class ZipShaderPack(ShaderPack):
    is_archive = True

    def __init__(self, path: Path):
        super().__init__(path)
        try:
            self._archive = zipfile.ZipFile(path)
        except zipfile.BadZipFile as err:
            raise OSError(f"Not a valid zip archive: {path}") from err
        self._members = set(self._archive.namelist())

    def exists(self, member: str) -> bool:
        return member.lstrip("/") in self._members

    def read_text(self, member: str) -> str:
        try:
            data = self._archive.read(member.lstrip("/"))
        except KeyError as err:
            raise FileNotFoundError(f"{member} not found in {self.path}") from err
        return data.decode("utf-8")

    def close(self) -> None:
        self._archive.close()


def is_shader_pack(path: Path) -> bool:
    return path.is_dir() or (path.is_file() and path.suffix.lower() == ".zip")


def open_shader_pack(path: Path) -> ShaderPack:
    """Open a directory or zip shader pack.

    Raises:
        OSError: The path is neither, or the archive cannot be opened.
    """
    if path.is_dir():
        return DirectoryShaderPack(path)
    if path.is_file() and path.suffix.lower() == ".zip":
        return ZipShaderPack(path)
    raise OSError(f"Not a shader pack directory or zip archive: {path}")


def discover_shader_packs(shaderpacks_dir: Path) -> list[Path]:
    """Return shader pack candidates in name order, creating the folder if absent."""
    if not shaderpacks_dir.exists():
        shaderpacks_dir.mkdir(parents=True, exist_ok=True)
        _log.debug("Created shaderpacks directory at %s", shaderpacks_dir)
        return []
    return sorted(
        (path for path in shaderpacks_dir.iterdir() if is_shader_pack(path)),
        key=lambda path: path.name,
    )


@dataclass(frozen=True)
class PackScan:
    name: str
    path: Path
    is_archive: bool
    parsed: ParsedBlockProperties


def scan_shader_pack(path: Path, current_version: int) -> PackScan:
    """Open one pack and parse its shaders/block.properties.

    A pack without the file yields an empty scan. Errors opening or decoding
    the pack propagate so the caller can skip just this pack.

    Raises:
        OSError: Pack cannot be opened or read.
        UnicodeDecodeError: block.properties is not valid UTF-8.
    """
    with open_shader_pack(path) as pack:
        if not pack.exists(BLOCK_PROPERTIES_PATH):
            _log.warning("No block.properties found in %s", path)
            parsed = ParsedBlockProperties()
        else:
            _log.debug("Reading %s from %s", BLOCK_PROPERTIES_PATH, path)
            parsed = parse_block_properties(
                pack.read_text(BLOCK_PROPERTIES_PATH),
                current_version,
                source=f"{pack.name}/{BLOCK_PROPERTIES_PATH}",
            )
        return PackScan(
            name=pack.name,
            path=path,
            is_archive=pack.is_archive,
            parsed=parsed,
        )


# ===--- Host capabilities ---=== #

MAX_OPACITY = 15
DIRECTIONS: tuple[str, ...] = ("down", "up", "north", "south", "west", "east")
MC_1_21_2 = 12102


class HostUnavailable(Exception):
    """A host capability call failed or the block is unknown to the host."""


@dataclass(frozen=True)
class StateFacts:
    """Render-relevant facts for a block's default state.

    solid_full_square holds one flag per entry of DIRECTIONS.
    """

    opacity: int
    opaque: bool
    solid_full_square: tuple[bool, ...]
    translucent_layer: bool
    luminance: int
    has_attached_entity: bool


class BlockHost(abc.ABC):
    """Capabilities the analyzer needs from the game's block registry.

    Every method raises HostUnavailable when the host cannot answer.
    """

    @abc.abstractmethod
    def enumerate_blocks(self) -> tuple[BlockIdentifier, ...]: ...

    @abc.abstractmethod
    def declared_properties(self, block: BlockIdentifier) -> tuple[str, ...]: ...

    @abc.abstractmethod
    def possible_values(self, block: BlockIdentifier, name: str) -> frozenset[str]: ...

    @abc.abstractmethod
    def state_facts(self, block: BlockIdentifier) -> StateFacts: ...

    @abc.abstractmethod
    def current_epoch(self) -> str: ...

    def validate_state(
        self, block: BlockIdentifier, assignments: Iterable[PropertyAssignment]
    ) -> bool:
        """Return True when one reachable state carries every assignment.

        The default only checks each value against possible_values; hosts
        that know the full state list override this.
        """
        for prop in assignments:
            if prop.value not in {v.lower() for v in self.possible_values(block, prop.name)}:
                return False
        return True


def compute_epoch(
    mods: Mapping[str, str],
    minecraft_version: str,
    blocks: Iterable[BlockIdentifier] = (),
) -> str:
    """Fingerprint the loaded content.

    SHA-256 of the sorted ``id@version`` entries followed by the sorted block
    ids, so two registries with the same mods but different blocks differ.
    """
    entries = sorted(
        f"{mod_id}@{version}"
        for mod_id, version in mods.items()
        if mod_id != DEFAULT_NAMESPACE
    )
    entries.append(f"{DEFAULT_NAMESPACE}@{minecraft_version}")
    entries.extend(sorted(str(block) for block in blocks))
    return hashlib.sha256(";".join(entries).encode("utf-8")).hexdigest()


FactReader = Callable[[Mapping[str, object]], StateFacts]


def _read_facts(entry: Mapping[str, object], opacity_key: str) -> StateFacts:
    try:
        faces = tuple(bool(face) for face in entry.get("solid_faces") or ())
        faces = (faces + (False,) * len(DIRECTIONS))[: len(DIRECTIONS)]
        render_layer = str(entry.get("render_layer") or "solid")
        return StateFacts(
            opacity=int(entry.get(opacity_key, MAX_OPACITY)),
            opaque=bool(entry.get("opaque", False)),
            solid_full_square=faces,
            translucent_layer="translucent" in render_layer.lower(),
            luminance=int(entry.get("luminance", 0)),
            has_attached_entity=bool(entry.get("block_entity", False)),
        )
    except (TypeError, ValueError) as err:
        raise HostUnavailable(f"Malformed state facts: {err}") from err


def read_state_facts(entry: Mapping[str, object]) -> StateFacts:
    return _read_facts(entry, "opacity")


def read_legacy_state_facts(entry: Mapping[str, object]) -> StateFacts:
    # Older hosts only answer opacity for a world position.
    return _read_facts(entry, "light_opacity")


STATE_FACT_READERS: tuple[tuple[int, FactReader], ...] = (
    (MC_1_21_2, read_state_facts),
    (0, read_legacy_state_facts),
)
"""Version-gated fact readers, newest first. Resolved once per host."""


def resolve_fact_reader(mc_version: int) -> FactReader:
    for min_version, reader in STATE_FACT_READERS:
        if mc_version >= min_version:
            return reader
    return read_legacy_state_facts


class SnapshotHost(BlockHost):
    """BlockHost backed by a JSON dump of the game's block registry.

    Dump layout::

        {
          "minecraft_version": "1.21.5",
          "mods": {"sodium": "0.6.0"},
          "blocks": {
            "minecraft:redstone_torch": {
              "properties": {"lit": ["true", "false"]},
              "states": [{"lit": "true"}, {"lit": "false"}],
              "opacity": 0, "opaque": false,
              "solid_faces": [false, false, false, false, false, false],
              "render_layer": "cutout", "luminance": 7, "block_entity": false
            }
          }
        }

    ``states`` is optional; when present it is the list of reachable
    property combinations and validate_state checks against it.
    """

    def __init__(
        self,
        blocks: Mapping[str, Mapping[str, object]],
        mods: Mapping[str, str] | None = None,
        minecraft_version: str = "unknown",
        mc_version: int | None = None,
    ):
        self._blocks: dict[BlockIdentifier, Mapping[str, object]] = {}
        for raw_id, entry in blocks.items():
            if not isinstance(entry, Mapping):
                _log.warning("Ignoring registry entry %r: expected an object", raw_id)
                continue
            try:
                block = parse_block_id(raw_id)
            except ParseError as err:
                _log.warning("Ignoring registry entry %r: %s", raw_id, err.message)
                continue
            self._blocks[block] = entry

        self.mods = dict(mods or {})
        self.minecraft_version = minecraft_version
        self.version = (
            mc_version if mc_version is not None else version_int_or_latest(minecraft_version)
        )
        self._fact_reader = resolve_fact_reader(self.version)
        self._epoch = compute_epoch(self.mods, minecraft_version, self._blocks)

    @classmethod
    def from_dump(cls, path: Path, mc_version: int | None = None) -> "SnapshotHost":
        """Load a registry dump file.

        Raises:
            OSError: File cannot be read.
            ValueError: File is not JSON or lacks a ``blocks`` object.
        """
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, dict) or not isinstance(data.get("blocks"), dict):
            raise ValueError(f"{path}: expected a JSON object with a 'blocks' mapping")
        mods = data.get("mods") or {}
        if not isinstance(mods, dict):
            raise ValueError(f"{path}: 'mods' must map mod ids to versions")
        return cls(
            data["blocks"],
            mods={str(k): str(v) for k, v in mods.items()},
            minecraft_version=str(data.get("minecraft_version", "unknown")),
            mc_version=mc_version,
        )

    def _entry(self, block: BlockIdentifier) -> Mapping[str, object]:
        try:
            return self._blocks[block]
        except KeyError:
            raise HostUnavailable(f"Block not found in registry: {block}") from None

    def _properties(self, block: BlockIdentifier) -> Mapping[str, object]:
        props = self._entry(block).get("properties") or {}
        if not isinstance(props, Mapping):
            raise HostUnavailable(f"Malformed properties for {block}")
        return props

    def enumerate_blocks(self) -> tuple[BlockIdentifier, ...]:
        return tuple(sorted(self._blocks))

    def declared_properties(self, block: BlockIdentifier) -> tuple[str, ...]:
        return tuple(self._properties(block))

    def possible_values(self, block: BlockIdentifier, name: str) -> frozenset[str]:
        values = self._properties(block).get(name)
        if not isinstance(values, list):
            raise HostUnavailable(f"{block} has no property {name}")
        return frozenset(str(value).lower() for value in values)

    def state_facts(self, block: BlockIdentifier) -> StateFacts:
        return self._fact_reader(self._entry(block))

    def current_epoch(self) -> str:
        return self._epoch

    def validate_state(
        self, block: BlockIdentifier, assignments: Iterable[PropertyAssignment]
    ) -> bool:
        wanted = list(assignments)
        states = self._entry(block).get("states")
        if not isinstance(states, list):
            return super().validate_state(block, wanted)
        for state in states:
            if not isinstance(state, Mapping):
                continue
            values = {str(k): str(v).lower() for k, v in state.items()}
            if all(values.get(prop.name) == prop.value for prop in wanted):
                return True
        return False


# ===--- Render classifier ---=== #


class RenderCategory(Enum):
    SOLID = "solid"
    TRANSLUCENT = "translucent"
    LIGHT_EMITTING = "light_emitting"
    FULL_CUBE = "full_cube"
    BLOCK_ENTITY = "block_entity"

    @property
    def display_name(self) -> str:
        # Reports call the solid bucket what it holds after the other rules.
        if self is RenderCategory.SOLID:
            return "non_full_blocks"
        return self.name


PRIMARY_CATEGORY_PRECEDENCE: tuple[RenderCategory, ...] = (
    RenderCategory.LIGHT_EMITTING,
    RenderCategory.TRANSLUCENT,
    RenderCategory.FULL_CUBE,
    RenderCategory.BLOCK_ENTITY,
)


def light_passes(facts: StateFacts, face: int) -> bool:
    """Return True when light gets through the given face (index into DIRECTIONS)."""
    if facts.opacity < MAX_OPACITY:
        return True
    if facts.translucent_layer:
        return True
    if not facts.solid_full_square[face]:
        return True
    return False


def is_full_cube(facts: StateFacts) -> bool:
    if not facts.opaque:
        return False
    for face in range(len(DIRECTIONS)):
        if not facts.solid_full_square[face] or light_passes(facts, face):
            return False
    return True


def classify_state_facts(facts: StateFacts) -> frozenset[RenderCategory]:
    """Derive render categories from state facts.

    Exactly one of SOLID and TRANSLUCENT is always present; the other
    categories are independent.
    """
    categories = {
        RenderCategory.TRANSLUCENT if facts.translucent_layer else RenderCategory.SOLID
    }
    if facts.luminance > 0:
        categories.add(RenderCategory.LIGHT_EMITTING)
    if is_full_cube(facts):
        categories.add(RenderCategory.FULL_CUBE)
    if facts.has_attached_entity:
        categories.add(RenderCategory.BLOCK_ENTITY)
    return frozenset(categories)


def primary_category(categories: Iterable[RenderCategory]) -> RenderCategory:
    """Pick the single bucket a block is listed under in reports."""
    present = set(categories)
    for category in PRIMARY_CATEGORY_PRECEDENCE:
        if category in present:
            return category
    return RenderCategory.SOLID


class RenderClassifier:
    """Per-epoch cache of block render categories.

    All cache structures sit behind one re-entrant lock, so a bulk
    categorize_all on one thread never interleaves with lookups or a
    clear_caches on another. A changed host epoch clears everything before
    the next read.
    """

    def __init__(self, host: BlockHost):
        self._host = host
        self._lock = threading.RLock()
        self._epoch: str | None = None
        self._cache: dict[BlockIdentifier, frozenset[RenderCategory] | None] = {}
        self._buckets: dict[RenderCategory, list[BlockIdentifier]] = {
            category: [] for category in RenderCategory
        }
        self._categorized = False

    def _clear_locked(self) -> None:
        self._cache.clear()
        for bucket in self._buckets.values():
            bucket.clear()
        self._categorized = False

    def _sync_epoch(self) -> None:
        epoch = self._host.current_epoch()
        if epoch != self._epoch:
            if self._epoch is not None:
                _log.info("Registry epoch changed, clearing render category caches")
            self._clear_locked()
            self._epoch = epoch

    def clear_caches(self) -> None:
        with self._lock:
            self._clear_locked()

    def categories(self, block: BlockIdentifier) -> frozenset[RenderCategory] | None:
        """Categories for block, or None when the host does not know it."""
        with self._lock:
            self._sync_epoch()
            if block in self._cache:
                return self._cache[block]
            try:
                facts = self._host.state_facts(block)
            except HostUnavailable as err:
                _log.debug("Cannot classify %s: %s", block, err)
                result = None
            else:
                result = classify_state_facts(facts)
            self._cache[block] = result
            return result

    def primary_category(self, block: BlockIdentifier) -> RenderCategory | None:
        categories = self.categories(block)
        if categories is None:
            return None
        return primary_category(categories)

    def categorize_all(self) -> dict[RenderCategory, int]:
        """Classify every host block once and rebuild the category buckets."""
        with self._lock:
            self._sync_epoch()
            self._clear_locked()
            try:
                blocks = self._host.enumerate_blocks()
            except HostUnavailable as err:
                _log.error("Cannot enumerate host blocks: %s", err)
                blocks = ()
            for block in blocks:
                categories = self.categories(block)
                if categories is None:
                    continue
                for category in RenderCategory:
                    if category in categories:
                        self._buckets[category].append(block)
            self._categorized = True
            return {category: len(self._buckets[category]) for category in RenderCategory}

    def _ensure_categorized(self) -> None:
        self._sync_epoch()
        if not self._categorized:
            self.categorize_all()

    def blocks_in_category(self, category: RenderCategory) -> tuple[BlockIdentifier, ...]:
        with self._lock:
            self._ensure_categorized()
            return tuple(self._buckets[category])

    def category_counts(self) -> dict[str, int]:
        with self._lock:
            self._ensure_categorized()
            return {category.name: len(self._buckets[category]) for category in RenderCategory}

    def block_ids_by_category(self) -> dict[RenderCategory, tuple[BlockIdentifier, ...]]:
        with self._lock:
            self._ensure_categorized()
            return {
                category: tuple(self._buckets[category]) for category in RenderCategory
            }


# ===--- Property registry ---=== #


class PropertyRegistry:
    """Tracks property values shader packs use against values the host offers.

    ``used`` is filled from parsed shader entries; ``available`` is filled
    lazily from the host and cached for the current epoch. Call reset() at
    the start of every analysis run.
    """

    def __init__(self, host: BlockHost):
        self._host = host
        self._lock = threading.RLock()
        self._used: dict[BlockIdentifier, dict[str, set[str]]] = {}
        self._available: dict[BlockIdentifier, dict[str, frozenset[str]]] = {}
        self._epoch: str | None = None

    def reset(self) -> None:
        with self._lock:
            self._used.clear()
            self._available.clear()
            self._epoch = None
        _log.debug("Cleared all property registry data")

    def register_used(self, block: BlockIdentifier, name: str, value: str) -> bool:
        """Record one used value. Returns False when it was already known."""
        normalized = value.lower()
        with self._lock:
            values = self._used.setdefault(block, {}).setdefault(name, set())
            if normalized in values:
                return False
            values.add(normalized)
        _log.debug("Registered used property %s=%s for %s", name, normalized, block)
        return True

    def register_state(self, state: QualifiedBlockState) -> None:
        for prop in state.properties:
            self.register_used(state.block, prop.name, prop.value)

    def ingest_shader_blocks(self, entries: Iterable[str]) -> int:
        """Register the properties of every property-qualified entry.

        Returns:
            Number of distinct blocks with used properties afterwards.
        """
        seen = 0
        for entry in entries:
            seen += 1
            if "=" not in entry:
                continue
            try:
                state = parse_block_state(entry)
            except ParseError as err:
                _log.info("Skipping shader entry %r: %s", entry, err.message)
                continue
            self.register_state(state)
        with self._lock:
            count = len(self._used)
        _log.info(
            "Processed %d shader blocks, found %d blocks with properties", seen, count
        )
        return count

    def used_properties(self) -> dict[BlockIdentifier, dict[str, frozenset[str]]]:
        with self._lock:
            return {
                block: {name: frozenset(values) for name, values in props.items()}
                for block, props in self._used.items()
            }

    def _sync_epoch(self) -> None:
        epoch = self._host.current_epoch()
        if epoch != self._epoch:
            self._available.clear()
            self._epoch = epoch

    def _query_host(self, block: BlockIdentifier) -> dict[str, frozenset[str]]:
        try:
            names = self._host.declared_properties(block)
        except HostUnavailable as err:
            _log.debug("Block not found in registry: %s (%s)", block, err)
            return {}

        result: dict[str, frozenset[str]] = {}
        for name in names:
            try:
                values = self._host.possible_values(block, name)
            except HostUnavailable as err:
                _log.error("Error getting values of %s for %s: %s", name, block, err)
                continue
            result[name] = frozenset(value.lower() for value in values)
        return result

    def get_available(self, block: BlockIdentifier) -> dict[str, frozenset[str]]:
        """All values the host offers per property; {} for unknown blocks."""
        with self._lock:
            self._sync_epoch()
            if block not in self._available:
                self._available[block] = self._query_host(block)
            return dict(self._available[block])

    def is_valid_property_state(self, block: BlockIdentifier, name: str, value: str) -> bool:
        """Ask the host again whether block can actually be in state name=value."""
        try:
            return self._host.validate_state(
                block, (PropertyAssignment(name, value.lower()),)
            )
        except HostUnavailable as err:
            _log.debug("Validation of %s:%s=%s failed: %s", block, name, value, err)
            return False

    def matches_host(self, state: QualifiedBlockState) -> bool:
        """True when every property of state exists on the block with that value."""
        if not state.properties:
            return True
        available = self.get_available(state.block)
        return all(
            prop.name in available and prop.value in available[prop.name]
            for prop in state.properties
        )

    def find_all_missing_property_states(self) -> list[str]:
        """List ``namespace:path:name=value`` states no shader entry uses.

        Only properties a pack already uses for a block are compared, so a
        pack that never qualifies a block is not flooded with its variants.

        Returns:
            Lexicographically sorted list of missing state strings.
        """
        missing: list[str] = []
        for block, used_props in sorted(self.used_properties().items()):
            available = self.get_available(block)
            if not available:
                _log.debug("Skipping block not found in game: %s", block)
                continue

            for name, used_values in used_props.items():
                if name not in available:
                    _log.debug("Property %s not found on block %s", name, block)
                    continue
                for value in available[name] - used_values:
                    state = f"{block}:{name}={value}"
                    if self.is_valid_property_state(block, name, value):
                        missing.append(state)
                        _log.debug("Found missing property state: %s", state)
                    else:
                        _log.debug("Skipping unreachable property state: %s", state)

        missing.sort()
        _log.info("Found %d missing property states in total", len(missing))
        return missing

    def save_used(self, path: Path) -> None:
        """Persist used properties as ``{namespace: {path: {name: [values]}}}``.

        Raises:
            OSError: Propagated directly if the write fails.
        """
        grouped: dict[str, dict[str, dict[str, list[str]]]] = defaultdict(dict)
        for block, props in self.used_properties().items():
            grouped[block.namespace][block.path] = {
                name: sorted(values) for name, values in props.items()
            }
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(grouped, indent=2, sort_keys=True) + "\n", encoding="utf-8")
        _log.debug("Saved property registry with %d blocks to %s", len(self._used), path)


# ===--- Registry snapshot cache ---=== #


@dataclass(frozen=True)
class GameBlocks:
    """The host's block set, as canonical ids and grouped by namespace.

    Attributes:
        ids: Canonical ``namespace:path`` strings.
        by_namespace: Namespace -> sorted paths, namespaces in sorted order.
        from_cache: True when read from the snapshot file instead of the host.
    """

    ids: frozenset[str]
    by_namespace: dict[str, tuple[str, ...]]
    from_cache: bool = False


def group_by_namespace(ids: Iterable[str]) -> dict[str, tuple[str, ...]]:
    """Split ``namespace:path`` strings into sorted per-namespace tuples.

    Strings without a namespace land under ``unknown``.
    """
    grouped: dict[str, list[str]] = defaultdict(list)
    for block_id in ids:
        namespace, sep, path = block_id.partition(":")
        if sep:
            grouped[namespace].append(path)
        else:
            grouped["unknown"].append(block_id)
    return {namespace: tuple(sorted(grouped[namespace])) for namespace in sorted(grouped)}


def save_registry_cache(
    path: Path, epoch: str, by_namespace: Mapping[str, Iterable[str]]
) -> None:
    blocks = {namespace: sorted(paths) for namespace, paths in by_namespace.items()}
    payload = {
        "modHash": epoch,
        "timestamp": int(time.time() * 1000),
        "blockCount": sum(len(paths) for paths in blocks.values()),
        "blocks": blocks,
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")
    _log.info(
        "Cached %d blocks from %d namespaces to %s",
        payload["blockCount"],
        len(blocks),
        path,
    )


def load_registry_cache(path: Path, epoch: str) -> dict[str, tuple[str, ...]] | None:
    """Return the cached snapshot when it was written for this epoch, else None."""
    if not path.exists():
        _log.info("Block registry cache not found at %s", path)
        return None
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
        cached_epoch = payload["modHash"]
        blocks = payload["blocks"]
    except (OSError, ValueError, KeyError, TypeError) as err:
        _log.error("Failed to read block registry cache %s: %s", path, err)
        return None

    if cached_epoch != epoch:
        _log.info("Block registry cache is stale (mods or blocks have changed)")
        _log.debug("Current hash: %s, cached hash: %s", epoch, cached_epoch)
        return None
    if not isinstance(blocks, dict) or not all(
        isinstance(paths, list) for paths in blocks.values()
    ):
        _log.error("Block registry cache %s has no block mapping", path)
        return None
    return {
        str(namespace): tuple(sorted(str(p) for p in paths))
        for namespace, paths in sorted(blocks.items())
    }


def load_game_blocks(host: BlockHost, cache_path: Path | None = None) -> GameBlocks:
    """Enumerate host blocks, going through the snapshot cache when given.

    A fresh enumeration rewrites the cache; a failed cache write is logged
    and ignored.
    """
    epoch = host.current_epoch()
    if cache_path is not None:
        cached = load_registry_cache(cache_path, epoch)
        if cached:
            _log.info("Using cached block registry data")
            ids = frozenset(
                f"{namespace}:{path}" for namespace, paths in cached.items() for path in paths
            )
            return GameBlocks(ids=ids, by_namespace=cached, from_cache=True)

    try:
        blocks = host.enumerate_blocks()
    except HostUnavailable as err:
        _log.error("Cannot enumerate host blocks: %s", err)
        blocks = ()
    ids = frozenset(str(block) for block in blocks)
    by_namespace = group_by_namespace(ids)

    if cache_path is not None:
        try:
            save_registry_cache(cache_path, epoch, by_namespace)
        except OSError as err:
            _log.error("Failed to write block registry cache: %s", err)
    return GameBlocks(ids=ids, by_namespace=by_namespace, from_cache=False)


# ===--- Diff/report engine ---=== #


@dataclass(frozen=True)
class DiffReport:
    missing_from_shader: frozenset[str]
    unused_in_shader: frozenset[str]
    missing_property_states: tuple[str, ...] = ()


@dataclass(frozen=True)
class CategoryGrouping:
    """Entries grouped namespace -> category -> path.

    Namespaces are in alphabetical order, categories in RenderCategory order
    and paths sorted. Entries the host does not know are listed in
    unresolved; entries whose properties do not exist on the block in
    unmatched. Neither appears in groups.
    """

    groups: dict[str, dict[RenderCategory, tuple[str, ...]]]
    unresolved: tuple[str, ...] = ()
    unmatched: tuple[str, ...] = ()

    def namespace_total(self, namespace: str) -> int:
        return sum(len(paths) for paths in self.groups.get(namespace, {}).values())

    @property
    def total(self) -> int:
        return sum(self.namespace_total(namespace) for namespace in self.groups)


def shader_base_ids(entries: Iterable[str]) -> frozenset[str]:
    """Reduce shader entries to canonical base ids for set comparison.

    An entry that cannot be parsed is kept as written so it still shows up
    as unused.
    """
    base: set[str] = set()
    for entry in entries:
        try:
            base.add(str(parse_block_state(entry).block))
        except ParseError:
            base.add(entry)
    return frozenset(base)


def diff_block_sets(
    game_blocks: Iterable[str], shader_blocks: Iterable[str]
) -> tuple[frozenset[str], frozenset[str]]:
    """Return (game - shader, shader - game)."""
    game = frozenset(game_blocks)
    shader = frozenset(shader_blocks)
    return game - shader, shader - game


def build_diff_report(
    game_blocks: Iterable[str],
    shader_entries: Iterable[str],
    missing_property_states: Iterable[str] = (),
) -> DiffReport:
    missing, unused = diff_block_sets(game_blocks, shader_base_ids(shader_entries))
    return DiffReport(
        missing_from_shader=missing,
        unused_in_shader=unused,
        missing_property_states=tuple(missing_property_states),
    )


def group_by_namespace_and_category(
    entries: Iterable[str],
    classifier: RenderClassifier,
    registry: PropertyRegistry,
) -> CategoryGrouping:
    buckets: dict[str, dict[RenderCategory, list[str]]] = defaultdict(
        lambda: defaultdict(list)
    )
    unresolved: list[str] = []
    unmatched: list[str] = []

    for entry in sorted(entries):
        try:
            state = parse_block_state(entry)
        except ParseError:
            unresolved.append(entry)
            continue

        category = classifier.primary_category(state.block)
        if category is None:
            unresolved.append(entry)
            continue
        if not registry.matches_host(state):
            _log.debug("Block %s does not support properties of %s", state.block, entry)
            unmatched.append(entry)
            continue

        remainder = str(state)[len(state.block.namespace) + 1 :]
        buckets[state.block.namespace][category].append(remainder)

    groups = {
        namespace: {
            category: tuple(sorted(buckets[namespace][category]))
            for category in RenderCategory
            if buckets[namespace].get(category)
        }
        for namespace in sorted(buckets)
    }
    return CategoryGrouping(
        groups=groups, unresolved=tuple(unresolved), unmatched=tuple(unmatched)
    )


def find_unmatched_shader_states(
    entries: Iterable[str],
    game_blocks: frozenset[str],
    registry: PropertyRegistry,
) -> tuple[str, ...]:
    """Shader entries whose block exists but has no such property value."""
    unmatched: list[str] = []
    for entry in entries:
        if "=" not in entry:
            continue
        try:
            state = parse_block_state(entry)
        except ParseError:
            continue
        if str(state.block) in game_blocks and not registry.matches_host(state):
            unmatched.append(str(state))
    return tuple(sorted(unmatched))


@dataclass(frozen=True)
class PackReport:
    """Everything the per-pack comparison report shows.

    Attributes:
        pack_name: Shader pack file or folder name.
        game_block_count: Number of game blocks.
        shader_block_count: Number of distinct base ids the pack lists.
        diff: Set differences plus the batch-wide missing property states.
        category_counts: (category, count) over all game blocks, by primary
            category, in RenderCategory order.
        missing_grouping: diff.missing_from_shader grouped for display.
        all_blocks: Game blocks grouped by namespace.
        unmatched_states: Pack entries with properties the block lacks.
    """

    pack_name: str
    game_block_count: int
    shader_block_count: int
    diff: DiffReport
    category_counts: tuple[tuple[RenderCategory, int], ...]
    missing_grouping: CategoryGrouping
    all_blocks: dict[str, tuple[str, ...]]
    unmatched_states: tuple[str, ...]


def count_primary_categories(
    game_blocks: Iterable[str], classifier: RenderClassifier
) -> tuple[tuple[RenderCategory, int], ...]:
    counts: dict[RenderCategory, int] = {category: 0 for category in RenderCategory}
    for block_id in game_blocks:
        try:
            block = parse_block_id(block_id)
        except ParseError:
            continue
        category = classifier.primary_category(block)
        if category is not None:
            counts[category] += 1
    return tuple(counts.items())


def build_pack_report(
    pack_name: str,
    game: GameBlocks,
    shader_entries: Iterable[str],
    missing_property_states: Iterable[str],
    classifier: RenderClassifier,
    registry: PropertyRegistry,
) -> PackReport:
    entries = tuple(shader_entries)
    diff = build_diff_report(game.ids, entries, missing_property_states)
    return PackReport(
        pack_name=pack_name,
        game_block_count=len(game.ids),
        shader_block_count=len(shader_base_ids(entries)),
        diff=diff,
        category_counts=count_primary_categories(game.ids, classifier),
        missing_grouping=group_by_namespace_and_category(
            diff.missing_from_shader, classifier, registry
        ),
        all_blocks=game.by_namespace,
        unmatched_states=find_unmatched_shader_states(entries, game.ids, registry),
    )


# ===--- Report formatters ---=== #

_MISSING_STATES_HEADER: tuple[str, ...] = (
    "============ MISSING PROPERTY STATES ============",
    "The following property states are missing from the shaders:",
    "",
)


def format_missing_states_file(states: Iterable[str]) -> str:
    """Return missing_property_states.txt: three header lines, then one state per line."""
    lines = list(_MISSING_STATES_HEADER)
    lines.extend(states)
    lines.append("")
    return "\n".join(lines)


def parse_missing_states_file(text: str) -> tuple[str, ...]:
    lines = text.splitlines()[len(_MISSING_STATES_HEADER) :]
    return tuple(line.strip() for line in lines if line.strip())


def safe_report_name(pack_name: str) -> str:
    return re.sub(r"[^a-zA-Z0-9.-]", "_", pack_name)


def _format_namespace_listing(by_namespace: Mapping[str, Iterable[str]]) -> list[str]:
    lines: list[str] = []
    for namespace, paths in by_namespace.items():
        ordered = sorted(paths)
        lines.append(f"--- {namespace} ({len(ordered)}) ---")
        lines.extend(f"{namespace}:{path}" for path in ordered)
        lines.append("")
    return lines


def format_pack_report(report: PackReport) -> str:
    """Render the block_comparison_<pack>.txt report.

    Sections, in order: summary counts, missing property states, counts by
    category, a congratulation line when no game block is missing, missing
    blocks by namespace and category, all blocks by namespace, unused shader
    blocks, and unmatched property states. Empty optional sections are
    omitted.

    Args:
        report: Assembled PackReport from build_pack_report.

    Returns:
        Formatted multi-line string including trailing newline.
    """
    diff = report.diff
    lines: list[str] = [
        "=========================================",
        f"== BLOCK COMPARISON SUMMARY FOR {report.pack_name.upper()} ==",
        "=========================================",
        f"Total blocks in game: {report.game_block_count}",
        f"Total blocks in shader: {report.shader_block_count}",
        f"Unused blocks from shader: {len(diff.unused_in_shader)}",
        f"Blocks missing from shader: {len(diff.missing_from_shader)}",
        "",
    ]

    if diff.missing_property_states:
        lines.append("============ MISSING PROPERTY STATES ============")
        lines.append("The following property states are missing from the shader:")
        lines.extend(f"  {state}" for state in diff.missing_property_states)
        lines.append("")

    lines.append("============ BLOCK COUNTS BY CATEGORY ============")
    for category, count in report.category_counts:
        lines.append(f"{category.display_name}: {count} blocks")
    lines.append("")

    if not diff.missing_from_shader and report.game_block_count:
        lines.append("Nice! All blocks are added!")
        lines.append("")

    lines.append("============ MISSING BLOCKS ============")
    grouping = report.missing_grouping
    for namespace, by_category in grouping.groups.items():
        lines.append(f"--- {namespace} ({grouping.namespace_total(namespace)}) ---")
        for category, paths in by_category.items():
            lines.append(f"-- {category.display_name} ({len(paths)}) --")
            lines.extend(f"{namespace}:{path}" for path in paths)
            lines.append("")
        lines.append("")

    lines.append("============ ALL BLOCKS ============")
    lines.extend(_format_namespace_listing(report.all_blocks))

    if diff.unused_in_shader:
        lines.append("============ UNUSED SHADER BLOCKS ============")
        lines.extend(_format_namespace_listing(group_by_namespace(diff.unused_in_shader)))

    if report.unmatched_states:
        lines.append("============ UNMATCHED PROPERTY STATES ============")
        lines.append("These entries name properties their block does not have:")
        lines.extend(f"  {state}" for state in report.unmatched_states)
        lines.append("")

    return "\n".join(lines) + "\n"


def build_category_export(
    classifier: RenderClassifier, timestamp_ms: int | None = None
) -> dict[str, object]:
    """JSON-ready export of every block grouped by category then namespace."""
    by_category = classifier.block_ids_by_category()
    categories: dict[str, dict[str, list[str]]] = {}
    for category, blocks in by_category.items():
        grouped = group_by_namespace(str(block) for block in blocks)
        categories[category.name] = {ns: list(paths) for ns, paths in grouped.items()}
    return {
        "timestamp": int(time.time() * 1000) if timestamp_ms is None else timestamp_ms,
        "counts": {category.name: len(blocks) for category, blocks in by_category.items()},
        "categories": categories,
    }


# ===--- Report writers ---=== #


@dataclass(frozen=True)
class FileWriteResult:
    """Result of writing a single report file.

    Attributes:
        filename: Filename written, e.g. "missing_property_states.txt".
        path: Absolute path of the written file.
        line_count: Number of newline characters in the written content.
        byte_count: Number of bytes written (UTF-8 encoded).
    """

    filename: str
    path: Path
    line_count: int
    byte_count: int


def write_text_file(path: Path, content: str) -> FileWriteResult:
    """Write content as UTF-8, creating parent directories.

    Raises:
        OSError: Propagated directly if the filesystem write fails.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    resolved = path.resolve()
    return FileWriteResult(
        filename=path.name,
        path=resolved,
        line_count=content.count("\n"),
        byte_count=len(content.encode("utf-8")),
    )


def write_missing_states_file(logs_dir: Path, states: Iterable[str]) -> FileWriteResult:
    result = write_text_file(logs_dir / MISSING_STATES_FILENAME, format_missing_states_file(states))
    _log.debug("Wrote missing property states to %s", result.path)
    return result


def read_missing_states_file(path: Path) -> tuple[str, ...] | None:
    """Read states back from missing_property_states.txt; None if unreadable."""
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as err:
        _log.error("Error reading missing property states file %s: %s", path, err)
        return None
    states = parse_missing_states_file(text)
    _log.info("Read %d missing property states from file", len(states))
    return states


def write_pack_report(logs_dir: Path, report: PackReport) -> FileWriteResult:
    filename = f"block_comparison_{safe_report_name(report.pack_name)}.txt"
    result = write_text_file(logs_dir / filename, format_pack_report(report))
    _log.info("Report written to %s", result.path)
    return result


def write_category_export(
    output_dir: Path, classifier: RenderClassifier
) -> FileWriteResult:
    payload = build_category_export(classifier)
    result = write_text_file(
        output_dir / CATEGORIES_FILENAME, json.dumps(payload, indent=2) + "\n"
    )
    _log.info("Exported block categories to %s", result.path)
    return result


# ===--- Batch pipeline ---=== #


@dataclass(frozen=True)
class BatchResult:
    """Outcome of one batch over all shader packs.

    Attributes:
        game_block_count: Number of game blocks compared against.
        packs: Names of packs scanned, in processing order.
        skipped_packs: Names of packs that could not be opened or read.
        missing_property_states: Batch-wide sorted missing states.
        reports: Per-pack report files written.
        missing_states_file: The missing states file, if it was written.
        category_export: The category JSON export, if requested and written.
    """

    game_block_count: int
    packs: tuple[str, ...] = ()
    skipped_packs: tuple[str, ...] = ()
    missing_property_states: tuple[str, ...] = ()
    reports: tuple[FileWriteResult, ...] = ()
    missing_states_file: FileWriteResult | None = None
    category_export: FileWriteResult | None = None


def run_batch(
    config: AnalyzeConfig,
    host: BlockHost,
    classifier: RenderClassifier,
    registry: PropertyRegistry,
    current_version: int,
) -> BatchResult:
    """Analyze every shader pack in config.shaderpacks_dir.

    Pass one scans all packs and builds the batch-wide property registry and
    missing states file. Pass two writes one report per pack. A pack that
    cannot be read, or a report that cannot be written, is logged and
    skipped; nothing here raises for a single pack.
    """
    session = open_debug_log(config.logs_dir)
    try:
        return _run_batch(config, host, classifier, registry, current_version)
    finally:
        _log.debug("Completed shader pack processing")
        close_debug_log(session)


def _run_batch(
    config: AnalyzeConfig,
    host: BlockHost,
    classifier: RenderClassifier,
    registry: PropertyRegistry,
    current_version: int,
) -> BatchResult:
    _log.debug("Starting shader pack processing (MC_VERSION=%d)", current_version)
    registry.reset()

    try:
        pack_paths = discover_shader_packs(config.shaderpacks_dir)
    except OSError as err:
        _log.error("Failed to scan shaderpacks directory %s: %s", config.shaderpacks_dir, err)
        return BatchResult(game_block_count=0)

    cache_path = config.cache_dir / REGISTRY_CACHE_FILENAME if config.use_cache else None
    game = load_game_blocks(host, cache_path)
    _log.debug(
        "Loaded %d game blocks from %d namespaces", len(game.ids), len(game.by_namespace)
    )

    scans: list[PackScan] = []
    skipped: list[str] = []
    all_entries: set[str] = set()
    for path in pack_paths:
        try:
            scan = scan_shader_pack(path, current_version)
        except (OSError, UnicodeDecodeError) as err:
            _log.error("Failed to read shader pack %s: %s", path.name, err)
            skipped.append(path.name)
            continue
        scans.append(scan)
        all_entries |= scan.parsed.raw_blocks

    registry.ingest_shader_blocks(all_entries)
    missing_states = tuple(registry.find_all_missing_property_states())

    missing_file: FileWriteResult | None = None
    try:
        missing_file = write_missing_states_file(config.logs_dir, missing_states)
    except OSError as err:
        _log.error("Failed to write missing property states: %s", err)
    try:
        registry.save_used(config.cache_dir / USED_PROPERTIES_FILENAME)
    except OSError as err:
        _log.error("Failed to save property registry: %s", err)

    report_states = missing_states
    if missing_file is not None:
        from_file = read_missing_states_file(missing_file.path)
        if from_file is not None:
            report_states = from_file

    reports: list[FileWriteResult] = []
    for scan in scans:
        kind = "ZIP" if scan.is_archive else "Directory"
        _log.info("Processing shaderpack (%s): %s", kind, scan.name)
        if scan.parsed.raw_blocks:
            _log.debug("Found %d blocks in %s", len(scan.parsed.raw_blocks), scan.name)
        else:
            _log.debug("No blocks found in %s", scan.name)

        report = build_pack_report(
            scan.name,
            game,
            scan.parsed.raw_blocks,
            report_states,
            classifier,
            registry,
        )
        try:
            reports.append(write_pack_report(config.logs_dir, report))
        except OSError as err:
            _log.error("Failed to write report for %s: %s", scan.name, err)

    if not any(scan.parsed.raw_blocks for scan in scans):
        _log.error("No valid shaderpacks found!")

    export: FileWriteResult | None = None
    if config.export_categories:
        try:
            export = write_category_export(config.cache_dir, classifier)
        except OSError as err:
            _log.error("Failed to write block categories: %s", err)

    return BatchResult(
        game_block_count=len(game.ids),
        packs=tuple(scan.name for scan in scans),
        skipped_packs=tuple(skipped),
        missing_property_states=missing_states,
        reports=tuple(reports),
        missing_states_file=missing_file,
        category_export=export,
    )


class ConcurrencyRejected(Exception):
    """A batch was requested while another one is still running."""


class BatchRunner:
    """Runs batches on one background worker, at most one at a time.

    A request that arrives while a batch is running is dropped with a log
    line; callers that need a rerun request again after completion.
    """

    def __init__(
        self,
        host: BlockHost,
        classifier: RenderClassifier | None = None,
        registry: PropertyRegistry | None = None,
    ):
        self.host = host
        self.classifier = classifier if classifier is not None else RenderClassifier(host)
        self.registry = registry if registry is not None else PropertyRegistry(host)
        self._executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="shaderblocks-batch"
        )
        self._guard = threading.Lock()
        self._in_progress = False

    @property
    def in_progress(self) -> bool:
        with self._guard:
            return self._in_progress

    def _claim(self) -> None:
        with self._guard:
            if self._in_progress:
                raise ConcurrencyRejected("Shader pack processing already in progress")
            self._in_progress = True

    def _release(self) -> None:
        with self._guard:
            self._in_progress = False

    def request(
        self, config: AnalyzeConfig, current_version: int
    ) -> "Future[BatchResult] | None":
        """Queue a batch on the worker, or return None if one is running."""
        try:
            self._claim()
        except ConcurrencyRejected as err:
            _log.info("%s, skipping request", err)
            return None
        try:
            return self._executor.submit(self._run, config, current_version)
        except RuntimeError:
            self._release()
            raise

    def _run(self, config: AnalyzeConfig, current_version: int) -> BatchResult:
        try:
            _log.info("Starting shader pack processing in background thread")
            result = run_batch(
                config, self.host, self.classifier, self.registry, current_version
            )
            _log.info("Shader pack processing complete")
            return result
        finally:
            self._release()

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


# ===--- Summary report ---=== #


def format_batch_summary(result: BatchResult, logs_dir: Path) -> str:
    """Render the console summary printed after a batch.

    Returns:
        Formatted multi-line string including trailing newline.
    """
    lines = [
        "Shader block analysis complete:",
        "",
        f"  Game blocks:     {result.game_block_count:,}",
        f"  Shader packs:    {len(result.packs)}",
    ]
    if result.skipped_packs:
        lines.append(f"  Skipped:         {', '.join(result.skipped_packs)}")
    lines.append(f"  Missing states:  {len(result.missing_property_states):,}")
    lines.append(f"  Logs:            {logs_dir}")
    lines.append("")

    if result.reports:
        lines.append("  Reports written:")
        for file_result in result.reports:
            lines.append(f"    {file_result.filename:<44} {file_result.line_count:>6,} lines")
        lines.append("")

    if result.category_export is not None:
        lines.append(f"  Categories: {result.category_export.path}")
        lines.append("")

    if not result.packs:
        lines.append("  No shader packs found.")
        lines.append("")
    return "\n".join(lines)


def print_batch_summary(result: BatchResult, logs_dir: Path) -> None:
    print(format_batch_summary(result, logs_dir), end="")


def format_pack_inspection(scan: PackScan, current_version: int) -> str:
    """Render --inspect output: what the parser produced for one pack."""
    entries = sorted(scan.parsed.raw_blocks)
    qualified = [entry for entry in entries if "=" in entry]
    kind = "zip" if scan.is_archive else "directory"
    lines = [
        f"{scan.name} ({kind} shader pack, MC_VERSION={current_version})",
        f"  Entries:          {len(entries)}",
        f"  With properties:  {len(qualified)}",
        "",
    ]
    if scan.parsed.key_properties:
        lines.append(f"  Properties ({len(scan.parsed.key_properties)} blocks):")
        for block in sorted(scan.parsed.key_properties):
            props = ", ".join(str(p) for p in sorted(scan.parsed.key_properties[block]))
            lines.append(f"    {block}  {props}")
        lines.append("")
    return "\n".join(lines)


def run_inspect(config: InspectConfig) -> None:
    """Print the parse of one shader pack.

    Raises:
        SystemExit(1): The registry dump or the pack cannot be read.
    """
    if config.mc_version is not None:
        current_version = config.mc_version.as_int()
    else:
        assert config.registry is not None  # validate_config guarantees this
        try:
            current_version = SnapshotHost.from_dump(config.registry).version
        except (OSError, ValueError) as err:
            print(f"Error: {err}", file=sys.stderr)
            raise SystemExit(1) from err

    try:
        scan = scan_shader_pack(config.pack, current_version)
    except (OSError, UnicodeDecodeError) as err:
        print(f"Error: {err}", file=sys.stderr)
        raise SystemExit(1) from err
    print(format_pack_inspection(scan, current_version), end="")


# ===--- Main ---=== #


def main(argv: list[str] | None = None) -> None:
    try:
        config = build_config(argv)
    except ConfigError as err:
        print(f"Config error [{err.code}]: {err.message}")
        if err.suggestion:
            print(f"Hint: {err.suggestion}")
        raise SystemExit(1) from err

    configure_logging(config.verbosity)

    if isinstance(config, InspectConfig):
        run_inspect(config)
        return

    mc_version = config.mc_version.as_int() if config.mc_version is not None else None
    try:
        host = SnapshotHost.from_dump(config.registry, mc_version=mc_version)
    except (OSError, ValueError) as err:
        print(f"Error: {err}")
        raise SystemExit(1) from err

    print(f"Registry: {config.registry} ({len(host.enumerate_blocks())} blocks)")
    runner = BatchRunner(host)
    try:
        future = runner.request(config, host.version)
        assert future is not None  # fresh runner has nothing in progress
        result = future.result()
    finally:
        runner.shutdown()
    print_batch_summary(result, config.logs_dir)


if __name__ == "__main__":
    main()
