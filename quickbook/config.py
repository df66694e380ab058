"""Configuration loading and management."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
import tomllib

ENCODER_NAMES = ("boostbook", "html")


@dataclass(frozen=True)
class QuickbookConfig:
    """Immutable settings for one quickbook invocation.

    Built once at startup and passed by reference into the pipeline; nothing
    inside the compiler reads process-wide state.

    Attributes:
        encoder: Output encoding, ``"boostbook"`` or ``"html"``.
        pretty_print: Whether generated markup is reformatted.
        indent: Spaces per nesting level when pretty printing; None for the
            default.
        linewidth: Maximum line width when pretty printing; None for the
            default.
        include_paths: Directories searched by ``[include]`` after the
            including file's own directory.
        defines: Macro definitions of the form ``NAME=VALUE`` applied before
            any file is parsed.
        ms_errors: Format diagnostics for IDE integration.
        debug: Pin the clock to a fixed date so output is reproducible.
        current_time: Time used for default revision stamps.

    Examples:
        QuickbookConfig(encoder="html", indent=4, defines=("VERSION=1.2",))
    """

    encoder: str = "boostbook"
    pretty_print: bool = True
    indent: int | None = None
    linewidth: int | None = None
    include_paths: tuple[str, ...] = ()
    defines: tuple[str, ...] = ()
    ms_errors: bool = False
    debug: bool = False
    current_time: datetime | None = None


class ConfigError(ValueError):
    """Exception raised when configuration values are invalid.

    Examples:
        raise ConfigError("`encoder` must be one of: boostbook, html")
    """


DEBUG_TIME = datetime(2000, 12, 20, 12, 0, 0, tzinfo=timezone.utc)


def capture_time(debug: bool = False) -> datetime:
    """Return the time stamped into generated documents.

    Args:
        debug: When True, return a fixed date so test output is stable.

    Returns:
        datetime: Current UTC time, or 2000-12-20 12:00:00 in debug mode.
    """
    if debug:
        return DEBUG_TIME
    return datetime.now(timezone.utc)


# Each directory is checked for these files in order; the first table found
# wins, even when it is empty.
_CONFIG_SOURCES = (
    ("pyproject.toml", (("tool", "quickbook"),)),
    (".quickbook.toml", (("quickbook",), ("tool", "quickbook"))),
)
_SEQUENCE_KEYS = ("include_paths", "defines")
_NOT_FOUND = object()


def load_config(search_path: Path) -> QuickbookConfig:
    """Find the closest quickbook settings above `search_path`.

    Each directory from `search_path` up to the filesystem root is checked for
    a ``[tool.quickbook]`` table in `pyproject.toml`, then a ``[quickbook]``
    (or ``[tool.quickbook]``) table in `.quickbook.toml`. Unreadable or
    malformed TOML files are ignored.

    Args:
        search_path: Directory where the search starts, usually the one
            holding the input document.

    Returns:
        QuickbookConfig: Settings from the first table found, or the defaults.

    Raises:
        ConfigError: If the table found is not a mapping or has keys that
            `QuickbookConfig` does not define.

    Examples:
        load_config(Path("doc"))
    """
    for directory in _directories_upward(search_path.resolve()):
        for filename, tables in _CONFIG_SOURCES:
            document = _read_toml(directory / filename)
            if document is None:
                continue
            for table_path in tables:
                table = _lookup(document, table_path)
                if table is not _NOT_FOUND:
                    return _config_from_table(table, directory / filename, table_path)
    return QuickbookConfig()


def _directories_upward(start: Path):
    yield start
    yield from start.parents


def _read_toml(path: Path) -> dict | None:
    if not path.is_file():
        return None
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, tomllib.TOMLDecodeError):
        return None


def _lookup(document: dict, table_path: tuple[str, ...]) -> object:
    node: object = document
    for key in table_path:
        if not isinstance(node, dict):
            return _NOT_FOUND
        node = node.get(key, _NOT_FOUND)
        if node is _NOT_FOUND:
            return _NOT_FOUND
    return node


def _config_from_table(table: object, source: Path, table_path: tuple[str, ...]) -> QuickbookConfig:
    where = f"[{'.'.join(table_path)}] in {source}"
    if not isinstance(table, dict):
        raise ConfigError(f"{where} is not a table")

    settings = {}
    for key, value in table.items():
        if key == "current_time":
            raise ConfigError(f"`current_time` cannot be set from {where}")
        if key in _SEQUENCE_KEYS:
            if not isinstance(value, list):
                raise ConfigError(f"`{key}` must be a list of strings in {where}")
            value = tuple(value)
        settings[key] = value

    try:
        return QuickbookConfig(**settings)
    except TypeError as error:
        unknown = sorted(set(settings) - set(QuickbookConfig.__dataclass_fields__))
        raise ConfigError(f"Unknown setting(s) {', '.join(unknown)} in {where}") from error


def validate_config(config: QuickbookConfig) -> None:
    """Validate a `QuickbookConfig` instance.

    Args:
        config: Configuration to validate.

    Returns:
        None.

    Raises:
        ConfigError: If the encoder is unknown, a flag is not a boolean,
            layout sizes are not positive integers, or sequence settings
            contain anything but strings.

    Examples:
        validate_config(QuickbookConfig(encoder="html", indent=2))
    """
    if config.encoder not in ENCODER_NAMES:
        raise ConfigError(f"`encoder` must be one of: {', '.join(ENCODER_NAMES)}")

    for key in ("pretty_print", "ms_errors", "debug"):
        if not isinstance(getattr(config, key), bool):
            raise ConfigError(f"`{key}` must be a boolean")

    _ensure_integers(
        {
            key: value
            for key, value in (("indent", config.indent), ("linewidth", config.linewidth))
            if value is not None
        }
    )
    if config.indent is not None and config.indent < 0:
        raise ConfigError("`indent` must be a non-negative integer")
    if config.linewidth is not None and config.linewidth <= 0:
        raise ConfigError("`linewidth` must be a positive integer")

    for key in _SEQUENCE_KEYS:
        values = getattr(config, key)
        if not all(isinstance(value, str) for value in values):
            raise ConfigError(f"`{key}` must contain only strings")

    for define in config.defines:
        if not define.strip():
            raise ConfigError("`defines` must not contain empty definitions")


def apply_overrides(config: QuickbookConfig, **overrides: object) -> QuickbookConfig:
    """Apply override values to a `QuickbookConfig`.

    Sequence overrides (include paths and defines) are appended to the
    configured values rather than replacing them.

    Args:
        config: Base configuration to update.
        overrides: Override values keyed by configuration field name; values set
            to None (and empty sequences) are ignored.

    Returns:
        QuickbookConfig: New configuration with the provided overrides applied.
        The original configuration is returned when no changes are supplied.

    Raises:
        TypeError: If an override name is not defined on `QuickbookConfig`.

    Examples:
        updated = apply_overrides(config, encoder="html", defines=("DEBUG=1",))
    """
    changes = {key: value for key, value in overrides.items() if value is not None}
    for key in _SEQUENCE_KEYS:
        if key in changes:
            extra = tuple(changes[key])
            if not extra:
                del changes[key]
                continue
            changes[key] = getattr(config, key) + extra
    if not changes:
        return config
    return replace(config, **changes)


def build_config(search_path: Path, **overrides: object) -> QuickbookConfig:
    """Load, override, time-stamp and validate configuration.

    Args:
        search_path: Directory where configuration files are resolved.
        overrides: Override values keyed by configuration attributes; None values
            are ignored.

    Returns:
        QuickbookConfig: Validated configuration with `current_time` captured.

    Raises:
        ConfigError: If configuration loading or validation fails.

    Examples:
        config = build_config(Path.cwd(), encoder="html", debug=True)
    """
    config = load_config(search_path)
    config = apply_overrides(config, **overrides)
    validate_config(config)
    if config.current_time is None:
        config = replace(config, current_time=capture_time(config.debug))
    return config


def _ensure_integers(values: dict[str, object]) -> None:
    for key, value in values.items():
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigError(f"`{key}` must be an integer")
