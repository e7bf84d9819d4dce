"""Configuration loading for gpumon.

Loads settings from TOML config files with sensible defaults.
Search order: explicit --config path → ~/.config/gpumon/config.toml → defaults only.
"""

from __future__ import annotations

import sys
import tomllib
from pathlib import Path
from typing import Any

DEFAULT_CONFIG: dict[str, Any] = {
    "sample_interval": 0.1,
    "display_interval": 3.0,
    "prune_stale": True,
    "chart": {"height": 10, "y_axis_width": 6},
    "thresholds": {
        "utilization": {"warning": 40.0, "critical": 80.0},
        "temperature": {"warning": 60.0, "critical": 80.0},
    },
    "query": {"command": "nvidia-smi", "timeout": 5.0},
}

_DEFAULT_PATH = Path.home() / ".config" / "gpumon" / "config.toml"

MIN_Y_AXIS_WIDTH = 6  # widest label "100%" plus " │"


def _deep_merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    """Overlay user values onto ``base``; tables merge one level deep."""
    merged = dict(base)
    for key, value in overlay.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            value = {**current, **value}
        merged[key] = value
    return merged


def resolve_interval(value: Any, default: float) -> float:
    """Return ``value`` as seconds if it is a positive number, else ``default``."""
    if isinstance(value, bool) or value is None:
        return default
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return default
    if not seconds > 0 or seconds == float("inf"):
        return default
    return seconds


def _as_int(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return default


def normalize_config(config: dict[str, Any]) -> dict[str, Any]:
    """Replace unusable intervals and chart sizes with working values.

    Intervals that are not positive finite numbers fall back to their
    defaults, and ``chart.y_axis_width`` is raised to ``MIN_Y_AXIS_WIDTH``
    so every gutter row keeps the same width.
    """
    config = dict(config)
    for key in ("sample_interval", "display_interval"):
        config[key] = resolve_interval(config.get(key), DEFAULT_CONFIG[key])

    defaults = DEFAULT_CONFIG["chart"]
    chart = config.get("chart")
    chart = {**defaults, **chart} if isinstance(chart, dict) else dict(defaults)
    chart["height"] = _as_int(chart["height"], defaults["height"])
    chart["y_axis_width"] = max(
        MIN_Y_AXIS_WIDTH, _as_int(chart["y_axis_width"], defaults["y_axis_width"])
    )
    config["chart"] = chart
    return config


def _read_toml(path: Path) -> dict[str, Any]:
    return tomllib.loads(path.read_text(encoding="utf-8"))


def load_config(path: Path | None = None) -> dict[str, Any]:
    """Load configuration, merging user TOML over defaults.

    Args:
        path: Explicit config file path (from --config). If None, tries the
              default location ~/.config/gpumon/config.toml.

    Returns:
        Merged and normalized configuration dict.

    Raises:
        SystemExit: If an explicit path doesn't exist or can't be parsed.
    """
    user_config: dict[str, Any] = {}
    if path is not None:
        if not path.is_file():
            print(f"gpumon: config file not found: {path}", file=sys.stderr)
            raise SystemExit(1)
        try:
            user_config = _read_toml(path)
        except tomllib.TOMLDecodeError as e:
            print(f"gpumon: invalid TOML in {path}: {e}", file=sys.stderr)
            raise SystemExit(1) from e
    elif _DEFAULT_PATH.is_file():
        try:
            user_config = _read_toml(_DEFAULT_PATH)
        except tomllib.TOMLDecodeError:
            print(f"gpumon: warning: ignoring invalid TOML in {_DEFAULT_PATH}", file=sys.stderr)

    return normalize_config(_deep_merge(DEFAULT_CONFIG, user_config))


def dump_default_config() -> str:
    """Return the default configuration as a TOML string."""
    lines = [
        "# gpumon configuration",
        "# Place this file at ~/.config/gpumon/config.toml",
        "",
        f"sample_interval = {DEFAULT_CONFIG['sample_interval']}",
        f"display_interval = {DEFAULT_CONFIG['display_interval']}",
        f"prune_stale = {str(DEFAULT_CONFIG['prune_stale']).lower()}",
        "",
        "[chart]",
        f"# y_axis_width is raised to at least {MIN_Y_AXIS_WIDTH}",
        f"height = {DEFAULT_CONFIG['chart']['height']}",
        f"y_axis_width = {DEFAULT_CONFIG['chart']['y_axis_width']}",
        "",
    ]

    for metric, levels in DEFAULT_CONFIG["thresholds"].items():
        lines.append(f"[thresholds.{metric}]")
        lines.append(f"warning = {levels['warning']}")
        lines.append(f"critical = {levels['critical']}")
        lines.append("")

    lines.append("[query]")
    lines.append(f'command = "{DEFAULT_CONFIG["query"]["command"]}"')
    lines.append(f"timeout = {DEFAULT_CONFIG['query']['timeout']}")

    return "\n".join(lines) + "\n"
