"""Chart and table rendering for the dashboard.

Everything here is pure: renderers return lines, each line a list of
``Segment`` pieces carrying text plus a curses colour-pair id. The curses
painter in ``gpumon.dashboard`` only has to put them on screen.
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from typing import Any, NamedTuple

from gpumon.config import DEFAULT_CONFIG
from gpumon.history import DeviceRegistry, Sample
from gpumon.query import DeviceRecord

# ── Constants ──────────────────────────────────────────────────────────────

BAR = "█"
PLACEHOLDER = "··"
GRAPH_HEIGHT = 10
Y_AXIS_WIDTH = 6
NAME_WIDTH = 30

# Curses colour-pair IDs (0 = terminal default)
C_NORMAL = 1
C_WARNING = 2
C_CRITICAL = 3
C_TITLE = 4
C_DIM = 5
C_ACCENT = 6


class Segment(NamedTuple):
    text: str
    color: int = 0
    bold: bool = False


Line = list[Segment]


def line_text(line: Line) -> str:
    """Plain text of a rendered line, colours dropped."""
    return "".join(seg.text for seg in line)


# ── Colour helpers ─────────────────────────────────────────────────────────


def severity_color(value: float, warn: float, crit: float) -> int:
    if value >= crit:
        return C_CRITICAL
    if value >= warn:
        return C_WARNING
    return C_NORMAL


def _levels(thresholds: dict[str, Any] | None, metric: str) -> tuple[float, float]:
    defaults = DEFAULT_CONFIG["thresholds"][metric]
    levels = (thresholds or {}).get(metric, defaults)
    return (
        float(levels.get("warning", defaults["warning"])),
        float(levels.get("critical", defaults["critical"])),
    )


def truncate(text: str, width: int) -> str:
    if width <= 0:
        return ""
    return text if len(text) <= width else text[: width - 1] + "…"


# ── Geometry ───────────────────────────────────────────────────────────────


def graph_geometry(terminal_width: int, y_axis_width: int = Y_AXIS_WIDTH) -> tuple[int, int]:
    """Return ``(graph_width, available_width)`` for a terminal width.

    Each chart column takes three cells (two bars and a separator); one
    column is given up to leave a right margin. The result may be <= 0 on
    very narrow terminals.
    """
    available_width = terminal_width - y_axis_width
    graph_width = available_width // 3 - 1
    return graph_width, available_width


def is_gridline(row: int, graph_height: int) -> bool:
    """True if chart row ``row`` (0 = bottom) carries a Y-axis label."""
    percent = round((row + 1) * 100 / graph_height)
    return percent % 5 == 0 or row == graph_height - 1


# ── Chart ──────────────────────────────────────────────────────────────────


def chart_label(device: DeviceRecord, available_width: int = 0) -> Line:
    title = f"{device.kind} {device.id}"
    name_width = NAME_WIDTH
    if available_width > 0:
        name_width = min(name_width, available_width - len(title) - 1)
    return [
        Segment(title, bold=True),
        Segment(" "),
        Segment(truncate(device.name, name_width), C_DIM),
    ]


def _y_axis_cell(percent: int, gridline: bool, y_axis_width: int) -> Line:
    if gridline:
        return [Segment(f"{percent}%".rjust(y_axis_width - 2), C_DIM), Segment(" │")]
    return [Segment(" " * (y_axis_width - 1) + "│")]


def _bar_cell(
    sample: Sample,
    row: int,
    graph_height: int,
    gridline: bool,
    util_warn: float,
    util_crit: float,
) -> Line:
    # Floor division: a value exactly on a row's lower bound does not light it.
    util_on = sample.utilization * graph_height // 100 > row
    mem_on = sample.memory_percent * graph_height // 100 > row
    if gridline and not util_on and not mem_on:
        return [Segment(PLACEHOLDER, C_DIM)]
    left = (
        Segment(BAR, severity_color(sample.utilization, util_warn, util_crit))
        if util_on
        else Segment(" ")
    )
    right = Segment(BAR, C_ACCENT) if mem_on else Segment(" ")
    return [left, right]


def render_chart(
    device: DeviceRecord,
    samples: Sequence[Sample],
    graph_width: int,
    graph_height: int = GRAPH_HEIGHT,
    available_width: int = 0,
    thresholds: dict[str, Any] | None = None,
    y_axis_width: int = Y_AXIS_WIDTH,
) -> list[Line]:
    """Render one device's history as a two-colour bar chart.

    Returns a label line, ``graph_height`` chart rows (top row first) and a
    baseline. Columns are right-aligned: when there are fewer samples than
    ``graph_width`` the left side is filled with dim placeholders, so the
    newest sample is always in the last column. Each column shows
    utilization (left cell, coloured by severity) and memory (right cell).
    ``y_axis_width`` must be at least 6 to fit the "100%" label.
    """
    lines: list[Line] = [chart_label(device, available_width)]
    if graph_width <= 0 or graph_height <= 0:
        lines.append([Segment("(terminal too narrow)", C_DIM)])
        return lines

    util_warn, util_crit = _levels(thresholds, "utilization")
    visible = list(samples)[-graph_width:]
    pad = graph_width - len(visible)

    for row in range(graph_height - 1, -1, -1):
        percent = round((row + 1) * 100 / graph_height)
        gridline = is_gridline(row, graph_height)
        line = _y_axis_cell(percent, gridline, y_axis_width)

        cells: list[Line] = [[Segment(PLACEHOLDER, C_DIM)] for _ in range(pad)]
        for sample in visible:
            cells.append(_bar_cell(sample, row, graph_height, gridline, util_warn, util_crit))

        for i, cell in enumerate(cells):
            if i:
                line.append(Segment(" "))
            line.extend(cell)
        lines.append(line)

    lines.append([
        Segment(" " * (y_axis_width - 1) + "└"),
        Segment("─" * (graph_width * 3 - 1), C_DIM),
    ])
    return lines


# ── Summary table ──────────────────────────────────────────────────────────

SUMMARY_HEADERS = ("Type", "ID", "Name", "Temp", "Util", "Mem")


def _footer(display_interval: float, now: time.struct_time | None) -> Line:
    ts = time.strftime("%H:%M:%S", now or time.localtime())
    return [
        Segment("gpumon", bold=True),
        Segment(f" [{ts}]", C_DIM),
        Segment(f", refresh every {display_interval:g}s"),
    ]


def _device_row(device: DeviceRecord, thresholds: dict[str, Any] | None) -> list[Line]:
    temp_warn, temp_crit = _levels(thresholds, "temperature")
    util_warn, util_crit = _levels(thresholds, "utilization")
    return [
        [Segment(device.kind)],
        [Segment(device.id, bold=True)],
        [Segment(device.name)],
        [Segment(f"{device.temperature}°C", severity_color(device.temperature, temp_warn, temp_crit))],
        [Segment(f"{device.utilization}%", severity_color(device.utilization, util_warn, util_crit))],
        [
            Segment(str(device.memory_used), C_ACCENT),
            Segment("/"),
            Segment(str(device.memory_total), C_DIM),
        ],
    ]


def render_summary(
    devices: Sequence[DeviceRecord],
    display_interval: float,
    now: time.struct_time | None = None,
    thresholds: dict[str, Any] | None = None,
) -> list[Line]:
    """Render the device table followed by a clock/refresh footer."""
    header: list[Line] = [[Segment(h, C_TITLE, bold=True)] for h in SUMMARY_HEADERS]
    rows = [_device_row(d, thresholds) for d in devices]

    widths = [
        max(len(line_text(row[col])) for row in [header, *rows])
        for col in range(len(SUMMARY_HEADERS))
    ]

    def layout(cells: list[Line]) -> Line:
        line: Line = []
        for col, cell in enumerate(cells):
            if col:
                line.append(Segment("  "))
            line.extend(cell)
            fill = widths[col] - len(line_text(cell))
            if fill > 0 and col < len(cells) - 1:
                line.append(Segment(" " * fill))
        return line

    lines: list[Line] = [layout(header)]
    lines.append([Segment("─" * (sum(widths) + 2 * (len(widths) - 1)), C_DIM)])
    if rows:
        lines.extend(layout(row) for row in rows)
    else:
        lines.append([Segment("No devices", C_DIM)])
    lines.append([])
    lines.append(_footer(display_interval, now))
    return lines


# ── Frames ─────────────────────────────────────────────────────────────────


def render_frame(
    registry: DeviceRegistry,
    graph_width: int,
    available_width: int,
    display_interval: float,
    graph_height: int = GRAPH_HEIGHT,
    thresholds: dict[str, Any] | None = None,
    y_axis_width: int = Y_AXIS_WIDTH,
    now: time.struct_time | None = None,
) -> list[Line]:
    """Charts for every device in the latest poll, then the summary table."""
    lines: list[Line] = []
    for device in registry.devices:
        lines.extend(
            render_chart(
                device,
                registry.samples(device.id),
                graph_width,
                graph_height,
                available_width,
                thresholds,
                y_axis_width,
            )
        )
        lines.append([])
    lines.extend(render_summary(registry.devices, display_interval, now, thresholds))
    return lines


def render_error(
    message: str,
    display_interval: float,
    now: time.struct_time | None = None,
) -> list[Line]:
    """Frame shown when the last poll failed."""
    return [
        [Segment("No devices", C_CRITICAL, bold=True)],
        [Segment(message, C_DIM)],
        [],
        _footer(display_interval, now),
    ]


def render_waiting(sample_interval: float, display_interval: float) -> list[Line]:
    """Frame shown before the first display tick."""
    return [
        [Segment("gpumon", bold=True)],
        [
            Segment(
                f"Sampling every {sample_interval:g}s, "
                f"first refresh in {display_interval:g}s...",
                C_DIM,
            )
        ],
    ]
