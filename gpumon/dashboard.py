"""Interactive terminal dashboard: gpumon's nvtop-style GPU monitor.

Polls device telemetry every sample interval, averages it over each display
interval and redraws a per-device bar chart plus a summary table using
curses. Colour thresholds come from the gpumon config.

Usage:
    uv run gpumon
    uv run gpumon --sample-interval 0.2 --display-interval 2
    uv run gpumon --config path/to/config.toml
"""

from __future__ import annotations

import argparse
import curses
import signal
import threading
import time
from collections.abc import Callable
from functools import partial
from pathlib import Path
from typing import Any

from gpumon.config import DEFAULT_CONFIG, dump_default_config, load_config, resolve_interval
from gpumon.history import DeviceRegistry
from gpumon.query import DeviceRecord, MockQuery, QueryError, query_devices
from gpumon.render import (
    C_ACCENT,
    C_CRITICAL,
    C_DIM,
    C_NORMAL,
    C_TITLE,
    C_WARNING,
    GRAPH_HEIGHT,
    Y_AXIS_WIDTH,
    Line,
    graph_geometry,
    render_error,
    render_frame,
    render_waiting,
)

SLICES_PER_SECOND = 10  # sleep granularity, bounds cancellation latency


# ── Curses screen ──────────────────────────────────────────────────────────


def _init_colors() -> None:
    curses.start_color()
    curses.use_default_colors()
    curses.init_pair(C_NORMAL, curses.COLOR_GREEN, -1)
    curses.init_pair(C_WARNING, curses.COLOR_YELLOW, -1)
    curses.init_pair(C_CRITICAL, curses.COLOR_RED, -1)
    curses.init_pair(C_TITLE, curses.COLOR_CYAN, -1)
    curses.init_pair(C_DIM, curses.COLOR_WHITE, -1)
    curses.init_pair(C_ACCENT, curses.COLOR_CYAN, -1)


def _safe(win: curses.window, *args: Any) -> None:
    """addstr wrapper that swallows out-of-bounds errors."""
    try:
        win.addstr(*args)
    except curses.error:
        pass


class CursesScreen:
    """Paints rendered lines onto a curses window, one full frame at a time."""

    def __init__(self, stdscr: curses.window) -> None:
        self._win = stdscr
        _init_colors()
        try:
            curses.curs_set(0)
        except curses.error:
            pass  # terminal can't hide the cursor
        stdscr.nodelay(True)
        stdscr.clear()

    def width(self) -> int:
        return self._win.getmaxyx()[1]

    def paint(self, lines: list[Line]) -> None:
        max_y, max_x = self._win.getmaxyx()
        self._win.erase()
        for y, line in enumerate(lines[:max_y]):
            x = 0
            for seg in line:
                room = max_x - 1 - x
                if room <= 0:
                    break
                attr = curses.color_pair(seg.color)
                if seg.bold:
                    attr |= curses.A_BOLD
                if seg.color == C_DIM:
                    attr |= curses.A_DIM
                _safe(self._win, y, x, seg.text[:room], attr)
                x += len(seg.text)
        self._win.refresh()

    def poll_quit(self) -> bool:
        """Drain pending keys; True if the user asked to quit."""
        while True:
            key = self._win.getch()
            if key == -1:
                return False
            if key in (ord("q"), ord("Q")):
                return True
            if key == curses.KEY_RESIZE:
                self._win.clear()


# ── Main loop ──────────────────────────────────────────────────────────────


def sleep_interruptibly(
    seconds: float,
    cancel: threading.Event,
    poll_quit: Callable[[], bool] | None = None,
) -> None:
    """Sleep in short slices, returning early once ``cancel`` is set.

    ``poll_quit`` is checked after every slice; if it returns True the
    cancel event is set.
    """
    slices = max(1, int(seconds * SLICES_PER_SECOND))
    for _ in range(slices):
        if cancel.wait(1 / SLICES_PER_SECOND):
            return
        if poll_quit is not None and poll_quit():
            cancel.set()
            return


class DashboardLoop:
    """Poll → aggregate → (every display interval) advance history and redraw.

    Runs on a single thread. ``query`` returns the current device list (and
    may raise ``QueryError``); ``screen`` needs ``width()``, ``paint(lines)``
    and ``poll_quit()``. The registry is owned by the loop and only touched
    from ``tick()``.
    """

    def __init__(
        self,
        query: Callable[[], list[DeviceRecord]],
        screen: Any,
        registry: DeviceRegistry | None = None,
        *,
        sample_interval: float = DEFAULT_CONFIG["sample_interval"],
        display_interval: float = DEFAULT_CONFIG["display_interval"],
        graph_height: int = GRAPH_HEIGHT,
        y_axis_width: int = Y_AXIS_WIDTH,
        thresholds: dict[str, Any] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._query = query
        self.screen = screen
        self.registry = registry if registry is not None else DeviceRegistry()
        self.sample_interval = sample_interval
        self.display_interval = display_interval
        self.graph_height = graph_height
        self.y_axis_width = y_axis_width
        self.thresholds = thresholds
        self._clock = clock
        self.last_error: str | None = None
        self._last_display = clock()

    def poll(self) -> None:
        """Query devices and buffer their samples; remember any failure."""
        try:
            devices = self._query()
        except QueryError as e:
            # Leave the registry alone so a transient failure prunes nothing.
            self.last_error = str(e)
            return
        self.last_error = None
        self.registry.collect(devices)

    def should_display(self) -> bool:
        return self._clock() - self._last_display >= self.display_interval

    def tick(self) -> bool:
        """Run one iteration without sleeping. Returns True if a frame was drawn."""
        self.poll()

        # The terminal may be resized at any time, so never cache this.
        graph_width, available_width = graph_geometry(self.screen.width(), self.y_axis_width)

        if not self.should_display():
            return False

        # Advance even when the last poll failed so one column stays one window.
        self.registry.advance(graph_width)
        if self.last_error is not None:
            frame = render_error(self.last_error, self.display_interval)
        else:
            frame = render_frame(
                self.registry,
                graph_width,
                available_width,
                self.display_interval,
                graph_height=self.graph_height,
                thresholds=self.thresholds,
                y_axis_width=self.y_axis_width,
            )
        self.screen.paint(frame)
        self._last_display = self._clock()
        return True

    def run(self, cancel: threading.Event) -> None:
        """Loop until ``cancel`` is set (Ctrl+C or ``q``)."""
        self.screen.paint(render_waiting(self.sample_interval, self.display_interval))
        while not cancel.is_set():
            self.tick()
            sleep_interruptibly(self.sample_interval, cancel, self.screen.poll_quit)


def _dashboard_main(
    stdscr: curses.window,
    loop_kwargs: dict[str, Any],
    cancel: threading.Event,
) -> None:
    loop = DashboardLoop(screen=CursesScreen(stdscr), **loop_kwargs)
    loop.run(cancel)


# ── CLI entry point ────────────────────────────────────────────────────────


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        description="Live GPU utilization, memory and temperature dashboard.",
    )
    parser.add_argument(
        "--sample-interval",
        default=None,
        metavar="SECONDS",
        help="Seconds between telemetry polls (default: 0.1)",
    )
    parser.add_argument(
        "--display-interval",
        default=None,
        metavar="SECONDS",
        help="Seconds between screen refreshes (default: 3)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        metavar="PATH",
        help="Path to TOML config file",
    )
    parser.add_argument(
        "--print-config",
        action="store_true",
        help="Print the default configuration as TOML and exit",
    )
    parser.add_argument(
        "--mock",
        action="store_true",
        help="Use random test data (no GPU needed)",
    )
    args = parser.parse_args(argv)

    if args.print_config:
        print(dump_default_config(), end="")
        return

    config = load_config(args.config)
    # load_config has already replaced unusable file values with defaults
    sample_interval = resolve_interval(args.sample_interval, config["sample_interval"])
    display_interval = resolve_interval(args.display_interval, config["display_interval"])

    chart: dict[str, Any] = config["chart"]
    query_cfg: dict[str, Any] = config.get("query", DEFAULT_CONFIG["query"])
    if args.mock:
        query: Callable[[], list[DeviceRecord]] = MockQuery()
    else:
        query = partial(
            query_devices,
            str(query_cfg.get("command", "nvidia-smi")),
            float(query_cfg.get("timeout", 5.0)),
        )

    loop_kwargs: dict[str, Any] = {
        "query": query,
        "registry": DeviceRegistry(prune_stale=bool(config.get("prune_stale", True))),
        "sample_interval": sample_interval,
        "display_interval": display_interval,
        "graph_height": chart["height"],
        "y_axis_width": chart["y_axis_width"],
        "thresholds": config.get("thresholds", DEFAULT_CONFIG["thresholds"]),
    }

    cancel = threading.Event()
    signal.signal(signal.SIGINT, lambda signum, frame: cancel.set())
    try:
        curses.wrapper(_dashboard_main, loop_kwargs, cancel)
    except KeyboardInterrupt:
        pass
    print("gpumon: stopped.")


if __name__ == "__main__":
    main()
