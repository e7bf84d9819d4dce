"""Device telemetry via nvidia-smi.

Runs one ``nvidia-smi --query-gpu`` per poll and turns its CSV output into
``DeviceRecord`` objects. Rows that don't parse are skipped; a failing
command raises ``QueryError`` so the dashboard can show it and keep going.
"""

from __future__ import annotations

import random
import subprocess
from dataclasses import dataclass

QUERY_FIELDS: tuple[str, ...] = (
    "index",
    "name",
    "temperature.gpu",
    "utilization.gpu",
    "memory.used",
    "memory.total",
)


class QueryError(RuntimeError):
    """The telemetry command could not be run or reported a failure."""


@dataclass(frozen=True)
class DeviceRecord:
    """One device as reported by a single poll."""

    id: str
    name: str
    temperature: int  # °C
    utilization: int  # 0-100
    memory_used: int  # MiB
    memory_total: int  # MiB
    kind: str = "GPU"

    @property
    def memory_percent(self) -> int:
        """Used memory as a truncated integer percentage (0 if total is 0)."""
        if self.memory_total <= 0:
            return 0
        return self.memory_used * 100 // self.memory_total


def build_command(command: str = "nvidia-smi") -> list[str]:
    return [
        command,
        "--query-gpu=" + ",".join(QUERY_FIELDS),
        "--format=csv,noheader,nounits",
    ]


def parse_query_output(text: str) -> list[DeviceRecord]:
    """Parse ``csv,noheader,nounits`` output, dropping malformed lines."""
    devices: list[DeviceRecord] = []
    for line in text.splitlines():
        if not line.strip():
            continue
        parts = [p.strip() for p in line.split(",")]
        if len(parts) != len(QUERY_FIELDS):
            continue
        try:
            devices.append(
                DeviceRecord(
                    id=str(int(parts[0])),
                    name=parts[1],
                    temperature=int(parts[2]),
                    utilization=int(parts[3]),
                    memory_used=int(parts[4]),
                    memory_total=int(parts[5]),
                )
            )
        except ValueError:
            # "[N/A]", "[Not Supported]" and friends
            continue
    return devices


def query_devices(command: str = "nvidia-smi", timeout: float = 5.0) -> list[DeviceRecord]:
    """Poll all devices once.

    Raises:
        QueryError: If the command is missing, times out or exits non-zero.
    """
    try:
        result = subprocess.run(
            build_command(command),
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except FileNotFoundError as e:
        raise QueryError(f"{command} not found") from e
    except subprocess.TimeoutExpired as e:
        raise QueryError(f"{command} timed out after {timeout:g}s") from e

    if result.returncode != 0:
        detail = (result.stderr or result.stdout).strip().splitlines()
        msg = detail[0] if detail else f"exit status {result.returncode}"
        raise QueryError(f"{command} failed: {msg}")
    return parse_query_output(result.stdout)


class MockQuery:
    """Random-walk fake devices for running without a GPU (``--mock``)."""

    def __init__(self, count: int = 2, seed: int | None = None) -> None:
        self._rng = random.Random(seed)
        self._util = [self._rng.randint(0, 100) for _ in range(count)]
        self._mem = [self._rng.randint(1000, 20000) for _ in range(count)]
        self._total = 24576

    def _walk(self, value: int, step: int, lo: int, hi: int) -> int:
        return max(lo, min(hi, value + self._rng.randint(-step, step)))

    def __call__(self) -> list[DeviceRecord]:
        devices: list[DeviceRecord] = []
        for i in range(len(self._util)):
            self._util[i] = self._walk(self._util[i], 15, 0, 100)
            self._mem[i] = self._walk(self._mem[i], 500, 0, self._total)
            devices.append(
                DeviceRecord(
                    id=str(i),
                    name=f"Mock GPU {i}",
                    temperature=35 + self._util[i] // 2,
                    utilization=self._util[i],
                    memory_used=self._mem[i],
                    memory_total=self._total,
                )
            )
        return devices
