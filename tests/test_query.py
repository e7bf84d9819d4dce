"""Tests for gpumon.query."""

from __future__ import annotations

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from gpumon.query import (
    QUERY_FIELDS,
    DeviceRecord,
    MockQuery,
    QueryError,
    build_command,
    parse_query_output,
    query_devices,
)

SMI_OUTPUT = (
    "0, NVIDIA GeForce RTX 4090, 45, 10, 500, 2000\n"
    "1, NVIDIA A100-SXM4-80GB, 71, 90, 1900, 2000\n"
)


def _device(**kw: object) -> DeviceRecord:
    base: dict[str, object] = {
        "id": "0",
        "name": "GPU",
        "temperature": 40,
        "utilization": 0,
        "memory_used": 0,
        "memory_total": 100,
    }
    base.update(kw)
    return DeviceRecord(**base)  # type: ignore[arg-type]


# ── DeviceRecord ───────────────────────────────────────────────────────────


class TestMemoryPercent:
    def test_truncates(self) -> None:
        assert _device(memory_used=1900, memory_total=2000).memory_percent == 95
        assert _device(memory_used=2, memory_total=3).memory_percent == 66

    def test_zero_total_is_zero(self) -> None:
        assert _device(memory_used=10, memory_total=0).memory_percent == 0

    def test_not_clamped(self) -> None:
        assert _device(memory_used=150, memory_total=100).memory_percent == 150

    def test_default_kind(self) -> None:
        assert _device().kind == "GPU"


# ── parse_query_output ─────────────────────────────────────────────────────


class TestParseQueryOutput:
    def test_parses_rows(self) -> None:
        devices = parse_query_output(SMI_OUTPUT)
        assert [d.id for d in devices] == ["0", "1"]
        first = devices[0]
        assert first.name == "NVIDIA GeForce RTX 4090"
        assert first.temperature == 45
        assert first.utilization == 10
        assert first.memory_used == 500
        assert first.memory_total == 2000

    def test_drops_wrong_field_count(self) -> None:
        text = "0, GPU, 45, 10, 500\n1, GPU, 50, 20, 100, 200, extra\n2, GPU, 30, 5, 1, 2\n"
        assert [d.id for d in parse_query_output(text)] == ["2"]

    def test_drops_unparseable_numbers(self) -> None:
        text = "0, GPU, [N/A], 10, 500, 2000\n1, GPU, 50, 20, 100, 200\n"
        assert [d.id for d in parse_query_output(text)] == ["1"]

    def test_blank_lines_ignored(self) -> None:
        assert parse_query_output("\n\n   \n") == []


# ── query_devices ──────────────────────────────────────────────────────────


def test_build_command() -> None:
    cmd = build_command("nvidia-smi")
    assert cmd[0] == "nvidia-smi"
    assert cmd[1] == "--query-gpu=" + ",".join(QUERY_FIELDS)
    assert cmd[2] == "--format=csv,noheader,nounits"


@patch("gpumon.query.subprocess.run")
def test_query_devices_success(mock_run: MagicMock) -> None:
    mock_run.return_value = MagicMock(returncode=0, stdout=SMI_OUTPUT, stderr="")
    devices = query_devices("nvidia-smi", timeout=2.0)
    assert len(devices) == 2
    _, kwargs = mock_run.call_args
    assert kwargs["timeout"] == 2.0
    assert kwargs["capture_output"] is True


@patch("gpumon.query.subprocess.run", side_effect=FileNotFoundError)
def test_query_devices_missing_command(mock_run: MagicMock) -> None:
    with pytest.raises(QueryError, match="not found"):
        query_devices("nvidia-smi")


@patch(
    "gpumon.query.subprocess.run",
    side_effect=subprocess.TimeoutExpired(cmd="nvidia-smi", timeout=5),
)
def test_query_devices_timeout(mock_run: MagicMock) -> None:
    with pytest.raises(QueryError, match="timed out"):
        query_devices("nvidia-smi", timeout=5)


@patch("gpumon.query.subprocess.run")
def test_query_devices_nonzero_exit(mock_run: MagicMock) -> None:
    mock_run.return_value = MagicMock(
        returncode=9,
        stdout="",
        stderr="NVIDIA-SMI has failed because it couldn't communicate with the driver.\n",
    )
    with pytest.raises(QueryError, match="couldn't communicate"):
        query_devices()


# ── MockQuery ──────────────────────────────────────────────────────────────


def test_mock_query_stays_in_range() -> None:
    query = MockQuery(count=3, seed=42)
    for _ in range(50):
        devices = query()
        assert [d.id for d in devices] == ["0", "1", "2"]
        for d in devices:
            assert 0 <= d.utilization <= 100
            assert 0 <= d.memory_used <= d.memory_total
