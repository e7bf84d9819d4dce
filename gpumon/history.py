"""Per-device sample buffers and chart history.

Raw samples are collected every poll into a ``SampleAggregator``. On each
display tick the aggregator is drained into one averaged ``Sample`` that is
pushed onto the device's ``History``, whose length follows the chart width.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass

from gpumon.query import DeviceRecord


@dataclass(slots=True, frozen=True)
class Sample:
    """Utilization and memory percentages for one device."""

    utilization: int
    memory_percent: int  # not clamped, may exceed 100

    @classmethod
    def from_device(cls, device: DeviceRecord) -> Sample:
        return cls(device.utilization, device.memory_percent)


class SampleAggregator:
    """Raw samples gathered between two display ticks."""

    def __init__(self) -> None:
        self._buf: list[Sample] = []

    def __len__(self) -> int:
        return len(self._buf)

    def add(self, sample: Sample) -> None:
        self._buf.append(sample)

    def drain_average(self) -> Sample | None:
        """Average the buffered samples and clear the buffer.

        Each field is the floor-divided integer mean, never rounded.
        Returns None when nothing was added since the last drain.
        """
        if not self._buf:
            return None
        n = len(self._buf)
        util = sum(s.utilization for s in self._buf)
        mem = sum(s.memory_percent for s in self._buf)
        self._buf.clear()
        return Sample(util // n, mem // n)


class History:
    """FIFO of averaged samples, oldest first.

    The capacity is passed on every push rather than stored, so a narrower
    chart truncates on the next push and a wider one just fills up over time.
    """

    def __init__(self) -> None:
        self._samples: deque[Sample] = deque()

    def __len__(self) -> int:
        return len(self._samples)

    def add_sample(self, sample: Sample, capacity: int) -> None:
        self._samples.append(sample)
        while self._samples and len(self._samples) > capacity:
            self._samples.popleft()

    def get_samples(self) -> list[Sample]:
        return list(self._samples)


class DeviceRegistry:
    """Latest device list plus aggregator/history state keyed by device id.

    Owned by the dashboard loop and passed around explicitly. Device identity
    is ``DeviceRecord.id``; a device keeps its history as long as its id is
    stable, whatever its position in the poll.

    Args:
        prune_stale: Drop state for ids missing from the latest poll. When
            False, state for vanished devices is kept for the process lifetime.
    """

    def __init__(self, prune_stale: bool = True) -> None:
        self.prune_stale = prune_stale
        self.devices: list[DeviceRecord] = []
        self._aggregators: dict[str, SampleAggregator] = {}
        self._histories: dict[str, History] = {}

    def aggregator(self, device_id: str) -> SampleAggregator:
        """Return the aggregator for ``device_id``, creating it on first use."""
        agg = self._aggregators.get(device_id)
        if agg is None:
            agg = self._aggregators[device_id] = SampleAggregator()
        return agg

    def history(self, device_id: str) -> History:
        """Return the history for ``device_id``, creating it on first use."""
        hist = self._histories.get(device_id)
        if hist is None:
            hist = self._histories[device_id] = History()
        return hist

    def collect(self, devices: Iterable[DeviceRecord]) -> None:
        """Record one poll: remember the devices and buffer a raw sample each."""
        self.devices = list(devices)
        for device in self.devices:
            self.aggregator(device.id).add(Sample.from_device(device))
        if self.prune_stale:
            self.prune()

    def advance(self, graph_width: int) -> None:
        """Move each current device's averaged sample into its history."""
        for device in self.devices:
            avg = self.aggregator(device.id).drain_average()
            if avg is None:
                continue
            self.history(device.id).add_sample(avg, graph_width)

    def samples(self, device_id: str) -> list[Sample]:
        hist = self._histories.get(device_id)
        return hist.get_samples() if hist is not None else []

    def known_ids(self) -> set[str]:
        return set(self._aggregators) | set(self._histories)

    def prune(self) -> list[str]:
        """Forget ids that are not in the latest poll. Returns the removed ids."""
        current = {d.id for d in self.devices}
        stale = sorted(self.known_ids() - current)
        for device_id in stale:
            self._aggregators.pop(device_id, None)
            self._histories.pop(device_id, None)
        return stale
