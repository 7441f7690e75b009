"""Hardware discovery and per-device counters for the rigsync agent."""

from __future__ import annotations

import asyncio
import logging
import platform
import threading
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

import psutil
import pynvml

log = logging.getLogger("rigsync.hardware")


class DeviceCounters:
    """Hash rate and power samples observed since the last reset.

    Writers (miner output parser, power sampler) and the sync loop share one
    instance per device; every access goes through the lock so a sample lands
    in exactly one reporting interval.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._hash_rates: List[float] = []
        self._power_draws: List[float] = []

    def add_hash_rate(self, rate_hz: float) -> None:
        with self._lock:
            self._hash_rates.append(float(rate_hz))

    def add_power_draw(self, watts: float) -> None:
        with self._lock:
            self._power_draws.append(float(watts))

    def average_hash_rate(self) -> float:
        with self._lock:
            return _mean(self._hash_rates)

    def average_power_draw(self) -> float:
        with self._lock:
            return _mean(self._power_draws)

    def reset_counters(self) -> None:
        with self._lock:
            self._hash_rates.clear()
            self._power_draws.clear()

    def drain(self) -> Tuple[float, float]:
        """Return (average hash rate, average power draw) and reset, atomically."""
        with self._lock:
            averages = (_mean(self._hash_rates), _mean(self._power_draws))
            self._hash_rates.clear()
            self._power_draws.clear()
        return averages


def _mean(values: List[float]) -> float:
    if not values:
        return 0.0
    return sum(values) / len(values)


class Gpu(DeviceCounters):
    def __init__(self, index: int, uuid: str, model: str) -> None:
        super().__init__()
        self.index = index
        self.uuid = uuid
        self.model = model

    def __repr__(self) -> str:
        return f"Gpu(index={self.index}, model={self.model!r}, uuid={self.uuid!r})"


@dataclass(slots=True)
class Cpu:
    model: str
    physical_cores: int
    logical_cores: int
    max_frequency_mhz: Optional[float] = None

    def human_readable(self) -> str:
        summary = f"{self.model} ({self.physical_cores} cores / {self.logical_cores} threads"
        if self.max_frequency_mhz:
            summary += f" @ {self.max_frequency_mhz / 1000:.2f} GHz"
        return summary + ")"


def detect_cpu() -> Cpu:
    logical = psutil.cpu_count() or 0
    physical = psutil.cpu_count(logical=False) or logical
    frequency: Optional[float] = None
    try:
        freq = psutil.cpu_freq()
        if freq and freq.max:
            frequency = float(freq.max)
    except (OSError, NotImplementedError):
        frequency = None
    return Cpu(
        model=platform.processor() or platform.machine() or "unknown CPU",
        physical_cores=physical,
        logical_cores=logical,
        max_frequency_mhz=frequency,
    )


def _text(value) -> str:
    # older NVML bindings return bytes
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def discover_gpus(nvml=pynvml) -> List[Gpu]:
    """Enumerate NVIDIA GPUs through NVML. Hosts without a driver have none."""
    try:
        nvml.nvmlInit()
    except nvml.NVMLError as error:
        log.info("NVML unavailable, no GPUs to report: %s", error)
        return []

    gpus: List[Gpu] = []
    try:
        for index in range(nvml.nvmlDeviceGetCount()):
            handle = nvml.nvmlDeviceGetHandleByIndex(index)
            gpus.append(
                Gpu(
                    index,
                    _text(nvml.nvmlDeviceGetUUID(handle)),
                    _text(nvml.nvmlDeviceGetName(handle)),
                )
            )
    except nvml.NVMLError as error:
        log.warning("GPU discovery failed: %s", error)
        gpus = []
    finally:
        nvml.nvmlShutdown()

    log.debug("NVML reported %s GPU(s)", len(gpus))
    return gpus


def read_power_draw(indices: Iterable[int], nvml=pynvml) -> Dict[int, float]:
    """Current board power per GPU index, in watts.

    Boards without a power sensor are left out. Failure to initialise NVML
    propagates as ``NVMLError``.
    """
    draws: Dict[int, float] = {}
    nvml.nvmlInit()
    try:
        for index in indices:
            try:
                handle = nvml.nvmlDeviceGetHandleByIndex(index)
                draws[index] = nvml.nvmlDeviceGetPowerUsage(handle) / 1000.0  # mW -> W
            except nvml.NVMLError:
                continue
    finally:
        nvml.nvmlShutdown()
    return draws


class PowerSampler:
    """Periodically feeds NVML power readings into each GPU's counters."""

    def __init__(
        self,
        gpus: List[Gpu],
        interval_seconds: float,
        nvml=pynvml,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.gpus = gpus
        self.interval_seconds = max(interval_seconds, 1.0)
        self.nvml = nvml
        self.logger = logger or logging.getLogger("rigsync.hardware.power")
        self._stopped = asyncio.Event()

    def sample_once(self) -> int:
        draws = read_power_draw([gpu.index for gpu in self.gpus], self.nvml)
        recorded = 0
        for gpu in self.gpus:
            watts = draws.get(gpu.index)
            if watts is not None:
                gpu.add_power_draw(watts)
                recorded += 1
        return recorded

    async def run(self) -> None:
        if not self.gpus:
            return
        while not self._stopped.is_set():
            try:
                await asyncio.to_thread(self.sample_once)
            except self.nvml.NVMLError as error:
                self.logger.debug("Power sample failed: %s", error)
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue

    def stop(self) -> None:
        self._stopped.set()
