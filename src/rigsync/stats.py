"""Aggregation and upload of per-device mining statistics."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Protocol, Tuple

log = logging.getLogger("rigsync.stats")


class StatsSource(Protocol):
  def average_hash_rate(self) -> float: ...

  def average_power_draw(self) -> float: ...

  def reset_counters(self) -> None: ...


@dataclass(frozen=True, slots=True)
class StatsSample:
  hash_rate_hz: int
  power_watts: int

  def to_payload(self) -> Dict[str, Any]:
    return {"rate": self.hash_rate_hz, "power_usage": self.power_watts}


def _sum(readings: Iterable[Tuple[float, float]]) -> StatsSample:
  hash_rate = 0
  power = 0
  for device_rate, device_power in readings:
    hash_rate += int(device_rate)
    power += int(device_power)
  return StatsSample(hash_rate_hz=hash_rate, power_watts=power)


def compute_aggregate(devices: Iterable[StatsSource]) -> StatsSample:
  """Plain sum of every device's own averages."""
  return _sum((device.average_hash_rate(), device.average_power_draw()) for device in devices)


def clear_all(devices: Iterable[StatsSource], logger: Optional[logging.Logger] = None) -> None:
  (logger or log).info("Clearing statistics for the next mining round")
  for device in devices:
    device.reset_counters()


def drain(devices: Iterable[StatsSource], logger: Optional[logging.Logger] = None) -> StatsSample:
  """Aggregate, then reset every device.

  When every device offers ``drain()`` each one is read and reset under its
  own lock; otherwise this is ``compute_aggregate`` followed by ``clear_all``.
  """
  devices = list(devices)
  if not all(hasattr(device, "drain") for device in devices):
    sample = compute_aggregate(devices)
    clear_all(devices, logger)
    return sample
  sample = _sum(device.drain() for device in devices)
  (logger or log).info("Clearing statistics for the next mining round")
  return sample


def flush(server, report_path: str, sample: StatsSample, logger: Optional[logging.Logger] = None) -> bool:
  """PUT the sample to ``report_path``; a zero hash rate is logged but not sent."""
  (logger or log).info("Sending stats: %s H/s at %s W", sample.hash_rate_hz, sample.power_watts)
  if sample.hash_rate_hz == 0:
    return False
  server.put(report_path, sample.to_payload())
  return True
