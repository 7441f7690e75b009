"""Directive refresh and the background statistics/refresh loop."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional, Sequence
from urllib.parse import urlparse

from . import stats
from .identity import RigIdentity
from .transport import PayloadError, TransportError

DEFAULT_INTERVAL_SECONDS = 900.0

# Failures expected from a flaky server or network. Anything else is still
# contained by the loop but logged with a traceback.
CYCLE_ERRORS = (TransportError, PayloadError, OSError)


class SyncLoop:
  def __init__(
    self,
    identity: RigIdentity,
    server,
    applier,
    devices: Sequence[stats.StatsSource],
    server_url: str = "",
    interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
    logger: Optional[logging.Logger] = None,
  ) -> None:
    self.identity = identity
    self.server = server
    self.applier = applier
    self.devices = devices
    self.server_url = server_url
    self.interval_seconds = interval_seconds
    self.logger = logger or logging.getLogger("rigsync.sync")
    self.report_path: Optional[str] = None
    self.cycle_count = 0
    self.last_error: Optional[BaseException] = None
    self._stopped = asyncio.Event()

  async def fetch_and_apply_directive(self) -> Optional[str]:
    """Apply the server's current directive; return its stats report path.

    Returns None, leaving the workload untouched, when the server has no
    directive for this rig yet.
    """
    rig_path = await asyncio.to_thread(self.identity.resolve)
    data = await asyncio.to_thread(self.server.get, rig_path)
    rig = _rig_record(data)
    what_to_mine = rig.get("what_to_mine")
    if what_to_mine is None:
      self.logger.warning("No mining operation. Go configure your rig on %s", self.server_url or "the control server")
      return None
    self.applier.update(what_to_mine)
    hashrate_url = rig.get("hashrate_url")
    if not hashrate_url:
      return None
    return urlparse(hashrate_url).path

  async def run_cycle(self) -> None:
    """Flush statistics, reset counters, then refresh the directive."""
    sample = stats.drain(self.devices, self.logger)
    if self.report_path:
      await asyncio.to_thread(stats.flush, self.server, self.report_path, sample, self.logger)
    self.logger.info("Getting best mining operation from server")
    new_path = await self.fetch_and_apply_directive()
    if new_path:
      self.report_path = new_path

  async def run_forever(self, initial_report_path: Optional[str] = None) -> None:
    self.report_path = initial_report_path
    while not self._stopped.is_set():
      if await self._sleep():
        break
      self.cycle_count += 1
      try:
        await self.run_cycle()
        self.last_error = None
      except CYCLE_ERRORS as error:
        self.last_error = error
        self.logger.warning("Error contacting the control server: %s", error)
      except Exception as error:
        self.last_error = error
        self.logger.exception("Unexpected error in sync cycle: %s", error)
    self.logger.info("Sync loop stopped after %s cycle(s)", self.cycle_count)

  async def _sleep(self) -> bool:
    """Wait one interval; True when stop() was called meanwhile."""
    try:
      await asyncio.wait_for(self._stopped.wait(), timeout=self.interval_seconds)
    except asyncio.TimeoutError:
      return False
    return True

  def stop(self) -> None:
    self._stopped.set()


def _rig_record(data: Any) -> dict:
  rig = data.get("rig") if isinstance(data, dict) else None
  if not isinstance(rig, dict):
    raise PayloadError(f"rig resource has no 'rig' object: {data!r}")
  return rig
