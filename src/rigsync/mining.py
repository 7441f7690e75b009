"""Miner process management driven by the server's what-to-mine directive."""

from __future__ import annotations

import asyncio
import logging
import re
import shlex
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .config import MinerConfig
from .hardware import Gpu

UNIT_MULTIPLIERS = {"": 1, "k": 10**3, "M": 10**6, "G": 10**9, "T": 10**12}


def parse_hash_rate(line: str, pattern: "re.Pattern[str]") -> Optional[Tuple[int, float]]:
  """Extract (device index, rate in H/s) from one line of miner output."""
  match = pattern.search(line)
  if not match:
    return None
  groups = match.groupdict()
  try:
    device = int(groups["device"])
    rate = float(groups["rate"])
  except (KeyError, TypeError, ValueError):
    return None
  return device, rate * UNIT_MULTIPLIERS.get(groups.get("unit") or "", 1)


def build_command(template: Sequence[str], what_to_mine: Any) -> List[str]:
  fields: Dict[str, Any] = {"what_to_mine": what_to_mine}
  if isinstance(what_to_mine, dict):
    fields.update({str(key): value for key, value in what_to_mine.items()})
  return [part.format_map(fields) for part in template]


class MiningOperation:
  def __init__(self, config: MinerConfig, gpus: List[Gpu], logger: Optional[logging.Logger] = None) -> None:
    self.config = config
    self.gpus = {gpu.index: gpu for gpu in gpus}
    self.logger = logger or logging.getLogger("rigsync.mining")
    self.pattern = re.compile(config.hashrate_pattern)
    self.what_to_mine: Any = None
    self.process: Optional[asyncio.subprocess.Process] = None
    self._changed = asyncio.Event()
    self._stopped = asyncio.Event()

  def update(self, what_to_mine: Any) -> bool:
    """Adopt a new directive. Returns True when the miner has to be (re)started."""
    if what_to_mine == self.what_to_mine:
      self.logger.debug("Mining operation unchanged")
      return False
    self.logger.info("New mining operation: %s", what_to_mine)
    self.what_to_mine = what_to_mine
    self._changed.set()
    if self.is_active():
      self.logger.info("Restarting miner for the new mining operation")
      self._terminate()
    return True

  def is_active(self) -> bool:
    return self.process is not None and self.process.returncode is None

  def current_command(self) -> Optional[List[str]]:
    if self.what_to_mine is None:
      return None
    if not self.config.command:
      self.logger.warning("No miner command configured; cannot run %s", self.what_to_mine)
      return None
    try:
      return build_command(self.config.command, self.what_to_mine)
    except (KeyError, IndexError, ValueError) as error:
      self.logger.error("Miner command template does not fit %s: %s", self.what_to_mine, error)
      return None

  def record_output(self, line: str) -> None:
    parsed = parse_hash_rate(line, self.pattern)
    if parsed is None:
      return
    device, rate = parsed
    gpu = self.gpus.get(device)
    if gpu is not None:
      gpu.add_hash_rate(rate)

  async def run_miner(self) -> None:
    """Keep a miner running for the current directive until stopped."""
    while not self._stopped.is_set():
      self._changed.clear()
      command = self.current_command()
      if command is None:
        await self._wait_for(self._changed)
        continue

      self.logger.info("Starting miner: %s", shlex.join(command))
      try:
        self.process = await asyncio.create_subprocess_exec(
          *command,
          stdout=asyncio.subprocess.PIPE,
          stderr=asyncio.subprocess.STDOUT,
        )
      except OSError as error:
        self.logger.error("Miner failed to start: %s", error)
        await self._wait_for(self._changed, self.config.restart_delay_seconds)
        continue

      # update() cannot reach a process that was still being spawned
      if self._changed.is_set():
        self.logger.info("Mining operation changed while the miner was starting")
        self._terminate()

      await self._consume_output(self.process)
      returncode = await self.process.wait()
      if self._stopped.is_set() or self._changed.is_set():
        continue
      self.logger.warning("Miner exited with code %s; restarting in %.0fs", returncode, self.config.restart_delay_seconds)
      await self._wait_for(self._changed, self.config.restart_delay_seconds)

  async def _consume_output(self, process: asyncio.subprocess.Process) -> None:
    if process.stdout is None:
      return
    async for raw in process.stdout:
      line = raw.decode("utf-8", errors="replace").rstrip()
      if line:
        self.logger.debug("miner: %s", line)
        self.record_output(line)

  async def _wait_for(self, event: asyncio.Event, timeout: Optional[float] = None) -> None:
    waiters = [asyncio.ensure_future(event.wait()), asyncio.ensure_future(self._stopped.wait())]
    try:
      await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
    finally:
      for waiter in waiters:
        waiter.cancel()

  def stop(self) -> None:
    self._stopped.set()
    if self.is_active():
      self._terminate()

  def _terminate(self) -> None:
    try:
      self.process.terminate()
    except ProcessLookupError:
      self.logger.debug("Miner already exited")
