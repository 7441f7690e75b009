"""Async runtime for the rigsync agent."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import List, Optional

from .config import AgentConfig, load_config
from .hardware import Cpu, Gpu, PowerSampler, detect_cpu, discover_gpus
from .identity import RigIdentity
from .logger import configure_logging
from .mining import MiningOperation
from .sync import CYCLE_ERRORS, SyncLoop
from .transport import ServerConnection


class Agent:
  def __init__(
    self,
    config: AgentConfig,
    server: Optional[ServerConnection] = None,
    gpus: Optional[List[Gpu]] = None,
    cpu: Optional[Cpu] = None,
    mining: Optional[MiningOperation] = None,
    logger: Optional[logging.Logger] = None,
  ) -> None:
    self.config = config
    self.logger = logger or logging.getLogger("rigsync")
    self.cpu = cpu or detect_cpu()
    self.gpus = discover_gpus() if gpus is None else gpus
    self.server = server or ServerConnection(
      config.server_url,
      timeout=config.request_timeout,
      username=config.username,
      password=config.password,
      logger=self.logger.getChild("transport"),
    )
    self.mining = mining or MiningOperation(config.miner, self.gpus, self.logger.getChild("mining"))
    self.identity = RigIdentity(
      config.hostname,
      self.server,
      power_price=config.power_price,
      power_currency=config.power_currency,
      logger=self.logger.getChild("identity"),
    )
    self.sync = SyncLoop(
      self.identity,
      self.server,
      self.mining,
      self.gpus,
      server_url=config.server_url,
      interval_seconds=config.interval_seconds,
      logger=self.logger.getChild("sync"),
    )
    self.sampler = PowerSampler(self.gpus, config.power_sample_seconds, logger=self.logger.getChild("power"))
    self.tasks: List[asyncio.Task] = []

  def log_hardware(self) -> None:
    self.logger.info("Hostname is %s", self.config.hostname)
    self.logger.info("Found %s", self.cpu.human_readable())
    self.logger.info("Found %s GPUs:", len(self.gpus))
    for gpu in self.gpus:
      self.logger.info("%s (%s)", gpu.model, gpu.uuid)

  async def start(self) -> None:
    """Apply the first directive, start the background loops, then mine."""
    self.log_hardware()

    report_path: Optional[str] = None
    try:
      report_path = await self.sync.fetch_and_apply_directive()
    except CYCLE_ERRORS as error:
      self.logger.warning("Error contacting the control server at %s: %s", self.config.server_url, error)

    self.tasks = [
      asyncio.create_task(self.sync.run_forever(report_path), name="rigsync-sync"),
      asyncio.create_task(self.sampler.run(), name="rigsync-power"),
    ]
    try:
      await self.mining.run_miner()
    finally:
      self.stop()
      await asyncio.gather(*self.tasks, return_exceptions=True)

  def stop(self) -> None:
    self.sync.stop()
    self.sampler.stop()
    self.mining.stop()


async def run_agent(
  config_path: Optional[str] = None,
  hostname: Optional[str] = None,
  server_url: Optional[str] = None,
  interval_override: Optional[float] = None,
  log_level: Optional[str] = None,
) -> None:
  config = load_config(config_path)
  apply_overrides(config, hostname, server_url, interval_override)
  root_dir = Path(__file__).resolve().parents[2]
  logger = configure_logging(config.logging, root_dir, log_level)
  logger.info("Starting rigsync against %s (interval %.0fs)", config.server_url, config.interval_seconds)

  agent = Agent(config, logger=logger)
  try:
    await agent.start()
  finally:
    agent.server.close()


def apply_overrides(
  config: AgentConfig,
  hostname: Optional[str] = None,
  server_url: Optional[str] = None,
  interval_override: Optional[float] = None,
) -> AgentConfig:
  if hostname:
    config.hostname_override = hostname
  if server_url:
    config.server_url = server_url.rstrip("/")
  if interval_override is not None and interval_override > 0:
    config.interval_seconds = interval_override
  return config
