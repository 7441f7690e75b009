"""Configuration loader for the rigsync agent."""

from __future__ import annotations

import json
import os
import socket
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

DEFAULT_INTERVAL_SECONDS = 900.0
DEFAULT_POWER_SAMPLE_SECONDS = 10.0
DEFAULT_REQUEST_TIMEOUT = 10.0
DEFAULT_HASHRATE_PATTERN = r"GPU\s*(?P<device>\d+)\D+?(?P<rate>\d+(?:\.\d+)?)\s*(?P<unit>[kMGT]?)H/s"

CONFIG_ENV_VAR = "RIGSYNC_CONFIG"


@dataclass(slots=True)
class LoggingConfig:
  level: str = "INFO"
  file: Optional[str] = None
  max_bytes: int = 5 * 1024 * 1024
  backup_count: int = 3


@dataclass(slots=True)
class MinerConfig:
  command: List[str] = field(default_factory=list)
  hashrate_pattern: str = DEFAULT_HASHRATE_PATTERN
  restart_delay_seconds: float = 5.0


@dataclass(slots=True)
class AgentConfig:
  server_url: str
  hostname_override: Optional[str] = None
  interval_seconds: float = DEFAULT_INTERVAL_SECONDS
  power_sample_seconds: float = DEFAULT_POWER_SAMPLE_SECONDS
  request_timeout: float = DEFAULT_REQUEST_TIMEOUT
  username: Optional[str] = None
  password: Optional[str] = None
  power_price: float = 0
  power_currency: str = "USD"
  miner: MinerConfig = field(default_factory=MinerConfig)
  logging: LoggingConfig = field(default_factory=LoggingConfig)

  @property
  def hostname(self) -> str:
    return self.hostname_override or socket.gethostname()

  @classmethod
  def from_dict(cls, data: Dict[str, Any]) -> "AgentConfig":
    logging_conf = data.get("logging", {})
    logging_config = LoggingConfig(
      level=logging_conf.get("level", "INFO"),
      file=logging_conf.get("file"),
      max_bytes=int(logging_conf.get("max_bytes", 5 * 1024 * 1024)),
      backup_count=int(logging_conf.get("backup_count", 3)),
    )

    miner_conf = data.get("miner", {})
    miner_config = MinerConfig(
      command=[str(part) for part in miner_conf.get("command", [])],
      hashrate_pattern=miner_conf.get("hashrate_pattern", DEFAULT_HASHRATE_PATTERN),
      restart_delay_seconds=float(miner_conf.get("restart_delay_seconds", 5.0)),
    )

    return cls(
      server_url=data["server_url"].rstrip("/"),
      hostname_override=data.get("hostname_override"),
      interval_seconds=float(data.get("interval_seconds", DEFAULT_INTERVAL_SECONDS)),
      power_sample_seconds=float(data.get("power_sample_seconds", DEFAULT_POWER_SAMPLE_SECONDS)),
      request_timeout=float(data.get("request_timeout", DEFAULT_REQUEST_TIMEOUT)),
      username=data.get("username"),
      password=data.get("password"),
      power_price=float(data.get("power_price", 0)),
      power_currency=str(data.get("power_currency", "USD")),
      miner=miner_config,
      logging=logging_config,
    )


def default_config_path() -> Path:
  return Path(__file__).resolve().parents[2] / "config.json"


def load_config(path: Optional[str] = None) -> AgentConfig:
  config_path: Path
  if path:
    config_path = Path(path).expanduser().resolve()
  else:
    env_path = os.getenv(CONFIG_ENV_VAR)
    if env_path:
      config_path = Path(env_path).expanduser().resolve()
    else:
      config_path = default_config_path()

  if not config_path.exists():
    raise FileNotFoundError(f"rigsync config.json not found at {config_path}")

  raw = json.loads(config_path.read_text())
  return AgentConfig.from_dict(raw)
