"""Resolution of this host's rig resource on the control server."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from .transport import PayloadError

RIGS_PATH = "/rigs.json"


class RigIdentity:
  def __init__(
    self,
    hostname: str,
    server,
    power_price: float = 0,
    power_currency: str = "USD",
    logger: Optional[logging.Logger] = None,
  ) -> None:
    self.hostname = hostname
    self.server = server
    self.power_price = power_price
    self.power_currency = power_currency
    self.resource_path: Optional[str] = None
    self.logger = logger or logging.getLogger("rigsync.identity")

  def resolve(self) -> str:
    """Return the rig's resource path, registering the rig if the server lacks it.

    The result is cached for the life of the process. Transport errors propagate.
    """
    if self.resource_path is not None:
      return self.resource_path

    path = self._lookup()
    if path is None:
      path = self.register()
    self.resource_path = path
    return path

  def _lookup(self) -> Optional[str]:
    rigs = self.server.get(RIGS_PATH)
    if not isinstance(rigs, list):
      raise PayloadError(f"{RIGS_PATH} returned {type(rigs).__name__}, expected a list")
    for rig in rigs:
      if isinstance(rig, dict) and rig.get("hostname") == self.hostname:
        url = rig.get("url")
        if not url:
          raise PayloadError(f"rig record for {self.hostname} has no url")
        return urlparse(url).path
    return None

  def registration_record(self) -> Dict[str, Any]:
    return {
      "hostname": self.hostname,
      "power_price": self.power_price,
      "power_currency": self.power_currency,
    }

  def register(self) -> str:
    self.logger.info("Creating the rig %s on the control server", self.hostname)
    data = self.server.post(RIGS_PATH, self.registration_record())
    try:
      rig_id = data["rig"]["id"]["$oid"]
    except (KeyError, TypeError) as error:
      raise PayloadError(f"registration response missing rig id: {data!r}") from error
    return f"/rigs/{rig_id}.json"
