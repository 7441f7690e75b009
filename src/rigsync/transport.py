"""HTTP transport to the mining control server."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests

TransportError = requests.RequestException


class PayloadError(ValueError):
  """The server answered with a body the agent cannot interpret."""


class ServerConnection:
  def __init__(
    self,
    server_url: str,
    timeout: float = 10.0,
    username: Optional[str] = None,
    password: Optional[str] = None,
    session: Optional[requests.Session] = None,
    logger: Optional[logging.Logger] = None,
  ) -> None:
    self.server_url = server_url.rstrip("/")
    self.timeout = timeout
    self.session = session or requests.Session()
    if username:
      self.session.auth = (username, password or "")
    self.session.headers.update({"Accept": "application/json"})
    self.logger = logger or logging.getLogger("rigsync.transport")

  def url_for(self, path: str) -> str:
    return f"{self.server_url}/{path.lstrip('/')}"

  def get(self, path: str) -> Any:
    self.logger.debug("GET %s", path)
    response = self.session.get(self.url_for(path), timeout=self.timeout)
    response.raise_for_status()
    return self._decode(response)

  def post(self, path: str, body: Dict[str, Any]) -> Any:
    self.logger.debug("POST %s", path)
    response = self.session.post(self.url_for(path), json=body, timeout=self.timeout)
    response.raise_for_status()
    return self._decode(response)

  def put(self, path: str, body: Dict[str, Any]) -> None:
    self.logger.debug("PUT %s", path)
    response = self.session.put(self.url_for(path), json=body, timeout=self.timeout)
    response.raise_for_status()

  def close(self) -> None:
    self.session.close()

  def _decode(self, response: requests.Response) -> Any:
    try:
      return response.json()
    except ValueError as error:
      raise PayloadError(f"{response.url} returned a non-JSON body") from error
