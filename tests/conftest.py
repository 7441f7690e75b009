from __future__ import annotations

from typing import Any, Dict, List, Optional

import pytest

from rigsync.hardware import DeviceCounters


class FakeServer:
    """Scripted stand-in for ServerConnection."""

    def __init__(self, responses: Optional[Dict[str, Any]] = None, registration_id: str = "abc123") -> None:
        self.responses = dict(responses or {})
        self.registration_id = registration_id
        self.calls: List[tuple] = []
        self.errors: Dict[tuple, List[BaseException]] = {}

    def fail_next(self, method: str, path: str, error: BaseException) -> None:
        self.errors.setdefault((method, path), []).append(error)

    def _maybe_fail(self, method: str, path: str) -> None:
        pending = self.errors.get((method, path))
        if pending:
            raise pending.pop(0)

    def get(self, path: str) -> Any:
        self.calls.append(("GET", path, None))
        self._maybe_fail("GET", path)
        return self.responses[path]

    def post(self, path: str, body: Dict[str, Any]) -> Any:
        self.calls.append(("POST", path, body))
        self._maybe_fail("POST", path)
        return {"rig": {"id": {"$oid": self.registration_id}}}

    def put(self, path: str, body: Dict[str, Any]) -> None:
        self.calls.append(("PUT", path, body))
        self._maybe_fail("PUT", path)

    def calls_for(self, method: str) -> List[tuple]:
        return [call for call in self.calls if call[0] == method]


class FakeApplier:
    def __init__(self) -> None:
        self.applied: List[Any] = []

    def update(self, what_to_mine: Any) -> bool:
        self.applied.append(what_to_mine)
        return True


def rig_resource(what_to_mine: Any = None, hashrate_url: Optional[str] = None) -> Dict[str, Any]:
    rig: Dict[str, Any] = {"what_to_mine": what_to_mine}
    if hashrate_url is not None:
        rig["hashrate_url"] = hashrate_url
    return {"rig": rig}


def device(hash_rates=(), power_draws=()) -> DeviceCounters:
    counters = DeviceCounters()
    for rate in hash_rates:
        counters.add_hash_rate(rate)
    for watts in power_draws:
        counters.add_power_draw(watts)
    return counters


@pytest.fixture
def applier() -> FakeApplier:
    return FakeApplier()
