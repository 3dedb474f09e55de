import json
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import httpx
import pytest

from bond_fan_bridge.client import BridgeClient


Responder = Union[Callable[[httpx.Request], httpx.Response], Exception]


def _json_responder(status: int, body: Any) -> Callable[[httpx.Request], httpx.Response]:
    def _respond(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json=body)

    return _respond


class FakeBridge:
    """In-memory bridge answering through an httpx mock transport."""

    def __init__(self) -> None:
        self.routes: Dict[Tuple[str, str], List[Responder]] = {}
        self.requests: List[httpx.Request] = []

    def add(
        self,
        method: str,
        path: str,
        json_body: Any = None,
        status: int = 200,
        *,
        responder: Optional[Responder] = None,
    ) -> None:
        """Queue a response; the last queued response repeats forever."""

        if responder is None:
            responder = _json_responder(status, json_body if json_body is not None else {})
        self.routes.setdefault((method, path), []).append(responder)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(404, json={"_error_msg": "not found"})
        responder = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(responder, Exception):
            raise responder
        return responder(request)

    def client(self, timeout: float = 1.0) -> BridgeClient:
        return BridgeClient(timeout=timeout, transport=httpx.MockTransport(self.handler))

    def calls(self, method: Optional[str] = None) -> List[str]:
        return [
            request.url.path
            for request in self.requests
            if method is None or request.method == method
        ]

    def bodies(self, path: str) -> List[Any]:
        return [
            json.loads(request.content.decode() or "null")
            for request in self.requests
            if request.url.path == path
        ]


@pytest.fixture
def bridge() -> FakeBridge:
    return FakeBridge()


@pytest.fixture
def light_fan(bridge: FakeBridge) -> FakeBridge:
    """Bridge with one dimmable light fan on the fixed three-speed scheme."""

    bridge.add("GET", "/v2/devices/abc/properties", {"feature_light": True, "feature_brightness": True})
    for action in ("TurnLightOn", "TurnLightOff", "SetBrightness", "SetSpeed", "TurnOff", "SetDirection"):
        bridge.add("PUT", f"/v2/devices/abc/actions/{action}", {})
    return bridge


@pytest.fixture
def speed_fan(bridge: FakeBridge) -> FakeBridge:
    """Bridge with one plain fan supporting continuous speeds up to 6."""

    bridge.add("GET", "/v2/devices/xyz/properties", {"max_speed": 6})
    for action in ("TurnOn", "TurnOff", "SetSpeed", "SetDirection"):
        bridge.add("PUT", f"/v2/devices/xyz/actions/{action}", {})
    return bridge
