"""In-memory stand-in for the scheduling REST backend, served through httpx.MockTransport"""
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import httpx

API_PREFIX = "/api/"

Responder = Callable[[httpx.Request], Awaitable[httpx.Response]]


def dump(records) -> List[Dict[str, Any]]:
    return [record.model_dump(mode="json", exclude_none=True) for record in records]


class FakeBackend:
    def __init__(self):
        self.routes: Dict[Tuple[str, str], Responder] = {}
        self.requests: List[httpx.Request] = []

    def on(
            self,
            method: str,
            path: str,
            json: Any = None,
            status: int = 200,
            responder: Optional[Responder] = None,
            error: Optional[Exception] = None
    ):
        async def respond(request: httpx.Request) -> httpx.Response:
            if error is not None:
                raise error
            if json is None:
                return httpx.Response(status)
            return httpx.Response(status, json=json)

        self.routes[(method, API_PREFIX + path)] = responder or respond
        return self

    def serve_schedule(
            self,
            appointments=(),
            business_hours=(),
            availabilities=(),
            blocks=()
    ):
        return self.on("GET", "agenda/appointments", json={
            "appointments": dump(appointments),
            "tenant_business_hours": dump(business_hours),
            "availabilities": dump(availabilities),
            "blocks": dump(blocks),
        })

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        responder = self.routes.get((request.method, request.url.path))
        if responder is None:
            return httpx.Response(404, json={"message": "Not found"})
        return await responder(request)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def calls(self, method: str, path: Optional[str] = None) -> List[httpx.Request]:
        return [
            r for r in self.requests
            if r.method == method and (path is None or r.url.path == API_PREFIX + path)
        ]
