from __future__ import annotations

from functools import lru_cache
from typing import Any, Dict, Optional, Sequence

import httpx

from models.delivery import SendResult
from models.records import AlertPayload
from settings import get_settings
from transport.base import PushTransport, TransportError, TransportTimeoutError
from transport.mock_push import MockPushTransport


class HttpPushTransport:
    """Multicast push client for an HTTP push gateway.

    The gateway accepts ``{"tokens", "notification", "data"}`` on ``/send``
    and answers with ``successCount``/``failureCount``.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        headers = {"accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def send(self, addresses: Sequence[str], payload: AlertPayload) -> SendResult:
        body = {
            "tokens": list(addresses),
            "notification": {"title": payload.title, "body": payload.body},
            "data": dict(payload.data),
        }
        try:
            response = self._client.post("/send", json=body)
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise TransportTimeoutError(f"Push gateway timed out: {exc}") from exc
        except httpx.HTTPStatusError as exc:
            raise TransportError(
                f"Push gateway returned status {exc.response.status_code}."
            ) from exc
        except httpx.RequestError as exc:
            raise TransportError(f"Push gateway request failed: {exc}") from exc

        return self._parse_result(response, len(addresses))

    @staticmethod
    def _parse_result(response: httpx.Response, sent: int) -> SendResult:
        try:
            data: Dict[str, Any] = response.json()
            success = int(data.get("successCount", 0))
            failure = int(data.get("failureCount", sent - success))
        except (ValueError, TypeError, AttributeError) as exc:
            raise TransportError("Push gateway returned an unreadable response.") from exc
        return SendResult(success_count=success, failure_count=failure)


@lru_cache
def build_default_transport() -> PushTransport:
    settings = get_settings()
    if settings.push_gateway_url:
        return HttpPushTransport(
            base_url=settings.push_gateway_url,
            api_key=settings.push_gateway_api_key,
            timeout=settings.call_timeout or 10.0,
        )
    return MockPushTransport()
