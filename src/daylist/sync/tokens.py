from __future__ import annotations

import logging
from collections.abc import Iterable

import httpx
import orjson

from daylist.sync.errors import TokenAcquisitionFailure

logger = logging.getLogger(__name__)


class TokenClient:
    """Request key-scoped notification tokens from the store's HTTP API."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        token_path: str = "/token/websocket",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = f"{base_url.rstrip('/')}/{token_path.lstrip('/')}"
        self._api_key = api_key
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=timeout, transport=httpx.AsyncHTTPTransport(retries=0)
        )

    async def acquire(self, keys: Iterable[str]) -> str:
        """Return a token valid for exactly ``keys``."""

        subscribe_keys = sorted(set(keys))
        if not subscribe_keys:
            raise TokenAcquisitionFailure("No keys to subscribe to")
        try:
            resp = await self._client.post(
                self._url,
                json={"subscribeKeys": subscribe_keys},
                headers={"x-api-key": self._api_key, "Accept": "application/json"},
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            response = exc.response
            detail = response.text[:240].strip() if response is not None else ""
            raise TokenAcquisitionFailure(
                f"Token request failed ({response.status_code}): {detail or 'no detail'}"
            ) from exc
        except httpx.HTTPError as exc:
            raise TokenAcquisitionFailure(f"Token request failed: {exc}") from exc

        try:
            payload = orjson.loads(resp.content)
        except orjson.JSONDecodeError as exc:
            raise TokenAcquisitionFailure("Token response is not JSON") from exc
        token = payload.get("token") if isinstance(payload, dict) else None
        if not isinstance(token, str) or not token:
            raise TokenAcquisitionFailure("Token response has no token")
        logger.debug("Acquired token for %d keys", len(subscribe_keys))
        return token

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


__all__ = ["TokenClient"]
