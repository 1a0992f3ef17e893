"""Shared HTTP plumbing for chat providers backed by a REST API."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Mapping, Optional

import httpx

from ...exceptions import ProviderError
from .base import LLMProvider

logger = logging.getLogger(__name__)


class HTTPChatProvider(LLMProvider):
    """POST JSON to a vendor endpoint and map failures to :class:`ProviderError`.

    Connection failures carry ``ECONNREFUSED``, timeouts ``ETIMEDOUT`` and
    other transport failures ``ECONNRESET``; HTTP error responses carry their
    status code. The retry layer classifies on those fields.
    """

    label = "Provider"

    def __init__(
        self,
        base_url: str,
        timeout: float = 120.0,
        headers: Optional[Mapping[str, str]] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url, timeout=timeout, headers=dict(headers or {})
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _post(
        self,
        path: str,
        payload: Dict[str, Any],
        headers: Optional[Mapping[str, str]] = None,
        params: Optional[Mapping[str, str]] = None,
    ) -> Dict[str, Any]:
        try:
            response = await self._client.post(
                path, json=payload, headers=headers, params=params
            )
        except httpx.ConnectError as exc:
            raise ProviderError(
                f"Cannot connect to {self.label} at {self.base_url}: {exc}",
                code="ECONNREFUSED",
            ) from exc
        except httpx.TimeoutException as exc:
            raise ProviderError(
                f"{self.label} request timed out: {exc}", code="ETIMEDOUT"
            ) from exc
        except httpx.TransportError as exc:
            raise ProviderError(
                f"{self.label} connection failed: {exc}", code="ECONNRESET"
            ) from exc

        if response.status_code >= 400:
            raise ProviderError(
                f"{self.label} returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        return response.json()


def parse_arguments(raw: Any) -> Dict[str, Any]:
    """Tool arguments as a dict; JSON strings are decoded, garbage is dropped."""
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str) and raw.strip():
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Dropping unparseable tool arguments: {raw!r}")
            return {}
        return decoded if isinstance(decoded, dict) else {}
    return {}


def object_schema(parameters: Mapping[str, Any]) -> Dict[str, Any]:
    """Force a tool parameter schema into a JSON-schema ``object``."""
    schema: Dict[str, Any] = {
        "type": "object",
        "properties": dict(parameters.get("properties") or {}),
    }
    if parameters.get("required"):
        schema["required"] = list(parameters["required"])
    return schema
