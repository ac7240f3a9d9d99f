from typing import Any, Dict, Optional

import httpx
from fastapi import Request

from . import config
from .errors import UpstreamError
from .logs import log_event

ORDER_GID_PREFIX = "gid://shopify/Order/"


def order_gid(order_id: str) -> str:
    """Accept a numeric order id or a full Order GID and return the GID."""
    oid = (order_id or "").strip()
    if oid.startswith("gid://"):
        return oid
    return f"{ORDER_GID_PREFIX}{oid}"


def numeric_id(gid: str) -> str:
    return (gid or "").rstrip("/").split("/")[-1]


class ShopifyClient:
    """Admin GraphQL client bound to one store and access token.

    A fresh httpx.AsyncClient is opened per call; `transport` lets tests
    swap the network for an in-process handler.
    """

    def __init__(
        self,
        domain: str,
        access_token: str,
        *,
        api_version: str = config.DEFAULT_SHOPIFY_API_VERSION,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.domain = (domain or "").strip().lower()
        self.access_token = (access_token or "").strip()
        self.api_version = api_version
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_env(cls, transport: Optional[httpx.AsyncBaseTransport] = None) -> "ShopifyClient":
        return cls(
            config.store_domain(),
            config.access_token(),
            api_version=config.shopify_api_version(),
            timeout=config.shopify_timeout_seconds(),
            transport=transport,
        )

    @property
    def url(self) -> str:
        return f"https://{self.domain}/admin/api/{self.api_version}/graphql.json"

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "X-Shopify-Access-Token": self.access_token,
        }

    async def graphql(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Run one query or mutation and return its `data` object.

        GraphQL-level errors raise UpstreamError with the first message.
        """
        if not self.domain or not self.access_token:
            raise UpstreamError("Shopify credentials not configured")
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                r = await client.post(self.url, headers=self._headers(), json={"query": query, "variables": variables or {}})
                r.raise_for_status()
                body = r.json()
        except (httpx.HTTPError, ValueError) as e:
            log_event("shopify", event="request_failed", error=str(e))
            raise UpstreamError(f"Shopify request failed: {e}")
        if not isinstance(body, dict):
            raise UpstreamError("Invalid response structure")
        errs = body.get("errors")
        if errs:
            first = errs[0] if isinstance(errs, list) else errs
            msg = first.get("message") if isinstance(first, dict) else str(first)
            log_event("shopify", event="graphql_errors", errors=errs)
            data = body.get("data")
            raise UpstreamError(msg or "Shopify GraphQL error", data=data if isinstance(data, dict) else None)
        return body.get("data") or {}


def get_shopify(request: Request) -> ShopifyClient:
    return request.app.state.shopify
