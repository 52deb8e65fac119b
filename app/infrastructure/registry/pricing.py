"""
Pricing providers - HTTP source and a chain that tries providers in order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional

import httpx

from app.infrastructure.registry.types import PriceQuote, PricingProvider

logger = logging.getLogger(__name__)


class HttpPricingProvider:
    """GET {base}/prices/{isin}?date=YYYY-MM-DD -> {price, currency, price_date, source}"""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = (api_key or "").strip() or None
        self.timeout = timeout
        self._transport = transport

    async def get_price(self, isin: str, as_of: date) -> Optional[PriceQuote]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        async with httpx.AsyncClient(
            base_url=self.base_url, headers=headers, timeout=self.timeout, transport=self._transport
        ) as client:
            response = await client.get(f"/prices/{isin}", params={"date": as_of.isoformat()})
        if response.status_code == 404:
            return None
        response.raise_for_status()
        payload = response.json()
        if not payload or payload.get("price") is None:
            return None
        return PriceQuote(
            isin=isin,
            price=Decimal(str(payload["price"])),
            currency=payload["currency"],
            price_date=date.fromisoformat(payload.get("price_date") or as_of.isoformat()),
            source=payload.get("source") or "PRICING",
        )


@dataclass(frozen=True)
class NamedPricingProvider:
    name: str
    provider: PricingProvider


class ChainedPricingProvider:
    """Primary first, then fallbacks; a failing provider is skipped"""

    def __init__(self, providers: List[NamedPricingProvider]):
        self.providers = providers
        self.last_price_sources: Dict[str, str] = {}

    async def get_price(self, isin: str, as_of: date) -> Optional[PriceQuote]:
        for named in self.providers:
            try:
                quote = await named.provider.get_price(isin, as_of)
            except Exception as exc:
                logger.warning("PRICING_PROVIDER_FAILED | provider=%s | isin=%s | error=%s", named.name, isin, exc)
                continue
            if quote is not None and quote.price > 0:
                self.last_price_sources[isin] = named.name
                return quote
        return None
