"""
FX provider over HTTP.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Optional

import httpx

from app.domain.models import FXRate


class HttpFXProvider:
    """GET {base}/rates?base=SEK&quote=USD&date=... -> {rate, rate_date, source}"""

    def __init__(
        self,
        base_url: str,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def get_rate(self, base_currency: str, quote_currency: str, as_of: date) -> Optional[FXRate]:
        async with httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout, transport=self._transport
        ) as client:
            response = await client.get(
                "/rates",
                params={"base": base_currency, "quote": quote_currency, "date": as_of.isoformat()},
            )
        if response.status_code == 404:
            return None
        response.raise_for_status()
        payload = response.json()
        if not payload or payload.get("rate") in (None, "", 0):
            return None
        return FXRate(
            base_currency=base_currency,
            quote_currency=quote_currency,
            rate=Decimal(str(payload["rate"])),
            rate_date=date.fromisoformat(payload.get("rate_date") or as_of.isoformat()),
            source=payload.get("source") or "FX",
        )
