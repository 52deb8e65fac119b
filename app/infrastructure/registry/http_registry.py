"""
HTTP Fund Registry client
Read-only access to funds, positions, cash and orders; NAV upsert.

Failures (connection errors, non-2xx other than 404) are raised as
httpx errors so a single calculation surfaces them to its caller.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx

from app.domain.models import Liability, LiabilityType, Receivable, ReceivableType
from app.infrastructure.registry.types import (
    ReferenceNAV,
    RegistryCashAccount,
    RegistryFund,
    RegistryHolding,
    RegistryOrder,
    RegistryPosition,
    RegistryShareClass,
)

logger = logging.getLogger(__name__)


def _dec(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    return Decimal(str(value))


def _date(value: Any) -> Optional[date]:
    if not value:
        return None
    return date.fromisoformat(str(value)[:10])


def _enum_or_other(enum_cls, value: Any):
    try:
        return enum_cls(value)
    except ValueError:
        return enum_cls.OTHER


class HttpFundRegistry:
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

    def _client(self) -> httpx.AsyncClient:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=self.timeout,
            transport=self._transport,
        )

    async def _get(self, path: str, params: Optional[dict] = None, allow_missing: bool = False) -> Any:
        async with self._client() as client:
            response = await client.get(path, params=params)
        if allow_missing and response.status_code == 404:
            return None
        response.raise_for_status()
        return response.json()

    async def _items(self, path: str, params: Optional[dict] = None) -> List[Dict[str, Any]]:
        payload = await self._get(path, params=params)
        if isinstance(payload, dict):
            return payload.get("data") or payload.get("items") or []
        return payload or []

    # ------------------------------------------------------------------
    # FUNDS
    # ------------------------------------------------------------------

    async def list_funds(self) -> List[RegistryFund]:
        return [self._parse_fund(item) for item in await self._items("/funds")]

    async def get_fund(self, fund_id: str) -> Optional[RegistryFund]:
        payload = await self._get(f"/funds/{fund_id}", allow_missing=True)
        if payload is None:
            return None
        if isinstance(payload, dict) and "data" in payload:
            payload = payload["data"]
        return self._parse_fund(payload)

    # ------------------------------------------------------------------
    # HOLDINGS
    # ------------------------------------------------------------------

    async def get_positions(self, fund_id: str, as_of: date) -> List[RegistryPosition]:
        items = await self._items(f"/funds/{fund_id}/positions", params={"date": as_of.isoformat()})
        return [
            RegistryPosition(
                instrument_id=str(p.get("instrument_id") or p.get("security_id") or p.get("isin")),
                isin=p.get("isin") or "",
                name=p.get("name") or "",
                security_type=p.get("security_type") or "OTHER",
                quantity=_dec(p.get("quantity")) or Decimal("0"),
                price=_dec(p.get("price")),
                price_currency=p.get("price_currency") or p.get("currency"),
                price_date=_date(p.get("price_date")),
                price_source=p.get("price_source") or "REGISTRY",
                market_value=_dec(p.get("market_value")) or Decimal("0"),
                market_value_fund_currency=_dec(p.get("market_value_fund_currency")),
                accrued_interest=_dec(p.get("accrued_interest")),
                accrued_dividend=_dec(p.get("accrued_dividend")),
            )
            for p in items
        ]

    async def get_cash_accounts(self, fund_id: str, as_of: date) -> List[RegistryCashAccount]:
        items = await self._items(f"/funds/{fund_id}/cash", params={"date": as_of.isoformat()})
        return [
            RegistryCashAccount(
                account_id=str(a["account_id"]),
                account_name=a.get("account_name") or "",
                currency=a["currency"],
                balance=_dec(a.get("balance")) or Decimal("0"),
                balance_fund_currency=_dec(a.get("balance_fund_currency")),
                value_date=_date(a.get("value_date")) or as_of,
            )
            for a in items
        ]

    async def get_receivables(self, fund_id: str, as_of: date) -> List[Receivable]:
        items = await self._items(f"/funds/{fund_id}/receivables", params={"date": as_of.isoformat()})
        return [
            Receivable(
                receivable_id=str(r["id"]),
                type=_enum_or_other(ReceivableType, r.get("type")),
                amount=_dec(r.get("amount")) or Decimal("0"),
                currency=r["currency"],
                description=r.get("description") or "",
                amount_fund_currency=_dec(r.get("amount_fund_currency")),
            )
            for r in items
        ]

    async def get_liabilities(self, fund_id: str, as_of: date) -> List[Liability]:
        items = await self._items(f"/funds/{fund_id}/payables", params={"date": as_of.isoformat()})
        return [
            Liability(
                liability_id=str(r["id"]),
                type=_enum_or_other(LiabilityType, r.get("type")),
                amount=_dec(r.get("amount")) or Decimal("0"),
                currency=r["currency"],
                description=r.get("description") or "",
                amount_fund_currency=_dec(r.get("amount_fund_currency")),
            )
            for r in items
        ]

    async def get_holdings(self, fund_id: str, share_class_id: str, as_of: date) -> List[RegistryHolding]:
        items = await self._items(
            f"/funds/{fund_id}/share-classes/{share_class_id}/holdings",
            params={"date": as_of.isoformat()},
        )
        return [
            RegistryHolding(
                shareholder_id=str(h.get("shareholder_id")),
                share_class_id=h.get("share_class_id") or share_class_id,
                shares=_dec(h.get("shares")) or Decimal("0"),
            )
            for h in items
        ]

    async def get_pending_orders(self, fund_id: str, as_of: date) -> List[RegistryOrder]:
        items = await self._items(
            f"/funds/{fund_id}/orders",
            params={"date": as_of.isoformat(), "status": "PENDING"},
        )
        return [
            RegistryOrder(
                order_id=str(o["order_id"]),
                shareholder_id=str(o.get("shareholder_id")),
                share_class_id=o.get("share_class_id") or "",
                order_type=o.get("order_type") or "",
                status=o.get("status") or "PENDING",
                shares=_dec(o.get("shares")),
                amount=_dec(o.get("amount")),
                value_date=_date(o.get("value_date")) or as_of,
            )
            for o in items
        ]

    # ------------------------------------------------------------------
    # NAV
    # ------------------------------------------------------------------

    async def get_reference_nav(self, fund_id: str, share_class_id: str, nav_date: date) -> Optional[ReferenceNAV]:
        payload = await self._get(
            f"/funds/{fund_id}/share-classes/{share_class_id}/nav",
            params={"date": nav_date.isoformat()},
            allow_missing=True,
        )
        if not payload:
            return None
        if "data" in payload:
            payload = payload["data"]
        calculated_at = payload.get("calculated_at")
        return ReferenceNAV(
            fund_id=fund_id,
            share_class_id=share_class_id,
            nav_date=_date(payload.get("nav_date")) or nav_date,
            nav_per_share=_dec(payload["nav_per_share"]),
            net_asset_value=_dec(payload.get("net_asset_value")) or Decimal("0"),
            source=payload.get("source") or "REGISTRY",
            calculated_at=datetime.fromisoformat(calculated_at) if calculated_at else None,
        )

    async def upsert_nav(
        self,
        fund_id: str,
        share_class_id: str,
        nav_date: date,
        nav_per_share: Decimal,
        net_asset_value: Decimal,
    ) -> None:
        body = {
            "nav_date": nav_date.isoformat(),
            "nav_per_share": str(nav_per_share),
            "net_asset_value": str(net_asset_value),
        }
        async with self._client() as client:
            response = await client.put(
                f"/funds/{fund_id}/share-classes/{share_class_id}/nav", json=body
            )
        response.raise_for_status()
        logger.info(
            "REGISTRY_NAV_UPSERT | fund=%s/%s | nav_date=%s | nav_per_share=%s",
            fund_id, share_class_id, nav_date, nav_per_share,
        )

    # ------------------------------------------------------------------
    # PARSING
    # ------------------------------------------------------------------

    @staticmethod
    def _parse_fund(data: Dict[str, Any]) -> RegistryFund:
        status = str(data.get("status") or "ACTIVE").upper()
        return RegistryFund(
            fund_id=str(data["fund_id"]),
            name=data.get("name") or str(data["fund_id"]),
            currency=data["currency"],
            active=data.get("active", status == "ACTIVE"),
            fund_type=data.get("fund_type") or "UCITS",
            share_classes=tuple(
                RegistryShareClass(
                    share_class_id=str(sc["share_class_id"]),
                    name=sc.get("name") or "",
                    currency=sc.get("currency"),
                    isin=sc.get("isin"),
                    active=sc.get("active", str(sc.get("status") or "ACTIVE").upper() == "ACTIVE"),
                    hedged=bool(sc.get("hedged", False)),
                    management_fee_rate=_dec(sc.get("management_fee")),
                    performance_fee_rate=_dec(sc.get("performance_fee")),
                    distribution_policy=sc.get("distribution_policy") or "ACC",
                )
                for sc in data.get("share_classes", [])
            ),
        )
