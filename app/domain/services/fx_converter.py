"""
FX conversion over the rates carried by a snapshot.

Lookup order: identity, direct, inverse, then a two-hop cross via USD or EUR.
"""

from decimal import Decimal
from typing import Dict, Iterable, Optional, Tuple

from app.domain.models import FXRate

CROSS_CURRENCIES = ("USD", "EUR")


class FXRateTable:
    """Resolves conversion rates from a fixed set of FXRate quotes"""

    def __init__(self, rates: Iterable[FXRate] = ()):
        self._rates: Dict[Tuple[str, str], Decimal] = {}
        for rate in rates:
            if rate.rate is None or rate.rate <= 0:
                continue
            pair = (rate.base_currency.upper(), rate.quote_currency.upper())
            # First quote for a pair wins
            self._rates.setdefault(pair, rate.rate)

    def _direct_or_inverse(self, base: str, quote: str) -> Optional[Decimal]:
        direct = self._rates.get((base, quote))
        if direct is not None:
            return direct
        inverse = self._rates.get((quote, base))
        if inverse is not None:
            return Decimal("1") / inverse
        return None

    def rate(self, from_currency: str, to_currency: str) -> Optional[Decimal]:
        """Units of to_currency per unit of from_currency, or None."""
        base = from_currency.upper()
        quote = to_currency.upper()
        if base == quote:
            return Decimal("1")

        found = self._direct_or_inverse(base, quote)
        if found is not None:
            return found

        for via in CROSS_CURRENCIES:
            if via in (base, quote):
                continue
            first = self._direct_or_inverse(base, via)
            second = self._direct_or_inverse(via, quote)
            if first is not None and second is not None:
                return first * second
        return None

    def convert(self, amount: Decimal, from_currency: str, to_currency: str) -> Optional[Decimal]:
        rate = self.rate(from_currency, to_currency)
        if rate is None:
            return None
        return amount * rate

    def __contains__(self, pair: Tuple[str, str]) -> bool:
        return self.rate(*pair) is not None

    def __len__(self) -> int:
        return len(self._rates)
