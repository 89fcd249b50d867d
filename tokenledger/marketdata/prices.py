from __future__ import annotations

"""
USD price resolution with an ordered provider fallback chain and a per-token cache.

Contract:
- Providers are tried in order; the first positive price wins.
- All providers failing yields `price_usd=None` ("price unknown", never zero).
- The cache only serves callers that pass `max_staleness_s`. Order evaluation never
  does, so it always acts on the freshest available price.
- Quotes are stamped with the time the provider was asked, not when it answered.
  Successful resolutions are written through to the Token record (forward-only:
  a response to an older request than the stored `price_updated_at` is discarded).
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Sequence

from tokenledger.common.errors import PriceUnavailable
from tokenledger.common.logging import log_event
from tokenledger.ledger.models import utc_now
from tokenledger.marketdata.providers import PriceProvider

logger = logging.getLogger(__name__)

NO_SOURCE = "none"


@dataclass(frozen=True, slots=True)
class PriceQuote:
    token_ref: str
    price_usd: Optional[Decimal]
    source: str
    fetched_at: datetime
    cached: bool = False

    @property
    def ok(self) -> bool:
        return self.price_usd is not None


class PriceResolver:
    def __init__(
        self,
        providers: Sequence[PriceProvider],
        *,
        registry=None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._providers: List[PriceProvider] = list(providers)
        self._registry = registry
        self._clock = clock
        self._lock = threading.Lock()
        self._cache: Dict[str, PriceQuote] = {}

    @property
    def provider_ids(self) -> List[str]:
        return [str(getattr(p, "provider_id", type(p).__name__)) for p in self._providers]

    def cached(self, token_ref: str) -> Optional[PriceQuote]:
        with self._lock:
            return self._cache.get(str(token_ref).strip())

    def resolve(self, token_ref: str, *, max_staleness_s: float | None = None) -> PriceQuote:
        ref = str(token_ref or "").strip()
        if not ref:
            raise ValueError("token_ref is required")

        if max_staleness_s is not None:
            hit = self._fresh_cache_entry(ref, max_staleness_s=float(max_staleness_s))
            if hit is not None:
                return hit

        for provider in self._providers:
            pid = str(getattr(provider, "provider_id", type(provider).__name__))
            requested_at = self._clock()
            try:
                price = provider.try_fetch(ref)
            except Exception as e:  # noqa: BLE001
                # Providers should not raise, but a misbehaving one must not break the chain.
                log_event(
                    logger,
                    "prices.provider_failed",
                    severity="WARNING",
                    provider=pid,
                    token_ref=ref,
                    error=f"{type(e).__name__}: {e}",
                )
                continue
            if price is None or not isinstance(price, Decimal) or not price.is_finite() or price <= 0:
                continue

            quote = PriceQuote(token_ref=ref, price_usd=price, source=pid, fetched_at=requested_at)
            self._remember(quote)
            self._write_through(quote)
            log_event(logger, "prices.resolved", severity="DEBUG", token_ref=ref, provider=pid, price_usd=price)
            return quote

        log_event(logger, "prices.unavailable", severity="WARNING", token_ref=ref, providers=self.provider_ids)
        return PriceQuote(token_ref=ref, price_usd=None, source=NO_SOURCE, fetched_at=self._clock())

    def resolve_or_raise(self, token_ref: str, *, max_staleness_s: float | None = None) -> PriceQuote:
        quote = self.resolve(token_ref, max_staleness_s=max_staleness_s)
        if quote.price_usd is None:
            raise PriceUnavailable(
                f"no price available for {quote.token_ref}",
                details={"token_ref": quote.token_ref, "providers": ",".join(self.provider_ids)},
            )
        return quote

    def _fresh_cache_entry(self, ref: str, *, max_staleness_s: float) -> Optional[PriceQuote]:
        with self._lock:
            entry = self._cache.get(ref)
        if entry is None:
            return None
        if self._clock() - entry.fetched_at > timedelta(seconds=max(0.0, max_staleness_s)):
            return None
        return PriceQuote(
            token_ref=entry.token_ref,
            price_usd=entry.price_usd,
            source=entry.source,
            fetched_at=entry.fetched_at,
            cached=True,
        )

    def _remember(self, quote: PriceQuote) -> None:
        with self._lock:
            prev = self._cache.get(quote.token_ref)
            if prev is not None and quote.fetched_at < prev.fetched_at:
                return
            self._cache[quote.token_ref] = quote

    def _write_through(self, quote: PriceQuote) -> None:
        if self._registry is None or quote.price_usd is None:
            return
        token = self._registry.find_by_ref(quote.token_ref)
        if token is None:
            return
        self._registry.record_price(token.id, quote.price_usd, quote.fetched_at)
