from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Protocol, runtime_checkable

from tokenledger.common.config import DEFAULT_DISPLAY_MAX_STALENESS_S, DEFAULT_TOKENS_PER_SOL, WRAPPED_SOL_MINT
from tokenledger.marketdata.prices import PriceResolver

logger = logging.getLogger(__name__)

SOURCE_MARKET = "market"
SOURCE_DEFAULT_RATE = "default_rate"
SOURCE_FIXED = "fixed"


@dataclass(frozen=True, slots=True)
class BuyQuote:
    """
    Conversion of a SOL amount into a token quantity.

    Invariant: `price_per_token_sol == amount_sol / token_quantity` (exact in Decimal).
    """

    amount_sol: Decimal
    token_quantity: Decimal
    price_per_token_sol: Decimal
    value_usd: Optional[Decimal]
    source: str


@runtime_checkable
class RateModel(Protocol):
    def quote_buy(self, token_ref: str, amount_sol: Decimal) -> BuyQuote: ...


def quote_from_quantity(
    *, amount_sol: Decimal, token_quantity: Decimal, value_usd: Optional[Decimal], source: str
) -> BuyQuote:
    if amount_sol <= 0:
        raise ValueError("amount_sol must be > 0")
    if token_quantity <= 0:
        raise ValueError("token_quantity must be > 0")
    return BuyQuote(
        amount_sol=amount_sol,
        token_quantity=token_quantity,
        price_per_token_sol=amount_sol / token_quantity,
        value_usd=value_usd,
        source=source,
    )


class FixedRateModel:
    """Constant SOL price per token (paper trading, simulations)."""

    def __init__(self, price_per_token_sol: Decimal, *, sol_usd: Optional[Decimal] = None) -> None:
        if price_per_token_sol <= 0:
            raise ValueError("price_per_token_sol must be > 0")
        self.price_per_token_sol = price_per_token_sol
        self.sol_usd = sol_usd

    def quote_buy(self, token_ref: str, amount_sol: Decimal) -> BuyQuote:  # noqa: ARG002
        return quote_from_quantity(
            amount_sol=amount_sol,
            token_quantity=amount_sol / self.price_per_token_sol,
            value_usd=(amount_sol * self.sol_usd) if self.sol_usd is not None else None,
            source=SOURCE_FIXED,
        )


class ExchangeRateModel:
    """
    Market conversion through USD:

      price_per_token_sol = token_usd / sol_usd
      token_quantity      = amount_sol / price_per_token_sol

    When either USD price is unknown, falls back to `default_tokens_per_sol`.
    Display-grade staleness is acceptable here; the buy itself is priced at cost.
    """

    def __init__(
        self,
        resolver: PriceResolver,
        *,
        sol_mint: str = WRAPPED_SOL_MINT,
        default_tokens_per_sol: Decimal = DEFAULT_TOKENS_PER_SOL,
        max_staleness_s: float = DEFAULT_DISPLAY_MAX_STALENESS_S,
    ) -> None:
        if default_tokens_per_sol <= 0:
            raise ValueError("default_tokens_per_sol must be > 0")
        self._resolver = resolver
        self._sol_mint = sol_mint
        self._default_tokens_per_sol = default_tokens_per_sol
        self._max_staleness_s = float(max_staleness_s)

    def quote_buy(self, token_ref: str, amount_sol: Decimal) -> BuyQuote:
        sol_usd = self._resolver.resolve(self._sol_mint, max_staleness_s=self._max_staleness_s).price_usd
        token_usd = self._resolver.resolve(token_ref, max_staleness_s=self._max_staleness_s).price_usd
        value_usd = (amount_sol * sol_usd) if sol_usd is not None else None

        if sol_usd is not None and token_usd is not None:
            return quote_from_quantity(
                amount_sol=amount_sol,
                token_quantity=amount_sol / (token_usd / sol_usd),
                value_usd=value_usd,
                source=SOURCE_MARKET,
            )

        logger.info(
            "rates.default_rate token_ref=%s sol_usd_known=%s token_usd_known=%s",
            token_ref,
            sol_usd is not None,
            token_usd is not None,
        )
        return quote_from_quantity(
            amount_sol=amount_sol,
            token_quantity=amount_sol * self._default_tokens_per_sol,
            value_usd=value_usd,
            source=SOURCE_DEFAULT_RATE,
        )
