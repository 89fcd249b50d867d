from __future__ import annotations

"""
Price and metadata providers (the only code in the ledger that performs network I/O).

Every provider is capability-typed: `try_fetch(ref) -> Decimal | None`. A provider
never raises for "no price"; timeouts, HTTP errors, rate limits and malformed
payloads are all reported as None so the resolver can move on to the next one.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping, Optional, Protocol, runtime_checkable

import requests

from tokenledger.common.config import (
    DEFAULT_COINGECKO_PRICE_URL,
    DEFAULT_JUPITER_PRICE_URL,
    DEFAULT_PRICE_TIMEOUT_S,
    DEFAULT_SOLANA_RPC_URL,
)
from tokenledger.common.logging import log_event

logger = logging.getLogger(__name__)


def _positive_decimal(v: Any) -> Optional[Decimal]:
    if v is None or isinstance(v, bool):
        return None
    try:
        d = Decimal(str(v).strip())
    except Exception:
        return None
    if not d.is_finite() or d <= 0:
        return None
    return d


@runtime_checkable
class PriceProvider(Protocol):
    provider_id: str

    def try_fetch(self, token_ref: str) -> Optional[Decimal]: ...


@dataclass(frozen=True, slots=True)
class TokenMetadata:
    name: Optional[str]
    symbol: Optional[str]
    decimals: int


@runtime_checkable
class MetadataProvider(Protocol):
    def fetch_metadata(self, token_ref: str) -> Optional[TokenMetadata]: ...


class _HttpProvider:
    provider_id = "http"

    def __init__(self, *, timeout_s: float = DEFAULT_PRICE_TIMEOUT_S, session: requests.Session | None = None) -> None:
        if timeout_s <= 0:
            raise ValueError("timeout_s must be > 0")
        self._timeout_s = float(timeout_s)
        self._session = session

    def _http(self):
        return self._session if self._session is not None else requests

    def _get_json(self, url: str, *, params: Mapping[str, Any]) -> Any:
        r = self._http().get(url, params=dict(params), timeout=self._timeout_s)
        r.raise_for_status()
        return r.json()

    def _post_json(self, url: str, *, body: Mapping[str, Any]) -> Any:
        r = self._http().post(url, json=dict(body), timeout=self._timeout_s)
        r.raise_for_status()
        return r.json()

    def _failed(self, token_ref: str, e: BaseException) -> None:
        log_event(
            logger,
            "prices.provider_failed",
            severity="WARNING",
            provider=self.provider_id,
            token_ref=token_ref,
            error=f"{type(e).__name__}: {e}",
        )


class JupiterPriceProvider(_HttpProvider):
    """
    Jupiter price API.

    Response shape: {"data": {"<mint>": {"id": ..., "price": <number>}}}
    """

    provider_id = "jupiter"

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_JUPITER_PRICE_URL,
        timeout_s: float = DEFAULT_PRICE_TIMEOUT_S,
        session: requests.Session | None = None,
    ) -> None:
        super().__init__(timeout_s=timeout_s, session=session)
        self._base_url = str(base_url).rstrip("/")

    def try_fetch(self, token_ref: str) -> Optional[Decimal]:
        try:
            payload = self._get_json(self._base_url, params={"ids": token_ref})
        except Exception as e:  # noqa: BLE001
            self._failed(token_ref, e)
            return None
        data = payload.get("data") if isinstance(payload, Mapping) else None
        row = data.get(token_ref) if isinstance(data, Mapping) else None
        if not isinstance(row, Mapping):
            return None
        return _positive_decimal(row.get("price"))


class CoinGeckoPriceProvider(_HttpProvider):
    """
    CoinGecko token price by Solana contract address.

    Response shape: {"<address>": {"usd": <number>}} (address keys may be lower-cased).
    """

    provider_id = "coingecko"

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_COINGECKO_PRICE_URL,
        timeout_s: float = DEFAULT_PRICE_TIMEOUT_S,
        session: requests.Session | None = None,
    ) -> None:
        super().__init__(timeout_s=timeout_s, session=session)
        self._base_url = str(base_url).rstrip("/")

    def try_fetch(self, token_ref: str) -> Optional[Decimal]:
        try:
            payload = self._get_json(
                self._base_url,
                params={"contract_addresses": token_ref, "vs_currencies": "usd"},
            )
        except Exception as e:  # noqa: BLE001
            self._failed(token_ref, e)
            return None
        if not isinstance(payload, Mapping):
            return None
        row = payload.get(token_ref)
        if row is None:
            row = payload.get(token_ref.lower())
        if not isinstance(row, Mapping):
            return None
        return _positive_decimal(row.get("usd"))


class SolanaRpcMetadataProvider(_HttpProvider):
    """
    Token metadata via Solana JSON-RPC `getAccountInfo` (jsonParsed encoding).

    Only `decimals` is authoritative on-chain; name/symbol fall back to a short
    form of the mint address.
    """

    provider_id = "solana_rpc"

    def __init__(
        self,
        *,
        rpc_url: str = DEFAULT_SOLANA_RPC_URL,
        timeout_s: float = DEFAULT_PRICE_TIMEOUT_S,
        default_decimals: int = 9,
        session: requests.Session | None = None,
    ) -> None:
        super().__init__(timeout_s=timeout_s, session=session)
        self._rpc_url = str(rpc_url)
        self._default_decimals = int(default_decimals)

    def fetch_metadata(self, token_ref: str) -> Optional[TokenMetadata]:
        body = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "getAccountInfo",
            "params": [token_ref, {"encoding": "jsonParsed"}],
        }
        try:
            payload = self._post_json(self._rpc_url, body=body)
        except Exception as e:  # noqa: BLE001
            self._failed(token_ref, e)
            return None

        result = payload.get("result") if isinstance(payload, Mapping) else None
        value = result.get("value") if isinstance(result, Mapping) else None
        if not isinstance(value, Mapping):
            # Account does not exist (or the node returned nothing useful).
            return None

        info: Mapping[str, Any] = {}
        data = value.get("data")
        if isinstance(data, Mapping):
            parsed = data.get("parsed")
            if isinstance(parsed, Mapping) and isinstance(parsed.get("info"), Mapping):
                info = parsed["info"]

        decimals = info.get("decimals")
        if not isinstance(decimals, int) or isinstance(decimals, bool) or decimals < 0:
            decimals = self._default_decimals
        symbol = info.get("symbol") if isinstance(info.get("symbol"), str) else None
        return TokenMetadata(
            name=f"Token {token_ref[:8]}",
            symbol=symbol or token_ref[:6].upper(),
            decimals=decimals,
        )


__all__ = [
    "CoinGeckoPriceProvider",
    "JupiterPriceProvider",
    "MetadataProvider",
    "PriceProvider",
    "SolanaRpcMetadataProvider",
    "TokenMetadata",
]
