from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Mapping, Optional, Tuple

# --- Shared constants ---
WRAPPED_SOL_MINT = "So11111111111111111111111111111111111111112"
DEFAULT_TOKENS_PER_SOL = Decimal("1000")
DEFAULT_TOKEN_DECIMALS = 9
DEFAULT_PRICE_TIMEOUT_S = 5.0
DEFAULT_DISPLAY_MAX_STALENESS_S = 30.0

DEFAULT_JUPITER_PRICE_URL = "https://price.jup.ag/v4/price"
DEFAULT_COINGECKO_PRICE_URL = "https://api.coingecko.com/api/v3/simple/token_price/solana"
DEFAULT_SOLANA_RPC_URL = "https://api.mainnet-beta.solana.com"

KNOWN_PRICE_PROVIDERS: Tuple[str, ...] = ("jupiter", "coingecko")
KNOWN_STORES: Tuple[str, ...] = ("memory", "firestore")


def _parse_bool(v: str | None, default: bool = False) -> bool:
    if v is None:
        return default
    s = str(v).strip().lower()
    if not s:
        return default
    return s in {"1", "true", "t", "yes", "y", "on"}


def _get(env: Mapping[str, str], name: str) -> Optional[str]:
    v = env.get(name)
    if v is None:
        return None
    s = str(v).strip()
    return s or None


def _parse_bool_env(env: Mapping[str, str], name: str, default: bool = False) -> bool:
    return _parse_bool(_get(env, name), default=default)


def _parse_float_env(env: Mapping[str, str], name: str, default: float) -> float:
    raw = _get(env, name)
    if raw is None:
        return float(default)
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e


def _parse_int_env(env: Mapping[str, str], name: str, default: int) -> int:
    raw = _get(env, name)
    if raw is None:
        return int(default)
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e


def _parse_decimal_env(env: Mapping[str, str], name: str, default: Decimal) -> Decimal:
    raw = _get(env, name)
    if raw is None:
        return default
    try:
        return Decimal(raw)
    except InvalidOperation as e:
        raise ValueError(f"{name} must be a decimal, got {raw!r}") from e


def _parse_csv_env(env: Mapping[str, str], name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    raw = _get(env, name)
    if raw is None:
        return tuple(default)
    return tuple(p.strip().lower() for p in raw.split(",") if p.strip())


@dataclass(frozen=True)
class LedgerConfig:
    """
    Runtime configuration for the ledger core.

    All fields have working defaults so tests and local runs need no environment.
    """

    default_tokens_per_sol: Decimal = DEFAULT_TOKENS_PER_SOL
    default_token_decimals: int = DEFAULT_TOKEN_DECIMALS
    sol_mint: str = WRAPPED_SOL_MINT

    price_providers: Tuple[str, ...] = KNOWN_PRICE_PROVIDERS
    price_timeout_s: float = DEFAULT_PRICE_TIMEOUT_S
    display_max_staleness_s: float = DEFAULT_DISPLAY_MAX_STALENESS_S
    jupiter_price_url: str = DEFAULT_JUPITER_PRICE_URL
    coingecko_price_url: str = DEFAULT_COINGECKO_PRICE_URL
    solana_rpc_url: str = DEFAULT_SOLANA_RPC_URL

    credit_sell_proceeds: bool = True

    store: str = "memory"
    tenant_id: str = "default"
    firestore_project_id: Optional[str] = None

    def __post_init__(self) -> None:
        if self.default_tokens_per_sol <= 0:
            raise ValueError("default_tokens_per_sol must be > 0")
        if self.default_token_decimals < 0:
            raise ValueError("default_token_decimals must be >= 0")
        if self.price_timeout_s <= 0:
            raise ValueError("price_timeout_s must be > 0")
        if self.display_max_staleness_s < 0:
            raise ValueError("display_max_staleness_s must be >= 0")
        unknown = [p for p in self.price_providers if p not in KNOWN_PRICE_PROVIDERS]
        if unknown:
            raise ValueError(f"unknown price providers: {unknown} (known: {list(KNOWN_PRICE_PROVIDERS)})")
        if self.store not in KNOWN_STORES:
            raise ValueError(f"store must be one of {list(KNOWN_STORES)}, got {self.store!r}")
        if not str(self.tenant_id or "").strip():
            raise ValueError("tenant_id is required")

    def to_dict(self) -> dict:
        return {
            "default_tokens_per_sol": str(self.default_tokens_per_sol),
            "default_token_decimals": self.default_token_decimals,
            "sol_mint": self.sol_mint,
            "price_providers": list(self.price_providers),
            "price_timeout_s": self.price_timeout_s,
            "display_max_staleness_s": self.display_max_staleness_s,
            "jupiter_price_url": self.jupiter_price_url,
            "coingecko_price_url": self.coingecko_price_url,
            "solana_rpc_url": self.solana_rpc_url,
            "credit_sell_proceeds": self.credit_sell_proceeds,
            "store": self.store,
            "tenant_id": self.tenant_id,
        }


def load_ledger_config(env: Mapping[str, str] | None = None) -> LedgerConfig:
    """
    Build a `LedgerConfig` from environment variables (defaults for anything unset).
    """
    e: Mapping[str, str] = os.environ if env is None else env
    return LedgerConfig(
        default_tokens_per_sol=_parse_decimal_env(e, "LEDGER_DEFAULT_TOKENS_PER_SOL", DEFAULT_TOKENS_PER_SOL),
        default_token_decimals=_parse_int_env(e, "LEDGER_DEFAULT_TOKEN_DECIMALS", DEFAULT_TOKEN_DECIMALS),
        sol_mint=_get(e, "LEDGER_SOL_MINT") or WRAPPED_SOL_MINT,
        price_providers=_parse_csv_env(e, "PRICE_PROVIDERS", KNOWN_PRICE_PROVIDERS),
        price_timeout_s=_parse_float_env(e, "PRICE_PROVIDER_TIMEOUT_S", DEFAULT_PRICE_TIMEOUT_S),
        display_max_staleness_s=_parse_float_env(e, "PRICE_DISPLAY_MAX_STALENESS_S", DEFAULT_DISPLAY_MAX_STALENESS_S),
        jupiter_price_url=_get(e, "JUPITER_PRICE_URL") or DEFAULT_JUPITER_PRICE_URL,
        coingecko_price_url=_get(e, "COINGECKO_PRICE_URL") or DEFAULT_COINGECKO_PRICE_URL,
        solana_rpc_url=_get(e, "SOLANA_RPC_URL") or DEFAULT_SOLANA_RPC_URL,
        credit_sell_proceeds=_parse_bool_env(e, "LEDGER_CREDIT_SELL_PROCEEDS", default=True),
        store=(_get(e, "LEDGER_STORE") or "memory").lower(),
        tenant_id=_get(e, "LEDGER_TENANT_ID") or "default",
        firestore_project_id=_get(e, "FIREBASE_PROJECT_ID") or _get(e, "GOOGLE_CLOUD_PROJECT"),
    )
