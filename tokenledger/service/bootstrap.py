from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, List, Optional

from tokenledger.common.config import LedgerConfig, load_ledger_config
from tokenledger.custody.wallets import WalletCustody
from tokenledger.execution.limit_orders import OrderBook
from tokenledger.execution.locks import KeyedLocks
from tokenledger.ledger.models import utc_now
from tokenledger.ledger.positions import PositionLedger
from tokenledger.ledger.tokens import TokenRegistry
from tokenledger.marketdata.prices import PriceResolver
from tokenledger.marketdata.providers import (
    CoinGeckoPriceProvider,
    JupiterPriceProvider,
    MetadataProvider,
    PriceProvider,
    SolanaRpcMetadataProvider,
)
from tokenledger.marketdata.rates import ExchangeRateModel, RateModel
from tokenledger.persistence.store import InMemoryRecordStore, RecordStore
from tokenledger.service.facade import LedgerFacade

logger = logging.getLogger(__name__)


def build_price_providers(config: LedgerConfig) -> List[PriceProvider]:
    out: List[PriceProvider] = []
    for pid in config.price_providers:
        if pid == "jupiter":
            out.append(JupiterPriceProvider(base_url=config.jupiter_price_url, timeout_s=config.price_timeout_s))
        elif pid == "coingecko":
            out.append(CoinGeckoPriceProvider(base_url=config.coingecko_price_url, timeout_s=config.price_timeout_s))
    return out


def build_store(config: LedgerConfig) -> RecordStore:
    if config.store == "firestore":
        # Imported lazily so memory-only deployments never initialize firebase_admin.
        from tokenledger.persistence.firestore_store import FirestoreRecordStore

        return FirestoreRecordStore(tenant_id=config.tenant_id, project_id=config.firestore_project_id)
    return InMemoryRecordStore()


def build_ledger_facade(
    *,
    custody: WalletCustody,
    config: LedgerConfig | None = None,
    store: RecordStore | None = None,
    price_providers: Optional[List[PriceProvider]] = None,
    metadata_provider: MetadataProvider | None = None,
    rate_model: RateModel | None = None,
    clock: Callable[[], datetime] = utc_now,
) -> LedgerFacade:
    """
    Wire the ledger from config.

    Every collaborator can be overridden; tests pass fakes for providers and the
    rate model and leave the rest at their defaults.
    """
    cfg = config or load_ledger_config()
    st = store if store is not None else build_store(cfg)

    meta = metadata_provider
    if meta is None:
        meta = SolanaRpcMetadataProvider(
            rpc_url=cfg.solana_rpc_url,
            timeout_s=cfg.price_timeout_s,
            default_decimals=cfg.default_token_decimals,
        )
    registry = TokenRegistry(store=st, metadata_provider=meta, default_decimals=cfg.default_token_decimals, clock=clock)

    providers = build_price_providers(cfg) if price_providers is None else list(price_providers)
    resolver = PriceResolver(providers, registry=registry, clock=clock)

    rates = rate_model or ExchangeRateModel(
        resolver,
        sol_mint=cfg.sol_mint,
        default_tokens_per_sol=cfg.default_tokens_per_sol,
        max_staleness_s=cfg.display_max_staleness_s,
    )
    positions = PositionLedger(
        store=st,
        custody=custody,
        registry=registry,
        rate_model=rates,
        credit_sell_proceeds=cfg.credit_sell_proceeds,
        clock=clock,
    )
    orders = OrderBook(store=st, token_locks=KeyedLocks(name="token"), clock=clock)

    logger.info(
        "ledger.bootstrap store=%s tenant_id=%s providers=%s credit_sell_proceeds=%s",
        cfg.store,
        cfg.tenant_id,
        ",".join(resolver.provider_ids) or "-",
        cfg.credit_sell_proceeds,
    )
    return LedgerFacade(
        store=st,
        custody=custody,
        registry=registry,
        resolver=resolver,
        positions=positions,
        orders=orders,
        wallet_locks=KeyedLocks(name="wallet"),
        display_max_staleness_s=cfg.display_max_staleness_s,
        clock=clock,
    )
