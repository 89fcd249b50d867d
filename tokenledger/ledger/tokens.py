from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Callable, List, Optional

from tokenledger.common.config import DEFAULT_TOKEN_DECIMALS
from tokenledger.common.logging import log_event
from tokenledger.ledger.models import TOKENS, Token, utc_now
from tokenledger.marketdata.providers import MetadataProvider
from tokenledger.persistence.store import RecordStore

logger = logging.getLogger(__name__)


class TokenRegistry:
    """
    Owner of Token records.

    - Tokens are created lazily on first reference; `contract_ref` is unique.
    - `record_price` is the only writer of `last_price_usd` and never moves
      `price_updated_at` backwards.
    """

    def __init__(
        self,
        *,
        store: RecordStore,
        metadata_provider: MetadataProvider | None = None,
        default_decimals: int = DEFAULT_TOKEN_DECIMALS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._metadata = metadata_provider
        self._default_decimals = int(default_decimals)
        self._clock = clock
        self._lock = threading.Lock()

    def get(self, token_id: str) -> Optional[Token]:
        rec = self._store.get(TOKENS, str(token_id))
        return Token.from_record(rec) if rec else None

    def find_by_ref(self, contract_ref: str) -> Optional[Token]:
        ref = _normalize_ref(contract_ref)
        rows = self._store.query(TOKENS, contract_ref=ref)
        if not rows:
            return None
        # Oldest wins if a backend ever returns duplicates.
        rows.sort(key=lambda r: str(r.get("created_at") or ""))
        return Token.from_record(rows[0])

    def all(self) -> List[Token]:
        return [Token.from_record(r) for r in self._store.query(TOKENS)]

    def ensure(self, contract_ref: str) -> Token:
        ref = _normalize_ref(contract_ref)
        existing = self.find_by_ref(ref)
        if existing is not None:
            return existing

        # Metadata lookup is network I/O; keep it outside the creation lock.
        meta = None
        if self._metadata is not None:
            try:
                meta = self._metadata.fetch_metadata(ref)
            except Exception as e:  # noqa: BLE001
                logger.warning("tokens.metadata_failed token_ref=%s error=%s", ref, f"{type(e).__name__}: {e}")
                meta = None

        with self._lock:
            existing = self.find_by_ref(ref)
            if existing is not None:
                return existing
            token = Token(
                id=uuid.uuid4().hex,
                contract_ref=ref,
                decimals=meta.decimals if meta is not None else self._default_decimals,
                name=meta.name if meta is not None else None,
                symbol=meta.symbol if meta is not None else None,
                created_at=self._clock(),
            )
            self._store.put(TOKENS, token.id, token.to_record())
        log_event(logger, "tokens.created", token_id=token.id, token_ref=ref, decimals=token.decimals)
        return token

    def record_price(self, token_id: str, price_usd: Decimal, fetched_at: datetime) -> bool:
        """
        Persist a resolved price. Returns False (and writes nothing) when the
        response is older than what is already stored.
        """
        with self._lock:
            token = self.get(token_id)
            if token is None:
                return False
            if token.price_updated_at is not None and fetched_at < token.price_updated_at:
                log_event(
                    logger,
                    "prices.stale_discarded",
                    severity="DEBUG",
                    token_id=token_id,
                    fetched_at=fetched_at.isoformat(),
                    price_updated_at=token.price_updated_at.isoformat(),
                )
                return False
            updated = token.with_price(price_usd, fetched_at)
            self._store.put(TOKENS, updated.id, updated.to_record())
            return True


def _normalize_ref(contract_ref: str) -> str:
    # Solana mint addresses are base58 and case-sensitive; only trim.
    ref = str(contract_ref or "").strip()
    if not ref:
        raise ValueError("contract_ref is required")
    return ref
