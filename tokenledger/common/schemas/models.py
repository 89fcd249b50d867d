from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from tokenledger.common.errors import InvalidRequest
from tokenledger.ledger.models import Settings, to_decimal

T = TypeVar("T", bound=BaseModel)


def _decimal_or_none(v: Any) -> Any:
    # Route floats through str() so 0.1 stays 0.1 (no binary artifacts).
    if v is None or isinstance(v, Decimal):
        return v
    try:
        return to_decimal(v)
    except TypeError as e:
        raise ValueError(str(e)) from e


class _Request(BaseModel):
    """
    Shared request config.

    Notes:
    - `extra=forbid`: a misspelled field is an error, not a silently ignored input.
    - strings are stripped so " " never passes as an id.
    """

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True, frozen=True)


class BuyRequest(_Request):
    wallet_id: str = Field(min_length=1)
    contract_ref: str = Field(min_length=1)
    amount_sol: Decimal = Field(gt=0)
    take_profit_pct: Optional[Decimal] = Field(default=None, ge=0)
    stop_loss_pct: Optional[Decimal] = Field(default=None, ge=0, le=100)

    @field_validator("amount_sol", "take_profit_pct", "stop_loss_pct", mode="before")
    @classmethod
    def _decimals(cls, v: Any) -> Any:
        return _decimal_or_none(v)


class SellRequest(_Request):
    wallet_id: str = Field(min_length=1)
    holding_id: str = Field(min_length=1)
    quantity: Decimal = Field(gt=0)

    @field_validator("quantity", mode="before")
    @classmethod
    def _decimals(cls, v: Any) -> Any:
        return _decimal_or_none(v)


class LimitOrderRequest(_Request):
    """Buy-side limit order: spend `amount_sol` once price >= `target_price_usd`."""

    wallet_id: str = Field(min_length=1)
    contract_ref: str = Field(min_length=1)
    target_price_usd: Decimal = Field(gt=0)
    amount_sol: Decimal = Field(gt=0)
    auto_execute: bool

    @field_validator("target_price_usd", "amount_sol", mode="before")
    @classmethod
    def _decimals(cls, v: Any) -> Any:
        return _decimal_or_none(v)


class SettingsPatch(_Request):
    """
    Partial settings update: only supplied (non-None) fields change.

    Default-on-create: when a wallet has no stored settings yet, omitted fields take
    their defaults (slippage 0.5, MEV protection on, popup alerts).
    """

    slippage_pct: Optional[Decimal] = Field(default=None, ge=0, le=100)
    mev_protection: Optional[bool] = None
    alert_mode: Optional[Literal["popup", "silent"]] = None

    @field_validator("slippage_pct", mode="before")
    @classmethod
    def _decimals(cls, v: Any) -> Any:
        return _decimal_or_none(v)

    def is_empty(self) -> bool:
        return self.slippage_pct is None and self.mev_protection is None and self.alert_mode is None

    def apply_to(self, current: Settings, *, now: datetime) -> Settings:
        return Settings(
            wallet_id=current.wallet_id,
            slippage_pct=self.slippage_pct if self.slippage_pct is not None else current.slippage_pct,
            mev_protection=self.mev_protection if self.mev_protection is not None else current.mev_protection,
            alert_mode=self.alert_mode if self.alert_mode is not None else current.alert_mode,
            created_at=current.created_at or now,
            updated_at=now,
        )


def parse_request(model: Type[T], **data: Any) -> T:
    """
    Validate inputs into `model`, mapping pydantic errors to `InvalidRequest`.
    """
    try:
        return model.model_validate(data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ())) or 'request'}: {err.get('msg')}" for err in e.errors()
        )
        raise InvalidRequest(f"invalid {model.__name__}: {problems}") from e
