from __future__ import annotations

from decimal import Decimal

import pytest

from tokenledger.common import errors
from tokenledger.common.schemas import BuyRequest, parse_request


def test_every_error_has_a_distinct_stable_kind() -> None:
    kinds = {
        errors.InvalidRequest: "invalid_request",
        errors.WalletNotFound: "wallet_not_found",
        errors.InsufficientBalance: "insufficient_balance",
        errors.InsufficientQuantity: "insufficient_quantity",
        errors.HoldingNotFound: "holding_not_found",
        errors.OrderNotFound: "order_not_found",
        errors.PriceUnavailable: "price_unavailable",
        errors.PersistenceFailure: "persistence_failure",
    }
    for cls, kind in kinds.items():
        e = cls("boom")
        assert isinstance(e, errors.LedgerError)
        assert e.kind == kind
    assert len(set(kinds.values())) == len(kinds)


def test_to_dict_stringifies_details() -> None:
    e = errors.InsufficientBalance("short", details={"balance_sol": Decimal("0.5"), "wallet_id": "w1"})
    assert e.to_dict() == {
        "error": "insufficient_balance",
        "message": "short",
        "details": {"balance_sol": "0.5", "wallet_id": "w1"},
    }
    assert errors.OrderNotFound("gone").to_dict() == {"error": "order_not_found", "message": "gone"}


def test_parse_request_maps_validation_errors() -> None:
    with pytest.raises(errors.InvalidRequest) as ei:
        parse_request(BuyRequest, wallet_id="w1", contract_ref="mint", amount_sol="0")
    assert "amount_sol" in ei.value.message


def test_parse_request_keeps_float_inputs_exact() -> None:
    req = parse_request(BuyRequest, wallet_id=" w1 ", contract_ref="mint", amount_sol=0.1)
    assert req.wallet_id == "w1"
    assert req.amount_sol == Decimal("0.1")
