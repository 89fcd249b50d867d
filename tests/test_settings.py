from __future__ import annotations

from decimal import Decimal

import pytest

from tokenledger.common.errors import InvalidRequest
from tokenledger.common.schemas import SettingsPatch, parse_request


def test_unsaved_settings_read_as_defaults(facade) -> None:
    s = facade.get_settings("w1")
    assert s.is_default
    assert s.slippage_pct == Decimal("0.5")
    assert s.mev_protection is True
    assert s.alert_mode == "popup"


def test_first_update_fills_omitted_fields_with_defaults(facade, clock) -> None:
    s = facade.update_settings("w1", slippage_pct="1.25")
    assert s.slippage_pct == Decimal("1.25")
    assert s.mev_protection is True
    assert s.alert_mode == "popup"
    assert s.created_at == clock.now

    stored = facade.get_settings("w1")
    assert not stored.is_default
    assert stored.slippage_pct == Decimal("1.25")


def test_later_updates_only_touch_supplied_fields(facade, clock) -> None:
    facade.update_settings("w1", slippage_pct="2")
    created = facade.get_settings("w1").created_at

    clock.advance(30)
    s = facade.update_settings("w1", mev_protection=False, alert_mode="silent")
    assert s.slippage_pct == Decimal("2")
    assert s.mev_protection is False
    assert s.alert_mode == "silent"
    assert s.created_at == created
    assert s.updated_at == clock.now

    assert facade.get_settings("w2").is_default


@pytest.mark.parametrize(
    "patch",
    [
        {"slippage_pct": "101"},
        {"slippage_pct": "-0.1"},
        {"alert_mode": "email"},
        {"theme": "dark"},
    ],
)
def test_invalid_patches_are_rejected(facade, patch) -> None:
    with pytest.raises(InvalidRequest):
        facade.update_settings("w1", **patch)
    assert facade.get_settings("w1").is_default


def test_empty_patch() -> None:
    assert parse_request(SettingsPatch).is_empty()
    assert not parse_request(SettingsPatch, mev_protection=False).is_empty()
