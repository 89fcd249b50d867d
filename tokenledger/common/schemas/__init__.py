"""
Validated request shapes for ledger operations.
"""

from .models import (  # noqa: F401
    BuyRequest,
    LimitOrderRequest,
    SellRequest,
    SettingsPatch,
    parse_request,
)
