"""Record types returned by the venue clients."""

import json
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, FrozenSet, Mapping, Optional


def to_decimal(value: Any) -> Optional[Decimal]:
    """Convert a venue numeric string to Decimal, None when absent or malformed."""
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


@dataclass
class Ticker:
    """Latest ticker values for one market symbol."""
    symbol: str
    price: Optional[Decimal] = None
    bid: Optional[Decimal] = None
    ask: Optional[Decimal] = None
    volume: Optional[Decimal] = None
    timestamp: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_message(cls, message: Mapping[str, Any]) -> "Ticker":
        """Map a websocket ``ticker`` message."""
        return cls(
            symbol=str(message['product_id']).upper(),
            price=to_decimal(message.get('price')),
            bid=to_decimal(message.get('best_bid')),
            ask=to_decimal(message.get('best_ask')),
            volume=to_decimal(message.get('volume_24h')),
            timestamp=message.get('time'),
            raw=dict(message),
        )


@dataclass
class MarketInfo:
    """Market metadata from the products endpoint."""
    symbol: str
    base_currency: str = ""
    quote_currency: str = ""
    is_active: Optional[bool] = None
    min_trade_size: Optional[Decimal] = None
    max_trade_size: Optional[Decimal] = None
    price_step_size: Optional[Decimal] = None
    quantity_step_size: Optional[Decimal] = None

    @classmethod
    def from_product(cls, product: Mapping[str, Any]) -> "MarketInfo":
        status = product.get('status')
        return cls(
            symbol=str(product['id']).upper(),
            base_currency=str(product.get('base_currency', '')).upper(),
            quote_currency=str(product.get('quote_currency', '')).upper(),
            is_active=None if status is None else str(status).lower() == 'online',
            min_trade_size=to_decimal(product.get('base_min_size')),
            max_trade_size=to_decimal(product.get('base_max_size')),
            price_step_size=to_decimal(product.get('quote_increment')),
            quantity_step_size=to_decimal(product.get('base_increment')),
        )


@dataclass
class Currency:
    """Currency reference data."""
    code: str
    full_name: str = ""
    deposit_enabled: bool = True
    withdrawal_enabled: bool = True


@dataclass
class GatewayResponse:
    """Raw HTTP response from the venue."""
    status: int
    headers: Dict[str, str]
    text: str

    def json(self) -> Any:
        if not self.text:
            return None
        return json.loads(self.text)


@dataclass
class AggregationResult:
    """Outcome of one ticker snapshot run."""
    values: Dict[str, Ticker]
    complete: bool
    requested: FrozenSet[str] = frozenset()

    @property
    def missing(self) -> FrozenSet[str]:
        """Requested symbols that never arrived before the deadline."""
        return frozenset(self.requested - self.values.keys())
