"""
Price tables and product catalogs for the credit ledger.

Chat prices are in USD per 1M tokens, image prices in USD per image. Both the
pre-authorization estimate and the final settlement read from the same
PriceBook, handed to route handlers through the get_price_book dependency.
"""

import math
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Optional, Tuple, Union

# Format: model -> (input_price_per_1M, output_price_per_1M)
CHAT_PRICING = {
    "Claude Sonnet 4.5": (Decimal("3.00"), Decimal("15.00")),
    "Claude Haiku 4.5": (Decimal("0.80"), Decimal("4.00")),
    "Claude Opus 4.1": (Decimal("15.00"), Decimal("75.00")),
}
DEFAULT_CHAT_MODEL = "Claude Haiku 4.5"
CHAT_MARKUP_MULTIPLIER = Decimal("3")

# Format: model -> quality -> price per image
IMAGE_PRICING = {
    "Ideogram": {
        "TURBO": Decimal("0.03"),
        "BALANCED": Decimal("0.06"),
        "QUALITY": Decimal("0.09"),
    },
    "Flux": {
        "flux-1": Decimal("0.025"),
        "flux-1.1-pro": Decimal("0.04"),
        "flux-1.1-pro-ultra": Decimal("0.06"),
    },
}
DEFAULT_IMAGE_MODEL = "Ideogram"
DEFAULT_IMAGE_PRICE = Decimal("0.06")

CHARS_PER_TOKEN = 4


@dataclass(frozen=True)
class Product:
    """What a ThriveCart product grants when its charge succeeds."""
    product_id: int
    credits: Decimal
    tier: Optional[str] = None


SUBSCRIPTION_PRODUCTS = {
    7: Product(7, Decimal("10000"), "tier1"),
    8: Product(8, Decimal("40000"), "tier2"),
}

TOPUP_PRODUCTS = {
    9: Product(9, Decimal("10")),
    10: Product(10, Decimal("25")),
    11: Product(11, Decimal("50")),
    12: Product(12, Decimal("100")),
}


def estimate_tokens(text: Optional[str]) -> int:
    """Approximate token count: one token per four characters, rounded up."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def _normalize_product_id(product_id: Union[str, int, None]) -> Optional[int]:
    if product_id is None:
        return None
    raw = str(product_id).strip()
    if raw.startswith("product_"):
        raw = raw[len("product_"):]
    try:
        return int(raw)
    except ValueError:
        return None


@dataclass
class PriceBook:
    chat_pricing: Dict[str, Tuple[Decimal, Decimal]] = field(default_factory=lambda: dict(CHAT_PRICING))
    default_chat_model: str = DEFAULT_CHAT_MODEL
    chat_markup: Decimal = CHAT_MARKUP_MULTIPLIER
    image_pricing: Dict[str, Dict[str, Decimal]] = field(default_factory=lambda: {k: dict(v) for k, v in IMAGE_PRICING.items()})
    default_image_price: Decimal = DEFAULT_IMAGE_PRICE
    subscription_products: Dict[int, Product] = field(default_factory=lambda: dict(SUBSCRIPTION_PRODUCTS))
    topup_products: Dict[int, Product] = field(default_factory=lambda: dict(TOPUP_PRODUCTS))

    def chat_prices(self, model: Optional[str]) -> Tuple[Decimal, Decimal]:
        if model and model in self.chat_pricing:
            return self.chat_pricing[model]
        return self.chat_pricing[self.default_chat_model]

    def chat_cost(self, model: Optional[str], input_tokens: int, output_tokens: int) -> Decimal:
        """Cost of one chat turn, markup included."""
        input_price, output_price = self.chat_prices(model)
        million = Decimal(1_000_000)
        cost = (Decimal(input_tokens) / million) * input_price + (Decimal(output_tokens) / million) * output_price
        return cost * self.chat_markup

    def image_unit_price(self, model: Optional[str], quality: Optional[str]) -> Decimal:
        return self.image_pricing.get(model or DEFAULT_IMAGE_MODEL, {}).get(quality or "", self.default_image_price)

    def image_cost(self, model: Optional[str], quality: Optional[str], num_images: int) -> Decimal:
        return self.image_unit_price(model, quality) * num_images

    def subscription_product(self, product_id: Union[str, int, None]) -> Optional[Product]:
        normalized = _normalize_product_id(product_id)
        return self.subscription_products.get(normalized) if normalized is not None else None

    def topup_product(self, product_id: Union[str, int, None]) -> Optional[Product]:
        normalized = _normalize_product_id(product_id)
        return self.topup_products.get(normalized) if normalized is not None else None


_price_book = PriceBook()


def get_price_book() -> PriceBook:
    return _price_book
