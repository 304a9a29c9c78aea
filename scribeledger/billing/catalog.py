"""
Purchasable credit packs.

Prices are fixed per pack, not per credit; larger packs are discounted:
- 50 credits  ($5.00)  - $0.100/credit
- 175 credits ($15.00) - $0.086/credit
- 400 credits ($30.00) - $0.075/credit
- 750 credits ($50.00) - $0.067/credit
"""

from types import MappingProxyType

from scribeledger.errors import ValidationError

CREDIT_CATALOG: MappingProxyType[int, int] = MappingProxyType(
    {
        50: 500,
        175: 1500,
        400: 3000,
        750: 5000,
    }
)


def valid_credit_amounts() -> list[int]:
    return sorted(CREDIT_CATALOG)


def price_for_credits(credits: int) -> int:
    """
    Price in cents for a credit pack.

    Raises:
        ValidationError: If ``credits`` is not a catalog pack size
    """
    # bool is an int subclass; True must not resolve to a pack
    if isinstance(credits, bool) or credits not in CREDIT_CATALOG:
        choices = ", ".join(str(amount) for amount in valid_credit_amounts())
        raise ValidationError(f"Invalid credit amount. Choose from: {choices}")
    return CREDIT_CATALOG[credits]
