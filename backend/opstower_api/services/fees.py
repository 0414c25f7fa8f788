"""Gateway fee estimates."""

from decimal import Decimal, ROUND_HALF_UP

from opstower_shared.models import PaymentFees, Provider

CENTAVO = Decimal("0.01")

# (percentage, fixed fee in PHP)
FEE_TABLE: dict[Provider, tuple[Decimal, Decimal]] = {
    Provider.MAYA: (Decimal("2.5"), Decimal("15")),
    Provider.GCASH: (Decimal("3.5"), Decimal("10")),
    Provider.CASH: (Decimal("0"), Decimal("0")),
}


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENTAVO, rounding=ROUND_HALF_UP)


def calculate_fees(amount: Decimal, provider: Provider) -> PaymentFees:
    percentage, fixed = FEE_TABLE.get(provider, (Decimal("0"), Decimal("0")))
    provider_fee = amount * percentage / 100 + fixed
    platform_fee = Decimal("0")
    return PaymentFees(
        provider_fee=to_money(provider_fee),
        platform_fee=to_money(platform_fee),
        total_fee=to_money(provider_fee + platform_fee),
        fee_percentage=percentage,
    )
