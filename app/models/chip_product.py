from beanie import Document, Indexed


class ChipProduct(Document):
    """Chip pack sold through Stripe checkout."""
    product_id: Indexed(int, unique=True)
    name: str
    price_in_cents: int  # 15.00 -> 1500
    currency: str = "crc"
    stripe_price_id: str | None = None  # price_...; inline price data is used when absent
    chips: int
    description: str | None = None
    is_active: bool = True

    @property
    def has_stripe_price(self) -> bool:
        return bool(self.stripe_price_id) and self.stripe_price_id.startswith("price_")

    class Settings:
        name = "chip_products"
