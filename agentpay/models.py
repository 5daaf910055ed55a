"""
AgentPay Core Data Models
Shared catalog models used by both the merchant API and the buyer
"""

from typing import List

from pydantic import BaseModel, Field, field_validator

from agentpay.payments.models import PriceDescriptor, to_base_units


class Product(BaseModel):
    """A purchasable product"""
    id: str
    name: str
    description: str
    features: List[str] = Field(default_factory=list)
    price: str = Field(description="Price in USDC, e.g. '4.99'")
    category: str = "general"

    @field_validator("price")
    @classmethod
    def validate_price(cls, v):
        if to_base_units(v) <= 0:
            raise ValueError("Price must be positive")
        return v

    @property
    def price_base_units(self) -> int:
        return to_base_units(self.price)

    def price_descriptor(self) -> PriceDescriptor:
        return PriceDescriptor(
            resource_id=self.id,
            amount=str(self.price_base_units),
            description=f"Purchase of {self.name}",
        )

    class Config:
        json_schema_extra = {
            "example": {
                "id": "tv-oled-55",
                "name": "Aurora 55\" OLED TV",
                "description": "4K OLED panel with Dolby Vision",
                "features": ["4K", "HDR10+", "120Hz"],
                "price": "4.99",
                "category": "tv"
            }
        }
