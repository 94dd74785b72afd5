from decimal import Decimal

from pydantic import BaseModel, EmailStr, Field, field_serializer


class OrderItemRequest(BaseModel):
    product_id: int = Field(gt=0)
    quantity: int = Field(gt=0)
    combination_id: str | None = None


class OrderCreateRequest(BaseModel):
    items: list[OrderItemRequest] = Field(min_length=1)
    name: str = Field(min_length=1, max_length=255)
    email: EmailStr
    phone: str | None = Field(default=None, max_length=64)
    address: str | None = Field(default=None, max_length=512)

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "items": [
                        {"product_id": 1, "quantity": 2},
                        {"product_id": 3, "quantity": 1, "combination_id": "red-M"},
                    ],
                    "name": "Amira Ben Salah",
                    "email": "amira@example.com",
                    "phone": "+21620000000",
                }
            ]
        }
    }


class OrderItemResponse(BaseModel):
    product_id: int
    quantity: int
    price: Decimal
    combination_id: str | None = None

    model_config = {"from_attributes": True}

    @field_serializer("price")
    def serialize_price(self, value: Decimal) -> str:
        return format(value.normalize(), "f")


class OrderResponse(BaseModel):
    id: int
    total: Decimal
    payment_status: str
    status: str
    stock_consumed: bool
    items: list[OrderItemResponse]
    created_at: str

    @field_serializer("total")
    def serialize_total(self, value: Decimal) -> str:
        return format(value.normalize(), "f")
