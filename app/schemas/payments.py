from datetime import datetime

from pydantic import BaseModel, Field


class PaymentInitRequest(BaseModel):
    order_id: int = Field(gt=0)


class PaymentInitResponse(BaseModel):
    token: str
    payment_url: str


class PaymentVerifyResponse(BaseModel):
    status: str  # success | failed
    message: str


class PaymentCancelResponse(BaseModel):
    ok: bool
    message: str


class PaymentStatusMinimal(BaseModel):
    id: int
    payment_status: str
    status: str


class PaymentStatusFull(PaymentStatusMinimal):
    provider_payment_id: str | None = None
    payment_method: str | None = None
    paid_at: datetime | None = None
    canceled_at: datetime | None = None
    cancel_reason: str | None = None
    stock_consumed: bool
