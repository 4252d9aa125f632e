from datetime import datetime

from pydantic import BaseModel


class ShippingAddress(BaseModel):
    line1: str
    line2: str | None = None
    city: str
    state: str | None = None
    postal_code: str
    country: str


class ShippingInfo(BaseModel):
    first_name: str
    last_name: str
    email: str | None = None
    phone: str | None = None
    address: ShippingAddress
    delivery_instructions: str | None = None


class PaymentConfirmation(BaseModel):
    """Callback body sent by the payment gateway once capture succeeded."""
    auction_id: int
    winner_id: int
    amount: float
    reference: str | None = None
    shipping_info: ShippingInfo | None = None


class PaymentConfirmationResponse(BaseModel):
    auction_id: int
    status: str
    already_confirmed: bool = False


class PaymentResponse(BaseModel):
    id: int
    amount: float
    reference: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class PaymentStatusResponse(BaseModel):
    auction_id: int
    has_paid: bool
    payment: PaymentResponse | None = None
