from datetime import datetime
from pydantic import BaseModel, Field, model_validator

from auction_engine.config import settings
from auction_engine.services.clock import ensure_utc


class AuctionCreateRequest(BaseModel):
    title: str = Field(min_length=3, max_length=300)
    description: str | None = None
    base_price: float = Field(gt=0)
    bid_increment: float = Field(default=settings.DEFAULT_BID_INCREMENT, gt=0)
    reserve_price: float | None = Field(default=None, ge=0)
    buy_now_price: float | None = Field(default=None, ge=0)
    start_time: datetime | None = None
    end_time: datetime
    publish: bool = True  # False keeps the auction as a DRAFT

    @model_validator(mode="after")
    def _check_window(self):
        if self.start_time and ensure_utc(self.start_time) >= ensure_utc(self.end_time):
            raise ValueError("start_time must be before end_time")
        return self


class AuctionResponse(BaseModel):
    id: int
    title: str
    description: str | None
    seller_id: int
    base_price: float
    bid_increment: float
    reserve_price: float | None
    buy_now_price: float | None
    current_bid: float
    bid_count: int
    minimum_next_bid: float
    start_time: datetime
    end_time: datetime
    status: str
    winner_id: int | None

    model_config = {"from_attributes": True}
