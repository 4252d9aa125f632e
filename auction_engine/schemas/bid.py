from pydantic import BaseModel, Field
from datetime import datetime


class PlaceBidRequest(BaseModel):
    amount: float = Field(gt=0)


class BidResponse(BaseModel):
    id: int
    auction_id: int
    bidder_id: int
    amount: float
    is_winning: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class PlaceBidResponse(BaseModel):
    bid: BidResponse
    is_update: bool
    previous_amount: float | None
    current_bid: float
    bid_count: int
    minimum_next_bid: float


class BidStatusResponse(BaseModel):
    auction_id: int
    has_user_bid: bool
    user_bid: BidResponse | None
    is_winning: bool
    minimum_next_bid: float
    can_bid: bool
    auction_status: str
    current_highest_bid: float
