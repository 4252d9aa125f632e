from pydantic import BaseModel


class AuctionSummaryResponse(BaseModel):
    active_selling: int
    active_bidding: int
    won: int
    lost: int
