from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from auction_engine.api.deps import get_runtime
from auction_engine.auth import get_current_user_id
from auction_engine.db.models import Auction
from auction_engine.schemas.auction import AuctionCreateRequest, AuctionResponse
from auction_engine.schemas.bid import PlaceBidRequest, PlaceBidResponse, BidResponse, BidStatusResponse
from auction_engine.services.ledger import minimum_next_bid
from auction_engine.services.runtime import AuctionRuntime

router = APIRouter(prefix="/api/v1/auctions", tags=["auctions"])


def _auction_response(auction: Auction) -> AuctionResponse:
    return AuctionResponse(
        id=auction.id,
        title=auction.title,
        description=auction.description,
        seller_id=auction.seller_id,
        base_price=auction.base_price,
        bid_increment=auction.bid_increment,
        reserve_price=auction.reserve_price,
        buy_now_price=auction.buy_now_price,
        current_bid=auction.current_bid,
        bid_count=auction.bid_count,
        minimum_next_bid=minimum_next_bid(auction),
        start_time=auction.start_time,
        end_time=auction.end_time,
        status=auction.status,
        winner_id=auction.winner_id,
    )


@router.post("", response_model=AuctionResponse, status_code=201)
async def create_auction(
    request: AuctionCreateRequest,
    user_id: int = Depends(get_current_user_id),
    runtime: AuctionRuntime = Depends(get_runtime),
):
    auction = await runtime.auctions.create(user_id, request)
    return _auction_response(auction)


@router.get("/{auction_id}", response_model=AuctionResponse)
async def get_auction(auction_id: int, runtime: AuctionRuntime = Depends(get_runtime)):
    return _auction_response(await runtime.auctions.get(auction_id))


@router.post("/{auction_id}/publish", response_model=AuctionResponse)
async def publish_auction(
    auction_id: int,
    user_id: int = Depends(get_current_user_id),
    runtime: AuctionRuntime = Depends(get_runtime),
):
    return _auction_response(await runtime.auctions.publish(auction_id, user_id))


@router.post("/{auction_id}/cancel", response_model=AuctionResponse)
async def cancel_auction(
    auction_id: int,
    user_id: int = Depends(get_current_user_id),
    runtime: AuctionRuntime = Depends(get_runtime),
):
    return _auction_response(await runtime.auctions.cancel(auction_id, user_id))


@router.post("/{auction_id}/bids", response_model=PlaceBidResponse)
async def place_bid(
    auction_id: int,
    request: PlaceBidRequest,
    user_id: int = Depends(get_current_user_id),
    runtime: AuctionRuntime = Depends(get_runtime),
):
    result = await runtime.bidding.place_bid(auction_id, user_id, request.amount)
    body = PlaceBidResponse(
        bid=BidResponse.model_validate(result.bid),
        is_update=result.is_update,
        previous_amount=result.previous_amount,
        current_bid=result.current_bid,
        bid_count=result.bid_count,
        minimum_next_bid=result.minimum_next,
    )
    # 201 for a new bid, 200 when the bidder raised their standing bid
    return JSONResponse(status_code=200 if result.is_update else 201, content=body.model_dump(mode="json"))


@router.get("/{auction_id}/bids", response_model=list[BidResponse])
async def list_bids(auction_id: int, runtime: AuctionRuntime = Depends(get_runtime)):
    bids = await runtime.bidding.list_bids(auction_id)
    return [BidResponse.model_validate(b) for b in bids]


@router.get("/{auction_id}/bid-status", response_model=BidStatusResponse)
async def get_bid_status(
    auction_id: int,
    user_id: int = Depends(get_current_user_id),
    runtime: AuctionRuntime = Depends(get_runtime),
):
    status = await runtime.bidding.bid_status(auction_id, user_id)
    return BidStatusResponse(
        auction_id=status.auction_id,
        has_user_bid=status.user_bid is not None,
        user_bid=BidResponse.model_validate(status.user_bid) if status.user_bid else None,
        is_winning=status.is_winning,
        minimum_next_bid=status.minimum_next,
        can_bid=status.can_bid,
        auction_status=status.auction_status,
        current_highest_bid=status.current_highest,
    )
