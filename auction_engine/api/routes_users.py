from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from auction_engine.api.deps import get_db
from auction_engine.auth import get_current_user_id
from auction_engine.db import crud
from auction_engine.schemas.user import AuctionSummaryResponse

router = APIRouter(prefix="/api/v1/users", tags=["users"])


@router.get("/me/auction-summary", response_model=AuctionSummaryResponse)
async def auction_summary(user_id: int = Depends(get_current_user_id), db: AsyncSession = Depends(get_db)):
    return AuctionSummaryResponse(**await crud.get_user_auction_summary(db, user_id))
