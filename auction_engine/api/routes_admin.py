import logging
from fastapi import APIRouter, Depends

from auction_engine.api.deps import get_runtime
from auction_engine.auth import require_service
from auction_engine.schemas.sweep import SweepResponse
from auction_engine.services.runtime import AuctionRuntime

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/admin", tags=["admin"])


@router.post("/sweep", response_model=SweepResponse)
async def run_sweep(
    service: str = Depends(require_service),
    runtime: AuctionRuntime = Depends(get_runtime),
):
    logger.info(f"Manual sweep requested by {service}")
    report = await runtime.sweeper.tick()
    return SweepResponse(
        activated=report.activated,
        expired=report.expired,
        resolved=report.resolved,
        failed=report.failed,
    )
