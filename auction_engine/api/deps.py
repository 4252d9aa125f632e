from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from auction_engine.services.runtime import AuctionRuntime


def get_runtime(request: Request) -> AuctionRuntime:
    return request.app.state.runtime


async def get_db(request: Request) -> AsyncSession:
    async with request.app.state.runtime.session_factory() as session:
        yield session
