import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from auction_engine.config import settings
from auction_engine.db.database import init_db, engine, async_session
from auction_engine.errors import AuctionError
from auction_engine.services.runtime import AuctionRuntime
from auction_engine.api.routes_auctions import router as auctions_router
from auction_engine.api.routes_payments import router as payments_router
from auction_engine.api.routes_notifications import router as notifications_router
from auction_engine.api.routes_notifications import ws_router
from auction_engine.api.routes_admin import router as admin_router
from auction_engine.api.routes_users import router as users_router

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)


def create_app(runtime: AuctionRuntime | None = None) -> FastAPI:
    """Build the app; pass a runtime to skip database setup and the sweeper."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = runtime is None
        if owned:
            await init_db(engine, reset=settings.RESET_DB_ON_STARTUP)
            app.state.runtime = AuctionRuntime(async_session)
            # Background sweep for expired auctions
            app.state.runtime.start()
        yield
        if owned:
            await app.state.runtime.shutdown()

    app = FastAPI(title="Auction Engine", version="0.1.0", lifespan=lifespan)
    if runtime is not None:
        app.state.runtime = runtime

    @app.exception_handler(AuctionError)
    async def auction_error_handler(request: Request, exc: AuctionError):
        logger.info(f"{request.method} {request.url.path} rejected: {exc.code}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        tb = traceback.format_exc()
        logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}\n{tb}")
        return JSONResponse(
            status_code=500,
            content={"detail": str(exc)},
        )

    @app.get("/api/v1/health")
    async def health_check(request: Request):
        """Check DB connectivity and background work."""
        rt: AuctionRuntime = request.app.state.runtime
        try:
            async with rt.session_factory() as db:
                await db.execute(text("SELECT 1"))
            return {
                "status": "ok",
                "database": "connected",
                "pending_notifications": rt.dispatcher.pending,
                "live_users": len(rt.connections.connected_users()),
            }
        except Exception as e:
            return {"status": "error", "database": str(e)}

    # API routes
    app.include_router(auctions_router)
    app.include_router(payments_router)
    app.include_router(notifications_router)
    app.include_router(admin_router)
    app.include_router(users_router)
    app.include_router(ws_router)

    return app


app = create_app()
