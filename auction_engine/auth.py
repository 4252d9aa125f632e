import logging
from itsdangerous import URLSafeTimedSerializer, SignatureExpired, BadSignature
from fastapi import HTTPException, Request

from auction_engine.config import settings

logger = logging.getLogger(__name__)

_serializer = URLSafeTimedSerializer(settings.AUTH_SECRET_KEY)


def create_token(user_id: int) -> str:
    return _serializer.dumps(user_id, salt="auth")


def verify_token(token: str) -> int | None:
    try:
        return int(_serializer.loads(token, salt="auth", max_age=settings.AUTH_TOKEN_MAX_AGE))
    except (SignatureExpired, BadSignature, TypeError, ValueError):
        return None


def create_service_token(service: str) -> str:
    """Token for machine callers: the payment gateway and the ops sweep trigger."""
    return _serializer.dumps(service, salt="service")


def verify_service_token(token: str) -> str | None:
    try:
        return _serializer.loads(token, salt="service")
    except BadSignature:
        return None


def _bearer(request: Request) -> str | None:
    auth_header = request.headers.get("authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:]
    return None


async def get_current_user_id(request: Request) -> int:
    token = _bearer(request)
    user_id = verify_token(token) if token else None
    if user_id is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user_id


async def require_service(request: Request) -> str:
    token = _bearer(request)
    service = verify_service_token(token) if token else None
    if service is None:
        logger.warning(f"Rejected service call to {request.url.path}")
        raise HTTPException(status_code=401, detail="Not authenticated")
    return service
