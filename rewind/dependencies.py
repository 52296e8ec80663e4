from uuid import UUID
from typing import Any, Dict

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
import jwt

from rewind.config import settings
from rewind.database import get_session
from rewind.exceptions import AuthenticationError, PaymentRequiredError
from rewind.jwks import jwks_cache
from rewind.models import User
from rewind.services.subscription_service import requires_subscription, subscription_service
from rewind.services.user_service import user_service

security = HTTPBearer()


def _unauthorized(detail: str) -> AuthenticationError:
    return AuthenticationError(detail)


async def decode_token(token: str) -> Dict[str, Any]:
    """
    Verify a Supabase access token.

    HS256 tokens use the shared secret; asymmetric tokens are checked
    against the provider's JWKS by `kid`.
    """
    try:
        header = jwt.get_unverified_header(token)
    except jwt.InvalidTokenError as e:
        raise _unauthorized(f"Invalid token: {str(e)}")

    algorithm = header.get("alg")
    if algorithm == "HS256":
        if not settings.supabase_jwt_secret:
            raise _unauthorized("Invalid token: HS256 tokens are not accepted")
        key = settings.supabase_jwt_secret
        algorithms = ["HS256"]
    else:
        kid = header.get("kid")
        if not kid:
            raise _unauthorized("Invalid token: missing kid")
        jwk = await jwks_cache.get_key(kid)
        if jwk is None:
            raise _unauthorized("Invalid token: unknown signing key")
        key = jwk.key
        algorithms = [jwk.algorithm_name]

    try:
        return jwt.decode(
            token,
            key,
            algorithms=algorithms,
            audience=settings.jwt_audience or None,
            options={"verify_aud": bool(settings.jwt_audience)},
        )
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Token expired")
    except jwt.InvalidTokenError as e:
        raise _unauthorized(f"Invalid token: {str(e)}")


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    session: AsyncSession = Depends(get_session),
) -> User:
    """
    Resolve the caller from the bearer token.

    First-time callers are provisioned (user row + trial).
    """
    claims = await decode_token(credentials.credentials)

    subject = claims.get("sub")
    try:
        user_id = UUID(subject)
    except (TypeError, ValueError):
        raise _unauthorized("Invalid token: bad subject")

    return await user_service.get_or_create(session, user_id, claims)


async def get_current_user_id(user: User = Depends(get_current_user)) -> UUID:
    return user.id


async def require_subscription(
    request: Request,
    user_id: UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> None:
    """Admission check for premium routes; free routes pass through."""
    if not requires_subscription(request.method, request.url.path):
        return
    if not await subscription_service.is_active(session, user_id):
        raise PaymentRequiredError()
