"""Firebase JWT verification and caller resolution."""

import logging
from typing import Optional

import firebase_admin
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from firebase_admin import auth, credentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.database import get_db
from app.core.errors import Unauthenticated
from app.models.user import User
from app.services.identity import AuthenticatedUser, CallerContext, resolve_caller_context

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


def init_firebase() -> None:
    """Initialize the Firebase Admin SDK once per process."""
    if firebase_admin._apps:
        return
    settings = get_settings()
    options = {"projectId": settings.firebase_project_id}
    if settings.google_application_credentials:
        cred = credentials.Certificate(settings.google_application_credentials)
        firebase_admin.initialize_app(cred, options)
    else:
        firebase_admin.initialize_app(options=options)


async def verify_firebase_token(
    bearer: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> AuthenticatedUser:
    """Verify Firebase JWT and return the authenticated identity.

    This dependency NEVER mints JWTs - it only verifies tokens issued by Firebase.
    """
    if bearer is None or not bearer.credentials:
        raise Unauthenticated("Missing bearer token")

    init_firebase()
    try:
        decoded_token = auth.verify_id_token(bearer.credentials)
    except auth.ExpiredIdTokenError:
        raise Unauthenticated("Token has expired")
    except (auth.InvalidIdTokenError, auth.RevokedIdTokenError, ValueError):
        raise Unauthenticated("Invalid authentication token")
    except auth.CertificateFetchError as e:
        logger.error(f"[AUTH] could not fetch Firebase certificates: {e}")
        raise Unauthenticated("Token verification failed")

    return AuthenticatedUser(
        uid=decoded_token["uid"],
        email=decoded_token.get("email"),
        email_verified=decoded_token.get("email_verified", False),
        claims=decoded_token,
    )


async def get_current_user(
    identity: AuthenticatedUser = Depends(verify_firebase_token),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Platform user for the verified identity."""
    result = await db.execute(select(User).where(User.firebase_uid == identity.uid))
    user = result.scalar_one_or_none()
    if not user:
        raise Unauthenticated("User profile not found")
    if not user.is_active:
        raise Unauthenticated("User account is disabled")
    return user


async def get_caller_context(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> CallerContext:
    """Resolved caller context for authorization decisions."""
    return await resolve_caller_context(db, user)
