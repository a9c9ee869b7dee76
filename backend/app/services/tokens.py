"""Bearer token lifecycle shared by invitations and occupant claims.

Tokens move ``issued -> redeemed`` or ``issued -> superseded`` exactly once.
``expired`` is derived: an issued token whose ``expires_at`` has passed.
Only the SHA-256 hash of a token is stored.
"""

import hashlib
import logging
import secrets
import uuid
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.errors import TokenAlreadyUsed, TokenExpired, TokenNotFound
from app.core.logging_config import fingerprint
from app.models.enums import TokenPurpose, TokenState
from app.models.issued_token import IssuedToken

logger = logging.getLogger(__name__)


def hash_token(raw: str) -> str:
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def generate_token(nbytes: Optional[int] = None) -> str:
    return secrets.token_urlsafe(nbytes or get_settings().token_bytes)


def effective_state(token: IssuedToken, now: Optional[datetime] = None) -> TokenState:
    """Stored state with expiry applied."""
    now = now or datetime.utcnow()
    if token.state == TokenState.ISSUED and token.expires_at is not None and token.expires_at <= now:
        return TokenState.EXPIRED
    return token.state


def ensure_redeemable(token: Optional[IssuedToken], now: Optional[datetime] = None) -> IssuedToken:
    """Raise the matching token error unless ``token`` can be redeemed now."""
    if token is None:
        raise TokenNotFound()
    state = effective_state(token, now)
    if state == TokenState.REDEEMED:
        raise TokenAlreadyUsed()
    if state == TokenState.SUPERSEDED:
        raise TokenExpired("This link was replaced by a newer one. Use the most recent link you received.")
    if state == TokenState.EXPIRED:
        raise TokenExpired()
    return token


class TokenManager:
    """Issues, supersedes and redeems tokens inside the caller's transaction."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def issue(
        self,
        purpose: TokenPurpose,
        subject_id: uuid.UUID,
        issued_by: Optional[uuid.UUID] = None,
        ttl: Optional[timedelta] = None,
    ) -> tuple[IssuedToken, str]:
        """Issue a fresh token for ``subject_id``, superseding any live one.

        Returns the stored row and the raw token, which is never persisted.
        """
        await self.supersede(purpose, subject_id)

        raw = generate_token()
        now = datetime.utcnow()
        token = IssuedToken(
            purpose=purpose,
            subject_id=subject_id,
            token_hash=hash_token(raw),
            state=TokenState.ISSUED,
            issued_by_user_id=issued_by,
            issued_at=now,
            expires_at=now + ttl if ttl else None,
        )
        self.db.add(token)
        await self.db.flush()
        logger.info(
            f"[TOKENS] issued {purpose.value} token {fingerprint(raw)} for subject={subject_id}"
        )
        return token, raw

    async def supersede(self, purpose: TokenPurpose, subject_id: uuid.UUID) -> int:
        """Kill every live token for the subject. Returns how many were live."""
        result = await self.db.execute(
            update(IssuedToken)
            .where(
                IssuedToken.purpose == purpose,
                IssuedToken.subject_id == subject_id,
                IssuedToken.state == TokenState.ISSUED,
            )
            .values(state=TokenState.SUPERSEDED, superseded_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.info(
                f"[TOKENS] superseded {result.rowcount} {purpose.value} token(s) for subject={subject_id}"
            )
        return result.rowcount

    async def lookup(self, purpose: TokenPurpose, raw: str) -> Optional[IssuedToken]:
        result = await self.db.execute(
            select(IssuedToken)
            .where(
                IssuedToken.purpose == purpose,
                IssuedToken.token_hash == hash_token(raw),
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def live_token(self, purpose: TokenPurpose, subject_id: uuid.UUID) -> Optional[IssuedToken]:
        result = await self.db.execute(
            select(IssuedToken).where(
                IssuedToken.purpose == purpose,
                IssuedToken.subject_id == subject_id,
                IssuedToken.state == TokenState.ISSUED,
            )
        )
        return result.scalar_one_or_none()

    async def validate(self, purpose: TokenPurpose, raw: str) -> IssuedToken:
        """Look up a token and check it is still redeemable, without consuming it."""
        return ensure_redeemable(await self.lookup(purpose, raw))

    async def redeem(self, token: IssuedToken) -> IssuedToken:
        """Consume a validated token.

        Compare-and-set on ``state`` so that of two concurrent redemptions
        exactly one succeeds; the other gets ``TokenAlreadyUsed``.
        """
        now = datetime.utcnow()
        result = await self.db.execute(
            update(IssuedToken)
            .where(
                IssuedToken.id == token.id,
                IssuedToken.state == TokenState.ISSUED,
            )
            .values(state=TokenState.REDEEMED, redeemed_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            # Lost the race; report whatever state won
            await self.db.refresh(token)
            ensure_redeemable(token, now)
            raise TokenAlreadyUsed()

        await self.db.refresh(token)
        logger.info(f"[TOKENS] redeemed {token.purpose.value} token for subject={token.subject_id}")
        return token
