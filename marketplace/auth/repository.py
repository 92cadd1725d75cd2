from datetime import timedelta
from typing import Optional
from sqlalchemy import select, update
from marketplace.auth.utils import hash_token
from marketplace.common.utils import now
from marketplace.schema.full_schema import TokenPurpose, VerificationToken


async def issue_token(session, identifier: str, purpose: TokenPurpose, secret: str, ttl_seconds: int) -> VerificationToken:
    """Store a fresh token for ``identifier``; older unused tokens of the same purpose stop working."""
    moment = now()
    await session.execute(
        update(VerificationToken)
        .where(VerificationToken.identifier == identifier, VerificationToken.purpose == purpose,
               VerificationToken.consumed_at.is_(None))
        .values(consumed_at=moment)
    )
    row = VerificationToken(identifier=identifier, purpose=purpose, token_hash=hash_token(secret),
                            expires_at=moment + timedelta(seconds=ttl_seconds))
    session.add(row)
    await session.flush()
    return row


async def live_token_by_secret(session, purpose: TokenPurpose, secret: str) -> Optional[VerificationToken]:
    stmt = (select(VerificationToken)
            .where(VerificationToken.token_hash == hash_token(secret), VerificationToken.purpose == purpose,
                   VerificationToken.consumed_at.is_(None), VerificationToken.expires_at > now())
            .with_for_update())
    return (await session.execute(stmt)).scalar_one_or_none()


async def live_token_for(session, identifier: str, purpose: TokenPurpose) -> Optional[VerificationToken]:
    stmt = (select(VerificationToken)
            .where(VerificationToken.identifier == identifier, VerificationToken.purpose == purpose,
                   VerificationToken.consumed_at.is_(None), VerificationToken.expires_at > now())
            .order_by(VerificationToken.created_at.desc(), VerificationToken.id.desc())
            .limit(1)
            .with_for_update())
    return (await session.execute(stmt)).scalar_one_or_none()
