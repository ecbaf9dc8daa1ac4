"""
Profile Provisioning

Called by the identity subsystem: one profile per identity on signup, and
the profile (with every row it owns) removed when the identity is deleted.
"""

from dataclasses import dataclass
import uuid

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.database.models import Profile
from marketplace.database.repository import flush_or_raise
from marketplace.exceptions import ProfileAlreadyExistsError, RecordNotFoundError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Identity:
    """An account issued by the identity subsystem"""
    id: uuid.UUID
    email: str


async def provision_profile(session: AsyncSession, identity: Identity) -> Profile:
    """
    Create the profile for a new identity.

    Only id and email are set. Provisioning the same identity twice is an
    error, never a silent no-op.

    Raises:
        ProfileAlreadyExistsError: A profile with this id already exists
        IntegrityViolationError: Another profile already uses this email
    """
    if await session.get(Profile, identity.id) is not None:
        logger.error("Duplicate profile provisioning", identity_id=str(identity.id))
        raise ProfileAlreadyExistsError(identity.id)

    profile = Profile(id=identity.id, email=identity.email)
    session.add(profile)
    await flush_or_raise(session, Profile.__tablename__)

    logger.info("Profile provisioned", profile_id=str(profile.id), email=profile.email)
    return profile


async def remove_profile(session: AsyncSession, identity_id: uuid.UUID) -> None:
    """Delete an identity's profile; owned rows are removed by ON DELETE CASCADE"""
    profile = await session.get(Profile, identity_id)
    if profile is None:
        raise RecordNotFoundError(Profile.__tablename__, identity_id)
    await session.delete(profile)
    await flush_or_raise(session, Profile.__tablename__)
    logger.info("Profile removed", profile_id=str(identity_id))
