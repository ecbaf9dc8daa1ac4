"""
Reference data loader for seller tips.
"""

from typing import Dict, Iterable, List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.database.models import SellerTip

logger = structlog.get_logger(__name__)

DEFAULT_SELLER_TIPS: List[Dict[str, str]] = [
    {
        "title": "Photograph products in daylight",
        "content": "Listings with clear, naturally lit photos of seed packets and equipment get more enquiries.",
        "category": "Listings",
    },
    {
        "title": "Keep stock counts current",
        "content": "Update stock quantity as soon as a delivery arrives so buyers never order unavailable items.",
        "category": "Inventory",
    },
    {
        "title": "Confirm new orders quickly",
        "content": "Move orders from New to Pending once payment is confirmed; buyers see the change immediately.",
        "category": "Orders",
    },
    {
        "title": "Mention season and region",
        "content": "State the sowing season and suitable regions for seeds and fertilizers in the description.",
        "category": "Listings",
    },
    {
        "title": "Price against the market",
        "content": "Compare prices with similar listings regularly; competitively priced products are highlighted.",
        "category": "Pricing",
    },
]


async def seed_seller_tips(
    session: AsyncSession,
    tips: Optional[Iterable[Dict[str, str]]] = None,
) -> int:
    """
    Insert tips whose title is not present yet.

    Returns:
        Number of tips inserted
    """
    tips = list(tips if tips is not None else DEFAULT_SELLER_TIPS)

    result = await session.execute(select(SellerTip.title))
    existing = set(result.scalars().all())

    new_tips = [SellerTip(**tip) for tip in tips if tip["title"] not in existing]
    session.add_all(new_tips)
    await session.flush()

    logger.info("Seller tips seeded", inserted=len(new_tips), skipped=len(tips) - len(new_tips))
    return len(new_tips)
