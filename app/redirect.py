import logging
from dataclasses import dataclass
from typing import Optional

from app.exceptions import LinkGoneError, LinkNotFoundError
from app.models import LinkClick, ShortUrl, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Visitor:
    """Request metadata captured for one visit."""

    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    referer: Optional[str] = None


class ClickRecorder:
    def __init__(self, store, geoip):
        self.store = store
        self.geoip = geoip

    async def resolve(self, code: str, visitor: Visitor) -> ShortUrl:
        """Resolve ``code`` and record the visit.

        Steps, each one short-circuiting before a click is stored:
        - Step 1: look the code up (short code or custom alias)
        - Step 2: refuse links that were deactivated
        - Step 3: refuse expired links, deactivating them on the way
        - Step 4: store the click and bump the counter

        Raises:
            LinkNotFoundError: no link under ``code``.
            LinkGoneError: link inactive or expired.
        """
        link = await self.store.find_by_code(code)
        if link is None:
            logger.info(f"Redirect for unknown code {code}")
            raise LinkNotFoundError(f"Short link {code!r} not found")

        if not link.is_active:
            logger.info(f"Redirect for inactive code {code}")
            raise LinkGoneError(f"Short link {code!r} is no longer active")

        if link.is_expired():
            await self.store.deactivate(link)
            logger.info(f"Deactivated expired code {code}")
            raise LinkGoneError(f"Short link {code!r} has expired")

        click = LinkClick(
            ip_address=visitor.ip_address,
            user_agent=visitor.user_agent,
            referer=visitor.referer,
            country=await self.geoip.lookup(visitor.ip_address),
            created_at=utcnow(),
        )
        await self.store.record_click(link, click)
        logger.info(f"Recorded click on {code} ({link.clicks} total)")
        return link
