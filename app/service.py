import logging
from datetime import datetime
from urllib.parse import urlparse

from app.exceptions import AliasConflictError, ValidationError
from app.generator import normalize_alias
from app.models import ShortUrl, expires_in_days, to_naive_utc

logger = logging.getLogger(__name__)

# Insert attempts for generated codes that lose the race to the unique constraint
MAX_SAVE_ATTEMPTS = 3


def validate_long_url(long_url: str) -> str:
    long_url = (long_url or "").strip()
    parsed = urlparse(long_url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError("Invalid URL, provide an absolute http:// or https:// URL")
    return long_url


def resolve_expiry(expires_in: int | None = None, expires_at: datetime | None = None) -> datetime | None:
    if expires_in is not None:
        if expires_in <= 0:
            raise ValidationError("expires_in must be a positive number of days")
        return expires_in_days(expires_in)
    return to_naive_utc(expires_at)


async def shorten(
    store,
    generator,
    long_url: str,
    custom_alias: str | None = None,
    expires_in: int | None = None,
    expires_at: datetime | None = None,
    user_id: int | None = None,
    normalize: bool = False,
) -> ShortUrl:
    """Create and persist a short link.

    Nothing is written unless every check passes. A custom alias that loses
    the race at insert time is reported as a conflict; a generated code that
    does is regenerated.
    """
    long_url = validate_long_url(long_url)
    expiry = resolve_expiry(expires_in, expires_at)

    if custom_alias:
        if normalize:
            custom_alias = normalize_alias(custom_alias)
        alias = await generator.validate_custom_alias(custom_alias)
        link = ShortUrl(
            long_url=long_url,
            short_code=alias,
            custom_alias=alias,
            expires_at=expiry,
            user_id=user_id,
            clicks=0,
            is_active=True,
        )
        link = await store.save(link)
        logger.info(f"Created link {alias} -> {long_url}")
        return link

    for attempt in range(1, MAX_SAVE_ATTEMPTS + 1):
        code = await generator.generate()
        link = ShortUrl(
            long_url=long_url,
            short_code=code,
            expires_at=expiry,
            user_id=user_id,
            clicks=0,
            is_active=True,
        )
        try:
            link = await store.save(link)
        except AliasConflictError:
            logger.warning(f"Generated code {code} was claimed concurrently (attempt {attempt})")
            continue
        logger.info(f"Created link {code} -> {long_url}")
        return link

    raise AliasConflictError("Could not claim a unique short code, try again")


async def update_link(store, link: ShortUrl, is_active: bool | None = None, expires_in: int | None = None) -> ShortUrl:
    if is_active is not None:
        link.is_active = is_active
    if expires_in is not None:
        link.expires_at = resolve_expiry(expires_in=expires_in)
    link = await store.update(link)
    logger.info(f"Updated link {link.code}: is_active={link.is_active} expires_at={link.expires_at}")
    return link
