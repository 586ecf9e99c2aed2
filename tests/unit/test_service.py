import re
from datetime import datetime, timedelta, timezone

import pytest
from unittest.mock import AsyncMock, MagicMock

from app.exceptions import AliasConflictError, ValidationError
from app.generator import CodeGenerator
from app.models import ShortUrl, utcnow
from app.service import MAX_SAVE_ATTEMPTS, resolve_expiry, shorten, update_link, validate_long_url


@pytest.mark.parametrize(
    "url",
    ["https://example.com/a/b?c=1", "http://localhost:8000/x", "  https://example.com  "],
)
def test_validate_long_url_accepts_absolute_urls(url):
    assert validate_long_url(url) == url.strip()


@pytest.mark.parametrize("url", ["", "example.com", "/relative/path", "ftp://example.com", "https://", None])
def test_validate_long_url_rejects(url):
    with pytest.raises(ValidationError):
        validate_long_url(url)


def test_resolve_expiry():
    assert resolve_expiry() is None
    assert resolve_expiry(expires_at=datetime(2030, 1, 1, 12, tzinfo=timezone(timedelta(hours=2)))) == datetime(
        2030, 1, 1, 10
    )
    in_a_week = resolve_expiry(expires_in=7)
    assert timedelta(days=6, hours=23) < in_a_week - utcnow() <= timedelta(days=7)
    with pytest.raises(ValidationError):
        resolve_expiry(expires_in=0)


@pytest.mark.asyncio
async def test_shorten_generates_code(store):
    link = await shorten(store, CodeGenerator(store), "https://example.com/a/b?c=1")

    assert re.fullmatch(r"[a-zA-Z0-9_-]{6}", link.short_code)
    assert link.custom_alias is None
    assert link.clicks == 0
    assert link.is_active is True
    assert link.expires_at is None
    assert (await store.find_by_code(link.short_code)).long_url == "https://example.com/a/b?c=1"


@pytest.mark.asyncio
async def test_shorten_with_custom_alias(store):
    link = await shorten(store, CodeGenerator(store), "https://example.com", custom_alias="my_link-1", expires_in=3)

    assert link.short_code == "my_link-1"
    assert link.custom_alias == "my_link-1"
    assert link.expires_at > utcnow()


@pytest.mark.asyncio
async def test_shorten_normalizes_alias_on_request(store):
    link = await shorten(store, CodeGenerator(store), "https://example.com", custom_alias="Summer Sale!", normalize=True)

    assert link.custom_alias == "summer-sale"


@pytest.mark.asyncio
async def test_shorten_alias_conflict(store, make_link):
    await make_link(code="taken")

    with pytest.raises(AliasConflictError):
        await shorten(store, CodeGenerator(store), "https://example.com", custom_alias="taken")


@pytest.mark.asyncio
@pytest.mark.parametrize("alias", ["ab", "admin", "no spaces"])
async def test_shorten_invalid_alias_persists_nothing(store, alias):
    with pytest.raises(ValidationError):
        await shorten(store, CodeGenerator(store), "https://example.com", custom_alias=alias)

    assert await store.count_links() == 0


@pytest.mark.asyncio
async def test_shorten_invalid_url_persists_nothing(store):
    with pytest.raises(ValidationError):
        await shorten(store, CodeGenerator(store), "not a url")

    assert await store.count_links() == 0


@pytest.mark.asyncio
async def test_shorten_generated_codes_are_unique(store, make_link):
    for index in range(20):
        await make_link(code=f"seed{index:02d}")

    generator = CodeGenerator(store)
    links = [await shorten(store, generator, f"https://example.com/{index}") for index in range(30)]

    codes = {link.short_code for link in links}
    assert len(codes) == 30
    assert await store.count_links() == 50


@pytest.mark.asyncio
async def test_shorten_retries_when_insert_loses_race():
    saved = ShortUrl(short_code="second", long_url="https://example.com")
    store = MagicMock()
    store.save = AsyncMock(side_effect=[AliasConflictError("taken"), saved])
    generator = MagicMock()
    generator.generate = AsyncMock(side_effect=["first1", "second"])

    link = await shorten(store, generator, "https://example.com")

    assert link is saved
    assert generator.generate.await_count == 2


@pytest.mark.asyncio
async def test_shorten_gives_up_after_repeated_races():
    store = MagicMock()
    store.save = AsyncMock(side_effect=AliasConflictError("taken"))
    generator = MagicMock()
    generator.generate = AsyncMock(return_value="abc123")

    with pytest.raises(AliasConflictError):
        await shorten(store, generator, "https://example.com")

    assert store.save.await_count == MAX_SAVE_ATTEMPTS


@pytest.mark.asyncio
async def test_update_link_reactivates_and_extends(store, make_link):
    link = await make_link(is_active=False, expires_at=utcnow() - timedelta(days=1))

    link = await update_link(store, link, is_active=True, expires_in=10)

    assert link.is_active is True
    assert not link.is_expired()
