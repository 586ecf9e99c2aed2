from datetime import timedelta

import pytest
from sqlalchemy import func, select, update

from app.exceptions import AliasConflictError
from app.models import LinkClick, ShortUrl, utcnow


async def count_clicks(session, link_id):
    result = await session.execute(select(func.count(LinkClick.id)).where(LinkClick.short_url_id == link_id))
    return result.scalar_one()


@pytest.mark.asyncio
async def test_save_and_find_by_code(store):
    link = await store.save(ShortUrl(long_url="https://example.com", short_code="abc123"))

    found = await store.find_by_code("abc123")

    assert found.id == link.id
    assert found.clicks == 0
    assert found.is_active is True
    assert found.created_at is not None


@pytest.mark.asyncio
async def test_find_by_custom_alias(store, make_link):
    await make_link(code="promo", custom_alias="promo")

    assert (await store.find_by_code("promo")).custom_alias == "promo"
    assert await store.code_exists("promo")
    assert await store.alias_exists("promo")
    assert not await store.alias_exists("abc123")


@pytest.mark.asyncio
async def test_find_active_by_code_skips_inactive(store, make_link):
    await make_link(code="gone01", is_active=False)

    assert await store.find_active_by_code("gone01") is None
    assert await store.find_by_code("gone01") is not None


@pytest.mark.asyncio
async def test_save_duplicate_code_is_conflict(store, make_link):
    await make_link(code="abc123")

    with pytest.raises(AliasConflictError):
        await store.save(ShortUrl(long_url="https://other.example", short_code="abc123"))

    # the session is usable again after the rollback
    assert await store.count_links() == 1
    assert (await store.find_by_code("abc123")).long_url == "https://example.com"


@pytest.mark.asyncio
async def test_save_duplicate_alias_is_conflict(store, make_link):
    await make_link(code="promo", custom_alias="promo")

    with pytest.raises(AliasConflictError):
        await store.save(ShortUrl(long_url="https://other.example", short_code="promo", custom_alias="promo"))


@pytest.mark.asyncio
async def test_record_click_increments_counter_and_inserts_event(store, session, make_link):
    link = await make_link()

    for _ in range(3):
        await store.record_click(link, LinkClick(ip_address="8.8.8.8"))

    assert link.clicks == 3
    assert await count_clicks(session, link.id) == 3


@pytest.mark.asyncio
async def test_record_click_increments_in_the_database(store, session, make_link):
    link = await make_link()
    # another writer bumps the counter behind this session's back
    await session.execute(
        update(ShortUrl)
        .where(ShortUrl.id == link.id)
        .values(clicks=5)
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    assert link.clicks == 0

    await store.record_click(link, LinkClick())

    assert link.clicks == 6


@pytest.mark.asyncio
async def test_deactivate_persists(store, make_link):
    link = await make_link()

    await store.deactivate(link)

    assert link.is_active is False
    assert await store.find_active_by_code("abc123") is None


@pytest.mark.asyncio
async def test_next_available_code(store, make_link):
    assert await store.next_available_code("free") == "free"

    await make_link(code="base")
    await make_link(code="base-1")

    assert await store.next_available_code("base") == "base-2"


@pytest.mark.asyncio
async def test_delete_removes_clicks(store, session, make_link, add_clicks):
    link = await make_link()
    await add_clicks(link, {}, {})
    link_id = link.id

    await store.delete(link)

    assert await store.find_by_code("abc123") is None
    assert await count_clicks(session, link_id) == 0


@pytest.mark.asyncio
async def test_list_and_search_links(store, make_link):
    await make_link(code="one111", long_url="https://example.com/one", user_id=1)
    await make_link(code="two222", long_url="https://other.test/two", user_id=2)
    await make_link(code="thr333", long_url="https://example.com/three", user_id=1)

    assert await store.count_links() == 3
    assert await store.count_links(user_id=1) == 2
    assert await store.count_links(search="other.test") == 1

    page = await store.list_links(limit=2)
    assert [link.short_code for link in page] == ["thr333", "two222"]
    assert [link.short_code for link in await store.list_links(limit=2, offset=2)] == ["one111"]


@pytest.mark.asyncio
async def test_popular_and_recent_exclude_inactive(store, make_link):
    await make_link(code="low111", clicks=1)
    await make_link(code="hig222", clicks=10)
    await make_link(code="off333", clicks=50, is_active=False)

    assert [link.short_code for link in await store.most_popular()] == ["hig222", "low111"]
    assert {link.short_code for link in await store.recently_created()} == {"low111", "hig222"}


@pytest.mark.asyncio
async def test_global_stats_on_empty_store(store):
    stats = await store.global_stats()

    assert stats == {
        "total_links": 0,
        "total_clicks": 0,
        "avg_clicks": 0.0,
        "total_users": 0,
        "active_links": 0,
        "custom_aliases": 0,
    }


@pytest.mark.asyncio
async def test_global_and_user_stats(store, make_link):
    await make_link(code="abc123", clicks=4, user_id=7)
    await make_link(code="promo", custom_alias="promo", clicks=2, user_id=7, is_active=False)
    await make_link(code="xyz789", clicks=0)

    stats = await store.global_stats()
    assert stats["total_links"] == 3
    assert stats["total_clicks"] == 6
    assert stats["avg_clicks"] == pytest.approx(2.0)
    assert stats["total_users"] == 1
    assert stats["active_links"] == 2
    assert stats["custom_aliases"] == 1

    user = await store.user_overall_stats(7)
    assert user["total_links"] == 2
    assert user["total_clicks"] == 6
    assert user["max_clicks"] == 4
    assert user["active_links"] == 1
    assert user["first_link_date"] is not None


@pytest.mark.asyncio
async def test_code_length_and_daily_stats(store, make_link):
    await make_link(code="abc123", clicks=2)
    await make_link(code="abcdefg", clicks=4)
    await make_link(code="promo", custom_alias="promo", clicks=100)

    assert await store.code_length_stats() == [
        {"code_length": 6, "count": 1, "avg_clicks": 2.0},
        {"code_length": 7, "count": 1, "avg_clicks": 4.0},
    ]

    daily = await store.daily_stats()
    assert len(daily) == 1
    assert daily[0]["links_created"] == 3
    assert daily[0]["total_clicks"] == 106


@pytest.mark.asyncio
async def test_retention_sweeps(store, session, make_link, add_clicks):
    await make_link(code="exp111", expires_at=utcnow() - timedelta(days=1))
    old_inactive = await make_link(code="old222", is_active=False, created_at=utcnow() - timedelta(days=400))
    fresh = await make_link(code="new333")
    fresh_id = fresh.id
    await add_clicks(old_inactive, {"ago": timedelta(days=1)})
    await add_clicks(fresh, {"ago": timedelta(days=400)}, {"ago": timedelta(days=2)})

    assert await store.deactivate_expired_links() == 1
    assert await store.delete_old_inactive_links(365) == 1
    assert await store.delete_old_clicks(365) == 1

    assert (await store.find_by_code("exp111")).is_active is False
    assert await store.find_by_code("old222") is None
    assert await count_clicks(session, fresh_id) == 1


@pytest.mark.asyncio
async def test_user_stats_counts_active_days(store, make_link):
    await make_link(code="day111", user_id=9)
    await make_link(code="day222", user_id=9)
    await make_link(code="day333", user_id=9, created_at=utcnow() - timedelta(days=3))

    assert (await store.user_overall_stats(9))["active_days"] == 2
    assert (await store.user_overall_stats(10))["active_days"] == 0
