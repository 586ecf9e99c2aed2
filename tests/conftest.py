from datetime import timedelta

import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.models import Base, LinkClick, ShortUrl, utcnow
from app.store import LinkStore

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(TEST_DATABASE_URL, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def session(engine):
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_maker() as session:
        yield session


@pytest_asyncio.fixture
async def store(session):
    return LinkStore(session)


@pytest_asyncio.fixture
async def make_link(session):
    async def _make_link(code="abc123", long_url="https://example.com", **kwargs):
        link = ShortUrl(long_url=long_url, short_code=code, **kwargs)
        session.add(link)
        await session.commit()
        await session.refresh(link)
        return link

    return _make_link


@pytest_asyncio.fixture
async def add_clicks(session):
    """Insert raw click rows; each spec is a dict of LinkClick fields plus optional ``ago`` (timedelta)."""

    async def _add_clicks(link, *specs):
        now = utcnow()
        for spec in specs:
            spec = dict(spec)
            created_at = spec.pop("created_at", None) or now - spec.pop("ago", timedelta(0))
            session.add(LinkClick(short_url_id=link.id, created_at=created_at, **spec))
        await session.commit()

    return _add_clicks
