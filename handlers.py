import math
from datetime import datetime
from typing import Optional
from urllib.parse import urlparse

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request, status
from fastapi.responses import PlainTextResponse, RedirectResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from config import REDIRECT_STATUS_CODE, STATS_CACHE_TTL
from app.database import get_async_session
from app.exceptions import LinkNotFoundError
from app.generator import CodeGenerator
from app.geoip import GeoIpResolver, get_geoip_resolver
from app.models import ShortUrl, to_naive_utc
from app.redirect import ClickRecorder, Visitor
from app.redis import delete_cache_prefix, get_cache, set_cache
from app.service import shorten, update_link
from app.stats import StatsAggregator, csv_report
from app.store import LinkStore

router = APIRouter()
api_router = APIRouter(prefix="/api/v1")
# Registered last so every other route takes precedence over the catch-all
redirect_router = APIRouter()


class ShortenLinkRequest(BaseModel):
    url: str
    custom_alias: Optional[str] = None
    expires_in: Optional[int] = Field(None, ge=1, description="Days until the link expires")
    expires_at: Optional[datetime] = None
    normalize_alias: bool = False
    # Opaque owner reference, used for filtering and per-owner stats
    user_id: Optional[int] = None


class UpdateLinkRequest(BaseModel):
    is_active: Optional[bool] = None
    expires_in: Optional[int] = Field(None, ge=1)


def stats_cache_key(short_code: str, group_by: str, start_date, end_date) -> str:
    return f"stats:{short_code}:{group_by}:{start_date or ''}:{end_date or ''}"


async def get_link_or_404(store: LinkStore, short_code: str) -> ShortUrl:
    link = await store.find_by_code(short_code)
    if link is None:
        raise LinkNotFoundError(f"Short link {short_code!r} not found")
    return link


@router.get("/health")
async def health():
    return {"status": "ok"}


@router.post("/shorten", status_code=status.HTTP_201_CREATED)
async def shorten_link(
    request: ShortenLinkRequest,
    session: AsyncSession = Depends(get_async_session),
):
    store = LinkStore(session)
    link = await shorten(
        store,
        CodeGenerator(store),
        request.url,
        custom_alias=request.custom_alias,
        expires_in=request.expires_in,
        expires_at=request.expires_at,
        user_id=request.user_id,
        normalize=request.normalize_alias,
    )
    return link.to_dict()


@router.get("/preview/{short_code}")
async def preview_link(short_code: str, session: AsyncSession = Depends(get_async_session)):
    link = await LinkStore(session).find_active_by_code(short_code)
    if not link:
        raise HTTPException(status_code=404, detail="Short link not found")

    return {
        "short_url": link.short_url,
        "long_url": link.long_url,
        "domain": urlparse(link.long_url).hostname,
        "clicks": link.clicks,
        "expires_at": link.expires_at,
    }


@api_router.get("/links")
async def list_links(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
    user_id: Optional[int] = None,
    search: Optional[str] = None,
    session: AsyncSession = Depends(get_async_session),
):
    store = LinkStore(session)
    links = await store.list_links(user_id=user_id, search=search, limit=limit, offset=(page - 1) * limit)
    total = await store.count_links(user_id=user_id, search=search)

    return {
        "data": [link.to_dict() for link in links],
        "meta": {"page": page, "limit": limit, "total": total, "pages": math.ceil(total / limit)},
    }


@api_router.get("/links/{short_code}")
async def link_info(short_code: str, session: AsyncSession = Depends(get_async_session)):
    link = await get_link_or_404(LinkStore(session), short_code)
    return {"data": link.to_dict()}


@api_router.patch("/links/{short_code}")
async def update_short_link(
    short_code: str,
    request: UpdateLinkRequest,
    session: AsyncSession = Depends(get_async_session),
):
    store = LinkStore(session)
    link = await get_link_or_404(store, short_code)
    link = await update_link(store, link, is_active=request.is_active, expires_in=request.expires_in)
    await delete_cache_prefix(f"stats:{short_code}:")

    return {"data": link.to_dict()}


@api_router.delete("/links/{short_code}")
async def delete_short_link(short_code: str, session: AsyncSession = Depends(get_async_session)):
    store = LinkStore(session)
    link = await get_link_or_404(store, short_code)
    await store.delete(link)
    await delete_cache_prefix(f"stats:{short_code}:")

    return {"message": "Short link deleted successfully"}


@api_router.get("/links/{short_code}/stats")
async def link_stats(
    short_code: str,
    group_by: str = "day",
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    session: AsyncSession = Depends(get_async_session),
):
    cache_key = stats_cache_key(short_code, group_by, start_date, end_date)
    cached_stats = await get_cache(cache_key)
    if cached_stats:
        return cached_stats

    link = await get_link_or_404(LinkStore(session), short_code)
    stats = await StatsAggregator(session).summary(
        link, to_naive_utc(start_date), to_naive_utc(end_date), group_by
    )
    payload = {"data": stats}
    await set_cache(cache_key, payload, expire=STATS_CACHE_TTL)

    return payload


@api_router.get("/links/{short_code}/stats.csv", response_class=PlainTextResponse)
async def link_stats_csv(
    short_code: str,
    group_by: str = "day",
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    session: AsyncSession = Depends(get_async_session),
):
    link = await get_link_or_404(LinkStore(session), short_code)
    rows = await StatsAggregator(session).clicks_by_period(
        link, to_naive_utc(start_date), to_naive_utc(end_date), group_by
    )
    return PlainTextResponse(
        csv_report(rows),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{short_code}-stats.csv"'},
    )


@api_router.get("/links/{short_code}/clicks")
async def recent_clicks(
    short_code: str,
    limit: int = Query(50, ge=1, le=500),
    session: AsyncSession = Depends(get_async_session),
):
    link = await get_link_or_404(LinkStore(session), short_code)
    return {"data": await StatsAggregator(session).recent_clicks(link, limit)}


@api_router.get("/stats")
async def global_stats(session: AsyncSession = Depends(get_async_session)):
    store = LinkStore(session)
    return {
        "data": {
            "totals": await store.global_stats(),
            "most_popular": [link.to_dict() for link in await store.most_popular()],
            "recently_created": [link.to_dict() for link in await store.recently_created()],
            "code_lengths": await store.code_length_stats(),
            "daily": await store.daily_stats(),
        }
    }


@api_router.get("/users/{user_id}/stats")
async def user_stats(user_id: int, session: AsyncSession = Depends(get_async_session)):
    return {"data": await LinkStore(session).user_overall_stats(user_id)}


@redirect_router.get("/{short_code}")
async def redirect_link(
    short_code: str,
    request: Request,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_async_session),
    geoip: GeoIpResolver = Depends(get_geoip_resolver),
):
    visitor = Visitor(
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
        referer=request.headers.get("referer"),
    )
    link = await ClickRecorder(LinkStore(session), geoip).resolve(short_code.strip(), visitor)
    # cached summaries no longer match the click history
    background_tasks.add_task(delete_cache_prefix, f"stats:{link.code}:")

    return RedirectResponse(url=link.long_url, status_code=REDIRECT_STATUS_CODE)
