"""Persistence for short links and their click events."""

import logging
from datetime import datetime, timedelta

from sqlalchemy import case, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import AliasConflictError, CapacityExhaustedError
from app.models import LinkClick, ShortUrl, utcnow

logger = logging.getLogger(__name__)

MAX_SUFFIX = 1000


class LinkStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_by_code(self, code: str) -> ShortUrl | None:
        result = await self.session.execute(
            select(ShortUrl).where(or_(ShortUrl.short_code == code, ShortUrl.custom_alias == code))
        )
        return result.scalars().first()

    async def find_active_by_code(self, code: str) -> ShortUrl | None:
        result = await self.session.execute(
            select(ShortUrl).where(
                or_(ShortUrl.short_code == code, ShortUrl.custom_alias == code),
                ShortUrl.is_active.is_(True),
            )
        )
        return result.scalars().first()

    async def code_exists(self, code: str) -> bool:
        result = await self.session.execute(
            select(func.count(ShortUrl.id)).where(
                or_(ShortUrl.short_code == code, ShortUrl.custom_alias == code)
            )
        )
        return result.scalar_one() > 0

    async def alias_exists(self, alias: str) -> bool:
        result = await self.session.execute(
            select(func.count(ShortUrl.id)).where(ShortUrl.custom_alias == alias)
        )
        return result.scalar_one() > 0

    async def next_available_code(self, base_code: str) -> str:
        """Return ``base_code`` or the first free ``base_code-N``."""
        if not await self.code_exists(base_code):
            return base_code
        for counter in range(1, MAX_SUFFIX + 1):
            proposed = f"{base_code}-{counter}"
            if not await self.code_exists(proposed):
                return proposed
        raise CapacityExhaustedError(f"No free suffix left for code {base_code!r}")

    async def save(self, link: ShortUrl) -> ShortUrl:
        self.session.add(link)
        try:
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            logger.info(f"Unique constraint rejected code {link.short_code}")
            raise AliasConflictError(f"Code {link.short_code!r} is already taken")
        await self.session.refresh(link)
        return link

    async def update(self, link: ShortUrl) -> ShortUrl:
        link.updated_at = utcnow()
        await self.session.commit()
        await self.session.refresh(link)
        return link

    async def deactivate(self, link: ShortUrl) -> ShortUrl:
        await self.session.execute(
            update(ShortUrl)
            .where(ShortUrl.id == link.id)
            .values(is_active=False, updated_at=utcnow())
        )
        await self.session.commit()
        await self.session.refresh(link)
        return link

    async def record_click(self, link: ShortUrl, click: LinkClick) -> ShortUrl:
        click.short_url_id = link.id
        self.session.add(click)
        await self.session.execute(
            update(ShortUrl)
            .where(ShortUrl.id == link.id)
            .values(clicks=ShortUrl.clicks + 1, updated_at=utcnow())
        )
        await self.session.commit()
        await self.session.refresh(link)
        return link

    async def delete(self, link: ShortUrl) -> None:
        await self.session.execute(delete(LinkClick).where(LinkClick.short_url_id == link.id))
        await self.session.delete(link)
        await self.session.commit()

    def _filtered(self, query, user_id: int | None = None, search: str | None = None):
        if user_id is not None:
            query = query.where(ShortUrl.user_id == user_id)
        if search:
            query = query.where(ShortUrl.long_url.contains(search))
        return query

    async def list_links(
        self,
        user_id: int | None = None,
        search: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[ShortUrl]:
        query = self._filtered(select(ShortUrl), user_id, search)
        query = query.order_by(ShortUrl.created_at.desc(), ShortUrl.id.desc()).limit(limit).offset(offset)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def count_links(self, user_id: int | None = None, search: str | None = None) -> int:
        query = self._filtered(select(func.count(ShortUrl.id)), user_id, search)
        result = await self.session.execute(query)
        return result.scalar_one()

    async def most_popular(self, limit: int = 10) -> list[ShortUrl]:
        result = await self.session.execute(
            select(ShortUrl)
            .where(ShortUrl.is_active.is_(True))
            .order_by(ShortUrl.clicks.desc(), ShortUrl.id.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def recently_created(self, limit: int = 10) -> list[ShortUrl]:
        result = await self.session.execute(
            select(ShortUrl)
            .where(ShortUrl.is_active.is_(True))
            .order_by(ShortUrl.created_at.desc(), ShortUrl.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def global_stats(self) -> dict:
        result = await self.session.execute(
            select(
                func.count(ShortUrl.id),
                func.coalesce(func.sum(ShortUrl.clicks), 0),
                func.avg(ShortUrl.clicks),
                func.count(func.distinct(ShortUrl.user_id)),
                func.sum(case((ShortUrl.is_active.is_(True), 1), else_=0)),
                func.count(ShortUrl.custom_alias),
            )
        )
        total, clicks, avg_clicks, users, active, aliases = result.one()
        return {
            "total_links": total,
            "total_clicks": int(clicks),
            "avg_clicks": float(avg_clicks) if avg_clicks is not None else 0.0,
            "total_users": users,
            "active_links": int(active or 0),
            "custom_aliases": aliases,
        }

    async def user_overall_stats(self, user_id: int) -> dict:
        result = await self.session.execute(
            select(
                func.count(ShortUrl.id),
                func.coalesce(func.sum(ShortUrl.clicks), 0),
                func.avg(ShortUrl.clicks),
                func.max(ShortUrl.clicks),
                func.sum(case((ShortUrl.is_active.is_(True), 1), else_=0)),
                func.min(ShortUrl.created_at),
                func.max(ShortUrl.updated_at),
                func.count(func.distinct(func.date(ShortUrl.created_at))),
            ).where(ShortUrl.user_id == user_id)
        )
        total, clicks, avg_clicks, max_clicks, active, first_link, last_activity, active_days = result.one()
        return {
            "total_links": total,
            "total_clicks": int(clicks),
            "avg_clicks_per_link": float(avg_clicks) if avg_clicks is not None else 0.0,
            "max_clicks": max_clicks or 0,
            "active_links": int(active or 0),
            "first_link_date": first_link,
            "last_activity_date": last_activity,
            "active_days": active_days,
        }

    async def daily_stats(
        self, start: datetime | None = None, end: datetime | None = None
    ) -> list[dict]:
        """Links created and clicks they hold, per creation day, newest first."""
        query = select(ShortUrl.created_at, ShortUrl.clicks)
        if start is not None:
            query = query.where(ShortUrl.created_at >= start)
        if end is not None:
            query = query.where(ShortUrl.created_at <= end)
        result = await self.session.execute(query)

        days: dict[str, dict] = {}
        for created_at, clicks in result.all():
            key = created_at.strftime("%Y-%m-%d")
            row = days.setdefault(key, {"date": key, "links_created": 0, "total_clicks": 0})
            row["links_created"] += 1
            row["total_clicks"] += clicks or 0
        return sorted(days.values(), key=lambda row: row["date"], reverse=True)

    async def code_length_stats(self) -> list[dict]:
        """Generated-code usage by length (custom aliases excluded)."""
        length = func.length(ShortUrl.short_code)
        result = await self.session.execute(
            select(length, func.count(ShortUrl.id), func.avg(ShortUrl.clicks))
            .where(ShortUrl.custom_alias.is_(None))
            .group_by(length)
            .order_by(length)
        )
        return [
            {"code_length": code_length, "count": count, "avg_clicks": float(avg or 0)}
            for code_length, count, avg in result.all()
        ]

    async def deactivate_expired_links(self, now: datetime | None = None) -> int:
        now = now or utcnow()
        result = await self.session.execute(
            update(ShortUrl)
            .where(ShortUrl.expires_at < now, ShortUrl.is_active.is_(True))
            .values(is_active=False, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        self.session.expire_all()
        return result.rowcount

    async def delete_old_inactive_links(self, days_old: int = 365) -> int:
        cutoff = utcnow() - timedelta(days=days_old)
        stale = select(ShortUrl.id).where(ShortUrl.is_active.is_(False), ShortUrl.created_at < cutoff)
        await self.session.execute(
            delete(LinkClick)
            .where(LinkClick.short_url_id.in_(stale))
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(
            delete(ShortUrl)
            .where(ShortUrl.is_active.is_(False), ShortUrl.created_at < cutoff)
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        self.session.expire_all()
        return result.rowcount

    async def delete_old_clicks(self, days_old: int = 365) -> int:
        cutoff = utcnow() - timedelta(days=days_old)
        result = await self.session.execute(
            delete(LinkClick)
            .where(LinkClick.created_at < cutoff)
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        self.session.expire_all()
        return result.rowcount
