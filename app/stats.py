import csv
import io
from collections import Counter
from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config import FRAUD_MAX_CLICKS, FRAUD_WINDOW_MINUTES
from app.exceptions import ValidationError
from app.models import LinkClick, ShortUrl, utcnow
from app.useragent import parse_user_agent

BUCKET_FORMATS = {
    "hour": "%Y-%m-%d %H:00:00",
    "day": "%Y-%m-%d",
    "week": "%G-W%V",
    "month": "%Y-%m",
}

CSV_HEADER = ["period", "clicks", "unique_visitors"]


def check_group_by(group_by: str) -> str:
    if group_by not in BUCKET_FORMATS:
        raise ValidationError(
            f"Unknown grouping {group_by!r}, expected one of {', '.join(BUCKET_FORMATS)}"
        )
    return group_by


def bucket_key(moment: datetime, group_by: str = "day") -> str:
    return moment.strftime(BUCKET_FORMATS[check_group_by(group_by)])


def csv_report(rows: list[dict]) -> str:
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(CSV_HEADER)
    for row in rows:
        writer.writerow([row["period"], row["clicks"], row.get("unique_visitors", 0)])
    return output.getvalue()


class StatsAggregator:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def clicks_by_period(
        self,
        link: ShortUrl,
        start: datetime | None = None,
        end: datetime | None = None,
        group_by: str = "day",
    ) -> list[dict]:
        check_group_by(group_by)

        query = select(LinkClick.created_at, LinkClick.ip_address).where(LinkClick.short_url_id == link.id)
        if start is not None:
            query = query.where(LinkClick.created_at >= start)
        if end is not None:
            query = query.where(LinkClick.created_at <= end)
        result = await self.session.execute(query)

        clicks: Counter = Counter()
        visitors: dict[str, set] = {}
        for created_at, ip_address in result.all():
            key = bucket_key(created_at, group_by)
            clicks[key] += 1
            bucket_visitors = visitors.setdefault(key, set())
            if ip_address is not None:
                bucket_visitors.add(ip_address)

        return [
            {"period": key, "clicks": clicks[key], "unique_visitors": len(visitors[key])}
            for key in sorted(clicks, reverse=True)
        ]

    async def clicks_last_days(self, link: ShortUrl, days: int = 30) -> list[dict]:
        return await self.clicks_by_period(link, start=utcnow() - timedelta(days=days), group_by="day")

    async def top_countries(self, link: ShortUrl, limit: int = 10) -> list[dict]:
        clicks = func.count(LinkClick.id)
        result = await self.session.execute(
            select(LinkClick.country, clicks, func.count(func.distinct(LinkClick.ip_address)))
            .where(LinkClick.short_url_id == link.id, LinkClick.country.is_not(None))
            .group_by(LinkClick.country)
            .order_by(clicks.desc(), LinkClick.country.asc())
            .limit(limit)
        )
        return [
            {"country": country, "clicks": count, "unique_visitors": unique}
            for country, count, unique in result.all()
        ]

    async def top_referrers(self, link: ShortUrl, limit: int = 10) -> list[dict]:
        clicks = func.count(LinkClick.id)
        result = await self.session.execute(
            select(LinkClick.referer, clicks)
            .where(
                LinkClick.short_url_id == link.id,
                LinkClick.referer.is_not(None),
                LinkClick.referer != "",
            )
            .group_by(LinkClick.referer)
            .order_by(clicks.desc(), LinkClick.referer.asc())
            .limit(limit)
        )
        return [{"referer": referer, "clicks": count} for referer, count in result.all()]

    async def geographic_distribution(self, link: ShortUrl) -> list[dict]:
        total = await self.total_clicks(link)
        if total == 0:
            return []
        rows = await self.top_countries(link, limit=300)
        return [
            {
                "country": row["country"],
                "clicks": row["clicks"],
                "percentage": round(row["clicks"] * 100.0 / total, 2),
            }
            for row in rows
        ]

    async def browser_stats(self, link: ShortUrl) -> list[dict]:
        result = await self.session.execute(
            select(LinkClick.user_agent).where(
                LinkClick.short_url_id == link.id, LinkClick.user_agent.is_not(None)
            )
        )
        counts: Counter = Counter()
        for (user_agent,) in result.all():
            parsed = parse_user_agent(user_agent)
            counts[(parsed["device"], parsed["browser"])] += 1

        ordered = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
        return [
            {"device_type": device, "browser": browser, "clicks": count}
            for (device, browser), count in ordered
        ]

    async def peak_hours(self, link: ShortUrl, limit: int = 5) -> list[dict]:
        result = await self.session.execute(
            select(LinkClick.created_at).where(LinkClick.short_url_id == link.id)
        )
        hours = Counter(created_at.hour for (created_at,) in result.all())
        ordered = sorted(hours.items(), key=lambda item: (-item[1], item[0]))
        return [{"hour": hour, "clicks": count} for hour, count in ordered[:limit]]

    async def total_clicks(self, link: ShortUrl) -> int:
        result = await self.session.execute(
            select(func.count(LinkClick.id)).where(LinkClick.short_url_id == link.id)
        )
        return result.scalar_one()

    async def unique_visitors(self, link: ShortUrl, start: datetime | None = None) -> int:
        query = select(func.count(func.distinct(LinkClick.ip_address))).where(
            LinkClick.short_url_id == link.id
        )
        if start is not None:
            query = query.where(LinkClick.created_at >= start)
        result = await self.session.execute(query)
        return result.scalar_one()

    async def average_time_between_clicks(self, link: ShortUrl) -> float | None:
        """Mean gap in seconds between consecutive clicks, ``None`` below two clicks."""
        result = await self.session.execute(
            select(func.min(LinkClick.created_at), func.max(LinkClick.created_at), func.count(LinkClick.id))
            .where(LinkClick.short_url_id == link.id)
        )
        first, last, count = result.one()
        if count < 2:
            return None
        return (last - first).total_seconds() / (count - 1)

    async def detect_fraud(
        self,
        link: ShortUrl,
        window_minutes: int = FRAUD_WINDOW_MINUTES,
        max_clicks: int = FRAUD_MAX_CLICKS,
        now: datetime | None = None,
    ) -> bool:
        since = (now or utcnow()) - timedelta(minutes=window_minutes)
        result = await self.session.execute(
            select(func.count(LinkClick.id)).where(
                LinkClick.short_url_id == link.id, LinkClick.created_at > since
            )
        )
        return result.scalar_one() > max_clicks

    async def recent_clicks(self, link: ShortUrl, limit: int = 50) -> list[dict]:
        result = await self.session.execute(
            select(LinkClick)
            .where(LinkClick.short_url_id == link.id)
            .order_by(LinkClick.created_at.desc(), LinkClick.id.desc())
            .limit(limit)
        )
        clicks = []
        for click in result.scalars().all():
            clicks.append(
                {
                    "id": click.id,
                    "ip_address": click.ip_address,
                    "country": click.country,
                    "referer": click.referer,
                    "created_at": click.created_at.isoformat(),
                    **parse_user_agent(click.user_agent),
                }
            )
        return clicks

    async def summary(
        self,
        link: ShortUrl,
        start: datetime | None = None,
        end: datetime | None = None,
        group_by: str = "day",
    ) -> dict:
        return {
            "short_code": link.code,
            "total_clicks": link.clicks,
            "period_stats": await self.clicks_by_period(link, start, end, group_by),
            "top_countries": await self.top_countries(link),
            "top_referrers": await self.top_referrers(link),
            "browser_stats": await self.browser_stats(link),
            "peak_hours": await self.peak_hours(link),
            "unique_visitors": await self.unique_visitors(link, start),
            "average_time_between_clicks": await self.average_time_between_clicks(link),
            "suspicious_activity": await self.detect_fraud(link),
        }
