from datetime import datetime, timedelta, timezone
from sqlalchemy import Column, String, Boolean, Integer, ForeignKey, DateTime, Index
from sqlalchemy.orm import declarative_base, relationship

from config import BASE_URL

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


def expires_in_days(days: int) -> datetime:
    return utcnow() + timedelta(days=days)


def to_naive_utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class ShortUrl(Base):
    __tablename__ = "short_urls"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=True, index=True)
    long_url = Column(String(2048), nullable=False)
    # Custom aliases are stored here as well, so this constraint covers the whole namespace
    short_code = Column(String(64), unique=True, nullable=False, index=True)
    custom_alias = Column(String(64), unique=True, nullable=True)
    clicks = Column(Integer, nullable=False, default=0)
    qr_code_path = Column(String(255), nullable=True)
    expires_at = Column(DateTime, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    link_clicks = relationship(
        "LinkClick",
        back_populates="short_url",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at < (now or utcnow())

    def is_active_and_not_expired(self) -> bool:
        return bool(self.is_active) and not self.is_expired()

    @property
    def code(self) -> str:
        return self.custom_alias or self.short_code

    @property
    def short_url(self) -> str:
        return f"{BASE_URL}/{self.code}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "short_url": self.short_url,
            "short_code": self.short_code,
            "custom_alias": self.custom_alias,
            "long_url": self.long_url,
            "clicks": self.clicks,
            "is_active": self.is_active,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class LinkClick(Base):
    __tablename__ = "link_clicks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    short_url_id = Column(
        Integer, ForeignKey("short_urls.id", ondelete="CASCADE"), nullable=False, index=True
    )
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(String(512), nullable=True)
    referer = Column(String(2048), nullable=True)
    country = Column(String(2), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    short_url = relationship("ShortUrl", back_populates="link_clicks")

    __table_args__ = (
        Index("ix_link_clicks_short_url_id_created_at", "short_url_id", "created_at"),
    )
