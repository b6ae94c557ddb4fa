"""
SQLAlchemy models for the durable refresh-token store.
One row per cache key (client_id, scope, audience, partition).
"""
from datetime import datetime, timezone

from sqlalchemy import DateTime, Float, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class RefreshTokenRecord(Base):
    __tablename__ = "refresh_tokens"
    __table_args__ = (
        UniqueConstraint("client_id", "scope", "audience", "storage_partition", name="uq_refresh_tokens_key"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    client_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    scope: Mapped[str] = mapped_column(Text, nullable=False)  # space-separated
    audience: Mapped[str] = mapped_column(String(255), nullable=False)
    # "" = shared partition
    partition: Mapped[str] = mapped_column("storage_partition", String(255), nullable=False, default="")
    token: Mapped[str] = mapped_column(Text, nullable=False)
    # 0 = provider gave no lifetime
    expires_in: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    issued_at: Mapped[float] = mapped_column(Float, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now, onupdate=_utc_now)
