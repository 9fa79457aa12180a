from __future__ import annotations

from datetime import date

from sqlalchemy import Date, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.campus.models import Base, BlameMixin, SoftDeleteMixin

EXPIRING_SOON_DAYS = 7


class Publication(BlameMixin, SoftDeleteMixin, Base):
    __tablename__ = "publications"
    __table_args__ = (
        Index("idx_publications_expires_at", "expires_at"),
    )

    attachment_owner_type = "publication"
    audit_prefix = "publication"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    university_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    year: Mapped[str | None] = mapped_column(String(16), nullable=True)
    expires_at: Mapped[date | None] = mapped_column(Date, nullable=True)

    def is_expired(self, today: date | None = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at < (today or date.today())

    def days_until_expiration(self, today: date | None = None) -> int | None:
        if self.expires_at is None:
            return None
        return (self.expires_at - (today or date.today())).days

    def expiration_status(self, today: date | None = None) -> str:
        if self.expires_at is None:
            return "permanent"
        if self.is_expired(today):
            return "expired"
        days = self.days_until_expiration(today)
        if days is not None and days <= EXPIRING_SOON_DAYS:
            return "expiring_soon"
        return "active"
