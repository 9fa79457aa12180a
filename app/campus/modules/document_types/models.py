from __future__ import annotations

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.campus.models import Base, BlameMixin, SoftDeleteMixin


class DocumentType(BlameMixin, SoftDeleteMixin, Base):
    __tablename__ = "document_types"

    audit_prefix = "document_type"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    # Unique across live and trashed rows.
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
