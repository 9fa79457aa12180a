from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING

from sqlalchemy import Date, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.campus.models import Base, BlameMixin, SoftDeleteMixin

if TYPE_CHECKING:
    from app.campus.modules.document_types.models import DocumentType


class Document(BlameMixin, SoftDeleteMixin, Base):
    __tablename__ = "documents"
    __table_args__ = (
        Index("idx_documents_status", "status"),
        Index("idx_documents_due_date", "due_date"),
    )

    attachment_owner_type = "document"
    audit_prefix = "document"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    # Free-text log; status changes append timestamped lines.
    comments: Mapped[str] = mapped_column(Text, nullable=False, default="")
    file_type: Mapped[str] = mapped_column(String(64), nullable=False, default="document")

    # Draft | Pending | Approved | Rejected | Archived (any -> any)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="Draft")

    document_type_id: Mapped[int | None] = mapped_column(
        ForeignKey("document_types.id", ondelete="SET NULL"),
        nullable=True,
    )
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    document_type: Mapped["DocumentType | None"] = relationship("DocumentType", lazy="selectin")

    def is_overdue(self, today: date | None = None) -> bool:
        today = today or date.today()
        return self.due_date is not None and self.due_date < today
