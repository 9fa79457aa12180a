from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from flask import current_app, jsonify, request
from sqlalchemy.orm import Query

from app.campus.errors import ValidationError

MAX_PER_PAGE = 100


def request_payload() -> dict[str, Any]:
    """JSON body or form fields, whichever the client sent."""
    if request.is_json:
        data = request.get_json(silent=True)
        return data if isinstance(data, dict) else {}
    return request.form.to_dict()


def clean_str(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def parse_date(s: Any, *, field: str) -> date | None:
    """
    Parse YYYY-MM-DD, optionally followed by an ISO time part (`T...`).
    Empty means None; anything else is a field error.
    """
    if isinstance(s, datetime):
        return s.date()
    if isinstance(s, date):
        return s
    raw = clean_str(s)
    if not raw:
        return None
    date_part, sep, _time_part = raw.partition("T")
    try:
        if len(date_part) != 10:
            raise ValueError(raw)
        value = date.fromisoformat(date_part)
        if sep:
            datetime.fromisoformat(raw)
        return value
    except ValueError:
        raise ValidationError({field: ["Must be a valid date (YYYY-MM-DD)."]})


def parse_int(s: Any, *, field: str, default: int | None = None, minimum: int | None = None) -> int | None:
    raw = clean_str(s)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValidationError({field: ["Must be an integer."]})
    if minimum is not None and value < minimum:
        raise ValidationError({field: [f"Must be at least {minimum}."]})
    return value


def parse_bool(s: Any) -> bool | None:
    raw = clean_str(s).lower()
    if not raw:
        return None
    return raw in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Page:
    items: list[Any]
    total: int
    page: int
    per_page: int

    @property
    def last_page(self) -> int:
        return max(1, -(-self.total // self.per_page))

    def meta(self) -> dict[str, Any]:
        first = (self.page - 1) * self.per_page + 1 if self.items else None
        return {
            "current_page": self.page,
            "last_page": self.last_page,
            "per_page": self.per_page,
            "total": self.total,
            "from": first,
            "to": (first + len(self.items) - 1) if first else None,
        }


def paginate(q: Query, *, page: int = 1, per_page: int = 15) -> Page:
    page = max(1, page)
    per_page = max(1, min(per_page, MAX_PER_PAGE))
    total = q.order_by(None).count()
    items = q.limit(per_page).offset((page - 1) * per_page).all()
    return Page(items=items, total=total, page=page, per_page=per_page)


def page_args(args: dict[str, Any] | None = None) -> tuple[int, int]:
    args = args if args is not None else request.args
    default = int(current_app.config.get("PER_PAGE_DEFAULT") or 15)
    page = parse_int(args.get("page"), field="page", default=1, minimum=1) or 1
    per_page = parse_int(args.get("per_page"), field="per_page", default=default, minimum=1) or default
    return page, per_page


def ok(data: Any = None, message: str = "OK", status: int = 200, **extra: Any):
    body: dict[str, Any] = {"success": True, "message": message}
    if data is not None:
        body["data"] = data
    body.update(extra)
    return jsonify(body), status


def iso(value: date | datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
