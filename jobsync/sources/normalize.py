"""Shared helpers that turn loosely-typed source payload values into canonical job fields."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any

from bs4 import BeautifulSoup

from jobsync.services.records import JobRecord

MIN_SALARY_VALUE = 100
DESCRIPTION_SUFFIX = "..."

_WHITESPACE_RE = re.compile(r"\s+")
_DIGITS_RE = re.compile(r"\d+")

# Ordered: the first matching bucket wins.
_CATEGORY_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("software-dev", ("engineer", "developer", "programming", "software")),
    ("data", ("data", "analytics", "machine learning", "ai ")),
    ("devops", ("devops", "sre", "infrastructure", "cloud")),
    ("design", ("design", "ux", "ui", "creative")),
    ("product", ("product",)),
    ("marketing", ("marketing", "seo", "growth")),
    ("sales", ("sales", "business development", "account")),
    ("customer-support", ("customer", "support", "success")),
    ("hr", ("hr", "human resources", "recruiting", "talent")),
    ("finance", ("finance", "accounting", "financial")),
    ("legal", ("legal", "compliance")),
    ("operations", ("operations", "ops")),
    ("writing", ("writing", "content", "copywriting", "editor")),
    ("qa", ("qa", "quality", "testing")),
    ("management", ("management", "manager", "director", "lead")),
)

_EXPERIENCE_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("entry", ("entry", "junior", "intern")),
    ("mid", ("mid", "intermediate")),
    ("senior", ("senior", "sr", "lead")),
    ("executive", ("executive", "director", "vp", "chief")),
)

_EMPLOYMENT_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("full-time", ("full",)),
    ("part-time", ("part",)),
    ("freelance", ("freelance",)),
    ("contract", ("contract",)),
    ("internship", ("intern",)),
    ("temporary", ("temp",)),
)


def coerce_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None


def coerce_text_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    items: list[str] = []
    for item in value:
        text = coerce_text(item)
        if text:
            items.append(text)
    return items


def coerce_salary(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = int(float(value))
    except (TypeError, ValueError):
        return None
    return amount if amount > MIN_SALARY_VALUE else None


def strip_html(html: str | None) -> str:
    if not html:
        return ""
    text = BeautifulSoup(html, "html.parser").get_text(separator=" ")
    return _WHITESPACE_RE.sub(" ", text).strip()


def parse_timestamp(value: Any) -> datetime | None:
    """Accept ISO-8601 strings, RFC 2822 dates and unix epochs (seconds or milliseconds)."""
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = value / 1000 if value > 10_000_000_000 else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        raw = value.strip()
        if not raw:
            return None
        try:
            dt = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            try:
                dt = parsedate_to_datetime(raw)
            except (TypeError, ValueError):
                return None
    else:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_salary_range(raw: str | None) -> tuple[int | None, int | None, str]:
    """Parse free-text salaries such as "$80,000 - $120,000" or "EUR 50k"; values of 100 or less are ignored."""
    if not raw:
        return None, None, "USD"

    cleaned = re.sub(r"[,\s]", "", raw).lower()
    currency = "USD"
    if "eur" in cleaned or "€" in cleaned:
        currency = "EUR"
    elif "gbp" in cleaned or "£" in cleaned:
        currency = "GBP"

    values = [int(match) for match in _DIGITS_RE.findall(cleaned)]
    values = [value for value in values if value > MIN_SALARY_VALUE]
    if not values:
        return None, None, currency
    return min(values), max(values), currency


def normalize_category(value: str | None) -> str | None:
    if not value:
        return None
    lowered = value.lower()
    for category, keywords in _CATEGORY_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return category
    return "other"


def normalize_experience_level(value: str | None) -> str | None:
    if not value:
        return None
    lowered = value.lower()
    for level, keywords in _EXPERIENCE_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return level
    return None


def normalize_employment_type(value: str | None) -> str:
    if not value:
        return "full-time"
    lowered = value.lower()
    for employment_type, keywords in _EMPLOYMENT_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return employment_type
    return "full-time"


def determine_location_type(is_remote: bool | None, location: str | None) -> str:
    if is_remote is True:
        return "remote"
    if location:
        lowered = location.lower()
        if "remote" in lowered:
            return "remote"
        if "hybrid" in lowered:
            return "hybrid"
    return "onsite"


def truncate_description(text: str | None, max_length: int = 5000) -> str:
    if not text:
        return ""
    if len(text) <= max_length:
        return text
    return text[:max_length] + DESCRIPTION_SUFFIX


def salary_range_warning(record: JobRecord) -> str | None:
    if record.salary_min is None or record.salary_max is None:
        return None
    if record.salary_min <= record.salary_max:
        return None
    return (
        f"{record.source}:{record.external_id} salary_min {record.salary_min} "
        f"exceeds salary_max {record.salary_max}"
    )
