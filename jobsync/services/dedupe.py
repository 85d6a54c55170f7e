from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Literal

from jobsync.services.records import JobRecord
from jobsync.services.repository import JobRepository

logger = logging.getLogger(__name__)

_PUNCTUATION_RE = re.compile(r"[^\w\s]")
_WHITESPACE_RE = re.compile(r"\s+")

DedupePass = Literal["exact", "content"]
REVIEW_REASON_PREFIX = "duplicate_of:"


@dataclass(slots=True)
class DedupeRow:
    id: str
    source: str
    external_id: str
    title: str
    company: str
    published_at: datetime | None
    updated_at: datetime
    relationship_count: int = 0


@dataclass(slots=True)
class DedupeGroupPlan:
    key: str
    survivor_id: str
    remove_ids: list[str] = field(default_factory=list)
    flag_ids: list[str] = field(default_factory=list)


@dataclass(slots=True)
class DedupePassReport:
    pass_name: DedupePass
    removed: int
    flagged: int
    groups: list[DedupeGroupPlan]

    def to_dict(self) -> dict[str, Any]:
        return {
            "pass_name": self.pass_name,
            "removed": self.removed,
            "flagged": self.flagged,
            "groups": [asdict(group) for group in self.groups],
        }


@dataclass(slots=True)
class BatchDedupeResult:
    records: list[JobRecord]
    skipped: int


def normalize_fingerprint_text(value: str | None) -> str:
    lowered = (value or "").lower()
    return _WHITESPACE_RE.sub(" ", _PUNCTUATION_RE.sub("", lowered)).strip()


def job_fingerprint(title: str | None, company: str | None) -> str:
    return f"{normalize_fingerprint_text(title)}|{normalize_fingerprint_text(company)}"


def quality_score(record: JobRecord) -> int:
    """Completeness score used to pick the better copy when a batch carries the same posting twice."""
    score = 10
    if record.description and len(record.description) > 100:
        score += 15
    if record.description_html:
        score += 5
    if record.salary_min or record.salary_max:
        score += 10
    if record.salary_min and record.salary_max:
        score += 5
    if record.requirements:
        score += 8
    if record.benefits:
        score += 7
    if record.company_logo:
        score += 5
    if record.company_url:
        score += 5
    if record.category:
        score += 5
    if record.tags:
        score += 5
    if record.experience_level:
        score += 5
    if record.employment_type:
        score += 5
    if record.location:
        score += 5
    if record.apply_url:
        score += 5
    if record.application_email:
        score += 3
    if record.published_at:
        score += 5
    return score


def _published_epoch(value: datetime | None) -> float:
    return value.timestamp() if value is not None else float("-inf")


def _better_record(current: JobRecord, candidate: JobRecord) -> JobRecord:
    current_score = quality_score(current)
    candidate_score = quality_score(candidate)
    if current_score != candidate_score:
        return current if current_score > candidate_score else candidate
    if _published_epoch(candidate.published_at) > _published_epoch(current.published_at):
        return candidate
    return current


def dedupe_batch(records: list[JobRecord]) -> BatchDedupeResult:
    """Collapse records sharing a title/company fingerprint, keeping the most complete one."""
    best: dict[str, JobRecord] = {}
    for record in records:
        fingerprint = job_fingerprint(record.title, record.company)
        existing = best.get(fingerprint)
        best[fingerprint] = record if existing is None else _better_record(existing, record)
    kept = list(best.values())
    return BatchDedupeResult(records=kept, skipped=len(records) - len(kept))


def _coerce_rows(rows: list[dict[str, Any]]) -> list[DedupeRow]:
    return [
        DedupeRow(
            id=str(row["id"]),
            source=row["source"],
            external_id=row["external_id"],
            title=row.get("title") or "",
            company=row.get("company") or "",
            published_at=row.get("published_at"),
            updated_at=row["updated_at"],
            relationship_count=int(row.get("relationship_count") or 0),
        )
        for row in rows
    ]


def _plan_groups(groups: dict[str, list[DedupeRow]]) -> list[DedupeGroupPlan]:
    plans: list[DedupeGroupPlan] = []
    for key in sorted(groups):
        members = groups[key]
        if len(members) < 2:
            continue
        survivor, *others = members
        plan = DedupeGroupPlan(key=key, survivor_id=survivor.id)
        for row in others:
            if row.relationship_count > 0:
                plan.flag_ids.append(row.id)
            else:
                plan.remove_ids.append(row.id)
        plans.append(plan)
    return plans


def plan_exact_dedupe(rows: list[DedupeRow]) -> list[DedupeGroupPlan]:
    """Group by (source, external_id); the most recently updated member survives, smallest id on ties."""
    groups: dict[str, list[DedupeRow]] = {}
    for row in rows:
        groups.setdefault(f"{row.source}:{row.external_id}", []).append(row)
    for members in groups.values():
        members.sort(key=lambda row: row.id)
        members.sort(key=lambda row: row.updated_at.timestamp(), reverse=True)
    return _plan_groups(groups)


def plan_content_dedupe(rows: list[DedupeRow]) -> list[DedupeGroupPlan]:
    """Group by trimmed, lower-cased (title, company); latest published_at wins, then latest updated_at, then id."""
    groups: dict[str, list[DedupeRow]] = {}
    for row in rows:
        key = f"{row.title.strip().lower()}|{row.company.strip().lower()}"
        groups.setdefault(key, []).append(row)
    for members in groups.values():
        members.sort(key=lambda row: row.id)
        members.sort(
            key=lambda row: (_published_epoch(row.published_at), row.updated_at.timestamp()),
            reverse=True,
        )
    return _plan_groups(groups)


class DedupEngine:
    def __init__(self, repository: JobRepository) -> None:
        self.repository = repository

    async def remove_exact_duplicates(self) -> DedupePassReport:
        return await self._run_pass("exact")

    async def remove_content_duplicates(self) -> DedupePassReport:
        return await self._run_pass("content")

    async def run(self) -> list[DedupePassReport]:
        return [await self.remove_exact_duplicates(), await self.remove_content_duplicates()]

    async def _run_pass(self, pass_name: DedupePass) -> DedupePassReport:
        rows = _coerce_rows(await self.repository.list_dedupe_rows())
        plans = plan_exact_dedupe(rows) if pass_name == "exact" else plan_content_dedupe(rows)

        remove_ids = [job_id for plan in plans for job_id in plan.remove_ids]
        reasons = {job_id: f"{REVIEW_REASON_PREFIX}{plan.survivor_id}" for plan in plans for job_id in plan.flag_ids}

        removed = await self.repository.delete_jobs(remove_ids)
        flagged = await self.repository.flag_jobs_for_review(reasons)
        if removed or flagged:
            logger.info(
                "Dedupe pass=%s groups=%s removed=%s flagged_for_review=%s",
                pass_name,
                len(plans),
                removed,
                flagged,
            )
        return DedupePassReport(pass_name=pass_name, removed=removed, flagged=flagged, groups=plans)
