"""
Column patterns and the weekly pivot.

Wide sheets carry one column per week (``1/6``, ``1/13``, ...). Active
column patterns of category ``weekly`` pick those headers out; each matching
cell becomes one ``WeeklyStatus`` row keyed by (partner, Monday of that week).
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Callable, Iterable, List, Mapping, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tributary.models import ColumnPattern, WeeklyStatus

from .errors import SyncConfigurationError
from .results import SyncError
from .transforms import parse_date_string

WEEKLY_CATEGORY = "weekly"


@dataclass(frozen=True)
class PatternMatch:
    """Parsed ``match_config`` of a column pattern. All given criteria must hold."""

    contains: Tuple[str, ...] = ()
    starts_with: Tuple[str, ...] = ()
    matches_regex: re.Pattern | None = None
    matches_date: bool = False
    after_column: str | None = None

    @classmethod
    def from_config(cls, raw: Mapping[str, Any] | None) -> "PatternMatch":
        raw = raw or {}

        def _strings(value) -> Tuple[str, ...]:
            if value is None:
                return ()
            if isinstance(value, str):
                return (value.lower(),)
            return tuple(str(item).lower() for item in value)

        regex = None
        if raw.get("matches_regex"):
            try:
                regex = re.compile(str(raw["matches_regex"]), re.IGNORECASE)
            except re.error as exc:
                raise SyncConfigurationError(f"Invalid column pattern regex {raw['matches_regex']!r}: {exc}") from exc
        return cls(
            contains=_strings(raw.get("contains")),
            starts_with=_strings(raw.get("starts_with")),
            matches_regex=regex,
            matches_date=bool(raw.get("matches_date", False)),
            after_column=(str(raw["after_column"]).strip().lower() if raw.get("after_column") else None),
        )

    @property
    def has_criteria(self) -> bool:
        return bool(self.contains or self.starts_with or self.matches_regex or self.matches_date)

    def matches(self, header: str, index: int, headers: Sequence[str], *, today: date | None = None) -> bool:
        text = header.strip()
        lowered = text.lower()
        if not text or not self.has_criteria:
            return False
        if self.after_column is not None:
            anchor = next((i for i, h in enumerate(headers) if h.strip().lower() == self.after_column), None)
            if anchor is None or index <= anchor:
                return False
        if self.contains and not any(token in lowered for token in self.contains):
            return False
        if self.starts_with and not any(lowered.startswith(token) for token in self.starts_with):
            return False
        if self.matches_regex is not None and not self.matches_regex.search(text):
            return False
        if self.matches_date and parse_date_string(text, today=today) is None:
            return False
        return True


@dataclass(frozen=True)
class ColumnPatternRule:
    id: int
    name: str
    category: str
    priority: int
    match: PatternMatch

    @classmethod
    def from_model(cls, pattern: ColumnPattern) -> "ColumnPatternRule":
        return cls(
            id=pattern.id,
            name=pattern.pattern_name,
            category=pattern.category,
            priority=pattern.priority,
            match=PatternMatch.from_config(pattern.match_config),
        )


@dataclass(frozen=True)
class WeeklyColumn:
    index: int
    header: str
    week_start: date


def week_start(value: date) -> date:
    """Monday of the week containing ``value``."""
    return value - timedelta(days=value.weekday())


def select_weekly_columns(
    headers: Sequence[str],
    patterns: Iterable[ColumnPatternRule],
    *,
    mapped_weekly: Iterable[str] = (),
    excluded: Iterable[str] = (),
    today: date | None = None,
) -> List[WeeklyColumn]:
    """
    Headers that parse as dates and match the highest-priority weekly pattern.

    Columns explicitly mapped with the weekly category are included without a
    pattern. Only the first column for a given Monday is kept.
    """
    weekly_rules = sorted(
        (rule for rule in patterns if rule.category == WEEKLY_CATEGORY),
        key=lambda rule: -rule.priority,
    )
    mapped = {header.strip().lower() for header in mapped_weekly}
    skipped = {header.strip().lower() for header in excluded}

    columns: List[WeeklyColumn] = []
    seen_weeks: set[date] = set()
    for index, header in enumerate(headers):
        lowered = header.strip().lower()
        if not lowered or lowered in skipped:
            continue
        matched = lowered in mapped or any(rule.match.matches(header, index, headers, today=today) for rule in weekly_rules)
        if not matched:
            continue
        parsed = parse_date_string(header, today=today)
        if parsed is None:
            continue
        monday = week_start(parsed)
        if monday in seen_weeks:
            continue
        seen_weeks.add(monday)
        columns.append(WeeklyColumn(index=index, header=header, week_start=monday))
    return columns


@dataclass
class WeeklyPivotSummary:
    created: int = 0
    updated: int = 0
    warnings: List[SyncError] = field(default_factory=list)


def _upsert_weekly_status(session: Session, partner_id: int, week: date, value: str) -> str | None:
    existing = (
        session.query(WeeklyStatus).filter_by(partner_id=partner_id, week_start_date=week).one_or_none()
    )
    if existing is None:
        iso_year, iso_week, _ = week.isocalendar()
        session.add(
            WeeklyStatus(
                partner_id=partner_id,
                week_start_date=week,
                week_number=iso_week,
                year=iso_year,
                status=value,
            )
        )
        session.flush()
        return "created"
    if existing.status != value:
        existing.status = value
        session.flush()
        return "updated"
    return None


def pivot_weekly_statuses(
    session: Session,
    *,
    rows: Sequence[Sequence[str]],
    columns: Sequence[WeeklyColumn],
    key_index: int,
    first_row_number: int,
    resolve_partner_id: Callable[[str], int | None],
    check_cancelled: Callable[[], None] = lambda: None,
) -> WeeklyPivotSummary:
    """Upsert one weekly status per (partner, week) for every non-empty weekly cell."""
    summary = WeeklyPivotSummary()
    if not columns:
        return summary

    for offset, row in enumerate(rows):
        check_cancelled()
        key_value = _cell(row, key_index).strip()
        if not key_value:
            continue
        partner_id = resolve_partner_id(key_value)
        if partner_id is None:
            continue
        row_number = first_row_number + offset
        for column in columns:
            value = _cell(row, column.index).strip()
            if not value:
                continue
            try:
                with session.begin_nested():
                    outcome = _upsert_weekly_status(session, partner_id, column.week_start, value)
            except SQLAlchemyError as exc:
                summary.warnings.append(
                    SyncError(
                        row=row_number,
                        column=column.header,
                        message=f"Weekly status upsert failed: {exc.__class__.__name__}: {exc}",
                        severity="warning",
                    )
                )
                continue
            if outcome == "created":
                summary.created += 1
            elif outcome == "updated":
                summary.updated += 1
    return summary


def _cell(row: Sequence[Any], index: int) -> str:
    if index < 0 or index >= len(row):
        return ""
    value = row[index]
    return "" if value is None else str(value)
