from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.exc import IntegrityError

from crewboard.core.locks import TEMPLATE_LOCKS
from crewboard.core.service import ServiceBase
from crewboard.db.models import DomainEvent, JobSession, JobTemplate
from crewboard.errors import InvalidHorizon, NoEligibleDays, TemplateNotActive
from crewboard.types import WEEKDAYS, Actor

logger = logging.getLogger(__name__)


def local_today(timezone: str) -> date:
    try:
        return datetime.now(ZoneInfo(timezone)).date()
    except ZoneInfoNotFoundError:
        logger.warning("Unknown timezone %r, falling back to UTC", timezone)
        return datetime.now(ZoneInfo("UTC")).date()


def format_session_code(job_code: str, sequence: int) -> str:
    return f"{job_code}-{sequence}"


def eligible_dates(
    *,
    start: date,
    horizon_days: int,
    available_days: Sequence[str],
    is_recurring: bool = True,
    frequency_per_week: int | None = None,
    one_off_date: date | None = None,
) -> list[date]:
    """Dates in ``[start, start + horizon_days)`` a template should run on.

    Recurring templates run on every date whose weekday is listed, capped at
    ``frequency_per_week`` per ISO week (earliest days win). Non-recurring
    templates run once, on ``one_off_date``, when it falls in the window.
    """
    end = start + timedelta(days=horizon_days)
    if not is_recurring:
        if one_off_date is not None and start <= one_off_date < end:
            return [one_off_date]
        return []

    wanted = {WEEKDAYS.index(day) for day in available_days}
    per_week: dict[tuple[int, int], int] = {}
    dates: list[date] = []
    current = start
    while current < end:
        if current.weekday() in wanted:
            iso = current.isocalendar()
            week = (iso[0], iso[1])
            if frequency_per_week is None or per_week.get(week, 0) < frequency_per_week:
                per_week[week] = per_week.get(week, 0) + 1
                dates.append(current)
        current += timedelta(days=1)
    return dates


class SessionGenerator(ServiceBase):
    def generate(
        self,
        template_id: int,
        horizon_days: int | None = None,
        *,
        start: date | None = None,
        actor: Actor | None = None,
    ) -> list[JobSession]:
        horizon = horizon_days if horizon_days is not None else self.settings.default_horizon_days
        if horizon < 1 or horizon > self.settings.max_horizon_days:
            raise InvalidHorizon(horizon, self.settings.max_horizon_days)

        template = self._load_template(template_id)
        if actor is not None:
            self._require_employer_owner(actor, template)
        if template.status != "ACTIVE":
            raise TemplateNotActive(template_id=template.id, status=template.status)
        if template.is_recurring and not template.available_days_json:
            raise NoEligibleDays(template_id=template.id)

        window_start = start or local_today(template.timezone)
        candidates = eligible_dates(
            start=window_start,
            horizon_days=horizon,
            available_days=template.available_days_json,
            is_recurring=template.is_recurring,
            frequency_per_week=template.frequency_per_week,
            one_off_date=template.one_off_date,
        )
        if not candidates:
            logger.info("No dates to generate template_id=%s start=%s horizon=%s", template.id, window_start, horizon)
            return []

        with TEMPLATE_LOCKS.hold(template.id):
            try:
                created, events = self._create_missing(template, candidates, actor)
            except IntegrityError:
                # Another process generated an overlapping slot first; recompute once.
                self.repo.rollback()
                logger.info("Generation raced on template_id=%s, retrying", template.id)
                created, events = self._create_missing(template, candidates, actor)

        self._publish(events)
        logger.info(
            "Generated %s sessions template_id=%s start=%s horizon=%s",
            len(created),
            template.id,
            window_start,
            horizon,
        )
        return [self.repo.get_session(session_id) for session_id in created]

    def _create_missing(
        self,
        template: JobTemplate,
        candidates: list[date],
        actor: Actor | None,
    ) -> tuple[list[int], list[DomainEvent]]:
        covered = self.repo.covered_dates(template.id, candidates[0], candidates[-1])
        sequence = self.repo.max_session_sequence(template.id)
        created: list[int] = []
        events: list[DomainEvent] = []
        for scheduled_date in candidates:
            if scheduled_date in covered:
                continue
            sequence += 1
            job_session = self.repo.add_session(
                template_id=template.id,
                sequence=sequence,
                session_code=format_session_code(template.job_code, sequence),
                scheduled_date=scheduled_date,
                scheduled_time=template.time_window_start,
                status="OFFERED",
            )
            created.append(job_session.id)
            events.append(
                self._record(
                    "SessionOffered",
                    actor=actor,
                    session_id=job_session.id,
                    template_id=template.id,
                    to_status="OFFERED",
                    payload={
                        "session_code": job_session.session_code,
                        "scheduled_date": scheduled_date.isoformat(),
                    },
                )
            )
        self.repo.commit()
        return created, events

    def generate_all(self, horizon_days: int | None = None, *, start: date | None = None) -> dict[int, int]:
        """Run generation for every ACTIVE template; used by the scheduler."""
        results: dict[int, int] = {}
        for template in self.repo.list_templates(status="ACTIVE", limit=10_000):
            try:
                results[template.id] = len(self.generate(template.id, horizon_days, start=start))
            except NoEligibleDays:
                logger.warning("Skipping template_id=%s: no eligible weekdays", template.id)
                results[template.id] = 0
        return results
