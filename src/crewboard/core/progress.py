from __future__ import annotations

import logging

from crewboard.core.service import ServiceBase
from crewboard.db.base import utc_now
from crewboard.db.models import JobSession
from crewboard.errors import (
    ChecklistItemNotFound,
    SessionLocked,
    SessionNotActive,
    StepLocked,
    StepNotFound,
    StepNotInTemplate,
)
from crewboard.types import LOCKED_STATUSES, Actor, CompletionSummary, StepCompletion

logger = logging.getLogger(__name__)


class ProgressTracker(ServiceBase):
    """Per-step and per-checklist-item progress of IN_PROGRESS sessions.

    Completion figures are always derived from the progress rows and the
    template's step/item counts; nothing cached on the session is trusted.
    """

    def toggle_step(self, session_id: int, step_id: int, completed: bool, actor: Actor) -> CompletionSummary:
        job_session = self._load_session(session_id)
        step = self.repo.get_step(step_id)
        if step is None:
            raise StepNotFound(step_id, session_id=session_id)
        if step.template_id != job_session.template_id:
            raise StepNotInTemplate(session_id=session_id, template_id=job_session.template_id, step_id=step_id)
        self._require_assignee(actor, job_session)
        self._require_in_progress(job_session)

        progress = self.repo.get_step_progress(session_id, step_id)
        if progress is not None and progress.is_completed == completed:
            return self.compute_completion(session_id)

        now = utc_now()
        if progress is None:
            self.repo.add_step_progress(session_id, step_id, completed=completed, at=now)
        elif not self.repo.set_step_progress(session_id, step_id, completed=completed, at=now):
            self._raise_for_current_status(session_id)

        event = self._record(
            "StepToggled",
            actor=actor,
            session_id=session_id,
            template_id=job_session.template_id,
            payload={"step_id": step_id, "completed": completed},
        )
        self.repo.commit()
        self._publish([event])
        logger.info("Step toggled session_id=%s step_id=%s completed=%s", session_id, step_id, completed)
        return self.compute_completion(session_id)

    def toggle_checklist_item(self, session_id: int, item_id: int, checked: bool, actor: Actor) -> CompletionSummary:
        job_session = self._load_session(session_id)
        item = self.repo.get_checklist_item(item_id)
        if item is None:
            raise ChecklistItemNotFound(item_id, session_id=session_id)
        step = self.repo.get_step(item.step_id)
        if step is None or step.template_id != job_session.template_id:
            raise StepNotInTemplate(session_id=session_id, template_id=job_session.template_id, item_id=item_id)
        self._require_assignee(actor, job_session)
        self._require_in_progress(job_session)

        step_progress = self.repo.get_step_progress(session_id, step.id)
        if step_progress is not None and step_progress.is_completed:
            raise StepLocked(session_id=session_id, step_id=step.id)

        progress = self.repo.get_checklist_progress(session_id, item_id)
        if progress is not None and progress.is_checked == checked:
            return self.compute_completion(session_id)

        now = utc_now()
        if progress is None:
            self.repo.add_checklist_progress(session_id, item_id, checked=checked, at=now)
        elif not self.repo.set_checklist_progress(session_id, item_id, checked=checked, at=now):
            self._raise_for_current_status(session_id)

        event = self._record(
            "ChecklistItemToggled",
            actor=actor,
            session_id=session_id,
            template_id=job_session.template_id,
            payload={"item_id": item_id, "step_id": step.id, "checked": checked},
        )
        self.repo.commit()
        self._publish([event])
        logger.info("Checklist item toggled session_id=%s item_id=%s checked=%s", session_id, item_id, checked)
        return self.compute_completion(session_id)

    def compute_completion(self, session_id: int) -> CompletionSummary:
        job_session = self._load_session(session_id)
        template_id = job_session.template_id
        steps = self.repo.list_steps(template_id)
        items = self.repo.list_checklist_items(template_id)
        completed = self.repo.completed_step_ids(session_id, template_id)
        checked = self.repo.checked_item_ids(session_id, template_id)

        items_by_step: dict[int, list[int]] = {}
        for item in items:
            items_by_step.setdefault(item.step_id, []).append(item.id)

        breakdown = [
            StepCompletion(
                step_id=step.id,
                step_order=step.step_order,
                title=step.title,
                is_completed=step.id in completed,
                items_checked=sum(1 for item_id in items_by_step.get(step.id, []) if item_id in checked),
                items_total=len(items_by_step.get(step.id, [])),
            )
            for step in steps
        ]
        return CompletionSummary(
            session_id=session_id,
            steps_completed=len(completed),
            steps_total=len(steps),
            items_checked=len(checked),
            items_total=len(items),
            steps=breakdown,
        )

    def _require_in_progress(self, job_session: JobSession) -> None:
        if job_session.status in LOCKED_STATUSES:
            raise SessionLocked(session_id=job_session.id, status=job_session.status)
        if job_session.status != "IN_PROGRESS":
            raise SessionNotActive(session_id=job_session.id, status=job_session.status)

    def _raise_for_current_status(self, session_id: int) -> None:
        # The guarded update found the session outside IN_PROGRESS.
        self.repo.rollback()
        current = self.repo.reload_session(session_id)
        self._require_in_progress(current)
        raise SessionNotActive(session_id=session_id, status=current.status)
