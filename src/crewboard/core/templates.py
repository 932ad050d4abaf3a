from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.exc import IntegrityError

from crewboard.core.locks import TEMPLATE_LOCKS
from crewboard.core.service import ServiceBase
from crewboard.db.models import JobTemplate
from crewboard.errors import (
    IllegalTransition,
    InvalidJobCode,
    JobCodeConflict,
    NotAuthorized,
    TemplateNotEditable,
    ValidationError,
)
from crewboard.types import Actor, StepSpec, TemplateCreate, TemplateUpdate, normalize_steps

logger = logging.getLogger(__name__)

TEMPLATE_TRANSITIONS: frozenset[tuple[str, str]] = frozenset(
    {
        ("DRAFT", "ACTIVE"),
        ("DRAFT", "ARCHIVED"),
        ("ACTIVE", "ARCHIVED"),
    }
)
EDITABLE_TEMPLATE_STATUSES: frozenset[str] = frozenset({"DRAFT", "ACTIVE"})
MAX_TEMPLATE_NUMBER = 99


def format_job_code(client_code: str, template_number: int, version_letter: str = "A") -> str:
    if len(client_code) != 3 or not client_code.isalpha():
        raise InvalidJobCode(f"client code {client_code!r} must be three letters")
    if not 1 <= template_number <= MAX_TEMPLATE_NUMBER:
        raise InvalidJobCode(f"template number {template_number} is outside 01..{MAX_TEMPLATE_NUMBER}")
    if len(version_letter) != 1 or not version_letter.isalpha():
        raise InvalidJobCode(f"version letter {version_letter!r} must be a single letter")
    return f"{client_code.upper()}-{template_number:02d}{version_letter.upper()}"


def _normalized(steps: list[StepSpec]) -> list[StepSpec]:
    try:
        return normalize_steps(steps)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc


class TemplateService(ServiceBase):
    def create_template(self, actor: Actor, payload: TemplateCreate) -> JobTemplate:
        if actor.role != "employer":
            raise NotAuthorized("only employers can author templates", actor_id=actor.id)
        steps = _normalized(payload.steps)

        with TEMPLATE_LOCKS.hold(("client", payload.client_code)):
            number = self.repo.max_template_number(payload.client_code) + 1
            job_code = format_job_code(payload.client_code, number)
            try:
                template = self.repo.add_template(
                    employer_id=actor.id,
                    customer_id=payload.customer_id,
                    client_code=payload.client_code,
                    template_number=f"{number:02d}",
                    version_letter="A",
                    job_code=job_code,
                    title=payload.title.strip(),
                    description=payload.description,
                    address=payload.address,
                    duration_minutes=payload.duration_minutes,
                    price_per_hour=payload.price_per_hour,
                    notes=payload.notes,
                    timezone=payload.timezone,
                    available_days_json=list(payload.available_days),
                    time_window_start=payload.time_window_start,
                    time_window_end=payload.time_window_end,
                    is_recurring=payload.is_recurring,
                    frequency_per_week=payload.frequency_per_week,
                    one_off_date=payload.one_off_date,
                    status=payload.status,
                )
                self.repo.add_steps(template.id, steps)
                event = self._record(
                    "TemplateCreated",
                    actor=actor,
                    template_id=template.id,
                    to_status=payload.status,
                    payload={"job_code": job_code, "steps": len(steps)},
                )
                self.repo.commit()
            except IntegrityError as exc:
                self.repo.rollback()
                raise JobCodeConflict(f"job code {job_code} was taken by a concurrent author") from exc

        self._publish([event])
        logger.info("Template created template_id=%s job_code=%s employer_id=%s", template.id, job_code, actor.id)
        return template

    def update_template(self, template_id: int, actor: Actor, payload: TemplateUpdate) -> JobTemplate:
        template = self._load_template(template_id)
        self._require_employer_owner(actor, template)
        if template.status not in EDITABLE_TEMPLATE_STATUSES:
            raise TemplateNotEditable(template_id=template_id, status=template.status, action="be edited")

        changes: dict[str, Any] = {}
        for field in payload.model_fields_set:
            value = getattr(payload, field)
            if field == "available_days":
                changes["available_days_json"] = list(value or [])
            elif field == "title":
                if value is None:
                    raise ValidationError("title cannot be cleared")
                changes["title"] = value.strip()
            elif field in {"description", "address", "notes"}:
                changes[field] = value or ""
            elif field in {"timezone", "is_recurring"} and value is None:
                continue
            else:
                changes[field] = value

        window_start = changes.get("time_window_start", template.time_window_start)
        window_end = changes.get("time_window_end", template.time_window_end)
        if window_start and window_end and window_end <= window_start:
            raise ValidationError("time_window_end must be after time_window_start")
        if not changes:
            return template

        for field, value in changes.items():
            setattr(template, field, value)
        event = self._record(
            "TemplateUpdated",
            actor=actor,
            template_id=template_id,
            payload={"fields": sorted(changes)},
        )
        self.repo.commit()
        self._publish([event])
        logger.info("Template updated template_id=%s fields=%s", template_id, sorted(changes))
        return self._load_template(template_id)

    def replace_steps(self, template_id: int, actor: Actor, steps: list[StepSpec]) -> JobTemplate:
        template = self._load_template(template_id)
        self._require_employer_owner(actor, template)
        if template.status != "DRAFT":
            raise TemplateNotEditable(template_id=template_id, status=template.status)
        normalized = _normalized(steps)

        self.repo.delete_steps(template_id)
        self.repo.add_steps(template_id, normalized)
        event = self._record(
            "StepsReplaced",
            actor=actor,
            template_id=template_id,
            payload={"steps": len(normalized)},
        )
        self.repo.commit()
        self._publish([event])
        return self._load_template(template_id)

    def activate_template(self, template_id: int, actor: Actor) -> JobTemplate:
        return self._set_status(template_id, actor, "ACTIVE")

    def archive_template(self, template_id: int, actor: Actor) -> JobTemplate:
        return self._set_status(template_id, actor, "ARCHIVED")

    def _set_status(self, template_id: int, actor: Actor, to_status: str) -> JobTemplate:
        template = self._load_template(template_id)
        self._require_employer_owner(actor, template)
        from_status = template.status
        if from_status == to_status:
            return template
        if (from_status, to_status) not in TEMPLATE_TRANSITIONS:
            raise IllegalTransition(from_status, to_status, subject="template")

        template.status = to_status
        event = self._record(
            "TemplateActivated" if to_status == "ACTIVE" else "TemplateArchived",
            actor=actor,
            template_id=template_id,
            from_status=from_status,
            to_status=to_status,
        )
        self.repo.commit()
        self._publish([event])
        logger.info("Template %s->%s template_id=%s", from_status, to_status, template_id)
        return self._load_template(template_id)

    def get_template_detail(self, template_id: int) -> dict[str, Any]:
        template = self._load_template(template_id)
        items_by_step: dict[int, list[dict[str, Any]]] = {}
        for item in self.repo.list_checklist_items(template_id):
            items_by_step.setdefault(item.step_id, []).append(
                {"id": item.id, "item_text": item.item_text, "item_order": item.item_order}
            )
        data = serialize_template(template)
        data["steps"] = [
            {
                "id": step.id,
                "step_order": step.step_order,
                "title": step.title,
                "description": step.description,
                "products_needed": step.products_needed,
                "checklist": items_by_step.get(step.id, []),
            }
            for step in self.repo.list_steps(template_id)
        ]
        return data

    def list_templates(self, *, employer_id: int | None = None, status: str | None = None) -> list[JobTemplate]:
        return self.repo.list_templates(employer_id=employer_id, status=status)


def serialize_template(template: JobTemplate) -> dict[str, Any]:
    return {
        "id": template.id,
        "employer_id": template.employer_id,
        "customer_id": template.customer_id,
        "job_code": template.job_code,
        "client_code": template.client_code,
        "title": template.title,
        "description": template.description,
        "address": template.address,
        "duration_minutes": template.duration_minutes,
        "price_per_hour": template.price_per_hour,
        "notes": template.notes,
        "timezone": template.timezone,
        "available_days": list(template.available_days_json or []),
        "time_window_start": template.time_window_start.isoformat() if template.time_window_start else None,
        "time_window_end": template.time_window_end.isoformat() if template.time_window_end else None,
        "is_recurring": template.is_recurring,
        "frequency_per_week": template.frequency_per_week,
        "one_off_date": template.one_off_date.isoformat() if template.one_off_date else None,
        "status": template.status,
    }
