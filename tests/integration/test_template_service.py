import pytest

from crewboard.core.templates import TemplateService
from crewboard.db.repositories import Repository
from crewboard.db.session import SessionLocal
from crewboard.errors import (
    IllegalTransition,
    InvalidJobCode,
    NotAuthorized,
    TemplateNotEditable,
    TemplateNotFound,
    ValidationError,
)
from crewboard.types import StepSpec, TemplateCreate, TemplateUpdate


def _payload(**overrides) -> TemplateCreate:
    data = {
        "client_code": "ABC",
        "title": "Kitchen deep clean",
        "customer_id": 100,
        "available_days": ["TUE"],
        "steps": [
            {"title": "Degrease", "checklist": [{"item_text": "Hood"}, {"item_text": "Stove"}]},
            {"title": "Floors", "step_order": 5},
        ],
    }
    data.update(overrides)
    return TemplateCreate.model_validate(data)


def test_create_allocates_sequential_job_codes_per_client(actors) -> None:
    with SessionLocal() as db:
        service = TemplateService(db)
        first = service.create_template(actors.employer, _payload())
        second = service.create_template(actors.employer, _payload())
        other = service.create_template(actors.employer, _payload(client_code="xyz"))

        assert (first.job_code, second.job_code, other.job_code) == ("ABC-01A", "ABC-02A", "XYZ-01A")
        assert first.status == "DRAFT"
        assert first.employer_id == actors.employer.id


def test_create_stores_ordered_steps_and_checklists(actors) -> None:
    with SessionLocal() as db:
        service = TemplateService(db)
        template = service.create_template(actors.employer, _payload())
        detail = service.get_template_detail(template.id)

        assert [(step["title"], step["step_order"]) for step in detail["steps"]] == [("Floors", 5), ("Degrease", 6)]
        assert [item["item_order"] for item in detail["steps"][1]["checklist"]] == [1, 2]
        assert detail["available_days"] == ["TUE"]


def test_client_number_range_is_bounded(actors) -> None:
    with SessionLocal() as db:
        service = TemplateService(db)
        Repository(db).add_template(
            employer_id=1,
            client_code="ABC",
            template_number="99",
            version_letter="A",
            job_code="ABC-99A",
            title="Last slot",
        )
        db.commit()
        with pytest.raises(InvalidJobCode):
            service.create_template(actors.employer, _payload())


def test_only_employers_author_templates(actors) -> None:
    with SessionLocal() as db:
        with pytest.raises(NotAuthorized):
            TemplateService(db).create_template(actors.customer, _payload())


def test_duplicate_step_orders_are_rejected(actors) -> None:
    with SessionLocal() as db:
        with pytest.raises(ValidationError):
            TemplateService(db).create_template(
                actors.employer,
                _payload(steps=[{"title": "A", "step_order": 1}, {"title": "B", "step_order": 1}]),
            )


def test_status_graph(actors) -> None:
    with SessionLocal() as db:
        service = TemplateService(db)
        template_id = service.create_template(actors.employer, _payload()).id

        assert service.activate_template(template_id, actors.employer).status == "ACTIVE"
        assert service.activate_template(template_id, actors.employer).status == "ACTIVE"
        assert service.archive_template(template_id, actors.employer).status == "ARCHIVED"
        with pytest.raises(IllegalTransition) as exc_info:
            service.activate_template(template_id, actors.employer)
        assert exc_info.value.details["subject"] == "template"

        kinds = [event.kind for event in Repository(db).list_events(template_id=template_id)]
        assert kinds == ["TemplateCreated", "TemplateActivated", "TemplateArchived"]


def test_draft_can_be_archived_directly(actors) -> None:
    with SessionLocal() as db:
        service = TemplateService(db)
        template_id = service.create_template(actors.employer, _payload()).id
        assert service.archive_template(template_id, actors.employer).status == "ARCHIVED"


def test_status_changes_require_owner(actors) -> None:
    with SessionLocal() as db:
        service = TemplateService(db)
        template_id = service.create_template(actors.employer, _payload()).id
        with pytest.raises(NotAuthorized):
            service.activate_template(template_id, actors.other_employer)
        with pytest.raises(TemplateNotFound):
            service.activate_template(999, actors.employer)


def test_update_applies_only_sent_fields(actors) -> None:
    with SessionLocal() as db:
        service = TemplateService(db)
        template_id = service.create_template(actors.employer, _payload(notes="bring ladder")).id
        service.activate_template(template_id, actors.employer)

        updated = service.update_template(
            template_id,
            actors.employer,
            TemplateUpdate.model_validate({"title": "Kitchen refresh", "available_days": ["FRI", "MON"]}),
        )
        assert updated.title == "Kitchen refresh"
        assert updated.available_days_json == ["MON", "FRI"]
        assert updated.notes == "bring ladder"

        cleared = service.update_template(
            template_id, actors.employer, TemplateUpdate.model_validate({"customer_id": None})
        )
        assert cleared.customer_id is None


def test_update_rejects_inverted_window_and_archived_templates(actors) -> None:
    with SessionLocal() as db:
        service = TemplateService(db)
        template_id = service.create_template(
            actors.employer, _payload(time_window_start="09:00", time_window_end="11:00")
        ).id
        with pytest.raises(ValidationError):
            service.update_template(
                template_id, actors.employer, TemplateUpdate.model_validate({"time_window_end": "08:00"})
            )

        service.archive_template(template_id, actors.employer)
        with pytest.raises(TemplateNotEditable):
            service.update_template(template_id, actors.employer, TemplateUpdate.model_validate({"title": "x"}))


def test_steps_replaceable_only_in_draft(actors) -> None:
    with SessionLocal() as db:
        service = TemplateService(db)
        template_id = service.create_template(actors.employer, _payload()).id

        service.replace_steps(template_id, actors.employer, [StepSpec(title="Only step")])
        detail = service.get_template_detail(template_id)
        assert [step["title"] for step in detail["steps"]] == ["Only step"]
        assert detail["steps"][0]["checklist"] == []

        service.activate_template(template_id, actors.employer)
        with pytest.raises(TemplateNotEditable):
            service.replace_steps(template_id, actors.employer, [StepSpec(title="Late change")])
