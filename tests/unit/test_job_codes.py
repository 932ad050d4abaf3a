import pytest
from pydantic import ValidationError

from crewboard.core.templates import format_job_code
from crewboard.errors import InvalidJobCode
from crewboard.types import TemplateCreate


def test_job_code_is_client_number_and_version() -> None:
    assert format_job_code("ABC", 1) == "ABC-01A"
    assert format_job_code("xyz", 42, "b") == "XYZ-42B"


@pytest.mark.parametrize(
    "client_code,number,version",
    [("AB", 1, "A"), ("AB1", 1, "A"), ("ABC", 0, "A"), ("ABC", 100, "A"), ("ABC", 5, "AA")],
)
def test_job_code_rejects_malformed_parts(client_code: str, number: int, version: str) -> None:
    with pytest.raises(InvalidJobCode):
        format_job_code(client_code, number, version)


def test_template_payload_normalizes_client_code_and_days() -> None:
    payload = TemplateCreate(
        client_code=" abc ",
        title="Windows",
        available_days=["WED", "MON", "WED"],
    )
    assert payload.client_code == "ABC"
    assert payload.available_days == ["MON", "WED"]
    assert payload.status == "DRAFT"


def test_template_payload_rejects_bad_client_code_and_window() -> None:
    with pytest.raises(ValidationError):
        TemplateCreate(client_code="AB", title="Windows")
    with pytest.raises(ValidationError):
        TemplateCreate(client_code="ABC", title="Windows", time_window_start="12:00", time_window_end="09:00")


def test_template_payload_rejects_archived_on_create() -> None:
    with pytest.raises(ValidationError):
        TemplateCreate(client_code="ABC", title="Windows", status="ARCHIVED")
