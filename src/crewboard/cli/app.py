from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date
from pathlib import Path

import typer
import uvicorn
from pydantic import ValidationError as PayloadError

from crewboard.api.app import create_app
from crewboard.config import get_settings
from crewboard.core.generator import SessionGenerator
from crewboard.core.templates import TemplateService, serialize_template
from crewboard.core.views import SessionViews
from crewboard.db.init import init_database
from crewboard.db.session import SessionLocal
from crewboard.errors import CrewboardError
from crewboard.logging_config import configure_logging
from crewboard.types import Actor, TemplateCreate

app = typer.Typer(help="Crewboard CLI")
templates_app = typer.Typer(help="Author and publish job templates")
sessions_app = typer.Typer(help="Generate and inspect job sessions")

app.add_typer(templates_app, name="templates")
app.add_typer(sessions_app, name="sessions")

_INITIALIZED = False


def ensure_initialized() -> None:
    global _INITIALIZED
    if _INITIALIZED:
        return
    init_database()
    _INITIALIZED = True


@contextmanager
def reporting_errors() -> Iterator[None]:
    try:
        yield
    except CrewboardError as exc:
        typer.echo(json.dumps({"error": exc.to_dict()}, indent=2), err=True)
        raise typer.Exit(code=1) from exc


def _parse_date(value: str | None) -> date | None:
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise typer.BadParameter(f"expected YYYY-MM-DD, got {value!r}") from exc


@app.command("init")
def init_cmd() -> None:
    """Initialize database and data directories."""
    configure_logging()
    result = init_database()
    typer.echo(json.dumps({"ok": True, **result}, indent=2))


@templates_app.command("import")
def templates_import(
    file: Path = typer.Option(..., "--file", exists=True, readable=True),
    employer_id: int = typer.Option(..., "--employer-id"),
) -> None:
    """Create templates from a JSON object or list of objects."""
    configure_logging()
    ensure_initialized()
    payload = json.loads(file.read_text(encoding="utf-8"))
    items = payload if isinstance(payload, list) else [payload]
    actor = Actor(id=employer_id, role="employer")

    imported = []
    with SessionLocal() as db, reporting_errors():
        service = TemplateService(db)
        for item in items:
            try:
                data = TemplateCreate.model_validate(item)
            except PayloadError as exc:
                typer.echo(json.dumps({"error": {"kind": "InvalidPayload", "message": str(exc)}}), err=True)
                raise typer.Exit(code=1) from exc
            template = service.create_template(actor, data)
            imported.append({"id": template.id, "job_code": template.job_code, "status": template.status})
    typer.echo(json.dumps({"imported": imported}, indent=2))


@templates_app.command("list")
def templates_list(
    employer_id: int | None = typer.Option(None, "--employer-id"),
    status: str | None = typer.Option(None, "--status"),
) -> None:
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db:
        rows = TemplateService(db).list_templates(employer_id=employer_id, status=status)
        typer.echo(json.dumps([serialize_template(row) for row in rows], indent=2))


@templates_app.command("activate")
def templates_activate(
    template_id: int = typer.Option(..., "--template-id"),
    employer_id: int = typer.Option(..., "--employer-id"),
) -> None:
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db, reporting_errors():
        template = TemplateService(db).activate_template(template_id, Actor(id=employer_id, role="employer"))
        typer.echo(json.dumps(serialize_template(template), indent=2))


@templates_app.command("archive")
def templates_archive(
    template_id: int = typer.Option(..., "--template-id"),
    employer_id: int = typer.Option(..., "--employer-id"),
) -> None:
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db, reporting_errors():
        template = TemplateService(db).archive_template(template_id, Actor(id=employer_id, role="employer"))
        typer.echo(json.dumps(serialize_template(template), indent=2))


@sessions_app.command("generate")
def sessions_generate(
    template_id: int = typer.Option(..., "--template-id"),
    horizon_days: int | None = typer.Option(None, "--horizon-days"),
    start: str | None = typer.Option(None, "--start", help="First date of the window, YYYY-MM-DD"),
) -> None:
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db, reporting_errors():
        created = SessionGenerator(db).generate(template_id, horizon_days, start=_parse_date(start))
        typer.echo(
            json.dumps(
                {
                    "template_id": template_id,
                    "created": [
                        {"id": row.id, "session_code": row.session_code, "scheduled_date": row.scheduled_date.isoformat()}
                        for row in created
                    ],
                },
                indent=2,
            )
        )


@sessions_app.command("generate-all")
def sessions_generate_all(
    horizon_days: int | None = typer.Option(None, "--horizon-days"),
    start: str | None = typer.Option(None, "--start"),
) -> None:
    """Generate sessions for every ACTIVE template."""
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db, reporting_errors():
        results = SessionGenerator(db).generate_all(horizon_days, start=_parse_date(start))
        typer.echo(json.dumps({"created": {str(key): value for key, value in results.items()}}, indent=2))


@sessions_app.command("list")
def sessions_list(
    employer_id: int | None = typer.Option(None, "--employer-id"),
    employee_id: int | None = typer.Option(None, "--employee-id"),
    customer_id: int | None = typer.Option(None, "--customer-id"),
    status: list[str] | None = typer.Option(None, "--status"),
) -> None:
    """List sessions; without a filter, shows the open marketplace."""
    configure_logging()
    ensure_initialized()
    statuses = status or None
    with SessionLocal() as db:
        views = SessionViews(db)
        if employer_id is not None:
            rows = views.employer_board(employer_id, statuses=statuses)
        elif employee_id is not None:
            rows = views.employee_schedule(employee_id, statuses=statuses)
        elif customer_id is not None:
            rows = views.customer_sessions(customer_id, statuses=statuses)
        else:
            rows = views.marketplace()
        typer.echo(json.dumps(rows, indent=2))


@sessions_app.command("show")
def sessions_show(session_id: int = typer.Option(..., "--session-id")) -> None:
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db, reporting_errors():
        views = SessionViews(db)
        typer.echo(
            json.dumps(
                {"session": views.session_detail(session_id), "events": views.event_log(session_id)},
                indent=2,
            )
        )


@app.command("serve")
def serve(
    host: str | None = typer.Option(None, "--host"),
    port: int | None = typer.Option(None, "--port"),
    log_level: str | None = typer.Option(None, "--log-level"),
) -> None:
    configure_logging(log_level)
    ensure_initialized()
    settings = get_settings()
    app_instance = create_app()
    uvicorn.run(
        app_instance,
        host=host or settings.app_host,
        port=port or settings.app_port,
        log_level=(log_level or settings.log_level).lower(),
    )
