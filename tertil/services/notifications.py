"""Program lifecycle emails ("approved", "completed").

Both are dispatched with ``spawn`` after the state change has been committed;
nothing in here may raise back into the request.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from fastapi.templating import Jinja2Templates

from tertil.background import run_sync
from tertil.database import async_session_maker
from tertil.models import Program, User
from tertil.services.mailer import send_email
from tertil.settings.config import settings

logger = logging.getLogger(__name__)
TEMPLATES_DIR = Path(__file__).resolve().parents[2] / "templates"
templates = Jinja2Templates(directory=str(TEMPLATES_DIR))


@dataclass(slots=True)
class _ProgramMailContext:
    recipient_name: str
    program_title: str
    program_url: str
    app_name: str


async def _load(program_id: int) -> tuple[Program | None, User | None]:
    async with async_session_maker() as session:
        program = await session.get(Program, program_id)
        if program is None:
            return None, None
        creator = await session.get(User, program.created_by)
        return program, creator


def _context(program: Program, creator: User) -> _ProgramMailContext:
    return _ProgramMailContext(
        recipient_name=(creator.first_name or creator.email or "there").strip(),
        program_title=program.title,
        program_url=f"{settings.BASE_URL.rstrip('/')}/programs/{program.id}",
        app_name=settings.APP_NAME,
    )


async def _send_program_mail(program_id: int, template: str, subject: str) -> bool:
    program, creator = await _load(program_id)
    if not program or not creator or not (creator.email or "").strip():
        logger.debug("%s: program %s or its creator missing, skipping", template, program_id)
        return False

    ctx = _context(program, creator)
    values = {
        "recipient_name": ctx.recipient_name,
        "program_title": ctx.program_title,
        "program_url": ctx.program_url,
        "app_name": ctx.app_name,
    }
    try:
        html_body = templates.get_template(f"email/{template}.html").render(values)
    except Exception:  # noqa: BLE001
        logger.exception("%s: failed to render HTML template", template)
        html_body = None
    try:
        text_body = templates.get_template(f"email/{template}.txt").render(values)
    except Exception:  # noqa: BLE001
        logger.exception("%s: failed to render text template", template)
        text_body = f"{ctx.recipient_name},\n\n{subject}: {ctx.program_title}\n{ctx.program_url}\n"

    try:
        return await run_sync(
            send_email,
            creator.email,
            subject=f"{subject} - {ctx.app_name}",
            text_body=text_body,
            html_body=html_body,
        )
    except Exception:  # noqa: BLE001
        logger.exception("%s: failed to send email to %s", template, creator.email)
        return False


async def notify_program_approved(program_id: int) -> bool:
    return await _send_program_mail(program_id, "program_approved", "Your program has been approved")


async def notify_program_completed(program_id: int) -> bool:
    return await _send_program_mail(program_id, "program_completed", "Program completed")


__all__ = ["notify_program_approved", "notify_program_completed"]
