from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..schemas import (
    AvailabilityResponse,
    CompleteRequest,
    CompletionResponse,
    JoinRequest,
    JoinResponse,
    ParticipantsResponse,
)
from ..services.assignment import (
    check_and_join,
    get_availability_snapshot,
    get_participants,
    mark_complete,
    rebuild_participations,
)
from ..services.identity import Identity
from ..utils import get_identity, require_admin_user

router = APIRouter(prefix="/api/programs", tags=["reservations"])
admin_router = APIRouter(prefix="/api/admin/programs", tags=["admin", "reservations"])


@router.post("/{program_id}/join", response_model=JoinResponse)
async def join_program(
    program_id: str,
    payload: JoinRequest,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    result = await check_and_join(
        db,
        program_id,
        identity,
        [s.to_selection() for s in payload.selections],
        guest_name=payload.guest_name,
        participant_name=payload.participant_name,
    )
    return result.to_dict()


@router.put("/{program_id}/join", response_model=CompletionResponse)
async def complete_parts(
    program_id: str,
    payload: CompleteRequest,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    result = await mark_complete(
        db,
        program_id,
        identity,
        [s.to_selection() for s in payload.selections],
        guest_name=payload.guest_name,
        acting_as_owner_for=payload.acting_as_owner_for,
    )
    return result.to_dict()


@router.get("/{program_id}/participants", response_model=ParticipantsResponse)
async def program_participants(
    program_id: str,
    export_format: Optional[Literal["text", "whatsapp"]] = Query(None, alias="format"),
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    view = await get_participants(db, program_id, identity)
    if export_format:
        # plain-text list for sharing in chat apps
        return PlainTextResponse(view.export(export_format))
    return view.to_dict()


@router.get("/{program_id}/availability", response_model=AvailabilityResponse)
async def program_availability(
    program_id: str,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    return await get_availability_snapshot(db, program_id, identity)


@admin_router.post("/{program_id}/participations/rebuild")
async def admin_rebuild_participations(
    program_id: str,
    admin=Depends(require_admin_user),
    db: AsyncSession = Depends(get_db),
):
    return await rebuild_participations(db, program_id, Identity.from_user(admin))
