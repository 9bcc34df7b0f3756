from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..schemas import ProgramCreate, ProgramCreated
from ..services import programs as program_service
from ..services.identity import Identity
from ..utils import get_identity, require_admin_user, require_authenticated_user

router = APIRouter(prefix="/api/programs", tags=["programs"])


@router.get("")
async def programs_list(
    status_filter: str = Query("active", alias="status"),
    program_type: Optional[str] = Query(None, alias="type"),
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    return await program_service.list_programs(
        db, status=status_filter, program_type=program_type, page=page, limit=limit
    )


@router.post("", response_model=ProgramCreated, status_code=status.HTTP_201_CREATED)
async def programs_create(
    payload: ProgramCreate,
    user=Depends(require_authenticated_user),
    db: AsyncSession = Depends(get_db),
):
    program = await program_service.create_program(db, Identity.from_user(user), **payload.model_dump())
    return ProgramCreated(
        id=program.id, title=program.title, status=program.status.value, is_approved=program.is_approved
    )


@router.get("/{program_id}")
async def programs_detail(
    program_id: str,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    return await program_service.program_detail(db, program_id, identity)


@router.delete("/{program_id}")
async def programs_delete(
    program_id: str,
    user=Depends(require_authenticated_user),
    db: AsyncSession = Depends(get_db),
):
    await program_service.delete_program(db, program_id, Identity.from_user(user))
    return {"ok": True}


@router.post("/{program_id}/approve")
async def programs_approve(
    program_id: str,
    admin=Depends(require_admin_user),
    db: AsyncSession = Depends(get_db),
):
    program = await program_service.approve_program(db, program_id, Identity.from_user(admin))
    return {"ok": True, "program": program_service.program_summary(program)}


@router.delete("/{program_id}/approve")
async def programs_reject(
    program_id: str,
    admin=Depends(require_admin_user),
    db: AsyncSession = Depends(get_db),
):
    program = await program_service.reject_program(db, program_id, Identity.from_user(admin))
    return {"ok": True, "program": program_service.program_summary(program)}


admin_router = APIRouter(prefix="/api/admin/programs", tags=["admin", "programs"])


@admin_router.get("")
async def admin_programs_overview(
    admin=Depends(require_admin_user),
    db: AsyncSession = Depends(get_db),
):
    return await program_service.admin_overview(db, Identity.from_user(admin))
