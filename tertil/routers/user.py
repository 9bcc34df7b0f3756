from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..services.identity import Identity
from ..services.programs import user_dashboard
from ..utils import require_authenticated_user

router = APIRouter(prefix="/api/user", tags=["user"])


@router.get("/dashboard")
async def dashboard(
    user=Depends(require_authenticated_user),
    db: AsyncSession = Depends(get_db),
):
    return await user_dashboard(db, Identity.from_user(user))
