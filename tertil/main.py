import os
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from passlib.hash import bcrypt
from sqlalchemy import select

from .background import drain
from .database import init_db, async_session_maker
from .errors import ReservationError
from .routers import programs as programs_router
from .routers import reservations as reservations_router
from .routers import user as user_router
from .schemas import UserCreate, UserRead, UserUpdate
from .settings.config import settings
from .users import fastapi_users, auth_backend

app = FastAPI(title=settings.APP_NAME)

# Enable CORS if needed
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Update for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ----------------------
# Route Includes
# ----------------------
app.include_router(programs_router.router)
app.include_router(programs_router.admin_router)
app.include_router(reservations_router.router)
app.include_router(reservations_router.admin_router)
app.include_router(user_router.router)

# Authentication Routes
app.include_router(
    fastapi_users.get_auth_router(auth_backend),
    prefix="/auth/jwt",
    tags=["auth"]
)

app.include_router(
    fastapi_users.get_register_router(UserRead, UserCreate),
    prefix="/auth",
    tags=["auth"]
)

app.include_router(
    fastapi_users.get_users_router(UserRead, UserUpdate),
    prefix="/users",
    tags=["users"]
)
logging.basicConfig(level=settings.LOG_LEVEL.upper())
logger = logging.getLogger(__name__)


# -----------------------------------------------------
# Domain errors -> JSON bodies
# 409 bodies carry the conflicting selections so the client can refresh.
# -----------------------------------------------------
@app.exception_handler(ReservationError)
async def _reservation_error_handler(request: Request, exc: ReservationError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.debug("%s %s -> %d: %s", request.method, request.url.path, exc.status_code, exc.message)
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


# ----------------------
# Auto-create admin user
# ----------------------
async def create_admin_user():
    from .models import User
    admin_email = os.getenv("ADMIN_EMAIL")
    admin_password = os.getenv("ADMIN_PASSWORD")

    if not admin_email or not admin_password:
        logger.warning("ADMIN_EMAIL or ADMIN_PASSWORD not set, skipping admin creation.")
        return

    async with async_session_maker() as session:
        result = await session.execute(select(User).where(User.email == admin_email))
        existing_admin = result.scalars().first()
        if not existing_admin:
            user = User(
                email=admin_email,
                hashed_password=bcrypt.hash(admin_password),
                first_name=os.getenv("ADMIN_FIRST_NAME", "Admin"),
                last_name=os.getenv("ADMIN_LAST_NAME", ""),
                is_superuser=True,
                is_active=True,
                is_verified=True,
            )
            session.add(user)
            await session.commit()
            logger.info("Admin user created: %s", admin_email)
        else:
            logger.info("Admin user already exists: %s", admin_email)


@app.on_event("startup")
async def on_startup():
    from . import models  # Required for SQLAlchemy model detection
    await init_db()
    await create_admin_user()


@app.on_event("shutdown")
async def on_shutdown():
    # let pending notification emails finish
    await drain()


@app.get("/healthz")
async def healthz():
    return {"ok": True}
