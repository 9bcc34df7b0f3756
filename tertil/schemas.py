from datetime import datetime
from typing import List, Optional

from fastapi_users import schemas
from pydantic import BaseModel, ConfigDict, Field

from .models import ProgramType
from .services.availability import Selection
from .services.sections import SectionKind


# =========================
# USER SCHEMAS
# =========================
class UserRead(schemas.BaseUser[int]):
    first_name: str
    last_name: str


class UserCreate(schemas.BaseUserCreate):
    first_name: str = Field(min_length=1, max_length=50)
    last_name: str = Field(min_length=1, max_length=50)


class UserUpdate(schemas.BaseUserUpdate):
    first_name: Optional[str] = None
    last_name: Optional[str] = None


# =========================
# PROGRAM SCHEMAS
# =========================
class ProgramCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    program_type: ProgramType = ProgramType.hatim
    custom_type: Optional[str] = None
    start_date: datetime
    end_date: datetime
    target_count: int = Field(ge=1)
    section_kind: SectionKind = SectionKind.whole
    dedicated_to: Optional[str] = Field(default=None, max_length=200)
    is_public: bool = True


class ProgramCreated(BaseModel):
    id: int
    title: str
    status: str
    is_approved: bool

    model_config = ConfigDict(from_attributes=True)


# =========================
# RESERVATION SCHEMAS
# =========================
class SelectionIn(BaseModel):
    section: int
    subsection: Optional[int] = None

    def to_selection(self) -> Selection:
        return Selection(self.section, self.subsection)


class JoinRequest(BaseModel):
    selections: List[SelectionIn] = []
    guest_name: Optional[str] = Field(default=None, max_length=120)
    # program owner/admin adding someone else by name
    participant_name: Optional[str] = Field(default=None, max_length=120)


class CompleteRequest(BaseModel):
    selections: List[SelectionIn] = []
    guest_name: Optional[str] = Field(default=None, max_length=120)
    acting_as_owner_for: Optional[str] = Field(default=None, max_length=120)


class SelectionOut(BaseModel):
    section: int
    subsection: Optional[int] = None


class JoinResponse(BaseModel):
    ok: bool = True
    applied: List[SelectionOut]
    participant: str
    is_guest: bool
    total_participants: int


class CompletionResponse(BaseModel):
    completed_count: int
    completed_parts: int
    total_parts: int
    program_now_complete: bool
    status: str
    skipped: List[SelectionOut] = []


class HeldSelectionOut(SelectionOut):
    completed: bool


class ParticipantOut(BaseModel):
    name: str
    is_guest: bool
    selections: List[HeldSelectionOut]


class ParticipantsResponse(BaseModel):
    participants: List[ParticipantOut]
    total_participants: int
    can_see_full_names: bool


class AvailabilityResponse(BaseModel):
    assigned: int
    partially_assigned: int
    completed: int
    available: int
    total: int
    percentage: int
