from sqlalchemy import (
    Column, Integer, String, Boolean, ForeignKey, Text, DateTime, func,
    UniqueConstraint, Index, JSON,
)
from sqlalchemy.orm import relationship
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy import Enum as SAEnum
import enum

from .database import Base
from .services.sections import ReadingBoard, SectionKind

# JSONB on postgres, plain JSON elsewhere (sqlite in tests)
JSONDocument = JSON().with_variant(JSONB(), "postgresql")


class ProgramStatus(str, enum.Enum):
    pending = "pending"
    active = "active"
    completed = "completed"
    cancelled = "cancelled"


class ProgramType(str, enum.Enum):
    hatim = "hatim"
    yasin = "yasin"
    ihlas = "ihlas"
    fatiha = "fatiha"
    fetih = "fetih"
    custom = "custom"


# ---------------------------
# USER MODEL
# ---------------------------
class User(Base):
    __tablename__ = "user"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    first_name = Column(String(50), nullable=False, default="")
    last_name = Column(String(50), nullable=False, default="")
    hashed_password = Column(String, nullable=False)
    is_active = Column(Boolean, default=True)
    is_superuser = Column(Boolean, default=False)  # role "admin"
    is_verified = Column(Boolean, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    programs = relationship("Program", back_populates="creator", foreign_keys="Program.created_by")

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


# ---------------------------
# PROGRAMS
# ---------------------------
class Program(Base):
    __tablename__ = "program"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    program_type = Column(SAEnum(ProgramType), nullable=False, default=ProgramType.hatim)
    custom_type = Column(String(100), nullable=True)
    created_by = Column(Integer, ForeignKey("user.id", ondelete="CASCADE"), nullable=False, index=True)
    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=False)
    target_count = Column(Integer, nullable=False)
    section_kind = Column(SAEnum(SectionKind), nullable=False, default=SectionKind.whole)
    # the embedded section document; see services/sections.py for its layout
    sections = Column(JSONDocument, nullable=False)
    status = Column(SAEnum(ProgramStatus), nullable=False, default=ProgramStatus.pending)
    is_approved = Column(Boolean, nullable=False, default=False)
    approved_by = Column(Integer, ForeignKey("user.id", ondelete="SET NULL"), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    dedicated_to = Column(String(200), nullable=True)
    is_public = Column(Boolean, nullable=False, default=True)
    total_participants = Column(Integer, nullable=False, default=0)
    completed_parts = Column(Integer, nullable=False, default=0)
    # compare-and-swap guard: UPDATE ... WHERE version = <read version>
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    creator = relationship("User", back_populates="programs", foreign_keys=[created_by])
    participations = relationship(
        "Participation",
        back_populates="program",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        Index("ix_program_status_approved", "status", "is_approved"),
    )

    def board(self) -> ReadingBoard:
        return ReadingBoard.from_payload(self.sections, kind=self.section_kind)

    def store_board(self, board: ReadingBoard) -> None:
        # always a fresh dict so the ORM sees the change
        self.sections = board.to_payload()
        self.completed_parts = board.completed_count()

    @property
    def progress(self) -> int:
        if not self.target_count:
            return 0
        return round((self.completed_parts or 0) / self.target_count * 100)


# ---------------------------
# PARTICIPATION (derived cache of section ownership)
# ---------------------------
class Participation(Base):
    __tablename__ = "participation"

    id = Column(Integer, primary_key=True, index=True)
    program_id = Column(Integer, ForeignKey("program.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("user.id", ondelete="CASCADE"), nullable=True, index=True)
    guest_name = Column(String(120), nullable=True)
    guest_key = Column(String(120), nullable=True)
    is_guest = Column(Boolean, nullable=False, default=False)
    added_by = Column(Integer, ForeignKey("user.id", ondelete="SET NULL"), nullable=True)
    parts = Column(JSONDocument, nullable=False, default=list)
    completed_parts = Column(JSONDocument, nullable=False, default=list)
    joined_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    program = relationship("Program", back_populates="participations")
    user = relationship("User", foreign_keys=[user_id])

    __table_args__ = (
        UniqueConstraint("program_id", "user_id", name="uq_participation_program_user"),
        UniqueConstraint("program_id", "guest_key", name="uq_participation_program_guest"),
    )
