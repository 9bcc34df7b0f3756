"""init programs, participations

Revision ID: 0001_init
Revises: 
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None

program_type = sa.Enum("hatim", "yasin", "ihlas", "fatiha", "fetih", "custom", name="programtype")
section_kind = sa.Enum("whole", "quarter", "piece", name="sectionkind")
program_status = sa.Enum("pending", "active", "completed", "cancelled", name="programstatus")


def upgrade() -> None:
    # --- users (fastapi-users) ---
    op.create_table(
        "user",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("email", sa.String, nullable=False),
        sa.Column("first_name", sa.String(50), nullable=False, server_default=""),
        sa.Column("last_name", sa.String(50), nullable=False, server_default=""),
        sa.Column("hashed_password", sa.String, nullable=False),
        sa.Column("is_active", sa.Boolean, server_default=sa.sql.expression.true()),
        sa.Column("is_superuser", sa.Boolean, server_default=sa.sql.expression.false()),
        sa.Column("is_verified", sa.Boolean, server_default=sa.sql.expression.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_user_id", "user", ["id"])
    op.create_index("ix_user_email", "user", ["email"], unique=True)

    # --- programs; the section document lives in `sections` ---
    op.create_table(
        "program",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text),
        sa.Column("program_type", program_type, nullable=False),
        sa.Column("custom_type", sa.String(100)),
        sa.Column("created_by", sa.Integer, sa.ForeignKey("user.id", ondelete="CASCADE"), nullable=False),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("target_count", sa.Integer, nullable=False),
        sa.Column("section_kind", section_kind, nullable=False),
        sa.Column("sections", postgresql.JSONB, nullable=False),
        sa.Column("status", program_status, nullable=False),
        sa.Column("is_approved", sa.Boolean, nullable=False, server_default=sa.sql.expression.false()),
        sa.Column("approved_by", sa.Integer, sa.ForeignKey("user.id", ondelete="SET NULL")),
        sa.Column("approved_at", sa.DateTime(timezone=True)),
        sa.Column("dedicated_to", sa.String(200)),
        sa.Column("is_public", sa.Boolean, nullable=False, server_default=sa.sql.expression.true()),
        sa.Column("total_participants", sa.Integer, nullable=False, server_default="0"),
        sa.Column("completed_parts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_program_id", "program", ["id"])
    op.create_index("ix_program_created_by", "program", ["created_by"])
    op.create_index("ix_program_status_approved", "program", ["status", "is_approved"])

    # --- participations (cache derived from program.sections) ---
    op.create_table(
        "participation",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("program_id", sa.Integer, sa.ForeignKey("program.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("user.id", ondelete="CASCADE")),
        sa.Column("guest_name", sa.String(120)),
        sa.Column("guest_key", sa.String(120)),
        sa.Column("is_guest", sa.Boolean, nullable=False, server_default=sa.sql.expression.false()),
        sa.Column("added_by", sa.Integer, sa.ForeignKey("user.id", ondelete="SET NULL")),
        sa.Column("parts", postgresql.JSONB, nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("completed_parts", postgresql.JSONB, nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("joined_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("program_id", "user_id", name="uq_participation_program_user"),
        sa.UniqueConstraint("program_id", "guest_key", name="uq_participation_program_guest"),
    )
    op.create_index("ix_participation_id", "participation", ["id"])
    op.create_index("ix_participation_program_id", "participation", ["program_id"])
    op.create_index("ix_participation_user_id", "participation", ["user_id"])


def downgrade() -> None:
    op.drop_table("participation")
    op.drop_table("program")
    op.drop_table("user")
    bind = op.get_bind()
    program_status.drop(bind, checkfirst=True)
    section_kind.drop(bind, checkfirst=True)
    program_type.drop(bind, checkfirst=True)
