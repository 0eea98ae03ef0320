"""Initial schema — affinity engine tables and the collaborator tables it reads.

Revision ID: 001_initial
Revises:
Create Date: 2026-01-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── 1. persons ──────────────────────────────────────────────────
    op.create_table(
        "persons",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), unique=True, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )

    # ── 2. teams + membership ───────────────────────────────────────
    op.create_table(
        "teams",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(255), nullable=False),
    )
    op.create_table(
        "team_members",
        sa.Column(
            "team_id",
            sa.Integer,
            sa.ForeignKey("teams.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "person_id",
            sa.Integer,
            sa.ForeignKey("persons.id", ondelete="CASCADE"),
            primary_key=True,
        ),
    )

    # ── 3. practices (one row per practice version) ─────────────────
    op.create_table(
        "practices",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("practice_id", sa.Integer, nullable=False, index=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("version_name", sa.String(255), nullable=False, server_default="v1.0"),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("objective", sa.String(255), nullable=True),
        sa.Column("published", sa.Boolean, nullable=False, server_default="true"),
        sa.Column(
            "trait_weights",
            postgresql.JSONB,
            nullable=True,
            comment="{o,c,e,a,n: weight in [-1, 1]}",
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )

    # ── 4. goals + links ────────────────────────────────────────────
    op.create_table(
        "goals",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
    )
    op.create_table(
        "practice_goals",
        sa.Column(
            "practice_version_id",
            sa.Integer,
            sa.ForeignKey("practices.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "goal_id",
            sa.Integer,
            sa.ForeignKey("goals.id", ondelete="CASCADE"),
            primary_key=True,
            index=True,
        ),
    )
    op.create_table(
        "practice_contexts",
        sa.Column(
            "practice_version_id",
            sa.Integer,
            sa.ForeignKey("practices.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("context_id", sa.Integer, primary_key=True, index=True),
    )

    # ── 5. survey_items (questionnaire catalogue) ───────────────────
    op.create_table(
        "survey_items",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("content", sa.String(255), nullable=False),
        sa.Column("dimension", sa.String(1), nullable=False, comment="o / c / e / a / n"),
        sa.Column("reverse_keyed", sa.Boolean, nullable=False, server_default="false"),
    )

    # ── 6. survey_responses (append-only) ───────────────────────────
    op.create_table(
        "survey_responses",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "person_id",
            sa.Integer,
            sa.ForeignKey("persons.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("item_id", sa.Integer, sa.ForeignKey("survey_items.id"), nullable=False),
        sa.Column("result", sa.Integer, nullable=False, comment="1-5"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.CheckConstraint("result BETWEEN 1 AND 5", name="ck_survey_result_range"),
    )
    op.create_index(
        "ix_survey_responses_person_item",
        "survey_responses",
        ["person_id", "item_id"],
    )

    # ── 7. personality_profiles ─────────────────────────────────────
    op.create_table(
        "personality_profiles",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "person_id",
            sa.Integer,
            sa.ForeignKey("persons.id", ondelete="CASCADE"),
            unique=True,
            nullable=False,
        ),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("status", sa.String, nullable=False),
        sa.Column("o", sa.Float, nullable=False, server_default="0"),
        sa.Column("c", sa.Float, nullable=False, server_default="0"),
        sa.Column("e", sa.Float, nullable=False, server_default="0"),
        sa.Column("a", sa.Float, nullable=False, server_default="0"),
        sa.Column("n", sa.Float, nullable=False, server_default="0"),
        sa.Column("answered_items", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "recalculation_pending",
            sa.Boolean,
            nullable=False,
            server_default="false",
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )

    # ── 8. person_practice_affinities (derived) ─────────────────────
    op.create_table(
        "person_practice_affinities",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "person_id",
            sa.Integer,
            sa.ForeignKey("persons.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column(
            "practice_version_id",
            sa.Integer,
            sa.ForeignKey("practices.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("affinity", sa.Integer, nullable=False, comment="0-100"),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint(
            "person_id", "practice_version_id", name="uq_affinity_person_practice"
        ),
        sa.CheckConstraint("affinity BETWEEN 0 AND 100", name="ck_affinity_range"),
    )

    # ── 9. practice_difficulty_flags ────────────────────────────────
    op.create_table(
        "practice_difficulty_flags",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "person_id",
            sa.Integer,
            sa.ForeignKey("persons.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "practice_version_id",
            sa.Integer,
            sa.ForeignKey("practices.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("reason", sa.Text, nullable=True),
        sa.Column("context_id", sa.Integer, nullable=True),
        sa.Column(
            "flagged_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint(
            "person_id", "practice_version_id", name="uq_difficulty_person_practice"
        ),
    )


def downgrade() -> None:
    op.drop_table("practice_difficulty_flags")
    op.drop_table("person_practice_affinities")
    op.drop_table("personality_profiles")
    op.drop_index("ix_survey_responses_person_item", table_name="survey_responses")
    op.drop_table("survey_responses")
    op.drop_table("survey_items")
    op.drop_table("practice_contexts")
    op.drop_table("practice_goals")
    op.drop_table("goals")
    op.drop_table("practices")
    op.drop_table("team_members")
    op.drop_table("teams")
    op.drop_table("persons")
