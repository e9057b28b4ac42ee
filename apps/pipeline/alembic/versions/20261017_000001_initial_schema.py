"""create pipeline schema

Revision ID: 20261017_000001
Revises:
Create Date: 2026-10-17 00:00:01.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261017_000001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "organizations",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("school_name", sa.String(), nullable=True),
        sa.Column("state", sa.String(), nullable=True),
        sa.Column("organization_type", sa.String(), nullable=False),
        sa.Column("aliases", sa.JSON(), nullable=True),
        sa.Column("external_channel_id", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_full_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sync_status", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_organizations_name"), "organizations", ["name"], unique=False)
    op.create_index(
        op.f("ix_organizations_external_channel_id"), "organizations", ["external_channel_id"], unique=False
    )

    op.create_table(
        "creators",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("external_channel_id", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_full_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sync_status", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_creators_external_channel_id"), "creators", ["external_channel_id"], unique=False)

    op.create_table(
        "categories",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("slug", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("slug"),
    )

    op.create_table(
        "staged_videos",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("external_video_id", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("thumbnail_url", sa.String(), nullable=True),
        sa.Column("duration_seconds", sa.Integer(), nullable=False),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("view_count", sa.Integer(), nullable=False),
        sa.Column("like_count", sa.Integer(), nullable=False),
        sa.Column("channel_id", sa.String(), nullable=True),
        sa.Column("channel_title", sa.String(), nullable=True),
        sa.Column("provider_tags", sa.JSON(), nullable=True),
        sa.Column("organization_id", sa.String(), nullable=True),
        sa.Column("opponent_organization_id", sa.String(), nullable=True),
        sa.Column("creator_id", sa.String(), nullable=True),
        sa.Column("match_confidence", sa.Integer(), nullable=True),
        sa.Column("is_promoted", sa.Boolean(), nullable=False),
        sa.Column("promoted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sync_status", sa.String(), nullable=False),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"]),
        sa.ForeignKeyConstraint(["opponent_organization_id"], ["organizations.id"]),
        sa.ForeignKeyConstraint(["creator_id"], ["creators.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_staged_videos_external_video_id"), "staged_videos", ["external_video_id"], unique=True)
    op.create_index(op.f("ix_staged_videos_organization_id"), "staged_videos", ["organization_id"], unique=False)
    op.create_index(op.f("ix_staged_videos_creator_id"), "staged_videos", ["creator_id"], unique=False)
    op.create_index(op.f("ix_staged_videos_is_promoted"), "staged_videos", ["is_promoted"], unique=False)

    op.create_table(
        "promoted_videos",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("external_video_id", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("thumbnail_url", sa.String(), nullable=True),
        sa.Column("duration_seconds", sa.Integer(), nullable=False),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("view_count", sa.Integer(), nullable=False),
        sa.Column("like_count", sa.Integer(), nullable=False),
        sa.Column("organization_id", sa.String(), nullable=False),
        sa.Column("opponent_organization_id", sa.String(), nullable=True),
        sa.Column("category_id", sa.String(), nullable=True),
        sa.Column("event_name", sa.String(), nullable=True),
        sa.Column("event_year", sa.Integer(), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=True),
        sa.Column("quality_score", sa.Integer(), nullable=False),
        sa.Column("is_hidden", sa.Boolean(), nullable=False),
        sa.Column("stats_refreshed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"]),
        sa.ForeignKeyConstraint(["opponent_organization_id"], ["organizations.id"]),
        sa.ForeignKeyConstraint(["category_id"], ["categories.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_promoted_videos_external_video_id"), "promoted_videos", ["external_video_id"], unique=True
    )
    op.create_index(op.f("ix_promoted_videos_organization_id"), "promoted_videos", ["organization_id"], unique=False)
    op.create_index(op.f("ix_promoted_videos_category_id"), "promoted_videos", ["category_id"], unique=False)

    op.create_table(
        "sync_jobs",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("organization_id", sa.String(), nullable=True),
        sa.Column("job_type", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("triggered_by", sa.String(), nullable=True),
        sa.Column("videos_found", sa.Integer(), nullable=False),
        sa.Column("videos_added", sa.Integer(), nullable=False),
        sa.Column("videos_updated", sa.Integer(), nullable=False),
        sa.Column("errors", sa.JSON(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_sync_jobs_organization_id"), "sync_jobs", ["organization_id"], unique=False)
    op.create_index(op.f("ix_sync_jobs_job_type"), "sync_jobs", ["job_type"], unique=False)
    op.create_index(op.f("ix_sync_jobs_status"), "sync_jobs", ["status"], unique=False)
    op.create_index(op.f("ix_sync_jobs_created_at"), "sync_jobs", ["created_at"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_sync_jobs_created_at"), table_name="sync_jobs")
    op.drop_index(op.f("ix_sync_jobs_status"), table_name="sync_jobs")
    op.drop_index(op.f("ix_sync_jobs_job_type"), table_name="sync_jobs")
    op.drop_index(op.f("ix_sync_jobs_organization_id"), table_name="sync_jobs")
    op.drop_table("sync_jobs")

    op.drop_index(op.f("ix_promoted_videos_category_id"), table_name="promoted_videos")
    op.drop_index(op.f("ix_promoted_videos_organization_id"), table_name="promoted_videos")
    op.drop_index(op.f("ix_promoted_videos_external_video_id"), table_name="promoted_videos")
    op.drop_table("promoted_videos")

    op.drop_index(op.f("ix_staged_videos_is_promoted"), table_name="staged_videos")
    op.drop_index(op.f("ix_staged_videos_creator_id"), table_name="staged_videos")
    op.drop_index(op.f("ix_staged_videos_organization_id"), table_name="staged_videos")
    op.drop_index(op.f("ix_staged_videos_external_video_id"), table_name="staged_videos")
    op.drop_table("staged_videos")

    op.drop_table("categories")

    op.drop_index(op.f("ix_creators_external_channel_id"), table_name="creators")
    op.drop_table("creators")

    op.drop_index(op.f("ix_organizations_external_channel_id"), table_name="organizations")
    op.drop_index(op.f("ix_organizations_name"), table_name="organizations")
    op.drop_table("organizations")
