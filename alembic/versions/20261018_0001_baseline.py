"""Baseline schema for tenancy, templates, content requests, results and events

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18 00:00:00.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261018_0001"
down_revision: str | None = None
branch_labels: str | None = None
depends_on: str | None = None


def _id() -> sa.Column:
    return sa.Column("id", sa.String(length=36), primary_key=True)


def _fk(name: str, target: str, *, nullable: bool = False, ondelete: str = "CASCADE") -> sa.Column:
    return sa.Column(name, sa.String(length=36), sa.ForeignKey(target, ondelete=ondelete), nullable=nullable)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "customers",
        _id(),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("available_words", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_words", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("available_images", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_images", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("available_speech_to_text", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_speech_to_text", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("business_name", sa.String(), nullable=True),
        sa.Column("business_description", sa.Text(), nullable=True),
        sa.Column("business_street", sa.String(), nullable=True),
        sa.Column("business_city", sa.String(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "available_words >= 0 AND available_images >= 0 AND available_speech_to_text >= 0",
            name="customers_allotment_floor_check",
        ),
    )

    op.create_table(
        "teams",
        _id(),
        _fk("customer_id", "customers.id"),
        sa.Column("name", sa.String(), nullable=True),
    )

    op.create_table(
        "workspaces",
        _id(),
        sa.Column("name", sa.String(), nullable=True),
        _fk("customer_id", "customers.id", nullable=True),
        _fk("team_id", "teams.id", nullable=True),
        sa.CheckConstraint("customer_id IS NOT NULL OR team_id IS NOT NULL", name="workspaces_owner_check"),
    )

    op.create_table(
        "services",
        _id(),
        _fk("workspace_id", "workspaces.id"),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("product_url", sa.Text(), nullable=True),
        sa.Column("ideal_customer", sa.Text(), nullable=True),
        sa.Column("customer_wants", sa.Text(), nullable=True),
    )

    op.create_table(
        "brand_voices",
        _id(),
        _fk("workspace_id", "workspaces.id"),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("internal_description", sa.Text(), nullable=False, server_default=""),
    )

    op.create_table(
        "training_data_sets",
        _id(),
        _fk("workspace_id", "workspaces.id"),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("index_name", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "training_records",
        _id(),
        _fk("data_set_id", "training_data_sets.id"),
        sa.Column("source", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("training_records_set_idx", "training_records", ["data_set_id"], unique=False)

    op.create_table(
        "content_templates",
        _id(),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("provider", sa.String(), nullable=False),
        sa.Column("api_model", sa.String(), nullable=False),
        sa.Column("endpoint", sa.String(), nullable=True),
        sa.Column("input_text", sa.Text(), nullable=False, server_default=""),
        sa.Column("batch_model", sa.String(), nullable=True),
        sa.Column("batch_input", sa.Text(), nullable=True),
        sa.Column("temperature", sa.Integer(), nullable=False, server_default=sa.text("70")),
        sa.Column("frequency_penalty", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("presence_penalty", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("system_message", sa.Text(), nullable=True),
        sa.Column("input_prep_text", sa.Text(), nullable=True),
        sa.Column("parse_markdown", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("max_blocks", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("type in ('text','image','audio')", name="content_templates_type_check"),
        sa.CheckConstraint("max_blocks IS NULL OR max_blocks > 0", name="content_templates_max_blocks_check"),
    )

    op.create_table(
        "template_fields",
        _id(),
        _fk("template_id", "content_templates.id"),
        sa.Column("key", sa.String(), nullable=False),
        sa.Column("type", sa.String(), nullable=False, server_default="text"),
        sa.Column("appended_prompt", sa.Text(), nullable=True),
        sa.Column("position", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.UniqueConstraint("template_id", "key", name="template_fields_key_uniq"),
    )

    op.create_table(
        "content_requests",
        _id(),
        sa.Column("uid", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=True),
        _fk("workspace_id", "workspaces.id"),
        sa.Column("template_id", sa.String(length=36), sa.ForeignKey("content_templates.id"), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("number", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("max_tokens", sa.Integer(), nullable=True),
        sa.Column("max_output_length", sa.Integer(), nullable=True),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("tone", sa.String(), nullable=True),
        sa.Column("input_language", sa.String(), nullable=True),
        sa.Column("output_language", sa.String(), nullable=True),
        sa.Column("style", sa.String(), nullable=True),
        sa.Column("medium", sa.String(), nullable=True),
        sa.Column("mood", sa.String(), nullable=True),
        sa.Column("resolution", sa.String(), nullable=True),
        sa.Column("custom_input_json", sa.JSON(), nullable=False, server_default=sa.text("'{}'")),
        sa.Column("input_file", sa.Text(), nullable=True),
        sa.Column("batch_request_id", sa.String(length=36), nullable=True),
        sa.Column("folder_id", sa.String(length=36), nullable=True),
        _fk("service_id", "services.id", nullable=True, ondelete="SET NULL"),
        _fk("brand_voice_id", "brand_voices.id", nullable=True, ondelete="SET NULL"),
        _fk("training_data_set_id", "training_data_sets.id", nullable=True, ondelete="SET NULL"),
        sa.Column("locale", sa.String(), nullable=True),
        sa.Column("idempotency_key_hash", sa.LargeBinary(), nullable=True),
        sa.Column("error_code", sa.String(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "status in ('queued','processing','completed','denied','failed')", name="content_requests_status_check"
        ),
        sa.CheckConstraint("number >= 1", name="content_requests_number_check"),
    )
    op.create_index("content_requests_updated_idx", "content_requests", ["updated_at"], unique=False)
    op.create_index("content_requests_status_idx", "content_requests", ["status"], unique=False)
    op.create_index("content_requests_idempo_uniq", "content_requests", ["idempotency_key_hash"], unique=True)

    op.create_table(
        "content_results",
        _id(),
        _fk("request_id", "content_requests.id"),
        sa.Column("item_index", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("word_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("tokens_used", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("input", sa.Text(), nullable=True),
        sa.Column("folder_id", sa.String(length=36), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("status in ('completed')", name="content_results_status_check"),
        sa.UniqueConstraint("request_id", "item_index", name="content_results_request_item_uniq"),
    )
    op.create_index("content_results_request_idx", "content_results", ["request_id"], unique=False)
    op.create_index("content_results_created_idx", "content_results", ["created_at"], unique=False)

    op.create_table(
        "settings",
        sa.Column("name", sa.String(), primary_key=True),
        sa.Column("value", sa.Text(), nullable=True),
    )

    op.create_table(
        "notifications",
        _id(),
        sa.Column("user_id", sa.String(length=36), nullable=True),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("payload_json", sa.JSON(), nullable=False, server_default=sa.text("'{}'")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("notifications_user_created_idx", "notifications", ["user_id", "created_at"], unique=False)

    op.create_table(
        "events",
        _id(),
        _fk("request_id", "content_requests.id"),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("level", sa.String(), nullable=False, server_default="info"),
        sa.Column("payload_json", sa.JSON(), nullable=False, server_default=sa.text("'{}'")),
        sa.CheckConstraint("level in ('debug','info','warn','error')", name="events_level_check"),
    )
    op.create_index("events_request_ts_idx", "events", ["request_id", "ts"], unique=False)


def downgrade() -> None:
    op.drop_index("events_request_ts_idx", table_name="events")
    op.drop_table("events")

    op.drop_index("notifications_user_created_idx", table_name="notifications")
    op.drop_table("notifications")
    op.drop_table("settings")

    op.drop_index("content_results_created_idx", table_name="content_results")
    op.drop_index("content_results_request_idx", table_name="content_results")
    op.drop_table("content_results")

    op.drop_index("content_requests_idempo_uniq", table_name="content_requests")
    op.drop_index("content_requests_status_idx", table_name="content_requests")
    op.drop_index("content_requests_updated_idx", table_name="content_requests")
    op.drop_table("content_requests")

    op.drop_table("template_fields")
    op.drop_table("content_templates")

    op.drop_index("training_records_set_idx", table_name="training_records")
    op.drop_table("training_records")
    op.drop_table("training_data_sets")
    op.drop_table("brand_voices")
    op.drop_table("services")
    op.drop_table("workspaces")
    op.drop_table("teams")
    op.drop_table("customers")
