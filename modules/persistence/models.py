from __future__ import annotations

import uuid as _uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    LargeBinary,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.types import CHAR, TypeDecorator
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


def _uuid_pk() -> _uuid.UUID:  # pragma: no cover
    return _uuid.uuid4()


class GUID(TypeDecorator):
    """Platform-independent GUID/UUID type.

    Uses PostgreSQL's UUID type, otherwise stores as CHAR(36).
    """

    impl = CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):  # type: ignore[override]
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))  # type: ignore[attr-defined]
        return dialect.type_descriptor(CHAR(36))

    def process_bind_param(self, value, dialect):  # type: ignore[override]
        if value is None:
            return value
        return str(value)

    def process_result_value(self, value, dialect):  # type: ignore[override]
        if value is None:
            return value
        return _uuid.UUID(str(value))


# --- Tenancy -----------------------------------------------------------------


class Customer(Base):
    __tablename__ = "customers"

    id: Mapped[_uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_uuid_pk)
    name: Mapped[str | None] = mapped_column(String)
    available_words: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_words: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    available_images: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_images: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    available_speech_to_text: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_speech_to_text: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    business_name: Mapped[str | None] = mapped_column(String)
    business_description: Mapped[str | None] = mapped_column(Text)
    business_street: Mapped[str | None] = mapped_column(String)
    business_city: Mapped[str | None] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "available_words >= 0 AND available_images >= 0 AND available_speech_to_text >= 0",
            name="customers_allotment_floor_check",
        ),
    )


class Team(Base):
    __tablename__ = "teams"

    id: Mapped[_uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_uuid_pk)
    customer_id: Mapped[_uuid.UUID] = mapped_column(GUID(), ForeignKey("customers.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str | None] = mapped_column(String)

    customer: Mapped[Customer] = relationship("Customer")


class Workspace(Base):
    """A workspace belongs either directly to a customer or to one of its teams."""

    __tablename__ = "workspaces"

    id: Mapped[_uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_uuid_pk)
    name: Mapped[str | None] = mapped_column(String)
    customer_id: Mapped[_uuid.UUID | None] = mapped_column(GUID(), ForeignKey("customers.id", ondelete="CASCADE"))
    team_id: Mapped[_uuid.UUID | None] = mapped_column(GUID(), ForeignKey("teams.id", ondelete="CASCADE"))

    customer: Mapped[Customer | None] = relationship("Customer")
    team: Mapped[Team | None] = relationship("Team")

    __table_args__ = (
        CheckConstraint("customer_id IS NOT NULL OR team_id IS NOT NULL", name="workspaces_owner_check"),
    )


class Service(Base):
    __tablename__ = "services"

    id: Mapped[_uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_uuid_pk)
    workspace_id: Mapped[_uuid.UUID] = mapped_column(GUID(), ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str | None] = mapped_column(String)
    product_url: Mapped[str | None] = mapped_column(Text)
    ideal_customer: Mapped[str | None] = mapped_column(Text)
    customer_wants: Mapped[str | None] = mapped_column(Text)


class BrandVoice(Base):
    __tablename__ = "brand_voices"

    id: Mapped[_uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_uuid_pk)
    workspace_id: Mapped[_uuid.UUID] = mapped_column(GUID(), ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str | None] = mapped_column(String)
    internal_description: Mapped[str] = mapped_column(Text, nullable=False, default="")


class TrainingDataSet(Base):
    __tablename__ = "training_data_sets"

    id: Mapped[_uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_uuid_pk)
    workspace_id: Mapped[_uuid.UUID] = mapped_column(GUID(), ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str | None] = mapped_column(String)
    index_name: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)


class TrainingRecord(Base):
    __tablename__ = "training_records"

    id: Mapped[_uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_uuid_pk)
    data_set_id: Mapped[_uuid.UUID] = mapped_column(GUID(), ForeignKey("training_data_sets.id", ondelete="CASCADE"), nullable=False)
    source: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    __table_args__ = (Index("training_records_set_idx", "data_set_id"),)


# --- Templates ---------------------------------------------------------------


class ContentTemplate(Base):
    __tablename__ = "content_templates"

    id: Mapped[_uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_uuid_pk)
    name: Mapped[str] = mapped_column(String, nullable=False)
    type: Mapped[str] = mapped_column(String, nullable=False)
    provider: Mapped[str] = mapped_column(String, nullable=False)
    api_model: Mapped[str] = mapped_column(String, nullable=False)
    endpoint: Mapped[str | None] = mapped_column(String)
    input_text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    batch_model: Mapped[str | None] = mapped_column(String)
    batch_input: Mapped[str | None] = mapped_column(Text)
    temperature: Mapped[int] = mapped_column(Integer, nullable=False, default=70)
    frequency_penalty: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    presence_penalty: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    system_message: Mapped[str | None] = mapped_column(Text)
    input_prep_text: Mapped[str | None] = mapped_column(Text)
    parse_markdown: Mapped[bool] = mapped_column(Integer, nullable=False, default=0)
    max_blocks: Mapped[int | None] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    fields: Mapped[list["TemplateField"]] = relationship(
        "TemplateField", order_by="TemplateField.position", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("type in ('text','image','audio')", name="content_templates_type_check"),
        CheckConstraint("max_blocks IS NULL OR max_blocks > 0", name="content_templates_max_blocks_check"),
    )


class TemplateField(Base):
    __tablename__ = "template_fields"

    id: Mapped[_uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_uuid_pk)
    template_id: Mapped[_uuid.UUID] = mapped_column(GUID(), ForeignKey("content_templates.id", ondelete="CASCADE"), nullable=False)
    key: Mapped[str] = mapped_column(String, nullable=False)
    type: Mapped[str] = mapped_column(String, nullable=False, default="text")
    appended_prompt: Mapped[str | None] = mapped_column(Text)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (UniqueConstraint("template_id", "key", name="template_fields_key_uniq"),)


# --- Requests and results ----------------------------------------------------


class ContentRequest(Base):
    __tablename__ = "content_requests"

    id: Mapped[_uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_uuid_pk)
    uid: Mapped[str] = mapped_column(String, nullable=False)
    user_id: Mapped[_uuid.UUID | None] = mapped_column(GUID())
    workspace_id: Mapped[_uuid.UUID] = mapped_column(GUID(), ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False)
    template_id: Mapped[_uuid.UUID] = mapped_column(GUID(), ForeignKey("content_templates.id"), nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="queued")
    number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    max_tokens: Mapped[int | None] = mapped_column(Integer)
    max_output_length: Mapped[int | None] = mapped_column(Integer)
    name: Mapped[str | None] = mapped_column(String)
    description: Mapped[str | None] = mapped_column(Text)
    tone: Mapped[str | None] = mapped_column(String)
    input_language: Mapped[str | None] = mapped_column(String)
    output_language: Mapped[str | None] = mapped_column(String)
    style: Mapped[str | None] = mapped_column(String)
    medium: Mapped[str | None] = mapped_column(String)
    mood: Mapped[str | None] = mapped_column(String)
    resolution: Mapped[str | None] = mapped_column(String)
    custom_input_json: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    input_file: Mapped[str | None] = mapped_column(Text)
    batch_request_id: Mapped[_uuid.UUID | None] = mapped_column(GUID())
    folder_id: Mapped[_uuid.UUID | None] = mapped_column(GUID())
    service_id: Mapped[_uuid.UUID | None] = mapped_column(GUID(), ForeignKey("services.id", ondelete="SET NULL"))
    brand_voice_id: Mapped[_uuid.UUID | None] = mapped_column(GUID(), ForeignKey("brand_voices.id", ondelete="SET NULL"))
    training_data_set_id: Mapped[_uuid.UUID | None] = mapped_column(GUID(), ForeignKey("training_data_sets.id", ondelete="SET NULL"))
    locale: Mapped[str | None] = mapped_column(String)
    idempotency_key_hash: Mapped[bytes | None] = mapped_column(LargeBinary, nullable=True)
    error_code: Mapped[str | None] = mapped_column(String, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "status in ('queued','processing','completed','denied','failed')", name="content_requests_status_check"
        ),
        CheckConstraint("number >= 1", name="content_requests_number_check"),
        Index("content_requests_updated_idx", "updated_at"),
        Index("content_requests_status_idx", "status"),
        Index("content_requests_idempo_uniq", "idempotency_key_hash", unique=True),
    )


class ContentResult(Base):
    __tablename__ = "content_results"

    id: Mapped[_uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_uuid_pk)
    request_id: Mapped[_uuid.UUID] = mapped_column(GUID(), ForeignKey("content_requests.id", ondelete="CASCADE"), nullable=False)
    item_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String, nullable=False, default="completed")
    body: Mapped[str] = mapped_column(Text, nullable=False)
    word_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tokens_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    input: Mapped[str | None] = mapped_column(Text)
    folder_id: Mapped[_uuid.UUID | None] = mapped_column(GUID())
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("status in ('completed')", name="content_results_status_check"),
        UniqueConstraint("request_id", "item_index", name="content_results_request_item_uniq"),
        Index("content_results_request_idx", "request_id"),
        Index("content_results_created_idx", "created_at"),
    )


class Setting(Base):
    __tablename__ = "settings"

    name: Mapped[str] = mapped_column(String, primary_key=True)
    value: Mapped[str | None] = mapped_column(Text)


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[_uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_uuid_pk)
    user_id: Mapped[_uuid.UUID | None] = mapped_column(GUID())
    type: Mapped[str] = mapped_column(String, nullable=False)
    payload_json: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    __table_args__ = (Index("notifications_user_created_idx", "user_id", "created_at"),)


class Event(Base):
    __tablename__ = "events"

    id: Mapped[_uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_uuid_pk)
    request_id: Mapped[_uuid.UUID] = mapped_column(GUID(), ForeignKey("content_requests.id", ondelete="CASCADE"), nullable=False)
    ts: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    code: Mapped[str] = mapped_column(String, nullable=False)
    level: Mapped[str] = mapped_column(String, nullable=False, default="info")
    payload_json: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    __table_args__ = (
        CheckConstraint("level in ('debug','info','warn','error')", name="events_level_check"),
        Index("events_request_ts_idx", "request_id", "ts"),
    )
