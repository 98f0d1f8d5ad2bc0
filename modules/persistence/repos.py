from __future__ import annotations

import hashlib
import json
import uuid as _uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import String, cast, delete, func, select, update
from sqlalchemy.orm import Session, selectinload

from services.worker import domain

from .models import (
    BrandVoice,
    ContentRequest,
    ContentResult,
    ContentTemplate,
    Customer,
    Event,
    Notification,
    Service,
    Setting,
    TrainingDataSet,
    TrainingRecord,
    Workspace,
)

UTC = timezone.utc

# Allotment kind -> counter column on customers
_ALLOTMENT_COLUMNS = {
    "words": Customer.available_words,
    "images": Customer.available_images,
    "speech_to_text": Customer.available_speech_to_text,
}

_REQUEST_FIELDS = (
    "number",
    "max_tokens",
    "max_output_length",
    "name",
    "description",
    "tone",
    "input_language",
    "output_language",
    "style",
    "medium",
    "mood",
    "resolution",
    "input_file",
    "batch_request_id",
    "folder_id",
    "service_id",
    "brand_voice_id",
    "training_data_set_id",
    "locale",
)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _hash_idempotency(value: str) -> bytes:
    return hashlib.sha256(value.encode("utf-8")).digest()


# --- Requests ----------------------------------------------------------------


def create_content_request(
    session: Session,
    *,
    user_id: _uuid.UUID | None,
    workspace_id: _uuid.UUID,
    template_id: _uuid.UUID,
    custom_input: dict[str, Any] | None = None,
    idempotency_key: str | None = None,
    **fields: Any,
) -> ContentRequest:
    """Create a queued request with identity and ownership set up front.

    With an idempotency key, a second call returns the request created by the first.
    """
    unknown = set(fields) - set(_REQUEST_FIELDS)
    if unknown:
        raise ValueError(f"unknown request fields: {sorted(unknown)}")
    key_hash = _hash_idempotency(idempotency_key) if idempotency_key else None
    if key_hash is not None:
        existing = session.scalars(select(ContentRequest).where(ContentRequest.idempotency_key_hash == key_hash)).first()
        if existing:
            return existing

    now = _utcnow()
    req = ContentRequest(
        id=_uuid.uuid4(),
        uid=_uuid.uuid4().hex,
        user_id=user_id,
        workspace_id=workspace_id,
        template_id=template_id,
        status="queued",
        custom_input_json=custom_input or {},
        idempotency_key_hash=key_hash,
        created_at=now,
        updated_at=now,
        **fields,
    )
    session.add(req)
    session.flush()
    return req


def get_request(session: Session, request_id: str | _uuid.UUID) -> ContentRequest | None:
    # Avoid dialect-dependent UUID casting by comparing as text
    rid = str(request_id)
    return session.scalars(select(ContentRequest).where(cast(ContentRequest.id, String) == rid)).first()


def list_requests(session: Session, *, status: str | None = None, limit: int = 20) -> list[ContentRequest]:
    """List recent requests ordered by updated_at desc with optional status filter.

    Caps limit to 200 to avoid accidental large scans.
    """
    lmt = max(1, min(int(limit), 200))
    stmt = select(ContentRequest)
    if status:
        stmt = stmt.where(ContentRequest.status == status)
    stmt = stmt.order_by(ContentRequest.updated_at.desc()).limit(lmt)
    return list(session.scalars(stmt).all())


def mark_request_status(
    session: Session, request_id: _uuid.UUID, status: str, error: dict[str, Any] | None = None
) -> None:
    values: dict[str, Any] = {"status": status, "updated_at": _utcnow()}
    if error:
        values["error_code"] = error.get("code")
        values["error_message"] = json.dumps(error)
    session.execute(update(ContentRequest).where(cast(ContentRequest.id, String) == str(request_id)).values(**values))


def delete_content_request(session: Session, request_id: str | _uuid.UUID) -> bool:
    """Delete a request together with its results and events."""
    req = get_request(session, request_id)
    if req is None:
        return False
    rid = str(req.id)
    session.execute(delete(ContentResult).where(cast(ContentResult.request_id, String) == rid))
    session.execute(delete(Event).where(cast(Event.request_id, String) == rid))
    session.delete(req)
    session.flush()
    return True


def _customer_for_workspace(session: Session, workspace_id: _uuid.UUID) -> Customer | None:
    ws = session.scalars(select(Workspace).where(cast(Workspace.id, String) == str(workspace_id))).first()
    if ws is None:
        return None
    if ws.customer is not None:
        return ws.customer
    return ws.team.customer if ws.team is not None else None


def to_domain_customer(row: Customer) -> domain.Customer:
    return domain.Customer(
        id=row.id,
        available_words=row.available_words,
        total_words=row.total_words,
        available_images=row.available_images,
        total_images=row.total_images,
        available_speech_to_text=row.available_speech_to_text,
        total_speech_to_text=row.total_speech_to_text,
        business_name=row.business_name,
        business_description=row.business_description,
        business_street=row.business_street,
        business_city=row.business_city,
    )


def to_domain_template(row: ContentTemplate) -> domain.ContentTemplate:
    return domain.ContentTemplate(
        id=row.id,
        type=row.type,
        provider=row.provider,
        api_model=row.api_model,
        endpoint=row.endpoint,
        input_text=row.input_text or "",
        batch_model=row.batch_model,
        batch_input=row.batch_input,
        fields=tuple(
            domain.TemplateField(key=f.key, type=f.type, appended_prompt=f.appended_prompt, position=f.position)
            for f in row.fields
        ),
        temperature=row.temperature,
        frequency_penalty=row.frequency_penalty,
        presence_penalty=row.presence_penalty,
        system_message=row.system_message,
        input_prep_text=row.input_prep_text,
        parse_markdown=bool(row.parse_markdown),
        max_blocks=row.max_blocks,
    )


def hydrate_request(session: Session, request_id: str | _uuid.UUID) -> domain.GenerationRequest | None:
    """Load a request with everything the worker needs, resolving the owning customer."""
    req = get_request(session, request_id)
    if req is None:
        return None
    template = session.scalars(
        select(ContentTemplate)
        .options(selectinload(ContentTemplate.fields))
        .where(cast(ContentTemplate.id, String) == str(req.template_id))
    ).first()
    if template is None:
        raise LookupError(f"template {req.template_id} not found for request {req.id}")
    customer = _customer_for_workspace(session, req.workspace_id)
    if customer is None:
        raise LookupError(f"workspace {req.workspace_id} has no owning customer")

    service = session.get(Service, req.service_id) if req.service_id else None
    voice = session.get(BrandVoice, req.brand_voice_id) if req.brand_voice_id else None
    training = None
    if req.training_data_set_id:
        ds = session.get(TrainingDataSet, req.training_data_set_id)
        if ds is not None:
            records = session.scalar(
                select(func.count(TrainingRecord.id)).where(cast(TrainingRecord.data_set_id, String) == str(ds.id))
            )
            training = domain.TrainingDataSet(id=ds.id, index_name=ds.index_name, record_count=int(records or 0))

    return domain.GenerationRequest(
        id=req.id,
        template=to_domain_template(template),
        customer=to_domain_customer(customer),
        user_id=req.user_id,
        uid=req.uid,
        number=req.number,
        max_tokens=req.max_tokens,
        max_output_length=req.max_output_length,
        name=req.name,
        description=req.description,
        tone=req.tone,
        input_language=req.input_language,
        output_language=req.output_language,
        style=req.style,
        medium=req.medium,
        mood=req.mood,
        resolution=req.resolution,
        custom_input=dict(req.custom_input_json or {}),
        input_file=req.input_file,
        batch_request_id=req.batch_request_id,
        folder_id=req.folder_id,
        service=(
            domain.ServiceRecord(
                product_url=service.product_url,
                ideal_customer=service.ideal_customer,
                customer_wants=service.customer_wants,
            )
            if service
            else None
        ),
        brand_voice=domain.BrandVoice(internal_description=voice.internal_description) if voice else None,
        training=training,
        locale=req.locale,
        status=req.status,
    )


# --- Events ------------------------------------------------------------------


def append_event(
    session: Session,
    *,
    request_id: _uuid.UUID,
    code: str,
    level: str = "info",
    payload: dict[str, Any] | None = None,
) -> Event:
    evt = Event(
        id=_uuid.uuid4(),
        request_id=request_id,
        ts=_utcnow(),
        code=code,
        level=level,
        payload_json=payload or {},
    )
    session.add(evt)
    session.flush()
    return evt


def iter_events(
    session: Session,
    request_id: str | _uuid.UUID,
    *,
    since_ts: datetime | None = None,
    tail: int | None = None,
) -> list[Event]:
    rid = str(request_id)
    stmt = select(Event).where(cast(Event.request_id, String) == rid)
    if since_ts is not None:
        stmt = stmt.where(Event.ts >= since_ts)
        stmt = stmt.order_by(Event.ts.asc())
        return list(session.scalars(stmt).all())

    # Tail without since: fetch last N by ts desc, then reverse in memory
    stmt = stmt.order_by(Event.ts.desc())
    if tail is not None and tail > 0:
        stmt = stmt.limit(int(tail))
    out = list(session.scalars(stmt).all())
    out.reverse()
    return out


# --- Results -----------------------------------------------------------------


def insert_result(session: Session, record: domain.ResultRecord) -> ContentResult:
    row = ContentResult(
        id=_uuid.uuid4(),
        request_id=record.request_id,
        item_index=record.item_index,
        status=record.status,
        body=record.body,
        word_count=record.word_count,
        tokens_used=record.tokens_used,
        input=record.input,
        folder_id=record.folder_id,
        expires_at=record.expires_at,
        created_at=_utcnow(),
    )
    session.add(row)
    session.flush()
    return row


def list_results(session: Session, request_id: str | _uuid.UUID) -> list[ContentResult]:
    rid = str(request_id)
    rows = session.scalars(
        select(ContentResult)
        .where(cast(ContentResult.request_id, String) == rid)
        .order_by(ContentResult.item_index.asc(), ContentResult.created_at.asc())
    ).all()
    return list(rows)


def completed_indices(session: Session, request_id: str | _uuid.UUID) -> set[int]:
    rid = str(request_id)
    rows = session.scalars(
        select(ContentResult.item_index).where(
            cast(ContentResult.request_id, String) == rid, ContentResult.status == "completed"
        )
    ).all()
    return set(rows)


# --- Allotments --------------------------------------------------------------


def get_customer(session: Session, customer_id: str | _uuid.UUID) -> Customer | None:
    return session.scalars(select(Customer).where(cast(Customer.id, String) == str(customer_id))).first()


def average_words(session: Session, template_id: str | _uuid.UUID, *, days: int = 30) -> float:
    """Mean word count per result produced by this template over the trailing window."""
    since = _utcnow() - timedelta(days=days)
    avg = session.scalar(
        select(func.avg(ContentResult.word_count))
        .join(ContentRequest, ContentRequest.id == ContentResult.request_id)
        .where(cast(ContentRequest.template_id, String) == str(template_id), ContentResult.created_at >= since)
    )
    return float(avg or 0.0)


def spend_allotment(session: Session, customer_id: _uuid.UUID, kind: str, amount: int) -> bool:
    """Decrement one allotment counter in a single statement, clamping at zero.

    Returns False when the counter could not cover the full amount.
    """
    column = _ALLOTMENT_COLUMNS.get(kind)
    if column is None:
        raise ValueError(f"unknown allotment kind: {kind!r}")
    if amount <= 0:
        return True
    cid = str(customer_id)
    covered = session.execute(
        update(Customer)
        .where(cast(Customer.id, String) == cid, column >= amount)
        .values({column: column - amount, Customer.updated_at: _utcnow()})
    ).rowcount
    if covered:
        return True
    session.execute(
        update(Customer)
        .where(cast(Customer.id, String) == cid)
        .values({column: 0, Customer.updated_at: _utcnow()})
    )
    return False


# --- Settings and notifications ----------------------------------------------


def get_setting(session: Session, name: str) -> str | None:
    row = session.get(Setting, name)
    return row.value if row else None


def put_setting(session: Session, name: str, value: str | None) -> None:
    row = session.get(Setting, name)
    if row is None:
        session.add(Setting(name=name, value=value))
    else:
        row.value = value
    session.flush()


def insert_notification(session: Session, *, user_id: _uuid.UUID | None, payload: dict[str, Any]) -> Notification:
    row = Notification(
        id=_uuid.uuid4(),
        user_id=user_id,
        type=str(payload.get("type", "generic")),
        payload_json=payload,
        created_at=_utcnow(),
    )
    session.add(row)
    session.flush()
    return row


def list_notifications(session: Session, user_id: _uuid.UUID | None) -> list[Notification]:
    stmt = select(Notification)
    if user_id is None:
        stmt = stmt.where(Notification.user_id.is_(None))
    else:
        stmt = stmt.where(cast(Notification.user_id, String) == str(user_id))
    return list(session.scalars(stmt.order_by(Notification.created_at.asc())).all())
