"""SQLAlchemy-backed implementations of the worker's collaborator interfaces.

Each call opens its own short session so fan-out threads never share one.
"""

from __future__ import annotations

import logging
import uuid as _uuid
from typing import Any

from services.worker.domain import Customer, GenerationRequest, ResultRecord

from . import repos
from .db import get_session

logger = logging.getLogger(__name__)


class SqlEntitlementStore:
    def _fresh(self, customer: Customer):
        with get_session() as session:
            row = repos.get_customer(session, customer.id)
            if row is None:
                raise LookupError(f"customer {customer.id} not found")
            return repos.to_domain_customer(row)

    def remaining_words(self, customer: Customer) -> int:
        return self._fresh(customer).available_words

    def remaining_images(self, customer: Customer) -> int:
        return self._fresh(customer).available_images

    def remaining_speech_to_text(self, customer: Customer) -> int:
        return self._fresh(customer).available_speech_to_text

    def average_words(self, template_id: _uuid.UUID, *, days: int = 30) -> float:
        with get_session() as session:
            return repos.average_words(session, template_id, days=days)

    def spend(self, customer: Customer, kind: str, amount: int) -> None:
        with get_session() as session:
            covered = repos.spend_allotment(session, customer.id, kind, amount)
        if not covered:
            logger.warning("customer %s overdrew %s allotment by up to %s; clamped to zero", customer.id, kind, amount)


class SqlNotificationSink:
    def notify(self, user_id: _uuid.UUID | None, payload: dict[str, Any]) -> None:
        with get_session() as session:
            repos.insert_notification(session, user_id=user_id, payload=payload)


class SqlResultStore:
    def create_result(self, record: ResultRecord) -> _uuid.UUID:
        with get_session() as session:
            return repos.insert_result(session, record).id

    def completed_indices(self, request_id: _uuid.UUID) -> set[int]:
        with get_session() as session:
            return repos.completed_indices(session, request_id)


class SqlRequestStore:
    def mark_status(self, request: GenerationRequest, status: str) -> None:
        with get_session() as session:
            repos.mark_request_status(session, request.id, status)

    def record_event(
        self,
        request: GenerationRequest,
        code: str,
        *,
        level: str = "info",
        payload: dict[str, Any] | None = None,
    ) -> None:
        with get_session() as session:
            repos.append_event(session, request_id=request.id, code=code, level=level, payload=payload)


class SqlSettingsStore:
    def get_setting(self, name: str) -> str | None:
        with get_session() as session:
            return repos.get_setting(session, name)
