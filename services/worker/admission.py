from __future__ import annotations

import logging
from dataclasses import dataclass

from .config import Settings
from .domain import Customer, EntitlementStore, GenerationRequest, NotificationSink, RequestStore
from .errors import AdmissionDenied
from .metrics import ADMISSION_DENIED

logger = logging.getLogger(__name__)

AVERAGE_WINDOW_DAYS = 30


@dataclass(frozen=True)
class DenialNotice:
    type: str
    subject: str
    message: str
    reason: str


DENIALS: dict[str, DenialNotice] = {
    "text": DenialNotice(
        type="words-exceeded",
        subject="Words Exceeded",
        message="You have exceeded your allotted word limit.",
        reason="Customer has exceeded their allotted word limit.",
    ),
    "image": DenialNotice(
        type="images-exceeded",
        subject="Images Exceeded",
        message="You have exceeded your allotted limit of image generations.",
        reason="Customer has exceeded their allotted images limit.",
    ),
    "audio": DenialNotice(
        type="speechtotext-exceeded",
        subject="Speech To Text Exceeded",
        message="You have exceeded your allotted limit of speech to text conversions.",
        reason="Customer has exceeded their allotted speech to text limit.",
    ),
}


class AdmissionController:
    """Gates a request on the owning customer's remaining allotment.

    Counters are only read here. Spending happens when a result is persisted,
    so a failed generation never costs quota.
    """

    def __init__(
        self,
        entitlements: EntitlementStore,
        notifications: NotificationSink,
        requests: RequestStore,
        settings: Settings,
    ) -> None:
        self._entitlements = entitlements
        self._notifications = notifications
        self._requests = requests
        self._settings = settings

    def check_allotment(
        self, content_type: str, customer: Customer, request: GenerationRequest, *, slots: int | None = None
    ) -> bool:
        number = max(1, request.number if slots is None else slots)
        if content_type == "text":
            available = self._entitlements.remaining_words(customer)
            projected = self._entitlements.average_words(request.template.id, days=AVERAGE_WINDOW_DAYS) * number
            return available > 0 and available >= projected
        if content_type == "image":
            return self._entitlements.remaining_images(customer) >= number
        if content_type == "audio":
            return self._entitlements.remaining_speech_to_text(customer) >= number
        return True

    def admit(self, request: GenerationRequest, *, slots: int | None = None) -> None:
        """Admit ``request`` for ``slots`` outputs (all of ``request.number`` when omitted)."""
        if slots == 0:
            return
        content_type = request.template.type
        if self.check_allotment(content_type, request.customer, request, slots=slots):
            return

        notice = DENIALS[content_type]
        ADMISSION_DENIED.labels(limit=notice.type).inc()
        request.status = "denied"
        self._requests.mark_status(request, "denied")
        self._requests.record_event(
            request, "admission.denied", level="warn", payload={"limit": notice.type, "message": notice.reason}
        )
        self._notify(request, notice)
        raise AdmissionDenied(notice.reason, limit=notice.type)

    def _notify(self, request: GenerationRequest, notice: DenialNotice) -> None:
        payload = {
            "type": notice.type,
            "subject": notice.subject,
            "message": notice.message,
            "action": self._settings.plans_url,
            "locale": request.locale or self._settings.default_locale,
            "archived": False,
        }
        # Delivery is best-effort; the denial stands either way
        try:
            self._notifications.notify(request.user_id, payload)
        except Exception:  # noqa: BLE001
            logger.warning("notification %s for request %s could not be sent", notice.type, request.id, exc_info=True)
