"""
Vitali Backend — Consultation Message Service
===============================================

What:  Reads and appends asynchronous doctor/patient message threads.
How:   Threads live in the `consultation_messages` bucket as
       {patient_id: [message, ...]}. Appending through the tracked handle is
       all it takes to schedule persistence; there is no explicit save.
Who:   Called by the /api/messages route handlers.

Validation Rules:
    - senderType and message are required
    - senderType must be `patient` or `doctor`
    - message must not be blank after trimming
    - senderName defaults to "Doctor Office" / "Patient" by sender type
    - senderLanguage outside en/fr/ar falls back to `en`
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List

from vitali.exceptions import ValidationError
from vitali.schemas.message import (
    SENDER_TYPES,
    SUPPORTED_LANGUAGES,
    MessageCreate,
    ThreadMessage,
)
from vitali.store import AppStore, to_plain
from vitali.store.buckets import CONSULTATION_MESSAGES

logger = logging.getLogger(__name__)


def _utc_timestamp() -> str:
    """ISO 8601 with millisecond precision and a Z suffix, e.g. 2026-10-19T08:43:00.123Z."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _message_id() -> str:
    millis = int(datetime.now(timezone.utc).timestamp() * 1000)
    return f"msg-{millis}-{uuid.uuid4().hex[:5]}"


class MessageService:
    """
    Business logic for consultation message threads.

    Stateless: the store is passed in on every call.
    """

    def list_thread(self, store: AppStore, patient_id: str) -> List[Dict[str, Any]]:
        """Return the patient's thread oldest-first; empty if none exists."""
        thread = store.get_bucket(CONSULTATION_MESSAGES).get(patient_id)
        if thread is None:
            return []
        return to_plain(thread)

    def post_message(self, store: AppStore, patient_id: str, payload: MessageCreate) -> ThreadMessage:
        """
        Validate and append a message to the patient's thread.

        Raises:
            ValidationError: missing sender type or message, unknown sender
                type, or a blank message.
        """
        if not payload.sender_type or not payload.message:
            raise ValidationError(
                "senderType and message are required",
                field="senderType" if not payload.sender_type else "message",
            )
        if payload.sender_type not in SENDER_TYPES:
            raise ValidationError("senderType must be patient or doctor", field="senderType")

        text = payload.message.strip()
        if not text:
            raise ValidationError("message cannot be empty", field="message")

        default_name = "Doctor Office" if payload.sender_type == "doctor" else "Patient"
        language = payload.sender_language if payload.sender_language in SUPPORTED_LANGUAGES else "en"

        entry = {
            "id": _message_id(),
            "patientId": patient_id,
            "senderType": payload.sender_type,
            "senderName": payload.sender_name or default_name,
            "senderLanguage": language,
            "message": text,
            "createdAt": _utc_timestamp(),
        }

        threads = store.get_bucket(CONSULTATION_MESSAGES)
        threads.setdefault(patient_id, []).append(entry)

        logger.info(
            "Message %s posted to thread of patient %s by %s (thread length %d)",
            entry["id"],
            patient_id,
            payload.sender_type,
            len(threads[patient_id]),
        )
        return ThreadMessage.model_validate(entry)


message_service = MessageService()
