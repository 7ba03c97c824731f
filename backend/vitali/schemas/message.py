"""
Vitali Backend — Consultation Message Schemas
===============================================

What:  Request/response models for the asynchronous doctor/patient threads.
How:   Field names are snake_case in Python and camelCase on the wire
       (aliases), matching what the mobile client sends.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

SENDER_TYPES = ("patient", "doctor")
SUPPORTED_LANGUAGES = ("en", "fr", "ar")


class MessageCreate(BaseModel):
    """
    Body of POST /api/messages/{patient_id}.

    Every field is optional at the schema level; the service reports missing
    or invalid values as a 400 with a readable message instead of a 422.
    """
    model_config = ConfigDict(populate_by_name=True)

    sender_type: Optional[str] = Field(default=None, alias="senderType")
    sender_name: Optional[str] = Field(default=None, alias="senderName")
    sender_language: Optional[str] = Field(default=None, alias="senderLanguage")
    message: Optional[str] = Field(default=None)

    @field_validator("sender_type", "sender_name", "sender_language", "message", mode="before")
    @classmethod
    def scalar_to_string(cls, v: Any) -> Any:
        """
        Numbers and booleans are sent as text, e.g. {"message": 42} -> "42".

        Falsy scalars (0, false) count as missing, so the service reports them
        as required fields.
        """
        if isinstance(v, bool):
            return "true" if v else None
        if isinstance(v, (int, float)):
            return str(v) if v else None
        return v


class ThreadMessage(BaseModel):
    """One stored message, as kept in the consultation_messages bucket."""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(description="msg-<epoch ms>-<random suffix>")
    patient_id: str = Field(alias="patientId")
    sender_type: str = Field(alias="senderType", description="patient or doctor")
    sender_name: str = Field(alias="senderName")
    sender_language: str = Field(alias="senderLanguage", description="en, fr or ar")
    message: str
    created_at: str = Field(alias="createdAt", description="ISO 8601 UTC timestamp")


class MessagePostResponse(BaseModel):
    """Response of POST /api/messages/{patient_id} (HTTP 201)."""
    message: str = Field(default="Thread message posted")
    data: ThreadMessage
