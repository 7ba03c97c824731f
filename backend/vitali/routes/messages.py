"""
Vitali Backend — Consultation Message Routes
==============================================

What:  GET/POST /api/messages/{patient_id} for asynchronous message threads.
How:   Thin handlers: resolve the store, delegate to MessageService.
Who:   Called by the patient and doctor messaging screens.

Handlers are `async def` so every bucket write happens on the event loop
thread, in request order.
"""

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends

from vitali.dependencies import get_store
from vitali.schemas.message import MessageCreate, MessagePostResponse
from vitali.schemas.system import ErrorResponse
from vitali.services.message_service import message_service
from vitali.store import AppStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/messages", tags=["Messages"])


@router.get(
    "/{patient_id}",
    summary="Fetch a patient's message thread",
    description="Returns the doctor/patient thread oldest-first, or an empty list.",
)
async def get_thread(
    patient_id: str,
    store: AppStore = Depends(get_store),
) -> List[Dict[str, Any]]:
    return message_service.list_thread(store, patient_id)


@router.post(
    "/{patient_id}",
    status_code=201,
    response_model=MessagePostResponse,
    responses={
        201: {"description": "Message appended", "model": MessagePostResponse},
        400: {"description": "Missing or invalid fields", "model": ErrorResponse},
    },
    summary="Post a message to a patient's thread",
)
async def post_message(
    patient_id: str,
    payload: MessageCreate,
    store: AppStore = Depends(get_store),
) -> MessagePostResponse:
    """
    Append a message to the thread.

    Error responses (handled by global exception handlers):
        HTTP 400: senderType/message missing, invalid senderType, blank message
    """
    entry = message_service.post_message(store, patient_id, payload)
    return MessagePostResponse(data=entry)
