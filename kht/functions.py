# kht/functions.py
"""
Scheduler-triggered jobs that cover for doctors who are slow to reply.

handle-delayed-responses   answers every delayed chat right away.
handle-delayed-response    only queues an "AI Response Pending" marker per delayed chat.
handle-ai-responses        turns the oldest queued marker into a real reply.
"""
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from . import ai_responder, config, database, models
from .chats import post_message
from .deps import require_service_role

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/functions/v1",
    tags=["functions"],
    dependencies=[Depends(require_service_role)],
)

PENDING_MESSAGE = "AI Response Pending"


def delayed_chats(db: Session, minutes: int, now: Optional[datetime] = None) -> List[dict]:
    """Chats whose latest message is from the patient and older than ``minutes``."""
    now = now or datetime.utcnow()
    cutoff = now - timedelta(minutes=minutes)
    candidates = (
        db.query(models.Chat)
        .filter(models.Chat.last_message_at.isnot(None), models.Chat.last_message_at <= cutoff)
        .all()
    )
    delayed = []
    for chat in candidates:
        last = (
            db.query(models.Message)
            .filter(models.Message.chat_id == chat.id)
            .order_by(models.Message.created_at.desc())
            .first()
        )
        if not last or last.sender_type != "patient" or last.created_at > cutoff:
            continue
        delayed.append({
            "chat_id": chat.id,
            "doctor_id": chat.doctor_id,
            "patient_id": chat.patient_id,
            "last_patient_message_at": last.created_at,
            "minutes_since_last_message": (now - last.created_at).total_seconds() / 60,
        })
    return delayed


def auto_response_for(db: Session, doctor_id: str) -> Optional[str]:
    availability = (
        db.query(models.DoctorAvailability)
        .filter(models.DoctorAvailability.doctor_id == doctor_id)
        .first()
    )
    return availability.auto_response if availability else None


def chat_context(db: Session, chat_id: str) -> str:
    recent = (
        db.query(models.Message)
        .filter(models.Message.chat_id == chat_id)
        .order_by(models.Message.created_at.desc())
        .limit(config.CONTEXT_MESSAGES)
        .all()
    )
    return ai_responder.format_context(reversed(recent))


def _error(exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=500, content={"error": str(exc)})


@router.post("/handle-delayed-responses")
def handle_delayed_responses(db: Session = Depends(database.get_db)):
    try:
        delayed = delayed_chats(db, config.DELAY_MINUTES)
    except Exception as exc:
        logger.exception("Delayed chat lookup failed")
        return _error(exc)

    if not delayed:
        return {"message": "No delayed responses to handle"}

    results = []
    for item in delayed:
        chat_id = item["chat_id"]
        try:
            system_instruction, prompt = ai_responder.delay_prompt(
                auto_response_for(db, item["doctor_id"]),
                chat_context(db, chat_id),
                item["minutes_since_last_message"],
            )
            reply = ai_responder.generate_reply(system_instruction, prompt, ai_responder.DELAY_FALLBACK)

            chat = db.query(models.Chat).filter(models.Chat.id == chat_id).first()
            post_message(db, chat, item["doctor_id"], "ai", reply)
            db.add(models.AIResponse(
                doctor_id=item["doctor_id"],
                patient_id=item["patient_id"],
                chat_id=chat_id,
                message=reply,
            ))
            db.commit()
            results.append({"chat_id": chat_id, "success": True, "message": reply})
        except Exception as exc:
            db.rollback()
            logger.exception("Error processing chat %s", chat_id)
            results.append({"chat_id": chat_id, "success": False, "error": str(exc)})

    logger.info("Handled %d delayed chats", len(results))
    return {"success": True, "results": results}


@router.post("/handle-delayed-response")
def queue_delayed_responses(db: Session = Depends(database.get_db)):
    try:
        delayed = delayed_chats(db, config.DELAY_MINUTES)
    except Exception as exc:
        logger.exception("Delayed chat lookup failed")
        return _error(exc)

    if not delayed:
        return {"message": "No delayed responses to process"}

    processed = []
    for item in delayed:
        chat_id = item["chat_id"]
        try:
            pending = (
                db.query(models.AIResponse)
                .filter(
                    models.AIResponse.chat_id == chat_id,
                    models.AIResponse.message == PENDING_MESSAGE,
                )
                .first()
            )
            if pending:
                processed.append({"chat_id": chat_id, "status": "already_pending"})
                continue
            db.add(models.AIResponse(
                doctor_id=item["doctor_id"],
                patient_id=item["patient_id"],
                chat_id=chat_id,
                message=PENDING_MESSAGE,
            ))
            db.commit()
            processed.append({"chat_id": chat_id, "status": "queued"})
        except Exception as exc:
            db.rollback()
            logger.exception("Error queueing chat %s", chat_id)
            processed.append({"chat_id": chat_id, "status": "error", "error": str(exc)})

    logger.info("Queued %d delayed chats", len(processed))
    return {"success": True, "processed": processed}


@router.post("/handle-ai-responses")
def handle_ai_responses(db: Session = Depends(database.get_db)):
    try:
        pending = (
            db.query(models.AIResponse)
            .filter(models.AIResponse.message == PENDING_MESSAGE)
            .order_by(models.AIResponse.created_at.asc())
            .first()
        )
        if not pending:
            return {"message": "No pending AI responses"}

        system_instruction, prompt = ai_responder.unavailable_prompt(
            auto_response_for(db, pending.doctor_id),
            chat_context(db, pending.chat_id),
        )
        reply = ai_responder.generate_reply(system_instruction, prompt, ai_responder.UNAVAILABLE_FALLBACK)

        pending.message = reply
        chat = db.query(models.Chat).filter(models.Chat.id == pending.chat_id).first()
        post_message(db, chat, pending.doctor_id, "ai", reply)
    except Exception as exc:
        db.rollback()
        logger.exception("AI response processing failed")
        return _error(exc)

    return {"success": True, "message": reply}
