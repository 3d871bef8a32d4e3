# kht/chats.py
import asyncio
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import database, models, schemas
from .deps import get_current_doctor, get_current_patient, get_current_user, identity_from_token
from .realtime import broker

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chats", tags=["chats"])
doctor_router = APIRouter(prefix="/doctors/me/chats", tags=["chats"])
patient_router = APIRouter(prefix="/patients/me/chats", tags=["chats"])

# websocket close code for auth / membership failures
POLICY_VIOLATION = 1008


def message_row(message: models.Message) -> dict:
    return schemas.MessageOut.model_validate(message).model_dump(mode="json")


def doctor_info(db: Session, doctor_id: str) -> Optional[dict]:
    user = db.query(models.User).filter(models.User.id == doctor_id).first()
    if not user:
        return None
    profile = db.query(models.DoctorProfile).filter(models.DoctorProfile.id == doctor_id).first()
    return {
        "id": user.id,
        "phone_number": user.phone_number,
        "full_name": profile.full_name if profile else None,
    }


def chat_out(db: Session, chat: models.Chat) -> dict:
    return {
        "id": chat.id,
        "doctor_id": chat.doctor_id,
        "patient_id": chat.patient_id,
        "last_message_at": chat.last_message_at,
        "created_at": chat.created_at,
        "doctor": doctor_info(db, chat.doctor_id),
    }


def find_chat(db: Session, doctor_id: str, patient_id: str) -> Optional[models.Chat]:
    return (
        db.query(models.Chat)
        .filter(models.Chat.doctor_id == doctor_id, models.Chat.patient_id == patient_id)
        .first()
    )


def ensure_contact(db: Session, doctor_id: str, patient_id: str) -> models.DoctorPatientContact:
    contact = (
        db.query(models.DoctorPatientContact)
        .filter(
            models.DoctorPatientContact.doctor_id == doctor_id,
            models.DoctorPatientContact.patient_id == patient_id,
        )
        .first()
    )
    if contact:
        contact.updated_at = datetime.utcnow()
        return contact
    contact = models.DoctorPatientContact(doctor_id=doctor_id, patient_id=patient_id)
    db.add(contact)
    db.flush()
    return contact


def get_or_create_chat(db: Session, doctor_id: str, patient_id: str) -> models.Chat:
    chat = find_chat(db, doctor_id, patient_id)
    if chat:
        return chat
    now = datetime.utcnow()
    chat = models.Chat(doctor_id=doctor_id, patient_id=patient_id, created_at=now, last_message_at=now)
    db.add(chat)
    try:
        db.commit()
    except IntegrityError:
        # another request created the pair first
        db.rollback()
        chat = find_chat(db, doctor_id, patient_id)
        if not chat:
            raise
        return chat
    db.refresh(chat)
    logger.info("Created chat %s for doctor=%s patient=%s", chat.id, doctor_id, patient_id)
    return chat


def post_message(
    db: Session,
    chat: models.Chat,
    sender_id: str,
    sender_type: str,
    content: str,
) -> models.Message:
    """Insert a message, bump the chat timestamp and push it to live subscribers."""
    recipient_id = chat.patient_id if sender_id == chat.doctor_id else chat.doctor_id
    now = datetime.utcnow()
    message = models.Message(
        chat_id=chat.id,
        sender_id=sender_id,
        recipient_id=recipient_id,
        sender_type=sender_type,
        content=content,
        created_at=now,
    )
    db.add(message)
    chat.last_message_at = now
    db.commit()
    db.refresh(message)
    broker.publish("messages", "INSERT", message_row(message))
    return message


def participant_chat(db: Session, chat_id: str, user: models.User) -> models.Chat:
    chat = db.query(models.Chat).filter(models.Chat.id == chat_id).first()
    if not chat:
        raise HTTPException(status_code=404, detail="Chat not found")
    if user.id not in (chat.doctor_id, chat.patient_id):
        raise HTTPException(status_code=403, detail="Not a participant of this chat")
    return chat


def _clean_content(content: str) -> str:
    text = (content or "").strip()
    if not text:
        raise HTTPException(status_code=400, detail="Message content required")
    return text


# ---- Doctor side: chat addressed by patient
@doctor_router.get("/{patient_id}", response_model=Optional[schemas.ChatOut])
def get_chat_with_patient(
    patient_id: str,
    db: Session = Depends(database.get_db),
    current = Depends(get_current_doctor),
):
    # reading never creates the chat; the first message does
    chat = find_chat(db, current.id, patient_id)
    return chat_out(db, chat) if chat else None


@doctor_router.post("/{patient_id}/messages", response_model=schemas.MessageOut, status_code=status.HTTP_201_CREATED)
def send_to_patient(
    patient_id: str,
    payload: schemas.MessageIn,
    db: Session = Depends(database.get_db),
    current = Depends(get_current_doctor),
):
    content = _clean_content(payload.content)
    patient = (
        db.query(models.User)
        .filter(models.User.id == patient_id, models.User.role == "patient")
        .first()
    )
    if not patient:
        raise HTTPException(status_code=404, detail="Patient not found")

    ensure_contact(db, current.id, patient_id)
    db.commit()
    chat = get_or_create_chat(db, current.id, patient_id)
    return post_message(db, chat, current.id, "doctor", content)


# ---- Patient side: chats with contacted doctors
@patient_router.get("", response_model=list[schemas.ChatOut])
def list_patient_chats(
    db: Session = Depends(database.get_db),
    current = Depends(get_current_patient),
):
    doctor_ids = [
        c.doctor_id
        for c in db.query(models.DoctorPatientContact)
        .filter(models.DoctorPatientContact.patient_id == current.id)
        .all()
    ]
    if not doctor_ids:
        return []

    chats = (
        db.query(models.Chat)
        .filter(models.Chat.patient_id == current.id, models.Chat.doctor_id.in_(doctor_ids))
        .order_by(models.Chat.last_message_at.desc(), models.Chat.created_at.desc())
        .all()
    )
    return [chat_out(db, c) for c in chats]


# ---- Either participant
@router.get("/{chat_id}", response_model=schemas.ChatOut)
def get_chat(
    chat_id: str,
    db: Session = Depends(database.get_db),
    current = Depends(get_current_user),
):
    return chat_out(db, participant_chat(db, chat_id, current))


@router.get("/{chat_id}/messages", response_model=list[schemas.MessageOut])
def list_messages(
    chat_id: str,
    db: Session = Depends(database.get_db),
    current = Depends(get_current_user),
):
    participant_chat(db, chat_id, current)
    return (
        db.query(models.Message)
        .filter(models.Message.chat_id == chat_id)
        .order_by(models.Message.created_at.asc())
        .all()
    )


@router.post("/{chat_id}/messages", response_model=schemas.MessageOut, status_code=status.HTTP_201_CREATED)
def send_message(
    chat_id: str,
    payload: schemas.MessageIn,
    db: Session = Depends(database.get_db),
    current = Depends(get_current_user),
):
    chat = participant_chat(db, chat_id, current)
    return post_message(db, chat, current.id, current.role, _clean_content(payload.content))


@router.post("/{chat_id}/read", response_model=schemas.ReadReceipt)
def mark_read(
    chat_id: str,
    db: Session = Depends(database.get_db),
    current = Depends(get_current_user),
):
    chat = participant_chat(db, chat_id, current)
    other_id = chat.patient_id if current.id == chat.doctor_id else chat.doctor_id
    unread = (
        db.query(models.Message)
        .filter(
            models.Message.chat_id == chat.id,
            models.Message.sender_id == other_id,
            models.Message.read_at.is_(None),
        )
        .all()
    )
    if not unread:
        return {"updated": 0}

    now = datetime.utcnow()
    for m in unread:
        m.read_at = now
    db.commit()
    for m in unread:
        db.refresh(m)
        broker.publish("messages", "UPDATE", message_row(m))
    return {"updated": len(unread)}


async def stop_sender(task: asyncio.Task, chat_id: str) -> None:
    """Cancels the feed pump and collects whatever it ended with."""
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    except Exception:
        logger.exception("Feed pump for chat %s failed", chat_id)


def _authorize_feed(chat_id: str, token: Optional[str]) -> Optional[str]:
    """Returns the subscriber's user id when the token belongs to a chat participant."""
    if not token:
        return None
    db = database.SessionLocal()
    try:
        identity = identity_from_token(token, db)
        if not identity:
            return None
        chat = db.query(models.Chat).filter(models.Chat.id == chat_id).first()
        if not chat or identity.id not in (chat.doctor_id, chat.patient_id):
            return None
        return identity.id
    finally:
        db.close()


@router.websocket("/{chat_id}/ws")
async def chat_feed(websocket: WebSocket, chat_id: str, token: Optional[str] = None, echo: bool = False):
    user_id = await run_in_threadpool(_authorize_feed, chat_id, token)
    if not user_id:
        await websocket.close(code=POLICY_VIOLATION)
        return

    # subscribe before accepting so nothing published after the handshake is missed
    sub = broker.subscribe("messages", "chat_id", chat_id)

    async def pump():
        while True:
            event = await sub.queue.get()
            new = event["new"]
            own = new.get("sender_id") == user_id and new.get("sender_type") != "ai"
            if event["event"] == "INSERT" and own and not echo:
                continue
            await websocket.send_json(event)

    sender = None
    try:
        await websocket.accept()
        sender = asyncio.create_task(pump())
        while True:
            # inbound frames are only keepalives
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        if sender:
            await stop_sender(sender, chat_id)
        broker.unsubscribe(sub)
        logger.debug("Feed for chat %s closed (user=%s)", chat_id, user_id)
