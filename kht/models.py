# kht/models.py
import uuid
from datetime import datetime

from sqlalchemy import (
    JSON, Boolean, Column, Date, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint,
)

from .database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class AuthIdentity(Base):
    """Phone identity that owns OTP state and sessions."""
    __tablename__ = "auth_identities"

    id = Column(String(36), primary_key=True, default=_uuid)
    phone = Column(String(20), unique=True, nullable=False, index=True)
    otp_hash = Column(String(128), nullable=True)
    otp_sent_at = Column(DateTime, nullable=True)
    otp_expires_at = Column(DateTime, nullable=True)
    otp_attempts = Column(Integer, default=0, nullable=False)
    session_version = Column(Integer, default=0, nullable=False)
    last_sign_in_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), ForeignKey("auth_identities.id"), primary_key=True)
    phone_number = Column(String(20), unique=True, nullable=False, index=True)
    role = Column(String(20), nullable=False)  # "doctor" | "patient"
    created_at = Column(DateTime, default=datetime.utcnow)


class DoctorProfile(Base):
    __tablename__ = "doctor_profiles"

    id = Column(String(36), ForeignKey("users.id"), primary_key=True)
    full_name = Column(String(200), nullable=True)
    specialization = Column(String(200), nullable=True)
    qualification = Column(String(200), nullable=True)
    years_of_experience = Column(Integer, nullable=True)
    hospital_affiliation = Column(String(200), nullable=True)
    is_profile_complete = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class PatientProfile(Base):
    __tablename__ = "patient_profiles"

    id = Column(String(36), ForeignKey("users.id"), primary_key=True)
    full_name = Column(String(200), nullable=True)
    date_of_birth = Column(Date, nullable=True)
    gender = Column(String(20), nullable=True)
    blood_group = Column(String(5), nullable=True)
    allergies = Column(JSON, nullable=True)
    medical_conditions = Column(JSON, nullable=True)
    medical_history = Column(Text, nullable=True)
    profile_completed = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class DoctorAvailability(Base):
    __tablename__ = "doctor_availability"

    id = Column(String(36), primary_key=True, default=_uuid)
    doctor_id = Column(String(36), ForeignKey("users.id"), unique=True, nullable=False)
    status = Column(String(20), nullable=False, default="available")  # "available" | "unavailable"
    start_time = Column(DateTime, nullable=True)
    end_time = Column(DateTime, nullable=True)
    auto_response = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class DoctorPatientContact(Base):
    __tablename__ = "doctor_patient_contacts"
    __table_args__ = (UniqueConstraint("doctor_id", "patient_id", name="uq_contact_pair"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    doctor_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    patient_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Chat(Base):
    __tablename__ = "chats"
    __table_args__ = (UniqueConstraint("doctor_id", "patient_id", name="uq_chat_pair"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    doctor_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    patient_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    last_message_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class Message(Base):
    __tablename__ = "messages"

    id = Column(String(36), primary_key=True, default=_uuid)
    chat_id = Column(String(36), ForeignKey("chats.id", ondelete="CASCADE"), nullable=False, index=True)
    sender_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    recipient_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    sender_type = Column(String(20), nullable=False)  # "doctor" | "patient" | "ai"
    content = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    read_at = Column(DateTime, nullable=True)


class AIResponse(Base):
    __tablename__ = "ai_responses"

    id = Column(String(36), primary_key=True, default=_uuid)
    doctor_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    patient_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    chat_id = Column(String(36), ForeignKey("chats.id", ondelete="CASCADE"), nullable=False, index=True)
    message = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
