# kht/ai_responder.py
import logging
from typing import Iterable, Optional

from google import genai
from google.genai import types

from . import config

logger = logging.getLogger(__name__)

UNAVAILABLE_FALLBACK = "I apologize, but I am unable to provide a response at this moment."
DELAY_FALLBACK = (
    "I notice the doctor hasn't responded yet. They might be with another patient. "
    "Please wait a bit longer or consider scheduling another appointment if this is urgent."
)


class AIResponderError(Exception):
    pass


def format_context(messages: Iterable) -> str:
    """Render chat history oldest first as 'sender_type: content' lines."""
    return "\n".join(f"{m.sender_type}: {m.content}" for m in messages)


def unavailable_prompt(auto_response: Optional[str], context: str):
    system_instruction = (
        "You are a medical assistant responding on behalf of a doctor who is currently unavailable. "
        f"The doctor's automated message is: \"{auto_response or 'I am currently unavailable.'}\". "
        "Provide a professional and helpful response while making it clear you are an AI assistant."
    )
    prompt = f"Previous chat context:\n{context}\n\nPlease provide an appropriate response."
    return system_instruction, prompt


def delay_prompt(auto_response: Optional[str], context: str, minutes: float):
    system_instruction = (
        f"You are a medical assistant responding because the doctor hasn't replied in {minutes:.0f} minutes. "
        "Be empathetic and professional while explaining the delay. If appropriate, suggest the patient "
        "to wait a bit longer or consider booking another appointment. "
        f"The doctor's automated message is: \"{auto_response or 'The doctor is currently unavailable.'}\""
    )
    prompt = (
        f"Recent chat context:\n{context}\n\n"
        "Please provide an appropriate response acknowledging the delay."
    )
    return system_instruction, prompt


def complete(system_instruction: str, prompt: str) -> str:
    """Single completion call against Gemini. Returns the stripped reply text, possibly empty."""
    if not config.GEMINI_API_KEY:
        raise AIResponderError("GEMINI_API_KEY is not configured")

    try:
        client = genai.Client(api_key=config.GEMINI_API_KEY)
        response = client.models.generate_content(
            model=config.GENAI_MODEL,
            contents=prompt,
            config=types.GenerateContentConfig(
                system_instruction=system_instruction,
                max_output_tokens=300,
                temperature=0.7,
            ),
        )
    except Exception as exc:
        raise AIResponderError(f"LLM request failed: {exc}") from exc

    return (response.text or "").strip()


def generate_reply(system_instruction: str, prompt: str, fallback: str) -> str:
    text = complete(system_instruction, prompt)
    if not text:
        logger.warning("Empty completion, using fallback reply")
        return fallback
    return text
