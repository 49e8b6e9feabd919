"""
ARAG Agent Copilot — Knowledge Assembler (Augmentation)
Builds the request envelope from the raw email, the client identifier,
the resolved history and the agent's playbook.

History is sent as a flat newest-first text digest, never as records.
The handbook PDF travels as a separate attachment, never inlined as text.
"""
import base64
import binascii
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from orchestrator.copilot_prompt import (
    CASE_PROMPT,
    CLIENT_ID_NOT_PROVIDED,
    COPILOT_SYSTEM_PROMPT,
    EMAIL_TEXT_HEADER,
    HANDBOOK_NOTE,
    NO_HISTORY_SENTINEL,
)
from orchestrator.errors import InvalidInputError

logger = logging.getLogger("copilot.knowledge")

_IMAGE_SIGNATURES = [
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
]


# ============================================================
# Data Models
# ============================================================

@dataclass
class Attachment:
    """Binary payload sent alongside the prompt."""
    media_type: str
    data: bytes = field(repr=False)
    name: Optional[str] = None

    @property
    def base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")


@dataclass
class EmailInput:
    """Exactly one of screenshot or text."""
    image: Optional[Attachment] = None
    text: Optional[str] = None

    @classmethod
    def from_text(cls, text: str) -> "EmailInput":
        return cls(text=text)

    @classmethod
    def from_image(cls, data: bytes, media_type: Optional[str] = None) -> "EmailInput":
        return cls(image=Attachment(media_type=media_type or sniff_image_type(data), data=data))

    @classmethod
    def from_data_url(cls, data_url: str) -> "EmailInput":
        """Accept 'data:image/png;base64,....' or bare base64."""
        media_type = None
        payload = data_url
        if data_url.startswith("data:") and "," in data_url:
            header, payload = data_url.split(",", 1)
            media_type = header[5:].split(";", 1)[0] or None
        try:
            raw = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise InvalidInputError(f"Screenshot is not valid base64: {e}") from e
        return cls.from_image(raw, media_type)

    @property
    def mode(self) -> str:
        return "image" if self.image is not None else "text"


@dataclass
class RequestEnvelope:
    """Everything the generation client needs for one case."""
    system: str
    prompt: str
    history_digest: str
    email_text: Optional[str] = None
    image: Optional[Attachment] = None
    handbook: Optional[Attachment] = None
    metadata: dict = field(default_factory=dict)


# ============================================================
# Helpers
# ============================================================

def sniff_image_type(data: bytes) -> str:
    for magic, media_type in _IMAGE_SIGNATURES:
        if data.startswith(magic):
            return media_type
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return "image/png"


def validate_input(email: Optional[EmailInput]) -> EmailInput:
    """Raise InvalidInputError unless exactly one usable input is present."""
    if email is None or (email.image is None and email.text is None):
        raise InvalidInputError("Please upload an email screenshot or paste the email text.")
    if email.image is not None and email.text is not None:
        raise InvalidInputError("Provide either a screenshot or email text, not both.")
    if email.image is not None:
        if not email.image.data:
            raise InvalidInputError("Please upload an email screenshot.")
        return email
    if not email.text.strip():
        raise InvalidInputError("Please paste the email text.")
    return email


def format_history_digest(history: list) -> str:
    """One line per record, newest first. Empty history → explicit sentinel."""
    if not history:
        return NO_HISTORY_SENTINEL
    return "\n".join(
        f"[Date: {r.date}] [Policy: {r.policy_number or 'Unknown'}] Summary: {r.summary}"
        for r in history
    )


# ============================================================
# Assembler
# ============================================================

class KnowledgeAssembler:
    """Assembles the system instruction, prompt and attachments for a case."""

    def build_system_prompt(self, playbook) -> str:
        handbook_note = ""
        if playbook.handbook is not None:
            handbook_note = HANDBOOK_NOTE.format(name=playbook.handbook.name)
        return COPILOT_SYSTEM_PROMPT.format(
            handbook_note=handbook_note,
            playbook=playbook.rules_text,
        )

    def assemble(self, email: EmailInput, client_id: str, history: list, playbook) -> RequestEnvelope:
        email = validate_input(email)

        digest = format_history_digest(history)
        prompt = CASE_PROMPT.format(
            client_id=(client_id or "").strip() or CLIENT_ID_NOT_PROVIDED,
            stored_memory=digest,
        )

        handbook = None
        if playbook.handbook is not None:
            handbook = Attachment(
                media_type="application/pdf",
                data=playbook.handbook.data,
                name=playbook.handbook.name,
            )

        envelope = RequestEnvelope(
            system=self.build_system_prompt(playbook),
            prompt=prompt,
            history_digest=digest,
            email_text=f"{EMAIL_TEXT_HEADER}{email.text}" if email.text is not None else None,
            image=email.image,
            handbook=handbook,
            metadata={
                "input_mode": email.mode,
                "history_records": len(history),
                "has_handbook": handbook is not None,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        )
        logger.info(
            f"Envelope assembled: mode={email.mode}, history={len(history)} records, "
            f"handbook={'yes' if handbook else 'no'}"
        )
        return envelope
