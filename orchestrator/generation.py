"""
ARAG Agent Copilot — Generation Client
Sends the assembled envelope to Claude with a fixed response schema and
normalizes every failure into the copilot error taxonomy.

The schema is enforced by forcing a single tool call; the tool input is
the structured result.
"""
import json
import logging
import re
from dataclasses import asdict, dataclass
from typing import Optional

import anthropic

from orchestrator.errors import (
    AuthenticationError,
    EmptyResponseError,
    GenerationError,
    MalformedResponseError,
    MissingCredentialError,
    ResponseParseError,
)
from orchestrator.knowledge import RequestEnvelope

logger = logging.getLogger("copilot.generation")

RESULT_TOOL_NAME = "record_case_analysis"

REQUIRED_FIELDS = (
    "analysis",
    "recommendation",
    "nextSteps",
    "replyEnglish",
    "replyGerman",
    "extractedClientName",
)

RESPONSE_SCHEMA = {
    "type": "object",
    "properties": {
        "analysis": {"type": "string", "description": "Internal analysis of the request and tone."},
        "recommendation": {"type": "string", "description": "What the agent should do."},
        "nextSteps": {"type": "string", "description": "Concrete next steps for the agent."},
        "replyEnglish": {"type": "string", "description": "Reply draft in English."},
        "replyGerman": {"type": "string", "description": "Reply draft in German."},
        "extractedClientName": {"type": "string", "description": "The client's full name."},
        "extractedPolicyNumber": {
            "type": ["string", "null"],
            "description": "The extracted policy number if found, otherwise null.",
        },
    },
    "required": list(REQUIRED_FIELDS),
}


# ============================================================
# Data Models
# ============================================================

@dataclass
class CaseResult:
    """Structured generation output. Lives only for one case."""
    analysis: str
    recommendation: str
    next_steps: str
    reply_english: str
    reply_german: str
    extracted_client_name: str
    extracted_policy_number: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: dict) -> "CaseResult":
        if not isinstance(payload, dict):
            raise ResponseParseError(f"Expected a JSON object, got {type(payload).__name__}")
        missing = [f for f in REQUIRED_FIELDS if f not in payload or payload[f] is None]
        if missing:
            raise MalformedResponseError(f"AI response missing required fields: {', '.join(missing)}")
        wrong = [f for f in REQUIRED_FIELDS if not isinstance(payload[f], str)]
        if wrong:
            raise MalformedResponseError(f"AI response fields must be strings: {', '.join(wrong)}")
        policy = payload.get("extractedPolicyNumber")
        if policy is not None and not isinstance(policy, str):
            raise MalformedResponseError("extractedPolicyNumber must be a string or null")
        return cls(
            analysis=payload["analysis"],
            recommendation=payload["recommendation"],
            next_steps=payload["nextSteps"],
            reply_english=payload["replyEnglish"],
            reply_german=payload["replyGerman"],
            extracted_client_name=payload["extractedClientName"],
            extracted_policy_number=(policy or "").strip() or None,
        )

    def to_dict(self) -> dict:
        return asdict(self)


# ============================================================
# Client
# ============================================================

class GenerationClient:
    """Claude wrapper. One call per case, no retries."""

    def __init__(self, api_key: str, model: str, max_output_tokens: int = 4096,
                 timeout: float = 90.0, client=None):
        self._api_key = (api_key or "").strip()
        self.model = model
        self.max_output_tokens = max_output_tokens
        self.timeout = timeout
        self._client = client

    @property
    def has_credential(self) -> bool:
        return bool(self._api_key)

    def ensure_credential(self):
        if not self._api_key:
            raise MissingCredentialError("No API key configured. Please select an API key.")

    def _get_client(self):
        if self._client is None:
            self._client = anthropic.Anthropic(
                api_key=self._api_key,
                timeout=self.timeout,
                max_retries=0,
            )
        return self._client

    # -------------------------------------------------------
    # Request building
    # -------------------------------------------------------

    def build_content(self, envelope: RequestEnvelope) -> list:
        """Prompt text, then the email (image or text), then the handbook."""
        content = [{"type": "text", "text": envelope.prompt}]
        if envelope.image is not None:
            content.append({
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": envelope.image.media_type,
                    "data": envelope.image.base64,
                },
            })
        if envelope.email_text is not None:
            content.append({"type": "text", "text": envelope.email_text})
        if envelope.handbook is not None:
            block = {
                "type": "document",
                "source": {
                    "type": "base64",
                    "media_type": envelope.handbook.media_type,
                    "data": envelope.handbook.base64,
                },
            }
            if envelope.handbook.name:
                block["title"] = envelope.handbook.name
            content.append(block)
        return content

    # -------------------------------------------------------
    # Response parsing
    # -------------------------------------------------------

    def parse_response(self, response) -> CaseResult:
        blocks = list(getattr(response, "content", None) or [])
        if not blocks:
            raise EmptyResponseError("The AI returned an empty response.")

        for block in blocks:
            if getattr(block, "type", None) == "tool_use" and block.name == RESULT_TOOL_NAME:
                return CaseResult.from_payload(block.input)

        text = "".join(getattr(b, "text", "") for b in blocks if getattr(b, "type", None) == "text").strip()
        if not text:
            raise EmptyResponseError("The AI returned an empty response.")
        return CaseResult.from_payload(self._parse_json_text(text))

    @staticmethod
    def _parse_json_text(text: str) -> dict:
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            # Claude sometimes wraps JSON in markdown code blocks
            json_match = re.search(r"```(?:json)?\s*([\s\S]*?)\s*```", text)
            if json_match:
                try:
                    return json.loads(json_match.group(1))
                except json.JSONDecodeError as e:
                    raise ResponseParseError(f"AI response is not valid JSON: {e}") from e
            raise ResponseParseError(f"AI response is not valid JSON: {text[:200]}")

    # -------------------------------------------------------
    # Generate
    # -------------------------------------------------------

    def generate(self, envelope: RequestEnvelope) -> CaseResult:
        self.ensure_credential()
        client = self._get_client()

        logger.info(
            f"Calling Claude API: model={self.model}, mode={envelope.metadata.get('input_mode')}, "
            f"history={envelope.metadata.get('history_records', 0)} records"
        )
        try:
            response = client.messages.create(
                model=self.model,
                max_tokens=self.max_output_tokens,
                system=envelope.system,
                messages=[{"role": "user", "content": self.build_content(envelope)}],
                tools=[{
                    "name": RESULT_TOOL_NAME,
                    "description": "Record the structured analysis and bilingual reply drafts for this email.",
                    "input_schema": RESPONSE_SCHEMA,
                }],
                tool_choice={"type": "tool", "name": RESULT_TOOL_NAME},
            )
        except (anthropic.AuthenticationError, anthropic.PermissionDeniedError,
                anthropic.NotFoundError) as e:
            logger.error(f"Claude rejected the API key: {e}")
            raise AuthenticationError(
                "The API key was rejected. Please select a valid API key."
            ) from e
        except anthropic.APITimeoutError as e:
            logger.error(f"Claude API timed out after {self.timeout}s")
            raise GenerationError(f"The AI did not respond within {self.timeout:.0f} seconds.") from e
        except anthropic.APIError as e:
            logger.error(f"Claude API error: {e}")
            raise GenerationError(str(e) or "Analysis failed.") from e

        usage = getattr(response, "usage", None)
        if usage is not None:
            logger.info(f"Claude responded: {usage.input_tokens} in, {usage.output_tokens} out")
        return self.parse_response(response)
