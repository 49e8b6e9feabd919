"""
ARAG Agent Copilot — Error taxonomy.
Every error carries a short `kind` so the workspace can show it and the
dashboard can map it to a status code without isinstance ladders.
"""


class CopilotError(Exception):
    """Base class for all copilot errors."""

    kind = "error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__doc__ or self.kind)
        self.message = str(self)


# -------------------------------------------------------
# Caller side
# -------------------------------------------------------

class InvalidInputError(CopilotError):
    """No email screenshot or text was provided."""

    kind = "invalid_input"


class CaseInProgressError(CopilotError):
    """A case is already running or awaiting review in this workspace."""

    kind = "case_in_progress"


# -------------------------------------------------------
# Generation endpoint
# -------------------------------------------------------

class GenerationError(CopilotError):
    """The generation endpoint failed."""

    kind = "generation_failed"


class MissingCredentialError(GenerationError):
    """No API key is configured for the generation endpoint."""

    kind = "missing_credential"


class AuthenticationError(GenerationError):
    """The generation endpoint rejected the configured API key."""

    kind = "authentication_failed"


class EmptyResponseError(GenerationError):
    """The AI returned an empty response."""

    kind = "empty_response"


class ResponseParseError(GenerationError):
    """The AI response could not be parsed as structured data."""

    kind = "response_parse_failed"


class MalformedResponseError(ResponseParseError):
    """The AI response is missing required fields."""

    kind = "malformed_response"


# -------------------------------------------------------
# History stores (never escalated to case failure)
# -------------------------------------------------------

class RemoteStoreError(CopilotError):
    """The remote history store could not be reached or refused the request."""

    kind = "remote_store_failed"


class LocalStoreError(CopilotError):
    """The local workspace file could not be read or written."""

    kind = "local_store_failed"
