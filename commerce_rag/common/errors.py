"""
Error taxonomy shared by the indexer and the agent layer.

Every error carries an HTTP-shaped status code and a user-facing pt-BR
message. Retry decisions go through is_permanent_failure() only.
"""

from typing import Any, Dict, Optional


class RagError(Exception):
    """Base error with a status code and a user-facing message"""

    status_code: int = 500

    def __init__(self, message: str, status_code: Optional[int] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details or {}

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"mensagem": self.message}
        if self.details:
            body["detalhes"] = self.details
        return body


class ValidationError(RagError):
    """Caller-fault input error (empty question, bad date, topK out of range...)"""
    status_code = 400


class GuardrailError(ValidationError):
    """Question matched an unsafe pattern"""


class UnknownToolError(ValidationError):
    """Tool name outside the closed tool set"""

    def __init__(self, tool_name: str):
        super().__init__(f"Ferramenta MCP desconhecida: {tool_name}")
        self.tool_name = tool_name


class AuthorizationError(RagError):
    status_code = 403


class PermanentItemError(RagError):
    """Item-level failure that retrying cannot fix"""
    status_code = 422


class NotFoundError(PermanentItemError):
    status_code = 404


class TransientError(RagError):
    """Network or infrastructure failure worth retrying"""
    status_code = 503


class IndexingError(RagError):
    """Terminal indexing failure (e.g. embeddings exhausted their retries)"""
    status_code = 500


def is_permanent_failure(error: BaseException) -> bool:
    """
    Classify a failure for retry and ledger purposes.

    Any RagError in the 4xx range is caller-fault and therefore permanent,
    which includes not-found. Everything else is treated as retryable.
    """
    if not isinstance(error, RagError):
        return False
    return 400 <= error.status_code < 500


def error_message(error: BaseException) -> str:
    """Message stored in the failure ledger and logs"""
    if isinstance(error, RagError):
        return error.message
    return str(error) or error.__class__.__name__
