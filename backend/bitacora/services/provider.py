"""
Provider capability boundary.

Every pipeline component talks to the language model through this contract:
`complete()` returns an instance of the requested Pydantic schema and `embed()`
returns a vector. Failures surface as one of the typed errors below, decided
once by the adapter (see openai_provider.py) instead of by string-sniffing at
each call site.
"""

from __future__ import annotations

from typing import Optional, Protocol, Type, TypeVar

from pydantic import BaseModel

from .models import Attachment

SchemaT = TypeVar("SchemaT", bound=BaseModel)

RATE_LIMIT_KEYWORDS = ("429", "rate limit", "rate_limit", "quota", "exceeded")

DEFAULT_RATE_LIMIT_MESSAGE = (
    "El servicio de IA está recibiendo demasiadas solicitudes. "
    "Intenta de nuevo en unos minutos."
)


class ProviderError(Exception):
    """Any failure of the completion/embedding provider."""


class RateLimitError(ProviderError):
    """The provider refused the call because of rate limiting or quota."""

    def __init__(self, message: str = "Rate limited by provider", user_message: Optional[str] = None):
        super().__init__(message)
        self.user_message = user_message or DEFAULT_RATE_LIMIT_MESSAGE


class MalformedResponseError(ProviderError):
    """The provider answered, but with nothing usable (empty or off-schema)."""


def is_rate_limit_error(exc: BaseException) -> bool:
    """
    Decide whether a raw exception represents rate limiting.

    Checks, in order: our own typed error, an HTTP 429 status, the
    `rate_limit_exceeded` error code, and finally rate-limit keywords
    in the message.
    """
    if isinstance(exc, RateLimitError):
        return True
    if getattr(exc, "status_code", None) == 429 or getattr(exc, "status", None) == 429:
        return True
    if getattr(exc, "code", None) == "rate_limit_exceeded":
        return True
    message = str(exc).lower()
    return any(keyword in message for keyword in RATE_LIMIT_KEYWORDS)


class CompletionProvider(Protocol):
    model_name: str
    embedding_model_name: str

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        schema: Type[SchemaT],
        *,
        attachment: Optional[Attachment] = None,
        temperature: float = 0.3,
        max_tokens: Optional[int] = None,
    ) -> SchemaT:
        ...

    def embed(self, text: str) -> list[float]:
        ...
