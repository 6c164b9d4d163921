"""
Centralized OpenAI client + model configuration, and the OpenAI implementation
of the provider boundary (see provider.py).

This is the only module that knows about vendor exceptions: everything the
OpenAI SDK raises is translated here into RateLimitError / MalformedResponseError /
ProviderError.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Optional, Type

import openai
from openai import OpenAI
from pydantic import ValidationError

from bitacora.config import Config

from .models import Attachment
from .provider import (
    MalformedResponseError,
    ProviderError,
    RateLimitError,
    SchemaT,
    is_rate_limit_error,
)

logger = logging.getLogger(__name__)

MAX_DOCUMENT_CHARS = 50000


@lru_cache(maxsize=1)
def get_openai_client() -> OpenAI:
    if not Config.OPENAI_API_KEY:
        raise ValueError("OPENAI_API_KEY is required for OpenAI-backed features")
    return OpenAI(api_key=Config.OPENAI_API_KEY, timeout=Config.PROVIDER_TIMEOUT_SECONDS)


def chat_model() -> str:
    return Config.OPENAI_MODEL


def embedding_model() -> str:
    # Default is set in Config; override via OPENAI_EMBEDDING_MODEL.
    return getattr(Config, "OPENAI_EMBEDDING_MODEL", "text-embedding-3-small")


def translate_openai_error(exc: Exception) -> ProviderError:
    """Map an exception raised by the OpenAI SDK onto the provider taxonomy."""
    if isinstance(exc, ProviderError):
        return exc
    # "context_length_exceeded" would otherwise match the keyword rule
    if isinstance(exc, openai.BadRequestError):
        return ProviderError(str(exc))
    if isinstance(exc, openai.RateLimitError) or is_rate_limit_error(exc):
        return RateLimitError(str(exc))
    if isinstance(exc, openai.LengthFinishReasonError):
        return MalformedResponseError(f"Response truncated: {exc}")
    if isinstance(exc, (ValidationError, ValueError)):
        return MalformedResponseError(str(exc))
    return ProviderError(str(exc))


def _attachment_messages(attachment: Attachment) -> list[dict[str, Any]]:
    if attachment.kind == "image":
        data = attachment.data.split(",", 1)[1] if "," in attachment.data else attachment.data
        return [
            {
                "role": "user",
                "content": [
                    {
                        "type": "text",
                        "text": (
                            "Also analyze the attached image. Extract any text, information "
                            "or pending actions it contains and combine it with the user's text."
                        ),
                    },
                    {
                        "type": "image_url",
                        "image_url": {"url": f"data:{attachment.mime_type};base64,{data}"},
                    },
                ],
            }
        ]

    if attachment.has_text:
        text = attachment.extracted_text.strip()
        if len(text) > MAX_DOCUMENT_CHARS:
            text = text[:MAX_DOCUMENT_CHARS] + "\n\n[... content truncated, document too long ...]"
        return [
            {
                "role": "user",
                "content": (
                    f'ATTACHED DOCUMENT: "{attachment.file_name}"\n\n'
                    f"EXTRACTED CONTENT:\n{text}\n\n"
                    "The document is the primary source for this entry; the user's text, "
                    "if any, is additional context."
                ),
            }
        ]

    return [
        {
            "role": "user",
            "content": (
                f'A document named "{attachment.file_name}" is attached but its content could '
                "not be extracted. Take into account anything the user says about it."
            ),
        }
    ]


class OpenAIProvider:
    """CompletionProvider backed by OpenAI structured outputs and embeddings."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        embedding_model_name: Optional[str] = None,
        client: Optional[OpenAI] = None,
        timeout: Optional[float] = None,
    ):
        if client is not None:
            self.client = client
        elif api_key:
            self.client = OpenAI(api_key=api_key, timeout=timeout or Config.PROVIDER_TIMEOUT_SECONDS)
        else:
            self.client = get_openai_client()
        self.model_name = model or chat_model()
        self.embedding_model_name = embedding_model_name or embedding_model()

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
        messages: list[dict[str, Any]] = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]
        if attachment is not None:
            messages.extend(_attachment_messages(attachment))

        kwargs: dict[str, Any] = {}
        if max_tokens:
            kwargs["max_tokens"] = max_tokens

        try:
            completion = self.client.beta.chat.completions.parse(
                model=self.model_name,
                messages=messages,
                response_format=schema,
                temperature=temperature,
                **kwargs,
            )
        except Exception as e:
            raise translate_openai_error(e) from e

        if not completion.choices:
            raise MalformedResponseError("OpenAI returned no choices")

        parsed = completion.choices[0].message.parsed
        if parsed is None:
            raise MalformedResponseError("OpenAI returned empty response")
        return parsed

    def embed(self, text: str) -> list[float]:
        try:
            resp = self.client.embeddings.create(model=self.embedding_model_name, input=text)
        except Exception as e:
            raise translate_openai_error(e) from e

        if not resp.data:
            raise MalformedResponseError("No embedding data returned from OpenAI")
        return list(resp.data[0].embedding)
