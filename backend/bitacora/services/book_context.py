"""
Notebook context refinement.

After a note is saved, its notebook's description is rewritten to fold in the
new content. Best effort: any failure keeps the current description.
"""

from __future__ import annotations

import logging
from typing import Optional

from pydantic import BaseModel, Field

from bitacora.config import Config

from .gateway import ProviderGateway
from .provider import CompletionProvider

logger = logging.getLogger(__name__)

MAX_CONTEXT_CHARS = 500


class BookDescription(BaseModel):
    description: str = Field(description="Updated notebook description, at most two sentences")


class BookContextService:
    def __init__(self, provider: CompletionProvider, gateway: ProviderGateway):
        self.provider = provider
        self.gateway = gateway

    def refine(self, book_name: str, current_context: Optional[str], new_summary: str) -> str:
        prompt = f"""You maintain a notebook called "{book_name}".

Current description: "{current_context or 'No description yet.'}"

The user just added this note: "{new_summary}"

Write a NEW short description (two sentences at most) for this notebook that merges the
previous description with the new information, so it keeps describing what the project or
theme is about. Return only the description, without introductions or quotes.
Style: friendly, professional, direct. Write it in {Config.OUTPUT_LANGUAGE}."""

        try:
            result = self.gateway.call(
                self.provider.complete,
                "You write concise, professional notebook descriptions.",
                prompt,
                BookDescription,
                temperature=0.7,
                max_tokens=200,
            )
        except Exception as e:
            logger.warning("Could not refine context for book %r: %s", book_name, e)
            return current_context or ""

        description = (result.description or "").strip().strip('"').strip()
        return description[:MAX_CONTEXT_CHARS] or current_context or ""
