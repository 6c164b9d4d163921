"""
AI Summarizer Service

Generates an executive summary of a day, week or month of notes.
"""

from typing import List, Literal

from pydantic import BaseModel, Field

from bitacora.config import Config

from .gateway import ProviderGateway
from .models import Entry
from .provider import CompletionProvider

Period = Literal["day", "week", "month"]

PERIOD_DAYS = {"day": 1, "week": 7, "month": 30}


class DigestResult(BaseModel):
    """Structured output for period summaries"""
    summary: str = Field(
        description="Executive summary of the period, fluent professional prose (max 300 words)."
    )
    key_decisions: List[str] = Field(
        default_factory=list,
        description="Key decisions taken during the period."
    )
    pending_items: List[str] = Field(
        default_factory=list,
        description="Critical pending items."
    )
    key_themes: List[str] = Field(
        default_factory=list,
        description="Recurring themes or patterns, if any."
    )


class AISummarizerService:
    """
    AI-powered period summaries.
    """

    def __init__(self, provider: CompletionProvider, gateway: ProviderGateway):
        self.provider = provider
        self.gateway = gateway

    def summarize(self, entries: List[Entry], period: Period = "week") -> DigestResult:
        """
        Generate a summary digest from the notes of a period.

        Args:
            entries: Notes of the period, newest first
            period: "day", "week" or "month"

        Returns:
            DigestResult with summary, decisions, pending items and themes.
        """
        if period not in PERIOD_DAYS:
            raise ValueError(f"Unknown period: {period}")
        if not entries:
            return DigestResult(summary="No notes available to summarize.")

        return self.gateway.call(
            self.provider.complete,
            "You are an assistant that writes clear, actionable executive summaries.",
            self._build_prompt(entries, period),
            DigestResult,
            temperature=0.7,
            max_tokens=800,
        )

    def _build_prompt(self, entries: List[Entry], period: Period) -> str:
        """
        Build the summarization prompt.
        """
        entries_text = "\n".join(
            f"- [{e.type.value}] {e.summary} ({e.created_at.date().isoformat()})" for e in entries
        )

        return f"""The user wants a summary of their {period} of work. These are the notes:

{entries_text}

Write an executive summary in {Config.OUTPUT_LANGUAGE} that:
1. Highlights the most important things that happened.
2. Identifies key decisions taken.
3. Lists critical pending items.
4. Points out recurring themes or patterns, if any.
5. Is concise but complete (300 words at most).

FORMAT: fluent, professional prose, without excessive bullet points.
"""
