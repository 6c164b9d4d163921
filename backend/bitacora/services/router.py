"""
Step routing: which analysis stages run for a given input.

The rule table is the source of truth. The model-based router is an optional
alternative that always falls back to the table when the provider fails or
returns nothing usable.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from bitacora.config import Config

from .gateway import ProviderGateway
from .preprocessing import NoteLength
from .provider import CompletionProvider

logger = logging.getLogger(__name__)


class AnalysisStep(str, Enum):
    PREPROCESS = "preprocess"
    CLASSIFY = "classify"
    EXTRACT = "extract"
    ANALYZE = "analyze"
    SUMMARIZE = "summarize"


_FULL_PIPELINE = [
    AnalysisStep.PREPROCESS,
    AnalysisStep.CLASSIFY,
    AnalysisStep.EXTRACT,
    AnalysisStep.ANALYZE,
    AnalysisStep.SUMMARIZE,
]

ROUTE_TABLE = {
    ("short", False): [AnalysisStep.PREPROCESS, AnalysisStep.CLASSIFY, AnalysisStep.SUMMARIZE],
    ("short", True): [
        AnalysisStep.PREPROCESS,
        AnalysisStep.CLASSIFY,
        AnalysisStep.EXTRACT,
        AnalysisStep.SUMMARIZE,
    ],
    ("long", False): _FULL_PIPELINE,
    ("long", True): _FULL_PIPELINE,
}


def route_steps(length: NoteLength, has_attachment: bool) -> List[AnalysisStep]:
    """Deterministic routing from the rule table."""
    return list(ROUTE_TABLE.get((length, bool(has_attachment)), _FULL_PIPELINE))


class RoutePlan(BaseModel):
    """Structured output for model-based routing."""
    steps: List[str] = Field(description="Analysis steps to run, in order")


ROUTER_SYSTEM_PROMPT = (
    "You are a router that decides which analysis steps a note needs. "
    "Answer only with the list of steps, in order."
)


class StepRouter:
    """
    Chooses the analysis steps for an input.

    With `use_ai=False` (the default, from USE_AI_ROUTER) this is the rule table.
    With `use_ai=True` the model proposes the steps; unknown steps are dropped,
    `preprocess` is forced first and `summarize` last, and any provider failure
    falls back to the rule table.
    """

    def __init__(
        self,
        provider: Optional[CompletionProvider] = None,
        gateway: Optional[ProviderGateway] = None,
        use_ai: Optional[bool] = None,
    ):
        self.provider = provider
        self.gateway = gateway
        self.use_ai = Config.USE_AI_ROUTER if use_ai is None else use_ai

    def route(self, text: str, length: NoteLength, has_attachment: bool) -> List[AnalysisStep]:
        if self.use_ai and self.provider is not None and self.gateway is not None:
            return self.route_with_ai(text, length, has_attachment)
        steps = route_steps(length, has_attachment)
        logger.debug("Rule-based route (%s, attachment=%s): %s", length, has_attachment, steps)
        return steps

    def route_with_ai(self, text: str, length: NoteLength, has_attachment: bool) -> List[AnalysisStep]:
        fallback = route_steps(length, has_attachment)
        prompt = self._build_prompt(text, length, has_attachment)
        try:
            plan = self.gateway.call(
                self.provider.complete,
                ROUTER_SYSTEM_PROMPT,
                prompt,
                RoutePlan,
                temperature=0.3,
                max_tokens=200,
            )
        except Exception as e:
            logger.warning("AI routing failed, falling back to rule table: %s", e)
            return fallback

        steps = _sanitize_steps(plan.steps)
        if not steps:
            return fallback
        logger.debug("AI route (%s, attachment=%s): %s", length, has_attachment, steps)
        return steps

    def _build_prompt(self, text: str, length: NoteLength, has_attachment: bool) -> str:
        return f"""Decide which analysis steps this note needs.

TEXT ({length}):
\"\"\"
{text[:500]}
\"\"\"

HAS ATTACHMENT: {"yes" if has_attachment else "no"}

AVAILABLE STEPS:
- preprocess: basic cleaning and normalization
- classify: note type and target notebook
- extract: tasks, decisions and entities
- analyze: deeper analysis of themes and relations
- summarize: summary

Return the steps in the order they should run."""


def _sanitize_steps(raw_steps: List[str]) -> List[AnalysisStep]:
    valid = {step.value: step for step in AnalysisStep}
    steps: List[AnalysisStep] = []
    for raw in raw_steps or []:
        step = valid.get(str(raw).strip().lower())
        if step is not None and step not in steps:
            steps.append(step)

    # preprocess first, summarize last, whatever order the model chose
    steps = [s for s in steps if s not in (AnalysisStep.PREPROCESS, AnalysisStep.SUMMARIZE)]
    if not steps:
        return []
    return [AnalysisStep.PREPROCESS, *steps, AnalysisStep.SUMMARIZE]
