from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Awaitable, Callable, Literal, Sequence

from pydantic import ValidationError

from dropmanager.common.settings import ANALYZER_MODEL
from dropmanager.utils import completion_util
from dropmanager.utils.json_util import parse_json_payload

from .schemas import Sentiment, TaskCandidate

logger = logging.getLogger(__name__)

TextGenerator = Callable[[str], Awaitable[str]]


class AnalysisError(RuntimeError):
    """Raised when a language-analysis attempt fails or returns unusable output."""


@dataclass
class ProjectSuggestion:
    kind: Literal["existing", "new", "general"]
    name: str | None = None


def openai_text_generator(model: str = ANALYZER_MODEL) -> TextGenerator | None:
    """Adapt the blocking OpenAI client to the async generator shape.

    Returns None when no provider credentials are configured, which leaves the
    analyzer without a capability and sends every caller down its fallback.
    """
    if not completion_util.is_configured():
        return None

    async def _generate(prompt: str) -> str:
        messages = [{"role": "user", "content": prompt}]
        text, _tokens = await asyncio.to_thread(completion_util.generate_text, messages, model)
        return text

    return _generate


TASK_EXTRACTION_PROMPT = """
You are an AI assistant that extracts tasks from employee weekly update messages.
Analyze the following message and extract individual tasks, their status, and priority.

Message: "{message}"

Please respond with a JSON array of tasks. Each task should have this structure:
{{
  "title": "Brief task title (max 100 chars)",
  "description": "Full task description",
  "status": "completed|in-progress|blocked|not-started",
  "priority": "low|medium|high|critical",
  "tags": ["relevant", "keywords"],
  "estimatedHours": number or null,
  "dueDate": "YYYY-MM-DD" or null
}}

Guidelines:
- Extract concrete, actionable tasks only
- Ignore general statements like "had a good week"
- Infer status from context (completed = "finished", "done", "shipped"; in-progress = "working on", "currently"; blocked = "waiting for", "stuck"; not-started = "will", "planning")
- Infer priority from urgency words (critical = "urgent", "asap"; high = "important", "priority"; medium = default; low = "later", "nice to have")
- Extract relevant tags from technology, project, or domain mentions
- Estimate hours if mentioned or can be reasonably inferred
- Extract due dates if mentioned

Respond with ONLY the JSON array, no other text.
"""

SENTIMENT_PROMPT = """
Analyze the sentiment of this employee weekly update message:

"{message}"

Classify the overall sentiment as one of:
- POSITIVE: Progress is good, tasks completed, feeling motivated
- NEGATIVE: Behind schedule, frustrated, challenges without solutions
- BLOCKED: Explicitly mentions blockers, waiting for help, stuck
- NEUTRAL: Factual reporting, mixed progress, normal updates

Respond with only the classification word (POSITIVE, NEGATIVE, BLOCKED, or NEUTRAL).
"""

CATEGORIZE_PROMPT = """
Given this task: "{task}"

And these existing projects: {projects}

Determine if this task belongs to an existing project or needs a new project.

Guidelines:
- Match tasks to existing projects based on domain, technology, or purpose
- Only suggest a new project if the task is clearly different from existing ones
- Consider project scope and relevance

Respond in one of these formats:
- If it matches an existing project: "EXISTING: [project name]"
- If it needs a new project: "NEW PROJECT: [suggested project name]"
- If unclear/general task: "GENERAL"
"""

_EXISTING_RE = re.compile(r"existing:\s*\[?(.+?)\]?\s*$", re.I | re.M)
_NEW_PROJECT_RE = re.compile(r"new project:\s*\[?(.+?)\]?\s*$", re.I | re.M)
_SENTIMENT_LABELS: tuple[Sentiment, ...] = ("blocked", "positive", "negative", "neutral")


class LanguageAnalyzer:
    """Typed front for the text-generation capability.

    Every method raises AnalysisError on failure; callers own the fallback.
    """

    def __init__(self, generator: TextGenerator | None = None) -> None:
        self._generator = generator

    @property
    def available(self) -> bool:
        return self._generator is not None

    async def generate_text(self, prompt: str) -> str:
        if self._generator is None:
            raise AnalysisError("Language analysis capability is not configured")
        try:
            return await self._generator(prompt)
        except Exception as exc:
            raise AnalysisError(str(exc)) from exc

    async def generate_json(self, prompt: str):
        text = await self.generate_text(prompt)
        try:
            return parse_json_payload(text)
        except ValueError as exc:
            raise AnalysisError(f"Unparseable response: {text[:120]!r}") from exc

    async def extract_tasks(self, message_text: str) -> list[TaskCandidate]:
        payload = await self.generate_json(TASK_EXTRACTION_PROMPT.format(message=message_text))
        if not isinstance(payload, list):
            raise AnalysisError("Task extraction response is not a JSON array")
        candidates: list[TaskCandidate] = []
        for item in payload:
            if not isinstance(item, dict):
                continue
            try:
                candidate = TaskCandidate(
                    title=str(item.get("title") or "").strip()[:100],
                    description=str(item.get("description") or item.get("title") or ""),
                    status=item.get("status"),
                    priority=item.get("priority"),
                    tags=item.get("tags") or [],
                    due_date=item.get("dueDate") or item.get("due_date"),
                    estimated_hours=item.get("estimatedHours") or item.get("estimated_hours"),
                )
            except ValidationError as exc:
                logger.debug("Dropping invalid task item %r: %s", item, exc)
                continue
            if len(candidate.title) > 3:
                candidates.append(candidate)
        return candidates

    async def analyze_sentiment(self, message_text: str) -> Sentiment:
        reply = (await self.generate_text(SENTIMENT_PROMPT.format(message=message_text))).strip().lower()
        for label in _SENTIMENT_LABELS:
            if label in reply:
                return label
        raise AnalysisError(f"No sentiment label in response: {reply[:60]!r}")

    async def categorize_project(self, task_description: str, existing_projects: Sequence[str]) -> ProjectSuggestion:
        reply = (
            await self.generate_text(
                CATEGORIZE_PROMPT.format(task=task_description, projects=", ".join(existing_projects))
            )
        ).strip()
        match = _EXISTING_RE.search(reply)
        if match:
            wanted = match.group(1).strip().strip('"').lower()
            for name in existing_projects:
                if name.lower() == wanted:
                    return ProjectSuggestion("existing", name)
            for name in existing_projects:
                if name.lower() in wanted:
                    return ProjectSuggestion("existing", name)
            # Named project does not exist; treat as a new suggestion
            return ProjectSuggestion("new", match.group(1).strip().strip('"'))
        match = _NEW_PROJECT_RE.search(reply)
        if match and match.group(1).strip().strip('"'):
            return ProjectSuggestion("new", match.group(1).strip().strip('"'))
        if "general" in reply.lower():
            return ProjectSuggestion("general")
        raise AnalysisError(f"Unrecognised categorization response: {reply[:80]!r}")
