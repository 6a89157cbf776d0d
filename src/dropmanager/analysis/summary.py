from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from dropmanager.core.analyzer import AnalysisError, LanguageAnalyzer
from dropmanager.core.project_manager import ProjectManager
from dropmanager.core.schemas import (
    AISummaryPayload,
    GeneratedSummary,
    KeyMetric,
    SummaryRequest,
    Timeframe,
    WeeklyUpdate,
)
from dropmanager.utils.time_util import TIMEFRAME_WINDOWS, ensure_aware, timeframe_cutoff

from .cache import AnalysisCache, summary_key

logger = logging.getLogger(__name__)

FOCUS_BY_TYPE = {
    "project_status": (
        "Generate a PROJECT STATUS summary focusing on:\n"
        "- Overall project health and progress\n"
        "- Key milestones achieved\n"
        "- Potential risks and blockers\n"
        "- Resource allocation effectiveness\n"
        "- Next steps and upcoming deadlines"
    ),
    "team_performance": (
        "Generate a TEAM PERFORMANCE summary focusing on:\n"
        "- Individual contributor highlights\n"
        "- Team collaboration patterns\n"
        "- Productivity trends and insights\n"
        "- Skill development and growth areas\n"
        "- Communication effectiveness"
    ),
    "weekly_highlights": (
        "Generate a WEEKLY HIGHLIGHTS summary focusing on:\n"
        "- Major accomplishments and wins\n"
        "- Breakthrough moments and innovations\n"
        "- Cross-team collaboration successes\n"
        "- Problem-solving achievements\n"
        "- Notable technical progress"
    ),
    "risk_alerts": (
        "Generate a RISK ALERTS summary focusing on:\n"
        "- Identified project risks and dependencies\n"
        "- Resource constraints and bottlenecks\n"
        "- Timeline concerns and delays\n"
        "- Technical challenges requiring attention\n"
        "- Communication gaps or unclear requirements"
    ),
    "executive_brief": (
        "Generate an EXECUTIVE BRIEF summary focusing on:\n"
        "- High-level strategic progress\n"
        "- Business impact and value delivery\n"
        "- Key decisions needed from leadership\n"
        "- Resource requirements and budget implications\n"
        "- Competitive advantages and market positioning"
    ),
}

RESPONSE_FORMAT = """
RESPONSE FORMAT (JSON):
{
  "title": "Concise, descriptive title",
  "content": "2-3 paragraph executive summary",
  "keyMetrics": [
    {"label": "Metric name", "value": "Metric value", "trend": "up/down/stable", "context": "Brief explanation"}
  ],
  "highlights": ["Key positive developments", "Major achievements"],
  "concerns": ["Areas requiring attention", "Potential risks"],
  "recommendations": ["Actionable next steps", "Strategic suggestions"],
  "confidence": 85
}

REQUIREMENTS:
- Use data-driven insights from the provided metrics
- Highlight actionable items for management
- Include specific examples from recent updates
- Confidence score should reflect data quality and completeness"""


@dataclass
class SummaryMetrics:
    total_updates: int = 0
    unique_employees: int = 0
    active_projects: int = 0
    sentiment_counts: dict[str, int] = field(default_factory=dict)
    total_tasks: int = 0
    completed_tasks: int = 0
    blocked_tasks: int = 0
    in_progress_tasks: int = 0
    project_status_counts: dict[str, int] = field(default_factory=dict)
    average_update_length: float = 0.0

    @property
    def completion_rate(self) -> float:
        return self.completed_tasks / self.total_tasks * 100 if self.total_tasks else 0.0

    def as_key_metrics(self) -> list[KeyMetric]:
        return [
            KeyMetric(label="Updates", value=str(self.total_updates)),
            KeyMetric(label="Active employees", value=str(self.unique_employees)),
            KeyMetric(label="Projects touched", value=str(self.active_projects)),
            KeyMetric(label="Task completion rate", value=f"{self.completion_rate:.1f}%"),
            KeyMetric(label="Blocked tasks", value=str(self.blocked_tasks)),
        ]


def compute_metrics(updates: list[WeeklyUpdate], project_statuses: list[str]) -> SummaryMetrics:
    """Window-scoped metrics; task figures cover tasks extracted from in-window updates."""
    tasks = [task for update in updates for task in update.extracted_tasks]
    statuses = Counter(task.status for task in tasks)
    return SummaryMetrics(
        total_updates=len(updates),
        unique_employees=len({update.employee_id for update in updates}),
        active_projects=len({project_id for update in updates for project_id in update.projects}),
        sentiment_counts=dict(Counter(update.sentiment for update in updates)),
        total_tasks=len(tasks),
        completed_tasks=statuses.get("completed", 0),
        blocked_tasks=statuses.get("blocked", 0),
        in_progress_tasks=statuses.get("in-progress", 0),
        project_status_counts=dict(Counter(project_statuses)),
        average_update_length=(sum(len(u.message_text) for u in updates) / len(updates)) if updates else 0.0,
    )


class SummarySynthesizer:
    def __init__(
        self,
        manager: ProjectManager,
        analyzer: LanguageAnalyzer | None = None,
        cache: AnalysisCache | None = None,
    ) -> None:
        self.manager = manager
        self.analyzer = analyzer or manager.analyzer
        self.cache = cache

    def gather(self, request: SummaryRequest) -> tuple[list[WeeklyUpdate], SummaryMetrics]:
        cutoff = timeframe_cutoff(request.timeframe)
        updates = [u for u in self.manager.get_updates() if ensure_aware(u.created_at) >= cutoff]
        if request.project_id:
            updates = [u for u in updates if request.project_id in u.projects]
        if request.employee_id:
            updates = [u for u in updates if u.employee_id == request.employee_id]
        metrics = compute_metrics(updates, [project.status for project in self.manager.get_projects()])
        return updates, metrics

    async def generate_summary(self, request: SummaryRequest) -> GeneratedSummary:
        logger.info("Generating %s summary (timeframe=%s)", request.type, request.timeframe)
        updates, metrics = self.gather(request)
        try:
            payload = await self.analyzer.generate_json(self.build_prompt(request, updates, metrics))
            parsed = AISummaryPayload.model_validate(payload)
        except (AnalysisError, ValidationError) as exc:
            logger.warning("Summary generation fell back for %s: %s", request.type, exc)
            return self.fallback_summary(request, metrics)
        summary = GeneratedSummary(type=request.type, **parsed.model_dump())
        logger.info("Generated %s summary with %.0f%% confidence", request.type, summary.confidence)
        return summary

    @staticmethod
    def fallback_summary(request: SummaryRequest, metrics: SummaryMetrics) -> GeneratedSummary:
        content = (
            f"{metrics.total_updates} update(s) from {metrics.unique_employees} employee(s) "
            f"across {metrics.active_projects} project(s) in the last {request.timeframe}. "
            f"{metrics.completed_tasks} of {metrics.total_tasks} extracted task(s) completed, "
            f"{metrics.blocked_tasks} blocked."
        )
        return GeneratedSummary(
            type=request.type,
            title=f"{request.type} Summary",
            content=content,
            key_metrics=metrics.as_key_metrics(),
            concerns=["Unable to parse structured summary"],
            recommendations=["Review data quality and try again"],
            confidence=30,
        )

    @staticmethod
    def build_prompt(request: SummaryRequest, updates: list[WeeklyUpdate], metrics: SummaryMetrics) -> str:
        total = metrics.total_updates or 1
        sentiment = "\n".join(
            f"- {label}: {count} updates ({count / total * 100:.1f}%)"
            for label, count in metrics.sentiment_counts.items()
        )
        statuses = "\n".join(f"- {status}: {count} projects" for status, count in metrics.project_status_counts.items())
        sample = "\n".join(
            f"{i}. [{u.employee_id}] {u.message_text[:150]}..." for i, u in enumerate(updates[:10], start=1)
        )
        return (
            f"You are an AI project management analyst generating a {request.type} summary for executive review.\n\n"
            "ANALYSIS CONTEXT:\n"
            f"- Timeframe: {request.timeframe}\n"
            f"- Total Updates: {metrics.total_updates}\n"
            f"- Active Employees: {metrics.unique_employees}\n"
            f"- Active Projects: {metrics.active_projects}\n"
            f"- Task Completion Rate: {metrics.completion_rate:.1f}%\n\n"
            f"SENTIMENT DISTRIBUTION:\n{sentiment or '- none'}\n\n"
            f"PROJECT STATUS:\n{statuses or '- none'}\n\n"
            f"RECENT UPDATES SAMPLE:\n{sample or '(no updates in window)'}\n\n"
            f"{FOCUS_BY_TYPE[request.type]}\n"
            f"{RESPONSE_FORMAT}"
        )

    async def _cached(self, request: SummaryRequest, scope: str | None = None) -> GeneratedSummary:
        if self.cache is None:
            return await self.generate_summary(request)
        key = summary_key(request.type, scope)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        summary = await self.generate_summary(request)
        self.cache.set(key, summary)
        return summary

    async def generate_project_status_summary(self, project_id: str | None = None) -> GeneratedSummary:
        request = SummaryRequest(type="project_status", timeframe="week", project_id=project_id)
        return await self._cached(request, project_id)

    async def generate_team_performance_summary(self, timeframe: Timeframe = "week") -> GeneratedSummary:
        return await self._cached(SummaryRequest(type="team_performance", timeframe=timeframe), timeframe)

    async def generate_weekly_highlights(self) -> GeneratedSummary:
        return await self._cached(SummaryRequest(type="weekly_highlights", timeframe="week"))

    async def generate_risk_alerts(self) -> GeneratedSummary:
        return await self._cached(SummaryRequest(type="risk_alerts", timeframe="week"))

    async def generate_executive_brief(self) -> GeneratedSummary:
        return await self._cached(SummaryRequest(type="executive_brief", timeframe="month"))

    async def generate_by_type(self, summary_type: str, scope: str | None = None) -> GeneratedSummary:
        """Dispatch to a wrapper by type name.

        Raises KeyError for an unknown type and ValueError when a
        ``team_performance`` scope is not a timeframe.
        """
        if summary_type == "team_performance" and scope is not None and scope not in TIMEFRAME_WINDOWS:
            raise ValueError(f"Unknown timeframe: {scope}")
        dispatch: dict[str, Any] = {
            "project_status": lambda: self.generate_project_status_summary(scope),
            "team_performance": lambda: self.generate_team_performance_summary(scope or "week"),
            "weekly_highlights": self.generate_weekly_highlights,
            "risk_alerts": self.generate_risk_alerts,
            "executive_brief": self.generate_executive_brief,
        }
        if summary_type not in dispatch:
            raise KeyError(summary_type)
        return await dispatch[summary_type]()
