from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from dropmanager.utils.time_util import utcnow, week_of

ProjectStatus = Literal["active", "on-hold", "completed", "cancelled"]
Priority = Literal["low", "medium", "high", "critical"]
TaskStatus = Literal["not-started", "in-progress", "blocked", "completed", "cancelled"]
Sentiment = Literal["positive", "neutral", "negative", "blocked"]
Timeframe = Literal["day", "week", "month"]

GapType = Literal[
    "missing_dependency",
    "unclear_timeline",
    "resource_constraint",
    "technical_risk",
    "communication_gap",
    "scope_ambiguity",
]
GapSeverity = Literal["low", "medium", "high", "critical"]
QuestionPriority = Literal["low", "medium", "high", "urgent"]
AnswerType = Literal["timeline", "resource", "technical", "dependency", "status", "clarification"]
SummaryType = Literal["project_status", "team_performance", "weekly_highlights", "risk_alerts", "executive_brief"]

TASK_STATUSES: tuple[str, ...] = ("not-started", "in-progress", "blocked", "completed", "cancelled")
PRIORITIES: tuple[str, ...] = ("low", "medium", "high", "critical")
SEVERITY_ORDER = {"low": 0, "medium": 1, "high": 2, "critical": 3}


# --- State store records ---

class Employee(BaseModel):
    id: str
    email: str = ""
    display_name: str = ""
    department: str | None = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    last_update_at: datetime | None = None


class Project(BaseModel):
    id: str
    name: str
    description: str | None = None
    status: ProjectStatus = "active"
    priority: Priority = "medium"
    assigned_employees: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class TaskCandidate(BaseModel):
    """A task as extracted from text, before it is owned and persisted."""

    title: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    status: TaskStatus = "in-progress"
    priority: Priority = "medium"
    tags: list[str] = Field(default_factory=list)
    due_date: str | None = None
    estimated_hours: float | None = None
    project_hint: str | None = None

    @field_validator("status", mode="before")
    @classmethod
    def _normalise_status(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip().lower().replace("_", "-").replace(" ", "-")
            if value in TASK_STATUSES:
                return value
        return "in-progress"

    @field_validator("priority", mode="before")
    @classmethod
    def _normalise_priority(cls, value: Any) -> Any:
        if isinstance(value, str) and value.strip().lower() in PRIORITIES:
            return value.strip().lower()
        return "medium"

    @field_validator("tags", mode="before")
    @classmethod
    def _coerce_tags(cls, value: Any) -> Any:
        if not isinstance(value, (list, tuple)):
            return []
        return [str(tag) for tag in value if tag]


class Task(BaseModel):
    id: str
    project_id: str | None = None
    employee_id: str
    title: str
    description: str | None = None
    status: TaskStatus = "in-progress"
    priority: Priority = "medium"
    due_date: str | None = None
    estimated_hours: float | None = None
    blockers: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ChatMetadata(BaseModel):
    space_name: str = ""
    thread_name: str = ""
    message_name: str = ""
    space_type: str = ""


class WeeklyUpdate(BaseModel):
    id: str
    employee_id: str
    week_of: str
    message_text: str
    extracted_tasks: list[Task] = Field(default_factory=list)
    projects: list[str] = Field(default_factory=list)
    sentiment: Sentiment = "neutral"
    has_images: bool = False
    image_count: int = 0
    chat_metadata: ChatMetadata = Field(default_factory=ChatMetadata)
    created_at: datetime = Field(default_factory=utcnow)
    processed_at: datetime | None = None


class ProcessUpdateRequest(BaseModel):
    message_text: str = ""
    employee_id: str = ""
    employee_email: str = ""
    employee_display_name: str = ""
    week_of: str = Field(default_factory=week_of)
    has_images: bool = False
    image_count: int = Field(default=0, ge=0)
    chat_metadata: ChatMetadata = Field(default_factory=ChatMetadata)


class ProcessUpdateResponse(BaseModel):
    success: bool
    update_id: str = ""
    extracted_tasks: list[Task] = Field(default_factory=list)
    assigned_projects: list[str] = Field(default_factory=list)
    message: str


TicketStatus = Literal["queued", "processing", "processed", "failed", "rejected"]


class UpdateTicket(BaseModel):
    ticket_id: str
    status: TicketStatus
    submitted_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None
    response: ProcessUpdateResponse | None = None
    error: str | None = None


# --- Knowledge gap analysis ---

class GapAnalysisRequest(BaseModel):
    timeframe: Timeframe = "week"
    project_id: str | None = None
    employee_id: str | None = None
    min_severity: GapSeverity = "low"


class AIGapPayload(BaseModel):
    """Shape a model must return for each gap; anything else is discarded."""

    type: GapType
    severity: GapSeverity
    description: str = Field(..., min_length=1)
    affected_projects: list[str] = Field(default_factory=list, alias="affectedProjects")
    affected_employees: list[str] = Field(default_factory=list, alias="affectedEmployees")
    evidence: list[str] = Field(default_factory=list)
    impact: str = "Potential project impact"
    confidence: float = Field(default=70, ge=0, le=100)

    model_config = {"populate_by_name": True}

    @field_validator("type", "severity", mode="before")
    @classmethod
    def _lower(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value


class KnowledgeGap(BaseModel):
    id: str
    type: GapType
    severity: GapSeverity
    description: str
    affected_projects: list[str] = Field(default_factory=list)
    affected_employees: list[str] = Field(default_factory=list)
    evidence: list[str] = Field(default_factory=list)
    impact: str = ""
    confidence: float = Field(default=70, ge=0, le=100)
    source: Literal["ai", "rule"] = "rule"


class AIQuestionPayload(BaseModel):
    question: str = Field(..., min_length=1)
    context: str = "Additional information needed for project planning"
    priority: QuestionPriority = "medium"
    expected_answer_type: AnswerType = Field(default="clarification", alias="expectedAnswerType")
    follow_up_questions: list[str] = Field(default_factory=list, alias="followUpQuestions")
    confidence: float = Field(default=70, ge=0, le=100)

    model_config = {"populate_by_name": True}

    @field_validator("priority", "expected_answer_type", mode="before")
    @classmethod
    def _lower(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value


class GeneratedQuestion(BaseModel):
    id: str
    target_employee_id: str
    target_employee_name: str
    gap_id: str
    gap_type: GapType
    question: str
    context: str
    priority: QuestionPriority
    expected_answer_type: AnswerType = "clarification"
    follow_up_questions: list[str] = Field(default_factory=list)
    confidence: float = 60
    generated_at: datetime = Field(default_factory=utcnow)


class GapAnalysisSummary(BaseModel):
    total_gaps: int
    critical_gaps: int
    high_priority_gaps: int
    questions_generated: int
    urgent_questions: int
    analyzed_at: datetime = Field(default_factory=utcnow)


class GapAnalysisResult(BaseModel):
    gaps: list[KnowledgeGap]
    questions: list[GeneratedQuestion]
    summary: GapAnalysisSummary


# --- Summaries ---

class SummaryRequest(BaseModel):
    type: SummaryType
    timeframe: Timeframe = "week"
    project_id: str | None = None
    employee_id: str | None = None


class KeyMetric(BaseModel):
    label: str
    value: str
    trend: Literal["up", "down", "stable"] | None = None
    context: str | None = None

    @field_validator("value", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        return value if isinstance(value, str) else str(value)

    @field_validator("trend", mode="before")
    @classmethod
    def _trend(cls, value: Any) -> Any:
        if isinstance(value, str) and value.strip().lower() in {"up", "down", "stable"}:
            return value.strip().lower()
        return None


class AISummaryPayload(BaseModel):
    title: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    key_metrics: list[KeyMetric] = Field(default_factory=list, alias="keyMetrics")
    highlights: list[str] = Field(default_factory=list)
    concerns: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    confidence: float = Field(default=70, ge=0, le=100)

    model_config = {"populate_by_name": True}


class GeneratedSummary(BaseModel):
    type: SummaryType
    title: str
    content: str
    key_metrics: list[KeyMetric] = Field(default_factory=list)
    highlights: list[str] = Field(default_factory=list)
    concerns: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    confidence: float
    generated_at: datetime = Field(default_factory=utcnow)


# --- Agents ---

AgentMessageType = Literal["REQUEST", "RESPONSE", "NOTIFICATION", "QUERY"]
AgentPriority = Literal["LOW", "MEDIUM", "HIGH", "URGENT"]


class AgentContext(BaseModel):
    user_id: str
    conversation_id: str
    week_of: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class AgentMessage(BaseModel):
    id: str = ""
    from_agent: str
    to_agent: str
    type: AgentMessageType
    payload: dict[str, Any] = Field(default_factory=dict)
    priority: AgentPriority = "MEDIUM"
    context: AgentContext
    timestamp: str = ""


class AgentResult(BaseModel):
    outbound: list[AgentMessage] = Field(default_factory=list)
    logs: list[str] = Field(default_factory=list)


class AgentRunRequest(BaseModel):
    user_id: str = "unknown"
    conversation_id: str | None = None
    message_text: str = ""


def severity_at_least(severity: str, minimum: str) -> bool:
    return SEVERITY_ORDER.get(severity, 0) >= SEVERITY_ORDER.get(minimum, 0)
