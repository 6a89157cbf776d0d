from __future__ import annotations

import asyncio
import hashlib
import json
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable

from pydantic import ValidationError

from dropmanager.core.analyzer import AnalysisError, LanguageAnalyzer
from dropmanager.core.project_manager import ProjectManager
from dropmanager.core.schemas import (
    AIGapPayload,
    AIQuestionPayload,
    Employee,
    GapAnalysisRequest,
    GapAnalysisResult,
    GapAnalysisSummary,
    GeneratedQuestion,
    KnowledgeGap,
    Project,
    Task,
    WeeklyUpdate,
    severity_at_least,
)
from dropmanager.utils.time_util import ensure_aware, timeframe_cutoff

from .cache import AnalysisCache, gaps_key

logger = logging.getLogger(__name__)

BLOCKING_VOCABULARY = ("block", "stuck", "waiting")

QUESTION_TEMPLATES = {
    "missing_dependency": "Hi {name}, could you clarify any dependencies or blockers affecting your work on the projects you're involved in?",
    "unclear_timeline": "Hi {name}, could you provide updated timelines for your current tasks and any potential delays you foresee?",
    "resource_constraint": "Hi {name}, do you have the resources and support needed to complete your current assignments effectively?",
    "technical_risk": "Hi {name}, are there any technical challenges or risks in your current work that management should be aware of?",
    "communication_gap": "Hi {name}, could you provide a status update on your current projects and any coordination needs with other team members?",
    "scope_ambiguity": "Hi {name}, are there any unclear requirements or scope questions in your current projects that need clarification?",
}
DEFAULT_QUESTION_TEMPLATE = "Hi {name}, could you provide more details about your current work status?"

FALLBACK_PRIORITY = {"critical": "urgent", "high": "high"}


@dataclass
class AnalysisSnapshot:
    """Windowed view of the state store taken at the start of an analysis."""

    timeframe: str
    cutoff: datetime
    updates: list[WeeklyUpdate]
    projects: list[Project]
    employees: list[Employee]
    tasks: list[Task]
    project_employees: dict[str, list[str]] = field(default_factory=dict)
    employee_projects: dict[str, list[str]] = field(default_factory=dict)
    project_dependencies: dict[str, list[str]] = field(default_factory=dict)

    def employee(self, employee_id: str) -> Employee | None:
        for employee in self.employees:
            if employee.id == employee_id:
                return employee
        return None


def gap_key(gap_type: str, affected_projects: Iterable[str], affected_employees: Iterable[str]) -> str:
    return f"{gap_type}-{','.join(affected_projects)}-{','.join(affected_employees)}"


def gap_id(gap_type: str, affected_projects: Iterable[str], affected_employees: Iterable[str]) -> str:
    key = gap_key(gap_type, affected_projects, affected_employees)
    return f"{gap_type}-{hashlib.sha1(key.encode('utf-8')).hexdigest()[:12]}"


def make_gap(**fields) -> KnowledgeGap:
    fields.setdefault("id", gap_id(fields["type"], fields.get("affected_projects", []), fields.get("affected_employees", [])))
    return KnowledgeGap(**fields)


def deduplicate_gaps(gaps: Iterable[KnowledgeGap]) -> list[KnowledgeGap]:
    """Keep the first gap seen for each (type, projects, employees) key."""
    seen: set[str] = set()
    unique: list[KnowledgeGap] = []
    for gap in gaps:
        key = gap_key(gap.type, gap.affected_projects, gap.affected_employees)
        if key in seen:
            continue
        seen.add(key)
        unique.append(gap)
    return unique


def filter_by_severity(gaps: Iterable[KnowledgeGap], min_severity: str) -> list[KnowledgeGap]:
    return [gap for gap in gaps if severity_at_least(gap.severity, min_severity)]


def _append_unique(mapping: dict[str, list[str]], key: str, value: str) -> None:
    bucket = mapping.setdefault(key, [])
    if value not in bucket:
        bucket.append(value)


def build_relationships(updates: Iterable[WeeklyUpdate]) -> tuple[dict, dict, dict]:
    project_employees: dict[str, list[str]] = {}
    employee_projects: dict[str, list[str]] = {}
    dependencies: dict[str, list[str]] = {}
    for update in updates:
        employee_projects.setdefault(update.employee_id, [])
        for project_id in update.projects:
            _append_unique(project_employees, project_id, update.employee_id)
            _append_unique(employee_projects, update.employee_id, project_id)
            # Projects mentioned in the same update are treated as related
            for other in update.projects:
                if other != project_id:
                    _append_unique(dependencies, project_id, other)
    return project_employees, employee_projects, dependencies


def detect_rule_based_gaps(snapshot: AnalysisSnapshot) -> list[KnowledgeGap]:
    gaps: list[KnowledgeGap] = []
    updates = snapshot.updates

    touched = {project_id for update in updates for project_id in update.projects}
    for project in snapshot.projects:
        if project.status == "active" and project.id not in touched:
            gaps.append(make_gap(
                type="communication_gap",
                severity="medium",
                description=f'Project "{project.name}" has no recent status updates from team members',
                affected_projects=[project.id],
                affected_employees=list(project.assigned_employees),
                evidence=["No updates found in recent timeframe"],
                impact="Project status and progress unclear to management",
                confidence=90,
            ))

    blocked_by_employee: dict[str, list[Task]] = {}
    for task in snapshot.tasks:
        if task.status == "blocked":
            blocked_by_employee.setdefault(task.employee_id, []).append(task)
    for employee_id, blocked in blocked_by_employee.items():
        mentions_blocking = any(
            any(word in update.message_text.lower() for word in BLOCKING_VOCABULARY)
            for update in updates
            if update.employee_id == employee_id
        )
        if mentions_blocking:
            continue
        gaps.append(make_gap(
            type="communication_gap",
            severity="high",
            description="Employee has blocked tasks but hasn't reported the blockers in recent updates",
            affected_projects=list(dict.fromkeys(task.project_id for task in blocked if task.project_id)),
            affected_employees=[employee_id],
            evidence=[f"{len(blocked)} blocked tasks without status updates"],
            impact="Blocked work may delay project timelines without management awareness",
            confidence=80,
        ))

    for project in snapshot.projects:
        if project.priority not in ("high", "critical") or not project.assigned_employees:
            continue
        project_updates = sum(1 for update in updates if project.id in update.projects)
        if project_updates / len(project.assigned_employees) < 1.0:
            gaps.append(make_gap(
                type="communication_gap",
                severity="medium",
                description=f'High-priority project "{project.name}" has low communication frequency relative to team size',
                affected_projects=[project.id],
                affected_employees=list(project.assigned_employees),
                evidence=[f"{project_updates} updates from {len(project.assigned_employees)} team members"],
                impact="High-priority project may have hidden risks or delays",
                confidence=75,
            ))
    return gaps


def fallback_question(gap: KnowledgeGap, employee_id: str, employee_name: str) -> GeneratedQuestion:
    template = QUESTION_TEMPLATES.get(gap.type, DEFAULT_QUESTION_TEMPLATE)
    return GeneratedQuestion(
        id=f"question-{gap.id}-{employee_id}",
        target_employee_id=employee_id,
        target_employee_name=employee_name,
        gap_id=gap.id,
        gap_type=gap.type,
        question=template.format(name=employee_name),
        context=f"Following up on {gap.type} identified in recent project analysis",
        priority=FALLBACK_PRIORITY.get(gap.severity, "medium"),
        expected_answer_type="clarification",
        confidence=60,
    )


class KnowledgeGapAnalyzer:
    """Finds missing information in recent updates and drafts follow-up questions.

    AI-driven and rule-based detectors run side by side; the rule-based one
    always contributes, so the analysis degrades gracefully to rules plus
    template questions when the language capability is unavailable.
    """

    def __init__(
        self,
        manager: ProjectManager,
        analyzer: LanguageAnalyzer | None = None,
        cache: AnalysisCache | None = None,
    ) -> None:
        self.manager = manager
        self.analyzer = analyzer or manager.analyzer
        self.cache = cache

    async def analyze_knowledge_gaps(self, request: GapAnalysisRequest | None = None) -> GapAnalysisResult:
        request = request or GapAnalysisRequest()
        logger.info(
            "Starting gap analysis (timeframe=%s, project=%s, employee=%s, min_severity=%s)",
            request.timeframe, request.project_id, request.employee_id, request.min_severity,
        )
        snapshot = self.gather(request)
        ai_gaps, rule_gaps = await asyncio.gather(
            self._ai_gaps(snapshot),
            self._rule_gaps(snapshot),
        )
        gaps = deduplicate_gaps(filter_by_severity([*ai_gaps, *rule_gaps], request.min_severity))
        questions = await self.generate_questions(gaps, snapshot)
        logger.info("Found %d gaps, generated %d questions", len(gaps), len(questions))
        return GapAnalysisResult(
            gaps=gaps,
            questions=questions,
            summary=GapAnalysisSummary(
                total_gaps=len(gaps),
                critical_gaps=sum(1 for gap in gaps if gap.severity == "critical"),
                high_priority_gaps=sum(1 for gap in gaps if gap.severity == "high"),
                questions_generated=len(questions),
                urgent_questions=sum(1 for question in questions if question.priority == "urgent"),
            ),
        )

    def gather(self, request: GapAnalysisRequest) -> AnalysisSnapshot:
        cutoff = timeframe_cutoff(request.timeframe)
        updates = [u for u in self.manager.get_updates() if ensure_aware(u.created_at) >= cutoff]
        if request.project_id:
            updates = [u for u in updates if request.project_id in u.projects]
        if request.employee_id:
            updates = [u for u in updates if u.employee_id == request.employee_id]
        project_employees, employee_projects, dependencies = build_relationships(updates)
        return AnalysisSnapshot(
            timeframe=request.timeframe,
            cutoff=cutoff,
            updates=updates,
            projects=self.manager.get_projects(),
            employees=self.manager.get_employees(),
            tasks=self.manager.get_tasks(),
            project_employees=project_employees,
            employee_projects=employee_projects,
            project_dependencies=dependencies,
        )

    async def _rule_gaps(self, snapshot: AnalysisSnapshot) -> list[KnowledgeGap]:
        return detect_rule_based_gaps(snapshot)

    async def _ai_gaps(self, snapshot: AnalysisSnapshot) -> list[KnowledgeGap]:
        if not self.analyzer.available:
            return []
        try:
            payload = await self.analyzer.generate_json(self.build_gap_prompt(snapshot))
        except AnalysisError as exc:
            logger.warning("AI gap analysis failed: %s", exc)
            return []
        items = payload if isinstance(payload, list) else [payload]
        gaps: list[KnowledgeGap] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            try:
                parsed = AIGapPayload.model_validate(item)
            except ValidationError as exc:
                logger.debug("Dropping invalid AI gap %r: %s", item, exc)
                continue
            gaps.append(make_gap(source="ai", **parsed.model_dump()))
        return gaps

    @staticmethod
    def build_gap_prompt(snapshot: AnalysisSnapshot) -> str:
        projects = "\n".join(
            f"- {p.name} ({p.status}, {p.priority}): {len(p.assigned_employees)} employees"
            for p in snapshot.projects[:5]
        )
        updates = "\n".join(
            f"{i}. [{u.employee_id}] {u.message_text[:100]}... (Projects: {', '.join(u.projects)})"
            for i, u in enumerate(snapshot.updates[:10], start=1)
        )
        status_counts = json.dumps(dict(Counter(task.status for task in snapshot.tasks)))
        dependencies = json.dumps(snapshot.project_dependencies) if snapshot.project_dependencies else "none observed"
        return f"""You are an AI project management analyst identifying knowledge gaps and missing information that could impact project success.

ANALYSIS DATA:
- Recent Updates: {len(snapshot.updates)}
- Active Projects: {len(snapshot.projects)}
- Total Tasks: {len(snapshot.tasks)}
- Employee-Project Assignments: {len(snapshot.project_employees)}
- Co-mentioned Projects: {dependencies}

PROJECT OVERVIEW:
{projects}

RECENT UPDATE PATTERNS:
{updates or '(no updates in window)'}

TASK STATUS DISTRIBUTION:
{status_counts}

IDENTIFY KNOWLEDGE GAPS in these categories:
1. MISSING_DEPENDENCY: Unclear project dependencies or integration points
2. UNCLEAR_TIMELINE: Vague deadlines, missing milestone dates, uncertain delivery schedules
3. RESOURCE_CONSTRAINT: Unclear resource needs, capacity issues, skill gaps
4. TECHNICAL_RISK: Unaddressed technical challenges, architecture concerns, integration risks
5. COMMUNICATION_GAP: Missing coordination between teams, unclear handoffs, silent stakeholders
6. SCOPE_AMBIGUITY: Unclear requirements, changing scope, undefined acceptance criteria

RESPONSE FORMAT (JSON Array):
[
  {{
    "type": "missing_dependency",
    "severity": "high",
    "description": "Specific description of what information is missing",
    "affectedProjects": ["project1", "project2"],
    "affectedEmployees": ["emp1", "emp2"],
    "evidence": ["Quote from update showing the gap"],
    "impact": "How this gap could affect project outcomes",
    "confidence": 85
  }}
]

Focus on actionable gaps backed by evidence from the updates. Confidence should reflect strength of evidence."""

    async def generate_questions(self, gaps: list[KnowledgeGap], snapshot: AnalysisSnapshot) -> list[GeneratedQuestion]:
        questions: list[GeneratedQuestion] = []
        for gap in gaps:
            for employee_id in gap.affected_employees:
                employee = snapshot.employee(employee_id)
                name = employee.display_name if employee and employee.display_name else employee_id
                question = await self._ai_question(gap, employee_id, name, snapshot)
                questions.append(question or fallback_question(gap, employee_id, name))
        return questions

    async def _ai_question(
        self, gap: KnowledgeGap, employee_id: str, name: str, snapshot: AnalysisSnapshot
    ) -> GeneratedQuestion | None:
        if not self.analyzer.available:
            return None
        recent = [u for u in snapshot.updates if u.employee_id == employee_id]
        prompt = f"""Generate a targeted question to ask {name} to address a specific knowledge gap.

KNOWLEDGE GAP:
- Type: {gap.type}
- Severity: {gap.severity}
- Description: {gap.description}
- Impact: {gap.impact}

EMPLOYEE CONTEXT:
- Name: {name}
- Recent Updates: {len(recent)}
- Recent Work: {'; '.join(u.message_text[:100] for u in recent[:2])}

AFFECTED PROJECTS: {', '.join(gap.affected_projects)}

RESPONSE FORMAT (JSON):
{{
  "question": "Direct, specific question addressing the knowledge gap",
  "context": "Brief explanation of why this information is needed",
  "priority": "low/medium/high/urgent",
  "expectedAnswerType": "timeline/resource/technical/dependency/status/clarification",
  "followUpQuestions": ["Related question 1", "Related question 2"],
  "confidence": 85
}}

Generate ONE focused question that directly addresses the knowledge gap."""
        try:
            payload = await self.analyzer.generate_json(prompt)
            parsed = AIQuestionPayload.model_validate(payload)
        except (AnalysisError, ValidationError) as exc:
            logger.warning("AI question generation failed for %s: %s", employee_id, exc)
            return None
        return GeneratedQuestion(
            id=f"question-{gap.id}-{employee_id}",
            target_employee_id=employee_id,
            target_employee_name=name,
            gap_id=gap.id,
            gap_type=gap.type,
            **parsed.model_dump(),
        )

    async def find_critical_gaps(self) -> list[KnowledgeGap]:
        key = gaps_key("critical")
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                return cached
        result = await self.analyze_knowledge_gaps(GapAnalysisRequest(min_severity="high"))
        if self.cache is not None:
            self.cache.set(key, result.gaps)
        return result.gaps

    async def generate_questions_for_employee(self, employee_id: str) -> list[GeneratedQuestion]:
        result = await self.analyze_knowledge_gaps(GapAnalysisRequest(employee_id=employee_id))
        return result.questions

    async def generate_questions_for_project(self, project_id: str) -> list[GeneratedQuestion]:
        result = await self.analyze_knowledge_gaps(GapAnalysisRequest(project_id=project_id))
        return result.questions
