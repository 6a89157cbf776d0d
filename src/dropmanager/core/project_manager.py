from __future__ import annotations

import asyncio
import logging
import re
import uuid
from typing import Any, Callable, Mapping

from pydantic import BaseModel, ValidationError

from dropmanager.common.db import DocumentStore
from dropmanager.utils.time_util import utcnow

from . import task_extractor
from .analyzer import AnalysisError, LanguageAnalyzer
from .schemas import (
    Employee,
    ProcessUpdateRequest,
    ProcessUpdateResponse,
    Project,
    Sentiment,
    Task,
    TaskCandidate,
    WeeklyUpdate,
)

logger = logging.getLogger(__name__)

GENERAL_PROJECT_ID = "general"
DEFAULT_PROJECT_IDS = ("general", "maintenance", "development")
FAILURE_MESSAGE = "Sorry, there was an error processing your update. Please try again."

_PROJECT_NAME_RE = re.compile(r"(?:project|proj)\s+([A-Za-z0-9\-_\s]+)", re.I)
_TECH_KEYWORDS = ("api", "database", "frontend", "backend", "mobile", "web")


def default_projects() -> list[Project]:
    return [
        Project(
            id="general",
            name="General Tasks",
            description="Miscellaneous tasks not assigned to specific projects",
            priority="medium",
            tags=["general"],
        ),
        Project(
            id="maintenance",
            name="System Maintenance",
            description="Bug fixes, updates, and system maintenance tasks",
            priority="high",
            tags=["maintenance", "bugs"],
        ),
        Project(
            id="development",
            name="Feature Development",
            description="New feature development and enhancements",
            priority="high",
            tags=["development", "features"],
        ),
    ]


def _slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug or "project"


class ProjectManager:
    """In-memory state store for employees, projects, tasks and updates.

    The store is owned by whoever constructs it and passed explicitly to the
    analysis components. A durable `DocumentStore` is optional; writes to it
    are best-effort and never roll back in-memory state.
    """

    def __init__(
        self,
        analyzer: LanguageAnalyzer | None = None,
        store: DocumentStore | None = None,
        *,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self.analyzer = analyzer or LanguageAnalyzer()
        self.store = store
        self.instance_id = f"pm-{uuid.uuid4().hex[:8]}"
        self._new_id = id_factory or (lambda: uuid.uuid4().hex[:12])
        self.employees: dict[str, Employee] = {}
        self.projects: dict[str, Project] = {project.id: project for project in default_projects()}
        self.tasks: dict[str, Task] = {}
        self.updates: dict[str, WeeklyUpdate] = {}

    # ------------------------------------------------------------------
    # Durable store
    # ------------------------------------------------------------------
    async def _persist(self, collection: str, doc_id: str, record: BaseModel) -> None:
        if self.store is None:
            return
        try:
            await asyncio.to_thread(self.store.set, collection, doc_id, record.model_dump(mode="json"))
        except Exception as exc:
            logger.warning("Failed to persist %s/%s: %s", collection, doc_id, exc)

    async def load_from_store(self) -> dict[str, int]:
        """Hydrate memory from the durable store. Default projects are never overridden."""
        if self.store is None:
            logger.info("No durable store configured, skipping load")
            return self.counts()
        loaders: list[tuple[str, type[BaseModel], dict[str, Any]]] = [
            ("employees", Employee, self.employees),
            ("projects", Project, self.projects),
            ("tasks", Task, self.tasks),
            ("updates", WeeklyUpdate, self.updates),
        ]
        for collection, model, target in loaders:
            try:
                docs = await asyncio.to_thread(self.store.list_all, collection)
            except Exception as exc:
                logger.warning("Failed to load %s from durable store: %s", collection, exc)
                continue
            for doc in docs:
                try:
                    record = model.model_validate(doc)
                except ValidationError as exc:
                    logger.warning("Skipping invalid %s document: %s", collection, exc)
                    continue
                if collection == "projects" and record.id in DEFAULT_PROJECT_IDS:
                    continue
                target[record.id] = record
        counts = self.counts()
        logger.info("Loaded state from durable store: %s", counts)
        return counts

    # ------------------------------------------------------------------
    # Update ingestion
    # ------------------------------------------------------------------
    async def process_update(self, request: ProcessUpdateRequest | Mapping[str, Any]) -> ProcessUpdateResponse:
        if not isinstance(request, ProcessUpdateRequest):
            try:
                request = ProcessUpdateRequest.model_validate(request)
            except ValidationError as exc:
                logger.warning("Rejected malformed update request: %s", exc)
                return ProcessUpdateResponse(success=False, message=f"Invalid update request: {exc.error_count()} error(s)")
        for field in ("employee_id", "message_text"):
            if not getattr(request, field).strip():
                return ProcessUpdateResponse(success=False, message=f"Missing required field: {field}")

        try:
            return await self._process(request)
        except Exception:
            logger.exception("Error processing update for %s", request.employee_id)
            return ProcessUpdateResponse(success=False, message=FAILURE_MESSAGE)

    async def _process(self, request: ProcessUpdateRequest) -> ProcessUpdateResponse:
        employee = await self._upsert_employee(request)
        candidates = await self._extract(request.message_text)
        sentiment = await self._sentiment(request.message_text)

        now = utcnow()
        tasks: list[Task] = []
        assigned: list[str] = []
        for candidate in candidates:
            task = Task(
                id=f"task-{self._new_id()}",
                employee_id=employee.id,
                title=candidate.title,
                description=candidate.description or None,
                status=candidate.status,
                priority=candidate.priority,
                due_date=candidate.due_date,
                estimated_hours=candidate.estimated_hours,
                blockers=[candidate.description or candidate.title] if candidate.status == "blocked" else [],
                tags=list(candidate.tags),
                created_at=now,
                updated_at=now,
            )
            task.project_id = await self.assign_task_to_project(task, candidate.project_hint)
            self.tasks[task.id] = task
            tasks.append(task)
            if task.project_id not in assigned:
                assigned.append(task.project_id)

        update = WeeklyUpdate(
            id=f"update-{self._new_id()}",
            employee_id=employee.id,
            week_of=request.week_of,
            message_text=request.message_text,
            extracted_tasks=tasks,
            projects=assigned,
            sentiment=sentiment,
            has_images=request.has_images,
            image_count=request.image_count,
            chat_metadata=request.chat_metadata,
            created_at=now,
            processed_at=utcnow(),
        )
        self.updates[update.id] = update
        await self._persist("updates", update.id, update)
        for task in tasks:
            await self._persist("tasks", task.id, task)

        employee.last_update_at = utcnow()
        self.employees[employee.id] = employee
        await self._persist("employees", employee.id, employee)

        logger.info(
            "Processed update %s for %s: %d task(s), sentiment=%s, projects=%s",
            update.id, employee.id, len(tasks), sentiment, assigned,
        )
        return ProcessUpdateResponse(
            success=True,
            update_id=update.id,
            extracted_tasks=tasks,
            assigned_projects=assigned,
            message=self.compose_acknowledgement(tasks, assigned, sentiment),
        )

    async def _upsert_employee(self, request: ProcessUpdateRequest) -> Employee:
        employee = self.employees.get(request.employee_id)
        if employee is None:
            employee = Employee(
                id=request.employee_id,
                email=request.employee_email,
                display_name=request.employee_display_name or request.employee_id,
                last_update_at=utcnow(),
            )
            self.employees[employee.id] = employee
            logger.info("Created new employee: %s (%s)", employee.display_name, employee.email)
            await self._persist("employees", employee.id, employee)
        elif request.employee_display_name and employee.display_name != request.employee_display_name:
            employee.display_name = request.employee_display_name
            await self._persist("employees", employee.id, employee)
        return employee

    async def _extract(self, message_text: str) -> list[TaskCandidate]:
        if self.analyzer.available:
            try:
                return task_extractor.deduplicate(await self.analyzer.extract_tasks(message_text))
            except AnalysisError as exc:
                logger.warning("AI task extraction failed, using pattern extraction: %s", exc)
        return task_extractor.extract_tasks(message_text)

    async def _sentiment(self, message_text: str) -> Sentiment:
        if self.analyzer.available:
            try:
                return await self.analyzer.analyze_sentiment(message_text)
            except AnalysisError as exc:
                logger.warning("AI sentiment analysis failed, using keyword heuristic: %s", exc)
        return task_extractor.analyze_sentiment(message_text)

    # ------------------------------------------------------------------
    # Project assignment
    # ------------------------------------------------------------------
    async def assign_task_to_project(
        self, task: Task, project_hint: str | None = None, *, join_project: bool = True
    ) -> str:
        """Resolve the project a task belongs to, creating one when warranted.

        Order: a valid explicit id, the AI categorizer, keyword/tag matching
        (including an explicit ``project <Name>`` mention), then ``general``.
        With ``join_project=False`` the task owner is not added to the
        project's members.
        """
        if task.project_id and task.project_id in self.projects:
            project_id = task.project_id
        else:
            project_id = await self._ai_assignment(task, join_project)
            if project_id is None:
                project_id = await self._keyword_assignment(task, project_hint, join_project)
            if project_id is None:
                project_id = GENERAL_PROJECT_ID
        project = self.projects[project_id]
        if join_project and task.employee_id not in project.assigned_employees:
            project.assigned_employees.append(task.employee_id)
            project.updated_at = utcnow()
        return project_id

    async def _ai_assignment(self, task: Task, join_project: bool = True) -> str | None:
        if not self.analyzer.available:
            return None
        names = [project.name for project in self.projects.values()]
        text = f"{task.title} {task.description or ''}".strip()
        try:
            suggestion = await self.analyzer.categorize_project(text, names)
        except AnalysisError as exc:
            logger.warning("AI project categorization failed: %s", exc)
            return None
        if suggestion.kind == "general":
            # No project named; keyword matching still gets a chance
            return None
        existing = self.find_project_by_name(suggestion.name or "")
        if existing is not None:
            return existing.id
        project = await self._create_project(
            suggestion.name or task.title,
            task,
            description=f"AI-suggested project based on task analysis: {task.title}",
            provenance=["ai-created", "ai-suggested"],
            join_project=join_project,
        )
        return project.id

    async def _keyword_assignment(
        self, task: Task, project_hint: str | None, join_project: bool = True
    ) -> str | None:
        matched = self.find_matching_project(task)
        if matched is not None:
            return matched.id
        named = self.find_project_by_name(project_hint or "")
        if named is not None:
            return named.id
        if self.should_create_new_project(task, project_hint):
            project = await self._create_project(
                self.extract_project_name(task, project_hint),
                task,
                description=f"Auto-created project based on task: {task.title}",
                provenance=["auto-created"],
                join_project=join_project,
            )
            return project.id
        return None

    def find_project_by_name(self, name: str) -> Project | None:
        wanted = name.strip().lower()
        if not wanted:
            return None
        for project in self.projects.values():
            if project.name.lower() == wanted:
                return project
        return None

    def find_matching_project(self, task: Task) -> Project | None:
        text = f"{task.title} {task.description or ''}".lower()
        task_tags = {tag.lower() for tag in task.tags}
        for project in self.projects.values():
            if project.name.lower() in text:
                return project
            for tag in project.tags:
                if tag.lower() in text or tag.lower() in task_tags:
                    return project
        return None

    @staticmethod
    def should_create_new_project(task: Task, project_hint: str | None = None) -> bool:
        text = f"{task.title} {task.description or ''}".lower()
        if project_hint or "project " in text or "proj " in text:
            return True
        if task.priority in ("high", "critical"):
            return any(keyword in text for keyword in _TECH_KEYWORDS)
        return False

    @staticmethod
    def extract_project_name(task: Task, project_hint: str | None = None) -> str:
        if project_hint:
            return project_hint.strip()
        text = f"{task.title} {task.description or ''}"
        match = _PROJECT_NAME_RE.search(text)
        if match and match.group(1).strip():
            return match.group(1).strip()
        for keyword in ("API", "Database", "Frontend", "Backend", "Mobile", "Web"):
            if keyword.lower() in text.lower():
                return f"{keyword} Development"
        return " ".join(task.title.split()[:3]) + " Project"

    async def _create_project(
        self, name: str, task: Task, *, description: str, provenance: list[str], join_project: bool = True
    ) -> Project:
        project_id = _slugify(name)
        suffix = 2
        while project_id in self.projects:
            project_id = f"{_slugify(name)}-{suffix}"
            suffix += 1
        project = Project(
            id=project_id,
            name=name,
            description=description,
            priority=task.priority,
            assigned_employees=[task.employee_id] if join_project else [],
            tags=list(dict.fromkeys([*task.tags, *provenance])),
        )
        self.projects[project.id] = project
        logger.info("Created new project %s (%s) tagged %s", project.name, project.id, provenance)
        await self._persist("projects", project.id, project)
        return project

    def compose_acknowledgement(self, tasks: list[Task], project_ids: list[str], sentiment: str) -> str:
        if not tasks:
            message = (
                "Thanks for your update! I've logged your message. "
                "For better tracking, try including specific tasks you're working on."
            )
        else:
            plural = "s" if len(tasks) > 1 else ""
            lines = [f"Great! I've extracted {len(tasks)} task{plural} from your update:", ""]
            for index, task in enumerate(tasks, start=1):
                lines.append(f"{index}. {task.title} ({task.status.replace('-', ' ')})")
            if project_ids:
                names = ", ".join(self.projects[pid].name if pid in self.projects else pid for pid in project_ids)
                lines.append("")
                lines.append(f"Assigned to project{'s' if len(project_ids) > 1 else ''}: {names}")
            message = "\n".join(lines)

        if sentiment == "blocked":
            message += "\n\nI noticed you mentioned some blockers. Your manager will be notified."
        elif sentiment == "positive" and tasks:
            message += "\n\nGreat progress! Keep up the excellent work!"
        return message

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------
    def get_employees(self) -> list[Employee]:
        return list(self.employees.values())

    def get_projects(self) -> list[Project]:
        return list(self.projects.values())

    def get_tasks(self) -> list[Task]:
        return list(self.tasks.values())

    def get_updates(self) -> list[WeeklyUpdate]:
        return list(self.updates.values())

    def counts(self) -> dict[str, int]:
        return {
            "employees": len(self.employees),
            "projects": len(self.projects),
            "tasks": len(self.tasks),
            "updates": len(self.updates),
        }

    def get_employee_stats(self, employee_id: str) -> dict[str, int]:
        tasks = [task for task in self.tasks.values() if task.employee_id == employee_id]
        return {
            "total": len(tasks),
            "completed": sum(1 for task in tasks if task.status == "completed"),
            "in_progress": sum(1 for task in tasks if task.status == "in-progress"),
            "blocked": sum(1 for task in tasks if task.status == "blocked"),
            "not_started": sum(1 for task in tasks if task.status == "not-started"),
        }

    def get_project_stats(self, project_id: str) -> dict[str, Any]:
        tasks = [task for task in self.tasks.values() if task.project_id == project_id]
        return {
            "project": self.projects.get(project_id),
            "tasks": len(tasks),
            "completed": sum(1 for task in tasks if task.status == "completed"),
            "in_progress": sum(1 for task in tasks if task.status == "in-progress"),
            "blocked": sum(1 for task in tasks if task.status == "blocked"),
        }

    def get_state_summary(self) -> dict[str, Any]:
        latest = max(self.updates.values(), key=lambda update: update.created_at, default=None)
        return {
            "instance_id": self.instance_id,
            "counts": self.counts(),
            "latest_update": latest,
        }
