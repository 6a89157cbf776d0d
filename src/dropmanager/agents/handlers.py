from __future__ import annotations

import logging
import uuid
from typing import Any

from dropmanager.core import task_extractor
from dropmanager.core.analyzer import AnalysisError, LanguageAnalyzer
from dropmanager.core.project_manager import ProjectManager
from dropmanager.core.schemas import AgentContext, AgentMessage, AgentResult, Task, TaskCandidate

logger = logging.getLogger(__name__)


class TaskHandler:
    """Extracts tasks from a raw message and asks the project handler to place them."""

    name = "task"

    def __init__(self, analyzer: LanguageAnalyzer | None = None) -> None:
        self.analyzer = analyzer or LanguageAnalyzer()

    def can_handle(self, payload: Any, context: AgentContext) -> bool:
        return isinstance(payload, str) and bool(payload.strip())

    async def handle(self, payload: str, context: AgentContext) -> AgentResult:
        logs = ["[task] extracting tasks"]
        candidates: list[TaskCandidate] | None = None
        if self.analyzer.available:
            try:
                candidates = await self.analyzer.extract_tasks(payload)
            except AnalysisError as exc:
                logger.warning("AI extraction failed in task handler: %s", exc)
        if candidates is None:
            candidates = task_extractor.extract_tasks(payload)

        tasks = [candidate.model_dump(exclude={"project_hint"}) for candidate in candidates]
        outbound = [
            AgentMessage(
                from_agent=self.name,
                to_agent="project",
                type="REQUEST",
                payload={"tasks": tasks},
                priority="MEDIUM",
                context=context,
            )
        ]
        missing_due = [candidate.title for candidate in candidates if not candidate.due_date]
        if missing_due:
            question = {
                "id": "due_date-1",
                "text": f"Could you provide due date details? ({'; '.join(missing_due)})",
                "field": "due_date",
                "required": False,
            }
            outbound.append(
                AgentMessage(
                    from_agent=self.name,
                    to_agent="question",
                    type="QUERY",
                    payload={"questions": [question]},
                    priority="LOW",
                    context=context,
                )
            )
        logs.append(f"[task] extracted {len(tasks)} task(s)")
        return AgentResult(outbound=outbound, logs=logs)


class ProjectHandler:
    """Places candidate tasks into projects through the shared state store.

    The requesting user is not enrolled as a project member on this path.
    """

    name = "project"

    def __init__(self, manager: ProjectManager) -> None:
        self.manager = manager

    def can_handle(self, payload: Any, context: AgentContext) -> bool:
        return isinstance(payload, dict) and isinstance(payload.get("tasks"), list) and bool(payload["tasks"])

    async def handle(self, payload: dict[str, Any], context: AgentContext) -> AgentResult:
        assigned: list[dict[str, str]] = []
        for item in payload["tasks"]:
            candidate = TaskCandidate.model_validate(item)
            task = Task(
                id=f"agent-{uuid.uuid4().hex[:8]}",
                employee_id=context.user_id,
                title=candidate.title,
                description=candidate.description,
                status=candidate.status,
                priority=candidate.priority,
                tags=candidate.tags,
            )
            project_id = await self.manager.assign_task_to_project(task, join_project=False)
            assigned.append({"title": task.title, "project_id": project_id})
        return AgentResult(
            outbound=[
                AgentMessage(
                    from_agent=self.name,
                    to_agent="notification",
                    type="NOTIFICATION",
                    payload={"assigned": assigned},
                    priority="LOW",
                    context=context,
                )
            ],
            logs=[f"[project] assigned {len(assigned)} tasks to projects"],
        )
