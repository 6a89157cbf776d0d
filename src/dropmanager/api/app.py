from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any

from fastapi import Body, Depends, FastAPI, HTTPException, Query, Request, Response, status

from dropmanager import __version__
from dropmanager.agents.dispatcher import AgentDispatcher
from dropmanager.agents.handlers import ProjectHandler, TaskHandler
from dropmanager.analysis.cache import AnalysisCache
from dropmanager.analysis.knowledge_gaps import KnowledgeGapAnalyzer
from dropmanager.analysis.summary import SummarySynthesizer
from dropmanager.common.db import SqliteDocumentStore
from dropmanager.common.settings import PERSISTENCE_ENABLED
from dropmanager.core.analyzer import LanguageAnalyzer, openai_text_generator
from dropmanager.core.project_manager import ProjectManager
from dropmanager.core.schemas import (
    AgentContext,
    AgentResult,
    AgentRunRequest,
    GapAnalysisRequest,
    GapAnalysisResult,
    GeneratedQuestion,
    GeneratedSummary,
    KnowledgeGap,
    ProcessUpdateResponse,
    SummaryRequest,
    UpdateTicket,
)
from dropmanager.core.update_queue import UpdateQueue
from dropmanager.utils import completion_util

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"


@dataclass
class Services:
    manager: ProjectManager
    cache: AnalysisCache
    gaps: KnowledgeGapAnalyzer
    summaries: SummarySynthesizer
    dispatcher: AgentDispatcher
    queue: UpdateQueue

    def invalidate_analysis(self, *_: Any) -> None:
        self.cache.invalidate_pattern("gaps")
        self.cache.invalidate_pattern("summary")


def build_services(manager: ProjectManager | None = None, cache: AnalysisCache | None = None) -> Services:
    if manager is None:
        store = SqliteDocumentStore() if PERSISTENCE_ENABLED else None
        manager = ProjectManager(LanguageAnalyzer(openai_text_generator()), store)
    cache = cache or AnalysisCache()
    services = Services(
        manager=manager,
        cache=cache,
        gaps=KnowledgeGapAnalyzer(manager, cache=cache),
        summaries=SummarySynthesizer(manager, cache=cache),
        dispatcher=AgentDispatcher([TaskHandler(manager.analyzer), ProjectHandler(manager)]),
        queue=UpdateQueue(manager),
    )
    services.queue.on_processed = services.invalidate_analysis
    return services


def create_app(manager: ProjectManager | None = None, cache: AnalysisCache | None = None) -> FastAPI:
    app = FastAPI(title="DropManager", version=__version__)
    app.state.services = build_services(manager, cache)

    @app.on_event("startup")
    async def _startup() -> None:
        services: Services = app.state.services
        await services.manager.load_from_store()
        services.queue.start()

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        services: Services = app.state.services
        await services.queue.stop()
        services.cache.close()

    def get_services(request: Request) -> Services:
        return request.app.state.services

    @app.get("/healthz")
    def healthz() -> dict[str, str]:
        return {"status": "ok"}

    # --- Updates ---

    @app.post(f"{API_PREFIX}/updates", response_model=ProcessUpdateResponse)
    async def process_update(
        response: Response,
        payload: dict[str, Any] = Body(...),
        services: Services = Depends(get_services),
    ) -> ProcessUpdateResponse:
        result = await services.manager.process_update(payload)
        if result.success:
            services.invalidate_analysis()
        else:
            response.status_code = status.HTTP_400_BAD_REQUEST
        return result

    @app.post(f"{API_PREFIX}/updates/queue", response_model=UpdateTicket, status_code=status.HTTP_202_ACCEPTED)
    async def enqueue_update(
        response: Response,
        payload: dict[str, Any] = Body(...),
        services: Services = Depends(get_services),
    ) -> UpdateTicket:
        ticket = services.queue.submit(payload)
        if ticket.status == "rejected":
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return ticket

    @app.get(f"{API_PREFIX}/updates/queue/{{ticket_id}}", response_model=UpdateTicket)
    def get_ticket(ticket_id: str, services: Services = Depends(get_services)) -> UpdateTicket:
        ticket = services.queue.status(ticket_id)
        if ticket is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Ticket not found")
        return ticket

    @app.get(f"{API_PREFIX}/state")
    def get_state(services: Services = Depends(get_services)) -> dict[str, Any]:
        summary = services.manager.get_state_summary()
        latest = summary["latest_update"]
        summary["latest_update"] = latest.model_dump(mode="json") if latest is not None else None
        summary["queue_pending"] = services.queue.pending
        summary["token_usage"] = completion_util.get_token_usage()
        return summary

    # --- Analysis ---

    @app.post(f"{API_PREFIX}/analysis/gaps", response_model=GapAnalysisResult)
    async def analyze_gaps(
        payload: GapAnalysisRequest | None = None,
        services: Services = Depends(get_services),
    ) -> GapAnalysisResult:
        return await services.gaps.analyze_knowledge_gaps(payload)

    @app.get(f"{API_PREFIX}/analysis/gaps/critical", response_model=list[KnowledgeGap])
    async def critical_gaps(services: Services = Depends(get_services)) -> list[KnowledgeGap]:
        return await services.gaps.find_critical_gaps()

    @app.get(f"{API_PREFIX}/analysis/questions/employee/{{employee_id}}", response_model=list[GeneratedQuestion])
    async def employee_questions(employee_id: str, services: Services = Depends(get_services)) -> list[GeneratedQuestion]:
        return await services.gaps.generate_questions_for_employee(employee_id)

    @app.get(f"{API_PREFIX}/analysis/questions/project/{{project_id}}", response_model=list[GeneratedQuestion])
    async def project_questions(project_id: str, services: Services = Depends(get_services)) -> list[GeneratedQuestion]:
        return await services.gaps.generate_questions_for_project(project_id)

    @app.post(f"{API_PREFIX}/analysis/summary", response_model=GeneratedSummary)
    async def generate_summary(payload: SummaryRequest, services: Services = Depends(get_services)) -> GeneratedSummary:
        return await services.summaries.generate_summary(payload)

    @app.get(f"{API_PREFIX}/analysis/summary/{{summary_type}}", response_model=GeneratedSummary)
    async def summary_by_type(
        summary_type: str,
        scope: str | None = Query(default=None),
        services: Services = Depends(get_services),
    ) -> GeneratedSummary:
        try:
            return await services.summaries.generate_by_type(summary_type, scope)
        except KeyError:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown summary type: {summary_type}")
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))

    @app.get(f"{API_PREFIX}/analysis/cache")
    def cache_stats(services: Services = Depends(get_services)) -> dict[str, Any]:
        return services.cache.get_stats()

    @app.delete(f"{API_PREFIX}/analysis/cache", status_code=status.HTTP_204_NO_CONTENT)
    def clear_cache(services: Services = Depends(get_services)) -> None:
        services.cache.clear()

    # --- Agents ---

    @app.post(f"{API_PREFIX}/agents/run", response_model=AgentResult)
    async def run_agents(payload: AgentRunRequest, services: Services = Depends(get_services)) -> AgentResult:
        context = AgentContext(
            user_id=payload.user_id,
            conversation_id=payload.conversation_id or f"conv-{uuid.uuid4().hex[:8]}",
        )
        first = await services.dispatcher.dispatch(payload.message_text, context)
        relayed = await services.dispatcher.relay(first.outbound)
        return AgentResult(outbound=[*first.outbound, *relayed.outbound], logs=[*first.logs, *relayed.logs])

    return app
