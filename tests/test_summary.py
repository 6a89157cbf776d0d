import asyncio
import json

import pytest

from dropmanager.analysis.summary import SummarySynthesizer, compute_metrics
from dropmanager.core.project_manager import ProjectManager
from dropmanager.core.schemas import ProcessUpdateRequest, SummaryRequest

SUMMARY_MARKER = "generating a"


def _seeded_manager(analyzer=None) -> ProjectManager:
    manager = ProjectManager(analyzer)
    for employee_id, text in (
        ("emp-1", "Finished the quarterly report. Stuck on the vendor invoice."),
        ("emp-2", "Completed the onboarding checklist."),
    ):
        asyncio.run(manager.process_update(ProcessUpdateRequest(message_text=text, employee_id=employee_id)))
    return manager


def test_fallback_summary_when_capability_missing():
    synthesizer = SummarySynthesizer(_seeded_manager())

    summary = asyncio.run(synthesizer.generate_summary(SummaryRequest(type="weekly_highlights")))

    assert summary.title == "weekly_highlights Summary"
    assert summary.confidence == 30
    assert summary.concerns == ["Unable to parse structured summary"]
    metrics = {metric.label: metric.value for metric in summary.key_metrics}
    assert metrics["Updates"] == "2"
    assert metrics["Active employees"] == "2"
    assert metrics["Task completion rate"] == "66.7%"
    assert metrics["Blocked tasks"] == "1"


def test_metrics_use_in_window_updates_only():
    manager = _seeded_manager()

    metrics = compute_metrics(manager.get_updates(), ["active", "active", "on-hold"])

    assert metrics.total_tasks == 3
    assert metrics.completed_tasks == 2
    assert metrics.project_status_counts == {"active": 2, "on-hold": 1}
    assert compute_metrics([], []).completion_rate == 0.0


def test_ai_summary_is_validated(scripted):
    generator, analyzer = scripted({
        SUMMARY_MARKER: json.dumps({
            "title": "Solid week",
            "content": "Reports shipped and onboarding finished.",
            "keyMetrics": [{"label": "Velocity", "value": 12, "trend": "UP"}],
            "highlights": ["Quarterly report done"],
            "concerns": ["Vendor invoice blocked"],
            "recommendations": ["Escalate with vendor"],
            "confidence": 82,
        }),
    })
    synthesizer = SummarySynthesizer(_seeded_manager(), analyzer)

    summary = asyncio.run(synthesizer.generate_summary(SummaryRequest(type="risk_alerts")))

    assert summary.type == "risk_alerts"
    assert summary.title == "Solid week"
    assert summary.key_metrics[0].value == "12"
    assert summary.key_metrics[0].trend == "up"
    assert summary.confidence == 82
    assert "RISK ALERTS" in generator.prompts[-1]


def test_malformed_ai_summary_falls_back(scripted):
    _, analyzer = scripted({SUMMARY_MARKER: '{"content": "no title here"}'})
    synthesizer = SummarySynthesizer(_seeded_manager(), analyzer)

    summary = asyncio.run(synthesizer.generate_summary(SummaryRequest(type="executive_brief", timeframe="month")))

    assert summary.confidence == 30
    assert summary.title == "executive_brief Summary"


def test_repeated_summary_is_served_from_cache(scripted, cache):
    generator, analyzer = scripted({
        SUMMARY_MARKER: json.dumps({"title": "Highlights", "content": "All good.", "confidence": 70}),
    })
    synthesizer = SummarySynthesizer(_seeded_manager(), analyzer, cache=cache)

    first = asyncio.run(synthesizer.generate_weekly_highlights())
    second = asyncio.run(synthesizer.generate_weekly_highlights())

    assert first == second
    assert generator.calls(SUMMARY_MARKER) == 1
    assert cache.has("summary:weekly_highlights")


def test_generate_by_type_scopes_cache_key(cache):
    synthesizer = SummarySynthesizer(_seeded_manager(), cache=cache)

    asyncio.run(synthesizer.generate_by_type("project_status", "general"))
    asyncio.run(synthesizer.generate_by_type("team_performance"))

    assert cache.has("summary:project_status:general")
    assert cache.has("summary:team_performance:week")


def test_unknown_summary_type_raises():
    synthesizer = SummarySynthesizer(ProjectManager())

    with pytest.raises(KeyError):
        asyncio.run(synthesizer.generate_by_type("quarterly_poem"))


def test_team_performance_scope_must_be_a_timeframe(cache):
    synthesizer = SummarySynthesizer(ProjectManager(), cache=cache)

    with pytest.raises(ValueError):
        asyncio.run(synthesizer.generate_by_type("team_performance", "P1"))

    summary = asyncio.run(synthesizer.generate_by_type("team_performance", "month"))
    assert summary.type == "team_performance"
    assert cache.has("summary:team_performance:month")
