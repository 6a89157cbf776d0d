import textwrap

from dropmanager.core import task_extractor
from dropmanager.core.task_extractor import analyze_sentiment, extract_tasks


def test_extraction_is_repeatable_for_the_same_text():
    message = (
        "Finished the login API refactor. Currently working on dashboard charts, "
        "blocked on design review. Next week I will work on the #billing export."
    )

    first = extract_tasks(message)
    second = extract_tasks(message)

    assert first == second
    assert [task.model_dump() for task in first] == [task.model_dump() for task in second]


def test_phrase_buckets_set_status():
    tasks = extract_tasks(
        "Completed the onboarding checklist. Working on the payment webhooks. "
        "Stuck on the staging certificate. Planning to migrate the reports job."
    )
    statuses = {task.title: task.status for task in tasks}

    assert statuses["onboarding checklist"] == "completed"
    assert statuses["payment webhooks"] == "in-progress"
    assert statuses["staging certificate"] == "blocked"
    assert statuses["migrate the reports job"] == "not-started"


def test_blocked_phrase_from_vendor_message():
    tasks = extract_tasks("Stuck waiting on the vendor for the sensor parts; can't proceed with calibration.")

    assert len(tasks) == 1
    assert tasks[0].title == "calibration"
    assert tasks[0].status == "blocked"
    assert tasks[0].priority == "medium"


def test_priority_and_tags_come_from_sentence():
    tasks = extract_tasks("Urgent: finished the Docker image for the backend #infra.")

    assert len(tasks) == 1
    task = tasks[0]
    assert task.priority == "critical"
    assert task.tags == ["infra", "docker", "backend"]


def test_bullets_used_when_no_phrase_matches():
    message = textwrap.dedent(
        """
        This week:
        - Sensor calibration rig
        - Vendor contract review
        1. Quarterly roadmap draft
        """
    )
    titles = [task.title for task in extract_tasks(message)]

    assert titles == ["Sensor calibration rig", "Vendor contract review", "Quarterly roadmap draft"]


def test_duplicates_collapse_on_normalised_title():
    tasks = extract_tasks("Finished API docs. Completed api  docs, shipped API Docs.")

    assert len(tasks) == 1


def test_short_fragments_are_ignored():
    assert extract_tasks("Done it.") == []


def test_project_hint_is_captured():
    tasks = extract_tasks("Working on project Apollo telemetry.")

    assert tasks[0].project_hint == "Apollo"


def test_sentiment_blocked_takes_precedence():
    assert analyze_sentiment("Great progress, but stuck on the migration") == "blocked"
    assert analyze_sentiment("Completed the launch, great success") == "positive"
    assert analyze_sentiment("Delayed and behind on the slow rollout") == "negative"
    assert analyze_sentiment("Met with the team.") == "neutral"


def test_clean_title_strips_leading_verbs_and_truncates():
    assert task_extractor.clean_title("working on   the ingest   service") == "ingest service"
    assert len(task_extractor.clean_title("x" * 150)) == 100
