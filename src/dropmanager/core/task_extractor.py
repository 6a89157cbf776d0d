"""
Pattern-based task extraction used when the language-analysis capability is
unavailable or fails.

Everything here is a pure function of the input text: no ids, no clock and no
randomness, so repeated calls on the same message return equal results.
"""
from __future__ import annotations

import re
from typing import Iterable

from .schemas import Sentiment, TaskCandidate

_TAIL = r"\s+(.+?)(?:\.|$|,)"

# Bucket order matters: earlier buckets claim a match first.
STATUS_PATTERNS: tuple[tuple[str, tuple[re.Pattern[str], ...]], ...] = (
    (
        "completed",
        (
            re.compile(r"\b(?:completed|finished|done|shipped|delivered|closed)" + _TAIL, re.I),
            re.compile(r"(?:✓|✔|☑)\s*(.+?)(?:\.|$|,)", re.I),
        ),
    ),
    (
        "in-progress",
        (
            re.compile(r"\b(?:working on|currently|in progress|continuing)" + _TAIL, re.I),
            re.compile(r"\b(?:started|began|beginning)" + _TAIL, re.I),
        ),
    ),
    (
        "blocked",
        (
            re.compile(r"\b(?:blocked on|waiting for|stuck on|can[’']t proceed)" + _TAIL, re.I),
            re.compile(r"\b(?:need help with|need assistance)" + _TAIL, re.I),
        ),
    ),
    (
        "not-started",
        (
            re.compile(r"\b(?:will work on|planning to|next week|going to)" + _TAIL, re.I),
            re.compile(r"\b(?:scheduled|planning)" + _TAIL, re.I),
        ),
    ),
)

PRIORITY_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("critical", ("urgent", "critical", "asap", "emergency", "high priority")),
    ("high", ("important", "high", "priority", "soon")),
    ("medium", ("medium", "normal", "regular")),
    ("low", ("low", "later", "when time permits", "nice to have")),
)

BLOCKED_KEYWORDS = ("blocked", "stuck", "waiting", "can't", "can’t", "issue", "problem", "help needed")
POSITIVE_KEYWORDS = ("completed", "finished", "done", "success", "great", "good", "progress", "achieved")
NEGATIVE_KEYWORDS = ("delayed", "behind", "difficult", "challenging", "slow", "issues", "problems")

_HASHTAG_RE = re.compile(r"#([\w-]+)")
_TECH_RE = re.compile(
    r"\b(React|Vue|Angular|Node|Python|Java|TypeScript|JavaScript|SQL|AWS|GCP|Docker|Kubernetes"
    r"|API|database|frontend|backend|mobile|web|testing|deployment)\b",
    re.I,
)
_BULLET_RE = re.compile(r"^\s*(?:[-•*]|\d+[.)])\s*(.+?)\s*$")
_PROJECT_HINT_RE = re.compile(r"\b(?:project|proj)\s+([A-Za-z0-9\-_]+)", re.I)
_LEADING_WORDS_RE = re.compile(
    r"^(?:(?:completed|finished|done|working on|currently|will work on|with|on|for|to|the)\s+)+",
    re.I,
)
_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?;])\s+")

MIN_TASK_LENGTH = 5
MAX_TASK_LENGTH = 200
MAX_TITLE_LENGTH = 100


def clean_text(text: str) -> str:
    collapsed = re.sub(r"\n+", ". ", text or "")
    return re.sub(r"\s+", " ", collapsed).strip()


def clean_title(task_text: str) -> str:
    title = _LEADING_WORDS_RE.sub("", task_text.strip())
    title = re.sub(r"\s+", " ", title).strip()
    return title[:MAX_TITLE_LENGTH]


def detect_priority(text: str) -> str:
    lowered = text.lower()
    for priority, keywords in PRIORITY_KEYWORDS:
        if any(re.search(rf"\b{re.escape(keyword)}\b", lowered) for keyword in keywords):
            return priority
    return "medium"


def extract_tags(text: str) -> list[str]:
    tags: list[str] = [tag.lower() for tag in _HASHTAG_RE.findall(text)]
    tags.extend(match.lower() for match in _TECH_RE.findall(text))
    return list(dict.fromkeys(tags))


def extract_project_hint(text: str) -> str | None:
    match = _PROJECT_HINT_RE.search(text)
    return match.group(1) if match else None


def _sentence_around(text: str, start: int) -> str:
    """The sentence of `text` containing offset `start`."""
    offset = 0
    for sentence in _SENTENCE_SPLIT_RE.split(text):
        end = offset + len(sentence)
        if offset <= start <= end:
            return sentence
        offset = end + 1
    return text


def _candidate(task_text: str, status: str, context: str) -> TaskCandidate | None:
    task_text = task_text.strip()
    if not MIN_TASK_LENGTH <= len(task_text) <= MAX_TASK_LENGTH:
        return None
    title = clean_title(task_text)
    if not title:
        return None
    return TaskCandidate(
        title=title,
        description=task_text,
        status=status,
        priority=detect_priority(context),
        tags=extract_tags(task_text),
        project_hint=extract_project_hint(context),
    )


def _from_phrases(cleaned: str) -> list[TaskCandidate]:
    found: list[TaskCandidate] = []
    for status, patterns in STATUS_PATTERNS:
        for pattern in patterns:
            for match in pattern.finditer(cleaned):
                candidate = _candidate(match.group(1), status, _sentence_around(cleaned, match.start()))
                if candidate is not None:
                    found.append(candidate)
    return found


def _from_bullets(raw: str) -> list[TaskCandidate]:
    found: list[TaskCandidate] = []
    for line in (raw or "").splitlines():
        match = _BULLET_RE.match(line)
        if not match:
            continue
        candidate = _candidate(match.group(1), "in-progress", line)
        if candidate is not None:
            found.append(candidate)
    return found


def deduplicate(candidates: Iterable[TaskCandidate]) -> list[TaskCandidate]:
    seen: set[str] = set()
    unique: list[TaskCandidate] = []
    for candidate in candidates:
        key = re.sub(r"\s+", "", candidate.title.lower())
        if key in seen:
            continue
        seen.add(key)
        unique.append(candidate)
    return unique


def extract_tasks(message_text: str) -> list[TaskCandidate]:
    """Extract task candidates from a free-text update.

    Phrase patterns run over the whitespace-collapsed text. When none of them
    match, bullet and numbered-list lines of the raw text are used instead.
    """
    candidates = _from_phrases(clean_text(message_text))
    if not candidates:
        candidates = _from_bullets(message_text)
    return deduplicate(candidates)


def analyze_sentiment(message_text: str) -> Sentiment:
    lowered = (message_text or "").lower()
    if any(keyword in lowered for keyword in BLOCKED_KEYWORDS):
        return "blocked"
    positive = sum(1 for keyword in POSITIVE_KEYWORDS if keyword in lowered)
    negative = sum(1 for keyword in NEGATIVE_KEYWORDS if keyword in lowered)
    if positive > negative:
        return "positive"
    if negative > positive:
        return "negative"
    return "neutral"
