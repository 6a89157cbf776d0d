import pytest

from dropmanager.analysis.cache import AnalysisCache
from dropmanager.core.analyzer import LanguageAnalyzer
from dropmanager.core.project_manager import ProjectManager
from dropmanager.utils import completion_util


class ScriptedGenerator:
    """Async text generator that answers by matching a marker in the prompt."""

    def __init__(self, replies: dict[str, object]):
        self.replies = replies
        self.prompts: list[str] = []

    async def __call__(self, prompt: str) -> str:
        self.prompts.append(prompt)
        for marker, reply in self.replies.items():
            if marker in prompt:
                if isinstance(reply, Exception):
                    raise reply
                return reply
        raise RuntimeError("no scripted reply")

    def calls(self, marker: str) -> int:
        return sum(1 for prompt in self.prompts if marker in prompt)


@pytest.fixture(autouse=True)
def no_completion_provider(monkeypatch):
    monkeypatch.setattr(completion_util, "is_configured", lambda: False)


@pytest.fixture
def manager():
    return ProjectManager()


@pytest.fixture
def cache():
    cache = AnalysisCache(sweep_interval=None)
    yield cache
    cache.close()


@pytest.fixture
def scripted():
    def _build(replies):
        generator = ScriptedGenerator(replies)
        return generator, LanguageAnalyzer(generator)

    return _build
