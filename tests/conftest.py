"""Shared fixtures for tests."""

import os
import pytest
from pathlib import Path
from typing import Optional, Union

from diagram_chat.config import LoopConfig, ModelProvider, get_ollama_base_url
from diagram_chat.diagram import detect_diagram_type
from diagram_chat.models import (
    Message,
    TextChunk,
    ToolCallChunk,
    ToolCallRequest,
    ValidationFailure,
    ValidationSuccess,
)
from diagram_chat.orchestrator import ConversationLoop
from diagram_chat.session import DiagramSession
from diagram_chat.tools import ToolRegistry, build_workspace_registry
from diagram_chat.validator import DiagramValidator


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (may require external services)"
    )
    config.addinivalue_line(
        "markers", "slow: marks tests as slow running"
    )


# ============================================================================
# Environment Detection Fixtures
# ============================================================================

@pytest.fixture(scope="session")
def ollama_available() -> bool:
    """Check if Ollama server is available."""
    import httpx

    base_url = get_ollama_base_url().replace("/v1", "")
    try:
        response = httpx.get(f"{base_url}/api/tags", timeout=5.0)
        return response.status_code == 200
    except httpx.HTTPError:
        return False


@pytest.fixture(scope="session")
def openai_available() -> bool:
    """Check if OpenAI API key is configured."""
    api_key = os.environ.get("OPENAI_API_KEY", "")
    return api_key.startswith("sk-") and len(api_key) > 20


@pytest.fixture(scope="session")
def groq_available() -> bool:
    """Check if a Groq API key is configured."""
    return bool(os.environ.get("GROQ_API_KEY"))


@pytest.fixture(scope="session")
def current_provider() -> ModelProvider:
    """Get the current model provider from environment."""
    return ModelProvider.from_env()


# ============================================================================
# Skip Condition Fixtures
# ============================================================================

@pytest.fixture
def require_groq(groq_available):
    """Skip test if Groq is not configured."""
    if not groq_available:
        pytest.skip("GROQ_API_KEY not configured")


@pytest.fixture
def require_llm(ollama_available, openai_available, groq_available, current_provider):
    """Skip test if no LLM provider is available."""
    if current_provider == ModelProvider.OLLAMA and not ollama_available:
        pytest.skip("Ollama server not available")
    if current_provider == ModelProvider.OPENAI and not openai_available:
        pytest.skip("OpenAI API key not configured")
    if current_provider == ModelProvider.GROQ and not groq_available:
        pytest.skip("GROQ_API_KEY not configured")


# ============================================================================
# Fake Collaborators
# ============================================================================

ScriptedResponse = Union[list[Union[str, TextChunk, ToolCallChunk]], Exception]


class ScriptedModelStream:
    """Model stream that replays one scripted response per call.

    Plain strings become TextChunks. An exception instance is raised
    instead of streaming. Every call's messages are recorded.
    """

    def __init__(self, responses: list[ScriptedResponse]):
        self.responses = list(responses)
        self.calls: list[list[Message]] = []

    async def stream(self, messages, tools):
        self.calls.append(list(messages))
        if not self.responses:
            raise AssertionError("Model called more often than scripted")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        for chunk in response:
            yield TextChunk(text=chunk) if isinstance(chunk, str) else chunk


SILENT = object()


class FakeBackend:
    """Render backend with scripted outcomes.

    ``None`` reports success, a string reports that error and ``SILENT``
    never reports. Once the script runs out every render succeeds.
    """

    def __init__(self, outcomes: Optional[list] = None):
        self.outcomes = list(outcomes or [])
        self.sources: list[str] = []

    async def render(self, source, nonce, report):
        self.sources.append(source)
        outcome = self.outcomes.pop(0) if self.outcomes else None
        if outcome is SILENT:
            return
        if outcome is None:
            report(ValidationSuccess(nonce=nonce, diagram_type=detect_diagram_type(source)))
        else:
            report(ValidationFailure(nonce=nonce, error=outcome))


@pytest.fixture
def scripted_model():
    """The scripted model stream class, for building extra collaborators."""
    return ScriptedModelStream


@pytest.fixture
def silent():
    """Backend outcome that never reports."""
    return SILENT


@pytest.fixture
def tool_call():
    """Build a ToolCallChunk from keyword arguments."""

    def _make(call_id: str, name: str, **arguments) -> ToolCallChunk:
        return ToolCallChunk(call=ToolCallRequest(call_id=call_id, name=name, arguments=arguments))

    return _make


@pytest.fixture
def make_loop():
    """Factory for a loop over scripted collaborators using the 'diagram' fence tag."""

    def _make(
        responses: list[ScriptedResponse],
        outcomes: Optional[list] = None,
        tools: Optional[ToolRegistry] = None,
        session: Optional[DiagramSession] = None,
        timeout: float = 2.0,
        **config_overrides,
    ) -> ConversationLoop:
        config = LoopConfig(language="diagram", validation_timeout=timeout, **config_overrides)
        backend = FakeBackend(outcomes)
        loop = ConversationLoop(
            model=ScriptedModelStream(responses),
            tools=tools if tools is not None else ToolRegistry(),
            validator=DiagramValidator(backend, timeout=timeout, language="diagram"),
            session=session,
            config=config,
        )
        loop.backend = backend
        return loop

    return _make


# ============================================================================
# Workspace Fixtures
# ============================================================================

GREETER_SOURCE = '''import dataclasses


@dataclasses.dataclass
class Greeter:
    name: str

    def greet(self) -> str:
        return f"Hello, {self.name}"


def make_greeter(name):
    return Greeter(name)
'''


@pytest.fixture
def workspace(tmp_path) -> Path:
    """A small Python project on disk."""
    root = tmp_path / "project"
    (root / "pkg").mkdir(parents=True)
    (root / "pkg" / "__init__.py").write_text("")
    (root / "pkg" / "greeter.py").write_text(GREETER_SOURCE)
    (root / "pkg" / "app.py").write_text(
        "from .greeter import make_greeter\n\n\ndef main():\n    print(make_greeter('x').greet())\n"
    )
    (root / "README.md").write_text("# Project\n")
    hidden = root / ".venv" / "lib"
    hidden.mkdir(parents=True)
    (hidden / "shadow.py").write_text("class Greeter:\n    pass\n")
    return root


@pytest.fixture
def workspace_registry(workspace) -> ToolRegistry:
    return build_workspace_registry(workspace)
