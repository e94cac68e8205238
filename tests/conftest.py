"""Shared test fixtures."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Any, Callable

import pytest

from design_module_generator.logging_config import NullCallbacks
from design_module_generator.models import (
    BackendResponse,
    EditableField,
    ProjectConfig,
    RetryConfig,
    SchemaVocabulary,
)
from design_module_generator.recovery import ErrorRecoverySystem
from design_module_generator.schema import SchemaProvider

FIXTURES_DIR = Path(__file__).parent / "fixtures"
SAMPLE_CONFIG = FIXTURES_DIR / "sample_config.yaml"
LANDING_HTML = FIXTURES_DIR / "landing.html"

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


class FakeBackend:
    """Thread-safe scripted backend.

    *handler* receives ``(prompt, context)`` and returns a ``BackendResponse``
    or raises. Every call is recorded in ``calls``.
    """

    def __init__(self, handler: Callable[[str, dict[str, Any]], BackendResponse]) -> None:
        self.handler = handler
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self._lock = threading.Lock()

    def generate(self, prompt: str, context: dict[str, Any]) -> BackendResponse:
        with self._lock:
            self.calls.append((prompt, dict(context)))
        return self.handler(prompt, context)


def good_section_response(section_id: str) -> BackendResponse:
    """Markup that passes every quality check (composite 100)."""
    heading, text = f"{section_id}_heading", f"{section_id}_text"
    return BackendResponse(
        html=(
            f'<section class="py-12 md:py-20">'
            f"<h2>{{{{ module.{heading} }}}}</h2>"
            f"<p>{{{{ module.{text} }}}}</p>"
            f"</section>"
        ),
        fields=[
            EditableField(id=heading, label="Heading", type="text", default_value="Welcome"),
            EditableField(id=text, label="Text", type="richtext", default_value="Body copy"),
        ],
        token_usage=10,
        model="fake-model",
    )


@pytest.fixture
def fixtures_dir() -> Path:
    return FIXTURES_DIR


@pytest.fixture
def sample_config_path() -> Path:
    return SAMPLE_CONFIG


@pytest.fixture
def landing_html() -> str:
    return LANDING_HTML.read_text(encoding="utf-8")


@pytest.fixture
def config() -> ProjectConfig:
    return ProjectConfig(
        quality_threshold=80.0,
        max_iterations=2,
        max_workers=2,
        retry=RetryConfig(max_attempts=2, base_delay=0.0, backoff_multiplier=2.0, max_delay=0.0),
    )


@pytest.fixture
def recovery() -> ErrorRecoverySystem:
    return ErrorRecoverySystem(RetryConfig(max_attempts=3, base_delay=1.0), sleep=lambda _: None)


@pytest.fixture
def schema_provider() -> SchemaProvider:
    return SchemaProvider()


@pytest.fixture
def vocabulary(schema_provider) -> SchemaVocabulary:
    return schema_provider.get("2024.1")


@pytest.fixture
def minimal_vocabulary() -> SchemaVocabulary:
    return SchemaVocabulary(version="test", valid_field_types=["text"], valid_content_types=["LANDING_PAGE"])


@pytest.fixture
def callbacks() -> NullCallbacks:
    return NullCallbacks()


@pytest.fixture
def good_backend() -> FakeBackend:
    return FakeBackend(lambda prompt, ctx: good_section_response(ctx["section_id"]))
