"""Generative backend contract and its AG2 implementation.

A backend turns a prompt (plus context such as an image data URL) into a
``BackendResponse``. Failures are raised as ``BackendError`` with kind
``timeout``, ``rate_limit`` or ``invalid_request``.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Protocol

import autogen
from pydantic import BaseModel, Field, ValidationError

from .agents.layout_detector import make_layout_detector
from .agents.section_generator import make_section_generator
from .errors import BackendError
from .models import BackendResponse, EditableField, ProjectConfig

logger = logging.getLogger(__name__)


class GenerativeBackend(Protocol):
    """Anything that can turn a prompt into markup."""

    def generate(self, prompt: str, context: dict[str, Any]) -> BackendResponse: ...


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------

class _MarkupPayload(BaseModel):
    html: str = Field(default="")
    css: str = Field(default="")
    fields: list[EditableField] = Field(default_factory=list)


_CODE_BLOCK_RE = re.compile(r"```(\w+)?\s*\n(.*?)```", re.DOTALL)


def _extract_text(response: Any) -> str:
    """Extract the reply text from an AG2 chat response."""
    if hasattr(response, "summary") and response.summary:
        return str(response.summary)
    if hasattr(response, "chat_history") and response.chat_history:
        last = response.chat_history[-1]
        return last.get("content", "") if isinstance(last, dict) else str(last)
    return str(response)


def _extract_token_usage(response: Any) -> tuple[int, str]:
    """Sum ``total_tokens`` across models in an AG2 ``ChatResult.cost``."""
    cost = getattr(response, "cost", None)
    if not isinstance(cost, dict):
        return 0, ""
    usage = cost.get("usage_including_cached_inference") or {}
    total, model = 0, ""
    for key, value in usage.items():
        if isinstance(value, dict):
            total += int(value.get("total_tokens", 0))
            model = model or key
    return total, model


def parse_markup_response(text: str) -> BackendResponse:
    """Normalise a generator reply into html, css and fields.

    Tries a JSON object first, then fenced ``html``/``css`` code blocks,
    then treats raw markup as html. Unparseable text yields empty html.
    """
    stripped = text.strip()
    unfenced = re.sub(r"```(?:json)?|```", "", stripped).strip()
    if "{" in unfenced and "}" in unfenced:
        segment = unfenced[unfenced.find("{"):unfenced.rfind("}") + 1]
        try:
            payload = _MarkupPayload.model_validate_json(segment)
            return BackendResponse(html=payload.html, css=payload.css, fields=payload.fields, raw=text)
        except ValidationError:
            logger.debug("Reply is not a JSON markup payload; trying code blocks")

    blocks = {(lang or "").lower(): body.strip() for lang, body in _CODE_BLOCK_RE.findall(stripped)}
    if "html" in blocks:
        return BackendResponse(html=blocks["html"], css=blocks.get("css", ""), raw=text)

    if re.search(r"<[a-zA-Z][^>]*>", stripped) and not stripped.startswith("{"):
        return BackendResponse(html=stripped, raw=text)
    return BackendResponse(raw=text)


def classify_backend_exception(exc: Exception) -> BackendError:
    """Map a client library exception to a ``BackendError`` by name and message."""
    text = f"{type(exc).__name__} {exc}".lower()
    if "ratelimit" in text or "rate limit" in text or "429" in text:
        kind = "rate_limit"
    elif any(word in text for word in ("timeout", "timed out", "connection", "network", "503", "502")):
        kind = "timeout"
    else:
        kind = "invalid_request"
    return BackendError(kind, str(exc))


# ---------------------------------------------------------------------------
# AG2 backend
# ---------------------------------------------------------------------------

class AutogenBackend:
    """Backend driving AG2 assistant agents with a one-turn orchestrator chat.

    ``context["role"]`` selects the agent: ``generator`` (default) or
    ``detector``. ``context["image_data_url"]`` attaches the design image.
    """

    def __init__(self, config: ProjectConfig) -> None:
        self.config = config
        self._factories = {
            "generator": make_section_generator,
            "detector": make_layout_detector,
        }

    def _build_message(self, prompt: str, context: dict[str, Any]) -> str | dict[str, Any]:
        image_url = context.get("image_data_url")
        if not image_url:
            return prompt
        return {
            "role": "user",
            "content": [
                {"type": "text", "text": prompt},
                {"type": "image_url", "image_url": {"url": image_url}},
            ],
        }

    def generate(self, prompt: str, context: dict[str, Any]) -> BackendResponse:
        role = context.get("role", "generator")
        factory = self._factories.get(role)
        if factory is None:
            raise BackendError("invalid_request", f"Unknown backend role: {role!r}")

        agent = factory(self.config)
        orchestrator = autogen.UserProxyAgent(
            name="Orchestrator",
            human_input_mode="NEVER",
            code_execution_config=False,
        )
        try:
            response = orchestrator.initiate_chat(
                agent,
                message=self._build_message(prompt, context),
                max_turns=1,
            )
        except BackendError:
            raise
        except Exception as exc:
            error = classify_backend_exception(exc)
            logger.warning("Backend call (%s) failed: %s [%s]", role, exc, error.kind)
            raise error from exc

        text = _extract_text(response)
        tokens, model = _extract_token_usage(response)
        if role == "detector":
            parsed = BackendResponse(raw=text)
        else:
            parsed = parse_markup_response(text)
        parsed.token_usage = tokens
        parsed.model = model
        return parsed


def describe_context(context: dict[str, Any]) -> str:
    """Compact, image-free rendering of a context dict for prompts and logs."""
    visible = {k: v for k, v in context.items() if k != "image_data_url"}
    return json.dumps(visible, ensure_ascii=False, sort_keys=True, default=str)
