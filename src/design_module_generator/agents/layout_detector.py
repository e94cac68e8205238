"""LayoutDetector agent: finds section regions in an uploaded design image."""

from __future__ import annotations

import re

import autogen
from pydantic import ValidationError

from ..config import build_role_llm_config
from ..models import DetectedLayout, ProjectConfig

SYSTEM_PROMPT = """\
You are a web layout analyst. Given a screenshot or mockup of a web page,
identify its top-level visual regions from top to bottom.

For each region report:
- type: one of header, navigation, hero, content, sidebar, footer, unknown
- name: a short human-readable name
- bounding_box: pixel box {"x", "y", "width", "height"} if you can estimate it
- html: optional semantic HTML approximating the region
- editable_fields: the texts, images and links an editor should be able to change

Output ONLY a valid JSON object:
{
  "regions": [
    {
      "type": "hero",
      "name": "Hero banner",
      "bounding_box": {"x": 0, "y": 120, "width": 800, "height": 300},
      "html": "<section><h1>...</h1></section>",
      "editable_fields": [{"id": "hero_heading", "type": "text", "label": "Heading"}]
    }
  ]
}
"""

DETECTION_PROMPT = (
    "Identify the top-level sections of the attached design ({filename}). "
    "Return ONLY the JSON object described in your instructions."
)


def _strip_fences(raw: str) -> str:
    return re.sub(r"```(?:json)?|```", "", raw).strip()


def _attempt_repair(raw: str) -> str | None:
    """Lightweight repair for trailing commas and smart quotes."""
    txt = raw.strip()
    if not txt:
        return None
    txt = txt.replace("“", '"').replace("”", '"')
    return re.sub(r",\s*([}\]])", r"\1", txt)


def parse_detected_layout(raw: str) -> tuple[DetectedLayout | None, str | None]:
    """Parse detector output into a ``DetectedLayout``.

    Accepts a ``{"regions": [...]}`` object or a bare JSON list of regions.
    Returns ``(layout, None)`` on success or ``(None, reason)``.
    """
    errors: list[str] = []
    stripped = _strip_fences(raw)

    if "[" in stripped and ("{" not in stripped or stripped.find("[") < stripped.find("{")):
        candidates = [f'{{"regions": {stripped[stripped.find("["):stripped.rfind("]") + 1]}}}']
    elif "{" in stripped:
        candidates = [stripped[stripped.find("{"):stripped.rfind("}") + 1]]
    else:
        return None, "No JSON found in detector output"

    repaired = _attempt_repair(candidates[0])
    if repaired and repaired != candidates[0]:
        candidates.append(repaired)

    for candidate in candidates:
        try:
            return DetectedLayout.model_validate_json(candidate), None
        except ValidationError as e:
            errors.append(str(e).splitlines()[0])
    return None, "; ".join(errors) or "Unparseable"


def make_layout_detector(config: ProjectConfig) -> autogen.AssistantAgent:
    """Create the LayoutDetector agent (vision-capable model expected)."""
    agent = autogen.AssistantAgent(
        name="LayoutDetector",
        system_message=SYSTEM_PROMPT,
        llm_config=build_role_llm_config("detector", config),
    )
    if isinstance(agent.llm_config, dict):
        agent.llm_config["response_format"] = DetectedLayout
    return agent
