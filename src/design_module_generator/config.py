"""Project settings from a standalone YAML file, and per-role AG2 ``llm_config``.

The CLI normally builds ``ProjectConfig`` from Hydra options; ``config_file=``
points it at a YAML file read by ``load_config`` instead.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from .models import AzureConfig, ModelEndpointOverride, ProjectConfig

load_dotenv()

# ---------------------------------------------------------------------------
# YAML loading with ${ENV_VAR} interpolation
# ---------------------------------------------------------------------------

_ENV_RE = re.compile(r"\$\{([^}]+)\}")


def _resolve_env_vars(value: Any) -> Any:
    """Substitute ``${NAME}`` in every string of a parsed YAML tree; unset names become empty."""
    if isinstance(value, str):
        return _ENV_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _resolve_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_resolve_env_vars(v) for v in value]
    return value


def apply_azure_fallbacks(config: ProjectConfig) -> ProjectConfig:
    """Fill empty azure credentials from environment variables and normalise endpoint."""
    if not config.azure.api_key:
        config.azure.api_key = os.getenv("AZURE_OPENAI_API_KEY", "")
    if not config.azure.api_version:
        config.azure.api_version = os.getenv("AZURE_OPENAI_API_VERSION", "")
    if not config.azure.endpoint:
        config.azure.endpoint = os.getenv("AZURE_OPENAI_ENDPOINT", "")
    config.azure.endpoint = config.azure.endpoint.rstrip("/")
    return config


def load_config(config_path: str | Path) -> ProjectConfig:
    """Read *config_path* into a ``ProjectConfig``; keys it omits keep their defaults."""
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        raw = yaml.safe_load(f) or {}

    config = ProjectConfig.model_validate(_resolve_env_vars(raw))
    return apply_azure_fallbacks(config)


# ---------------------------------------------------------------------------
# LLM config builder
# ---------------------------------------------------------------------------

_AZURE_HOSTS = ("openai.azure.com", "cognitiveservices.azure.com")


def _is_azure_openai_endpoint(endpoint: str) -> bool:
    return any(host in endpoint.lower() for host in _AZURE_HOSTS)


def _endpoint_entry(
    model: str,
    azure: AzureConfig,
    override: ModelEndpointOverride | None = None,
) -> dict[str, Any]:
    """One ``config_list`` entry; Azure hosts route by deployment name, others by ``base_url``."""
    endpoint = override.endpoint.rstrip("/") if override else azure.endpoint
    entry: dict[str, Any] = {"model": model, "api_key": (override and override.api_key) or azure.api_key}
    if override and override.api_type:
        return {**entry, "api_type": override.api_type, "base_url": endpoint}

    if not endpoint:
        return entry
    if _is_azure_openai_endpoint(endpoint):
        api_version = (override and override.api_version) or azure.api_version
        entry.update(api_type="azure", azure_endpoint=endpoint, api_version=api_version, azure_deployment=model)
    else:
        entry["base_url"] = endpoint
    return entry


def build_role_llm_config(role: str, config: ProjectConfig) -> dict[str, Any]:
    """AG2 ``llm_config`` for an agent role.

    ``generator`` and ``section_generator`` use ``models.generator``;
    ``detector`` and ``layout_detector`` use ``models.detector``. Anything
    unset falls back to ``models.default``.
    """
    models = config.models
    role_map: dict[str, str | None] = {
        "generator": models.generator,
        "section_generator": models.generator,
        "detector": models.detector,
        "layout_detector": models.detector,
    }
    chosen = role_map.get(role.lower()) or models.default
    override = models.overrides.get(chosen)
    entry = _endpoint_entry(chosen, config.azure, override=override)
    return {
        "config_list": [entry],
        "timeout": config.timeout,
        "seed": config.seed,
    }
