"""Hydra structured config dataclasses.

These mirror the Pydantic ``ProjectConfig`` for Hydra schema validation.
At runtime the Hydra DictConfig is converted to ``ProjectConfig`` via
``cli._to_project_config()``.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from hydra.core.config_store import ConfigStore


@dataclass
class AzureConf:
    api_key: str = "${oc.env:AZURE_OPENAI_API_KEY,''}"
    api_version: str = "${oc.env:AZURE_OPENAI_API_VERSION,''}"
    endpoint: str = "${oc.env:AZURE_OPENAI_ENDPOINT,''}"


@dataclass
class ModelConf:
    default: str = "gpt-4o"
    generator: str | None = None
    detector: str | None = None


@dataclass
class RetryConf:
    max_attempts: int = 3
    base_delay: float = 1.0
    backoff_multiplier: float = 2.0
    max_delay: float = 30.0


@dataclass
class DmgConf:
    # --- Dispatch + CLI-only fields ---
    mode: str = "run"
    verbose: bool = False
    quiet: bool = False
    input_file: str | None = None
    mime_type: str | None = None
    module_file: str | None = None
    output_file: str | None = None
    config_file: str | None = None

    # --- ProjectConfig fields (1:1 mapping) ---
    project_name: str = "design-module"

    azure: AzureConf = field(default_factory=AzureConf)
    models: ModelConf = field(default_factory=ModelConf)
    timeout: int = 120
    seed: int = 42

    quality_threshold: float = 85.0
    max_iterations: int = 3
    plateau_epsilon: float = 1.0

    max_workers: int = 4
    max_concurrent_runs: int = 2

    max_input_bytes: int = 10485760
    allowed_mime_types: list[str] = field(default_factory=lambda: [
        "image/gif", "image/jpeg", "image/png", "image/webp", "text/html", "text/plain",
    ])

    retry: RetryConf = field(default_factory=RetryConf)

    schema_version: str = "2024.1"
    schema_file: str | None = None
    content_types: list[str] = field(default_factory=lambda: ["LANDING_PAGE"])
    module_label: str = "Generated Module"
    fail_on_schema_incompatible: bool = False


# Keys present in DmgConf that are NOT part of ProjectConfig.
CLI_ONLY_KEYS = frozenset({
    "mode", "verbose", "quiet", "input_file", "mime_type", "module_file", "output_file", "config_file",
})


def register_configs() -> None:
    """Register the structured config schema with Hydra's ConfigStore."""
    cs = ConfigStore.instance()
    cs.store(name="dmg_schema", node=DmgConf)
