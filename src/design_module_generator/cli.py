"""CLI entry point using Hydra.

Usage examples:
  dmg mode=run input_file=designs/landing.html
  dmg mode=run input_file=designs/mockup.png output_file=out/module.json max_iterations=2
  dmg mode=validate module_file=out/module.json schema_version=2024.1
  dmg mode=score input_file=designs/landing.html
  dmg mode=run input_file=hero.html config_file=project.yaml
  dmg --config-dir . --config-name config mode=run input_file=hero.html
"""

from __future__ import annotations

import mimetypes
import sys
from pathlib import Path
from typing import Any

import hydra
from omegaconf import DictConfig, OmegaConf
from rich.table import Table

from ._hydra_conf import CLI_ONLY_KEYS, register_configs
from .config import apply_azure_fallbacks, load_config
from .logging_config import RichCallbacks, console, setup_logging
from .models import Candidate, ModuleDefinition, ProjectConfig, QualityReport

register_configs()

# ---------------------------------------------------------------------------
# Hydra DictConfig → Pydantic ProjectConfig bridge
# ---------------------------------------------------------------------------


def _to_project_config(cfg: DictConfig) -> ProjectConfig:
    """Convert a Hydra *DictConfig* to a Pydantic ``ProjectConfig``.

    With ``config_file=path`` the project settings come from that YAML file
    (see ``config.load_config``) instead of the Hydra options.
    Otherwise CLI-only keys (``mode``, ``verbose``, etc.) are stripped before
    validation and Azure credential env-var fallbacks are applied afterwards.
    """
    if cfg.get("config_file"):
        return load_config(cfg.config_file)
    container: dict[str, Any] = OmegaConf.to_container(cfg, resolve=True)  # type: ignore[assignment]
    for key in CLI_ONLY_KEYS:
        container.pop(key, None)
    config = ProjectConfig.model_validate(container)
    return apply_azure_fallbacks(config)


def _guess_mime_type(path: Path, explicit: str | None) -> str:
    if explicit:
        return explicit
    guessed, _ = mimetypes.guess_type(path.name)
    return guessed or "application/octet-stream"


def _require_file(cfg: DictConfig, key: str) -> Path:
    value = cfg.get(key)
    if not value:
        console.print(f"[red]{key} is required for mode={cfg.get('mode')}[/]")
        sys.exit(1)
    path = Path(value)
    if not path.exists():
        console.print(f"[red]File not found: {path}[/]")
        sys.exit(1)
    return path


def _print_report(report: QualityReport) -> None:
    table = Table(title=f"Quality score: {report.composite:.2f}")
    table.add_column("Dimension")
    table.add_column("Score", justify="right")
    for name, score in report.dimension_scores().items():
        table.add_row(name, f"{score:.0f}")
    console.print(table)
    for issue in report.errors + report.warnings:
        colour = "red" if issue.severity.value == "error" else "yellow"
        console.print(f"  [{colour}]{issue.severity.value}[/] {issue.dimension.value}/{issue.code}: {issue.message}")
        if issue.fix:
            console.print(f"      → {issue.fix}")


# ---------------------------------------------------------------------------
# Mode handlers
# ---------------------------------------------------------------------------


def _run_mode(cfg: DictConfig) -> None:
    config = _to_project_config(cfg)
    input_path = _require_file(cfg, "input_file")
    mime_type = _guess_mime_type(input_path, cfg.get("mime_type"))

    from .pipeline import PipelineExecutor

    executor = PipelineExecutor(config, callbacks=RichCallbacks())
    console.print(f"[bold]Processing {input_path} ({mime_type})...[/]")
    run = executor.execute(input_path.read_bytes(), input_path.name, mime_type)

    table = Table(title=f"Run {run.id}: {run.status.value}")
    table.add_column("Phase")
    table.add_column("Status")
    table.add_column("ms", justify="right")
    for phase in run.phases:
        table.add_row(phase.name.value, phase.status.value, f"{phase.duration_ms or 0:.0f}")
    console.print(table)

    for section in run.sections:
        flag = " [yellow](degraded)[/]" if section.degraded else ""
        console.print(f"  {section.id}: {section.type.value}, score {section.quality_score:.1f}{flag}")
    if run.quality_score is not None:
        console.print(f"  Quality score: {run.quality_score:.2f}")

    if run.package is not None and cfg.get("output_file"):
        out = Path(cfg.output_file)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(run.package.to_module_definition().model_dump_json(indent=2), encoding="utf-8")
        console.print(f"[green]Module written to {out}[/]")

    if run.error is not None:
        console.print(f"\n[bold red]{run.error.kind}:[/] {run.error.message}")
        if run.error.suggestion:
            console.print(f"  → {run.error.suggestion}")
    if run.status.value != "completed":
        sys.exit(1)


def _load_module(path: Path) -> ModuleDefinition:
    return ModuleDefinition.model_validate_json(path.read_text(encoding="utf-8"))


def _validate_mode(cfg: DictConfig) -> None:
    config = _to_project_config(cfg)
    module = _load_module(_require_file(cfg, "module_file"))

    from .schema import SchemaProvider
    from .tools.schema_validator import SchemaValidator

    provider = SchemaProvider()
    if config.schema_file:
        provider.load_file(config.schema_file)
    result = SchemaValidator(provider).check(module, config.schema_version)

    if result.compatible:
        console.print(f"[bold green]Compatible with schema {result.schema_version}[/]")
    else:
        console.print(f"[bold red]Incompatible with schema {result.schema_version}[/]")
        for issue in result.issues:
            console.print(f"  [red]{issue}[/]")
        sys.exit(1)


def _score_mode(cfg: DictConfig) -> None:
    config = _to_project_config(cfg)

    from .schema import SchemaProvider
    from .tools.quality_scorer import QualityScorer

    provider = SchemaProvider()
    if config.schema_file:
        provider.load_file(config.schema_file)
    scorer = QualityScorer(provider.get(config.schema_version))

    if cfg.get("module_file"):
        report = scorer.score_module(_load_module(_require_file(cfg, "module_file")))
    else:
        path = _require_file(cfg, "input_file")
        candidate = Candidate(html=path.read_text(encoding="utf-8"), content_types=config.content_types)
        report = scorer.score(candidate)
    _print_report(report)


_MODE_DISPATCH: dict[str, Any] = {
    "run": _run_mode,
    "validate": _validate_mode,
    "score": _score_mode,
}


# ---------------------------------------------------------------------------
# Hydra entry point
# ---------------------------------------------------------------------------


@hydra.main(config_path="conf", config_name="config", version_base=None)
def hydra_entry(cfg: DictConfig) -> None:
    """Hydra-managed CLI entry point."""
    setup_logging(verbose=cfg.get("verbose", False), quiet=cfg.get("quiet", False))

    mode = cfg.get("mode", "run")
    handler = _MODE_DISPATCH.get(mode)
    if handler is None:
        console.print(f"[red]Unknown mode: {mode!r}. Choose from: {', '.join(_MODE_DISPATCH)}[/]")
        sys.exit(1)

    handler(cfg)


def main() -> None:
    """Package entry point (``[project.scripts]`` target)."""
    hydra_entry()  # pylint: disable=no-value-for-parameter
