"""Command-line interface router for nexus-verify."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from nexus_verify.config import (
    ConfigLoadError,
    ConfigValidationError,
    DEFAULT_CONFIG_FILE,
    load_config,
)
from nexus_verify.domain.ids import generate_run_id
from nexus_verify.domain.models import (
    AutoFixSummary,
    ReportStatus,
    RunResult,
    UnitStatus,
    VerificationReport,
)
from nexus_verify.observability import setup_logging, shutdown_logging
from nexus_verify.planning import StructuralError
from nexus_verify.ui.render import (
    CLIRenderer,
    create_renderer,
    render_auto_fix,
    render_report,
    render_result,
    render_units,
)
from nexus_verify.verification_plane import (
    CatalogError,
    ProgressCallbacks,
    ReportStore,
    ReportStoreError,
    UnitRegistry,
    UnknownUnitError,
    VerificationOrchestrator,
    load_registry,
    write_report,
)


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Usage or environment problem reported on stderr with ``exit_code``."""

    message: str
    exit_code: int = 1

    def __str__(self) -> str:
        return self.message


# parser


def build_parser() -> argparse.ArgumentParser:
    """Parser for ``run``, ``status`` and ``list-units``; each subcommand sets ``handler``."""

    parser = argparse.ArgumentParser(
        prog="nexus-verify",
        description=(
            "nexus-verify — dependency-aware verification unit orchestrator.\n\n"
            "Common workflows:\n"
            "  nexus-verify run full --parallel     Run every unit, wave by wave\n"
            "  nexus-verify run component <id>      Run one unit, ignoring dependencies\n"
            "  nexus-verify list-units --waves      Show the catalog and its waves\n"
            "  nexus-verify status                  Show the latest stored report\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--repo-root",
        default=".",
        help="Repository root directory (default: current working directory).",
    )
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help=f"Path to TOML config (default: <repo-root>/{DEFAULT_CONFIG_FILE} if present).",
    )
    common.add_argument(
        "--profile",
        default=None,
        help="Optional config profile overlay name (strict, permissive, ci, ...).",
    )
    common.add_argument(
        "--catalog",
        default=None,
        help="Unit catalog YAML path (overrides paths.unit_catalog).",
    )
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=False,
        help="Show detailed output.",
    )
    common.add_argument(
        "--no-color",
        action="store_true",
        default=False,
        help="Disable colored output (also respects NO_COLOR env var).",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # run
    run_parser = subparsers.add_parser(
        "run",
        help="Execute verification units",
        description=(
            "Run the whole catalog or a single unit.\n\n"
            "Examples:\n"
            "  nexus-verify run full\n"
            "  nexus-verify run full --parallel --auto-fix --output report.json\n"
            "  nexus-verify run component schema-validator\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    run_subparsers = run_parser.add_subparsers(dest="run_target", required=True)

    full_parser = run_subparsers.add_parser(
        "full",
        parents=[common],
        help="Run every unit in dependency order",
    )
    full_parser.add_argument(
        "--parallel",
        "-p",
        action="store_true",
        default=False,
        help="Run units of a wave concurrently (bounded by scheduler.max_concurrency).",
    )
    full_parser.add_argument(
        "--auto-fix",
        "-f",
        action="store_true",
        default=False,
        help="Apply unit fix hooks to auto-fixable issues after the run.",
    )
    full_parser.add_argument(
        "--output",
        "-o",
        default=None,
        help="Also write the report JSON to this path.",
    )
    _add_option_argument(full_parser)
    full_parser.add_argument("--json", action="store_true", help="Emit deterministic JSON output")
    full_parser.set_defaults(handler=_cmd_run_full)

    component_parser = run_subparsers.add_parser(
        "component",
        parents=[common],
        help="Run a single unit, ignoring its dependencies",
    )
    component_parser.add_argument("unit_id", help="Unit id from the catalog")
    _add_option_argument(component_parser)
    component_parser.add_argument(
        "--json", action="store_true", help="Emit deterministic JSON output"
    )
    component_parser.set_defaults(handler=_cmd_run_component)

    # list-units
    list_parser = subparsers.add_parser(
        "list-units",
        parents=[common],
        help="List catalog units",
    )
    list_parser.add_argument(
        "--waves", action="store_true", help="Resolve and print dependency waves"
    )
    list_parser.add_argument("--json", action="store_true", help="Emit deterministic JSON output")
    list_parser.set_defaults(handler=_cmd_list_units)

    # status
    status_parser = subparsers.add_parser(
        "status",
        parents=[common],
        help="Show the latest stored verification report",
    )
    status_parser.add_argument("--json", action="store_true", help="Emit deterministic JSON output")
    status_parser.set_defaults(handler=_cmd_status)

    return parser


def _add_option_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--option",
        dest="options",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Run option passed to every unit; VALUE is parsed as JSON when possible.",
    )


# entrypoints


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Dispatch ``argv`` to its subcommand and return the exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


# command handlers


def _cmd_run_full(args: argparse.Namespace) -> int:
    repo_root = _repo_root(args)
    config = _load_effective_config(args, repo_root)
    registry = _load_units(config)
    options = _run_options(args, parallel=_flag(args, "parallel"), auto_fix=_flag(args, "auto_fix"))
    renderer = _get_renderer(args)

    run_id = generate_run_id()
    handle = setup_logging(config.get("observability"), run_id=run_id)
    try:
        orchestrator = VerificationOrchestrator.from_config(
            registry,
            config,
            parallel=True if _flag(args, "parallel") else None,
        )
        verbose = renderer.verbose and not _flag(args, "json")
        progress = _progress_for(renderer) if verbose else None
        auto_fix = _flag(args, "auto_fix")
        try:
            report, fix_summary = asyncio.run(
                _run_full(orchestrator, options, progress=progress, auto_fix=auto_fix)
            )
        except StructuralError as exc:
            raise CLIError(str(exc), exit_code=1) from exc
    finally:
        shutdown_logging(handle)

    output_arg = _optional_str(getattr(args, "output", None))
    output_path = write_report(report, _resolve_path(output_arg, repo_root)) if output_arg else None
    exit_code = 0 if report.status is ReportStatus.PASS else 1

    if _flag(args, "json"):
        _emit_json(
            {
                "command": "run full",
                "run_id": run_id,
                "report": report.to_dict(),
                "auto_fix": fix_summary.to_dict() if fix_summary is not None else None,
                "output": output_path.as_posix() if output_path is not None else None,
                "log_path": handle.log_path.as_posix(),
            }
        )
        return exit_code

    render_report(renderer, report)
    if fix_summary is not None:
        render_auto_fix(renderer, fix_summary)
    if output_path is not None:
        renderer.kv("Report written to", output_path.as_posix())
    renderer.next_steps(["nexus-verify status", "nexus-verify list-units --waves"])
    return exit_code


async def _run_full(
    orchestrator: VerificationOrchestrator,
    options: Mapping[str, object],
    *,
    progress: ProgressCallbacks | None,
    auto_fix: bool,
) -> tuple[VerificationReport, AutoFixSummary | None]:
    report = await orchestrator.run_all(options, progress=progress)
    if not auto_fix:
        return report, None
    return report, await orchestrator.auto_fix_issues(report=report)


def _cmd_run_component(args: argparse.Namespace) -> int:
    repo_root = _repo_root(args)
    config = _load_effective_config(args, repo_root)
    registry = _load_units(config)
    unit_id = _require_str(getattr(args, "unit_id", None), "unit_id")
    options = _run_options(args, parallel=False, auto_fix=False)

    handle = setup_logging(config.get("observability"), run_id=generate_run_id())
    try:
        orchestrator = VerificationOrchestrator.from_config(registry, config, persist=False)
        try:
            result = asyncio.run(orchestrator.verify_one(unit_id, options))
        except UnknownUnitError as exc:
            raise CLIError(str(exc), exit_code=1) from exc
    finally:
        shutdown_logging(handle)

    exit_code = 0 if result.status is UnitStatus.SUCCESS else 1
    if _flag(args, "json"):
        _emit_json({"command": "run component", "result": result.to_dict()})
        return exit_code

    render_result(_get_renderer(args), result)
    return exit_code


def _cmd_list_units(args: argparse.Namespace) -> int:
    repo_root = _repo_root(args)
    config = _load_effective_config(args, repo_root)
    registry = _load_units(config)
    orchestrator = VerificationOrchestrator.from_config(registry, config, persist=False)

    specs = orchestrator.list_units()
    waves = None
    if _flag(args, "waves"):
        try:
            waves = orchestrator.plan()
        except StructuralError as exc:
            raise CLIError(str(exc), exit_code=1) from exc

    if _flag(args, "json"):
        payload: dict[str, object] = {
            "command": "list-units",
            "units": [spec.to_dict() for spec in specs],
        }
        if waves is not None:
            payload["waves"] = [[spec.unit_id for spec in wave] for wave in waves]
        _emit_json(payload)
        return 0

    render_units(_get_renderer(args), specs, waves)
    return 0


def _cmd_status(args: argparse.Namespace) -> int:
    repo_root = _repo_root(args)
    config = _load_effective_config(args, repo_root)
    store = ReportStore(_path_from_config(config, ("paths", "state_dir"), repo_root))

    try:
        report = store.load_latest()
    except ReportStoreError as exc:
        raise CLIError(str(exc), exit_code=2) from exc

    if _flag(args, "json"):
        _emit_json(
            {
                "command": "status",
                "report": report.to_dict() if report is not None else None,
                "state_dir": store.state_dir.as_posix(),
            }
        )
        return 0

    renderer = _get_renderer(args)
    if report is None:
        renderer.text(f"No verification reports found in {store.state_dir.as_posix()}")
        renderer.next_steps(["nexus-verify run full"])
        return 0

    render_report(renderer, report)
    return 0


# rendering helpers


def _emit_json(payload: Mapping[str, object]) -> None:
    """One compact, key-sorted JSON document per invocation."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(no_color=_flag(args, "no_color"), verbose=_flag(args, "verbose"))


def _progress_for(renderer: CLIRenderer) -> ProgressCallbacks:
    def on_wave_start(wave_index: int, unit_ids: tuple[str, ...]) -> None:
        renderer.text(f"wave {wave_index}: {', '.join(unit_ids)}")

    def on_unit_done(result: RunResult) -> None:
        renderer.text(f"  {result.unit_id}: {renderer.status(result.status.value)}")

    return ProgressCallbacks(on_wave_start=on_wave_start, on_unit_done=on_unit_done)


# config, paths and option helpers


def _repo_root(args: argparse.Namespace) -> Path:
    raw = _require_str(getattr(args, "repo_root", None), "repo_root")
    candidate = Path(raw).expanduser().resolve()
    if not candidate.exists() or not candidate.is_dir():
        raise CLIError(f"repo root is not a directory: {candidate}", exit_code=2)
    return candidate


def _load_effective_config(args: argparse.Namespace, repo_root: Path) -> dict[str, Any]:
    config_path = _optional_str(getattr(args, "config_path", None))
    profile = _optional_str(getattr(args, "profile", None))
    overrides: dict[str, object] = {}

    catalog = _optional_str(getattr(args, "catalog", None))
    if catalog is not None:
        overrides["paths.unit_catalog"] = _resolve_path(catalog, Path.cwd()).as_posix()
    if _flag(args, "verbose"):
        overrides["observability.log_level"] = "DEBUG"

    try:
        return load_config(
            _resolve_path(config_path, Path.cwd()) if config_path is not None else None,
            profile=profile,
            cli_overrides=overrides,
            search_dir=repo_root,
        )
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=2) from exc


def _load_units(config: Mapping[str, Any]) -> UnitRegistry:
    scheduler = config.get("scheduler", {})
    catalog_path = _require_str(config.get("paths", {}).get("unit_catalog"), "paths.unit_catalog")
    try:
        return load_registry(
            catalog_path,
            default_timeout_seconds=float(scheduler.get("default_timeout_seconds", 30.0)),
            default_max_retries=int(scheduler.get("default_max_retries", 2)),
        )
    except CatalogError as exc:
        raise CLIError(str(exc), exit_code=2) from exc


def _run_options(args: argparse.Namespace, *, parallel: bool, auto_fix: bool) -> dict[str, object]:
    options: dict[str, object] = {"parallel": parallel, "auto_fix": auto_fix}
    raw_options = getattr(args, "options", None) or []
    for raw in raw_options:
        key, separator, value = str(raw).partition("=")
        key = key.strip()
        if not separator or not key:
            raise CLIError(f"invalid --option {raw!r}; expected KEY=VALUE", exit_code=2)
        options[key] = _parse_option_value(value)
    return options


def _parse_option_value(raw: str) -> object:
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def _path_from_config(config: Mapping[str, Any], path: Sequence[str], repo_root: Path) -> Path:
    cursor: object = config
    for part in path:
        if not isinstance(cursor, Mapping):
            cursor = None
            break
        cursor = cursor.get(part)
    if not isinstance(cursor, str) or not cursor.strip():
        raise CLIError(f"config value {'.'.join(path)} must be a non-empty path", exit_code=2)
    return _resolve_path(cursor, repo_root)


def _resolve_path(path_arg: str, base: Path) -> Path:
    candidate = Path(path_arg).expanduser()
    return candidate.resolve() if candidate.is_absolute() else (base / candidate).resolve()


def _require_str(value: object, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise CLIError(f"{name} must be a non-empty string", exit_code=2)
    return value.strip()


def _optional_str(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _flag(args: argparse.Namespace, name: str) -> bool:
    return bool(getattr(args, name, False))


__all__ = ["CLIError", "build_parser", "run_cli"]
