"""Verification plane: unit registry, wave executor, aggregation and the orchestrator facade."""

from nexus_verify.verification_plane.aggregator import (
    aggregate,
    overall_score,
    report_status,
    summarize,
)
from nexus_verify.verification_plane.catalog import (
    CatalogEntry,
    CatalogError,
    build_registry,
    import_entrypoint,
    load_catalog,
    load_registry,
    parse_catalog,
)
from nexus_verify.verification_plane.command_unit import CommandUnit, outcome_from_command
from nexus_verify.verification_plane.executor import (
    ProgressCallbacks,
    SchedulerPolicy,
    WaveExecutor,
)
from nexus_verify.verification_plane.orchestrator import (
    AlreadyRunningError,
    Fixer,
    NoReportError,
    VerificationOrchestrator,
    policy_from_config,
)
from nexus_verify.verification_plane.report_store import (
    ReportStore,
    ReportStoreError,
    write_report,
)
from nexus_verify.verification_plane.units import (
    FixableUnit,
    Unit,
    UnitContext,
    UnitRegistration,
    UnitRegistry,
    UnknownUnitError,
    VerificationUnit,
    coerce_outcome,
    freeze_options,
    invoke_unit,
)

__all__ = [
    "AlreadyRunningError",
    "CatalogEntry",
    "CatalogError",
    "CommandUnit",
    "FixableUnit",
    "Fixer",
    "NoReportError",
    "ProgressCallbacks",
    "ReportStore",
    "ReportStoreError",
    "SchedulerPolicy",
    "Unit",
    "UnitContext",
    "UnitRegistration",
    "UnitRegistry",
    "UnknownUnitError",
    "VerificationOrchestrator",
    "VerificationUnit",
    "WaveExecutor",
    "aggregate",
    "build_registry",
    "coerce_outcome",
    "freeze_options",
    "import_entrypoint",
    "invoke_unit",
    "load_catalog",
    "load_registry",
    "outcome_from_command",
    "overall_score",
    "parse_catalog",
    "policy_from_config",
    "report_status",
    "summarize",
    "write_report",
]
