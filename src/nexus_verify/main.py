"""Process entrypoint for ``nexus-verify``: runs the CLI and maps failures to exit codes."""

from __future__ import annotations

import sys
import traceback
from enum import IntEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence


class ExitCode(IntEnum):
    SUCCESS = 0
    VERIFICATION_FAILED = 1
    CONFIG_ERROR = 2
    INTERNAL_ERROR = 4


_EXIT_VALUES = frozenset(code.value for code in ExitCode)


def cli_entrypoint(argv: Sequence[str] | None = None) -> int:
    """Run the CLI; never raises, always returns one of :class:`ExitCode`."""

    try:
        from nexus_verify.ui.cli import run_cli

        return _as_exit_code(run_cli(argv))
    except SystemExit as exc:
        return _as_exit_code(exc.code)
    except BaseException as exc:  # noqa: BLE001 - last line before the interpreter exits.
        code = classify_failure(exc)
        if code is ExitCode.INTERNAL_ERROR:
            traceback.print_exception(exc, file=sys.stderr)
        else:
            _stderr(str(exc).strip() or type(exc).__name__)
        return int(code)


def classify_failure(exc: BaseException) -> ExitCode:
    """Exit code for an exception escaping the CLI, judged along its cause chain."""

    from nexus_verify.config.loader import ConfigLoadError
    from nexus_verify.config.schema import ConfigValidationError
    from nexus_verify.planning.resolver import StructuralError
    from nexus_verify.verification_plane.catalog import CatalogError
    from nexus_verify.verification_plane.orchestrator import AlreadyRunningError

    for link in _causes(exc):
        if isinstance(link, (StructuralError, AlreadyRunningError)):
            return ExitCode.VERIFICATION_FAILED
        if isinstance(link, (ConfigLoadError, ConfigValidationError, CatalogError)):
            return ExitCode.CONFIG_ERROR
        if isinstance(link, (FileNotFoundError, NotADirectoryError, PermissionError)):
            return ExitCode.CONFIG_ERROR
    return ExitCode.INTERNAL_ERROR


def _causes(exc: BaseException) -> Iterator[BaseException]:
    seen: set[int] = set()
    link: BaseException | None = exc
    while link is not None and id(link) not in seen:
        seen.add(id(link))
        yield link
        if link.__cause__ is not None:
            link = link.__cause__
        elif not link.__suppress_context__:
            link = link.__context__
        else:
            link = None


def _as_exit_code(raw: object) -> int:
    if raw is None:
        return int(ExitCode.SUCCESS)
    if isinstance(raw, int) and raw in _EXIT_VALUES:
        return raw
    if isinstance(raw, str) and raw.strip():
        _stderr(raw.strip())
    return int(ExitCode.INTERNAL_ERROR)


def _stderr(message: str) -> None:
    sys.stderr.write(message.rstrip("\n") + "\n")


__all__ = ["ExitCode", "classify_failure", "cli_entrypoint"]
