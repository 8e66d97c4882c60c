"""
nexus-verify — unit tests for subprocess-backed units

File: tests/unit/verification_plane/test_command_unit.py
Last updated: 2026-10-19

Purpose
- Validate how command exit codes and stdout become outcomes, and that timeouts kill children.

Functional requirements
- Uses the running interpreter as the child command; no shell involved.
"""

from __future__ import annotations

import sys
import time
from pathlib import Path

import pytest

from nexus_verify.domain.models import Issue, Severity
from nexus_verify.utils.concurrency import run_with_timeout
from nexus_verify.verification_plane.command_unit import (
    CommandResult,
    CommandUnit,
    outcome_from_command,
)
from nexus_verify.verification_plane.units import UnitContext, invoke_fix, invoke_unit

pytestmark = pytest.mark.slow


def _python(script: str) -> list[str]:
    return [sys.executable, "-c", script]


def _context(unit_id: str = "cmd", **options: object) -> UnitContext:
    return UnitContext(unit_id=unit_id, attempt=1, timeout_seconds=10.0, options=options)


def _result(exit_code: int, stdout: str = "", stderr: str = "") -> CommandResult:
    return CommandResult(
        argv=("checker", "--all"),
        exit_code=exit_code,
        stdout=stdout,
        stderr=stderr,
        duration_ms=5,
    )


def test_trailing_json_line_is_the_outcome() -> None:
    stdout = 'scanning...\n{"score": 72.5, "issues": [{"severity": "low", "message": "x"}]}\n'

    outcome = outcome_from_command(_result(1, stdout))

    assert outcome.score == 73
    assert [issue.severity for issue in outcome.issues] == [Severity.LOW]


def test_exit_code_decides_when_no_outcome_is_printed() -> None:
    assert outcome_from_command(_result(0, "all good\n")).score == 100
    assert outcome_from_command(_result(0, '{"status": "ok"}\n')).score == 100

    failed = outcome_from_command(_result(3, "", "line one\nboom\n"))

    assert failed.score == 0
    [issue] = failed.issues
    assert issue.severity is Severity.HIGH
    assert issue.category == "execution"
    assert issue.message == "command checker exited with code 3: line one\nboom"


def test_missing_stderr_is_called_out() -> None:
    [issue] = outcome_from_command(_result(2)).issues

    assert issue.message == "command checker exited with code 2: (no stderr output)"


def test_empty_argv_is_rejected() -> None:
    with pytest.raises(ValueError):
        CommandUnit([])


async def test_command_receives_options_and_unit_id() -> None:
    script = (
        "import json, os\n"
        "options = json.loads(os.environ['NEXUS_VERIFY_OPTIONS'])\n"
        "score = options['target'] if os.environ['NEXUS_VERIFY_UNIT_ID'] == 'typecheck' else 0\n"
        "print(json.dumps({'score': score, 'recommendations': ['attempt '"
        " + os.environ['NEXUS_VERIFY_ATTEMPT']]}))\n"
    )
    unit = CommandUnit(_python(script))

    outcome = await invoke_unit(unit, _context("typecheck", target=64))

    assert outcome.score == 64
    assert outcome.recommendations == ("attempt 1",)


async def test_nested_options_reach_the_command_as_plain_json() -> None:
    script = (
        "import json, os\n"
        "options = json.loads(os.environ['NEXUS_VERIFY_OPTIONS'])\n"
        "ok = options['paths'] == ['a', 'b']\n"
        "print(json.dumps({'score': options['limits']['target'] if ok else 0}))\n"
    )
    unit = CommandUnit(_python(script))

    outcome = await invoke_unit(unit, _context(limits={"target": 58}, paths=["a", "b"]))

    assert outcome.score == 58


async def test_command_runs_in_configured_cwd(tmp_path: Path) -> None:
    (tmp_path / "marker.txt").write_text("x", encoding="utf-8")
    script = "import os, sys\nsys.exit(0 if os.path.exists('marker.txt') else 4)\n"

    inside = await CommandUnit(_python(script), cwd=str(tmp_path)).verify(_context())

    assert inside.score == 100


async def test_failing_command_reports_stderr_tail() -> None:
    script = "import sys\nsys.stderr.write('lint failed\\n')\nsys.exit(5)\n"

    outcome = await CommandUnit(_python(script)).verify(_context())

    assert outcome.score == 0
    assert outcome.issues[0].message.endswith("exited with code 5: lint failed")


async def test_timeout_kills_the_child_process() -> None:
    unit = CommandUnit(_python("import time\ntime.sleep(30)\n"))

    started = time.perf_counter()
    with pytest.raises(TimeoutError):
        await run_with_timeout(unit.verify(_context()), 0.3)

    assert time.perf_counter() - started < 10


async def test_fix_command_receives_the_issue() -> None:
    script = (
        "import json, os, sys\n"
        "issue = json.loads(os.environ['NEXUS_VERIFY_ISSUE'])\n"
        "sys.exit(0 if issue['message'] == 'stale fixture' else 1)\n"
    )
    unit = CommandUnit(_python("print('unused')"), fix_argv=_python(script))
    good = Issue(severity=Severity.MEDIUM, message="stale fixture", auto_fixable=True)
    other = Issue(severity=Severity.MEDIUM, message="other", auto_fixable=True)

    assert unit.supports_fix
    assert await invoke_fix(unit, good, _context()) is True
    assert await invoke_fix(unit, other, _context()) is False


async def test_fix_without_fix_command_is_a_type_error() -> None:
    unit = CommandUnit(_python("print('ok')"))
    issue = Issue(severity=Severity.LOW, message="x", auto_fixable=True)

    assert not unit.supports_fix
    with pytest.raises(TypeError, match="no fix_command"):
        await unit.fix(issue, _context())
