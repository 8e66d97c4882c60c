"""
nexus-verify — subprocess-backed verification units

File: src/nexus_verify/verification_plane/command_unit.py
Last updated: 2026-10-19

Purpose
- Let catalog entries point at an external command instead of a Python callable.

Functional requirements
- Options reach the child as JSON in ``NEXUS_VERIFY_OPTIONS``; the unit id in
  ``NEXUS_VERIFY_UNIT_ID``; for fixes the issue JSON in ``NEXUS_VERIFY_ISSUE``.
- A final stdout line holding a JSON object with ``score`` is taken as the outcome.
  Otherwise exit code 0 scores 100 and any other exit scores 0 with one high issue.
- Cancellation (task cancel or unit timeout) kills the child process.
"""

from __future__ import annotations

import asyncio
import json
import os
import time
from collections.abc import Mapping, Sequence
from contextlib import suppress
from dataclasses import dataclass
from typing import Final

from nexus_verify.domain.models import Issue, Outcome, Severity
from nexus_verify.verification_plane.units import UnitContext, thaw_options

OPTIONS_ENV_VAR: Final[str] = "NEXUS_VERIFY_OPTIONS"
UNIT_ID_ENV_VAR: Final[str] = "NEXUS_VERIFY_UNIT_ID"
ATTEMPT_ENV_VAR: Final[str] = "NEXUS_VERIFY_ATTEMPT"
ISSUE_ENV_VAR: Final[str] = "NEXUS_VERIFY_ISSUE"

_STDERR_TAIL_CHARS: Final[int] = 2000


@dataclass(frozen=True, slots=True)
class CommandResult:
    argv: tuple[str, ...]
    exit_code: int
    stdout: str
    stderr: str
    duration_ms: int


class CommandUnit:
    """Verification unit that shells out to ``argv``."""

    def __init__(
        self,
        argv: Sequence[str],
        *,
        cwd: str | None = None,
        fix_argv: Sequence[str] | None = None,
        env: Mapping[str, str] | None = None,
    ) -> None:
        if not argv:
            raise ValueError("CommandUnit.argv must not be empty")
        self.argv = tuple(argv)
        self.cwd = cwd
        self.fix_argv = tuple(fix_argv) if fix_argv else None
        self._extra_env = dict(env or {})

    def __repr__(self) -> str:
        return f"CommandUnit(argv={list(self.argv)!r}, cwd={self.cwd!r})"

    async def verify(self, context: UnitContext) -> Outcome:
        result = await self._run(self.argv, context)
        return outcome_from_command(result)

    async def fix(self, issue: Issue, context: UnitContext) -> bool:
        if self.fix_argv is None:
            raise TypeError(f"unit {context.unit_id!r} has no fix_command")
        result = await self._run(self.fix_argv, context, issue=issue)
        return result.exit_code == 0

    @property
    def supports_fix(self) -> bool:
        return self.fix_argv is not None

    async def _run(
        self,
        argv: tuple[str, ...],
        context: UnitContext,
        *,
        issue: Issue | None = None,
    ) -> CommandResult:
        started_ns = time.monotonic_ns()
        process = await asyncio.create_subprocess_exec(
            *argv,
            cwd=self.cwd,
            env=self._build_env(context, issue),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout_bytes, stderr_bytes = await process.communicate()
        except asyncio.CancelledError:
            with suppress(ProcessLookupError):
                process.kill()
            await process.communicate()
            raise

        return CommandResult(
            argv=argv,
            exit_code=process.returncode if process.returncode is not None else -1,
            stdout=_normalize_output_text(stdout_bytes),
            stderr=_normalize_output_text(stderr_bytes),
            duration_ms=max((time.monotonic_ns() - started_ns) // 1_000_000, 0),
        )

    def _build_env(self, context: UnitContext, issue: Issue | None) -> dict[str, str]:
        env = dict(os.environ)
        env.update(self._extra_env)
        env[OPTIONS_ENV_VAR] = json.dumps(
            thaw_options(context.options), sort_keys=True, separators=(",", ":"), default=str
        )
        env[UNIT_ID_ENV_VAR] = context.unit_id
        env[ATTEMPT_ENV_VAR] = str(context.attempt)
        if issue is not None:
            env[ISSUE_ENV_VAR] = issue.to_json()
        return env


def outcome_from_command(result: CommandResult) -> Outcome:
    """Interpret a finished command as an ``Outcome``."""
    reported = _parse_trailing_json(result.stdout)
    if reported is not None:
        return Outcome.from_dict(reported)

    if result.exit_code == 0:
        return Outcome(score=100)

    tail = result.stderr.strip()[-_STDERR_TAIL_CHARS:] or "(no stderr output)"
    return Outcome(
        score=0,
        issues=(
            Issue(
                severity=Severity.HIGH,
                category="execution",
                message=f"command {result.argv[0]} exited with code {result.exit_code}: {tail}",
            ),
        ),
    )


def _parse_trailing_json(stdout: str) -> dict[str, object] | None:
    lines = [line for line in stdout.splitlines() if line.strip()]
    if not lines:
        return None
    try:
        parsed = json.loads(lines[-1])
    except json.JSONDecodeError:
        return None
    if isinstance(parsed, dict) and "score" in parsed:
        return parsed
    return None


def _normalize_output_text(raw: bytes) -> str:
    text = raw.decode("utf-8", errors="replace")
    return text.replace("\r\n", "\n").replace("\r", "\n")


__all__ = [
    "ATTEMPT_ENV_VAR",
    "CommandResult",
    "CommandUnit",
    "ISSUE_ENV_VAR",
    "OPTIONS_ENV_VAR",
    "UNIT_ID_ENV_VAR",
    "outcome_from_command",
]
