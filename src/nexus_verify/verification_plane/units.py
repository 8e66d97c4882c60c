"""
nexus-verify — unit contract and registry

File: src/nexus_verify/verification_plane/units.py
Last updated: 2026-10-19

Purpose
- Define what a verification unit is to the core: an opaque callable (or an object with
  ``verify``) taking a ``UnitContext`` and producing an ``Outcome``.
- Hold the fixed catalog of units and their ``UnitSpec`` records.

Functional requirements
- Sync units run in a worker thread so the caller can enforce a timeout; async units are
  awaited on the running loop. Callers may pass a dedicated executor for those threads.
- Every context sees a deep-frozen copy of the run options: mappings become read-only
  proxies and lists become tuples.
- Units may return an ``Outcome`` or a plain mapping with the same keys.
- Units may expose an optional ``fix(issue, context)`` hook used by auto-fix.
"""

from __future__ import annotations

import asyncio
import contextvars
import copy
import functools
import inspect
from collections.abc import Awaitable, Callable, Iterator, Mapping, Set
from concurrent.futures import Executor
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Protocol, TypeAlias, cast, runtime_checkable

from nexus_verify.domain.models import Issue, Outcome, UnitSpec
from nexus_verify.planning.resolver import DuplicateUnitError
from nexus_verify.utils.concurrency import CancellationToken

UnitReturn: TypeAlias = Outcome | Mapping[str, object]
UnitCallable: TypeAlias = Callable[["UnitContext"], UnitReturn | Awaitable[UnitReturn]]


class UnknownUnitError(KeyError):
    """Raised when a unit id is not present in the registry."""

    def __init__(self, unit_id: str, known: tuple[str, ...] = ()) -> None:
        self.unit_id = unit_id
        self.known = known
        super().__init__(unit_id)

    def __str__(self) -> str:
        if not self.known:
            return f"unknown unit {self.unit_id!r}"
        return f"unknown unit {self.unit_id!r}; registered: [{', '.join(self.known)}]"


@dataclass(frozen=True, slots=True)
class UnitContext:
    """Per-attempt invocation context handed to a unit."""

    unit_id: str
    attempt: int
    timeout_seconds: float
    options: Mapping[str, object] = field(default_factory=dict)
    cancel_token: CancellationToken | None = None

    def __post_init__(self) -> None:
        if self.attempt < 1:
            raise ValueError("UnitContext.attempt must be >= 1")
        if not isinstance(self.options, MappingProxyType):
            object.__setattr__(self, "options", freeze_options(self.options))

    @property
    def cancelled(self) -> bool:
        return self.cancel_token is not None and self.cancel_token.is_cancelled


@runtime_checkable
class VerificationUnit(Protocol):
    """Object-style unit; plain callables are accepted as well."""

    def verify(self, context: UnitContext) -> UnitReturn | Awaitable[UnitReturn]: ...


@runtime_checkable
class FixableUnit(Protocol):
    def fix(self, issue: Issue, context: UnitContext) -> bool | None | Awaitable[bool | None]: ...


Unit: TypeAlias = VerificationUnit | UnitCallable


@dataclass(frozen=True, slots=True)
class UnitRegistration:
    spec: UnitSpec
    unit: Unit

    @property
    def unit_id(self) -> str:
        return self.spec.unit_id

    @property
    def supports_fix(self) -> bool:
        declared = getattr(self.unit, "supports_fix", None)
        if isinstance(declared, bool):
            return declared
        return callable(getattr(self.unit, "fix", None))


class UnitRegistry:
    """Insertion-ordered catalog of units keyed by ``UnitSpec.unit_id``."""

    def __init__(self, registrations: Mapping[str, UnitRegistration] | None = None) -> None:
        self._registrations: dict[str, UnitRegistration] = dict(registrations or {})

    def register(self, spec: UnitSpec, unit: Unit) -> UnitRegistration:
        if not isinstance(spec, UnitSpec):
            raise TypeError(f"spec must be a UnitSpec, got {type(spec).__name__}")
        if not (callable(unit) or isinstance(unit, VerificationUnit)):
            raise TypeError(f"unit {spec.unit_id!r} must be callable or define verify()")
        if spec.unit_id in self._registrations:
            raise DuplicateUnitError(spec.unit_id)

        registration = UnitRegistration(spec=spec, unit=unit)
        self._registrations[spec.unit_id] = registration
        return registration

    def unit(self, spec: UnitSpec) -> Callable[[UnitCallable], UnitCallable]:
        """Decorator form of :meth:`register` for plain functions."""

        def decorator(func: UnitCallable) -> UnitCallable:
            self.register(spec, func)
            return func

        return decorator

    def get(self, unit_id: str) -> UnitRegistration:
        registration = self._registrations.get(unit_id)
        if registration is None:
            raise UnknownUnitError(unit_id, self.unit_ids())
        return registration

    def contains(self, unit_id: str) -> bool:
        return unit_id in self._registrations

    def unit_ids(self) -> tuple[str, ...]:
        return tuple(sorted(self._registrations))

    def specs(self) -> tuple[UnitSpec, ...]:
        return tuple(item.spec for item in self._registrations.values())

    def snapshot(self) -> UnitRegistry:
        """Return a copy that later ``register`` calls on ``self`` do not affect."""
        return UnitRegistry(self._registrations)

    def __contains__(self, unit_id: object) -> bool:
        return isinstance(unit_id, str) and unit_id in self._registrations

    def __len__(self) -> int:
        return len(self._registrations)

    def __iter__(self) -> Iterator[UnitRegistration]:
        return iter(tuple(self._registrations.values()))


async def invoke_unit(
    unit: Unit, context: UnitContext, *, executor: Executor | None = None
) -> Outcome:
    """Call ``unit`` once and coerce its return value into an ``Outcome``.

    Sync units run on ``executor`` when given, else on the loop's default thread pool.
    """
    target = _resolve_target(unit, "verify")
    if _is_async_callable(target):
        result = await target(context)
    else:
        result = await _in_thread(executor, target, context)
        if inspect.isawaitable(result):
            result = await result
    return coerce_outcome(result)


async def invoke_fix(unit: Unit, issue: Issue, context: UnitContext) -> bool:
    """Call a unit's ``fix`` hook; ``None`` counts as fixed, ``False`` as not fixed."""
    hook = getattr(unit, "fix", None)
    if not callable(hook):
        raise TypeError(f"unit {context.unit_id!r} does not provide a fix hook")
    if _is_async_callable(hook):
        result = await hook(issue, context)
    else:
        result = await asyncio.to_thread(hook, issue, context)
        if inspect.isawaitable(result):
            result = await result
    return result is None or bool(result)


def freeze_options(options: Mapping[str, object] | None) -> Mapping[str, object]:
    """Deep copy of ``options`` that no unit can mutate, nested values included."""
    return cast("Mapping[str, object]", _freeze(copy.deepcopy(dict(options or {}))))


def thaw_options(value: object) -> Any:
    """Plain ``dict``/``list`` form of frozen options, for JSON encoding."""
    if isinstance(value, Mapping):
        return {key: thaw_options(item) for key, item in value.items()}
    if isinstance(value, (tuple, list)):
        return [thaw_options(item) for item in value]
    if isinstance(value, Set):
        return sorted((thaw_options(item) for item in value), key=repr)
    return value


def coerce_outcome(value: object) -> Outcome:
    if isinstance(value, Outcome):
        return value
    if isinstance(value, Mapping):
        return Outcome.from_dict(value)
    raise TypeError(f"unit returned {type(value).__name__}; expected Outcome or mapping")


async def _in_thread(
    executor: Executor | None, func: Callable[..., object], *args: object
) -> object:
    if executor is None:
        return await asyncio.to_thread(func, *args)
    call = functools.partial(contextvars.copy_context().run, func, *args)
    return await asyncio.get_running_loop().run_in_executor(executor, call)


def _freeze(value: object) -> object:
    if isinstance(value, Mapping):
        return MappingProxyType({key: _freeze(item) for key, item in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(item) for item in value)
    if isinstance(value, Set):
        return frozenset(_freeze(item) for item in value)
    return value


def _resolve_target(unit: Unit, method: str) -> Callable[..., object]:
    bound = getattr(unit, method, None)
    if callable(bound):
        return bound
    if callable(unit):
        return unit
    raise TypeError(f"unit object {type(unit).__name__} is not callable and has no {method}()")


def _is_async_callable(target: object) -> bool:
    if inspect.iscoroutinefunction(target):
        return True
    call = getattr(target, "__call__", None)  # noqa: B004
    return inspect.iscoroutinefunction(call)


__all__ = [
    "FixableUnit",
    "Unit",
    "UnitCallable",
    "UnitContext",
    "UnitRegistration",
    "UnitRegistry",
    "UnitReturn",
    "UnknownUnitError",
    "VerificationUnit",
    "coerce_outcome",
    "freeze_options",
    "invoke_fix",
    "invoke_unit",
    "thaw_options",
]
