"""Boolean evaluation of package dependency trees."""
from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass
from typing import Callable, Iterator, Sequence

from services.facts import EXTERNAL_DETECTION_KEY, FactSnapshot
from update_deployer.constants import IMMUTABLE_CONFIG


@dataclass(frozen=True)
class Predicate:
    key: str
    value: str


@dataclass(frozen=True)
class And:
    children: tuple["DependencyNode", ...] = ()


@dataclass(frozen=True)
class Or:
    children: tuple["DependencyNode", ...] = ()
    kind: str = "Or"


@dataclass(frozen=True)
class ExternalProbe:
    command: str
    allowed_codes: frozenset[int] = frozenset({0})


@dataclass(frozen=True)
class Not:
    """Marker that flips the verdict of the next sibling only."""


DependencyNode = Predicate | And | Or | ExternalProbe | Not

Probe = Callable[[str], int]


class ProbeExecutionError(RuntimeError):
    """The probe command could not be started at all."""


class SubprocessProbe:
    def __init__(self, *, shell: Sequence[str] | None = None, cwd: str | os.PathLike[str] | None = None) -> None:
        self._shell = tuple(shell) if shell is not None else IMMUTABLE_CONFIG.install.shell
        self._cwd = cwd

    def __call__(self, command: str) -> int:
        try:
            completed = subprocess.run(
                [*self._shell, command],
                capture_output=True,
                text=True,
                check=False,
                cwd=self._cwd,
            )
        except OSError as exc:
            raise ProbeExecutionError(f"Unable to start probe command '{command}': {exc}") from exc
        return completed.returncode


def evaluate(
    node: DependencyNode,
    facts: FactSnapshot,
    *,
    strict: bool = False,
    probe: Probe | None = None,
) -> bool:
    """Return whether ``node`` holds on the machine described by ``facts``."""

    return _reduce_or(evaluate_siblings([node], facts, strict=strict, probe=probe))


def evaluate_roots(
    roots: Sequence[DependencyNode],
    facts: FactSnapshot,
    *,
    strict: bool = False,
    probe: Probe | None = None,
) -> bool:
    """Reduce several root level siblings the same way an ``Or`` would."""

    if not roots:
        return True
    return _reduce_or(evaluate_siblings(roots, facts, strict=strict, probe=probe))


def evaluate_siblings(
    nodes: Sequence[DependencyNode],
    facts: FactSnapshot,
    *,
    strict: bool = False,
    probe: Probe | None = None,
) -> list[bool]:
    """Evaluate a sibling list, applying each ``Not`` to the next sibling only."""

    runner = probe or SubprocessProbe()
    results: list[bool] = []
    negate = False
    for node in nodes:
        if isinstance(node, Not):
            negate = not negate
            continue
        raw = _evaluate_node(node, facts, strict, runner)
        results.append(raw != negate)
        negate = False
    return results


def _evaluate_node(node: DependencyNode, facts: FactSnapshot, strict: bool, probe: Probe) -> bool:
    if isinstance(node, Predicate):
        return _evaluate_predicate(node, facts, strict, probe)
    if isinstance(node, ExternalProbe):
        return probe(node.command) in node.allowed_codes
    if isinstance(node, And):
        return all(evaluate_siblings(node.children, facts, strict=strict, probe=probe))
    if isinstance(node, Or):
        return _reduce_or(evaluate_siblings(node.children, facts, strict=strict, probe=probe))
    raise TypeError(f"Unknown dependency node: {node!r}")


def _evaluate_predicate(node: Predicate, facts: FactSnapshot, strict: bool, probe: Probe) -> bool:
    if node.key == EXTERNAL_DETECTION_KEY:
        return probe(node.value) in IMMUTABLE_CONFIG.probe_success_codes
    values = facts.get(node.key)
    if values is None:
        return not strict
    return any(value.startswith(node.value) for value in values)


def _reduce_or(results: Sequence[bool]) -> bool:
    return any(results)


def explain(
    node: DependencyNode,
    facts: FactSnapshot,
    *,
    strict: bool = False,
    probe: Probe | None = None,
) -> Iterator[str]:
    """Yield an indented trace of the verdict for every node under ``node``."""

    runner = probe or SubprocessProbe()
    yield from _explain_siblings([node], facts, strict, runner, 0)


def _explain_siblings(
    nodes: Sequence[DependencyNode],
    facts: FactSnapshot,
    strict: bool,
    probe: Probe,
    depth: int,
) -> Iterator[str]:
    indent = "  " * depth
    negate = False
    for node in nodes:
        if isinstance(node, Not):
            negate = not negate
            yield f"{indent}Not"
            continue
        raw = _evaluate_node(node, facts, strict, probe)
        suffix = f" (negated -> {raw != negate})" if negate else ""
        yield f"{indent}{_describe(node, facts)} => {raw}{suffix}"
        if isinstance(node, (And, Or)):
            yield from _explain_siblings(node.children, facts, strict, probe, depth + 1)
        negate = False


def _describe(node: DependencyNode, facts: FactSnapshot) -> str:
    if isinstance(node, Predicate):
        if node.key == EXTERNAL_DETECTION_KEY:
            return f"{node.key} `{node.value}`"
        if node.key not in facts:
            return f"{node.key}={node.value!r} [unsupported]"
        return f"{node.key}={node.value!r}"
    if isinstance(node, ExternalProbe):
        codes = ",".join(str(code) for code in sorted(node.allowed_codes))
        return f"ExternalProbe `{node.command}` rc in {{{codes}}}"
    if isinstance(node, And):
        return "And"
    if isinstance(node, Or):
        return node.kind if node.kind == "Or" else f"Or ({node.kind})"
    return repr(node)
