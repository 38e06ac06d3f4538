"""Turns a selected finding into a reviewable cleanup action."""

import signal

from tidytop.models import CleanupAction, Finding, FindingKind, Operation

# Forceful termination; Windows has no SIGKILL
KILL_SIGNAL = getattr(signal, "SIGKILL", signal.SIGTERM)


class UnrecognizedFindingKind(ValueError):
    """The finding's kind has no cleanup operation."""


def plan(finding: Finding) -> CleanupAction:
    """
    Map a finding to its cleanup action without executing anything.

    Raises:
        UnrecognizedFindingKind: if the kind has no operation.
    """
    match finding.kind:
        case FindingKind.DEPENDENCY_DIR:
            return CleanupAction(finding=finding, operation=Operation.DELETE)
        case FindingKind.PACKAGE_CACHE:
            return CleanupAction(finding=finding, operation=Operation.CLEAR_CACHE)
        case FindingKind.CONTAINER_IMAGE:
            return CleanupAction(finding=finding, operation=Operation.PRUNE)
        case FindingKind.HEAVY_PROCESS:
            return CleanupAction(finding=finding, operation=Operation.TERMINATE, signal=KILL_SIGNAL)
        case _:
            raise UnrecognizedFindingKind(f"no cleanup operation for {finding.kind!r}")
