"""Executes confirmed cleanup actions."""

import os
import shutil
from collections.abc import Iterable
from pathlib import Path

import psutil

from tidytop.findings import FindingSet
from tidytop.logging_setup import logger
from tidytop.models import CleanupAction, CleanupResult, ErrorKind, Operation
from tidytop.runtime import (
    ContainerRuntime,
    ImageNotFound,
    RuntimeCommandError,
    RuntimeUnavailable,
)


class CleanupExecutor:
    """
    Carries out one CleanupAction and reports a CleanupResult.

    The target is re-checked before anything destructive happens, so an
    action planned against a resource that has since vanished fails with
    RESOURCE_GONE. Whatever the outcome, the finding is invalidated in the
    shared FindingSet so it cannot be acted on again before a re-scan.
    """

    def __init__(
        self,
        findings: FindingSet,
        runtime: ContainerRuntime,
        dependency_dir_names: Iterable[str],
    ) -> None:
        self._findings = findings
        self._runtime = runtime
        self._dependency_names = frozenset(dependency_dir_names)

    def execute(self, action: CleanupAction) -> CleanupResult:
        logger.info(f"Executing: {action.describe()}")
        try:
            result = self._dispatch(action)
        except Exception as e:
            logger.exception(f"Cleanup failed unexpectedly: {action.describe()}")
            result = CleanupResult.failed(action, ErrorKind.OPERATION_FAILED, str(e))
        finally:
            self._findings.invalidate(action.finding)

        if result.success:
            logger.info(f"Cleanup succeeded: {action.describe()} ({result.bytes_reclaimed} bytes)")
        else:
            logger.warning(f"Cleanup failed: {action.describe()}: {result.reason}")
        return result

    def _dispatch(self, action: CleanupAction) -> CleanupResult:
        if action.operation is Operation.DELETE:
            return self._delete(action)
        if action.operation is Operation.CLEAR_CACHE:
            return self._clear_cache(action)
        if action.operation is Operation.PRUNE:
            return self._prune(action)
        if action.operation is Operation.TERMINATE:
            return self._terminate(action)
        return CleanupResult.failed(
            action, ErrorKind.UNRECOGNIZED_FINDING_KIND, f"unknown operation {action.operation!r}"
        )

    def _checked_directory(self, action: CleanupAction) -> Path | CleanupResult:
        path = Path(action.finding.target)
        if not path.exists() and not path.is_symlink():
            return CleanupResult.failed(action, ErrorKind.RESOURCE_GONE, f"{path} no longer exists")
        if path.is_symlink() or not path.is_dir():
            return CleanupResult.failed(
                action, ErrorKind.RESOURCE_GONE, f"{path} is no longer a directory"
            )
        return path

    def _delete(self, action: CleanupAction) -> CleanupResult:
        checked = self._checked_directory(action)
        if isinstance(checked, CleanupResult):
            return checked
        if checked.name not in self._dependency_names:
            return CleanupResult.failed(
                action, ErrorKind.RESOURCE_GONE, f"{checked} is not a dependency directory"
            )

        try:
            shutil.rmtree(checked)
        except FileNotFoundError:
            return CleanupResult.failed(action, ErrorKind.RESOURCE_GONE, f"{checked} no longer exists")
        except OSError as e:
            return CleanupResult.failed(action, ErrorKind.OPERATION_FAILED, str(e))

        return CleanupResult(action=action, success=True, bytes_reclaimed=action.finding.size or 0)

    def _clear_cache(self, action: CleanupAction) -> CleanupResult:
        checked = self._checked_directory(action)
        if isinstance(checked, CleanupResult):
            return checked

        errors: list[str] = []
        try:
            with os.scandir(checked) as it:
                entries = list(it)
        except FileNotFoundError:
            return CleanupResult.failed(action, ErrorKind.RESOURCE_GONE, f"{checked} no longer exists")
        except OSError as e:
            return CleanupResult.failed(action, ErrorKind.OPERATION_FAILED, str(e))
        for entry in entries:
            try:
                if entry.is_dir(follow_symlinks=False):
                    shutil.rmtree(entry.path)
                else:
                    os.unlink(entry.path)
            except FileNotFoundError:
                continue
            except OSError as e:
                errors.append(f"{entry.name}: {e.strerror or e}")

        if errors:
            return CleanupResult.failed(
                action,
                ErrorKind.OPERATION_FAILED,
                f"{len(errors)} entries could not be removed ({errors[0]})",
            )
        return CleanupResult(action=action, success=True, bytes_reclaimed=action.finding.size or 0)

    def _prune(self, action: CleanupAction) -> CleanupResult:
        image_id = str(action.finding.target)
        try:
            self._runtime.remove_image(image_id)
        except ImageNotFound:
            return CleanupResult.failed(action, ErrorKind.RESOURCE_GONE, f"image {image_id} is gone")
        except RuntimeUnavailable as e:
            return CleanupResult.failed(action, ErrorKind.EXTERNAL_TOOL_UNAVAILABLE, str(e))
        except RuntimeCommandError as e:
            return CleanupResult.failed(action, ErrorKind.OPERATION_FAILED, str(e))
        return CleanupResult(action=action, success=True, bytes_reclaimed=action.finding.size or 0)

    def _terminate(self, action: CleanupAction) -> CleanupResult:
        pid = int(action.finding.target)
        gone = CleanupResult.failed(action, ErrorKind.RESOURCE_GONE, "process already gone")
        try:
            proc = psutil.Process(pid)
            # A recycled pid belongs to a different program
            if action.finding.label and proc.name() != action.finding.label:
                return gone
            proc.send_signal(action.signal)
        except (psutil.NoSuchProcess, psutil.ZombieProcess):
            return gone
        except psutil.AccessDenied:
            return CleanupResult.failed(action, ErrorKind.OPERATION_FAILED, "permission denied")
        return CleanupResult(action=action, success=True, reason="process terminated")
