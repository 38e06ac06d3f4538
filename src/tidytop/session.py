"""Session state machine that drives tidytop from input events and ticks."""

from dataclasses import dataclass, field
from enum import Enum
from queue import Empty, Queue
from typing import Union

from tidytop.background import SingleFlight
from tidytop.config import Config
from tidytop.executor import CleanupExecutor
from tidytop.findings import FindingSet
from tidytop.logging_setup import logger
from tidytop.models import (
    CategoryStatus,
    CleanupAction,
    CleanupResult,
    ErrorKind,
    Finding,
    FindingKind,
    ProcessSample,
    ResourceSnapshot,
    ScanReport,
)
from tidytop.monitor import MetricSampler
from tidytop.planner import UnrecognizedFindingKind, plan
from tidytop.ranker import rank
from tidytop.runtime import ContainerRuntime
from tidytop.scanner import IssueScanner


class State(Enum):
    """Views of the session."""

    MONITORING = "monitoring"
    ISSUE_LIST = "issue_list"
    ACTION_CONFIRM = "action_confirm"
    EXECUTING = "executing"
    QUIT = "quit"


@dataclass(slots=True, frozen=True)
class Navigate:
    delta: int


@dataclass(slots=True, frozen=True)
class Select:
    pass


@dataclass(slots=True, frozen=True)
class Confirm:
    pass


@dataclass(slots=True, frozen=True)
class Cancel:
    pass


@dataclass(slots=True, frozen=True)
class Quit:
    pass


@dataclass(slots=True, frozen=True)
class RequestScan:
    pass


@dataclass(slots=True, frozen=True)
class Tick:
    snapshot: ResourceSnapshot


@dataclass(slots=True, frozen=True)
class ScanCompleted:
    report: ScanReport


@dataclass(slots=True, frozen=True)
class ExecutionCompleted:
    result: CleanupResult


Event = Union[
    Navigate, Select, Confirm, Cancel, Quit, RequestScan, Tick, ScanCompleted, ExecutionCompleted
]


@dataclass(slots=True, frozen=True)
class SessionView:
    """Read-only view model consumed by the renderer."""

    state: State
    snapshot: ResourceSnapshot | None = None
    top_processes: tuple[ProcessSample, ...] = ()
    findings: tuple[Finding, ...] = ()
    stale: frozenset[tuple[str, str]] = frozenset()
    statuses: dict[FindingKind, CategoryStatus] = field(default_factory=dict)
    scanned: bool = False
    cursor: int = 0
    pending_action: CleanupAction | None = None
    last_result: CleanupResult | None = None
    scanning: bool = False
    executing: bool = False
    message: str = ""

    @property
    def selected(self) -> Finding | None:
        if 0 <= self.cursor < len(self.findings):
            return self.findings[self.cursor]
        return None

    def is_stale(self, finding: Finding) -> bool:
        return finding.key in self.stale


def _failed_scan() -> ScanReport:
    return ScanReport(findings=(), statuses={kind: CategoryStatus.FAILED for kind in FindingKind})


class SessionController:
    """
    Owns the session state and orchestrates sampling, scanning and cleanup.

    Input events and ticks go through ``handle``. Scans and cleanups run on
    background threads and post ScanCompleted / ExecutionCompleted to the
    inbox, which ``pump`` drains on the caller's thread.
    """

    def __init__(
        self,
        scanner: IssueScanner,
        executor: CleanupExecutor,
        findings: FindingSet,
        sampler: MetricSampler | None = None,
        process_limit: int = 10,
    ) -> None:
        self._scanner = scanner
        self._executor = executor
        self._findings = findings
        self._sampler = sampler
        self._process_limit = process_limit

        self._inbox: Queue[Event] = Queue()
        self._scan_runner = SingleFlight(self._inbox, "IssueScanner")
        self._exec_runner = SingleFlight(self._inbox, "CleanupExecutor")

        self._state = State.MONITORING
        self._snapshot: ResourceSnapshot | None = None
        self._top: tuple[ProcessSample, ...] = ()
        self._cursor = 0
        self._pending: CleanupAction | None = None
        self._last_result: CleanupResult | None = None
        self._scanning = False
        self._scan_generation = 0
        self._message = ""

    @property
    def state(self) -> State:
        return self._state

    @property
    def scan_runner(self) -> SingleFlight:
        return self._scan_runner

    @property
    def exec_runner(self) -> SingleFlight:
        return self._exec_runner

    def view(self) -> SessionView:
        current = self._findings.view()
        return SessionView(
            state=self._state,
            snapshot=self._snapshot,
            top_processes=self._top,
            findings=current.findings,
            stale=current.stale,
            statuses=current.statuses,
            scanned=current.scanned,
            cursor=self._cursor,
            pending_action=self._pending,
            last_result=self._last_result,
            scanning=self._scanning,
            executing=self._state is State.EXECUTING,
            message=self._message,
        )

    def pump(self) -> int:
        """Handle every completion posted by background work. Returns the count."""
        handled = 0
        while True:
            try:
                event = self._inbox.get_nowait()
            except Empty:
                return handled
            self.handle(event)
            handled += 1

    def handle(self, event: Event) -> None:
        if self._state is State.QUIT:
            return

        match event:
            case Tick(snapshot=snapshot):
                self._on_tick(snapshot)
            case RequestScan():
                self._on_request_scan()
            case ScanCompleted(report=report):
                self._on_scan_completed(report)
            case Navigate(delta=delta):
                self._on_navigate(delta)
            case Select():
                self._on_select()
            case Confirm():
                self._on_confirm()
            case ExecutionCompleted(result=result):
                self._on_execution_completed(result)
            case Cancel():
                self._on_cancel()
            case Quit():
                self._on_quit()

    def _on_tick(self, snapshot: ResourceSnapshot) -> None:
        self._snapshot = snapshot
        self._top = tuple(rank(snapshot, self._process_limit))

    def _on_request_scan(self) -> None:
        if self._state is State.EXECUTING:
            self._message = "Cleanup in progress"
            return
        if self._scanning:
            return

        snapshot = self._snapshot
        generation = self._findings.generation
        started = self._scan_runner.submit(
            lambda cancel: self._scanner.scan(snapshot, cancel),
            ScanCompleted,
            lambda e: ScanCompleted(_failed_scan()),
        )
        if started:
            self._scanning = True
            self._scan_generation = generation
            self._message = "Scanning..."
        else:
            self._message = "Scan already running"

    def _on_scan_completed(self, report: ScanReport) -> None:
        self._scanning = False
        # Cleanups that finished during the scan stay stale
        self._findings.replace(report, self._scan_generation)
        count = len(report.findings)
        self._cursor = min(self._cursor, max(count - 1, 0))
        if self._state is State.MONITORING:
            self._state = State.ISSUE_LIST
        degraded = [
            f"{k.value} {s.value}" for k, s in report.statuses.items() if s is not CategoryStatus.OK
        ]
        self._message = f"{count} issues found"
        if degraded:
            self._message += f" ({', '.join(degraded)})"

    def _on_navigate(self, delta: int) -> None:
        if self._state not in (State.ISSUE_LIST, State.EXECUTING):
            return
        count = len(self._findings.view().findings)
        if count == 0:
            self._cursor = 0
            return
        self._cursor = (self._cursor + delta) % count

    def _on_select(self) -> None:
        if self._state is State.MONITORING:
            if self._findings.view().scanned:
                self._state = State.ISSUE_LIST
            else:
                self._message = "No scan yet"
            return
        if self._state is not State.ISSUE_LIST:
            return

        current = self._findings.view()
        if not 0 <= self._cursor < len(current.findings):
            self._message = "Nothing selected"
            return
        finding = current.findings[self._cursor]
        if current.is_stale(finding):
            self._message = "Already acted on; rescan first"
            return

        try:
            action = plan(finding)
        except UnrecognizedFindingKind as e:
            logger.error(f"Planning failed: {e}")
            self._last_result = CleanupResult.failed(
                None, ErrorKind.UNRECOGNIZED_FINDING_KIND, str(e)
            )
            self._message = str(e)
            return

        self._pending = action
        self._state = State.ACTION_CONFIRM
        self._message = f"{action.describe()}? [y] confirm  [esc] cancel"

    def _on_confirm(self) -> None:
        if self._state is not State.ACTION_CONFIRM or self._pending is None:
            return
        action = self._pending
        started = self._exec_runner.submit(
            lambda cancel: self._executor.execute(action),
            ExecutionCompleted,
            lambda e: ExecutionCompleted(
                CleanupResult.failed(action, ErrorKind.OPERATION_FAILED, str(e))
            ),
        )
        if not started:
            self._message = "Cleanup in progress"
            return
        self._pending = None
        self._state = State.EXECUTING
        self._message = f"{action.describe()}..."

    def _on_execution_completed(self, result: CleanupResult) -> None:
        self._last_result = result
        if self._state is State.EXECUTING:
            self._state = State.ISSUE_LIST
        if result.success:
            self._message = "Done" + (f": {result.reason}" if result.reason else "")
        else:
            self._message = f"Failed: {result.reason}"

    def _on_cancel(self) -> None:
        if self._state is State.ACTION_CONFIRM:
            self._pending = None
            self._state = State.ISSUE_LIST
            self._message = "Cancelled"
        elif self._state is State.ISSUE_LIST:
            self._state = State.MONITORING
            self._message = ""

    def _on_quit(self) -> None:
        self._state = State.QUIT
        self._pending = None
        self._scan_runner.abandon()
        self._scanning = False
        if self._sampler is not None:
            self._sampler.stop()


def build_session(config: Config, sampler: MetricSampler | None = None) -> SessionController:
    """Wire the scanner, executor and finding set for ``config``."""
    runtime = ContainerRuntime(config.scan.container_runtime, config.scan.runtime_timeout)
    findings = FindingSet()
    return SessionController(
        scanner=IssueScanner(config.scan, runtime),
        executor=CleanupExecutor(findings, runtime, config.scan.dependency_dir_names),
        findings=findings,
        sampler=sampler,
        process_limit=config.monitor.process_limit,
    )
