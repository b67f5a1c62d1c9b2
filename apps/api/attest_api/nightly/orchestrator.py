"""Nightly verification orchestrator.

Runs export verification and compose replay as two child processes, each
with its own wall-clock budget, derives one status from their summaries and
persists a report: the JSON file first, then a best-effort database row.
"""

import json
import logging
import os
import subprocess
import sys
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError

from attest_api.errors import AttestError
from attest_api.notifications.channels import (
    NotificationChannel,
    channels_from_settings,
    dispatch_notifications,
)
from attest_api.reports.store import ReportStore
from attest_api.settings import get_settings
from attest_api.utils.metrics import nightly_runs

logger = logging.getLogger(__name__)

EXPORTS_ARGS = ["replay", "--kind=pdf", "--kind=docx"]
COMPOSE_ARGS = ["compose-replay"]

EMPTY_EXPORTS = {"total": 0, "pass": 0, "fail": 0, "miss": 0}
EMPTY_COMPOSE = {"total": 0, "pass": 0, "drift": 0, "miss": 0, "rerun": False}

TIMEOUT_EXIT_CODE = 124

# (args, timeout_seconds) -> (exit_code, stdout, stderr)
Runner = Callable[[Sequence[str], float], Tuple[int, str, str]]


def subprocess_runner(args: Sequence[str], timeout: float) -> Tuple[int, str, str]:
    """Run one CLI sub-command in an isolated interpreter."""
    command = [sys.executable, "-m", "attest_api.cli", *args]
    try:
        completed = subprocess.run(
            command,
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            timeout=timeout,
            env=os.environ.copy(),
        )
    except subprocess.TimeoutExpired as e:
        stdout = e.stdout.decode("utf-8", "replace") if isinstance(e.stdout, bytes) else (e.stdout or "")
        stderr = e.stderr.decode("utf-8", "replace") if isinstance(e.stderr, bytes) else (e.stderr or "")
        return TIMEOUT_EXIT_CODE, stdout, f"{stderr}\nTimed out after {timeout}s".strip()
    except OSError as e:
        return 1, "", f"Failed to start sub-task: {e}"
    return completed.returncode, completed.stdout or "", completed.stderr or ""


def parse_summary(stdout: str, fallback: dict) -> dict:
    """Last JSON object line containing ``"total"``, else ``fallback``."""
    for line in reversed((stdout or "").strip().splitlines()):
        line = line.strip()
        if line.startswith("{") and '"total"' in line:
            try:
                parsed = json.loads(line)
            except ValueError:
                break
            if isinstance(parsed, dict):
                return {**fallback, **parsed}
            break
    return dict(fallback)


def derive_status(exports: dict, compose: dict, exports_code: int, compose_code: int) -> str:
    """``fail`` on a failed sub-task, fail or drift; ``partial`` on misses; else ``pass``."""
    if exports_code != 0 or compose_code != 0:
        return "fail"
    if exports.get("fail", 0) > 0 or compose.get("drift", 0) > 0:
        return "fail"
    if exports.get("miss", 0) > 0 or compose.get("miss", 0) > 0:
        return "partial"
    return "pass"


def report_filename(now: Optional[datetime] = None) -> str:
    now = now or datetime.now()
    return f"nightly-{now.strftime('%Y-%m-%d_%H-%M-%S')}.json"


def resolve_triggered_by(requested: Optional[str] = None) -> str:
    if os.environ.get("GITHUB_ACTIONS") == "true":
        return "github_actions"
    return requested or "manual"


@dataclass
class SubtaskResult:
    exit_code: int
    summary: dict
    stdout: str = ""
    stderr: str = ""

    def to_dict(self) -> dict:
        return {
            "exitCode": self.exit_code,
            "summary": self.summary,
            "stdout": self.stdout,
            "stderr": self.stderr,
        }


@dataclass
class NightlyResult:
    status: str
    report: dict
    report_path: Optional[Path] = None
    report_id: Optional[str] = None
    notifications: Dict[str, bool] = field(default_factory=dict)

    @property
    def exit_code(self) -> int:
        return 0 if self.status == "pass" else 1


class NightlyOrchestrator:
    def __init__(
        self,
        runner: Optional[Runner] = None,
        session_factory=None,
        channels: Optional[List[NotificationChannel]] = None,
        settings=None,
    ):
        self.settings = settings or get_settings()
        self.runner = runner or subprocess_runner
        self._session_factory = session_factory
        self._channels = channels

    @property
    def session_factory(self):
        if self._session_factory is None:
            from attest_api.db.session import SessionLocal

            self._session_factory = SessionLocal
        return self._session_factory

    def _run_subtask(self, args: Sequence[str], fallback: dict) -> SubtaskResult:
        timeout = self.settings.nightly_subtask_timeout_seconds
        try:
            code, stdout, stderr = self.runner(list(args), timeout)
        except Exception as e:
            logger.error(f"Sub-task {args[0]} crashed: {e}", exc_info=True)
            return SubtaskResult(exit_code=1, summary=dict(fallback), stderr=str(e))
        return SubtaskResult(
            exit_code=code, summary=parse_summary(stdout, fallback), stdout=stdout, stderr=stderr
        )

    def run(self, notify: bool = False, triggered_by: Optional[str] = None) -> NightlyResult:
        started_at = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        logger.info("Starting nightly verification run")

        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="nightly") as pool:
            exports_future = pool.submit(self._run_subtask, EXPORTS_ARGS, EMPTY_EXPORTS)
            compose_future = pool.submit(self._run_subtask, COMPOSE_ARGS, EMPTY_COMPOSE)
            exports = exports_future.result()
            compose = compose_future.result()

        status = derive_status(exports.summary, compose.summary, exports.exit_code, compose.exit_code)
        report = {
            "startedAt": started_at,
            "status": status,
            "exports": exports.to_dict(),
            "composeReplay": compose.to_dict(),
        }
        result = NightlyResult(status=status, report=report)

        result.report_path = self.write_report_file(report)
        result.report_id = self.save_report_row(report, exports.summary, compose.summary, triggered_by)
        self.prune_reports()

        if notify and self.settings.notify_enabled and status != "pass":
            channels = self._channels if self._channels is not None else channels_from_settings(self.settings)
            result.notifications = dispatch_notifications(report, channels)

        nightly_runs.labels(status=status).inc()
        logger.info(
            f"Nightly verification {status.upper()} "
            f"(exports: {exports.summary.get('pass', 0)}/{exports.summary.get('total', 0)} pass, "
            f"compose: {compose.summary.get('pass', 0)}/{compose.summary.get('total', 0)} pass)"
        )
        return result

    def write_report_file(self, report: dict) -> Path:
        reports_dir = Path(self.settings.reports_dir)
        reports_dir.mkdir(parents=True, exist_ok=True)
        path = reports_dir / report_filename()
        path.write_text(json.dumps(report, indent=2), encoding="utf-8")
        logger.info(f"Wrote file report: {path}")
        return path

    def save_report_row(
        self, report: dict, exports: dict, compose: dict, triggered_by: Optional[str]
    ) -> Optional[str]:
        """Database copy of the report. Failure is logged; the file stays authoritative."""
        db = None
        try:
            db = self.session_factory()
            row = ReportStore(db).create_report(
                status=report["status"],
                report_json=report,
                exports=exports,
                compose=compose,
                triggered_by=resolve_triggered_by(triggered_by),
            )
            return row.id
        except (AttestError, SQLAlchemyError) as e:
            logger.error(f"Failed to save report to database: {e}", exc_info=True)
            return None
        finally:
            if db is not None:
                db.close()

    def prune_reports(self) -> int:
        db = None
        try:
            db = self.session_factory()
            return ReportStore(db).delete_reports_older_than(self.settings.report_retention_days)
        except (SQLAlchemyError, ValueError) as e:
            logger.warning(f"Report retention prune failed: {e}")
            return 0
        finally:
            if db is not None:
                db.close()


def run_nightly(notify: bool = False, triggered_by: Optional[str] = None, **kwargs) -> NightlyResult:
    return NightlyOrchestrator(**kwargs).run(notify=notify, triggered_by=triggered_by)
