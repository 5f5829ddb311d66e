"""
Isolated worker processes.

Each page fetch runs in its own child process that owns its own browser. The
child reports completion over a one-way pipe with a single message::

    {"success": bool, "payload": <addresses | record dict | None>, "error": str | None}

and exits 0 on success, 1 on failure. The parent treats a child that exits
without a message, or that outlives its time budget, as a failed attempt.
"""

import multiprocessing
import sys
import time
from typing import Any, Callable, Dict, Optional

import psutil

from classifieds_crawler.crawlers.base import (
    WorkerTask, WorkerResult, TASK_CATALOG, TASK_LISTING
)
from classifieds_crawler.crawlers.parser import ClassifiedListingParser, extract_child_addresses
from classifieds_crawler.crawlers.renderer import PlaywrightRenderer
from classifieds_crawler.utils.errors import CrawlerError
from classifieds_crawler.utils.logging import get_business_logger, setup_logging


logger = get_business_logger('worker')

EXIT_SUCCESS = 0
EXIT_FAILURE = 1


def run_task(task: WorkerTask) -> Any:
    """
    Default unit of work executed inside the child process.

    Catalog tasks return the list of child listing addresses; listing tasks
    return the extracted record as a dict, or None when the parser discards
    the listing.
    """
    with PlaywrightRenderer(task.renderer) as renderer:
        if task.kind == TASK_CATALOG:
            page = renderer.render(task.address, ready_selector=task.link_selector, require_ready=True)
            addresses = extract_child_addresses(page.html, page.final_url, task.link_selector)
            logger.info(f"Found {len(addresses)} child pages on {task.address}")
            return addresses

        if task.kind == TASK_LISTING:
            page = renderer.render(task.address)
            try:
                record = ClassifiedListingParser(task.parser).parse(page.html, task.address)
            except Exception as e:
                # Unparsable document: no record, not a fetch failure
                logger.warning(f"Parser failed for {task.address}: {e}")
                return None
            return record.to_dict() if record else None

    raise CrawlerError(f"Unknown task kind: {task.kind}", {"address": task.address})


def _send(conn, message: Dict[str, Any]) -> bool:
    try:
        conn.send(message)
        return True
    except (OSError, ValueError, TypeError) as e:
        logger.error(f"Worker could not report completion: {e}")
        return False


def _worker_main(conn, target: Callable[[Any], Any], task: Any, log_level: str) -> None:
    """Entry point of the child process."""
    setup_logging(log_level)

    try:
        payload = target(task)
    except Exception as e:
        logger.error(f"Worker failed on {getattr(task, 'address', task)}: {type(e).__name__}: {e}")
        _send(conn, {"success": False, "payload": None, "error": f"{type(e).__name__}: {e}"})
        conn.close()
        sys.exit(EXIT_FAILURE)

    sent = _send(conn, {"success": True, "payload": payload, "error": None})
    conn.close()
    sys.exit(EXIT_SUCCESS if sent else EXIT_FAILURE)


class WorkerExecutor:
    """Runs one unit of work at a time in a disposable child process."""

    def __init__(self,
                 target: Callable[[Any], Any] = run_task,
                 timeout: float = 120.0,
                 start_method: str = "spawn",
                 join_grace: float = 5.0,
                 log_level: str = "INFO"):
        """
        Initialize executor.

        Args:
            target: Picklable callable run in the child with the task
            timeout: Default time budget per invocation, in seconds
            start_method: multiprocessing start method
            join_grace: Seconds to wait for a reporting child to exit
            log_level: Logging level inside the child
        """
        self.target = target
        self.timeout = timeout
        self.context = multiprocessing.get_context(start_method)
        self.join_grace = join_grace
        self.log_level = log_level
        self._active: Optional[multiprocessing.Process] = None

    @property
    def active(self) -> bool:
        """True while a worker process is alive."""
        return self._active is not None and self._active.is_alive()

    def execute(self, task: Any, timeout: Optional[float] = None) -> WorkerResult:
        """
        Run ``task`` in a fresh child process and wait for its report.

        Never raises for worker-side failures; those come back as an
        unsuccessful result. The child is always gone when this returns.
        """
        budget = self.timeout if timeout is None else timeout
        parent_conn, child_conn = self.context.Pipe(duplex=False)
        process = self.context.Process(
            target=_worker_main,
            args=(child_conn, self.target, task, self.log_level),
            name=f"worker-{getattr(task, 'kind', 'task')}",
            daemon=True
        )

        # Registered before start so abort() can reach a child that is still starting
        self._active = process
        try:
            process.start()
        except Exception as e:
            self._active = None
            parent_conn.close()
            child_conn.close()
            logger.error(f"Failed to spawn worker: {e}")
            return WorkerResult(success=False, error=f"spawn failed: {e}")
        except BaseException:
            self._active = None
            parent_conn.close()
            child_conn.close()
            if process.pid is not None:
                self._terminate(process)
            raise

        # Only the child holds the sending end now, so EOF means it is gone
        child_conn.close()

        message = None
        error = None
        timed_out = False
        started = time.monotonic()
        try:
            if parent_conn.poll(budget):
                try:
                    message = parent_conn.recv()
                except EOFError:
                    error = "worker exited without reporting completion"
                except Exception as e:
                    error = f"unreadable worker report: {e}"
            else:
                timed_out = True
                error = f"worker timed out after {budget:.0f}s"
                logger.warning(f"Killing worker {process.pid}: {error}")
                self._terminate(process)
            self._reap(process)
        except BaseException:
            self._terminate(process)
            raise
        finally:
            parent_conn.close()
            self._active = None

        exit_code = process.exitcode
        process.close()
        elapsed = time.monotonic() - started

        if message is None:
            if error is None:
                error = "worker exited without reporting completion"
            logger.warning(f"Worker failed ({error}), exit code {exit_code}, {elapsed:.1f}s")
            return WorkerResult(success=False, error=error, exit_code=exit_code, timed_out=timed_out)

        if not message.get("success"):
            return WorkerResult(
                success=False,
                error=message.get("error") or "worker reported failure",
                exit_code=exit_code
            )

        logger.debug(f"Worker succeeded in {elapsed:.1f}s")
        return WorkerResult(success=True, payload=message.get("payload"), exit_code=exit_code)

    def abort(self) -> None:
        """Kill the active worker, if any."""
        process = self._active
        if process is not None and process.is_alive():
            logger.warning(f"Aborting worker {process.pid}")
            self._terminate(process)

    def _reap(self, process: multiprocessing.Process) -> None:
        """Wait for a child that has reported to exit, killing it if it lingers."""
        process.join(self.join_grace)
        if process.is_alive():
            logger.warning(f"Worker {process.pid} did not exit after reporting, killing it")
            self._terminate(process)

    def _terminate(self, process: multiprocessing.Process) -> None:
        """Kill the child and everything it started (browser processes)."""
        if process.pid is not None:
            kill_descendants(process.pid)
        if process.is_alive():
            process.kill()
        process.join(self.join_grace)


def kill_descendants(pid: int, timeout: float = 5.0) -> None:
    """
    Kill every descendant of ``pid``.

    The process itself is left to its parent so that ``multiprocessing``
    still collects its exit status.
    """
    try:
        procs = psutil.Process(pid).children(recursive=True)
    except psutil.NoSuchProcess:
        return

    for proc in procs:
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            pass

    gone, alive = psutil.wait_procs(procs, timeout=timeout)
    for proc in alive:
        logger.error(f"Process {proc.pid} survived kill")
