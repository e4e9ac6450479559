"""
Background analysis worker.

AnalyticsWorker runs handle_message() in a single dedicated worker process
so that long analyses never block the caller. The caller and the worker
share nothing: requests and responses are pickled across a pair of one-way
pipes, and a watcher thread delivers each response as it arrives.

Every submit() gets a new job token, sent as the request's ``requestId``.
Only the latest token is live; responses for older tokens are discarded and
their futures cancelled. cancel() terminates the worker process, and the
next submit() starts a fresh one.

If the worker process cannot be started, a job cannot be sent to it, or the
process dies before answering, the same handle_message() runs on a local
background thread instead so a result is still produced.
"""

import itertools
import logging
import multiprocessing
import threading

from collections import deque
from collections.abc import Callable, Iterable, Mapping
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from functools import partial
from multiprocessing.connection import Connection, wait
from typing import Any

from gasp.analysis.types import ClusterParams, FalseNegativeParams
from gasp.constants import ERROR_ANALYSIS_CANCELLED, ERROR_ANALYSIS_TIMEOUT
from gasp.worker.protocol import (
    AnalysisOutcome,
    build_request,
    handle_message,
    parse_response,
)

logger = logging.getLogger(__name__)

__all__ = ["AnalyticsWorker"]

OutcomeCallback = Callable[[AnalysisOutcome], None]
SendFailureCallback = Callable[[int, dict[str, Any], BaseException], None]

# Seconds close() waits for the worker to exit before terminating it
_CLOSE_TIMEOUT_SEC = 5.0


def _serve_requests(
    requests: Connection,
    responses: Connection,
    log_options: tuple[bool, str | None] | None,
) -> None:
    """
    Worker process main loop: one response per request, in request order.

    A None request (or the caller closing its end) stops the loop.
    """
    if log_options is not None:
        from gasp.logging_config import setup_worker_logging

        verbose, console_format = log_options
        setup_worker_logging(verbose=verbose, console_format=console_format)

    while True:
        try:
            message = requests.recv()
        except EOFError:
            break
        if message is None:
            break
        responses.send(handle_message(message))


class _WorkerChannel:
    """
    One worker process plus its request pipe, sender thread and watcher.

    Requests are pickled and written on a single sender thread, so submit()
    never blocks on a full pipe. The watcher waits on both the response pipe
    and the process sentinel: responses are matched to tokens in send order,
    and if the process exits every unanswered job goes to ``on_exit``.
    """

    def __init__(
        self,
        context: Any,
        log_options: tuple[bool, str | None] | None,
        on_response: Callable[[int | None, Any], None],
        on_exit: Callable[["_WorkerChannel", list[tuple[int, dict[str, Any]]]], None],
    ):
        request_reader, self._requests = context.Pipe(duplex=False)
        self._responses, response_writer = context.Pipe(duplex=False)

        self.process = context.Process(
            target=_serve_requests,
            args=(request_reader, response_writer, log_options),
            name="gasp-analysis",
            daemon=True,
        )
        self.process.start()
        request_reader.close()
        response_writer.close()

        self._on_response = on_response
        self._on_exit = on_exit
        self._stopping = False
        self._finished = False
        self._sent: deque[tuple[int, dict[str, Any]]] = deque()
        self._sent_lock = threading.Lock()
        self._sender = ThreadPoolExecutor(max_workers=1, thread_name_prefix="gasp-send")
        self._watcher = threading.Thread(
            target=self._watch, name="gasp-watch", daemon=True
        )
        self._watcher.start()

    def is_alive(self) -> bool:
        return not self._stopping and self.process.is_alive()

    def send(
        self, token: int, message: dict[str, Any], on_failure: SendFailureCallback
    ) -> None:
        with self._sent_lock:
            finished = self._finished
            if not finished:
                self._sent.append((token, message))
                self._sender.submit(self._send, token, message, on_failure)
        if finished:
            on_failure(token, message, OSError("worker process has exited"))

    def stop(self, timeout: float | None = None) -> None:
        """
        Stop the worker process.

        With a timeout, ask the process to exit once its queued requests are
        answered and wait up to that long; otherwise terminate it at once.
        Unanswered jobs are not reported to ``on_exit``.
        """
        self._stopping = True

        if timeout and self.process.is_alive():
            try:
                self._sender.submit(self._send_exit)
            except RuntimeError:
                logger.debug("Sender already shut down; terminating worker")
            else:
                self.process.join(timeout)

        if self.process.is_alive():
            self.process.terminate()
        self.process.join()

        if threading.current_thread() is not self._watcher:
            self._watcher.join()

    # Sender thread

    def _send(
        self, token: int, message: dict[str, Any], on_failure: SendFailureCallback
    ) -> None:
        try:
            self._requests.send(message)
        except OSError as e:
            # Pipe closed: the watcher reports the exit with this job unanswered
            logger.debug(f"Could not send job {token} to the worker process: {e}")
        except Exception as e:
            with self._sent_lock:
                self._sent = deque(entry for entry in self._sent if entry[0] != token)
            on_failure(token, message, e)

    def _send_exit(self) -> None:
        try:
            self._requests.send(None)
        except OSError as e:
            logger.debug(f"Worker process already gone: {e}")

    # Watcher thread

    def _watch(self) -> None:
        while True:
            ready = wait([self._responses, self.process.sentinel])
            if self._responses not in ready:
                break
            try:
                response = self._responses.recv()
            except (EOFError, OSError):
                break
            with self._sent_lock:
                token = self._sent.popleft()[0] if self._sent else None
            self._on_response(token, response)

        self.process.join()
        with self._sent_lock:
            self._finished = True
        self._sender.shutdown(wait=True)
        self._responses.close()
        self._requests.close()

        with self._sent_lock:
            unanswered = list(self._sent)
            self._sent.clear()

        if not self._stopping:
            self._on_exit(self, unanswered)


class AnalyticsWorker:
    """
    Caller-side handle on the isolated analysis process.

    Example:
        >>> with AnalyticsWorker() as worker:
        ...     outcome = worker.run(rows, timeout=30)
        >>> print(len(outcome.clusters))
    """

    def __init__(
        self,
        *,
        in_process: bool = False,
        start_method: str = "spawn",
        configure_logging: bool = False,
        verbose: bool = False,
        console_format: str | None = None,
    ):
        """
        Initialize the worker handle. No process is started until first use.

        Args:
            in_process: Skip the worker process and always use the local thread
            start_method: multiprocessing start method for the worker process
            configure_logging: Set up console logging inside the worker process
            verbose: DEBUG console logging in the worker process
            console_format: Console format for the worker process, so its lines
                match the caller's
        """
        self.in_process = in_process
        self._context = multiprocessing.get_context(start_method)
        self._log_options = (verbose, console_format) if configure_logging else None

        self._lock = threading.Lock()
        self._tokens = itertools.count(1)
        self._channel: _WorkerChannel | None = None
        self._fallback: ThreadPoolExecutor | None = None
        self._latest_token: int | None = None
        self._pending: dict[int, Future] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def latest_token(self) -> int | None:
        """Token of the most recent job, or None after cancel()."""
        return self._latest_token

    def submit(
        self,
        rows: Iterable[Any],
        params: ClusterParams | None = None,
        fn_params: FalseNegativeParams | None = None,
        on_complete: OutcomeCallback | None = None,
    ) -> "Future[AnalysisOutcome]":
        """
        Queue an analysis without blocking.

        Any job still in flight is superseded: its future is cancelled and
        its response, if one arrives, is discarded.

        Args:
            rows: Detail rows
            params: Clustering options
            fn_params: False-negative options
            on_complete: Called with the outcome unless the job is superseded

        Returns:
            Future resolving to an AnalysisOutcome
        """
        future: Future = Future()
        if on_complete is not None:
            future.add_done_callback(partial(_deliver, on_complete))

        with self._lock:
            token = next(self._tokens)
            stale = list(self._pending.values())
            self._pending = {token: future}
            self._latest_token = token

        for old in stale:
            old.cancel()
        if stale:
            logger.debug(f"Job {token} supersedes {len(stale)} pending job(s)")

        message = build_request(rows, params, fn_params, request_id=token)

        if self.in_process:
            self._dispatch_local(token, message)
        else:
            self._dispatch_worker(token, message)

        return future

    def run(
        self,
        rows: Iterable[Any],
        params: ClusterParams | None = None,
        fn_params: FalseNegativeParams | None = None,
        timeout: float | None = None,
    ) -> AnalysisOutcome:
        """
        Run an analysis and wait for its outcome.

        On timeout the worker process is terminated and an analysis_timeout
        failure is returned.

        Args:
            rows: Detail rows
            params: Clustering options
            fn_params: False-negative options
            timeout: Seconds to wait (None waits indefinitely)

        Returns:
            AnalysisOutcome
        """
        future = self.submit(rows, params, fn_params)
        try:
            return future.result(timeout=timeout)
        except TimeoutError:
            logger.warning(f"Analysis timed out after {timeout}s; terminating worker")
            self.cancel()
            return AnalysisOutcome.failure(ERROR_ANALYSIS_TIMEOUT)
        except CancelledError:
            return AnalysisOutcome.failure(ERROR_ANALYSIS_CANCELLED)

    def cancel(self) -> None:
        """Discard every pending job and terminate the worker process."""
        with self._lock:
            stale = list(self._pending.values())
            self._pending = {}
            self._latest_token = None
            channel, self._channel = self._channel, None

        for future in stale:
            future.cancel()

        if channel is not None:
            channel.stop()
            logger.info("Worker process terminated")

    def close(self) -> None:
        """Cancel pending jobs, stop the worker process and the local thread."""
        with self._lock:
            stale = list(self._pending.values())
            self._pending = {}
            channel, self._channel = self._channel, None
            fallback, self._fallback = self._fallback, None

        for future in stale:
            future.cancel()

        if channel is not None:
            channel.stop(timeout=_CLOSE_TIMEOUT_SEC)
        if fallback is not None:
            fallback.shutdown(wait=False, cancel_futures=True)

    def __enter__(self) -> "AnalyticsWorker":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _ensure_channel(self) -> _WorkerChannel:
        with self._lock:
            if self._channel is None or not self._channel.is_alive():
                self._channel = _WorkerChannel(
                    self._context,
                    self._log_options,
                    on_response=self._on_response,
                    on_exit=self._on_worker_exit,
                )
                logger.debug(f"Started analysis worker process {self._channel.process.pid}")
            return self._channel

    def _dispatch_worker(self, token: int, message: dict[str, Any]) -> None:
        try:
            channel = self._ensure_channel()
        except (OSError, ValueError, RuntimeError) as e:
            logger.warning(f"Worker process unavailable ({e}); analyzing in-process")
            self._dispatch_local(token, message)
            return
        channel.send(token, message, self._on_send_failure)

    def _dispatch_local(self, token: int, message: dict[str, Any]) -> None:
        with self._lock:
            if self._fallback is None:
                self._fallback = ThreadPoolExecutor(
                    max_workers=1, thread_name_prefix="gasp-analysis"
                )
            fallback = self._fallback
        fallback.submit(self._run_local, token, message)

    def _run_local(self, token: int, message: dict[str, Any]) -> None:
        if not self._is_live(token):
            return
        self._on_response(token, handle_message(message))

    # ------------------------------------------------------------------
    # Completion (runs on the watcher, sender or fallback thread)
    # ------------------------------------------------------------------

    def _is_live(self, token: int) -> bool:
        with self._lock:
            return token in self._pending

    def _on_response(self, token: int | None, response: Any) -> None:
        echoed = response.get("requestId") if isinstance(response, Mapping) else None
        if token is None or echoed != token:
            logger.warning(f"Discarding response for job {echoed!r}; expected {token}")
            return

        with self._lock:
            future = self._pending.pop(token, None)
        if future is None:
            logger.debug(f"Discarding stale response for job {token}")
            return

        if future.set_running_or_notify_cancel():
            future.set_result(parse_response(response))

    def _on_send_failure(
        self, token: int, message: dict[str, Any], error: BaseException
    ) -> None:
        if not self._is_live(token):
            return
        logger.warning(
            f"Job {token} could not be sent to the worker process ({error!r}); "
            "analyzing in-process"
        )
        self._dispatch_local(token, message)

    def _on_worker_exit(
        self, channel: _WorkerChannel, unanswered: list[tuple[int, dict[str, Any]]]
    ) -> None:
        with self._lock:
            if self._channel is channel:
                self._channel = None

        live = [(token, message) for token, message in unanswered if self._is_live(token)]
        if not live:
            logger.debug(f"Worker process exited with code {channel.process.exitcode}")
            return

        logger.warning(
            f"Worker process exited with code {channel.process.exitcode} before "
            f"answering {len(live)} job(s); analyzing in-process"
        )
        for token, message in live:
            self._dispatch_local(token, message)


def _deliver(on_complete: OutcomeCallback, future: Future) -> None:
    if not future.cancelled():
        on_complete(future.result())
