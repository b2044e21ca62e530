"""
app_log.py
User-facing message sink — forwards messages to whatever front-end is listening.

A front-end calls set_app_log(log_fn, after_fn) once it can show messages.
Registry code calls app_log(msg) for anything the user should see.

Thread safety: when app_log is called from another thread (e.g. the
import_dir worker) the message is queued and drained on the front-end's
thread, either via the periodic after_fn callback or an explicit
drain_app_log() call. Called from the front-end's thread, the message is
passed on immediately.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Callable

log = logging.getLogger(__name__)

_log_fn: Callable[[str], None] | None = None
_after_fn: Callable | None = None
_main_thread_id: int | None = None
_log_queue: queue.Queue[str] = queue.Queue()


def drain_app_log() -> int:
    """Pass every queued message to the front-end. Returns how many were sent."""
    if _log_fn is None:
        return 0
    sent = 0
    try:
        while True:
            msg = _log_queue.get_nowait()
            try:
                _log_fn(msg)
                sent += 1
            except Exception:
                log.exception("app log function failed")
    except queue.Empty:
        pass
    return sent


def _drain_and_reschedule() -> None:
    drain_app_log()
    if _after_fn is not None:
        _after_fn(50, _drain_and_reschedule)


def set_app_log(log_fn: Callable[[str], None], after_fn: Callable | None = None) -> None:
    """Register the front-end's message function and, optionally, a
    main-thread scheduler with the signature after_fn(ms, callback)."""
    global _log_fn, _after_fn, _main_thread_id
    _log_fn = log_fn
    _after_fn = after_fn
    _main_thread_id = threading.current_thread().ident
    if after_fn is not None:
        after_fn(0, _drain_and_reschedule)


def clear_app_log() -> None:
    """Unregister the front-end; queued messages are dropped."""
    global _log_fn, _after_fn, _main_thread_id
    _log_fn = None
    _after_fn = None
    _main_thread_id = None
    while not _log_queue.empty():
        _log_queue.get_nowait()


def app_log(message: str) -> None:
    """Show message to the user (thread-safe). No-op if no front-end is set."""
    if _log_fn is None:
        return
    if threading.current_thread().ident == _main_thread_id:
        try:
            _log_fn(message)
        except Exception:
            log.exception("app log function failed")
    else:
        _log_queue.put_nowait(message)
