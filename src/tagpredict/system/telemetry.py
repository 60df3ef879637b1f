# src/tagpredict/system/telemetry.py
"""
Decimated, non-blocking text log of the filtered marker positions.

Every `decimation` cycles one line per initialized marker is written:

    <sec> <nsec> <marker id> <new> <x> <y> <z>

The write runs on a single background worker. A cycle never waits for it: if the
previous write is still in flight when the next one is due, that write is skipped,
counted in `missed`, and the next successful write starts with a blank line.
Any I/O error disables the log for the rest of the run; estimation carries on.
"""
from __future__ import annotations

import logging
import os
import time
from concurrent import futures
from enum import Enum
from typing import Callable

from ..modules.filter_bank import FilterBank

logger = logging.getLogger(__name__)

LOG_HEADER = "ts.sec ts.nsec id new x y z\n"
NEW_DATA_FLAG = 1


class LogPhase(Enum):
    IDLE = "idle"
    PENDING = "pending"
    DISABLED = "disabled"


class LogState:
    def __init__(
        self,
        fd: int | None,
        decimation: int = 5,
        *,
        writer: Callable[[int, bytes], int] = os.write,
    ):
        if int(decimation) < 1:
            raise ValueError(f"log decimation must be >= 1, got {decimation}")
        self.fd = fd
        self.decimation = int(decimation)
        self.total = 0
        self.skipped = False
        self.missed = 0
        self.writes = 0
        self.buffer = ""

        self._writer = writer
        self._future: futures.Future | None = None
        self._executor = (
            futures.ThreadPoolExecutor(max_workers=1, thread_name_prefix="tagpredict-log")
            if fd is not None else None
        )

    @property
    def phase(self) -> LogPhase:
        if self.fd is None:
            return LogPhase.DISABLED
        if self._future is not None:
            return LogPhase.PENDING
        return LogPhase.IDLE

    def submit(self, data: bytes) -> None:
        if self._future is not None:
            raise RuntimeError("a write is already in flight")
        self._future = self._executor.submit(self._writer, self.fd, data)
        self.writes += 1

    def poll(self) -> bool:
        """True when no write is in flight anymore. A failed write disables the log."""
        fut = self._future
        if fut is None:
            return True
        if not fut.done():
            return False
        self._future = None
        ex = fut.exception()
        if ex is not None:
            self.disable(f"write failed: {ex}")
        elif fut.result() is None or fut.result() <= 0:
            self.disable(f"write returned {fut.result()}")
        return True

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the outstanding write finishes. Completion is still consumed by poll()."""
        if self._future is None:
            return True
        done, _ = futures.wait([self._future], timeout=timeout)
        return bool(done)

    def disable(self, reason: str) -> None:
        logger.warning(f"marker log disabled: {reason}")
        fd, self.fd = self.fd, None
        if fd is not None:
            try:
                os.close(fd)
            except OSError as e:
                logger.warning(f"closing marker log: {e}")
        if self._executor is not None:
            self._executor.shutdown(wait=False)

    def close(self) -> None:
        self.wait()
        self.poll()
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        if self.fd is not None:
            os.close(self.fd)
            self.fd = None


def open_log(path: str, decimation: int = 5, **kwargs) -> LogState:
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o644)
    try:
        os.write(fd, LOG_HEADER.encode("ascii"))
    except OSError:
        os.close(fd)
        raise
    logger.info(f"logging marker positions to {path} (decimation {decimation})")
    return LogState(fd, decimation, **kwargs)


def format_lines(bank: FilterBank, sec: int, nsec: int) -> list[str]:
    return [
        f"{sec} {nsec} {f.id} {NEW_DATA_FLAG} "
        f"{f.current_estimate[0]:.6f} {f.current_estimate[1]:.6f} {f.current_estimate[2]:.6f}\n"
        for f in bank.active()
    ]


def log_filters(
    log: LogState | None,
    bank: FilterBank,
    clock: Callable[[], int] = time.time_ns,
) -> bool:
    """
    One logging cycle. Returns True when a write was submitted.
    """
    if log is None or log.phase is LogPhase.DISABLED:
        return False

    log.total += 1
    if log.total % log.decimation != 0:
        return False

    if not log.poll():
        # previous write still in flight
        log.skipped = True
        log.missed += 1
        return False
    if log.phase is LogPhase.DISABLED:
        return False

    ns = clock()
    lines = format_lines(bank, ns // 1_000_000_000, ns % 1_000_000_000)
    if not lines:
        return False

    log.buffer = ("\n" if log.skipped else "") + "".join(lines)
    try:
        log.submit(log.buffer.encode("ascii"))
    except (OSError, RuntimeError) as e:
        log.disable(f"write submission failed: {e}")
        return False
    finally:
        log.skipped = False
    return True
