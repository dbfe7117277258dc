"""进度更新的数据模型与线程安全的进度计数器。"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ProgressUpdate:
    """批处理过程中的进度信息。"""

    total: int
    completed: int
    in_flight: int = 0
    current_file: Optional[str] = None
    message: Optional[str] = None
    status: str = "running"  # started | completed | running | finished

    @property
    def fraction(self) -> float:
        if self.total == 0:
            return 1.0
        return self.completed / self.total


ProgressCallback = Optional[Callable[[ProgressUpdate], None]]


class ProgressState:
    """批次内唯一的共享可变对象，所有读写都经过同一把锁。

    回调在持锁状态下调用，因此调用方观察到的 ``completed`` 单调不减。
    回调抛出的异常只记录日志，不影响批处理。
    """

    def __init__(self, total: int, capacity: int, callback: ProgressCallback = None) -> None:
        self._lock = threading.Lock()
        self._callback = callback
        self.total = total
        self.capacity = capacity
        self.completed = 0
        self.in_flight = 0
        self.peak_in_flight = 0

    def begin(self, current_file: str) -> None:
        with self._lock:
            if self.in_flight >= self.capacity:
                raise RuntimeError(f"并发任务数超过上限 {self.capacity}")
            self.in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
            self._emit_locked(current_file, f"开始处理 {current_file}", "started")

    def finish(self, current_file: str, message: Optional[str] = None) -> int:
        """记录一个任务完成（成功或失败），返回新的完成数。"""

        with self._lock:
            self.in_flight -= 1
            self.completed += 1
            self._emit_locked(current_file, message or f"完成 {current_file}", "completed")
            return self.completed

    def release(self) -> None:
        """任务在开始前被取消：只归还并发名额，不计入完成数。"""

        with self._lock:
            self.in_flight -= 1

    def snapshot(self, message: Optional[str] = None, status: str = "running") -> ProgressUpdate:
        with self._lock:
            return self._update_locked(None, message, status)

    def emit(self, message: Optional[str] = None, status: str = "running") -> None:
        with self._lock:
            self._emit_locked(None, message, status)

    def _update_locked(self, current_file: Optional[str], message: Optional[str], status: str) -> ProgressUpdate:
        return ProgressUpdate(
            total=self.total,
            completed=self.completed,
            in_flight=self.in_flight,
            current_file=current_file,
            message=message,
            status=status,
        )

    def _emit_locked(self, current_file: Optional[str], message: Optional[str], status: str) -> None:
        if self._callback is None:
            return
        try:
            self._callback(self._update_locked(current_file, message, status))
        except Exception:  # noqa: BLE001
            LOGGER.exception("进度回调执行失败")
