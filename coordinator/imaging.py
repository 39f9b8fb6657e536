"""
Image capture notifications.

The server does not schedule real camera work. It records capture requests
(shallow images when a task completes, deep images when a deep scan finishes)
and, once a request's delay has elapsed, stores the target's image file name
in State and notifies the registered callbacks.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from coordinator.config import DEEP_SCAN_CAPTURE_DELAY_SEC, IMAGE_CAPTURE_DELAY_SEC
from coordinator.geometry import Coordinate
from coordinator.tasks import TaskType

logger = logging.getLogger(__name__)

# Targets closer than this to a capture coordinate are in frame (m)
CAPTURE_RADIUS = 5.0


@dataclass
class CaptureRequest:
    """A pending or delivered image capture"""

    coordinate: Coordinate
    deep: bool
    requested_at: float
    due_at: float
    task_id: Optional[str] = None
    target_id: Optional[str] = None
    filename: Optional[str] = None
    delivered: bool = False


class ImageController:
    """
    Queues capture requests and delivers them when due.

    Args:
        state: State registry (targets are resolved and images stored here)
        capture_delay: Seconds before a shallow capture is delivered
        deep_capture_delay: Seconds before a deep capture is delivered
        clock: Wall-clock source
    """

    def __init__(
        self,
        state,
        capture_delay: float = IMAGE_CAPTURE_DELAY_SEC,
        deep_capture_delay: float = DEEP_SCAN_CAPTURE_DELAY_SEC,
        clock: Callable[[], float] = time.time,
    ):
        self.state = state
        self.capture_delay = capture_delay
        self.deep_capture_delay = deep_capture_delay
        self.clock = clock

        self._pending: List[CaptureRequest] = []
        self._callbacks: List[Callable[[CaptureRequest], None]] = []
        self._lock = threading.Lock()

    def add_capture_callback(self, callback: Callable[[CaptureRequest], None]):
        """Register a callback invoked for every delivered capture"""
        self._callbacks.append(callback)

    def take_image(
        self, coordinate: Coordinate, deep: bool = False, task_id: Optional[str] = None
    ) -> CaptureRequest:
        """Request an image of whatever is at coordinate"""
        now = self.clock()
        delay = self.deep_capture_delay if deep else self.capture_delay
        target = self._target_at(coordinate)
        request = CaptureRequest(
            coordinate=coordinate,
            deep=deep,
            requested_at=now,
            due_at=now + delay,
            task_id=task_id,
            target_id=target.id if target is not None else None,
        )
        with self._lock:
            self._pending.append(request)
        logger.info(
            f"{'Deep' if deep else 'Shallow'} image requested at "
            f"({coordinate.latitude:.5f}, {coordinate.longitude:.5f})"
        )
        return request

    def on_task_complete(self, task) -> Optional[CaptureRequest]:
        """
        Capture notification for a completed task.

        Deep scans request their own deep image when they finish, so nothing
        further is queued for them.
        """
        if task.task_type == TaskType.DEEP_SCAN:
            return None
        return self.take_image(task.coordinate, deep=False, task_id=task.id)

    def check_for_images(self, now: Optional[float] = None) -> List[CaptureRequest]:
        """Deliver every request that is due. Returns the delivered requests."""
        now = self.clock() if now is None else now
        with self._lock:
            due = [r for r in self._pending if now >= r.due_at]
            self._pending = [r for r in self._pending if now < r.due_at]

        for request in due:
            self._deliver(request)
        return due

    def _deliver(self, request: CaptureRequest):
        target = (
            self.state.get_target(request.target_id)
            if request.target_id is not None
            else None
        )
        if target is not None:
            filename = target.high_res if request.deep else target.low_res
            request.filename = filename or f"{target.id}_{'deep' if request.deep else 'shallow'}.png"
            self.state.add_to_stored_images(target.id, request.filename, request.deep)
        request.delivered = True

        for callback in self._callbacks:
            try:
                callback(request)
            except Exception as e:
                logger.error(f"Capture callback error: {e}", exc_info=True)

    def _target_at(self, coordinate: Coordinate):
        with self.state.lock:
            nearest = None
            nearest_distance = CAPTURE_RADIUS
            for target in self.state.targets:
                distance = target.coordinate.distance_to(coordinate)
                if distance <= nearest_distance:
                    nearest, nearest_distance = target, distance
            return nearest

    @property
    def pending(self) -> List[CaptureRequest]:
        with self._lock:
            return list(self._pending)

    def reset(self):
        with self._lock:
            self._pending = []
