"""OpenCV-backed camera stream."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

import cv2

from fruitlens.errors import CaptureError

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import NDArray

    from fruitlens.config import Settings

logger = logging.getLogger(__name__)


class OpenCVCamera:
    """A live video stream from a local capture device.

    OpenCV addresses devices by index only, so the facing preference is
    recorded for status reporting but cannot steer device selection.
    """

    def __init__(self, device_index: int, width: int, height: int, facing: str = "environment") -> None:
        self.device_index = device_index
        self.width = width
        self.height = height
        self.facing = facing
        self._capture: cv2.VideoCapture | None = None
        self._lock = threading.Lock()

    def open(self) -> None:
        """Open the device and request the target resolution.

        Raises:
            CaptureError: If the device cannot be opened.
        """
        capture = cv2.VideoCapture(self.device_index)
        if not capture.isOpened():
            capture.release()
            raise CaptureError(f"Could not open camera {self.device_index}")
        capture.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        with self._lock:
            self._capture = capture
        logger.info(
            "Opened camera %d at %dx%d (facing=%s)",
            self.device_index,
            self.width,
            self.height,
            self.facing,
        )

    @property
    def is_open(self) -> bool:
        with self._lock:
            return self._capture is not None and self._capture.isOpened()

    def read_frame(self) -> NDArray[np.uint8] | None:
        with self._lock:
            if self._capture is None:
                return None
            ok, frame = self._capture.read()
        if not ok or frame is None:
            return None
        rgb: NDArray[np.uint8] = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        return rgb

    def close(self) -> None:
        with self._lock:
            if self._capture is not None:
                self._capture.release()
                self._capture = None
                logger.info("Released camera %d", self.device_index)


def open_camera(settings: Settings) -> OpenCVCamera:
    """Open the configured camera."""
    camera = OpenCVCamera(
        settings.camera_index,
        settings.camera_width,
        settings.camera_height,
        settings.camera_facing,
    )
    camera.open()
    return camera
