from __future__ import annotations

import logging
from collections.abc import Callable

import cv2
import numpy as np

from recognition_overlay.errors import SourceUnavailable
from recognition_overlay.schemas import VideoGeometry

DimensionsListener = Callable[[VideoGeometry], None]


class CameraSource:
    """
    A local camera exposed as a live video source.

    The source is "ready" once it has delivered a frame with non-zero
    dimensions. Listeners registered with :meth:`add_dimensions_listener` are
    told whenever the native dimensions change.
    """

    def __init__(self, device: int | str = 0) -> None:
        """
        Initialises the CameraSource for the given device.

        Args:
            device (int | str): OpenCV device index or stream URL.
        """
        self.device = device
        self.cap: cv2.VideoCapture | None = None
        self._geometry = VideoGeometry()
        self._latest: np.ndarray | None = None
        self._listeners: list[DimensionsListener] = []
        self._logger = logging.getLogger(__name__)

    @property
    def geometry(self) -> VideoGeometry:
        return self._geometry

    @property
    def ready(self) -> bool:
        return self._geometry.is_ready

    @property
    def latest_sample(self) -> np.ndarray | None:
        return self._latest

    def add_dimensions_listener(self, listener: DimensionsListener) -> None:
        self._listeners.append(listener)

    def acquire(self) -> None:
        """
        Open the device and read a first frame to learn its dimensions.

        Raises:
            SourceUnavailable: If the device cannot be opened or yields no
                frame. The message is meant to be shown to the user as is.
        """
        self.cap = cv2.VideoCapture(self.device)
        self.cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)
        if not self.cap.isOpened():
            self.release()
            raise SourceUnavailable()

        if self.read_sample() is None:
            self.release()
            raise SourceUnavailable(
                f"Camera {self.device!r} opened but delivered no frames.",
            )
        self._logger.info(
            'Camera %r ready at %dx%d',
            self.device,
            self._geometry.width,
            self._geometry.height,
        )

    def read_sample(self) -> np.ndarray | None:
        """
        Read the current frame from the device.

        Returns:
            np.ndarray | None: The BGR frame, or ``None`` if the device is not
                open or the read failed. The last good frame stays available
                through :attr:`latest_sample`.
        """
        if self.cap is None:
            return None
        ret, frame = self.cap.read()
        if not ret or frame is None:
            self._logger.debug('Failed to read frame from %r', self.device)
            return None
        self._latest = frame
        height, width = frame.shape[:2]
        self._update_geometry(width, height)
        return frame

    def _update_geometry(self, width: int, height: int) -> None:
        if not width or not height:
            return
        if (width, height) == (self._geometry.width, self._geometry.height):
            return
        self._geometry = VideoGeometry(width, height)
        for listener in self._listeners:
            listener(self._geometry)

    def release(self) -> None:
        """
        Releases the capture device.
        """
        if self.cap is not None:
            self.cap.release()
            self.cap = None
        self._latest = None
        self._geometry = VideoGeometry()
