from __future__ import annotations

import logging
import math
from typing import Protocol

import cv2
import numpy as np

from recognition_overlay.errors import EncodingUnavailable
from recognition_overlay.errors import NotReady
from recognition_overlay.schemas import EncodedFrame
from recognition_overlay.schemas import VideoGeometry


class FrameSource(Protocol):
    @property
    def geometry(self) -> VideoGeometry: ...

    @property
    def latest_sample(self) -> np.ndarray | None: ...

    def read_sample(self) -> np.ndarray | None: ...


def compute_target_size(
    native_width: int,
    native_height: int,
    max_width: int,
    max_height: int,
) -> tuple[int, int]:
    """
    Fit the native size inside the bounds without ever upscaling.

    Args:
        native_width (int): Source width in pixels (> 0).
        native_height (int): Source height in pixels (> 0).
        max_width (int): Maximum encoded width.
        max_height (int): Maximum encoded height.

    Returns:
        tuple[int, int]: ``(width, height)`` rounded half-up, at least 1.
    """
    scale = min(1.0, max_width / native_width, max_height / native_height)
    width = max(1, math.floor(native_width * scale + 0.5))
    height = max(1, math.floor(native_height * scale + 0.5))
    return width, height


class FrameEncoder:
    """
    Turns the live sample of a video source into a bounded-size JPEG.

    The off-screen raster is kept between cycles and only reallocated when
    the target size (or pixel layout) changes.
    """

    def __init__(
        self,
        max_width: int = 640,
        max_height: int = 640,
        quality: int = 85,
        pull_frames: bool = True,
    ) -> None:
        """
        Initialise the encoder.

        Args:
            max_width (int): Maximum encoded width.
            max_height (int): Maximum encoded height.
            quality (int): JPEG quality factor (1-100).
            pull_frames (bool): Read a fresh frame from the source on each
                capture. Set to ``False`` when a viewer already reads the
                device, so captures reuse the frame on screen instead of
                consuming one the viewer never shows.
        """
        self.max_width = max_width
        self.max_height = max_height
        self.quality = quality
        self.pull_frames = pull_frames
        self._surface: np.ndarray | None = None
        self._logger = logging.getLogger(__name__)

    @property
    def surface(self) -> np.ndarray | None:
        return self._surface

    def capture(self, source: FrameSource) -> EncodedFrame:
        """
        Encode the source's current sample.

        Args:
            source (FrameSource): The live video source.

        Returns:
            EncodedFrame: The JPEG payload and the scaled dimensions used.

        Raises:
            NotReady: The source has no dimensions or no sample yet.
            EncodingUnavailable: Resizing or JPEG serialisation failed.
        """
        sample = self._take_sample(source)
        geometry = source.geometry
        if sample is None or not geometry.is_ready:
            raise NotReady()

        target_width, target_height = compute_target_size(
            geometry.width,
            geometry.height,
            self.max_width,
            self.max_height,
        )
        raster = self._render(sample, target_width, target_height)

        try:
            success, buffer = cv2.imencode(
                '.jpg', raster, [cv2.IMWRITE_JPEG_QUALITY, self.quality],
            )
        except cv2.error as e:
            self._logger.error('JPEG encoding raised: %s', e)
            raise EncodingUnavailable() from e
        if not success:
            self._logger.error('OpenCV imencode returned False for jpeg')
            raise EncodingUnavailable()

        return EncodedFrame(
            image_bytes=buffer.tobytes(),
            width=target_width,
            height=target_height,
        )

    def _take_sample(self, source: FrameSource) -> np.ndarray | None:
        if not self.pull_frames:
            sample = source.latest_sample
            if sample is not None:
                return sample
            return source.read_sample()
        sample = source.read_sample()
        if sample is None:
            sample = source.latest_sample
        return sample

    def _render(
        self, sample: np.ndarray, width: int, height: int,
    ) -> np.ndarray:
        """Draw the sample into the reusable raster at the target size."""
        shape = (height, width) + sample.shape[2:]
        if (
            self._surface is None
            or self._surface.shape != shape
            or self._surface.dtype != sample.dtype
        ):
            self._surface = np.empty(shape, dtype=sample.dtype)
        try:
            cv2.resize(
                sample,
                (width, height),
                dst=self._surface,
                interpolation=cv2.INTER_AREA,
            )
        except cv2.error as e:
            self._logger.error('Unable to render frame: %s', e)
            self._surface = None
            raise EncodingUnavailable('Canvas context is unavailable.') from e
        return self._surface

    def release(self) -> None:
        """Drop the off-screen raster."""
        self._surface = None
