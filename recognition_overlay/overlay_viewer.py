from __future__ import annotations

import asyncio
import logging
from datetime import datetime

import cv2

from recognition_overlay.drawing_manager import DrawingManager
from recognition_overlay.drawing_manager import format_latency
from recognition_overlay.drawing_manager import format_recognition_log
from recognition_overlay.poll_loop import PollLoopController
from recognition_overlay.video_source import CameraSource

TOGGLE_KEY = ord(' ')
QUIT_KEY = ord('q')


class OverlayViewer:
    """
    Shows the live camera feed with recognition overlays in an OpenCV
    window. Space toggles scanning, ``q`` closes the window.
    """

    def __init__(
        self,
        source: CameraSource,
        controller: PollLoopController,
        drawing_manager: DrawingManager,
        window_name: str = 'Live Recognition',
        frame_interval: float = 1 / 30,
    ) -> None:
        """
        Initialise the viewer.

        Args:
            source (CameraSource): The acquired camera.
            controller (PollLoopController): Provides status snapshots and
                receives toggle requests.
            drawing_manager (DrawingManager): Renders snapshots onto frames.
            window_name (str): Title of the OpenCV window.
            frame_interval (float): Pause between displayed frames; yields
                the event loop to the poll task.
        """
        self.source = source
        self.controller = controller
        self.drawing_manager = drawing_manager
        self.window_name = window_name
        self.frame_interval = frame_interval
        self._logger = logging.getLogger(__name__)

    def handle_key(self, key: int) -> bool:
        """
        React to a key press.

        Args:
            key (int): Key code from ``cv2.waitKey`` (masked to 8 bits).

        Returns:
            bool: ``False`` when the viewer should close.
        """
        if key == QUIT_KEY:
            return False
        if key == TOGGLE_KEY:
            self.controller.toggle()
        return True

    async def display(self) -> None:
        """
        Display frames until ``q`` is pressed.
        """
        try:
            while True:
                frame = self.source.read_sample()
                if frame is None:
                    frame = self.source.latest_sample
                if frame is not None:
                    canvas = self.drawing_manager.draw_frame(
                        frame, self.controller.snapshot(),
                    )
                    cv2.imshow(self.window_name, canvas)

                if not self.handle_key(cv2.waitKey(1) & 0xFF):
                    break
                await asyncio.sleep(self.frame_interval)
        finally:
            self.release_resources()

    def release_resources(self) -> None:
        cv2.destroyWindow(self.window_name)


class HeadlessReporter:
    """
    Logs the recognition log whenever the poll loop applies a new batch or
    its feedback changes. Used when no display is available.
    """

    def __init__(
        self,
        controller: PollLoopController,
        interval: float = 0.1,
    ) -> None:
        self.controller = controller
        self.interval = interval
        self._logger = logging.getLogger(__name__)
        self._last_updated: datetime | None = None
        self._last_feedback: str = ''

    def report(self) -> list[str]:
        """
        Emit log lines for anything new since the previous call.

        Returns:
            list[str]: The lines that were logged.
        """
        snapshot = self.controller.snapshot()
        lines: list[str] = []

        if snapshot.feedback and snapshot.feedback != self._last_feedback:
            lines.append(f"Feedback: {snapshot.feedback}")
        self._last_feedback = snapshot.feedback

        if (
            snapshot.last_updated is not None
            and snapshot.last_updated != self._last_updated
        ):
            self._last_updated = snapshot.last_updated
            lines.append(
                f"Latency: {format_latency(snapshot.latency_ms)}",
            )
            lines.extend(format_recognition_log(snapshot.detections))

        for line in lines:
            self._logger.info(line)
        return lines

    async def run(self, stop_event: asyncio.Event) -> None:
        """
        Report until ``stop_event`` is set.

        Args:
            stop_event (asyncio.Event): Ends reporting when set.
        """
        while not stop_event.is_set():
            self.report()
            try:
                await asyncio.wait_for(
                    stop_event.wait(), timeout=self.interval,
                )
            except asyncio.TimeoutError:
                continue
