from __future__ import annotations

import argparse
import asyncio
import signal
import sys

from recognition_overlay.config import Settings
from recognition_overlay.drawing_manager import DrawingManager
from recognition_overlay.errors import SourceUnavailable
from recognition_overlay.frame_encoder import FrameEncoder
from recognition_overlay.monitor_logger import LoggerConfig
from recognition_overlay.net.recognition_client import RecognitionClient
from recognition_overlay.overlay_viewer import HeadlessReporter
from recognition_overlay.overlay_viewer import OverlayViewer
from recognition_overlay.poll_loop import PollLoopController
from recognition_overlay.video_source import CameraSource


class LiveRecognitionApp:
    """
    Wires the camera, encoder, recognition client and poll loop together
    and runs them with either a display window or a headless reporter.
    """

    def __init__(
        self,
        settings: Settings,
        headless: bool = False,
        autostart: bool = False,
    ) -> None:
        """
        Build every component from the resolved settings.

        Args:
            settings (Settings): Configuration resolved at startup.
            headless (bool): Log detections instead of opening a window.
            autostart (bool): Start scanning as soon as the camera is ready.
        """
        self.settings = settings
        self.headless = headless
        self.autostart = autostart
        self.logger = LoggerConfig(
            log_file=settings.log_file,
            log_dir=settings.log_dir,
        ).get_logger()

        self.source = CameraSource(settings.camera_index)
        self.encoder = FrameEncoder(
            max_width=settings.max_frame_width,
            max_height=settings.max_frame_height,
            quality=settings.jpeg_quality,
            # The viewer reads the camera; captures reuse its latest frame
            pull_frames=headless,
        )
        self.client = RecognitionClient(
            settings.recognition_api_url,
            timeout=settings.recognition_timeout,
        )
        self.controller = PollLoopController(
            self.source,
            self.encoder,
            self.client,
            poll_delay=settings.poll_delay,
        )

    async def run(self) -> int:
        """
        Acquire the camera and run until the user quits.

        Returns:
            int: Process exit code.
        """
        try:
            try:
                self.source.acquire()
            except SourceUnavailable as e:
                self.controller.set_feedback(str(e))
                self.logger.error('%s', e)
                return 1

            if self.autostart and not self.controller.start():
                self.logger.error('%s', self.controller.feedback)
                if self.headless:
                    return 1

            if self.headless:
                await self._run_headless()
            else:
                viewer = OverlayViewer(
                    self.source,
                    self.controller,
                    DrawingManager(self.settings.matched_codes),
                )
                await viewer.display()
            return 0
        finally:
            await self.controller.close()
            self.source.release()

    async def _run_headless(self) -> None:
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
            except NotImplementedError:
                # Windows event loops lack signal handlers; Ctrl+C still
                # interrupts asyncio.run
                pass
        self.logger.info('Running headless; press Ctrl+C to stop.')
        await HeadlessReporter(self.controller).run(stop_event)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            'Overlay live face recognition results on a camera feed.'
        ),
    )
    parser.add_argument(
        '--api-url',
        type=str,
        default=None,
        help='Recognition endpoint (overrides RECOGNITION_API_URL)',
    )
    parser.add_argument(
        '--camera',
        type=int,
        default=None,
        help='OpenCV camera index (overrides CAMERA_INDEX)',
    )
    parser.add_argument(
        '--poll-delay-ms',
        type=int,
        default=None,
        help='Delay between cycles in ms (overrides POLL_DELAY_MS)',
    )
    parser.add_argument(
        '--headless',
        action='store_true',
        help='Log detections instead of opening a window',
    )
    parser.add_argument(
        '--autostart',
        action='store_true',
        help='Start scanning immediately (implied by --headless)',
    )
    return parser.parse_args(argv)


def build_settings(args: argparse.Namespace) -> Settings:
    """
    Resolve settings from the environment with command-line overrides.

    Args:
        args (argparse.Namespace): Parsed command-line arguments.

    Returns:
        Settings: The resolved configuration.
    """
    overrides = {
        'recognition_api_url': args.api_url,
        'camera_index': args.camera,
        'poll_delay_ms': args.poll_delay_ms,
    }
    return Settings(**{k: v for k, v in overrides.items() if v is not None})


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    app = LiveRecognitionApp(
        build_settings(args),
        headless=args.headless,
        autostart=args.autostart or args.headless,
    )
    return asyncio.run(app.run())


if __name__ == '__main__':
    sys.exit(main())
