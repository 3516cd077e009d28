"""Single-flight poll loop that drives capture, recognition and overlays.

The loop runs as one asyncio task. Each cycle captures a frame, submits it
and applies the outcome; only once that cycle has settled does the task wait
``poll_delay`` and start the next one, so slow responses stretch the polling
interval instead of piling up requests.

Stopping is a synchronous call: it triggers the outstanding request's cancel
token and sets the run's stop event, which both ends the loop and wakes a
pending delay immediately. A later start first waits for the previous task
to finish so its last request is settled before a new capture begins.
"""
from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime
from typing import Protocol

from recognition_overlay.errors import Cancelled
from recognition_overlay.errors import CaptureError
from recognition_overlay.errors import ConfigurationMissing
from recognition_overlay.errors import RecognitionError
from recognition_overlay.errors import SourceNotReady
from recognition_overlay.errors import StartError
from recognition_overlay.frame_encoder import FrameEncoder
from recognition_overlay.frame_encoder import FrameSource
from recognition_overlay.net.recognition_client import CancelToken
from recognition_overlay.net.recognition_client import RecognitionClient
from recognition_overlay.overlay_projector import project
from recognition_overlay.schemas import Aborted
from recognition_overlay.schemas import CycleOutcome
from recognition_overlay.schemas import DetectionBatch
from recognition_overlay.schemas import Failure
from recognition_overlay.schemas import LoopState
from recognition_overlay.schemas import OverlayBox
from recognition_overlay.schemas import StatusSnapshot
from recognition_overlay.schemas import Success
from recognition_overlay.schemas import VideoGeometry
from recognition_overlay.video_source import DimensionsListener

GENERIC_FAILURE = 'Scan failed. Please try again.'


class LiveSource(FrameSource, Protocol):
    @property
    def ready(self) -> bool: ...

    def add_dimensions_listener(
        self, listener: DimensionsListener,
    ) -> None: ...


class PollLoopController:
    """
    Owns the idle/running state machine and the capture→submit→apply cycle.
    """

    def __init__(
        self,
        source: LiveSource,
        encoder: FrameEncoder,
        client: RecognitionClient,
        poll_delay: float = 0.35,
    ) -> None:
        """
        Initialise the controller in the idle state.

        Args:
            source (LiveSource): The live video source.
            encoder (FrameEncoder): Produces an EncodedFrame per cycle.
            client (RecognitionClient): Submits frames; its ``api_url`` must
                be non-empty for scanning to start.
            poll_delay (float): Seconds between the end of one cycle and the
                start of the next.
        """
        self.source = source
        self.encoder = encoder
        self.client = client
        self.poll_delay = poll_delay

        self._running: bool = False
        self._processing: bool = False
        self._feedback: str = ''
        self._batch: DetectionBatch = ()
        self._geometry: VideoGeometry = source.geometry
        self._latency_ms: float | None = None
        self._last_updated: datetime | None = None

        # Handles owned by the current run; released by stop()
        self._cancel_token: CancelToken | None = None
        self._stop_event: asyncio.Event | None = None
        self._task: asyncio.Task | None = None

        self._logger = logging.getLogger(__name__)
        source.add_dimensions_listener(self._on_dimensions_changed)

    @property
    def running(self) -> bool:
        return self._running

    @property
    def processing(self) -> bool:
        return self._processing

    @property
    def feedback(self) -> str:
        return self._feedback

    @property
    def batch(self) -> DetectionBatch:
        return self._batch

    @property
    def geometry(self) -> VideoGeometry:
        return self._geometry

    @property
    def latency_ms(self) -> float | None:
        return self._latency_ms

    @property
    def last_updated(self) -> datetime | None:
        return self._last_updated

    @property
    def state(self) -> LoopState:
        if not self._running:
            return LoopState.IDLE
        if self._processing:
            return LoopState.CAPTURING
        return LoopState.LISTENING

    @property
    def overlays(self) -> list[OverlayBox]:
        """Overlays for the current batch against the current geometry."""
        return project(self._batch, self._geometry)

    def snapshot(self) -> StatusSnapshot:
        return StatusSnapshot(
            state=self.state,
            processing=self._processing,
            feedback=self._feedback,
            latency_ms=self._latency_ms,
            last_updated=self._last_updated,
            geometry=self._geometry,
            detections=self._batch,
            overlays=tuple(self.overlays),
        )

    def set_feedback(self, message: str) -> None:
        """Show a message raised outside the loop (e.g. camera access)."""
        self._feedback = message

    def toggle(self) -> bool:
        """
        Start scanning when idle, stop it when running.

        Returns:
            bool: Whether the loop is running afterwards.
        """
        if self._running:
            self.stop()
            return False
        return self.start()

    def start(self) -> bool:
        """
        Leave the idle state and launch the loop task.

        Must be called from within a running event loop. Preconditions are
        checked here, not inside the loop; a failed check leaves the
        controller idle and its message in :attr:`feedback`.

        Returns:
            bool: ``True`` if the loop is running.
        """
        if self._running:
            return True
        try:
            self._check_can_start()
        except StartError as e:
            self._logger.warning('Cannot start scanning: %s', e)
            self._feedback = str(e)
            return False

        self._feedback = ''
        self._running = True
        stop_event = asyncio.Event()
        self._stop_event = stop_event
        self._task = asyncio.get_running_loop().create_task(
            self._run(stop_event, self._task),
        )
        self._logger.info('Scanning started')
        return True

    def stop(self) -> None:
        """
        Return to idle in a single step.

        Aborts the outstanding request, wakes and clears the pending delay
        and resets the processing flag. Safe to call when already idle.
        """
        if self._stop_event is not None:
            self._stop_event.set()
            self._stop_event = None
        if self._cancel_token is not None:
            self._cancel_token.cancel()
            self._cancel_token = None
        was_running = self._running
        self._running = False
        self._processing = False
        if was_running:
            self._logger.info('Scanning stopped')

    async def close(self) -> None:
        """
        Stop the loop, wait for its task to settle and release the raster.
        """
        self.stop()
        task, self._task = self._task, None
        if task is not None and not task.done():
            await asyncio.wait({task})
        self.encoder.release()

    def _check_can_start(self) -> None:
        if not self.client.api_url or not self.client.api_url.strip():
            raise ConfigurationMissing()
        if not self.source.ready:
            raise SourceNotReady()

    async def run_cycle(self) -> CycleOutcome:
        """
        Capture, submit and classify one frame.

        Returns:
            CycleOutcome: ``Success`` with the batch, latency and encoded
                geometry; ``Aborted`` if the request was cancelled;
                ``Failure`` with a user-facing message otherwise.
        """
        self._processing = True
        try:
            frame = self.encoder.capture(self.source)
        except CaptureError as e:
            return Failure(str(e))

        started = time.perf_counter()
        token = CancelToken()
        self._cancel_token = token
        try:
            batch = await self.client.submit(frame, token)
        except Cancelled:
            return Aborted()
        except RecognitionError as e:
            return Failure(str(e))
        finally:
            if self._cancel_token is token:
                self._cancel_token = None

        latency_ms = (time.perf_counter() - started) * 1000
        return Success(batch, latency_ms, frame.geometry)

    def apply(self, outcome: CycleOutcome) -> None:
        """
        Fold a cycle outcome into the visible state.

        Args:
            outcome (CycleOutcome): The result of :meth:`run_cycle`.
        """
        self._processing = False
        if isinstance(outcome, Success):
            self._geometry = outcome.geometry
            self._batch = outcome.batch
            self._latency_ms = outcome.latency_ms
            self._last_updated = datetime.now()
            self._feedback = ''
            self._logger.debug(
                'Cycle done in %.0f ms with %d detection(s)',
                outcome.latency_ms,
                len(outcome.batch),
            )
        elif isinstance(outcome, Failure):
            self._feedback = outcome.message
            self._logger.warning('Cycle failed: %s', outcome.message)

    async def _run(
        self,
        stop_event: asyncio.Event,
        previous: asyncio.Task | None,
    ) -> None:
        if previous is not None and not previous.done():
            await asyncio.wait({previous})

        while not stop_event.is_set():
            try:
                outcome = await self.run_cycle()
            except Exception:
                self._logger.exception('Unexpected error during scan cycle')
                outcome = Failure(GENERIC_FAILURE)
            if stop_event.is_set():
                # A result that settles after stop() is dropped
                break
            self.apply(outcome)
            if not await self._wait_for_next_cycle(stop_event):
                break

    async def _wait_for_next_cycle(self, stop_event: asyncio.Event) -> bool:
        """
        Sleep ``poll_delay`` unless the run is stopped first.

        Returns:
            bool: ``True`` if the next cycle should run.
        """
        if stop_event.is_set():
            return False
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=self.poll_delay)
        except asyncio.TimeoutError:
            return True
        return False

    def _on_dimensions_changed(self, geometry: VideoGeometry) -> None:
        self._geometry = geometry
