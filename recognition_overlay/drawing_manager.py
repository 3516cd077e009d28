from __future__ import annotations

from collections.abc import Collection
from collections.abc import Iterable
from datetime import datetime

import cv2
import numpy as np
from PIL import Image
from PIL import ImageDraw
from PIL import ImageFont

from recognition_overlay.overlay_projector import MATCHED
from recognition_overlay.overlay_projector import status_style
from recognition_overlay.schemas import Detection
from recognition_overlay.schemas import OverlayBox
from recognition_overlay.schemas import StatusSnapshot

PLACEHOLDER = '—'

# RGB colours used on the PIL canvas
STYLE_COLOURS: dict[str, tuple[int, int, int]] = {
    MATCHED: (16, 185, 129),
    'unknown': (14, 165, 233),
}
LIVE_COLOUR: tuple[int, int, int] = (74, 222, 128)
IDLE_COLOUR: tuple[int, int, int] = (100, 116, 139)
FEEDBACK_COLOUR: tuple[int, int, int] = (239, 68, 68)
PANEL_COLOUR: tuple[int, int, int, int] = (0, 0, 0, 150)
TEXT_COLOUR: tuple[int, int, int] = (255, 255, 255)

# The bundled default font only covers latin-1
_REPLACEMENTS: dict[str, str] = {'•': '|', '—': '-', '…': '...'}


def printable(text: str) -> str:
    for char, replacement in _REPLACEMENTS.items():
        text = text.replace(char, replacement)
    return text.encode('latin-1', 'replace').decode('latin-1')


def format_latency(latency_ms: float | None) -> str:
    if not latency_ms:
        return PLACEHOLDER
    return f"{latency_ms:.0f} ms"


def format_last_updated(last_updated: datetime | None) -> str:
    if last_updated is None:
        return PLACEHOLDER
    return last_updated.strftime('%H:%M:%S')


def format_log_line(detection: Detection) -> str:
    """
    Describe one detection for the recognition log.

    Args:
        detection (Detection): The detection to describe.

    Returns:
        str: e.g. ``'Alice • ID #7 • Score: 0.3125 • Status 200'``.
    """
    label = detection.label or 'Unknown'
    user_id = PLACEHOLDER if detection.user_id is None else detection.user_id
    score = (
        PLACEHOLDER if detection.distance is None
        else f"{detection.distance:.4f}"
    )
    status = (
        PLACEHOLDER if detection.status_code is None
        else detection.status_code
    )
    return f"{label} • ID #{user_id} • Score: {score} • Status {status}"


def format_recognition_log(detections: Iterable[Detection]) -> list[str]:
    """
    Build the recognition log: a count header followed by one line each.

    Args:
        detections (Iterable[Detection]): The current batch.

    Returns:
        list[str]: Log lines; a hint line when the batch is empty.
    """
    lines = [format_log_line(d) for d in detections]
    if not lines:
        return [
            '0 detected',
            'Awaiting detections. Start the stream to populate this list.',
        ]
    return [f"{len(lines)} detected", *lines]


class DrawingManager:
    """
    Draws overlay boxes, the status panel and the recognition log onto
    video frames.
    """

    # Class variable for caching default font
    default_font: ImageFont.ImageFont | ImageFont.FreeTypeFont | None = None

    def __init__(self, matched_codes: Collection[int] = (200,)) -> None:
        """
        Initialise the DrawingManager.

        Args:
            matched_codes (Collection[int]): Status codes drawn in the
                "matched" colour; everything else uses the "unknown" colour.
        """
        self.matched_codes = matched_codes
        if DrawingManager.default_font is None:
            DrawingManager.default_font = ImageFont.load_default()
        self.font = DrawingManager.default_font

    def box_colour(self, status_code: int | None) -> tuple[int, int, int]:
        return STYLE_COLOURS[status_style(status_code, self.matched_codes)]

    def draw_frame(
        self, frame: np.ndarray, snapshot: StatusSnapshot,
    ) -> np.ndarray:
        """
        Render a complete display frame.

        Args:
            frame (np.ndarray): BGR video frame; left untouched.
            snapshot (StatusSnapshot): Current loop status.

        Returns:
            np.ndarray: A new BGR frame with everything drawn on it.
        """
        pil_image = Image.fromarray(
            cv2.cvtColor(frame, cv2.COLOR_BGR2RGB),
        ).convert('RGBA')
        panel = Image.new('RGBA', pil_image.size, (0, 0, 0, 0))
        draw = ImageDraw.Draw(panel)

        self._draw_overlays(draw, pil_image.size, snapshot.overlays)
        self._draw_badge(draw, snapshot.running)
        self._draw_status(draw, pil_image.size, snapshot)
        self._draw_log(
            draw,
            pil_image.size,
            [printable(line) for line in format_recognition_log(
                snapshot.detections,
            )],
        )

        pil_image = Image.alpha_composite(pil_image, panel)
        return cv2.cvtColor(
            np.array(pil_image.convert('RGB')), cv2.COLOR_RGB2BGR,
        )

    def overlay_pixels(
        self, overlay: OverlayBox, size: tuple[int, int],
    ) -> tuple[int, int, int, int]:
        """
        Convert an overlay's relative rect into pixel corners.

        Args:
            overlay (OverlayBox): The overlay to place.
            size (tuple[int, int]): Target ``(width, height)``.

        Returns:
            tuple[int, int, int, int]: ``(x1, y1, x2, y2)``.
        """
        width, height = size
        rect = overlay.rect
        return (
            int(rect.left * width),
            int(rect.top * height),
            int((rect.left + rect.width) * width),
            int((rect.top + rect.height) * height),
        )

    def _draw_overlays(
        self,
        draw: ImageDraw.ImageDraw,
        size: tuple[int, int],
        overlays: Iterable[OverlayBox],
    ) -> None:
        for overlay in overlays:
            x1, y1, x2, y2 = self.overlay_pixels(overlay, size)
            colour = self.box_colour(overlay.status_code)
            draw.rectangle((x1, y1, x2, y2), outline=colour, width=2)

            text = printable(overlay.label or 'Unknown')
            text_bbox = draw.textbbox((x1 + 4, y1 + 4), text, font=self.font)
            draw.rectangle(
                (
                    text_bbox[0] - 2, text_bbox[1] - 2,
                    text_bbox[2] + 2, text_bbox[3] + 2,
                ),
                fill=colour + (200,),
            )
            draw.text(
                (x1 + 4, y1 + 4), text, fill=TEXT_COLOUR, font=self.font,
            )

    def _draw_badge(self, draw: ImageDraw.ImageDraw, running: bool) -> None:
        text = 'LIVE' if running else 'IDLE'
        colour = LIVE_COLOUR if running else IDLE_COLOUR
        text_bbox = draw.textbbox((28, 14), text, font=self.font)
        draw.rounded_rectangle(
            (10, 8, text_bbox[2] + 10, text_bbox[3] + 6),
            radius=8,
            fill=PANEL_COLOUR,
        )
        draw.ellipse((16, 16, 24, 24), fill=colour)
        draw.text((28, 14), text, fill=TEXT_COLOUR, font=self.font)

    def _draw_status(
        self,
        draw: ImageDraw.ImageDraw,
        size: tuple[int, int],
        snapshot: StatusSnapshot,
    ) -> None:
        _, height = size
        lines = [
            f"Status: {snapshot.status_text}",
            f"Latency: {format_latency(snapshot.latency_ms)}",
            f"Last update: {format_last_updated(snapshot.last_updated)}",
        ]
        y = height - 16 * (len(lines) + (1 if snapshot.feedback else 0)) - 10
        for line in lines:
            draw.text(
                (10, y), printable(line), fill=TEXT_COLOUR, font=self.font,
            )
            y += 16
        if snapshot.feedback:
            draw.text(
                (10, y), printable(snapshot.feedback), fill=FEEDBACK_COLOUR,
                font=self.font,
            )

    def _draw_log(
        self,
        draw: ImageDraw.ImageDraw,
        size: tuple[int, int],
        lines: list[str],
    ) -> None:
        width, _ = size
        widest = max(draw.textlength(line, font=self.font) for line in lines)
        x = max(10, int(width - widest - 20))
        draw.rectangle(
            (x - 6, 8, width - 8, 14 + 16 * len(lines)),
            fill=PANEL_COLOUR,
        )
        y = 12
        for line in lines:
            draw.text((x, y), line, fill=TEXT_COLOUR, font=self.font)
            y += 16
