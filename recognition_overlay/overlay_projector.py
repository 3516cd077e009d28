from __future__ import annotations

import logging
from collections.abc import Collection
from collections.abc import Iterable

from recognition_overlay.schemas import Detection
from recognition_overlay.schemas import OverlayBox
from recognition_overlay.schemas import RelativeRect
from recognition_overlay.schemas import VideoGeometry

logger = logging.getLogger(__name__)

MATCHED = 'matched'
UNKNOWN = 'unknown'


def project(
    batch: Iterable[Detection],
    geometry: VideoGeometry,
) -> list[OverlayBox]:
    """
    Map absolute detection boxes onto the current video geometry.

    Args:
        batch (Iterable[Detection]): Detections in service order.
        geometry (VideoGeometry): The geometry boxes are expressed against.

    Returns:
        list[OverlayBox]: One overlay per detection that has a box, in
            order. Empty when the geometry is not ready.
    """
    if not geometry.is_ready:
        return []

    overlays: list[OverlayBox] = []
    for detection in batch:
        box = detection.box
        if box is None:
            logger.debug('Detection %s has no box; skipped', detection.id)
            continue
        overlays.append(
            OverlayBox(
                id=detection.id,
                label=detection.label,
                status_code=detection.status_code,
                distance=detection.distance,
                rect=RelativeRect(
                    left=box.x_min / geometry.width,
                    top=box.y_min / geometry.height,
                    width=(box.x_max - box.x_min) / geometry.width,
                    height=(box.y_max - box.y_min) / geometry.height,
                ),
            ),
        )
    return overlays


def status_style(
    status_code: int | None,
    matched_codes: Collection[int] = (200,),
) -> str:
    """
    Classify a detection status code for display.

    Args:
        status_code (int | None): The detection's ``status_code``.
        matched_codes (Collection[int]): Codes that denote a confident
            match; configured through ``MATCHED_STATUS_CODES``.

    Returns:
        str: ``'matched'`` or ``'unknown'``.
    """
    if status_code is not None and status_code in matched_codes:
        return MATCHED
    return UNKNOWN
