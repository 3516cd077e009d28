"""Data model shared by the encoder, client, poll loop and projector.

Internal values are frozen dataclasses so a cycle can hand them on without
copying. The recognition service's wire format is described by pydantic
models and converted into internal values by :func:`normalise_detection`,
which is the only place that tolerates partial server data.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from dataclasses import field
from datetime import datetime
from enum import Enum
from typing import Union

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import field_validator
from pydantic import ValidationError
from pydantic import ValidatorFunctionWrapHandler

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VideoGeometry:
    """Pixel size of the live source; ``(0, 0)`` until it reports one."""

    width: int = 0
    height: int = 0

    @property
    def is_ready(self) -> bool:
        return self.width > 0 and self.height > 0


@dataclass(frozen=True)
class EncodedFrame:
    """
    A compressed still produced by one cycle.

    Attributes:
        image_bytes (bytes): JPEG payload.
        width (int): Encoded (scaled) width in pixels.
        height (int): Encoded (scaled) height in pixels.
    """

    image_bytes: bytes = field(repr=False)
    width: int
    height: int

    @property
    def geometry(self) -> VideoGeometry:
        return VideoGeometry(self.width, self.height)


@dataclass(frozen=True)
class DetectionBox:
    """Absolute box in the coordinate space of the frame that produced it."""

    x_min: float
    y_min: float
    x_max: float
    y_max: float

    @property
    def is_valid(self) -> bool:
        return self.x_max > self.x_min and self.y_max > self.y_min


@dataclass(frozen=True)
class Detection:
    """A single recognised (or unrecognised) face, fully defaulted."""

    id: str | None
    box: DetectionBox | None
    label: str | None = None
    user_id: str | int | None = None
    status_code: int | None = None
    distance: float | None = None


DetectionBatch = tuple[Detection, ...]


@dataclass(frozen=True)
class RelativeRect:
    """Rectangle expressed as fractions of the current video geometry."""

    left: float
    top: float
    width: float
    height: float

    def as_percentages(self) -> dict[str, str]:
        """
        Render the rectangle as CSS-like percentage strings.

        Returns:
            dict[str, str]: ``left``, ``top``, ``width`` and ``height`` keys,
                e.g. ``{'left': '10%', ...}``.
        """
        return {
            'left': f"{self.left * 100:g}%",
            'top': f"{self.top * 100:g}%",
            'width': f"{self.width * 100:g}%",
            'height': f"{self.height * 100:g}%",
        }


@dataclass(frozen=True)
class OverlayBox:
    id: str | None
    label: str | None
    status_code: int | None
    distance: float | None
    rect: RelativeRect


class LoopState(Enum):
    IDLE = 'idle'
    LISTENING = 'listening'
    CAPTURING = 'capturing'

    @property
    def status_text(self) -> str:
        return _STATUS_TEXT[self]


_STATUS_TEXT: dict[LoopState, str] = {
    LoopState.IDLE: 'Stopped',
    LoopState.LISTENING: 'Listening',
    LoopState.CAPTURING: 'Sending frame…',
}


@dataclass(frozen=True)
class Success:
    batch: DetectionBatch
    latency_ms: float
    geometry: VideoGeometry


@dataclass(frozen=True)
class Aborted:
    pass


@dataclass(frozen=True)
class Failure:
    message: str


CycleOutcome = Union[Success, Aborted, Failure]


@dataclass(frozen=True)
class StatusSnapshot:
    """Everything the rendering collaborator needs for one displayed frame."""

    state: LoopState
    processing: bool
    feedback: str
    latency_ms: float | None
    last_updated: datetime | None
    geometry: VideoGeometry
    detections: DetectionBatch
    overlays: tuple[OverlayBox, ...]

    @property
    def running(self) -> bool:
        return self.state is not LoopState.IDLE

    @property
    def status_text(self) -> str:
        return self.state.status_text


class BBoxPayload(BaseModel):
    model_config = ConfigDict(extra='ignore')

    x_min: float
    y_min: float
    x_max: float
    y_max: float


def _none_if_invalid(
    value: object, handler: ValidatorFunctionWrapHandler,
) -> object:
    # Optional metadata of the wrong type is dropped, not the whole element
    try:
        return handler(value)
    except ValidationError:
        logger.debug('Ignoring invalid optional field value %r', value)
        return None


class EntityPayload(BaseModel):
    model_config = ConfigDict(extra='ignore')

    label: str | None = None
    user_id: str | int | None = None

    @field_validator('label', mode='wrap')
    @classmethod
    def _coerce_label(
        cls, value: object, handler: ValidatorFunctionWrapHandler,
    ) -> object:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            value = str(value)
        return _none_if_invalid(value, handler)

    @field_validator('user_id', mode='wrap')
    @classmethod
    def _lenient_user_id(
        cls, value: object, handler: ValidatorFunctionWrapHandler,
    ) -> object:
        return _none_if_invalid(value, handler)


class DetectionPayload(BaseModel):
    """One element of the service's ``data`` array."""

    model_config = ConfigDict(extra='ignore')

    id: str | int | None = None
    bbox: BBoxPayload | None = None
    entity: EntityPayload | None = None
    status_code: int | None = None
    distance: float | None = None

    @field_validator('id', 'entity', 'status_code', 'distance', mode='wrap')
    @classmethod
    def _lenient_optional(
        cls, value: object, handler: ValidatorFunctionWrapHandler,
    ) -> object:
        return _none_if_invalid(value, handler)


def _format_coord(value: float) -> str:
    # 64.0 -> '64', 64.5 -> '64.5'
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def derive_detection_id(box: DetectionBox) -> str:
    """
    Build the fallback key used when the service omits an ``id``.

    Args:
        box (DetectionBox): The detection's box.

    Returns:
        str: ``"<x_min>-<y_min>"``.
    """
    return f"{_format_coord(box.x_min)}-{_format_coord(box.y_min)}"


def normalise_detection(item: object) -> Detection | None:
    """
    Convert one raw ``data`` element into a fully-defaulted Detection.

    Elements that are not objects or carry an unparseable ``bbox`` are
    dropped. Optional metadata of the wrong type becomes ``None`` and a
    numeric label is turned into text. A missing or degenerate ``bbox``
    keeps the detection but with ``box=None``; the projector skips such
    entries.

    Args:
        item (object): A decoded JSON value from the ``data`` array.

    Returns:
        Detection | None: The normalised detection, or ``None`` to skip it.
    """
    if not isinstance(item, Mapping):
        logger.debug('Skipping non-object detection element: %r', item)
        return None
    try:
        payload = DetectionPayload.model_validate(item)
    except ValidationError as e:
        logger.debug('Skipping invalid detection element: %s', e)
        return None

    box: DetectionBox | None = None
    if payload.bbox is not None:
        box = DetectionBox(
            x_min=payload.bbox.x_min,
            y_min=payload.bbox.y_min,
            x_max=payload.bbox.x_max,
            y_max=payload.bbox.y_max,
        )
        if not box.is_valid:
            logger.debug('Dropping degenerate bbox %s', box)
            box = None

    if payload.id is not None:
        detection_id: str | None = str(payload.id)
    elif box is not None:
        detection_id = derive_detection_id(box)
    else:
        detection_id = None

    entity = payload.entity or EntityPayload()
    return Detection(
        id=detection_id,
        box=box,
        label=entity.label,
        user_id=entity.user_id,
        status_code=payload.status_code,
        distance=payload.distance,
    )


def parse_detection_batch(data: object) -> DetectionBatch:
    """
    Normalise a ``data`` array into a DetectionBatch, preserving order.

    Args:
        data (object): The value of the response's ``data`` field; must
            already be known to be a list.

    Returns:
        DetectionBatch: The detections that survived normalisation.
    """
    if not isinstance(data, list):
        return ()
    detections = (normalise_detection(item) for item in data)
    return tuple(d for d in detections if d is not None)
