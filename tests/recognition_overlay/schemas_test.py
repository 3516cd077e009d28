from __future__ import annotations

import unittest

from recognition_overlay.overlay_projector import project
from recognition_overlay.schemas import DetectionBox
from recognition_overlay.schemas import derive_detection_id
from recognition_overlay.schemas import EncodedFrame
from recognition_overlay.schemas import LoopState
from recognition_overlay.schemas import normalise_detection
from recognition_overlay.schemas import parse_detection_batch
from recognition_overlay.schemas import RelativeRect
from recognition_overlay.schemas import VideoGeometry


class TestNormaliseDetection(unittest.TestCase):
    """
    Tests for turning raw ``data`` elements into Detection values.
    """

    def test_full_element(self) -> None:
        """Every field is carried over."""
        detection = normalise_detection({
            'id': 'abc',
            'bbox': {'x_min': 1, 'y_min': 2, 'x_max': 3, 'y_max': 4},
            'entity': {'label': 'Alice', 'user_id': 7},
            'status_code': 200,
            'distance': 0.25,
        })
        assert detection is not None
        self.assertEqual(detection.id, 'abc')
        self.assertEqual(detection.box, DetectionBox(1, 2, 3, 4))
        self.assertEqual(detection.label, 'Alice')
        self.assertEqual(detection.user_id, 7)
        self.assertEqual(detection.status_code, 200)
        self.assertEqual(detection.distance, 0.25)

    def test_missing_id_is_derived_from_box(self) -> None:
        """Without an id the key is ``x_min-y_min``."""
        detection = normalise_detection({
            'bbox': {'x_min': 64, 'y_min': 48, 'x_max': 192, 'y_max': 144},
            'status_code': 404,
        })
        assert detection is not None
        self.assertEqual(detection.id, '64-48')
        self.assertIsNone(detection.label)
        self.assertIsNone(detection.user_id)
        self.assertIsNone(detection.distance)

    def test_numeric_id_becomes_string(self) -> None:
        detection = normalise_detection({'id': 12})
        assert detection is not None
        self.assertEqual(detection.id, '12')

    def test_missing_bbox_keeps_detection(self) -> None:
        """A detection without a box survives with ``box=None``."""
        detection = normalise_detection({
            'entity': {'label': 'Bob'},
            'status_code': 200,
        })
        assert detection is not None
        self.assertIsNone(detection.box)
        self.assertIsNone(detection.id)
        self.assertEqual(detection.label, 'Bob')

    def test_degenerate_bbox_dropped(self) -> None:
        detection = normalise_detection({
            'id': 'x',
            'bbox': {'x_min': 10, 'y_min': 10, 'x_max': 10, 'y_max': 20},
        })
        assert detection is not None
        self.assertIsNone(detection.box)

    def test_invalid_elements_skipped(self) -> None:
        """Non-objects and unparseable boxes are skipped."""
        self.assertIsNone(normalise_detection('face'))
        self.assertIsNone(normalise_detection(None))
        self.assertIsNone(
            normalise_detection({'bbox': {'x_min': 'left'}}),
        )

    def test_numeric_label_and_bad_distance_keep_detection(self) -> None:
        """Wrongly typed metadata next to a valid box is defaulted."""
        batch = parse_detection_batch([
            {
                'bbox': {'x_min': 64, 'y_min': 48, 'x_max': 192, 'y_max': 144},
                'entity': {'label': 42, 'user_id': 7},
                'status_code': 200,
                'distance': 'n/a',
            },
        ])

        self.assertEqual(len(batch), 1)
        detection = batch[0]
        self.assertEqual(detection.id, '64-48')
        self.assertEqual(detection.box, DetectionBox(64, 48, 192, 144))
        self.assertEqual(detection.label, '42')
        self.assertEqual(detection.user_id, 7)
        self.assertEqual(detection.status_code, 200)
        self.assertIsNone(detection.distance)

        overlays = project(batch, VideoGeometry(640, 480))
        self.assertEqual(len(overlays), 1)
        self.assertAlmostEqual(overlays[0].rect.left, 0.1)

    def test_invalid_optional_fields_default_to_none(self) -> None:
        detection = normalise_detection({
            'id': ['not', 'an', 'id'],
            'bbox': {'x_min': 1, 'y_min': 2, 'x_max': 3, 'y_max': 4},
            'entity': 'Alice',
            'status_code': 'ok',
        })
        assert detection is not None
        self.assertEqual(detection.id, '1-2')
        self.assertEqual(detection.box, DetectionBox(1, 2, 3, 4))
        self.assertIsNone(detection.label)
        self.assertIsNone(detection.user_id)
        self.assertIsNone(detection.status_code)

    def test_invalid_entity_fields_default_to_none(self) -> None:
        detection = normalise_detection({
            'bbox': {'x_min': 1, 'y_min': 2, 'x_max': 3, 'y_max': 4},
            'entity': {'label': {'first': 'Alice'}, 'user_id': [7]},
        })
        assert detection is not None
        self.assertIsNone(detection.label)
        self.assertIsNone(detection.user_id)

    def test_batch_preserves_order(self) -> None:
        batch = parse_detection_batch([
            {'id': 'b'},
            42,
            {'id': 'a'},
        ])
        self.assertEqual([d.id for d in batch], ['b', 'a'])

    def test_batch_of_non_list_is_empty(self) -> None:
        self.assertEqual(parse_detection_batch({'id': 'a'}), ())


class TestValueTypes(unittest.TestCase):
    """
    Tests for the small value types.
    """

    def test_derive_id_keeps_fractions(self) -> None:
        self.assertEqual(
            derive_detection_id(DetectionBox(64.5, 48.0, 100, 100)),
            '64.5-48',
        )

    def test_geometry_readiness(self) -> None:
        self.assertFalse(VideoGeometry().is_ready)
        self.assertFalse(VideoGeometry(640, 0).is_ready)
        self.assertTrue(VideoGeometry(640, 480).is_ready)

    def test_encoded_frame_geometry(self) -> None:
        frame = EncodedFrame(b'jpeg', 320, 240)
        self.assertEqual(frame.geometry, VideoGeometry(320, 240))

    def test_relative_rect_percentages(self) -> None:
        rect = RelativeRect(0.1, 0.1, 0.2, 0.25)
        self.assertEqual(
            rect.as_percentages(),
            {'left': '10%', 'top': '10%', 'width': '20%', 'height': '25%'},
        )

    def test_loop_state_text(self) -> None:
        self.assertEqual(LoopState.IDLE.status_text, 'Stopped')
        self.assertEqual(LoopState.LISTENING.status_text, 'Listening')
        self.assertEqual(LoopState.CAPTURING.status_text, 'Sending frame…')


if __name__ == '__main__':
    unittest.main()

'''
pytest \
    --cov=recognition_overlay.schemas \
    --cov-report=term-missing \
    tests/recognition_overlay/schemas_test.py
'''
