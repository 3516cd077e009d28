from __future__ import annotations

import asyncio
import unittest
from unittest.mock import AsyncMock
from unittest.mock import MagicMock
from unittest.mock import patch

import httpx

from recognition_overlay.errors import Cancelled
from recognition_overlay.errors import HttpError
from recognition_overlay.errors import MalformedResponse
from recognition_overlay.errors import NetworkError
from recognition_overlay.errors import ResponseDecodeError
from recognition_overlay.net.recognition_client import CancelToken
from recognition_overlay.net.recognition_client import extract_detection_list
from recognition_overlay.net.recognition_client import RecognitionClient
from recognition_overlay.schemas import DetectionBox
from recognition_overlay.schemas import EncodedFrame


def make_async_client(fake_client: MagicMock) -> MagicMock:
    """Wrap a fake client so it works as ``async with httpx.AsyncClient``."""
    cm = MagicMock()
    cm.__aenter__.return_value = fake_client
    cm.__aexit__.return_value = False
    return cm


def make_response(
    status_code: int = 200,
    payload: object = None,
) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status_code
    resp.is_success = 200 <= status_code < 300
    resp.json.return_value = payload
    return resp


class TestRecognitionClient(unittest.IsolatedAsyncioTestCase):
    """
    Behavioural tests for RecognitionClient.submit.
    """

    def setUp(self) -> None:
        self.client = RecognitionClient(
            'http://svc.local/recognize', timeout=5,
        )
        self.frame = EncodedFrame(b'jpeg-bytes', 640, 480)

    async def test_submit_posts_single_multipart_file(self) -> None:
        """The frame is sent as field ``file`` and nothing else."""
        fake_client = MagicMock()
        fake_client.post = AsyncMock(
            return_value=make_response(payload={'data': []}),
        )
        with patch(
            'httpx.AsyncClient', return_value=make_async_client(fake_client),
        ) as mock_async_client:
            batch = await self.client.submit(self.frame, CancelToken())

        self.assertEqual(batch, ())
        mock_async_client.assert_called_once_with(timeout=5)
        fake_client.post.assert_awaited_once_with(
            'http://svc.local/recognize',
            files={'file': ('frame.jpg', b'jpeg-bytes', 'image/jpeg')},
        )

    async def test_submit_parses_detections_in_order(self) -> None:
        payload = {
            'data': [
                {
                    'id': 'first',
                    'bbox': {
                        'x_min': 64, 'y_min': 48, 'x_max': 192, 'y_max': 144,
                    },
                    'entity': {'label': 'Alice', 'user_id': 3},
                    'status_code': 200,
                    'distance': 0.31,
                },
                {
                    'bbox': {
                        'x_min': 10, 'y_min': 20, 'x_max': 30, 'y_max': 40,
                    },
                    'status_code': 404,
                },
            ],
        }
        fake_client = MagicMock()
        fake_client.post = AsyncMock(
            return_value=make_response(payload=payload),
        )
        with patch(
            'httpx.AsyncClient', return_value=make_async_client(fake_client),
        ):
            batch = await self.client.submit(self.frame)

        self.assertEqual([d.id for d in batch], ['first', '10-20'])
        self.assertEqual(batch[0].box, DetectionBox(64, 48, 192, 144))
        self.assertEqual(batch[0].label, 'Alice')
        self.assertEqual(batch[0].user_id, 3)
        self.assertIsNone(batch[1].label)
        self.assertEqual(batch[1].status_code, 404)

    async def test_malformed_data_yields_empty_batch(self) -> None:
        """``data`` null, a string or omitted all mean "no detections"."""
        for payload in (
            {'data': None},
            {'data': 'faces'},
            {},
            {'data': {'id': 1}},
            ['not', 'an', 'object'],
        ):
            with self.subTest(payload=payload):
                fake_client = MagicMock()
                fake_client.post = AsyncMock(
                    return_value=make_response(payload=payload),
                )
                with patch(
                    'httpx.AsyncClient',
                    return_value=make_async_client(fake_client),
                ):
                    batch = await self.client.submit(self.frame)
                self.assertEqual(batch, ())

    async def test_non_success_status_raises_http_error(self) -> None:
        fake_client = MagicMock()
        fake_client.post = AsyncMock(return_value=make_response(503))
        with patch(
            'httpx.AsyncClient', return_value=make_async_client(fake_client),
        ):
            with self.assertRaises(HttpError) as ctx:
                await self.client.submit(self.frame)

        self.assertEqual(ctx.exception.status, 503)
        self.assertIn('503', str(ctx.exception))

    async def test_transport_failure_raises_network_error(self) -> None:
        fake_client = MagicMock()
        fake_client.post = AsyncMock(
            side_effect=httpx.ConnectError('connection refused'),
        )
        with patch(
            'httpx.AsyncClient', return_value=make_async_client(fake_client),
        ):
            with self.assertRaises(NetworkError) as ctx:
                await self.client.submit(self.frame)
        self.assertIn('connection refused', str(ctx.exception))

    async def test_timeout_raises_network_error(self) -> None:
        fake_client = MagicMock()
        fake_client.post = AsyncMock(
            side_effect=httpx.ReadTimeout('too slow'),
        )
        with patch(
            'httpx.AsyncClient', return_value=make_async_client(fake_client),
        ):
            with self.assertRaises(NetworkError) as ctx:
                await self.client.submit(self.frame)
        self.assertIn('timed out', str(ctx.exception))

    async def test_invalid_json_raises_decode_error(self) -> None:
        resp = make_response()
        resp.json.side_effect = ValueError('Expecting value')
        fake_client = MagicMock()
        fake_client.post = AsyncMock(return_value=resp)
        with patch(
            'httpx.AsyncClient', return_value=make_async_client(fake_client),
        ):
            with self.assertRaises(ResponseDecodeError):
                await self.client.submit(self.frame)

    async def test_cancel_aborts_inflight_request(self) -> None:
        """Triggering the token cancels the transport, not just the result."""
        started = asyncio.Event()
        aborted = asyncio.Event()

        async def slow_post(*_args, **_kwargs):
            started.set()
            try:
                await asyncio.sleep(30)
            except asyncio.CancelledError:
                aborted.set()
                raise
            return make_response(payload={'data': []})

        fake_client = MagicMock()
        fake_client.post = AsyncMock(side_effect=slow_post)
        token = CancelToken()
        with patch(
            'httpx.AsyncClient', return_value=make_async_client(fake_client),
        ):
            task = asyncio.create_task(self.client.submit(self.frame, token))
            await started.wait()
            token.cancel()
            with self.assertRaises(Cancelled):
                await task

        self.assertTrue(aborted.is_set())
        self.assertTrue(token.cancelled)

    async def test_pre_cancelled_token_makes_no_request(self) -> None:
        token = CancelToken()
        token.cancel()
        with patch('httpx.AsyncClient') as mock_async_client:
            with self.assertRaises(Cancelled):
                await self.client.submit(self.frame, token)
        mock_async_client.assert_not_called()

    async def test_outer_cancellation_aborts_request(self) -> None:
        """Cancelling the calling task also tears down the request."""
        started = asyncio.Event()
        aborted = asyncio.Event()

        async def slow_post(*_args, **_kwargs):
            started.set()
            try:
                await asyncio.sleep(30)
            except asyncio.CancelledError:
                aborted.set()
                raise

        fake_client = MagicMock()
        fake_client.post = AsyncMock(side_effect=slow_post)
        with patch(
            'httpx.AsyncClient', return_value=make_async_client(fake_client),
        ):
            task = asyncio.create_task(
                self.client.submit(self.frame, CancelToken()),
            )
            await started.wait()
            task.cancel()
            with self.assertRaises(asyncio.CancelledError):
                await task

        self.assertTrue(aborted.is_set())


class TestExtractDetectionList(unittest.TestCase):
    """
    Tests for the ``data`` field shape check.
    """

    def test_list_is_returned(self) -> None:
        self.assertEqual(extract_detection_list({'data': [1, 2]}), [1, 2])

    def test_bad_shapes_raise(self) -> None:
        for payload in ({'data': None}, {'data': 'x'}, {}, None, [1]):
            with self.subTest(payload=payload):
                with self.assertRaises(MalformedResponse):
                    extract_detection_list(payload)


if __name__ == '__main__':
    unittest.main()

'''
pytest \
    --cov=recognition_overlay.net.recognition_client \
    --cov-report=term-missing \
    tests/recognition_overlay/net/recognition_client_test.py
'''
