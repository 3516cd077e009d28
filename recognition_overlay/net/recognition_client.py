from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping

import httpx

from recognition_overlay.errors import Cancelled
from recognition_overlay.errors import HttpError
from recognition_overlay.errors import MalformedResponse
from recognition_overlay.errors import NetworkError
from recognition_overlay.errors import ResponseDecodeError
from recognition_overlay.schemas import DetectionBatch
from recognition_overlay.schemas import EncodedFrame
from recognition_overlay.schemas import parse_detection_batch


class CancelToken:
    """
    One-shot cancellation signal for a single recognition request.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


def extract_detection_list(payload: object) -> list:
    """
    Pull the ``data`` array out of a decoded response body.

    Args:
        payload (object): The decoded JSON body.

    Returns:
        list: The raw detection elements.

    Raises:
        MalformedResponse: If ``data`` is absent or not a list.
    """
    if not isinstance(payload, Mapping) or 'data' not in payload:
        raise MalformedResponse('Response has no data field')
    data = payload['data']
    if not isinstance(data, list):
        raise MalformedResponse(
            f"Response data is {type(data).__name__}, expected a list",
        )
    return data


class RecognitionClient:
    """
    Posts encoded frames to the recognition service.

    Each call to :meth:`submit` makes exactly one outbound request. The
    client does not serialise calls; the poll loop is responsible for
    keeping a single request in flight.
    """

    def __init__(self, api_url: str, timeout: float = 10.0) -> None:
        """
        Initialise the RecognitionClient.

        Args:
            api_url (str): Full URL frames are posted to.
            timeout (float): Transport timeout in seconds for each request.
        """
        self.api_url: str = api_url
        self.timeout: float = timeout
        self._log: logging.Logger = logging.getLogger(__name__)

    async def submit(
        self,
        frame: EncodedFrame,
        cancel_token: CancelToken | None = None,
    ) -> DetectionBatch:
        """
        Submit one frame and return the detections it produced.

        Args:
            frame (EncodedFrame): The frame to upload.
            cancel_token (CancelToken | None): Token that aborts the request
                when triggered. The underlying transport is torn down, not
                merely ignored.

        Returns:
            DetectionBatch: Detections in service order. A missing or
                malformed ``data`` field yields an empty batch.

        Raises:
            Cancelled: The token fired before the request completed.
            HttpError: The service answered with a non-2xx status.
            NetworkError: The transport failed or timed out.
            ResponseDecodeError: The body was not valid JSON.
        """
        if cancel_token is not None and cancel_token.cancelled:
            raise Cancelled()

        request = asyncio.ensure_future(self._post(frame))
        if cancel_token is None:
            payload = await request
        else:
            waiter = asyncio.ensure_future(cancel_token.wait())
            try:
                await asyncio.wait(
                    {request, waiter},
                    return_when=asyncio.FIRST_COMPLETED,
                )
            finally:
                waiter.cancel()
                if not request.done():
                    request.cancel()
                    # Let the aborted transport settle before returning
                    await asyncio.gather(request, return_exceptions=True)
            if request.cancelled():
                self._log.debug('Recognition request aborted')
                raise Cancelled()
            payload = request.result()

        return self.parse_payload(payload)

    def parse_payload(self, payload: object) -> DetectionBatch:
        """
        Convert a decoded body into a DetectionBatch.

        Args:
            payload (object): The decoded JSON body.

        Returns:
            DetectionBatch: The normalised detections, or an empty batch when
                the ``data`` field is unusable.
        """
        try:
            data = extract_detection_list(payload)
        except MalformedResponse as e:
            self._log.debug('Treating malformed response as empty: %s', e)
            return ()
        return parse_detection_batch(data)

    async def _post(self, frame: EncodedFrame) -> object:
        """
        Perform the multipart POST.

        Args:
            frame (EncodedFrame): The frame to upload as field ``file``.

        Returns:
            object: The decoded JSON body.
        """
        files: dict[str, tuple[str, bytes, str]] = {
            'file': ('frame.jpg', frame.image_bytes, 'image/jpeg'),
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(self.api_url, files=files)
        except httpx.TimeoutException as e:
            raise NetworkError(
                f"Recognition request timed out after {self.timeout:g}s",
            ) from e
        except httpx.TransportError as e:
            raise NetworkError(
                f"Unable to reach recognition service: {e}",
            ) from e

        if not resp.is_success:
            raise HttpError(resp.status_code)

        try:
            return resp.json()
        except ValueError as e:
            raise ResponseDecodeError() from e
