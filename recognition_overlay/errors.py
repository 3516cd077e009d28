from __future__ import annotations


class RecognitionOverlayError(Exception):
    """
    Base class for every error raised by the recognition overlay.
    """


class CaptureError(RecognitionOverlayError):
    """
    A frame could not be produced for this cycle.
    """


class NotReady(CaptureError):
    """
    The video source has not reported non-zero native dimensions yet.
    """

    def __init__(
        self,
        message: str = 'Camera is warming up. Try again in a second.',
    ) -> None:
        super().__init__(message)


class EncodingUnavailable(CaptureError):
    """
    The off-screen raster could not be rendered or serialised.
    """

    def __init__(self, message: str = 'Unable to capture frame') -> None:
        super().__init__(message)


class RecognitionError(RecognitionOverlayError):
    """
    Base class for failures of a single recognition request.
    """


class NetworkError(RecognitionError):
    """
    The request failed at the transport level (connect, read, timeout).
    """


class HttpError(RecognitionError):
    """
    The recognition service answered with a non-success status.

    Attributes:
        status (int): The HTTP status code returned by the service.
    """

    def __init__(self, status: int) -> None:
        self.status = status
        super().__init__(f"Recognition request failed with {status}")


class Cancelled(RecognitionError):
    """
    The request was aborted through its cancel token.
    """

    def __init__(self, message: str = 'Recognition request aborted') -> None:
        super().__init__(message)


class ResponseDecodeError(RecognitionError):
    """
    The response body was not valid JSON.
    """

    def __init__(
        self,
        message: str = 'Recognition response was not valid JSON',
    ) -> None:
        super().__init__(message)


class MalformedResponse(RecognitionError):
    """
    The payload's detection list is absent or not a sequence.

    Never reaches the poll loop: the client degrades it to an empty batch.
    """


class StartError(RecognitionOverlayError):
    """
    The loop cannot leave the idle state.
    """


class ConfigurationMissing(StartError):
    """
    No recognition endpoint has been configured.
    """

    def __init__(
        self,
        message: str = (
            'Missing configuration: set RECOGNITION_API_URL in your '
            'environment or .env file.'
        ),
    ) -> None:
        super().__init__(message)


class SourceNotReady(StartError):
    """
    The video source has not signalled readiness yet.
    """

    def __init__(self, message: str = 'Camera is not ready yet.') -> None:
        super().__init__(message)


class SourceUnavailable(RecognitionOverlayError):
    """
    The camera could not be acquired (missing device, permission denied).
    """

    def __init__(
        self,
        message: str = (
            'Unable to access camera. Please allow camera permissions.'
        ),
    ) -> None:
        super().__init__(message)
