from __future__ import annotations

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings
from pydantic_settings import SettingsConfigDict

# Load environment variables from .env file
load_dotenv()


class Settings(BaseSettings):
    """
    Runtime configuration, resolved once at startup.

    Every field maps to the upper-cased environment variable of the same
    name (e.g. ``recognition_api_url`` reads ``RECOGNITION_API_URL``).

    Attributes:
        recognition_api_url (str): Endpoint frames are posted to. Empty means
            "not configured" and blocks scanning from starting.
        poll_delay_ms (int): Delay between the end of one cycle and the
            start of the next.
        max_frame_width (int): Upper bound on the encoded frame width.
        max_frame_height (int): Upper bound on the encoded frame height.
        jpeg_quality (int): JPEG quality factor (1-100).
        recognition_timeout (float): Per-request timeout in seconds.
        camera_index (int): OpenCV device index of the camera.
        matched_status_codes (str): Comma separated detection status codes
            rendered as a confident match.
        log_dir (str): Directory for the rotating log file.
        log_file (str): Log file name.
    """

    model_config = SettingsConfigDict(extra='ignore')

    recognition_api_url: str = ''
    poll_delay_ms: int = Field(default=350, ge=0)
    max_frame_width: int = Field(default=640, gt=0)
    max_frame_height: int = Field(default=640, gt=0)
    jpeg_quality: int = Field(default=85, ge=1, le=100)
    recognition_timeout: float = Field(default=10.0, gt=0)
    camera_index: int = 0
    matched_status_codes: str = '200'
    log_dir: str = 'logs'
    log_file: str = 'recognition_overlay.log'

    @property
    def poll_delay(self) -> float:
        """Inter-cycle delay in seconds."""
        return self.poll_delay_ms / 1000

    @property
    def matched_codes(self) -> frozenset[int]:
        """
        Parse ``matched_status_codes`` into a set of integers.

        Returns:
            frozenset[int]: Status codes treated as a confident match.
                Entries that are not integers are ignored.
        """
        codes: set[int] = set()
        for part in self.matched_status_codes.split(','):
            part = part.strip()
            if part.lstrip('-').isdigit():
                codes.add(int(part))
        return frozenset(codes)
