"""Error codes surfaced to HTTP callers and their status mappings."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Final, Optional


class ErrorCode(str, Enum):
    INVALID_REQUEST = "invalid_request"
    NOT_FOUND = "not_found"
    DESYNCHRONIZED = "desynchronized"
    BUSY = "busy"
    JOIN_FAILED = "join_failed"
    PROBE_FAILED = "probe_failed"
    NO_VIDEO_STREAM = "no_video_stream"
    TRANSCODE_START_FAILED = "transcode_start_failed"
    TEARDOWN_FAILED = "teardown_failed"


@dataclass(frozen=True)
class ErrorSpec:
    code: ErrorCode
    http_status: int
    message: str


ERROR_SPECS: Final[Dict[ErrorCode, ErrorSpec]] = {
    ErrorCode.INVALID_REQUEST: ErrorSpec(
        ErrorCode.INVALID_REQUEST, 400, "Missing required parameters: guildId, channelId, streamUrl"
    ),
    ErrorCode.NOT_FOUND: ErrorSpec(ErrorCode.NOT_FOUND, 404, "Voice channel not found or invalid."),
    ErrorCode.DESYNCHRONIZED: ErrorSpec(
        ErrorCode.DESYNCHRONIZED, 409, "Voice connection is out of sync; disconnect and retry."
    ),
    ErrorCode.BUSY: ErrorSpec(ErrorCode.BUSY, 429, "A play command is already in progress, retry shortly."),
    ErrorCode.JOIN_FAILED: ErrorSpec(ErrorCode.JOIN_FAILED, 500, "Failed to join voice channel."),
    ErrorCode.PROBE_FAILED: ErrorSpec(ErrorCode.PROBE_FAILED, 500, "Failed to fetch stream metadata."),
    ErrorCode.NO_VIDEO_STREAM: ErrorSpec(ErrorCode.NO_VIDEO_STREAM, 500, "No video stream found in the source."),
    ErrorCode.TRANSCODE_START_FAILED: ErrorSpec(
        ErrorCode.TRANSCODE_START_FAILED, 500, "Failed to start streaming."
    ),
    ErrorCode.TEARDOWN_FAILED: ErrorSpec(ErrorCode.TEARDOWN_FAILED, 500, "Failed to disconnect."),
}


def http_status_for(code: ErrorCode) -> int:
    return ERROR_SPECS[code].http_status


class StreamControlError(Exception):
    """Raised by the controller; carries the code that decides the HTTP response."""

    def __init__(self, code: ErrorCode, detail: Optional[str] = None):
        self.code = code
        self.detail = detail or ERROR_SPECS[code].message
        super().__init__(self.detail)

    @property
    def http_status(self) -> int:
        return http_status_for(self.code)
