"""
Failure taxonomy for a resolution.

Every kind here is an ordinary outcome of probing third-party pages. The
engine raises these internally and turns the terminal one into an
ExtractionFailure; callers never see the exception itself.
"""
from __future__ import annotations
from enum import Enum
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .base import ExtractionFailure, ResolutionContext


class FailureKind(str, Enum):
    HOP_UNREACHABLE = "HopUnreachable"
    HOP_EXTRACTION_FAILED = "HopExtractionFailed"
    PAYLOAD_NOT_FOUND = "PayloadNotFound"
    SANDBOX_TIMED_OUT = "SandboxTimedOut"
    SANDBOX_THREW = "SandboxThrew"
    NO_PLAYLIST_FOUND = "NoPlaylistFound"


class ResolutionError(Exception):
    kind: FailureKind

    def __init__(self, message: str, *, hop_index: Optional[int] = None,
                 status: Optional[int] = None, sample: Optional[str] = None,
                 detail: Optional[list[str]] = None):
        super().__init__(message)
        self.message = message
        self.hop_index = hop_index
        self.status = status
        self.sample = sample
        self.detail = list(detail or [])

    def to_failure(self, context: Optional["ResolutionContext"] = None,
                   target: Optional[str] = None) -> "ExtractionFailure":
        from .base import ExtractionFailure
        return ExtractionFailure(
            kind=self.kind, message=self.message, context=context,
            hop_index=self.hop_index, status=self.status, sample=self.sample,
            detail=self.detail, target=target,
        )


class HopUnreachable(ResolutionError):
    kind = FailureKind.HOP_UNREACHABLE


class HopExtractionFailed(ResolutionError):
    kind = FailureKind.HOP_EXTRACTION_FAILED


class PayloadNotFound(ResolutionError):
    kind = FailureKind.PAYLOAD_NOT_FOUND


class SandboxTimedOut(ResolutionError):
    kind = FailureKind.SANDBOX_TIMED_OUT


class SandboxThrew(ResolutionError):
    kind = FailureKind.SANDBOX_THREW


class NoPlaylistFound(ResolutionError):
    kind = FailureKind.NO_PLAYLIST_FOUND
