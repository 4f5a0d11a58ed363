"""
Byte-level integrity checks for uploaded photos.

The validator never trusts the MIME type declared in the data URI: it sniffs
the magic bytes, requires them to agree with the declaration, runs a cheap
format-specific structural check and finally strips trailing NUL padding.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from functools import cached_property
from typing import Optional, Tuple

from ..config import Settings
from ..errors import ErrorKind
from .fingerprint import hash_image

__all__ = [
    "ImageAsset",
    "ImageValidator",
    "ValidationOutcome",
    "detect_mime",
    "probe_dimensions",
]

JPEG = "image/jpeg"
PNG = "image/png"
WEBP = "image/webp"

_JPEG_MAGIC = b"\xff\xd8\xff"
_PNG_MAGIC = b"\x89PNG\r\n\x1a\n"
_JPEG_EOI = b"\xff\xd9"
_EOI_TAIL_WINDOW = 100

# SOFn markers carrying frame dimensions (excludes DHT/JPG/DAC at C4, C8, CC).
_JPEG_SOF_MARKERS = {0xC0, 0xC1, 0xC2, 0xC3, 0xC5, 0xC6, 0xC7, 0xC9, 0xCA, 0xCB, 0xCD, 0xCE, 0xCF}


def detect_mime(buffer: bytes) -> Optional[str]:
    if buffer[:3] == _JPEG_MAGIC:
        return JPEG
    if buffer[:8] == _PNG_MAGIC:
        return PNG
    if len(buffer) >= 12 and buffer[:4] == b"RIFF" and buffer[8:12] == b"WEBP":
        return WEBP
    return None


def _png_dimensions(buffer: bytes) -> Optional[Tuple[int, int]]:
    if len(buffer) < 24 or buffer[12:16] != b"IHDR":
        return None
    return struct.unpack(">II", buffer[16:24])


def _jpeg_dimensions(buffer: bytes) -> Optional[Tuple[int, int]]:
    offset = 2
    size = len(buffer)
    while offset + 4 <= size:
        if buffer[offset] != 0xFF:
            return None
        marker = buffer[offset + 1]
        if marker == 0xFF:
            offset += 1
            continue
        if marker in (0xD8, 0x01) or 0xD0 <= marker <= 0xD7:
            offset += 2
            continue
        (segment_length,) = struct.unpack(">H", buffer[offset + 2 : offset + 4])
        if marker in _JPEG_SOF_MARKERS:
            if offset + 9 > size:
                return None
            height, width = struct.unpack(">HH", buffer[offset + 5 : offset + 9])
            return width, height
        if marker == 0xDA:
            return None
        offset += 2 + segment_length
    return None


def _webp_dimensions(buffer: bytes) -> Optional[Tuple[int, int]]:
    if len(buffer) < 30:
        return None
    chunk = buffer[12:16]
    if chunk == b"VP8 ":
        width, height = struct.unpack("<HH", buffer[26:30])
        return width & 0x3FFF, height & 0x3FFF
    if chunk == b"VP8L":
        bits = int.from_bytes(buffer[21:25], "little")
        return (bits & 0x3FFF) + 1, ((bits >> 14) & 0x3FFF) + 1
    if chunk == b"VP8X":
        width = int.from_bytes(buffer[24:27], "little") + 1
        height = int.from_bytes(buffer[27:30], "little") + 1
        return width, height
    return None


def probe_dimensions(buffer: bytes, mime: Optional[str]) -> Optional[Tuple[int, int]]:
    """Best-effort (width, height) discovery; returns None when the header is unreadable."""

    if mime == PNG:
        return _png_dimensions(buffer)
    if mime == JPEG:
        return _jpeg_dimensions(buffer)
    if mime == WEBP:
        return _webp_dimensions(buffer)
    return None


@dataclass(frozen=True)
class ValidationOutcome:
    valid: bool
    sanitized_buffer: bytes = b""
    detected_mime: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    message: Optional[str] = None

    @classmethod
    def ok(cls, buffer: bytes, detected_mime: Optional[str]) -> "ValidationOutcome":
        return cls(valid=True, sanitized_buffer=buffer, detected_mime=detected_mime)

    @classmethod
    def fail(cls, kind: ErrorKind, message: str, detected_mime: Optional[str] = None) -> "ValidationOutcome":
        return cls(valid=False, detected_mime=detected_mime, error_kind=kind, message=message)


class ImageAsset:
    """Per-request view of an uploaded photo; never persisted."""

    def __init__(self, data: bytes, declared_mime: str, detected_mime: Optional[str] = None) -> None:
        self.data = data
        self.declared_mime = declared_mime
        self.detected_mime = detected_mime

    @cached_property
    def dimensions(self) -> Optional[Tuple[int, int]]:
        return probe_dimensions(self.data, self.detected_mime or self.declared_mime)

    @cached_property
    def content_hash(self) -> str:
        return hash_image(self.data)

    def __len__(self) -> int:
        return len(self.data)


class ImageValidator:
    def __init__(
        self,
        *,
        max_width: int = 8192,
        max_height: int = 8192,
        check_signature: bool = True,
        check_structure: bool = True,
        sanitize: bool = True,
    ) -> None:
        self.max_width = max_width
        self.max_height = max_height
        self.check_signature = check_signature
        self.check_structure = check_structure
        self.sanitize = sanitize

    @classmethod
    def from_settings(cls, settings: Settings) -> "ImageValidator":
        return cls(
            max_width=settings.max_dimension,
            max_height=settings.max_dimension,
            check_signature=settings.enable_signature_validation,
            check_structure=settings.enable_structure_validation,
            sanitize=settings.enable_sanitization,
        )

    def validate(self, buffer: bytes, declared_mime: str) -> ValidationOutcome:
        detected = detect_mime(buffer)
        if self.check_signature:
            if detected is None:
                return ValidationOutcome.fail(
                    ErrorKind.INVALID_SIGNATURE,
                    "File signature does not match any supported image format",
                )
            if detected != declared_mime:
                return ValidationOutcome.fail(
                    ErrorKind.TYPE_MISMATCH,
                    f"Declared type {declared_mime} does not match detected type {detected}",
                    detected_mime=detected,
                )

        if self.check_structure:
            problem = self._structure_problem(buffer, detected or declared_mime)
            if problem:
                return ValidationOutcome.fail(ErrorKind.STRUCTURE_INVALID, problem, detected_mime=detected)

        sanitized = buffer.rstrip(b"\x00") if self.sanitize else buffer
        return ValidationOutcome.ok(sanitized, detected)

    def _structure_problem(self, buffer: bytes, mime: str) -> Optional[str]:
        if mime == JPEG:
            return self._check_jpeg(buffer)
        if mime == PNG:
            return self._check_png(buffer)
        if mime == WEBP:
            return self._check_webp(buffer)
        return None

    @staticmethod
    def _check_jpeg(buffer: bytes) -> Optional[str]:
        if buffer[:2] != b"\xff\xd8":
            return "JPEG is missing its SOI marker"
        # Trailing metadata after EOI is tolerated.
        if buffer[-2:] != _JPEG_EOI and _JPEG_EOI not in buffer[-_EOI_TAIL_WINDOW:]:
            return "JPEG is missing its EOI marker"
        return None

    def _check_png(self, buffer: bytes) -> Optional[str]:
        dimensions = _png_dimensions(buffer)
        if dimensions is None:
            return "PNG is missing its IHDR chunk"
        width, height = dimensions
        if width == 0 or height == 0:
            return "PNG has zero width or height"
        if width > self.max_width or height > self.max_height:
            return f"PNG dimensions {width}x{height} exceed {self.max_width}x{self.max_height}"
        return None

    @staticmethod
    def _check_webp(buffer: bytes) -> Optional[str]:
        if len(buffer) < 20:
            return "WebP file is truncated"
        (declared_size,) = struct.unpack("<I", buffer[4:8])
        if declared_size + 8 != len(buffer):
            return f"WebP RIFF size {declared_size} does not match file length {len(buffer)}"
        return None
