"""Data-URI envelope parsing for inline image uploads."""

from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass
from typing import Optional

__all__ = ["DataURIHeader", "InvalidBase64Error", "decode_image_data", "parse_data_uri"]

_DATA_URI = re.compile(r"^data:(image/[^;]+);base64,")


class InvalidBase64Error(ValueError):
    """Raised when the data-URI payload is not valid base64."""


@dataclass(frozen=True)
class DataURIHeader:
    mime_type: str
    payload_offset: int


def parse_data_uri(value: str) -> Optional[DataURIHeader]:
    match = _DATA_URI.match(value)
    if match is None:
        return None
    return DataURIHeader(mime_type=match.group(1), payload_offset=match.end())


def decode_image_data(encoded: str) -> bytes:
    try:
        return base64.b64decode(encoded, validate=True)
    except (ValueError, binascii.Error) as exc:
        raise InvalidBase64Error(str(exc)) from exc
