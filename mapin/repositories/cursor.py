from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass

from mapin.core.errors import APIError


def _invalid_cursor() -> APIError:
    return APIError(status_code=422, code="invalid_cursor", message="Pagination cursor is invalid")


@dataclass(frozen=True, slots=True)
class MessageCursor:
    """Ordering key of the oldest message of a page.

    Serialized as url-safe base64 of ``timestamp:seq`` so clients treat it as opaque.
    """

    timestamp: int
    seq: int

    def encode(self) -> str:
        raw = f"{self.timestamp}:{self.seq}".encode("ascii")
        return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")

    @classmethod
    def decode(cls, token: str) -> MessageCursor:
        if not token or len(token) > 128:
            raise _invalid_cursor()
        padded = token + "=" * (-len(token) % 4)
        try:
            raw = base64.urlsafe_b64decode(padded.encode("ascii")).decode("ascii")
        except (binascii.Error, UnicodeError, ValueError) as exc:
            raise _invalid_cursor() from exc

        timestamp_text, separator, seq_text = raw.partition(":")
        if not separator or not timestamp_text.isdigit() or not seq_text.isdigit():
            raise _invalid_cursor()
        return cls(timestamp=int(timestamp_text), seq=int(seq_text))
