"""
ObjectRecord - the stored record and its JSON wire form.
"""

import json
from dataclasses import dataclass
from typing import Any

from objectstore.exceptions import CodecError

CONTENT_TYPE_FIELD = "Content-Type"
DATA_FIELD = "Data"


@dataclass(frozen=True)
class ObjectRecord:
    """
    A stored object: the payload and the content type it was written with.

    The same JSON form is used on disk and in HTTP responses:

        {"Content-Type":"application/json","Data":"Dane testowe"}

    Field names and their order are part of the external contract.

    Attributes:
        content_type: Content type of the payload at last write.
        data: The payload, as text.
    """

    content_type: str
    data: str

    @classmethod
    def from_payload(cls, content_type: str, body: bytes) -> "ObjectRecord":
        """
        Build a record from a raw request payload.

        Bytes that are not valid UTF-8 are replaced with U+FFFD.
        """
        return cls(content_type=content_type, data=body.decode("utf-8", errors="replace"))

    def to_dict(self) -> dict[str, str]:
        return {CONTENT_TYPE_FIELD: self.content_type, DATA_FIELD: self.data}

    def to_json(self) -> bytes:
        """Encode the record as compact UTF-8 JSON."""
        try:
            return json.dumps(
                self.to_dict(), separators=(",", ":"), ensure_ascii=False
            ).encode("utf-8")
        except (TypeError, ValueError, UnicodeEncodeError) as e:
            raise CodecError(f"cannot encode record: {e}") from e

    @classmethod
    def from_json(cls, raw: bytes) -> "ObjectRecord":
        """
        Decode a record from its JSON form.

        Raises:
            CodecError: If the input is not a JSON object with string
                "Content-Type" and "Data" fields.
        """
        try:
            payload: Any = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise CodecError(f"cannot decode record: {e}") from e

        if not isinstance(payload, dict):
            raise CodecError("cannot decode record: expected a JSON object")

        content_type = payload.get(CONTENT_TYPE_FIELD)
        data = payload.get(DATA_FIELD)
        if not isinstance(content_type, str) or not isinstance(data, str):
            raise CodecError(
                f"cannot decode record: '{CONTENT_TYPE_FIELD}' and '{DATA_FIELD}' must be strings"
            )

        return cls(content_type=content_type, data=data)
