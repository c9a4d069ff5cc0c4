"""Validator info decoder — base64 account bytes → display metadata.

Validator-info config accounts hold a binary header (keys, flags) followed
by a JSON document such as ``{"name": "...", "website": "..."}``. Many
identity accounts hold no document at all. Decoding is therefore
best-effort: any failure yields ``None`` and the pipeline carries on.
"""

import base64
import binascii
import json
import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

_decoder = json.JSONDecoder()

# Matches the width of the validators.name / website columns.
MAX_FIELD_LENGTH = 255


class ValidatorInfo(BaseModel):
    """Documented subset of the validator-info JSON document."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    name: str | None = None
    website: str | None = None
    details: str | None = None
    keybase_username: str | None = Field(default=None, alias="keybaseUsername")
    icon_url: str | None = Field(default=None, alias="iconUrl")

    @field_validator("name", "website", "details", "keybase_username", "icon_url")
    @classmethod
    def truncate(cls, v: str | None) -> str | None:
        """Owner-controlled text; cut to what the store can hold."""
        if v is None:
            return None
        v = v.strip()
        return v[:MAX_FIELD_LENGTH] or None


def _payload(data: Any) -> str | None:
    """Accept a bare base64 string or the RPC ``[payload, "base64"]`` pair."""
    if isinstance(data, str):
        return data
    if isinstance(data, (list, tuple)) and data and isinstance(data[0], str):
        return data[0]
    return None


def extract_json_document(text: str) -> dict[str, Any] | None:
    """Parse the JSON object starting at the first ``{`` in ``text``.

    Bytes after the end of the object are ignored.
    """
    start = text.find("{")
    if start == -1:
        return None
    try:
        document, _ = _decoder.raw_decode(text, start)
    except json.JSONDecodeError:
        return None
    return document if isinstance(document, dict) else None


def decode_validator_info(data: Any) -> ValidatorInfo | None:
    """Decode embedded validator metadata. Never raises.

    Args:
        data: base64 string, or ``[base64, "base64"]`` as returned by
            getAccountInfo

    Returns:
        ValidatorInfo, or None for malformed base64, no JSON document,
        invalid JSON or a document of the wrong shape
    """
    payload = _payload(data)
    if not payload:
        return None

    try:
        raw = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        logger.debug("Metadata is not valid base64")
        return None

    # Binary header bytes are not UTF-8; replace them rather than fail.
    text = raw.decode("utf-8", errors="replace")
    document = extract_json_document(text)
    if document is None:
        return None

    try:
        return ValidatorInfo.model_validate(document)
    except ValidationError as e:
        logger.debug("Metadata document has unexpected shape: %s", e)
        return None
