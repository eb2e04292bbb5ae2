"""
Manual Connection Codes

When no signaling server is reachable, the offer and answer blobs can be
copied between the two peers by hand. A code is the compact JSON of the
blob. Pasted codes often pick up line breaks or zero-width characters
from chat apps, so decoding strips those before parsing.
"""

import json
import re
from typing import Optional

from ..errors import InvalidConnectionCode

OFFER = "offer"
ANSWER = "answer"

REQUIRED_FIELDS = {
    OFFER: ('token', 'candidates'),
    ANSWER: ('token',),
}

_NOISE = re.compile(r'[\s\u200B-\u200D\uFEFF]+')


def encode_connection_code(blob: dict) -> str:
    """Serialize an offer or answer into a copyable code."""
    validate_blob(blob)
    return json.dumps(blob, separators=(',', ':'))


def decode_connection_code(code: str, expected_type: Optional[str] = None) -> dict:
    """
    Parse a pasted connection code.

    Raises:
        InvalidConnectionCode: if the code is not a valid offer/answer
    """
    if not isinstance(code, str):
        raise InvalidConnectionCode("Connection code must be text")

    cleaned = _NOISE.sub('', code)
    if not cleaned:
        raise InvalidConnectionCode("Connection code is empty")
    if not (cleaned.startswith('{') and cleaned.endswith('}')):
        raise InvalidConnectionCode("Connection code is not a JSON object")

    try:
        blob = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise InvalidConnectionCode(f"Connection code is not valid JSON: {e.msg}")

    return validate_blob(blob, expected_type)


def validate_blob(blob: dict, expected_type: Optional[str] = None) -> dict:
    """Check the type tag and required fields of an offer/answer."""
    if not isinstance(blob, dict):
        raise InvalidConnectionCode("Connection code is not a JSON object")

    blob_type = blob.get('type')
    if blob_type not in REQUIRED_FIELDS:
        raise InvalidConnectionCode(f"Unknown connection code type: {blob_type!r}")
    if expected_type is not None and blob_type != expected_type:
        raise InvalidConnectionCode(f"Expected an {expected_type} code, got {blob_type}")

    for name in REQUIRED_FIELDS[blob_type]:
        if name not in blob:
            raise InvalidConnectionCode(f"Connection code is missing '{name}'")

    if not isinstance(blob['token'], str) or not blob['token']:
        raise InvalidConnectionCode("Connection code has an invalid token")

    if blob_type == OFFER:
        candidates = blob['candidates']
        if not isinstance(candidates, list) or not candidates:
            raise InvalidConnectionCode("Offer has no candidates")
        for candidate in candidates:
            if not _is_candidate(candidate):
                raise InvalidConnectionCode(f"Invalid candidate: {candidate!r}")

    return blob


def _is_candidate(candidate) -> bool:
    if not isinstance(candidate, dict):
        return False
    host = candidate.get('host')
    port = candidate.get('port')
    return (isinstance(host, str) and bool(host)
            and isinstance(port, int) and not isinstance(port, bool)
            and 0 < port < 65536)
