"""
Envelope decoding and encoding for the daemon's line-oriented JSON stream.
"""

import json
from typing import Any, Optional, Union

from pydantic import ValidationError

from sigchat.errors import DecodeError
from sigchat.models.envelope import Attachment, DaemonMessage, Envelope, SendRequest


def decode(raw: Union[bytes, str]) -> Envelope:
    """Parse one daemon line into an Envelope. Raises DecodeError if invalid."""
    data = raw.encode("utf-8") if isinstance(raw, str) else raw
    try:
        obj = json.loads(data)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise DecodeError(f"Malformed envelope JSON: {e}", raw=data)
    if not isinstance(obj, dict):
        raise DecodeError("Envelope line is not a JSON object", raw=data)

    # JSON-RPC notifications wrap the envelope in params
    if "envelope" not in obj and isinstance(obj.get("params"), dict):
        obj = obj["params"]

    if not isinstance(obj.get("envelope"), dict):
        raise DecodeError("Line carries no envelope object", raw=data)
    try:
        return DaemonMessage.model_validate(obj).envelope
    except ValidationError as e:
        raise DecodeError(f"Invalid envelope: {e.error_count()} field error(s)", raw=data)


def encode(envelope: Envelope) -> bytes:
    """Serialize an Envelope back to a daemon line (no trailing newline)."""
    body = envelope.model_dump(by_alias=True, exclude_unset=True)
    return json.dumps({"envelope": body}, separators=(",", ":")).encode("utf-8")


def build_send_request(
    recipient: str,
    message: str,
    timestamp: int,
    attachments: Optional[list[Attachment]] = None,
) -> SendRequest:
    """Build the outgoing send request; attachments are addressed by local path."""
    paths = [a.filename for a in attachments or [] if a.filename]
    return SendRequest(recipient=recipient, message=message, timestamp=timestamp, attachments=paths)


def encode_send(request: SendRequest) -> bytes:
    payload: dict[str, Any] = request.model_dump(by_alias=True)
    return json.dumps(payload, separators=(",", ":")).encode("utf-8") + b"\n"


def decode_send(raw: Union[bytes, str]) -> SendRequest:
    """Parse a send request line, as a daemon or test double would."""
    try:
        return SendRequest.model_validate_json(raw)
    except ValidationError as e:
        raise DecodeError(f"Invalid send request: {e.error_count()} field error(s)")
