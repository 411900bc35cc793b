"""
sigchat error types.

DecodeError and per-send TransportErrors are recovered locally and reported
through the event notifier; only a lost daemon stream stops ingestion.
"""

from typing import Any, Optional


class SigchatError(Exception):
    def __init__(self, code: str, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.details = details


class DecodeError(SigchatError):
    def __init__(self, message: str, raw: Optional[bytes] = None):
        super().__init__("decode_error", message)
        self.raw = raw


class TransportError(SigchatError):
    def __init__(self, message: str, contact: Optional[str] = None, details: Optional[dict[str, Any]] = None):
        super().__init__("transport_error", message, details)
        self.contact = contact


class NotFoundError(SigchatError):
    def __init__(self, message: str, address: Optional[str] = None):
        super().__init__("not_found", message)
        self.address = address


class AttachmentError(SigchatError):
    def __init__(self, message: str, path: Optional[str] = None, code: str = "attachment_error"):
        super().__init__(code, message)
        self.path = path


class ConfigError(SigchatError):
    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__("config_error", message, details)
