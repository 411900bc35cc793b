"""
Wire envelope models for the daemon's JSON stream.

Field names on the wire are camelCase; unknown fields are ignored so newer
daemons can add to the schema without breaking decoding.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, RootModel, ValidationInfo, field_validator
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    @field_validator("*", mode="before")
    @classmethod
    def _null_as_default(cls, value: Any, info: ValidationInfo) -> Any:
        """JSON null reads as the field's default."""
        if value is not None or info.field_name is None:
            return value
        field = cls.model_fields[info.field_name]
        if field.is_required():
            return value
        return field.get_default(call_default_factory=True)


class OpaquePayload(RootModel[Any]):
    """A wire value that is carried through without being interpreted."""

    @property
    def raw(self) -> Any:
        return self.root


class Attachment(WireModel):
    content_type: Optional[str] = None
    filename: Optional[str] = None
    id: Optional[str] = None
    size: Optional[int] = None

    @property
    def has_remote_id(self) -> bool:
        return bool(self.id)

    @property
    def identity(self) -> str:
        """Remote ID, or the original filename when none was assigned yet."""
        if self.id:
            return self.id
        return self.filename or ""


class SentMessage(WireModel):
    timestamp: int = 0
    message: Optional[str] = None
    expires_in_seconds: int = 0
    attachments: Optional[list[Attachment]] = None
    group_info: Optional[OpaquePayload] = None
    destination: Optional[str] = None


class SyncMessage(WireModel):
    sent_message: Optional[SentMessage] = None
    type: Optional[OpaquePayload] = None
    read_messages: Optional[OpaquePayload] = None


class DataMessage(WireModel):
    timestamp: int = 0
    message: Optional[str] = None
    expires_in_seconds: int = 0
    attachments: Optional[list[Attachment]] = None
    group_info: Optional[OpaquePayload] = None


class ReceiptMessage(WireModel):
    when: int = 0
    is_delivery: bool = False
    is_read: bool = False
    timestamps: list[int] = []


class PayloadKind(str, Enum):
    DATA = "data"
    SENT = "sent"
    RECEIPT = "receipt"
    CALL = "call"
    EMPTY = "empty"


class Envelope(WireModel):
    source: Optional[str] = None
    source_device: int = 0
    timestamp: int = 0
    is_receipt: bool = False
    sync_message: Optional[SyncMessage] = None
    data_message: Optional[DataMessage] = None
    receipt_message: Optional[ReceiptMessage] = None
    call_message: Optional[OpaquePayload] = None

    @property
    def sent_message(self) -> Optional[SentMessage]:
        if self.sync_message is None:
            return None
        return self.sync_message.sent_message

    @property
    def kind(self) -> PayloadKind:
        """The payload variant this envelope carries.

        Several variants may be populated at once; data messages win over
        synced sends, which win over receipts, which win over calls.
        """
        if self.data_message is not None:
            return PayloadKind.DATA
        if self.sent_message is not None:
            return PayloadKind.SENT
        if self.receipt_message is not None:
            return PayloadKind.RECEIPT
        if self.call_message is not None:
            return PayloadKind.CALL
        return PayloadKind.EMPTY


class DaemonMessage(WireModel):
    envelope: Envelope


class SendRequest(WireModel):
    type: str = "send"
    recipient: str
    message: str = ""
    timestamp: int
    attachments: list[str] = []
