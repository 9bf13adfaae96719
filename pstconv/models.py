"""Data models for PST conversion."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from email import policy as email_policy
from email.policy import Policy
from enum import Enum, IntEnum
from typing import Callable, Iterator


class OutputFormat(Enum):
    """Target mailbox formats."""

    MBOX = "mbox"
    EML = "eml"

    @classmethod
    def formats(cls) -> list[str]:
        return [f.value for f in cls]

    @classmethod
    def from_value(cls, value: str | None) -> OutputFormat | None:
        if value is None:
            return None
        for f in cls:
            if f.value == value.lower():
                return f
        return None


class RecipientType(IntEnum):
    """MAPI recipient type codes (PR_RECIPIENT_TYPE)."""

    TO = 1
    CC = 2
    BCC = 3


@dataclass
class SourceRecipient:
    email: str
    display_name: str | None = None
    recipient_type: int = RecipientType.TO


@dataclass
class SourceAttachment:
    """Attachment view with lazy access to its bytes."""

    long_filename: str | None = None
    display_name: str | None = None
    filename: str | None = None
    mime_tag: str | None = None
    content_id: str | None = None
    loader: Callable[[], bytes] | None = field(default=None, repr=False)

    def read_bytes(self) -> bytes:
        """Read the whole attachment into memory.

        Raises OSError when the underlying stream can't be opened.
        """
        if self.loader is None:
            return b""
        return self.loader()


@dataclass
class SourceMessage:
    """A message as exposed by the PST parser."""

    descriptor_id: int
    subject: str | None = None
    body: str | None = None
    body_html: str | None = None
    transport_headers: str | None = None
    sender_email: str | None = None
    sender_name: str | None = None
    submit_time: datetime | None = None
    delivery_time: datetime | None = None
    recipients: list[SourceRecipient] = field(default_factory=list)
    attachments: list[SourceAttachment | None] = field(default_factory=list)


class SourceFolder(ABC):
    """Read-only view of one folder in the source tree."""

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @property
    @abstractmethod
    def content_count(self) -> int:
        ...

    @abstractmethod
    def children(self) -> Iterator[SourceMessage]:
        """Single-pass cursor over the folder's messages.

        May raise SourceStructureError when the next node is malformed.
        """

    @abstractmethod
    def sub_folders(self) -> Iterator[SourceFolder]:
        ...


@dataclass(frozen=True)
class ConversionResult:
    """Outcome of one conversion run."""

    message_count: int
    duration_ms: int

    @property
    def seconds(self) -> float:
        return self.duration_ms / 1000


@dataclass(frozen=True)
class StoreConfig:
    """Per-run settings handed to the target store.

    `encoding` only governs how transport headers are decoded; stores write
    serialized MIME bytes regardless of it.
    """

    encoding: str = "utf-8"
    policy: Policy = email_policy.compat32
