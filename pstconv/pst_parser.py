"""PST/OST reader using libpff."""

from __future__ import annotations

import logging
from typing import Any, Iterator

from .errors import SourceFormatError, SourceStructureError
from .models import SourceAttachment, SourceFolder, SourceMessage, SourceRecipient

logger = logging.getLogger(__name__)

# MAPI property tags
PR_DISPLAY_NAME = 0x3001
PR_EMAIL_ADDRESS = 0x3003
PR_SMTP_ADDRESS = 0x39FE
PR_RECIPIENT_TYPE = 0x0C15
PR_SENDER_EMAIL_ADDRESS = 0x0C1F
PR_SENDER_SMTP_ADDRESS = 0x5D01
PR_ATTACH_FILENAME = 0x3704
PR_ATTACH_LONG_FILENAME = 0x3707
PR_ATTACH_MIME_TAG = 0x370E
PR_ATTACH_CONTENT_ID = 0x3712


class PstFile:
    """An open PST/OST file.

    Use as a context manager; pypff is imported on open so the rest of the
    package works without libpff installed.
    """

    def __init__(self, path: str):
        self.path = path
        self._pst = None

    def open(self) -> PstFile:
        import pypff

        pst = pypff.file()
        try:
            pst.open(self.path)
        except OSError as e:
            raise SourceFormatError(f"Failed to open {self.path}: {e}") from e
        self._pst = pst
        return self

    def root_folder(self) -> PstFolder:
        if self._pst is None:
            raise SourceFormatError(f"{self.path} is not open")
        try:
            return PstFolder(self._pst.get_root_folder())
        except OSError as e:
            raise SourceFormatError(f"Failed to read root folder of {self.path}: {e}") from e

    def close(self) -> None:
        if self._pst is not None:
            self._pst.close()
            self._pst = None

    def __enter__(self) -> PstFile:
        return self.open()

    def __exit__(self, *exc) -> None:
        self.close()


class PstFolder(SourceFolder):
    """SourceFolder over a pypff.folder."""

    def __init__(self, folder: Any):
        self._folder = folder

    @property
    def name(self) -> str:
        return self._folder.name or ""

    @property
    def content_count(self) -> int:
        return self._folder.number_of_sub_messages

    def children(self) -> Iterator[SourceMessage]:
        for i in range(self._folder.number_of_sub_messages):
            try:
                message = self._folder.get_sub_message(i)
            except OSError as e:
                raise SourceStructureError(
                    f"Failed to read message {i} of folder {self.name!r}: {e}"
                ) from e
            try:
                extracted = _extract_message(message)
            except OSError as e:
                logger.error("Failed to read message %d of folder %r: %s", i, self.name, e)
                continue
            yield extracted

    def sub_folders(self) -> Iterator[PstFolder]:
        for i in range(self._folder.number_of_sub_folders):
            try:
                sub_folder = self._folder.get_sub_folder(i)
            except OSError as e:
                raise SourceStructureError(
                    f"Failed to read sub-folder {i} of folder {self.name!r}: {e}"
                ) from e
            yield PstFolder(sub_folder)


def _record_sets(item: Any) -> Iterator[Any]:
    """Yield the MAPI record sets of a pypff item."""
    count = getattr(item, "number_of_record_sets", None)
    if count is not None:
        for i in range(count):
            yield item.get_record_set(i)
        return
    # Older bindings expose recipients as plain records
    for i in range(getattr(item, "number_of_records", 0)):
        yield item.get_record(i)


def _entries(record_set: Any) -> dict[int, Any]:
    entries = {}
    for k in range(record_set.number_of_entries):
        entry = record_set.get_entry(k)
        entries.setdefault(entry.entry_type, entry)
    return entries


def _entry_string(entries: dict[int, Any], *entry_types: int) -> str | None:
    for entry_type in entry_types:
        entry = entries.get(entry_type)
        if entry is None:
            continue
        try:
            value = entry.get_data_as_string()
        except OSError:
            continue
        if value:
            return value
    return None


def _entry_int(entries: dict[int, Any], entry_type: int, default: int = 0) -> int:
    entry = entries.get(entry_type)
    if entry is None:
        return default
    try:
        return entry.get_data_as_integer()
    except OSError:
        return default


def _item_entries(item: Any) -> dict[int, Any]:
    merged: dict[int, Any] = {}
    try:
        for record_set in _record_sets(item):
            for entry_type, entry in _entries(record_set).items():
                merged.setdefault(entry_type, entry)
    except OSError as e:
        logger.debug("Failed to read record sets: %s", e)
    return merged


def _decode_body(body: bytes | str | None) -> str | None:
    if isinstance(body, bytes):
        return body.decode("utf-8", errors="replace")
    return body


def _read_body(message: Any, attr: str) -> str | None:
    try:
        return _decode_body(getattr(message, attr))
    except OSError as e:
        logger.warning("Failed to read %s of message %s: %s", attr, message.identifier, e)
        return None


def _extract_message(message: Any) -> SourceMessage:
    """Build a SourceMessage from a pypff.message."""
    entries = _item_entries(message)

    sender_email = getattr(message, "sender_email_address", None) or _entry_string(
        entries, PR_SENDER_SMTP_ADDRESS, PR_SENDER_EMAIL_ADDRESS
    )

    return SourceMessage(
        descriptor_id=message.identifier,
        subject=message.subject,
        body=_read_body(message, "plain_text_body"),
        body_html=_read_body(message, "html_body"),
        transport_headers=message.transport_headers,
        sender_email=sender_email,
        sender_name=message.sender_name,
        submit_time=message.client_submit_time,
        delivery_time=message.delivery_time,
        recipients=list(_extract_recipients(message)),
        attachments=list(_extract_attachments(message)),
    )


def _extract_recipients(message: Any) -> Iterator[SourceRecipient]:
    try:
        recipients = message.get_recipients()
    except OSError as e:
        logger.warning("Failed to read recipients of message %s: %s", message.identifier, e)
        return
    if recipients is None:
        return
    for record_set in _record_sets(recipients):
        entries = _entries(record_set)
        email_addr = _entry_string(entries, PR_SMTP_ADDRESS, PR_EMAIL_ADDRESS)
        if not email_addr:
            continue
        yield SourceRecipient(
            email=email_addr,
            display_name=_entry_string(entries, PR_DISPLAY_NAME),
            recipient_type=_entry_int(entries, PR_RECIPIENT_TYPE),
        )


def _extract_attachments(message: Any) -> Iterator[SourceAttachment | None]:
    for i in range(message.number_of_attachments):
        try:
            attachment = message.get_attachment(i)
        except OSError as e:
            logger.warning("Failed to read attachment %d of message %s: %s", i, message.identifier, e)
            yield None
            continue
        entries = _item_entries(attachment)
        yield SourceAttachment(
            long_filename=_entry_string(entries, PR_ATTACH_LONG_FILENAME),
            display_name=_entry_string(entries, PR_DISPLAY_NAME) or getattr(attachment, "name", None),
            filename=_entry_string(entries, PR_ATTACH_FILENAME),
            mime_tag=_entry_string(entries, PR_ATTACH_MIME_TAG),
            content_id=_entry_string(entries, PR_ATTACH_CONTENT_ID),
            loader=_attachment_loader(attachment),
        )


def _attachment_loader(attachment: Any):
    def load() -> bytes:
        size = attachment.size
        return attachment.read_buffer(size) if size > 0 else b""

    return load
