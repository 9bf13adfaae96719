"""Map PST messages to MIME messages.

Every converted message is a multipart/mixed container holding one inner
multipart with exactly one body part (HTML, else plain text, else an empty
placeholder), followed by the attachment parts.
"""

from __future__ import annotations

import logging
import mimetypes
import re
from datetime import datetime, timezone
from email import encoders
from email.charset import QP, Charset
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.parser import BytesHeaderParser
from email.policy import compat32
from email.utils import format_datetime, formataddr

from .errors import HeaderEncodingError
from .models import RecipientType, SourceAttachment, SourceMessage

logger = logging.getLogger(__name__)

DESCRIPTOR_ID_HEADER = "X-Outlook-Descriptor-Id"
DEFAULT_MIME_TYPE = "application/octet-stream"

# Describe the original body structure, which is rebuilt from scratch
STALE_HEADERS = frozenset(["content-type", "content-transfer-encoding", "mime-version"])

_FOLDED_LINE = re.compile(r"\r?\n(?=[ \t])")
_LINE_BREAKS = re.compile(r"[\r\n]+")

_RECIPIENT_HEADERS = {
    RecipientType.TO: "To",
    RecipientType.CC: "Cc",
    RecipientType.BCC: "Bcc",
}


def map_message(message: SourceMessage, encoding: str = "utf-8") -> MIMEMultipart:
    """Build a MIME message from a source message.

    Raises HeaderEncodingError when the transport headers can't be
    represented in `encoding`. Attachment problems never raise.
    """
    root = MIMEMultipart()

    if message.transport_headers:
        _copy_transport_headers(root, message, encoding)
    else:
        _synthesize_headers(root, message)
    root[DESCRIPTOR_ID_HEADER] = str(message.descriptor_id)

    content = MIMEMultipart("alternative")
    content.attach(_body_part(message))
    root.attach(content)

    for attachment in message.attachments:
        if attachment is None:
            continue
        part = _attachment_part(attachment, message.descriptor_id)
        if part is not None:
            root.attach(part)

    return root


def format_date(value: datetime) -> str:
    """RFC 5322 date; naive datetimes from libpff are UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return format_datetime(value)


# ── headers ───────────────────────────────────────────────────────────


def _copy_transport_headers(root: MIMEMultipart, message: SourceMessage, encoding: str) -> None:
    try:
        raw = message.transport_headers.encode(encoding)
    except UnicodeError as e:
        raise HeaderEncodingError(encoding, e) from e

    parsed = BytesHeaderParser(policy=compat32).parsebytes(raw)
    for name, value in parsed.raw_items():
        if name.lower() in STALE_HEADERS:
            continue
        root[name] = _decode_header_value(value, encoding)

    if root["Date"] is None and message.delivery_time is not None:
        root["Date"] = format_date(message.delivery_time)


def _decode_header_value(value: str, encoding: str) -> str:
    # The bytes parser keeps non-ASCII octets as surrogate escapes
    try:
        value = value.encode("ascii", "surrogateescape").decode(encoding)
    except UnicodeError as e:
        raise HeaderEncodingError(encoding, e) from e
    return _FOLDED_LINE.sub("", value)


def single_line(value: str | None) -> str:
    """Collapse line breaks so a property value can't end the header block."""
    return _LINE_BREAKS.sub(" ", value or "")


def _synthesize_headers(root: MIMEMultipart, message: SourceMessage) -> None:
    if message.subject is not None:
        root["Subject"] = single_line(message.subject)

    if message.submit_time is not None:
        root["Date"] = format_date(message.submit_time)
    else:
        root["Date"] = ""

    sender_email = single_line(message.sender_email)
    if sender_email:
        root["From"] = formataddr((single_line(message.sender_name) or sender_email, sender_email))

    groups: dict[str, list[str]] = {}
    for recipient in message.recipients:
        header = _RECIPIENT_HEADERS.get(recipient.recipient_type)
        if header is None:
            continue
        groups.setdefault(header, []).append(
            formataddr((single_line(recipient.display_name), single_line(recipient.email)))
        )
    for header in ("To", "Cc", "Bcc"):
        if header in groups:
            root[header] = ", ".join(groups[header])


# ── body ──────────────────────────────────────────────────────────────


def _body_part(message: SourceMessage) -> MIMEText:
    if message.body_html:
        return MIMEText(message.body_html, "html")
    if message.body:
        return MIMEText(message.body, "plain")
    return _placeholder_part()


def _placeholder_part() -> MIMEText:
    charset = Charset("utf-8")
    charset.body_encoding = QP
    return MIMEText("", "plain", charset)


# ── attachments ───────────────────────────────────────────────────────


def _attachment_part(attachment: SourceAttachment, descriptor_id: int) -> MIMEBase | None:
    try:
        data = _attachment_bytes(attachment, descriptor_id)
        maintype, subtype = attachment_mime_type(attachment).split("/", 1)

        part = MIMEBase(maintype, subtype)
        part.set_payload(data)
        encoders.encode_base64(part)
        if attachment.content_id:
            part["Content-ID"] = attachment.content_id
        part.add_header(
            "Content-Disposition",
            "attachment",
            filename=attachment_filename(attachment, descriptor_id),
        )
        return part
    except (AttributeError, TypeError, ValueError) as e:
        logger.warning("Skipping attachment of message %s: %s", descriptor_id, e)
        return None


def _attachment_bytes(attachment: SourceAttachment, descriptor_id: int) -> bytes:
    try:
        return attachment.read_bytes()
    except OSError as e:
        logger.warning("Failed to read attachment of message %s, writing it empty: %s", descriptor_id, e)
        return b""


def is_mime_type_known(mime_type: str) -> bool:
    return bool(mimetypes.guess_all_extensions(mime_type, strict=False))


def attachment_mime_type(attachment: SourceAttachment) -> str:
    """Declared MIME tag when registered, application/octet-stream otherwise."""
    tag = (attachment.mime_tag or "").strip().lower()
    if not tag:
        return DEFAULT_MIME_TYPE
    if is_mime_type_known(tag):
        return tag
    logger.warning("Unknown mime type %s", tag)
    return DEFAULT_MIME_TYPE


def attachment_filename(attachment: SourceAttachment, descriptor_id: int) -> str:
    for name in (attachment.long_filename, attachment.display_name, attachment.filename):
        if name:
            return name
    return f"attachment-{descriptor_id}"
