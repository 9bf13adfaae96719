"""Map display strings to file-system safe names."""

from __future__ import annotations

import unicodedata

FORBIDDEN_CHARS = frozenset('"*/:<>?\\|')
EML_FILE_EXTENSION = ".eml"
# Keeps "<id>-<subject>.eml" well under the usual 255-byte NAME_MAX
MAX_SUBJECT_LENGTH = 200


def strip_accents(text: str) -> str:
    """Remove diacritics, keeping the base characters."""
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(c for c in decomposed if not unicodedata.combining(c))


def sanitize(raw_name: str | None) -> str:
    """Replace every non-printable, non-ASCII or forbidden character with '_'.

    Accents are stripped first, so "Caixa de Saída" becomes "Caixa de Saida".
    """
    if not raw_name:
        return ""
    chars = []
    for c in strip_accents(raw_name):
        if 0x20 <= ord(c) <= 0x7E and c not in FORBIDDEN_CHARS:
            chars.append(c)
        else:
            chars.append("_")
    return "".join(chars)


def eml_file_name(subject: str | None, descriptor_id: int | str) -> str:
    """Build '<id>-<subject>.eml', unique per descriptor id."""
    if not subject:
        return f"{descriptor_id}-NoSubject{EML_FILE_EXTENSION}"
    return f"{descriptor_id}-{sanitize(subject)[:MAX_SUBJECT_LENGTH]}{EML_FILE_EXTENSION}"


def folder_name(display_name: str | None) -> str:
    """Target folder name for a source folder.

    Empty and dot-only names would resolve to the parent directory, so they
    are replaced.
    """
    name = sanitize(display_name)
    if not name:
        return "NoName"
    if not name.strip("."):
        return "_" * len(name)
    return name
