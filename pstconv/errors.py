"""Exceptions raised while converting PST/OST files."""

from __future__ import annotations


class ConversionError(Exception):
    """Base class for conversion failures."""

    pass


class IllegalDirectoryError(ConversionError, ValueError):
    """Raised when the output path exists but is not a directory."""

    pass


class UnsupportedEncodingError(ConversionError, LookupError):
    """Raised when the requested charset name cannot be resolved."""

    pass


class SourceFormatError(ConversionError):
    """Raised when the PST/OST file cannot be opened or parsed."""

    pass


class SourceStructureError(ConversionError):
    """Raised when a folder's child cursor hits a malformed node."""

    pass


class HeaderEncodingError(ConversionError):
    """Raised when transport headers can't be decoded with the chosen charset."""

    def __init__(self, encoding: str, cause: Exception):
        super().__init__(
            f"Failed to decode transport headers as {encoding}: {cause}. "
            f"The --encoding option may be wrong for this file."
        )
        self.encoding = encoding
        self.cause = cause


class StoreError(ConversionError):
    """Raised when the target mail store or one of its folders fails."""

    pass
