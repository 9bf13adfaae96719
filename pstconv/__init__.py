"""Convert Microsoft Outlook OST/PST files to EML or MBOX."""

__version__ = "1.1.0"
