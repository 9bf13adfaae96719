"""Target mail stores: one EML file per message, or one mbox file per folder.

Both backends expose the same folder interface so the converter and the
auditor can walk either of them:

    store = create_store(output_dir, OutputFormat.MBOX, StoreConfig())
    store.connect()
    inbox = store.default_folder().get_folder("Inbox")
    if not inbox.exists():
        inbox.create()
    inbox.open(READ_WRITE)
    inbox.append_messages(message)
    inbox.close()
    store.close()
"""

from __future__ import annotations

import email
import logging
import mailbox
from abc import ABC, abstractmethod
from email.errors import HeaderParseError
from email.header import decode_header, make_header
from email.message import Message
from pathlib import Path
from typing import Iterator

from .errors import StoreError
from .mapper import DESCRIPTOR_ID_HEADER
from .models import OutputFormat, StoreConfig
from .sanitizer import EML_FILE_EXTENSION, eml_file_name

logger = logging.getLogger(__name__)

READ_ONLY = 1
READ_WRITE = 2

MBOX_CHILDREN_SUFFIX = ".sbd"
_MBOX_IGNORED_SUFFIXES = (MBOX_CHILDREN_SUFFIX, ".lock", ".msf")


def descriptor_id_of(message: Message) -> str:
    """Traceability id of a converted message, "0" when missing."""
    value = message.get(DESCRIPTOR_ID_HEADER)
    if value is None:
        return "0"
    return str(value).strip()


def decode_subject(message: Message) -> str | None:
    value = message.get("Subject")
    if value is None:
        return None
    try:
        return str(make_header(decode_header(value)))
    except (HeaderParseError, UnicodeError, LookupError):
        return str(value)


class Folder(ABC):
    """A mail folder inside a Store."""

    def __init__(self, store: Store, path: Path):
        self.store = store
        self.path = path
        self.mode: int | None = None

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def holds_messages(self) -> bool:
        return True

    @property
    def is_open(self) -> bool:
        return self.mode is not None

    @abstractmethod
    def exists(self) -> bool:
        ...

    @abstractmethod
    def create(self) -> None:
        """Create the folder; raises StoreError if it already exists."""

    @abstractmethod
    def get_folder(self, name: str) -> Folder:
        ...

    @abstractmethod
    def list(self) -> list[Folder]:
        """Child folders, sorted by name."""

    @abstractmethod
    def append_messages(self, *messages: Message) -> None:
        ...

    @abstractmethod
    def messages(self) -> Iterator[Message]:
        ...

    @abstractmethod
    def message_count(self) -> int:
        ...

    def open(self, mode: int = READ_ONLY) -> None:
        self.mode = mode

    def close(self) -> None:
        self.mode = None

    def __repr__(self) -> str:
        return f"{type(self).__name__}({str(self.path)!r})"


class Store(ABC):
    """A target mailbox rooted at a directory."""

    def __init__(self, directory: str | Path, config: StoreConfig | None = None):
        self.directory = Path(directory)
        self.config = config or StoreConfig()
        self.connected = False

    def connect(self) -> None:
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreError(f"Failed to create output directory {self.directory}: {e}") from e
        self.connected = True

    def close(self) -> None:
        self.connected = False

    def default_folder(self) -> Folder:
        if not self.connected:
            raise StoreError("Store is not connected")
        return self._root_folder()

    def get_folder(self, name: str) -> Folder:
        return self.default_folder().get_folder(name)

    @abstractmethod
    def _root_folder(self) -> Folder:
        ...

    def parse(self, fp) -> Message:
        return email.message_from_binary_file(fp, policy=self.config.policy)

    def __enter__(self) -> Store:
        self.connect()
        return self

    def __exit__(self, *exc) -> None:
        self.close()


# ── EML ───────────────────────────────────────────────────────────────


class EmlFolder(Folder):
    """A directory holding one .eml file per message."""

    def exists(self) -> bool:
        return self.path.is_dir()

    def create(self) -> None:
        if self.exists():
            raise StoreError(f"Folder already exists: {self.path}")
        try:
            self.path.mkdir(parents=True)
        except OSError as e:
            raise StoreError(f"Failed to create folder {self.path}: {e}") from e

    def get_folder(self, name: str) -> EmlFolder:
        return EmlFolder(self.store, self.path / name)

    def list(self) -> list[Folder]:
        if not self.exists():
            return []
        return [EmlFolder(self.store, p) for p in sorted(self.path.iterdir()) if p.is_dir()]

    def message_files(self) -> list[Path]:
        try:
            return sorted(
                p for p in self.path.iterdir() if p.is_file() and p.name.endswith(EML_FILE_EXTENSION)
            )
        except OSError as e:
            raise StoreError(f"Failed to list messages in {self.path}: {e}") from e

    def append_messages(self, *messages: Message) -> None:
        for message in messages:
            file_name = eml_file_name(decode_subject(message), descriptor_id_of(message))
            output_file = self.path / file_name
            try:
                output_file.write_bytes(message.as_bytes())
            except OSError as e:
                raise StoreError(f"Failed to write EML file {output_file}: {e}") from e

    def messages(self) -> Iterator[Message]:
        for eml_file in self.message_files():
            try:
                with open(eml_file, "rb") as f:
                    yield self.store.parse(f)
            except OSError as e:
                raise StoreError(f"Failed to read {eml_file}: {e}") from e

    def message_count(self) -> int:
        return len(self.message_files())


class EmlStore(Store):
    def _root_folder(self) -> EmlFolder:
        return EmlFolder(self, self.directory)


# ── MBOX ──────────────────────────────────────────────────────────────


class MboxFolder(Folder):
    """One mbox file per folder; children live in the sibling '<name>.sbd' directory.

    The store root is the output directory itself and only holds folders.
    """

    def __init__(self, store: Store, path: Path, children_dir: Path, is_root: bool = False):
        super().__init__(store, path)
        self.children_dir = children_dir
        self.is_root = is_root
        self._mbox: mailbox.mbox | None = None

    @property
    def holds_messages(self) -> bool:
        return not self.is_root

    def exists(self) -> bool:
        if self.is_root:
            return self.children_dir.is_dir()
        return self.path.is_file()

    def create(self) -> None:
        if self.exists():
            raise StoreError(f"Folder already exists: {self.path}")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.touch(exist_ok=False)
        except OSError as e:
            raise StoreError(f"Failed to create mbox folder {self.path}: {e}") from e

    def get_folder(self, name: str) -> MboxFolder:
        return MboxFolder(
            self.store,
            self.children_dir / name,
            self.children_dir / f"{name}{MBOX_CHILDREN_SUFFIX}",
        )

    def list(self) -> list[Folder]:
        if not self.children_dir.is_dir():
            return []
        return [
            self.get_folder(p.name)
            for p in sorted(self.children_dir.iterdir())
            if p.is_file() and not p.name.endswith(_MBOX_IGNORED_SUFFIXES)
        ]

    def open(self, mode: int = READ_ONLY) -> None:
        if self.is_root:
            super().open(mode)
            return
        if self.is_open:
            raise StoreError(f"Folder already open: {self.path}")
        if not self.exists():
            raise StoreError(f"Folder does not exist: {self.path}")
        try:
            mbox = mailbox.mbox(self.path, factory=self.store.parse, create=False)
            if mode == READ_WRITE:
                mbox.lock()
        except (OSError, mailbox.Error) as e:
            raise StoreError(f"Failed to open mbox folder {self.path}: {e}") from e
        self._mbox = mbox
        super().open(mode)

    def close(self) -> None:
        mbox, self._mbox = self._mbox, None
        super().close()
        if mbox is None:
            return
        try:
            mbox.close()
        except (OSError, mailbox.Error) as e:
            raise StoreError(f"Failed to close mbox folder {self.path}: {e}") from e

    def _require_open(self, mode: int) -> mailbox.mbox:
        if not self.holds_messages:
            raise StoreError(f"Folder cannot hold messages: {self.path}")
        if self._mbox is None or (mode == READ_WRITE and self.mode != READ_WRITE):
            raise StoreError(f"Folder is not open: {self.path}")
        return self._mbox

    def append_messages(self, *messages: Message) -> None:
        mbox = self._require_open(READ_WRITE)
        for message in messages:
            try:
                mbox.add(message)
            except (OSError, mailbox.Error) as e:
                raise StoreError(f"Failed to write to mbox file {self.path}: {e}") from e

    def messages(self) -> Iterator[Message]:
        mbox = self._require_open(READ_ONLY)
        try:
            for key in mbox.iterkeys():
                yield mbox[key]
        except (OSError, mailbox.Error) as e:
            raise StoreError(f"Failed to read mbox file {self.path}: {e}") from e

    def message_count(self) -> int:
        if not self.holds_messages:
            return 0
        return len(self._require_open(READ_ONLY))


class MboxStore(Store):
    def _root_folder(self) -> MboxFolder:
        return MboxFolder(self, self.directory, self.directory, is_root=True)


_BACKENDS = {
    OutputFormat.EML: EmlStore,
    OutputFormat.MBOX: MboxStore,
}


def create_store(directory: str | Path, fmt: OutputFormat, config: StoreConfig | None = None) -> Store:
    """Instantiate the store backend for `fmt` (not yet connected)."""
    try:
        backend = _BACKENDS[fmt]
    except KeyError:
        raise ValueError(f"Unsupported format: {fmt!r}") from None
    return backend(directory, config)
