from datetime import datetime

import pytest

from pstconv.errors import SourceStructureError
from pstconv.models import (
    RecipientType,
    SourceAttachment,
    SourceFolder,
    SourceMessage,
    SourceRecipient,
)


class FakeFolder(SourceFolder):
    """In-memory source folder; raises SourceStructureError at `fail_at`."""

    def __init__(self, name, messages=(), sub_folders=(), fail_at=None):
        self._name = name
        self._messages = list(messages)
        self._sub_folders = list(sub_folders)
        self.fail_at = fail_at

    @property
    def name(self):
        return self._name

    @property
    def content_count(self):
        return len(self._messages)

    def children(self):
        for i, message in enumerate(self._messages):
            if self.fail_at is not None and i >= self.fail_at:
                raise SourceStructureError(f"corrupt node {i}")
            yield message

    def sub_folders(self):
        yield from self._sub_folders


class FakePstFile:
    def __init__(self, root):
        self.root = root
        self.closed = False

    def root_folder(self):
        return self.root

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.closed = True


def fake_opener(root):
    def opener(path):
        return FakePstFile(root)

    return opener


def make_message(descriptor_id, **kwargs):
    defaults = dict(
        subject=f"Message {descriptor_id}",
        body=f"Body of {descriptor_id}",
        sender_email="alice@example.com",
        sender_name="Alice",
        submit_time=datetime(2022, 1, 13, 23, 34),
        delivery_time=datetime(2022, 1, 13, 23, 35),
        recipients=[SourceRecipient("bob@example.com", "Bob", RecipientType.TO)],
    )
    defaults.update(kwargs)
    return SourceMessage(descriptor_id=descriptor_id, **defaults)


ROOT_NAME = "Inicio do ficheiro de dados do Outlook"
INBOX_NAME = "Caixa de Entrada"


@pytest.fixture
def outlook_tree():
    """Three messages in root/<data file>/Caixa de Entrada."""
    inbox = FakeFolder(
        INBOX_NAME,
        messages=[
            make_message(2097188, subject="Primeiro"),
            make_message(
                2097220,
                subject="Com anexo",
                attachments=[
                    SourceAttachment(
                        long_filename="notas.txt",
                        mime_tag="text/plain",
                        loader=lambda: b"conteudo",
                    )
                ],
            ),
            make_message(
                2097252,
                subject="Teste",
                body="Teste 23:34",
                sender_email="abcd@as.pt",
                sender_name=None,
            ),
        ],
    )
    data_file = FakeFolder(ROOT_NAME, sub_folders=[inbox])
    return FakeFolder("", sub_folders=[data_file])


@pytest.fixture
def pst_file(tmp_path):
    """Placeholder input file; the tree itself comes from fake_opener."""
    path = tmp_path / "outlook.pst"
    path.write_bytes(b"!BDN")
    return path
