"""Tests for the PST tree converter."""

import email
from email.utils import parseaddr
from unittest.mock import MagicMock

import pytest

from pstconv.converter import PstConverter, resolve_encoding
from pstconv.errors import IllegalDirectoryError, StoreError, UnsupportedEncodingError
from pstconv.mapper import DESCRIPTOR_ID_HEADER
from pstconv.models import OutputFormat
from pstconv.store import READ_ONLY, EmlFolder, MboxFolder, MboxStore

from conftest import INBOX_NAME, ROOT_NAME, FakeFolder, fake_opener, make_message


def _converter(root, **kwargs):
    return PstConverter(source_opener=fake_opener(root), **kwargs)


class TestValidation:
    def test_input_not_found(self, tmp_path):
        opener = MagicMock()
        converter = PstConverter(source_opener=opener)
        with pytest.raises(FileNotFoundError, match="No such file"):
            converter.convert(tmp_path / "missing.pst", tmp_path, OutputFormat.EML, "UTF-8")
        opener.assert_not_called()

    def test_input_is_directory(self, tmp_path):
        converter = PstConverter(source_opener=MagicMock())
        with pytest.raises(FileNotFoundError, match="Not a file"):
            converter.convert(tmp_path, tmp_path, OutputFormat.EML, "UTF-8")

    def test_output_is_regular_file(self, tmp_path, pst_file):
        output = tmp_path / "textfile.txt"
        output.write_text("not a directory")
        opener = MagicMock()
        converter = PstConverter(source_opener=opener)

        with pytest.raises(IllegalDirectoryError, match="Not a directory"):
            converter.convert(pst_file, output, OutputFormat.EML, "UTF-8")
        opener.assert_not_called()

    def test_format_none(self, tmp_path, pst_file):
        converter = PstConverter(source_opener=MagicMock())
        with pytest.raises(ValueError, match="format is None."):
            converter.convert(pst_file, tmp_path, None, "UTF-8")

    def test_invalid_encoding(self, tmp_path, pst_file):
        opener = MagicMock()
        converter = PstConverter(source_opener=opener)
        with pytest.raises(UnsupportedEncodingError, match="not-an-encoding"):
            converter.convert(pst_file, tmp_path / "out", OutputFormat.EML, "not-an-encoding")
        opener.assert_not_called()
        assert not (tmp_path / "out").exists()

    def test_resolve_encoding(self):
        assert resolve_encoding("ISO-8859-1") == "iso8859-1"
        with pytest.raises(UnsupportedEncodingError):
            resolve_encoding("")


class TestConvertEml:
    def test_three_messages(self, tmp_path, pst_file, outlook_tree):
        output = tmp_path / "mailbox"
        result = _converter(outlook_tree).convert(pst_file, output, OutputFormat.EML, "ISO-8859-1")

        assert result.message_count == 3
        assert result.duration_ms >= 0

        files = sorted(output.rglob("*.eml"))
        assert len(files) == 3
        inbox = output / ROOT_NAME / INBOX_NAME
        assert sorted(p.name for p in inbox.iterdir()) == [
            "2097188-Primeiro.eml",
            "2097220-Com anexo.eml",
            "2097252-Teste.eml",
        ]

        with open(inbox / "2097252-Teste.eml", "rb") as f:
            msg = email.message_from_binary_file(f)
        assert msg[DESCRIPTOR_ID_HEADER] == "2097252"
        assert parseaddr(msg["From"])[1] == "abcd@as.pt"
        body = msg.get_payload(0).get_payload(0)
        assert body.get_payload(decode=True).decode("us-ascii") == "Teste 23:34"

    def test_attachment_written(self, tmp_path, pst_file, outlook_tree):
        output = tmp_path / "mailbox"
        _converter(outlook_tree).convert(pst_file, output, OutputFormat.EML, "UTF-8")

        path = output / ROOT_NAME / INBOX_NAME / "2097220-Com anexo.eml"
        msg = email.message_from_bytes(path.read_bytes())
        attachment = msg.get_payload(1)
        assert attachment.get_filename() == "notas.txt"
        assert attachment.get_payload(decode=True) == b"conteudo"

    def test_creates_missing_output_directory(self, tmp_path, pst_file):
        output = tmp_path / "new" / "dir"
        result = _converter(FakeFolder("")).convert(pst_file, output, OutputFormat.EML, "UTF-8")
        assert output.is_dir()
        assert result.message_count == 0

    def test_existing_target_folder_reused(self, tmp_path, pst_file, outlook_tree):
        output = tmp_path / "mailbox"
        (output / ROOT_NAME / INBOX_NAME).mkdir(parents=True)
        result = _converter(outlook_tree).convert(pst_file, output, OutputFormat.EML, "UTF-8")
        assert result.message_count == 3

    def test_folder_names_sanitized(self, tmp_path, pst_file):
        root = FakeFolder("", sub_folders=[FakeFolder("Itens Excluídos", messages=[make_message(1)])])
        output = tmp_path / "mailbox"
        _converter(root).convert(pst_file, output, OutputFormat.EML, "UTF-8")
        assert (output / "Itens Excluidos" / "1-Message 1.eml").is_file()


class TestConvertMbox:
    def test_three_messages(self, tmp_path, pst_file, outlook_tree):
        output = tmp_path / "mailbox"
        result = _converter(outlook_tree).convert(pst_file, output, OutputFormat.MBOX, "ISO-8859-1")
        assert result.message_count == 3

        store = MboxStore(output)
        store.connect()
        inbox = store.get_folder(ROOT_NAME).get_folder(INBOX_NAME)
        inbox.open(READ_ONLY)
        try:
            messages = list(inbox.messages())
        finally:
            inbox.close()
            store.close()

        assert [m[DESCRIPTOR_ID_HEADER] for m in messages] == ["2097188", "2097220", "2097252"]
        last = messages[-1]
        assert parseaddr(last["From"])[1] == "abcd@as.pt"
        body = last.get_payload(0).get_payload(0)
        assert body.get_payload(decode=True).decode("us-ascii") == "Teste 23:34"

    def test_layout(self, tmp_path, pst_file, outlook_tree):
        output = tmp_path / "mailbox"
        _converter(outlook_tree).convert(pst_file, output, OutputFormat.MBOX, "UTF-8")
        assert (output / ROOT_NAME).is_file()
        assert (output / f"{ROOT_NAME}.sbd" / INBOX_NAME).is_file()

    def test_folders_closed_in_post_order(self, tmp_path, pst_file, monkeypatch):
        leaf = FakeFolder("C", messages=[make_message(3)])
        tree = FakeFolder(
            "",
            sub_folders=[
                FakeFolder("A", messages=[make_message(1)], sub_folders=[leaf]),
                FakeFolder("B", messages=[make_message(2)]),
            ],
        )
        open_paths = []
        max_open = []
        original_open, original_close = MboxFolder.open, MboxFolder.close

        def tracking_open(self, mode=READ_ONLY):
            original_open(self, mode)
            open_paths.append(self.path)
            max_open.append(len(open_paths))

        def tracking_close(self):
            if self.path in open_paths:
                open_paths.remove(self.path)
            original_close(self)

        monkeypatch.setattr(MboxFolder, "open", tracking_open)
        monkeypatch.setattr(MboxFolder, "close", tracking_close)

        result = _converter(tree).convert(pst_file, tmp_path / "out", OutputFormat.MBOX, "UTF-8")

        assert result.message_count == 3
        assert open_paths == []
        assert max(max_open) == 2


class TestFailureIsolation:
    def test_bad_message_skipped(self, tmp_path, pst_file):
        inbox = FakeFolder(
            "Inbox",
            messages=[
                make_message(1),
                make_message(2, transport_headers="Subject: 日本\r\n\r\n"),
                make_message(3),
            ],
        )
        output = tmp_path / "out"
        result = _converter(FakeFolder("", sub_folders=[inbox])).convert(
            pst_file, output, OutputFormat.EML, "ISO-8859-1"
        )
        assert result.message_count == 2
        assert sorted(p.name for p in (output / "Inbox").iterdir()) == [
            "1-Message 1.eml",
            "3-Message 3.eml",
        ]

    def test_malformed_cursor_abandons_rest_of_folder(self, tmp_path, pst_file):
        broken = FakeFolder(
            "Broken",
            messages=[make_message(1), make_message(2), make_message(3)],
            sub_folders=[FakeFolder("Child", messages=[make_message(4)])],
            fail_at=1,
        )
        sibling = FakeFolder("Sibling", messages=[make_message(5)])
        root = FakeFolder("", sub_folders=[broken, sibling])

        result = _converter(root).convert(pst_file, tmp_path / "out", OutputFormat.EML, "UTF-8")

        assert result.message_count == 3
        assert (tmp_path / "out" / "Broken" / "1-Message 1.eml").is_file()
        assert (tmp_path / "out" / "Broken" / "Child" / "4-Message 4.eml").is_file()
        assert (tmp_path / "out" / "Sibling" / "5-Message 5.eml").is_file()

    def test_failed_folder_creation_skips_subtree(self, tmp_path, pst_file, monkeypatch):
        original_create = EmlFolder.create

        def create(self):
            if self.name == "Denied":
                raise StoreError("permission denied")
            original_create(self)

        monkeypatch.setattr(EmlFolder, "create", create)
        root = FakeFolder(
            "",
            sub_folders=[
                FakeFolder("Denied", messages=[make_message(1)], sub_folders=[FakeFolder("Deep", messages=[make_message(2)])]),
                FakeFolder("Allowed", messages=[make_message(3)]),
            ],
        )

        result = _converter(root).convert(pst_file, tmp_path / "out", OutputFormat.EML, "UTF-8")

        assert result.message_count == 1
        assert not (tmp_path / "out" / "Denied").exists()

    def test_failed_append_skipped(self, tmp_path, pst_file, monkeypatch):
        original_append = EmlFolder.append_messages

        def append(self, *messages):
            if messages[0][DESCRIPTOR_ID_HEADER] == "2":
                raise StoreError("disk full")
            original_append(self, *messages)

        monkeypatch.setattr(EmlFolder, "append_messages", append)
        root = FakeFolder("", messages=[make_message(1), make_message(2), make_message(3)])

        result = _converter(root).convert(pst_file, tmp_path / "out", OutputFormat.EML, "UTF-8")
        assert result.message_count == 2

    def test_store_closed_on_failure(self, tmp_path, pst_file, monkeypatch):
        closed = []
        original_close = MboxStore.close

        def close(self):
            closed.append(self.directory)
            original_close(self)

        monkeypatch.setattr(MboxStore, "close", close)

        class Exploding(FakeFolder):
            def sub_folders(self):
                raise RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            _converter(Exploding("")).convert(pst_file, tmp_path / "out", OutputFormat.MBOX, "UTF-8")
        assert closed == [tmp_path / "out"]


def test_progress_reported_per_folder(tmp_path, pst_file, outlook_tree):
    calls = []
    _converter(outlook_tree, progress=lambda path, count: calls.append((path, count))).convert(
        pst_file, tmp_path / "out", OutputFormat.EML, "UTF-8"
    )
    assert calls == [
        (f"/{ROOT_NAME}/{INBOX_NAME}", 3),
        (f"/{ROOT_NAME}", 3),
        ("/", 3),
    ]
