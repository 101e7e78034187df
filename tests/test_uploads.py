from __future__ import annotations

import io
import re
from pathlib import Path

import pytest

from rpl.errors import UploadTooLarge
from rpl.uploads import CHUNK_SIZE, UploadBinder


@pytest.fixture()
def binder(tmp_path: Path) -> UploadBinder:
    return UploadBinder(tmp_path / "uploads", max_bytes=CHUNK_SIZE * 3)


def _stored_files(binder: UploadBinder) -> list[Path]:
    if not binder.directory.exists():
        return []
    return sorted(binder.directory.iterdir())


def test_bind_stores_bytes_under_generated_name(binder: UploadBinder) -> None:
    reference = binder.bind("passport_photo", "me.jpg", io.BytesIO(b"jpeg-bytes"))

    assert re.fullmatch(r"/uploads/passport_photo-\d+-\d+\.jpg", reference)
    stored = binder.resolve(reference)
    assert stored is not None
    assert stored.read_bytes() == b"jpeg-bytes"


def test_field_name_and_extension_are_sanitised(binder: UploadBinder) -> None:
    reference = binder.bind("../pay ment!", "..\\evil/receipt.PNG", io.BytesIO(b"x"))
    assert re.fullmatch(r"/uploads/payment-\d+-\d+\.PNG", reference)

    odd = binder.bind("", "archive.tar.gz?download=1", io.BytesIO(b"x"))
    assert re.fullmatch(r"/uploads/file-\d+-\d+", odd)


def test_rapid_binds_never_collide(binder: UploadBinder) -> None:
    references = {
        binder.bind("payment_screenshot", "pay.png", io.BytesIO(b"%d" % index))
        for index in range(200)
    }

    assert len(references) == 200
    assert len(_stored_files(binder)) == 200


def test_upload_at_the_limit_is_accepted(binder: UploadBinder) -> None:
    payload = b"a" * binder.max_bytes
    reference = binder.bind("passport_photo", "big.jpg", io.BytesIO(payload))

    assert binder.resolve(reference).stat().st_size == binder.max_bytes


def test_oversized_upload_is_rejected_and_leaves_nothing_behind(binder: UploadBinder) -> None:
    payload = b"a" * (binder.max_bytes + 1)

    with pytest.raises(UploadTooLarge):
        binder.bind("passport_photo", "big.jpg", io.BytesIO(payload))

    assert _stored_files(binder) == []


class _DroppedConnection(io.RawIOBase):
    def __init__(self) -> None:
        self._calls = 0

    def readable(self) -> bool:
        return True

    def read(self, size: int = -1) -> bytes:
        self._calls += 1
        if self._calls == 1:
            return b"partial"
        raise RuntimeError("client disconnected")


def test_interrupted_upload_is_cleaned_up(binder: UploadBinder) -> None:
    with pytest.raises(RuntimeError):
        binder.bind("payment_screenshot", "pay.png", _DroppedConnection())

    assert _stored_files(binder) == []


def test_resolve_only_honours_the_basename(binder: UploadBinder, tmp_path: Path) -> None:
    binder.ensure_directory()
    (binder.directory / "photo.jpg").write_bytes(b"ok")
    (tmp_path / "secret.txt").write_text("top secret")

    assert binder.resolve("/uploads/photo.jpg") == binder.directory / "photo.jpg"
    assert binder.resolve("photo.jpg") == binder.directory / "photo.jpg"
    assert binder.resolve("../secret.txt") is None
    assert binder.resolve("..") is None
    assert binder.resolve("") is None
    assert binder.resolve(None) is None
    assert binder.resolve(".incoming-abc") is None


def test_remove_deletes_once_and_tolerates_absence(binder: UploadBinder) -> None:
    reference = binder.bind("aadhaar", "card.pdf", io.BytesIO(b"pdf"))

    assert binder.remove(reference) is True
    assert binder.remove(reference) is False
    assert binder.resolve(reference) is None


def test_remove_cannot_escape_the_upload_directory(binder: UploadBinder, tmp_path: Path) -> None:
    binder.ensure_directory()
    outside = tmp_path / "outside.txt"
    outside.write_text("keep me")

    assert binder.remove("../outside.txt") is False
    assert outside.exists()


def test_discard_removes_every_reference(binder: UploadBinder) -> None:
    first = binder.bind("passport_photo", "a.jpg", io.BytesIO(b"a"))
    second = binder.bind("payment_screenshot", "b.png", io.BytesIO(b"b"))

    binder.discard([first, second, "/uploads/never-existed.png"])

    assert _stored_files(binder) == []
