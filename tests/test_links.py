import pytest

from conftest import FILE_HANDLE, FOLDER_HANDLE, FOLDER_KEY, b64url, file_link, folder_link
from services.errors import InvalidLinkError
from services.links import (
    is_file_link,
    is_folder_link,
    parse_file_link,
    parse_folder_link,
    parse_link,
    unpack_file_key,
    unpack_folder_key,
)
from services.models import LinkKind

PACKED = bytes(range(32))


def test_parse_file_link():
    link = file_link(FILE_HANDLE, PACKED)
    share = parse_file_link(link)
    assert share.kind == LinkKind.FILE
    assert share.handle == FILE_HANDLE
    assert share.key == b64url(PACKED)
    assert len(share.key) == 43


@pytest.mark.parametrize(
    "link",
    [
        "",
        "https://mega.nz/#!AbCd1234",
        f"https://mega.nz/file/#!AbCd1234!{b64url(PACKED)}",
        f"http://mega.nz/#!AbCd1234!{b64url(PACKED)}",
        f"https://mega.nz/#!AbCd123!{b64url(PACKED)}",
        f"https://mega.nz/#!AbCd12345!{b64url(PACKED)}",
        f"https://mega.nz/#!AbCd1234!{b64url(PACKED)[:-1]}",
        f"https://mega.nz/#!AbCd1234!{b64url(PACKED)}x",
        f"https://mega.nz/#!AbCd1234!{b64url(PACKED)}!extra",
    ],
)
def test_parse_file_link_rejects_malformed(link):
    with pytest.raises(InvalidLinkError):
        parse_file_link(link)


def test_parse_folder_link():
    link = folder_link(FOLDER_HANDLE, FOLDER_KEY)
    share = parse_folder_link(link)
    assert share.kind == LinkKind.FOLDER
    assert share.handle == FOLDER_HANDLE
    assert len(share.key) == 22


def test_parse_folder_link_ignores_subfolder_suffix():
    link = folder_link(FOLDER_HANDLE, FOLDER_KEY) + "/folder/Zz9Yy8Xx"
    assert parse_folder_link(link).handle == FOLDER_HANDLE


@pytest.mark.parametrize(
    "link",
    [
        "https://mega.nz/folder/F0lDeR01",
        f"https://mega.nz/folder/F0lDeR0#{b64url(FOLDER_KEY)}",
        f"https://mega.nz/folder/F0lDeR01#{b64url(FOLDER_KEY)[:-1]}",
        f"https://mega.nz/folder/F0lDeR01#{b64url(PACKED)}",
        f"https://example.com/folder/F0lDeR01#{b64url(FOLDER_KEY)}",
    ],
)
def test_parse_folder_link_rejects_malformed(link):
    with pytest.raises(InvalidLinkError):
        parse_folder_link(link)


def test_parse_link_dispatches_on_kind():
    assert parse_link(file_link(FILE_HANDLE, PACKED)).is_file
    assert parse_link("  " + folder_link(FOLDER_HANDLE, FOLDER_KEY) + "\n").is_folder
    with pytest.raises(InvalidLinkError, match="unknown url type"):
        parse_link("https://example.com/")


def test_link_predicates():
    assert is_file_link(file_link(FILE_HANDLE, PACKED))
    assert not is_file_link(folder_link(FOLDER_HANDLE, FOLDER_KEY))
    assert is_folder_link(folder_link(FOLDER_HANDLE, FOLDER_KEY))
    assert not is_folder_link(file_link(FILE_HANDLE, PACKED))


def test_unpack_file_key():
    derived = unpack_file_key(b64url(PACKED))
    assert derived.key == bytes(i ^ (i + 16) for i in range(16))
    assert derived.iv == bytes(range(16, 24)) + b"\0" * 8
    assert derived.mac == bytes(range(24, 32))
    assert len(derived.key) == 16
    assert len(derived.iv) == 16


def test_unpack_file_key_is_deterministic():
    token = b64url(bytes(reversed(range(200, 232))))
    assert unpack_file_key(token) == unpack_file_key(token)


@pytest.mark.parametrize("size", [0, 16, 31, 33, 48])
def test_unpack_file_key_rejects_wrong_length(size):
    with pytest.raises(InvalidLinkError):
        unpack_file_key(b64url(bytes(size)))


def test_unpack_file_key_rejects_bad_alphabet():
    with pytest.raises(InvalidLinkError):
        unpack_file_key("+" * 43)


def test_unpack_folder_key():
    assert unpack_folder_key(b64url(FOLDER_KEY)) == FOLDER_KEY


@pytest.mark.parametrize("size", [8, 15, 17, 32])
def test_unpack_folder_key_rejects_wrong_length(size):
    with pytest.raises(InvalidLinkError):
        unpack_folder_key(b64url(bytes(size)))
