#!/usr/bin/env python3
"""
megaman/services/links.py
Share link parsing and key unpacking

File links:   https://mega.nz/#!<handle>!<43-char key>
Folder links: https://mega.nz/folder/<handle>#<22-char key>
"""

import re

from config.config import config_service
from services.crypto import crypto_service
from services.errors import InvalidLinkError
from services.models import DerivedKey, LinkKind, ShareLink


HANDLE_LENGTH = 8
FILE_KEY_LENGTH = 43
FOLDER_KEY_LENGTH = 22

_FOLDER_LINK = re.compile(
    re.escape(config_service.folder_link_base) + r'([A-Za-z0-9_-]*)#([A-Za-z0-9_-]*)'
)


def parse_file_link(link: str) -> ShareLink:
    """Extract handle and key token from a file link"""
    parts = link.split('!', 2)
    if len(parts) != 3:
        raise InvalidLinkError(link)

    prefix, handle, key = parts
    if prefix != config_service.file_link_prefix:
        raise InvalidLinkError(link)
    if len(handle) != HANDLE_LENGTH or len(key) != FILE_KEY_LENGTH:
        raise InvalidLinkError(link)

    return ShareLink(LinkKind.FILE, handle, key)


def parse_folder_link(link: str) -> ShareLink:
    """Extract handle and key token from a folder link"""
    match = _FOLDER_LINK.match(link)
    if not match:
        raise InvalidLinkError(link)

    handle, key = match.group(1), match.group(2)
    if len(handle) != HANDLE_LENGTH or len(key) != FOLDER_KEY_LENGTH:
        raise InvalidLinkError(link)

    return ShareLink(LinkKind.FOLDER, handle, key)


def parse_link(link: str) -> ShareLink:
    """Parse either kind of share link"""
    link = link.strip()
    try:
        return parse_file_link(link)
    except InvalidLinkError:
        pass
    try:
        return parse_folder_link(link)
    except InvalidLinkError:
        raise InvalidLinkError(link, 'unknown url type') from None


def is_file_link(link: str) -> bool:
    try:
        parse_file_link(link)
    except InvalidLinkError:
        return False
    return True


def is_folder_link(link: str) -> bool:
    try:
        parse_folder_link(link)
    except InvalidLinkError:
        return False
    return True


def _decode_token(token: str, expected: int) -> bytes:
    try:
        packed = crypto_service.base64_url_decode(token)
    except ValueError as e:
        raise InvalidLinkError(token, 'undecodable key') from e
    if len(packed) != expected:
        raise InvalidLinkError(token, f'key must decode to {expected} bytes, got {len(packed)}')
    return packed


def unpack_file_key(token: str) -> DerivedKey:
    """
    A file link carries a packed 32-byte key:
    key = first half XOR second half, IV = bytes 16-24 + zero counter,
    MAC = bytes 24-32
    """
    packed = _decode_token(token, 32)
    key = bytes(a ^ b for a, b in zip(packed[:16], packed[16:32]))
    iv = packed[16:24] + b'\0' * 8
    mac = packed[24:32]
    return DerivedKey(key=key, iv=iv, mac=mac)


def unpack_folder_key(token: str) -> bytes:
    """Folder link keys are used as-is as the listing's master key"""
    return _decode_token(token, 16)

