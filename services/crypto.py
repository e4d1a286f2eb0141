#!/usr/bin/env python3
"""
megaman/services/crypto.py
Cryptographic operations for MEGA public shares
"""

import re
import json
import base64
import binascii
import struct
from typing import Dict, Any, List, Iterator, Optional
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.backends import default_backend
from cryptography.exceptions import UnsupportedAlgorithm

from services.errors import BadAttributeError


BLOCK_SIZE = 16
ZERO_IV = b'\0' * BLOCK_SIZE
ATTR_MARKER = b'MEGA'

_BASE64_URL = re.compile(r'^[A-Za-z0-9_-]*$')
_ATTR_OBJECT = re.compile(r'\{".*"\}')


def chunk_sizes() -> Iterator[int]:
    """MEGA MAC chunk sizes: 128 KiB, 256 KiB, ... up to 1 MiB, then 1 MiB forever"""
    size = 0x20000
    while True:
        yield size
        if size < 0x100000:
            size += 0x20000


class ChunkMac:
    """
    Incremental MEGA content MAC.

    Each chunk is CBC-MACed with IV = nonce || nonce, the chunk MACs are
    chained through a second CBC pass with a zero IV, and the result is
    folded to 8 bytes. Data can be fed in pieces of any size.
    """

    def __init__(self, key: bytes, iv: bytes, backend=None):
        self.backend = backend or default_backend()
        self._key = key
        self._chunk_iv = iv[:8] * 2
        self._meta = self._cbc(ZERO_IV)
        self._meta_mac = ZERO_IV
        self._sizes = chunk_sizes()
        self._remaining = next(self._sizes)
        self._start_chunk()

    def _cbc(self, iv: bytes):
        return Cipher(algorithms.AES(self._key), modes.CBC(iv), backend=self.backend).encryptor()

    def _start_chunk(self) -> None:
        self._chunk = self._cbc(self._chunk_iv)
        self._pending = b''
        self._last_block = b''
        self._fed = False

    def _feed(self, data: bytes) -> None:
        buf = self._pending + data
        cut = len(buf) - len(buf) % BLOCK_SIZE
        if cut:
            self._last_block = self._chunk.update(buf[:cut])[-BLOCK_SIZE:]
        self._pending = buf[cut:]
        self._fed = True

    def _finish_chunk(self) -> None:
        if not self._fed:
            return
        if self._pending:
            padded = self._pending.ljust(BLOCK_SIZE, b'\0')
            self._last_block = self._chunk.update(padded)[-BLOCK_SIZE:]
        self._meta_mac = self._meta.update(self._last_block)
        self._start_chunk()

    def update(self, data: bytes) -> None:
        view = memoryview(data)
        while len(view):
            take = min(len(view), self._remaining)
            self._feed(bytes(view[:take]))
            view = view[take:]
            self._remaining -= take
            if self._remaining == 0:
                self._finish_chunk()
                self._remaining = next(self._sizes)

    def digest(self) -> bytes:
        """Fold the chained MAC to 8 bytes; call once, after the last update"""
        self._finish_chunk()
        w = bytes_to_a32(self._meta_mac)
        return a32_to_bytes([w[0] ^ w[1], w[2] ^ w[3]])


def bytes_to_a32(data: bytes) -> List[int]:
    """Split bytes into big-endian 32-bit words"""
    if len(data) % 4:
        raise ValueError(f"length {len(data)} is not a multiple of 4")
    return list(struct.unpack(f'>{len(data) // 4}I', data))


def a32_to_bytes(words: List[int]) -> bytes:
    """Join 32-bit words into big-endian bytes"""
    return struct.pack(f'>{len(words)}I', *words)


class CryptoService:
    """Handles all cryptographic operations matching MEGA's protocol"""

    def __init__(self):
        self.backend = default_backend()

    def base64_url_decode(self, data: str) -> bytes:
        """
        Decode unpadded base64url
        Raises ValueError on characters outside the url-safe alphabet
        """
        if not _BASE64_URL.match(data):
            raise ValueError(f"invalid base64url data: {data!r}")
        try:
            return base64.urlsafe_b64decode(data + '=' * (-len(data) % 4))
        except binascii.Error as e:
            raise ValueError(f"invalid base64url data: {e}") from e

    def base64_url_encode(self, data: bytes) -> str:
        """Encode to unpadded base64url"""
        return base64.urlsafe_b64encode(data).decode('ascii').rstrip('=')

    def decrypt_ecb(self, data: bytes, key: bytes) -> bytes:
        """
        Decrypt block by block with no chaining
        Raises ValueError for a bad key size or a partial block
        """
        if len(data) % BLOCK_SIZE:
            raise ValueError("Block decryption failed")
        cipher = Cipher(algorithms.AES(key), modes.ECB(), backend=self.backend)
        decryptor = cipher.decryptor()
        return decryptor.update(data) + decryptor.finalize()

    def decrypt_cbc(self, data: bytes, key: bytes, iv: bytes = ZERO_IV) -> bytes:
        """Decrypt AES-CBC without padding removal"""
        if len(data) % BLOCK_SIZE:
            raise ValueError("Block decryption failed")
        cipher = Cipher(algorithms.AES(key), modes.CBC(iv), backend=self.backend)
        decryptor = cipher.decryptor()
        return decryptor.update(data) + decryptor.finalize()

    def ctr_decryptor(self, key: bytes, counter: bytes):
        """
        Streaming AES-CTR context; the 16-byte counter block is
        incremented per block as data goes through update()
        """
        cipher = Cipher(algorithms.AES(key), modes.CTR(counter), backend=self.backend)
        return cipher.decryptor()

    def chunk_mac(self, key: bytes, iv: bytes) -> ChunkMac:
        return ChunkMac(key, iv, backend=self.backend)

    def compute_mac(self, data: bytes, key: bytes, iv: bytes) -> bytes:
        """MAC of a whole plaintext in one go"""
        mac = self.chunk_mac(key, iv)
        mac.update(data)
        return mac.digest()

    def decrypt_attributes(self, key: bytes, data: str) -> Dict[str, Any]:
        """
        Decrypt a node attribute blob

        Layout: base64url(AES-CBC(zero IV, "MEGA" + JSON + zero padding)).
        Trailing garbage after the JSON object is tolerated.
        """
        try:
            raw = self.base64_url_decode(data)
            plain = self.decrypt_cbc(raw, key)
        except (ValueError, UnsupportedAlgorithm) as e:
            raise BadAttributeError(f"Bad Attr: {e}") from e

        if not plain.startswith(ATTR_MARKER):
            raise BadAttributeError("Bad Attr: missing MEGA marker")

        text = plain[len(ATTR_MARKER):].rstrip(b'\0').decode('utf-8', errors='replace')
        attrs = self._parse_attr_json(text)
        if attrs is None:
            match = _ATTR_OBJECT.search(text)
            if match:
                attrs = self._parse_attr_json(match.group(0))
        if attrs is None:
            raise BadAttributeError("Bad Attr: unparsable attributes")
        return attrs

    def decrypt_name(self, key: bytes, data: str) -> str:
        """Decrypt an attribute blob and return its name field"""
        name = self.decrypt_attributes(key, data).get('n', '')
        return name if isinstance(name, str) else str(name)

    @staticmethod
    def _parse_attr_json(text: str) -> Optional[Dict[str, Any]]:
        try:
            value = json.loads(text)
        except ValueError:
            return None
        return value if isinstance(value, dict) else None


# Global instance
crypto_service = CryptoService()
