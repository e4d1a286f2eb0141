from __future__ import annotations

import io
import json
import os
import tempfile
from typing import Any

import pytest
import requests
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

# Keep a user config file from leaking into the tests
os.environ["MEGAMAN_HOME"] = tempfile.mkdtemp(prefix="megaman-tests-")

from services.crypto import crypto_service

FOLDER_KEY = bytes(range(16))
FOLDER_HANDLE = "F0lDeR01"
FILE_HANDLE = "AbCd1234"


def b64url(data: bytes) -> str:
    return crypto_service.base64_url_encode(data)


def _encrypt(mode: modes.Mode, key: bytes, data: bytes) -> bytes:
    encryptor = Cipher(algorithms.AES(key), mode).encryptor()
    return encryptor.update(data) + encryptor.finalize()


def encrypt_attr(key: bytes, attrs: Any = None, raw: bytes | None = None) -> str:
    """Build an attribute blob the way the service stores it"""
    plain = raw if raw is not None else b"MEGA" + json.dumps(attrs).encode()
    plain += b"\0" * (-len(plain) % 16)
    return b64url(_encrypt(modes.CBC(b"\0" * 16), key, plain))


def encrypt_node_key(folder_key: bytes, compkey: bytes) -> str:
    return b64url(_encrypt(modes.ECB(), folder_key, compkey))


def ctr_encrypt(key: bytes, iv: bytes, data: bytes) -> bytes:
    encryptor = Cipher(algorithms.AES(key), modes.CTR(iv)).encryptor()
    return encryptor.update(data) + encryptor.finalize()


def file_link(handle: str, packed: bytes) -> str:
    return f"https://mega.nz/#!{handle}!{b64url(packed)}"


def folder_link(handle: str, key: bytes) -> str:
    return f"https://mega.nz/folder/{handle}#{b64url(key)}"


def file_node(node_hash: str, parent: str, compkey: bytes, name: str, size: int = 0,
              folder_key: bytes = FOLDER_KEY) -> dict[str, Any]:
    words = [int.from_bytes(compkey[i:i + 4], "big") for i in range(0, len(compkey), 4)]
    if len(words) >= 8:
        key = b"".join((words[i] ^ words[i + 4]).to_bytes(4, "big") for i in range(4))
    else:
        key = compkey[:16]
    return {
        "h": node_hash,
        "p": parent,
        "u": "owner1",
        "t": 0,
        "a": encrypt_attr(key, {"n": name}),
        "k": f"owner1:{encrypt_node_key(folder_key, compkey)}",
        "ts": 1600000000,
        "s": size,
    }


def folder_node(node_hash: str, parent: str, compkey: bytes, name: str,
                folder_key: bytes = FOLDER_KEY) -> dict[str, Any]:
    return {
        "h": node_hash,
        "p": parent,
        "u": "owner1",
        "t": 1,
        "a": encrypt_attr(compkey, {"n": name}),
        "k": f"owner1:{encrypt_node_key(folder_key, compkey)}",
        "ts": 1600000000,
        "s": 0,
    }


class FakeResponse:
    def __init__(self, text: str = "", status_code: int = 200, content: bytes = b""):
        self.text = text
        self.status_code = status_code
        self.raw = io.BytesIO(content)
        self.closed = False

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} Error", response=self)

    def close(self) -> None:
        self.closed = True


class FakeAPI:
    """Stands in for requests.post, answering with queued bodies"""

    def __init__(self):
        self.calls: list[dict[str, Any]] = []
        self.replies: list[Any] = []

    def reply(self, result: Any) -> None:
        self.replies.append(FakeResponse(text=json.dumps([result])))

    def reply_raw(self, text: str, status_code: int = 200) -> None:
        self.replies.append(FakeResponse(text=text, status_code=status_code))

    def fail(self, exc: Exception) -> None:
        self.replies.append(exc)

    def __call__(self, url, params=None, data=None, headers=None, timeout=None):
        self.calls.append({"url": url, "params": params, "body": json.loads(data), "timeout": timeout})
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


class FakeContent:
    """Stands in for requests.get, serving bytes per URL"""

    def __init__(self):
        self.responses: dict[str, FakeResponse] = {}
        self.calls: list[dict[str, Any]] = []

    def serve(self, url: str, content: bytes, status_code: int = 200) -> FakeResponse:
        response = FakeResponse(content=content, status_code=status_code)
        self.responses[url] = response
        return response

    def __call__(self, url, stream=False, timeout=None):
        self.calls.append({"url": url, "stream": stream, "timeout": timeout})
        return self.responses[url]


@pytest.fixture
def fake_api(monkeypatch: pytest.MonkeyPatch) -> FakeAPI:
    api = FakeAPI()
    monkeypatch.setattr(requests, "post", api)
    return api


@pytest.fixture
def fake_content(monkeypatch: pytest.MonkeyPatch) -> FakeContent:
    content = FakeContent()
    monkeypatch.setattr(requests, "get", content)
    return content
