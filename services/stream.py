#!/usr/bin/env python3
"""
megaman/services/stream.py
Decrypting download stream for MEGA file content
"""

import io
import queue
import requests
from typing import Optional

from services.crypto import crypto_service
from services.errors import IntegrityError, RequestError
from services.models import DownloadInfo


class DownloadStream(io.RawIOBase):
    """
    Readable stream of decrypted file content.

    Ciphertext is pulled from the HTTP response only when the caller
    reads, decrypted with AES-CTR and handed back in arrival order.
    After each read the running total is offered to info.progress;
    when that queue is full the update is dropped.
    """

    def __init__(self, response, info: DownloadInfo, verify_mac: bool = False):
        super().__init__()
        self.response = response
        self.info = info
        self.total = 0
        self._raw = response.raw
        self._decryptor = crypto_service.ctr_decryptor(info.key, info.iv)
        self._mac = crypto_service.chunk_mac(info.key, info.iv) if verify_mac else None
        self._finished = False

    @classmethod
    def open(cls, info: DownloadInfo, timeout: Optional[float] = None,
             verify_mac: bool = False) -> 'DownloadStream':
        """Start the GET for info.url and wrap the body"""
        try:
            response = requests.get(info.url, stream=True, timeout=timeout)
        except requests.exceptions.RequestException as e:
            raise RequestError(f"Download request failed: {e}") from e

        try:
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            response.close()
            raise RequestError(f"Download failed: {response.status_code}") from e

        return cls(response, info, verify_mac=verify_mac)

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        if self.closed:
            raise ValueError("I/O operation on closed stream")

        try:
            data = self._raw.read(len(buffer))
        except (requests.exceptions.RequestException, OSError) as e:
            raise RequestError(f"Download interrupted: {e}") from e

        if not data:
            self._finish()
            return 0

        plain = self._decryptor.update(data)
        if self._mac is not None:
            self._mac.update(plain)

        n = len(plain)
        buffer[:n] = plain
        self.total += n
        self._notify()
        return n

    def _notify(self) -> None:
        try:
            self.info.progress.put_nowait(self.total)
        except queue.Full:
            pass

    def _finish(self) -> None:
        if self._finished:
            return
        self._finished = True
        if self._mac is None:
            return
        computed = self._mac.digest()
        if computed != self.info.mac:
            raise IntegrityError(
                f"MAC mismatch for {self.info.name!r}: "
                f"expected {self.info.mac.hex()}, got {computed.hex()}"
            )

    def close(self) -> None:
        if not self.closed:
            self.response.close()
        super().close()
