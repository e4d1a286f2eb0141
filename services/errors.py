#!/usr/bin/env python3
"""
megaman/services/errors.py
Exceptions raised by the megaman services
"""

from typing import Optional


class MegaError(Exception):
    """Base class for every megaman failure"""


class InvalidLinkError(MegaError, ValueError):
    """Share link text is malformed or has the wrong shape"""
    def __init__(self, link: str, reason: str = 'invalid url'):
        self.link = link
        self.reason = reason
        super().__init__(f"{reason}: {link!r}")


class APIError(MegaError):
    """The command API refused the request"""
    def __init__(self, message: str = 'api error', code: Optional[int] = None):
        self.code = code
        super().__init__(message if code is None else f"{message} ({code})")


class RequestError(APIError):
    """Transport failure, non-2xx status or unparsable response body"""


class BadAttributeError(MegaError):
    """Attribute ciphertext could not be turned into a name"""


class NodeDecodeError(MegaError):
    """A folder listing node has unusable key material"""
    def __init__(self, message: str, node_hash: str = ''):
        self.node_hash = node_hash
        super().__init__(f"{message} (node {node_hash})" if node_hash else message)


class IntegrityError(MegaError):
    """Decrypted content does not match the MAC from the share key"""
