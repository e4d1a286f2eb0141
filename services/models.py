#!/usr/bin/env python3
"""
megaman/services/models.py
Data structures shared by the link, API, drive and stream services
"""

import queue
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, Any, List, Optional, Tuple


class NodeType(IntEnum):
    FILE = 0
    FOLDER = 1
    ROOT = 2
    INBOX = 3
    TRASH = 4


class LinkKind(IntEnum):
    FILE = 0
    FOLDER = 1


@dataclass(frozen=True)
class ShareLink:
    kind: LinkKind
    handle: str
    key: str  # base64url token exactly as it appears in the link

    @property
    def is_file(self) -> bool:
        return self.kind == LinkKind.FILE

    @property
    def is_folder(self) -> bool:
        return self.kind == LinkKind.FOLDER


@dataclass(frozen=True)
class DerivedKey:
    key: bytes  # 16-byte AES key
    iv: bytes   # 8-byte nonce followed by an 8-byte zero counter
    mac: bytes  # 8 bytes, only checked when verification is requested


@dataclass(frozen=True)
class NodeKeyMaterial:
    key: bytes
    compkey: bytes
    iv: bytes = b''
    mac: bytes = b''


@dataclass
class Node:
    """One entry of a folder listing"""

    hash: str
    parent: str = ''
    owner: str = ''
    type: int = NodeType.FILE
    attributes: str = ''
    key: str = ''
    timestamp: int = 0
    size: int = 0
    file_attributes: str = ''

    # Filled in once by the drive service
    name: str = ''
    key_material: Optional[NodeKeyMaterial] = None
    context: str = ''

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Node':
        return cls(
            hash=data.get('h', ''),
            parent=data.get('p', '') or '',
            owner=data.get('u', ''),
            type=int(data.get('t', NodeType.FILE)),
            attributes=data.get('a', '') or '',
            key=data.get('k', '') or '',
            timestamp=int(data.get('ts', 0) or 0),
            size=int(data.get('s', 0) or 0),
            file_attributes=data.get('fa', '') or '',
        )

    @property
    def is_file(self) -> bool:
        return self.type == NodeType.FILE

    @property
    def is_dir(self) -> bool:
        return self.type == NodeType.FOLDER

    @property
    def is_special(self) -> bool:
        return self.type in (NodeType.ROOT, NodeType.INBOX, NodeType.TRASH)

    @property
    def is_unknown(self) -> bool:
        return self.type < NodeType.FILE or self.type > NodeType.TRASH


@dataclass
class TreeNode:
    node: Optional[Node] = None
    children: List['TreeNode'] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.node.name if self.node else ''


@dataclass
class FileSystem:
    """Forest produced by one folder listing"""

    roots: List[TreeNode] = field(default_factory=list)
    # (hash, reason) for nodes left out of the forest
    dropped: List[Tuple[str, str]] = field(default_factory=list)


@dataclass
class DownloadInfo:
    name: str
    size: int
    url: str
    key: bytes
    iv: bytes
    mac: bytes = b''
    progress: 'queue.Queue[int]' = field(default_factory=lambda: queue.Queue(maxsize=10))
