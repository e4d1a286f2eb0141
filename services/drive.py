#!/usr/bin/env python3
"""
megaman/services/drive.py
Share listing, node decoding and downloads for MEGA public links
"""

import os
import queue
from pathlib import Path
from typing import Dict, List, Optional, Callable, Tuple, Iterator

from tqdm import tqdm

from config.config import config_service
from services.api import api_client
from services.crypto import crypto_service, a32_to_bytes, bytes_to_a32
from services.errors import BadAttributeError, NodeDecodeError
from services.links import parse_file_link, parse_folder_link, unpack_file_key, unpack_folder_key
from services.models import DownloadInfo, FileSystem, Node, NodeKeyMaterial, NodeType, TreeNode
from services.stream import DownloadStream


BAD_ATTRIBUTE = 'BAD ATTRIBUTE'

SPECIAL_NAMES = {
    NodeType.ROOT: 'Cloud Drive',
    NodeType.INBOX: 'InBox',
    NodeType.TRASH: 'Trash',
}


class DriveService:
    """Handles listing and downloading of shared files and folders"""

    def __init__(self):
        self.config = config_service
        self.api = api_client
        self.crypto = crypto_service
        self.debug = False

    def _log(self, message: str) -> None:
        """Debug logging"""
        if self.debug:
            print(f"🔍 [DEBUG] {message}")

    def _new_info(self, name: str, size: int, url: str,
                  key: bytes, iv: bytes, mac: bytes) -> DownloadInfo:
        return DownloadInfo(
            name=name,
            size=size,
            url=url,
            key=key,
            iv=iv,
            mac=mac,
            progress=queue.Queue(maxsize=self.config.progress_queue_size)
        )

    # ============================================================================
    # FILE INFO
    # ============================================================================

    def get_file_info(self, link: str) -> DownloadInfo:
        """
        Resolve a file link to everything needed for the download:
        decrypted name, size, direct URL and content key
        """
        share = parse_file_link(link)
        derived = unpack_file_key(share.key)

        self._log(f"Fetching file metadata: {share.handle}")
        metadata = self.api.get_file_metadata(share.handle)

        name = self.crypto.decrypt_name(derived.key, metadata.get('at', ''))
        return self._new_info(
            name=name,
            size=int(metadata.get('s', 0)),
            url=metadata.get('g', ''),
            key=derived.key,
            iv=derived.iv,
            mac=derived.mac
        )

    def get_node_info(self, node: Node) -> DownloadInfo:
        """Resolve a decoded file node from a folder listing"""
        material = node.key_material
        if material is None or not node.is_file:
            raise NodeDecodeError("Node is not a decoded file", node.hash)

        self._log(f"Fetching node metadata: {node.hash} in {node.context}")
        metadata = self.api.get_node_metadata(node.hash, node.context)

        name = self.crypto.decrypt_name(material.key, metadata.get('at', ''))
        return self._new_info(
            name=name,
            size=int(metadata.get('s', 0)),
            url=metadata.get('g', ''),
            key=material.key,
            iv=material.iv,
            mac=material.mac
        )

    # ============================================================================
    # FOLDER LISTING
    # ============================================================================

    def list_folder(self, link: str) -> FileSystem:
        """List a shared folder and rebuild its hierarchy"""
        share = parse_folder_link(link)
        folder_key = unpack_folder_key(share.key)

        self._log(f"Listing folder: {share.handle}")
        response = self.api.list_folder(share.handle)

        nodes: List[Node] = []
        dropped: List[Tuple[str, str]] = []
        for entry in response.get('f', []) or []:
            node = Node.from_dict(entry)
            node.context = share.handle
            reason = self.decode_node(folder_key, node)
            if reason:
                self._log(f"Dropping node {node.hash}: {reason}")
                dropped.append((node.hash, reason))
                continue
            nodes.append(node)

        fs = self.build_tree(nodes)
        fs.dropped.extend(dropped)
        return fs

    def decode_node(self, folder_key: bytes, node: Node) -> Optional[str]:
        """
        Derive the node's key material and decrypt its name, in place.

        Returns None on success, or the reason the node has to be left
        out of the listing. Structural key problems raise NodeDecodeError.
        """
        if node.is_special:
            node.name = SPECIAL_NAMES[NodeType(node.type)]
            return None
        if node.is_unknown:
            node.name = f"Unknown node type {node.type}"
            return None

        compkey = self._decrypt_node_key(folder_key, node)

        if node.is_file:
            if len(compkey) < 8:
                return f"file key has {len(compkey)} words, need 8"
            key = [compkey[i] ^ compkey[i + 4] for i in range(4)]
            node.key_material = NodeKeyMaterial(
                key=a32_to_bytes(key),
                compkey=a32_to_bytes(compkey),
                iv=a32_to_bytes([compkey[4], compkey[5], 0, 0]),
                mac=a32_to_bytes([compkey[6], compkey[7]])
            )
        else:
            node.key_material = NodeKeyMaterial(
                key=a32_to_bytes(compkey),
                compkey=a32_to_bytes(compkey)
            )

        try:
            node.name = self.crypto.decrypt_name(node.key_material.key, node.attributes)
        except BadAttributeError as e:
            self._log(f"Node {node.hash}: {e}")
            node.name = BAD_ATTRIBUTE
        return None

    def _decrypt_node_key(self, folder_key: bytes, node: Node) -> List[int]:
        # k is "<owner>:<key>[/<owner>:<key>...]"; only the first pair is used
        parts = node.key.split(':')
        if len(parts) < 2:
            raise NodeDecodeError(f"not enough : in key {node.key!r}", node.hash)

        try:
            encrypted = self.crypto.base64_url_decode(parts[1].split('/', 1)[0])
            plain = self.crypto.decrypt_ecb(encrypted, folder_key)
            return bytes_to_a32(plain)
        except ValueError as e:
            raise NodeDecodeError(f"cannot decrypt node key: {e}", node.hash) from e

    def build_tree(self, nodes: List[Node]) -> FileSystem:
        """
        Assemble a forest from nodes in any order.

        Slots are allocated the first time a hash is seen, either as a node
        or as someone's parent, and filled when the node itself shows up.
        Slots still empty at the end are parents outside the listing;
        their children are the roots.
        """
        slots: List[TreeNode] = []
        index: Dict[str, int] = {}

        def slot_for(node_hash: str) -> TreeNode:
            if node_hash not in index:
                index[node_hash] = len(slots)
                slots.append(TreeNode())
            return slots[index[node_hash]]

        for node in nodes:
            entry = slot_for(node.hash)
            if entry.node is not None:
                self._log(f"Duplicate node {node.hash} ignored")
                continue
            entry.node = node
            slot_for(node.parent).children.append(entry)

        roots: List[TreeNode] = []
        for entry in slots:
            if entry.node is None:
                roots.extend(entry.children)

        return FileSystem(roots=roots)

    def walk(self, fs: FileSystem) -> Iterator[Tuple[List[str], TreeNode]]:
        """Depth-first (path, tree node) pairs; path holds ancestor names"""
        stack = [([], root) for root in reversed(fs.roots)]
        while stack:
            path, entry = stack.pop()
            yield path, entry
            child_path = path + [entry.name]
            for child in reversed(entry.children):
                stack.append((child_path, child))

    # ============================================================================
    # DOWNLOADS
    # ============================================================================

    def open_download(self, info: DownloadInfo) -> DownloadStream:
        return DownloadStream.open(
            info,
            timeout=self.config.download_timeout,
            verify_mac=self.config.verify_mac
        )

    def download(self, link: str) -> Tuple[DownloadStream, DownloadInfo]:
        """Open a decrypting stream for a file link"""
        info = self.get_file_info(link)
        return self.open_download(info), info

    def download_node(self, node: Node) -> Tuple[DownloadStream, DownloadInfo]:
        """Open a decrypting stream for a file node from a folder listing"""
        info = self.get_node_info(node)
        return self.open_download(info), info

    def save_stream(self, stream: DownloadStream, info: DownloadInfo, target_dir: str,
                    show_progress: bool = True) -> Path:
        """Write a download stream to target_dir/<name>"""
        target = Path(target_dir) / safe_name(info.name)
        chunk_size = self.config.read_chunk_size

        with stream, open(target, 'wb') as f, \
                tqdm(total=info.size, unit='B', unit_scale=True, desc=info.name,
                     disable=not show_progress or None) as pbar:
            while True:
                chunk = stream.read(chunk_size)
                if not chunk:
                    break
                f.write(chunk)
                latest = _drain(info.progress)
                if latest is not None and latest > pbar.n:
                    pbar.update(latest - pbar.n)

        self._log(f"Saved {stream.total} bytes to {target}")
        return target

    def download_to(self, link: str, target_dir: str, show_progress: bool = True) -> Path:
        """Download a file link into target_dir"""
        Path(target_dir).mkdir(parents=True, exist_ok=True)
        stream, info = self.download(link)
        return self.save_stream(stream, info, target_dir, show_progress=show_progress)

    def download_tree_to(self, link: str, target_dir: str,
                         show_progress: bool = True) -> List[Path]:
        """Recreate a shared folder under target_dir"""
        Path(target_dir).mkdir(parents=True, exist_ok=True)
        fs = self.list_folder(link)
        saved = []
        for root in fs.roots:
            saved.extend(self._download_entry(root, Path(target_dir), show_progress))
        return saved

    def _download_entry(self, entry: TreeNode, path: Path, show_progress: bool) -> List[Path]:
        node = entry.node
        if node is None:
            return []

        if node.is_file:
            stream, info = self.download_node(node)
            return [self.save_stream(stream, info, str(path), show_progress=show_progress)]

        saved = []
        if node.is_dir:
            folder = path / safe_name(node.name)
            folder.mkdir(exist_ok=True)
            for child in entry.children:
                saved.extend(self._download_entry(child, folder, show_progress))
        return saved

    # ============================================================================
    # TREE
    # ============================================================================

    def print_tree(self, fs: FileSystem, print_fn: Callable[[str], None],
                   max_depth: int = -1) -> None:
        """Print a decoded listing"""
        self._print_level(fs.roots, print_fn, max_depth, 0, "")

    def _print_level(self, entries: List[TreeNode], print_fn: Callable[[str], None],
                     max_depth: int, current_depth: int, prefix: str) -> None:
        if max_depth >= 0 and current_depth >= max_depth:
            return

        for i, entry in enumerate(entries):
            is_last = (i == len(entries) - 1)
            connector = "└── " if is_last else "├── "
            child_prefix = prefix + ("    " if is_last else "│   ")

            node = entry.node
            if node is None:
                continue
            if node.is_file:
                print_fn(f"{prefix}{connector}📄 {node.name} ({format_size(node.size)})")
            else:
                print_fn(f"{prefix}{connector}📁 {node.name}/")
                self._print_level(entry.children, print_fn, max_depth,
                                  current_depth + 1, child_prefix)


# Global instance
drive_service = DriveService()


def _drain(progress: 'queue.Queue[int]') -> Optional[int]:
    """Empty the progress queue and return the newest total"""
    latest = None
    while True:
        try:
            latest = progress.get_nowait()
        except queue.Empty:
            return latest


def safe_name(name: str) -> str:
    """Make a remote name usable as a single local path component"""
    cleaned = name.replace('/', '_').replace('\\', '_')
    if os.sep not in ('/', '\\'):
        cleaned = cleaned.replace(os.sep, '_')
    if cleaned in ('', '.', '..'):
        cleaned = '_'
    return cleaned


def format_size(size: int) -> str:
    """Format bytes to human-readable size"""
    if size <= 0:
        return '0 B'

    units = ['B', 'KB', 'MB', 'GB', 'TB']
    i = 0
    size_float = float(size)

    while size_float >= 1024 and i < len(units) - 1:
        size_float /= 1024
        i += 1

    return f"{size_float:.1f} {units[i]}"
