#!/usr/bin/env python3
"""
megaman/config/config.py
Configuration management for megaman
"""

import os
import json
from pathlib import Path
from typing import Optional, Dict, Any


class ConfigService:
    """Holds endpoints, link formats and download settings"""

    DEFAULTS: Dict[str, Any] = {
        'request_timeout': None,
        'download_timeout': None,
        'verify_mac': False,
        'progress_queue_size': 10,
        'read_chunk_size': 65536,
    }

    def __init__(self):
        home = os.environ.get('MEGAMAN_HOME')
        self.data_dir = Path(home) if home else Path.home() / '.megaman'
        self.settings_file = self.data_dir / 'config.json'

        # API endpoints
        self.api_url = 'https://g.api.mega.co.nz'

        # Share link formats
        self.file_link_prefix = 'https://mega.nz/#'
        self.folder_link_base = 'https://mega.nz/folder/'

        settings = self.read_settings()
        # None means wait forever
        self.request_timeout: Optional[float] = settings['request_timeout']
        self.download_timeout: Optional[float] = settings['download_timeout']
        self.verify_mac: bool = bool(settings['verify_mac'])
        self.progress_queue_size: int = int(settings['progress_queue_size'])
        self.read_chunk_size: int = int(settings['read_chunk_size'])

    def _ensure_directories(self) -> None:
        """Ensure the data directory exists"""
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def read_settings(self) -> Dict[str, Any]:
        """Read settings with defaults"""
        settings = dict(self.DEFAULTS)
        try:
            if self.settings_file.exists():
                with open(self.settings_file, 'r') as f:
                    stored = json.load(f)
                if isinstance(stored, dict):
                    settings.update({k: v for k, v in stored.items() if k in self.DEFAULTS})
        except (OSError, ValueError):
            pass
        return settings

    def save_settings(self, settings: Dict[str, Any]) -> None:
        """Persist settings, ignoring unknown keys"""
        self._ensure_directories()
        current = self.read_settings()
        current.update({k: v for k, v in settings.items() if k in self.DEFAULTS})
        with open(self.settings_file, 'w') as f:
            json.dump(current, f, indent=2)

    def current_settings(self) -> Dict[str, Any]:
        """Settings as currently applied to this instance"""
        return {
            'request_timeout': self.request_timeout,
            'download_timeout': self.download_timeout,
            'verify_mac': self.verify_mac,
            'progress_queue_size': self.progress_queue_size,
            'read_chunk_size': self.read_chunk_size,
        }


# Global instance
config_service = ConfigService()
