#!/usr/bin/env python3
"""
megaman/services/api.py
API client for MEGA's public command endpoint
"""

import json
import itertools
import threading
import requests
from typing import Dict, Any, Optional
from config.config import config_service
from services.errors import APIError, RequestError


class APIClient:
    """
    Sends single commands to the /cs endpoint.

    Every call posts a one-element JSON array and receives a one-element
    array back. A bare integer in place of the result object is an API
    error code.
    """

    def __init__(self):
        self.config = config_service
        self.base_url = config_service.api_url
        self.timeout = config_service.request_timeout
        self.debug = False
        self._ids = itertools.count()
        self._id_lock = threading.Lock()

    def _log(self, message: str) -> None:
        """Debug logging"""
        if self.debug:
            print(f"🔍 [DEBUG] {message}")

    def next_id(self) -> int:
        """Sequence number for the id query parameter, safe across threads"""
        with self._id_lock:
            return next(self._ids)

    def request(self, command: Dict[str, Any],
                params: Optional[Dict[str, str]] = None) -> Any:
        """
        Post one command and return the unwrapped result
        No retries: every failure is raised to the caller
        """
        query = dict(params or {})
        query['id'] = str(self.next_id())
        url = f"{self.base_url}/cs"
        body = json.dumps([command])

        self._log(f"POST {url} id={query['id']} a={command.get('a')}")

        try:
            response = requests.post(
                url,
                params=query,
                data=body,
                headers={'Content-Type': 'application/json'},
                timeout=self.timeout
            )
            response.raise_for_status()
            text = response.text
        except requests.exceptions.RequestException as e:
            self._log(f"Request failed: {e}")
            raise RequestError(f"Network request failed: {e}") from e

        return self._unwrap(text)

    def _unwrap(self, text: str) -> Any:
        """Strip the enclosing brackets and parse the single result"""
        text = text.strip()
        if len(text) < 2 or text[0] != '[' or text[-1] != ']':
            raise RequestError(f"Malformed response: {text[:100]!r}")

        inner = text[1:-1]
        try:
            result = json.loads(inner)
        except ValueError as e:
            raise RequestError(f"Malformed response: {text[:100]!r}") from e

        # bool is an int subclass but never an error code
        if isinstance(result, int) and not isinstance(result, bool):
            self._log(f"API returned error code {result}")
            raise APIError('api error', code=result)

        return result

    def _request_object(self, command: Dict[str, Any],
                        params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        result = self.request(command, params)
        if not isinstance(result, dict):
            raise RequestError(f"Unexpected response type: {type(result).__name__}")
        return result

    @staticmethod
    def folder_params(handle: str) -> Dict[str, str]:
        """Query parameters scoping a call to a shared folder"""
        return {
            'n': handle,
            'ec': '',
            'v': '2',
            'domain': 'meganz'
        }

    # ============================================================================
    # Commands
    # ============================================================================

    def get_file_metadata(self, handle: str) -> Dict[str, Any]:
        """Get size, attributes and direct URL of a publicly linked file"""
        return self._request_object({'a': 'g', 'g': 1, 'p': handle})

    def get_node_metadata(self, node_handle: str, folder_handle: str) -> Dict[str, Any]:
        """Get size, attributes and direct URL of a file inside a shared folder"""
        return self._request_object({'a': 'g', 'g': 1, 'n': node_handle},
                                    self.folder_params(folder_handle))

    def list_folder(self, folder_handle: str) -> Dict[str, Any]:
        """Recursive listing of a shared folder"""
        return self._request_object({'a': 'f', 'c': 1, 'ca': 1, 'r': 1},
                                    self.folder_params(folder_handle))


# Global instance
api_client = APIClient()
