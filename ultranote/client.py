"""
HTTP client for the document API.

Fetches the server document (GET /api/db) and pushes the full local document
(POST /api/db). Transport problems are never raised: they are logged and the
caller gets None, falling back to its local state until the next attempt.
"""

from __future__ import annotations

import json
import logging

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0

API_PATH = "/api/db"


class DocumentClient:
    """HTTP client for one UltraNote server."""

    def __init__(
        self,
        server_url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self._server_url = server_url.rstrip("/")
        self._client = httpx.Client(
            base_url=self._server_url,
            headers={"Content-Type": "application/json"},
            timeout=timeout,
        )

    @property
    def server_url(self) -> str:
        return self._server_url

    def fetch_document(self) -> dict | None:
        """GET /api/db -> the server document.

        Returns ``{}`` when the server answered but holds no document yet.
        Returns None when the request fails or the body is empty or not a
        JSON object (e.g. an HTML login page): the server state is unknown.
        """
        try:
            resp = self._client.get(API_PATH)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status in (301, 302, 401, 403):
                logger.warning("Fetch rejected (%d): not authenticated", status)
            else:
                logger.warning("Fetch failed: %d", status)
            return None
        except httpx.HTTPError as e:
            logger.warning("Fetch failed: %s", e)
            return None

        if not resp.text:
            logger.info("Empty response from server")
            return None
        try:
            data = resp.json()
        except (json.JSONDecodeError, ValueError):
            logger.warning("Server returned a non-JSON response")
            return None
        if not isinstance(data, dict):
            logger.warning("Server returned a non-object document")
            return None
        return data

    def push_document(self, document: dict) -> dict | None:
        """POST /api/db with the full document -> the server's merged document.

        Returns None on any failure; the caller keeps its local state.
        """
        try:
            resp = self._client.post(API_PATH, json=document)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as e:
            logger.warning(
                "Persist rejected: %d %s", e.response.status_code, e.response.text[:200]
            )
            return None
        except httpx.HTTPError as e:
            logger.warning("Persist failed: %s", e)
            return None
        except (json.JSONDecodeError, ValueError):
            logger.warning("Persist returned a non-JSON response")
            return None

        if not isinstance(data, dict):
            data = {}
        merged = data.get("db")
        if not data.get("ok") or not isinstance(merged, dict):
            logger.warning("Persist response missing merged document")
            return None
        return merged

    def health(self) -> dict | None:
        """GET /api/health -> {status, version}, or None if unreachable."""
        try:
            resp = self._client.get("/api/health")
            resp.raise_for_status()
            return resp.json()
        except (httpx.HTTPError, json.JSONDecodeError, ValueError) as e:
            logger.warning("Health check failed: %s", e)
            return None

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()
