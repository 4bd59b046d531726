"""Kubo IPFS content storage - uploads metadata documents via the Kubo HTTP RPC."""

from __future__ import annotations

import base64
import logging
import time

import httpx

from attendmint.errors import UploadFailedError

log = logging.getLogger(__name__)


def inline_data_uri(data: bytes, content_type: str = "application/json") -> str:
    """Encode ``data`` as a self-contained ``data:`` URI.

    Used when off-chain storage is unavailable so minting never depends on it.
    """
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{content_type};base64,{encoded}"


class KuboContentStorage:
    """Adds content to a Kubo node and returns a gateway URL for it.

    Uses the Kubo HTTP RPC API at /api/v0/ for:
    - add: store and pin the bytes, returning the CID
    """

    def __init__(
        self,
        api_url: str = "http://127.0.0.1:5001",
        gateway_url: str = "https://ipfs.io",
        timeout: float = 30.0,
        retries: int = 2,
    ) -> None:
        self._base_url = api_url.rstrip("/")
        self._gateway_url = gateway_url.rstrip("/")
        self._timeout = timeout
        self._retries = max(1, retries)

    def _url(self, endpoint: str) -> str:
        return f"{self._base_url}/api/v0/{endpoint}"

    def gateway_uri(self, cid: str) -> str:
        return f"{self._gateway_url}/ipfs/{cid}"

    async def upload(self, data: bytes, filename: str = "metadata.json") -> str:
        """Add ``data`` to Kubo (pinned) and return its gateway URI."""
        start = time.monotonic()
        last_error = "no attempt made"

        for attempt in range(1, self._retries + 1):
            try:
                async with httpx.AsyncClient(
                    timeout=httpx.Timeout(self._timeout, connect=10),
                ) as client:
                    resp = await client.post(
                        self._url("add"),
                        params={"pin": "true", "cid-version": "1"},
                        files={"file": (filename, data)},
                    )
                    resp.raise_for_status()
                    cid = resp.json().get("Hash", "")
            except (httpx.TimeoutException, httpx.HTTPStatusError) as exc:
                retryable = isinstance(exc, httpx.TimeoutException) or (
                    isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code >= 500
                )
                if isinstance(exc, httpx.HTTPStatusError):
                    last_error = f"kubo HTTP {exc.response.status_code}"
                else:
                    last_error = "kubo timeout"
                if retryable and attempt < self._retries:
                    log.warning(
                        "Kubo add failed for %s (attempt %d/%d): %s",
                        filename, attempt, self._retries, last_error,
                    )
                    continue
                break
            except (httpx.HTTPError, ValueError) as exc:
                last_error = f"kubo_add: {exc}"
                break

            if not cid:
                last_error = "kubo add returned no Hash"
                break

            duration = int((time.monotonic() - start) * 1000)
            log.info("Uploaded %s (%d bytes) as %s in %dms", filename, len(data), cid, duration)
            return self.gateway_uri(cid)

        log.error("Upload of %s failed: %s", filename, last_error)
        raise UploadFailedError(last_error)
