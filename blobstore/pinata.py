"""
IPFS blob storage through the Pinata pinning service.

Handles:
- Pinning encrypted record packages
- Fetching them back through a list of IPFS gateways
- Retry with exponential backoff and jitter on network failures
"""

import asyncio
import json
import logging
import random
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx

from .base import BlobStore, BlobStoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")

CID_PATTERN = re.compile(r"^[a-zA-Z0-9]{46,128}$")


def validate_cid(cid: Any) -> str:
    """
    Normalize and validate an IPFS content id.

    Accepts ``/ipfs/<cid>`` style paths and surrounding whitespace.

    Raises:
        BlobStoreError: With code ``INVALID_CID`` if the value is not a CID
    """
    if not cid:
        raise BlobStoreError("No CID provided", code="INVALID_CID")

    clean = str(cid).strip().strip("/")
    if clean.startswith("ipfs/"):
        clean = clean[len("ipfs/"):]
    clean = re.sub(r"\s+", "", clean)

    if not CID_PATTERN.match(clean):
        raise BlobStoreError(
            f"Invalid CID format: {clean}",
            code="INVALID_CID",
            details="CID must be 46-128 alphanumeric characters",
        )
    return clean


@dataclass
class PinResult:
    """Result of pinning a blob."""
    cid: str
    size: int = 0
    timestamp: str = ""
    gateway_urls: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class Gateway:
    name: str
    base_url: str
    send_auth: bool = False

    def url(self, cid: str) -> str:
        return f"{self.base_url.rstrip('/')}/ipfs/{cid}"


class PinataBlobStore(BlobStore):
    """Pins blobs to IPFS via Pinata and reads them back via gateways."""

    def __init__(
        self,
        api_url: str = "https://api.pinata.cloud",
        gateway_url: str = "https://gateway.pinata.cloud",
        jwt: Optional[str] = None,
        api_key: Optional[str] = None,
        secret_api_key: Optional[str] = None,
        public_gateways: Optional[list[str]] = None,
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        max_retry_delay: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the Pinata blob store.

        Args:
            api_url: Base URL of the Pinata API
            gateway_url: Dedicated Pinata gateway, tried first on reads
            jwt: Pinata JWT; preferred over the API key pair
            api_key: Pinata API key (used with ``secret_api_key``)
            secret_api_key: Pinata secret API key
            public_gateways: Fallback gateways tried in order after Pinata's
            timeout: Per-request timeout in seconds
            max_retries: Attempts per request before giving up
            retry_delay: Base delay for exponential backoff
            max_retry_delay: Upper bound on a single backoff delay
            transport: Optional httpx transport (used by tests)
        """
        self.api_url = api_url.rstrip("/")
        self.jwt = jwt
        self.api_key = api_key
        self.secret_api_key = secret_api_key
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.max_retry_delay = max_retry_delay
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

        self.gateways = [Gateway("pinata", gateway_url, send_auth=True)]
        for base_url in public_gateways if public_gateways is not None else ["https://ipfs.io", "https://dweb.link"]:
            self.gateways.append(Gateway(httpx.URL(base_url).host, base_url))

    @classmethod
    def from_config(cls, cfg, transport: Optional[httpx.AsyncBaseTransport] = None) -> "PinataBlobStore":
        return cls(
            api_url=cfg.PINATA_API_URL,
            gateway_url=cfg.PINATA_GATEWAY_URL,
            jwt=cfg.PINATA_JWT,
            api_key=cfg.PINATA_API_KEY,
            secret_api_key=cfg.PINATA_SECRET_API_KEY,
            public_gateways=cfg.PUBLIC_GATEWAYS,
            timeout=cfg.REQUEST_TIMEOUT_SECONDS,
            max_retries=cfg.MAX_RETRIES,
            retry_delay=cfg.RETRY_DELAY_SECONDS,
            max_retry_delay=cfg.MAX_RETRY_DELAY_SECONDS,
            transport=transport,
        )

    def _get_headers(self) -> dict[str, str]:
        """Get authentication headers for Pinata API requests."""
        if self.jwt:
            token = self.jwt[len("Bearer "):] if self.jwt.startswith("Bearer ") else self.jwt
            return {"Authorization": f"Bearer {token}"}

        if self.api_key and self.secret_api_key:
            return {
                "pinata_api_key": self.api_key,
                "pinata_secret_api_key": self.secret_api_key,
            }

        raise BlobStoreError(
            "Pinata credentials not configured",
            code="AUTH_ERROR",
            details="Set MEDVAULT_PINATA_JWT or both MEDVAULT_PINATA_API_KEY and MEDVAULT_PINATA_SECRET_API_KEY",
        )

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _with_retry(self, fn: Callable[[int], Awaitable[T]], max_retries: Optional[int] = None) -> T:
        """Run ``fn`` with exponential backoff; invalid CIDs are never retried."""
        attempts = max_retries or self.max_retries
        last_error: Optional[BlobStoreError] = None

        for attempt in range(attempts):
            try:
                return await fn(attempt)
            except BlobStoreError as e:
                last_error = e
                if e.code in ("INVALID_CID", "AUTH_ERROR"):
                    break
                if attempt + 1 < attempts:
                    delay = min(
                        self.retry_delay * (2 ** attempt) + random.uniform(0, self.retry_delay),
                        self.max_retry_delay,
                    )
                    logger.debug("Blob store request failed (%s), retrying in %.2fs", e.code, delay)
                    await asyncio.sleep(delay)

        raise last_error

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Send one request, mapping transport failures to ``BlobStoreError``."""
        client = await self._get_client()
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise BlobStoreError(f"Request to {url} timed out after {self.timeout}s", code="TIMEOUT") from e
        except httpx.RequestError as e:
            raise BlobStoreError(f"Network request failed: {e}", code="NETWORK_ERROR") from e

        if response.status_code >= 400:
            try:
                details = response.json()
            except ValueError:
                details = response.text
            raise BlobStoreError(
                f"Request failed with status {response.status_code}",
                code=f"HTTP_{response.status_code}",
                details=details,
            )
        return response

    async def pin(self, blob: bytes, name: str, metadata: Optional[dict[str, Any]] = None) -> PinResult:
        """
        Pin an encrypted blob to IPFS.

        Args:
            blob: The encrypted record package
            name: File name recorded in Pinata
            metadata: Extra key/values stored with the pin

        Returns:
            PinResult with the CID and gateway URLs
        """
        headers = self._get_headers()
        pinata_metadata = {
            "name": name,
            "keyvalues": {
                "uploadedAt": datetime.now(timezone.utc).isoformat(),
                "encrypted": "true",
                "originalSize": len(blob),
                "mimeType": "application/octet-stream",
                **(metadata or {}),
            },
        }
        pinata_options = {"cidVersion": 1, "wrapWithDirectory": False}

        async def attempt(_: int) -> httpx.Response:
            return await self._request(
                "POST",
                f"{self.api_url}/pinning/pinFileToIPFS",
                headers=headers,
                files={"file": (name, blob, "application/octet-stream")},
                data={
                    "pinataMetadata": json.dumps(pinata_metadata),
                    "pinataOptions": json.dumps(pinata_options),
                },
            )

        response = await self._with_retry(attempt)
        result = response.json()

        cid = result.get("IpfsHash")
        if not cid:
            raise BlobStoreError(
                "Invalid response from IPFS service",
                code="INVALID_RESPONSE",
                details="Missing IpfsHash in response",
            )

        logger.info("Pinned %s (%d bytes) as %s", name, len(blob), cid)
        return PinResult(
            cid=cid,
            size=result.get("PinSize", 0),
            timestamp=result.get("Timestamp", ""),
            gateway_urls=[gateway.url(cid) for gateway in self.gateways],
        )

    async def put(self, blob: bytes, name: str = "record.enc") -> str:
        return (await self.pin(blob, name)).cid

    async def get(self, content_id: str) -> bytes:
        """
        Fetch a blob, trying each gateway in order.

        Raises:
            BlobStoreError: ``INVALID_CID`` for a malformed id, or
                ``ALL_GATEWAYS_FAILED`` when no gateway returns the blob
        """
        cid = validate_cid(content_id)
        last_error: Optional[BlobStoreError] = None

        for gateway in self.gateways:
            headers = {}
            if gateway.send_auth and self.jwt:
                headers = self._get_headers()

            async def attempt(_: int, url: str = gateway.url(cid)) -> httpx.Response:
                return await self._request("GET", url, headers=headers)

            try:
                response = await self._with_retry(attempt, max_retries=2)
            except BlobStoreError as e:
                logger.warning("Failed to fetch %s from %s: %s", cid, gateway.name, e)
                last_error = e
                continue

            if not response.content:
                logger.warning("Empty response for %s from %s", cid, gateway.name)
                last_error = BlobStoreError("Empty response from gateway", code="EMPTY_RESPONSE")
                continue

            return response.content

        raise BlobStoreError(
            "All IPFS gateways failed",
            code="ALL_GATEWAYS_FAILED",
            details={"cid": cid, "last_error": str(last_error) if last_error else None},
        )

    async def test_connection(self) -> bool:
        """Check that the configured credentials are accepted by Pinata."""
        headers = self._get_headers()
        response = await self._with_retry(
            lambda _: self._request("GET", f"{self.api_url}/data/testAuthentication", headers=headers)
        )
        return response.status_code == 200
