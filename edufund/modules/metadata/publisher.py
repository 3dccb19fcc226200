"""
Metadata Publisher - pins immutable agreement terms off-ledger.
"""
import logging
from typing import Any, Dict

import httpx

from edufund.core.config import settings
from edufund.core.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)


class MetadataPublisher:
    async def publish(self, document: Dict[str, Any]) -> str:
        """Pin ``document`` and return its content URI"""
        raise NotImplementedError


class PinataPublisher(MetadataPublisher):
    """Pins JSON to IPFS through the Pinata HTTP API"""

    def __init__(self, api_key: str = None, secret_key: str = None,
                 api_url: str = None, timeout: float = None):
        self.api_key = api_key if api_key is not None else settings.PINATA_API_KEY
        self.secret_key = secret_key if secret_key is not None else settings.PINATA_SECRET_API_KEY
        self.api_url = api_url or settings.PINATA_API_URL
        self.timeout = timeout or settings.METADATA_TIMEOUT_SECONDS

    async def publish(self, document: Dict[str, Any]) -> str:
        if not self.api_key or not self.secret_key:
            raise ExternalServiceError("Pinata credentials are not configured", reason="metadata_unavailable")

        headers = {
            "pinata_api_key": self.api_key,
            "pinata_secret_api_key": self.secret_key,
        }
        body = {
            "pinataContent": document,
            "pinataMetadata": {"name": f"loan-agreement-{document.get('agreementId')}"},
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.api_url, json=body, headers=headers)
                response.raise_for_status()
                cid = response.json()["IpfsHash"]
        except (httpx.HTTPError, KeyError, ValueError) as e:
            logger.error(f"Pinata pin error: {e}")
            raise ExternalServiceError("Failed to pin metadata to IPFS", reason="metadata_unavailable")

        logger.info(f"Pinned agreement metadata: ipfs://{cid}")
        return f"ipfs://{cid}"
