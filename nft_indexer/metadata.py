import logging
from typing import Any, List, Optional

import httpx
from pydantic import BaseModel, Field, ValidationError, field_validator

from nft_indexer import config
from nft_indexer.errors import MetadataFetchError
from nft_indexer.models import Attribute

logger = logging.getLogger(__name__)


class TokenAttribute(BaseModel):
    trait_type: str = ""
    value: str = ""

    @field_validator("trait_type", "value", mode="before")
    @classmethod
    def _stringify(cls, v: Any) -> str:
        # documents commonly use numbers/bools for trait values
        return "" if v is None else str(v)


class TokenMetadata(BaseModel):
    name: str = ""
    description: str = ""
    image: str = ""
    attributes: List[TokenAttribute] = Field(default_factory=list)

    @field_validator("name", "description", "image", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("attributes", mode="before")
    @classmethod
    def _none_to_list(cls, v: Any) -> Any:
        return [] if v is None else v

    def to_attributes(self) -> List[Attribute]:
        return [Attribute(trait_type=a.trait_type, value=a.value) for a in self.attributes]


def normalize_uri(uri: str, gateway: Optional[str] = None) -> str:
    """
    ipfs://<cid>/<path> and ipfs://ipfs/<cid>/<path> -> <gateway><cid>/<path>.
    Anything else is returned unchanged.
    """
    gateway = gateway or config.IPFS_GATEWAY
    uri = (uri or "").strip()
    if not uri.lower().startswith("ipfs://"):
        return uri
    path = uri[len("ipfs://"):]
    if path.startswith("ipfs/"):
        path = path[len("ipfs/"):]
    if not gateway.endswith("/"):
        gateway += "/"
    return gateway + path


class MetadataFetcher:
    """Fetches and validates the JSON document behind a token URI."""

    def __init__(self, client: httpx.AsyncClient, gateway: Optional[str] = None):
        self._client = client
        self._gateway = gateway or config.IPFS_GATEWAY

    async def fetch(self, token_uri: str) -> TokenMetadata:
        url = normalize_uri(token_uri, self._gateway)
        if not url.lower().startswith(("http://", "https://")):
            raise MetadataFetchError(f"unsupported token URI: {token_uri!r}")
        try:
            response = await self._client.get(url)
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise MetadataFetchError(f"GET {url!r}: {e}") from e
        except ValueError as e:
            raise MetadataFetchError(f"GET {url}: body is not JSON: {e}") from e

        if not isinstance(body, dict):
            raise MetadataFetchError(f"GET {url}: expected a JSON object, got {type(body).__name__}")
        try:
            return TokenMetadata.model_validate(body)
        except ValidationError as e:
            raise MetadataFetchError(f"GET {url}: malformed metadata: {e}") from e
