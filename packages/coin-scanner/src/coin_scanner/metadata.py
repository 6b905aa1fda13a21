"""
Off-chain metadata resolution for coin records.

Converts content-addressed URIs to gateway URLs and fetches the metadata
document with gateway fallback and exponential backoff. Failures are never
fatal: resolve() returns None and the caller keeps the coin with
placeholder fields.
"""

import logging
from collections import OrderedDict
from typing import Any

import httpx

from .config import MetadataConfig
from .models import TrackMetadata
from .utils.backoff import BackoffPolicy

logger = logging.getLogger(__name__)

IPFS_SCHEME = "ipfs://"


class MetadataFetchError(Exception):
    """Every gateway failed during one fetch attempt."""


def _ipfs_path(uri: str) -> str | None:
    """Return '<cid>[/path]' for a content-addressed URI, or None."""
    uri = uri.strip()
    if uri.startswith(IPFS_SCHEME):
        path = uri[len(IPFS_SCHEME):]
        # Some producers write ipfs://ipfs/<cid>
        if path.startswith("ipfs/"):
            path = path[len("ipfs/"):]
        return path.strip("/") or None
    # Bare CIDv0 / CIDv1
    if uri.startswith("Qm") and len(uri) == 46:
        return uri
    if uri.startswith("bafy"):
        return uri
    return None


class MetadataResolver:
    """
    Fetches metadata documents through a list of IPFS gateways.

    Each attempt walks the gateway list in order; attempts are separated by
    the backoff policy's delays. Successful documents are cached per URI in
    a bounded LRU map.
    """

    def __init__(
        self,
        config: MetadataConfig,
        backoff: BackoffPolicy | None = None,
        transport: httpx.AsyncBaseTransport | None = None
    ) -> None:
        """
        Initialize the resolver.

        Args:
            config: Gateway list, attempts and timeouts
            backoff: Optional retry policy (defaults from config)
            transport: Optional httpx transport, used by tests to fake gateways
        """
        self.config = config
        self.gateways = config.gateways
        self.backoff = backoff or BackoffPolicy(
            max_attempts=config.max_attempts,
            base_delay=config.base_delay,
        )
        self.client = httpx.AsyncClient(transport=transport, follow_redirects=True)
        self._cache: OrderedDict[str, dict[str, Any]] = OrderedDict()

        # Metrics tracking
        self.fetched = 0
        self.failed = 0
        self.cache_hits = 0

    async def aclose(self) -> None:
        await self.client.aclose()

    def to_gateway_urls(self, uri: str) -> list[str]:
        """
        Expand a URI into the HTTP URLs to try, in order.

        ipfs:// URIs and bare CIDs map to one URL per gateway; http(s) URLs
        pass through unchanged; anything else yields an empty list.
        """
        if not uri:
            return []
        path = _ipfs_path(uri)
        if path is not None:
            return [f"{gateway}{path}" for gateway in self.gateways]
        if uri.startswith(("http://", "https://")):
            return [uri.strip()]
        return []

    def to_http_url(self, uri: str) -> str:
        """Convert a content-addressed reference to its primary HTTP form."""
        urls = self.to_gateway_urls(uri)
        return urls[0] if urls else uri

    async def resolve(self, uri: str) -> TrackMetadata | None:
        """
        Fetch and parse the metadata document behind a URI.

        Args:
            uri: Metadata URI taken from the CoinCreated event

        Returns:
            TrackMetadata, or None when the document cannot be obtained
        """
        document = await self.fetch_document(uri)
        if document is None:
            return None
        return self.parse_metadata(document)

    async def fetch_document(self, uri: str) -> dict[str, Any] | None:
        """Fetch the raw JSON document, retrying with backoff."""
        if not uri:
            logger.warning("Empty URI provided for metadata fetch")
            return None

        if uri in self._cache:
            self._cache.move_to_end(uri)
            self.cache_hits += 1
            return self._cache[uri]

        urls = self.to_gateway_urls(uri)
        if not urls:
            logger.warning(f"Unsupported metadata URI: {uri}")
            self.failed += 1
            return None

        def on_retry(attempt: int, delay: float, error: BaseException) -> None:
            logger.info(
                f"Metadata fetch attempt {attempt} for {uri} failed ({error}); "
                f"retrying in {delay:g}s"
            )

        try:
            document = await self.backoff.run(
                lambda: self._fetch_once(urls),
                retry_on=(MetadataFetchError,),
                on_retry=on_retry,
            )
        except MetadataFetchError as e:
            self.failed += 1
            logger.error(
                f"Failed to fetch metadata after {self.backoff.max_attempts} attempts: {e}"
            )
            return None

        self.fetched += 1
        self._remember(uri, document)
        return document

    async def _fetch_once(self, urls: list[str]) -> dict[str, Any]:
        last_error = "no gateways"
        for url in urls:
            try:
                response = await self.client.get(url, timeout=self.config.request_timeout)
                response.raise_for_status()
                document = response.json()
            except (httpx.HTTPError, ValueError) as e:
                last_error = f"{url}: {str(e) or type(e).__name__}"
                logger.debug(f"Metadata gateway failed {last_error}")
                continue

            if isinstance(document, dict):
                return document
            last_error = f"{url}: document is not a JSON object"

        raise MetadataFetchError(last_error)

    def _remember(self, uri: str, document: dict[str, Any]) -> None:
        self._cache[uri] = document
        while len(self._cache) > self.config.cache_size:
            self._cache.popitem(last=False)

    def parse_metadata(self, document: dict[str, Any]) -> TrackMetadata:
        """
        Extract descriptive fields from a metadata document.

        An 'Artist' trait in attributes overrides the top-level artist field.
        Image and audio references are converted to HTTP form.
        """
        artist_name = str(document.get("artist") or "")

        attributes = document.get("attributes")
        traits: tuple[dict[str, Any], ...] = ()
        if isinstance(attributes, list):
            traits = tuple(attr for attr in attributes if isinstance(attr, dict))
            for attr in traits:
                if attr.get("trait_type") in ("Artist", "artist") and attr.get("value"):
                    artist_name = str(attr["value"])
                    break

        image = str(document.get("image") or "")
        animation_url = str(document.get("animation_url") or "")

        return TrackMetadata(
            description=str(document.get("description") or ""),
            artist_name=artist_name,
            image=self.to_http_url(image) if image else "",
            animation_url=self.to_http_url(animation_url) if animation_url else "",
            attributes=traits,
            raw=document,
        )

    def get_stats(self) -> dict[str, int]:
        return {
            "fetched": self.fetched,
            "failed": self.failed,
            "cache_hits": self.cache_hits,
            "cached": len(self._cache),
        }
