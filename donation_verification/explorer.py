"""
Donation Verification - Explorer Link Resolver.

Maps a transaction hash and network to a block-explorer URL.
Placeholder hashes never existed on chain and get no link.
Never raises.
"""

import logging
from typing import Dict, Optional

from .types import PENDING_HASH_PREFIX, FAILED_HASH_PREFIX


logger = logging.getLogger(__name__)


DEFAULT_EXPLORERS: Dict[str, str] = {
    "ethereum": "https://etherscan.io/tx/",
    "sepolia": "https://sepolia.etherscan.io/tx/",
    "polygon": "https://polygonscan.com/tx/",
    "bsc": "https://bscscan.com/tx/",
}

DEFAULT_NETWORK = "ethereum"


class ExplorerLinkResolver:
    """
    Resolves explorer URLs for verification records.

    Unknown or missing networks fall back to the default network.
    """

    def __init__(
        self,
        explorers: Optional[Dict[str, str]] = None,
        default_network: str = DEFAULT_NETWORK,
    ):
        self._explorers = {
            name.lower(): base for name, base in (explorers or DEFAULT_EXPLORERS).items()
        }
        default_network = default_network.lower()
        if default_network not in self._explorers:
            raise ValueError(f"Default network {default_network!r} has no explorer")
        self._default_network = default_network

    @property
    def networks(self) -> list:
        return sorted(self._explorers)

    def resolve(
        self,
        transaction_hash: Optional[str],
        network: Optional[str] = None,
    ) -> Optional[str]:
        """
        Build the explorer URL for a transaction.

        Args:
            transaction_hash: Chain hash or placeholder
            network: Network identifier (case-insensitive)

        Returns:
            URL, or None for missing and placeholder hashes
        """
        if not isinstance(transaction_hash, str) or not transaction_hash:
            return None
        if transaction_hash.startswith((PENDING_HASH_PREFIX, FAILED_HASH_PREFIX)):
            return None

        key = network.lower() if isinstance(network, str) else self._default_network
        base = self._explorers.get(key)
        if base is None:
            logger.debug(f"Unknown network {network!r}, using {self._default_network}")
            base = self._explorers[self._default_network]

        return f"{base}{transaction_hash}"


_default_resolver = ExplorerLinkResolver()


def resolve_explorer_url(
    transaction_hash: Optional[str],
    network: Optional[str] = None,
) -> Optional[str]:
    """Resolve with the built-in explorer table."""
    return _default_resolver.resolve(transaction_hash, network)
