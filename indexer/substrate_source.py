"""
substrate_source.py - Archive-node ``ChainSource`` backed by substrate-interface.

Wraps a connected ``substrateinterface.SubstrateInterface`` (or anything with
the same ``get_block_hash`` / ``get_metadata_storage_function`` / ``query``
methods). SCALE decoding is left to the client; this adapter only maps the
reader's (height, item, keys) requests onto ParachainStaking storage queries.
"""

import logging
from typing import Dict, Optional, Sequence

logger = logging.getLogger("chain")

PALLET = "ParachainStaking"


class SubstrateChainSource:
    """Point-in-time ParachainStaking storage reads against an archive node."""

    def __init__(self, substrate, pallet: str = PALLET):
        self._substrate = substrate
        self._pallet = pallet
        self._hashes: Dict[int, str] = {}

    @classmethod
    def connect(cls, url: str) -> "SubstrateChainSource":
        from substrateinterface import SubstrateInterface

        logger.info("Connecting to archive node %s", url)
        return cls(SubstrateInterface(url=url, auto_reconnect=True))

    def _block_hash(self, height: int) -> str:
        block_hash = self._hashes.get(height)
        if block_hash is None:
            block_hash = self._substrate.get_block_hash(block_id=height)
            if block_hash is None:
                raise LookupError(f"No block at height {height}")
            self._hashes[height] = block_hash
        return block_hash

    def query_storage(
        self, height: int, item: str, keys: Optional[Sequence[str]] = None
    ) -> Optional[list]:
        block_hash = self._block_hash(height)
        function = self._substrate.get_metadata_storage_function(
            self._pallet, item, block_hash=block_hash
        )
        if function is None:
            return None
        if keys is None:
            return self._substrate.query(self._pallet, item, block_hash=block_hash).value
        results = []
        for key in keys:
            value = self._substrate.query(self._pallet, item, params=[key], block_hash=block_hash).value
            results.append(value or None)
        logger.debug("Queried %s.%s for %d keys at %d", self._pallet, item, len(keys), height)
        return results
