"""
server.py - Staking indexer entry point.

Single process combining:
 - SQLite persistent storage via StorageManager
 - StakingProcessor fed from a JSON-lines block stream
 - Chain state from a JSON fixture (ChainSimulator) or an archive node
 - Read-only query API (FastAPI on uvicorn)

Usage:
    python -m indexer.server --events blocks.jsonl --chain-fixture chain.json
    python -m indexer.server --events blocks.jsonl --ws-url wss://wss.api.moonbeam.network
    python -m indexer.server --db-path data/staking.db --serve --api-port 8080
"""

import argparse
import asyncio
import logging
import os
from typing import Optional

from fastapi import FastAPI
import uvicorn

from indexer import __version__
from indexer.chain_simulator import ChainSimulator
from indexer.chain_state import ChainStateReader
from indexer.processor import StakingProcessor
from indexer.routers import register_all_routers
from indexer.source import DEFAULT_BATCH_SIZE, read_blocks
from indexer.storage import StorageManager

logger = logging.getLogger("server")


def create_app(storage: StorageManager) -> FastAPI:
    app = FastAPI(title="Staking Round Indexer", version=__version__)
    app.state.storage = storage
    register_all_routers(app)
    return app


class IndexerServer:
    """Wires storage, chain source, processor and the query API."""

    def __init__(
        self,
        db_path: str = "data/staking.db",
        events_path: Optional[str] = None,
        chain_fixture: Optional[str] = None,
        ws_url: Optional[str] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        from_block: Optional[int] = None,
        serve: bool = False,
        api_port: int = 8080,
    ):
        self.db_path = db_path
        self.events_path = events_path
        self.chain_fixture = chain_fixture
        self.ws_url = ws_url
        self.batch_size = batch_size
        self.from_block = from_block
        self.serve = serve
        self.api_port = api_port
        self.storage: Optional[StorageManager] = None
        self.processor: Optional[StakingProcessor] = None

    def _chain_reader(self) -> ChainStateReader:
        if self.ws_url:
            from indexer.substrate_source import SubstrateChainSource
            return ChainStateReader(SubstrateChainSource.connect(self.ws_url))
        if self.chain_fixture:
            return ChainStateReader(ChainSimulator.load(self.chain_fixture))
        logger.warning("No chain source configured, using an empty chain")
        return ChainStateReader(ChainSimulator())

    async def _init_services(self):
        db_dir = os.path.dirname(self.db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)
        self.storage = StorageManager(self.db_path)
        await self.storage.initialize()
        self.processor = StakingProcessor(self.storage, self._chain_reader())
        logger.info("Services initialized (db=%s)", self.db_path)

    async def _index(self):
        start = self.from_block
        if start is None:
            last = await self.processor.last_committed_height()
            start = last + 1 if last is not None else None
        logger.info("Indexing %s from block %s", self.events_path, start if start is not None else "genesis")
        totals = await self.processor.run(read_blocks(self.events_path, from_block=start), self.batch_size)
        logger.info(
            "Indexing done: applied=%d skipped=%d replayed=%d ignored=%d",
            totals["applied"], totals["skipped"], totals["replayed"], totals["ignored"],
        )

    async def start(self):
        await self._init_services()
        try:
            if self.events_path:
                await self._index()
            if self.serve:
                config = uvicorn.Config(
                    create_app(self.storage), host="0.0.0.0", port=self.api_port, log_level="info",
                )
                await uvicorn.Server(config).serve()
        finally:
            await self.storage.close()


def main():
    """CLI entry point for the staking indexer."""
    parser = argparse.ArgumentParser(description="Parachain staking round indexer")
    parser.add_argument("--db-path", default="data/staking.db", help="SQLite database path (default: data/staking.db)")
    parser.add_argument("--events", default=None, help="JSON-lines block stream to index")
    parser.add_argument("--chain-fixture", default=None, help="JSON chain-state fixture for the chain simulator")
    parser.add_argument("--ws-url", default=None, help="Archive node websocket URL (needs substrate-interface)")
    parser.add_argument("--batch-size", type=int, default=DEFAULT_BATCH_SIZE, help="Blocks per batch (default: 10)")
    parser.add_argument("--from-block", type=int, default=None, help="First block to index (default: resume)")
    parser.add_argument("--serve", action="store_true", help="Serve the query API after indexing")
    parser.add_argument("--api-port", type=int, default=8080, help="REST API port (default: 8080)")
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    args = parser.parse_args()

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s [%(name)-10s] %(levelname)-5s %(message)s",
        datefmt="%H:%M:%S",
    )

    if not args.events and not args.serve:
        parser.error("nothing to do: pass --events and/or --serve")

    server = IndexerServer(
        db_path=args.db_path,
        events_path=args.events,
        chain_fixture=args.chain_fixture,
        ws_url=args.ws_url,
        batch_size=args.batch_size,
        from_block=args.from_block,
        serve=args.serve,
        api_port=args.api_port,
    )

    logger.info("=" * 60)
    logger.info("  Staking Round Indexer %s", __version__)
    logger.info("  Database:    %s", args.db_path)
    logger.info("  Events:      %s", args.events or "-")
    logger.info("  Chain:       %s", args.ws_url or args.chain_fixture or "empty simulator")
    if args.serve:
        logger.info("  REST API:    http://localhost:%d", args.api_port)
    logger.info("=" * 60)

    try:
        asyncio.run(server.start())
    except KeyboardInterrupt:
        logger.info("Shutting down...")


if __name__ == "__main__":
    main()
