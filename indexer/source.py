"""
source.py - JSON-lines block stream.

One block per line::

    {"height": 101, "timestamp": 1655236778939, "events": [
        {"kind": "ParachainStaking.NewRound", "version": "v1300",
         "payload": {"startingBlock": 101, "round": 5, ...}}
    ]}

Heights must be strictly increasing. Blocks are handed out in batches; the
processor commits each block on its own, so a batch is only a unit of
delivery.
"""

import json
import logging
from pathlib import Path
from typing import Iterable, Iterator, List, Optional

from pydantic import ValidationError

from indexer.models import Block

logger = logging.getLogger("source")

DEFAULT_BATCH_SIZE = 10


def read_blocks(path: str, from_block: Optional[int] = None) -> Iterator[Block]:
    last_height = None
    with Path(path).open() as f:
        for line_no, line in enumerate(f, start=1):
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            try:
                block = Block.model_validate(json.loads(line))
            except (json.JSONDecodeError, ValidationError) as e:
                raise ValueError(f"{path}:{line_no}: invalid block: {e}") from e
            if last_height is not None and block.height <= last_height:
                raise ValueError(
                    f"{path}:{line_no}: block {block.height} does not follow {last_height}"
                )
            last_height = block.height
            if from_block is not None and block.height < from_block:
                continue
            yield block


def batched(blocks: Iterable[Block], size: int = DEFAULT_BATCH_SIZE) -> Iterator[List[Block]]:
    if size < 1:
        raise ValueError("batch size must be at least 1")
    batch: List[Block] = []
    for block in blocks:
        batch.append(block)
        if len(batch) >= size:
            yield batch
            batch = []
    if batch:
        yield batch
