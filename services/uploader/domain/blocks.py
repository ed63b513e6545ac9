from __future__ import annotations

import base64
import math
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable, List
from xml.etree import ElementTree

from services.uploader.domain.errors import InvalidBlockTransition

# Storage limit on uncommitted blocks per object.
MAX_BLOCKS_PER_OBJECT = 50_000
_BLOCK_ID_WIDTH = 6


def plan_block_ranges(file_size: int, chunk_size: int) -> list[tuple[int, int]]:
    """Split ``[0, file_size)`` into ascending ``[start, end)`` ranges.

    Every range is ``chunk_size`` long except possibly the last, which holds
    the remainder. Exact multiples do not produce a zero-length tail.
    """
    if chunk_size < 1:
        raise ValueError("chunk_size must be positive")
    if file_size <= 0:
        raise ValueError("Cannot plan blocks for an empty file")
    count = math.ceil(file_size / chunk_size)
    if count > MAX_BLOCKS_PER_OBJECT:
        raise ValueError(
            f"File needs {count} blocks, more than the {MAX_BLOCKS_PER_OBJECT} "
            "allowed per object; increase CHUNK_SIZE"
        )
    return [
        (start, min(start + chunk_size, file_size))
        for start in range(0, file_size, chunk_size)
    ]


def block_id_for(index: int) -> str:
    if not 0 <= index < MAX_BLOCKS_PER_OBJECT:
        raise ValueError(f"Block index {index} is out of range")
    raw = f"block-{index:0{_BLOCK_ID_WIDTH}d}".encode("ascii")
    return base64.b64encode(raw).decode("ascii")


class BlockState(str, Enum):
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    COMMITTED = "committed"
    FAILED = "failed"


_ALLOWED_TRANSITIONS = {
    BlockState.PENDING: {BlockState.IN_FLIGHT},
    BlockState.IN_FLIGHT: {BlockState.COMMITTED, BlockState.FAILED},
    BlockState.COMMITTED: set(),
    BlockState.FAILED: set(),
}


@dataclass
class BlockDescriptor:
    index: int
    start: int
    end: int
    block_id: str
    state: BlockState = BlockState.PENDING

    @property
    def length(self) -> int:
        return self.end - self.start

    def mark_in_flight(self) -> None:
        self._transition(BlockState.IN_FLIGHT)

    def mark_committed(self) -> None:
        self._transition(BlockState.COMMITTED)

    def mark_failed(self) -> None:
        self._transition(BlockState.FAILED)

    def _transition(self, target: BlockState) -> None:
        if target not in _ALLOWED_TRANSITIONS[self.state]:
            raise InvalidBlockTransition(
                f"Block {self.index} cannot move from {self.state.value} "
                f"to {target.value}"
            )
        self.state = target


@dataclass
class FileUpload:
    label: str
    file_path: Path
    destination_url: str = field(repr=False)
    chunk_size: int
    blocks: List[BlockDescriptor]

    @classmethod
    def plan(
        cls,
        *,
        label: str,
        file_path: Path,
        destination_url: str,
        chunk_size: int,
    ) -> "FileUpload":
        file_size = file_path.stat().st_size
        blocks = [
            BlockDescriptor(index=index, start=start, end=end, block_id=block_id_for(index))
            for index, (start, end) in enumerate(plan_block_ranges(file_size, chunk_size))
        ]
        return cls(
            label=label,
            file_path=file_path,
            destination_url=destination_url,
            chunk_size=chunk_size,
            blocks=blocks,
        )

    @property
    def size(self) -> int:
        return self.blocks[-1].end if self.blocks else 0

    def count(self, state: BlockState) -> int:
        return sum(1 for block in self.blocks if block.state is state)

    @property
    def all_committed(self) -> bool:
        return all(block.state is BlockState.COMMITTED for block in self.blocks)


@dataclass(frozen=True)
class BlockListManifest:
    block_ids: tuple[str, ...]

    @classmethod
    def from_blocks(cls, blocks: Iterable[BlockDescriptor]) -> "BlockListManifest":
        ordered = sorted(blocks, key=lambda block: block.index)
        if not ordered:
            raise ValueError("Cannot build a manifest without blocks")
        pending = [b.index for b in ordered if b.state is not BlockState.COMMITTED]
        if pending:
            raise ValueError(f"Blocks {pending} are not committed")
        indices = [block.index for block in ordered]
        if indices != list(range(len(ordered))):
            raise ValueError("Block indices must be unique and contiguous from 0")
        return cls(block_ids=tuple(block.block_id for block in ordered))

    def __len__(self) -> int:
        return len(self.block_ids)

    def to_xml(self) -> bytes:
        root = ElementTree.Element("BlockList")
        for block_id in self.block_ids:
            ElementTree.SubElement(root, "Latest").text = block_id
        return ElementTree.tostring(root, encoding="utf-8", xml_declaration=True)
