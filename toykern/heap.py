"""The kernel heap: page-granular growth and a first-fit block allocator."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional

from toykern.paging import MappingError
from toykern.terminal import KernelPanic

PAGE_SIZE = 4096
HEAP_BASE = 0xFFFFFFFFF7F00000
HEAP_PAGE_LIMIT = 7
HEAP_PHYSICAL_BASE = 0x1000
HEAP_PAGE_FLAGS = 0x3

MAGIC_ALLOCATED = 0x12345678
MAGIC_FREE = 0x87654321
HEADER_SIZE = 32
ALIGNMENT = 16


class HeapError(MemoryError):
    """The heap could not grow or satisfy an allocation."""


@dataclass
class HeapInfo:
    """Where the heap starts and how many pages it spans; base 0 means none yet."""

    base: int = 0
    num_pages: int = 0


def resize_heap(
    heap_info: Optional[HeapInfo],
    pages_delta: int,
    map_physical_address: Callable[[int, int, int], None],
) -> None:
    """Grow the heap by ``pages_delta`` pages, mapping each new page."""
    if heap_info is None:
        raise HeapError("no heap to resize")
    if pages_delta == 0:
        return

    if not heap_info.base:
        heap_info.base = HEAP_BASE
        heap_info.num_pages = 1
        pages_delta -= 1

    if pages_delta == 0:
        return
    if pages_delta < 0:
        raise KernelPanic("Cannot resize heap")
    if heap_info.num_pages + pages_delta > HEAP_PAGE_LIMIT:
        raise HeapError(f"heap cannot grow beyond {HEAP_PAGE_LIMIT} pages")

    for page in range(heap_info.num_pages, heap_info.num_pages + pages_delta):
        offset = PAGE_SIZE * page
        try:
            map_physical_address(HEAP_PHYSICAL_BASE + offset, heap_info.base + offset, HEAP_PAGE_FLAGS)
        except MappingError as exc:
            raise HeapError(f"cannot map heap page at 0x{heap_info.base + offset:x}") from exc
    heap_info.num_pages += pages_delta


@dataclass(eq=False)
class BlockHeader:
    """Header in front of every heap block, linked to its neighbours."""

    address: int
    magic: int
    size: int
    flags: int = 0
    prev: Optional["BlockHeader"] = field(default=None, repr=False)
    next: Optional["BlockHeader"] = field(default=None, repr=False)


class Allocator:
    """First-fit allocator over a heap grown one page at a time by ``resize``."""

    def __init__(self, resize: Callable[[HeapInfo, int], None]) -> None:
        self._resize = resize
        self.heap_info = HeapInfo()
        self._head: Optional[BlockHeader] = None
        self._tail: Optional[BlockHeader] = None
        self._headers: dict[int, BlockHeader] = {}

    def _new_block(self, address: int, size: int) -> BlockHeader:
        block = BlockHeader(address, MAGIC_FREE, size)
        self._headers[address] = block
        return block

    def _initialise(self) -> None:
        try:
            self._resize(self.heap_info, 1)
        except HeapError as exc:
            raise KernelPanic("Error: Failed to initialize allocator") from exc
        self._head = self._new_block(
            self.heap_info.base, self.heap_info.num_pages * PAGE_SIZE - HEADER_SIZE
        )
        self._tail = self._head

    def _take(self, block: BlockHeader, total: int) -> int:
        remaining = block.size - total
        if remaining > HEADER_SIZE:
            rest = self._new_block(block.address + total, remaining)
            rest.prev = block
            rest.next = block.next
            if block.next is not None:
                block.next.prev = rest
            block.next = rest
            block.size = total
            if block is self._tail:
                self._tail = rest
        block.magic = MAGIC_ALLOCATED
        return block.address + HEADER_SIZE

    def _extend(self) -> None:
        tail = self._tail
        assert tail is not None
        if tail.magic == MAGIC_FREE:
            tail.size += PAGE_SIZE
            return
        block = self._new_block(tail.address + HEADER_SIZE + tail.size, PAGE_SIZE - HEADER_SIZE)
        block.prev = tail
        tail.next = block
        self._tail = block

    def malloc(self, size: int) -> Optional[int]:
        """Allocate ``size`` bytes and return their address; ``None`` for size 0."""
        if size < 0:
            raise ValueError("size must not be negative")
        if size == 0:
            return None
        if self._head is None or self._tail is None:
            self._initialise()

        total = ((size + ALIGNMENT - 1) & ~(ALIGNMENT - 1)) + HEADER_SIZE
        while True:
            for block in self.blocks():
                if block.magic == MAGIC_FREE and block.size >= total:
                    return self._take(block, total)
            try:
                self._resize(self.heap_info, 1)
            except HeapError as exc:
                raise HeapError(f"Failed to allocate {size} bytes") from exc
            self._extend()

    def free(self, address: Optional[int]) -> None:
        """Release a block, merging it with free neighbours."""
        if not address:
            return
        block = self._headers.get(address - HEADER_SIZE)
        if block is None or block.magic != MAGIC_ALLOCATED:
            raise KernelPanic("Error: Invalid pointer or double free")
        block.magic = MAGIC_FREE

        following = block.next
        if following is not None and following.magic == MAGIC_FREE:
            block.size += following.size
            block.next = following.next
            if block.next is not None:
                block.next.prev = block
            self._headers.pop(following.address, None)

        previous = block.prev
        if previous is not None and previous.magic == MAGIC_FREE:
            previous.size += block.size
            previous.next = block.next
            if block.next is not None:
                block.next.prev = previous
            else:
                self._tail = previous
            self._headers.pop(block.address, None)

    def blocks(self) -> list[BlockHeader]:
        """Every block on the heap, in address order."""
        found = []
        block = self._head
        while block is not None:
            found.append(block)
            block = block.next
        return found