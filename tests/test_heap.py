import pytest

from toykern.heap import (
    ALIGNMENT,
    HEADER_SIZE,
    HEAP_BASE,
    HEAP_PAGE_LIMIT,
    MAGIC_ALLOCATED,
    MAGIC_FREE,
    Allocator,
    HeapError,
    HeapInfo,
    resize_heap,
)
from toykern.paging import MappingError
from toykern.terminal import KernelPanic


def recorder():
    calls = []

    def map_address(physical, virtual, flags):
        calls.append((physical, virtual, flags))

    return map_address, calls


def make_allocator():
    map_address, calls = recorder()
    allocator = Allocator(lambda info, delta: resize_heap(info, delta, map_address))
    return allocator, calls


def test_first_resize_sets_base_without_mapping():
    map_address, calls = recorder()
    info = HeapInfo()
    resize_heap(info, 1, map_address)
    assert info == HeapInfo(HEAP_BASE, 1)
    assert calls == []


def test_growth_maps_consecutive_pages():
    map_address, calls = recorder()
    info = HeapInfo()
    resize_heap(info, 3, map_address)
    assert info.num_pages == 3
    assert len(calls) == 2
    assert calls[0][1] == HEAP_BASE + 0x1000
    assert calls[1][1] - calls[0][1] == calls[1][0] - calls[0][0] == 0x1000
    assert all(flags == 0x3 for _, _, flags in calls)


def test_zero_delta_changes_nothing():
    map_address, calls = recorder()
    info = HeapInfo()
    resize_heap(info, 0, map_address)
    assert info == HeapInfo()


def test_growth_beyond_limit_raises():
    map_address, _ = recorder()
    info = HeapInfo(HEAP_BASE, HEAP_PAGE_LIMIT)
    with pytest.raises(HeapError):
        resize_heap(info, 1, map_address)
    assert info.num_pages == HEAP_PAGE_LIMIT


def test_shrinking_panics():
    map_address, _ = recorder()
    with pytest.raises(KernelPanic, match="Cannot resize heap"):
        resize_heap(HeapInfo(HEAP_BASE, 3), -1, map_address)


def test_missing_heap_info_raises():
    map_address, _ = recorder()
    with pytest.raises(HeapError):
        resize_heap(None, 1, map_address)


def test_mapping_failure_becomes_heap_error():
    def failing(physical, virtual, flags):
        raise MappingError("already mapped")

    info = HeapInfo(HEAP_BASE, 1)
    with pytest.raises(HeapError):
        resize_heap(info, 1, failing)
    assert info.num_pages == 1


def test_malloc_zero_returns_none():
    allocator, _ = make_allocator()
    assert allocator.malloc(0) is None
    assert allocator.blocks() == []


def test_first_allocation_follows_header():
    allocator, _ = make_allocator()
    assert allocator.malloc(10) == HEAP_BASE + HEADER_SIZE


def test_allocations_are_aligned_and_contiguous():
    allocator, _ = make_allocator()
    addresses = [allocator.malloc(size) for size in (1, 17, 100, 33)]
    assert len(set(addresses)) == 4
    assert all(address % ALIGNMENT == 0 for address in addresses)
    blocks = allocator.blocks()
    for current, following in zip(blocks, blocks[1:]):
        assert following.address == current.address + current.size
        assert following.prev is current
    assert [b.magic for b in blocks] == [MAGIC_ALLOCATED] * 4 + [MAGIC_FREE]


def test_freed_block_is_reused():
    allocator, _ = make_allocator()
    first = allocator.malloc(64)
    allocator.malloc(64)
    allocator.free(first)
    assert allocator.malloc(64) == first


def test_freeing_everything_merges_blocks():
    allocator, _ = make_allocator()
    first = allocator.malloc(10)
    second = allocator.malloc(10)
    allocator.free(first)
    allocator.free(second)
    blocks = allocator.blocks()
    assert len(blocks) == 1
    assert blocks[0].magic == MAGIC_FREE


def test_double_free_panics():
    allocator, _ = make_allocator()
    first = allocator.malloc(10)
    allocator.malloc(10)
    allocator.free(first)
    with pytest.raises(KernelPanic, match="Invalid pointer or double free"):
        allocator.free(first)


def test_free_of_unknown_address_panics():
    allocator, _ = make_allocator()
    allocator.malloc(10)
    with pytest.raises(KernelPanic):
        allocator.free(HEAP_BASE + 8)


def test_free_none_leaves_heap_untouched():
    allocator, _ = make_allocator()
    allocator.malloc(10)
    before = [(b.address, b.magic, b.size) for b in allocator.blocks()]
    allocator.free(None)
    assert [(b.address, b.magic, b.size) for b in allocator.blocks()] == before


def test_heap_grows_until_limit_then_fails():
    allocator, calls = make_allocator()
    count = 0
    with pytest.raises(HeapError, match="Failed to allocate 1000 bytes"):
        for _ in range(100):
            allocator.malloc(1000)
            count += 1
    assert allocator.heap_info.num_pages == HEAP_PAGE_LIMIT
    assert len(calls) == HEAP_PAGE_LIMIT - 1
    assert count > HEAP_PAGE_LIMIT


def test_failed_initialisation_panics():
    def refuse(info, delta):
        raise HeapError("no memory")

    allocator = Allocator(refuse)
    with pytest.raises(KernelPanic, match="Failed to initialize allocator"):
        allocator.malloc(8)