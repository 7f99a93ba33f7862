"""Four-level x86-64 page-table walking over a word-addressed memory."""

from __future__ import annotations

from typing import Callable, Optional

PAGE_PRESENT = 0x1
ENTRY_SIZE = 8

_UINT64_MASK = 0xFFFF_FFFF_FFFF_FFFF
_ADDRESS_MASK = ~0xFFF & _UINT64_MASK
_INDEX_MASK = 0x1FF
_SHIFTS = (39, 30, 21, 12)


class MappingError(Exception):
    """A page could not be mapped or unmapped."""


class WordMemory:
    """Sparse physical memory holding 64-bit words; unwritten words read as zero."""

    def __init__(self) -> None:
        self._words: dict[int, int] = {}

    def read(self, address: int) -> int:
        return self._words.get(address & _UINT64_MASK, 0)

    def write(self, address: int, value: int) -> None:
        address &= _UINT64_MASK
        value &= _UINT64_MASK
        if value:
            self._words[address] = value
        else:
            self._words.pop(address, None)


def table_indices(virtual_address: int) -> tuple[int, int, int, int]:
    """The PML4, PDPT, PD and PT indices of ``virtual_address``."""
    return tuple((virtual_address >> shift) & _INDEX_MASK for shift in _SHIFTS)  # type: ignore[return-value]


def _slot(table: int, index: int) -> int:
    return table + index * ENTRY_SIZE


def map_page(
    memory: WordMemory,
    pml4_address: int,
    physical_address: int,
    virtual_address: int,
    flags: int,
    allocate_page: Callable[[], Optional[int]],
) -> None:
    """Map one 4 KiB page, creating missing intermediate tables.

    ``allocate_page`` returns the physical address of a fresh, zeroed page,
    or a false value when none is left.
    """
    *upper, pt_index = table_indices(virtual_address)
    table = pml4_address
    for index in upper:
        slot = _slot(table, index)
        entry = memory.read(slot)
        if not entry & PAGE_PRESENT:
            new_table = allocate_page()
            if not new_table:
                raise MappingError(f"No page left for a table mapping 0x{virtual_address & _UINT64_MASK:x}")
            entry = ((new_table & _ADDRESS_MASK) | flags | PAGE_PRESENT) & _UINT64_MASK
            memory.write(slot, entry)
        table = entry & _ADDRESS_MASK

    slot = _slot(table, pt_index)
    if memory.read(slot) & PAGE_PRESENT:
        raise MappingError(f"Page 0x{virtual_address & _UINT64_MASK:x} already mapped")
    memory.write(slot, (physical_address & _ADDRESS_MASK) | flags | PAGE_PRESENT)


def unmap_page(memory: WordMemory, pml4_address: int, virtual_address: int) -> None:
    """Clear the page-table entry of ``virtual_address``."""
    *upper, pt_index = table_indices(virtual_address)
    table = pml4_address
    for index in upper:
        entry = memory.read(_slot(table, index))
        if not entry & PAGE_PRESENT:
            raise MappingError(f"Page 0x{virtual_address & _UINT64_MASK:x} is not mapped")
        table = entry & _ADDRESS_MASK

    slot = _slot(table, pt_index)
    if not memory.read(slot) & PAGE_PRESENT:
        raise MappingError(f"Page 0x{virtual_address & _UINT64_MASK:x} is not mapped")
    memory.write(slot, 0)