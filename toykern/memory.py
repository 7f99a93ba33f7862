"""Boot information from the loader and the kernel's view of physical memory."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Callable, Optional

from toykern.formatting import kformat
from toykern.paging import WordMemory, map_page

PAGE_SIZE = 4096
MEMORY_MAP_SLOTS = 32
E820_USABLE = 1

_E820_FORMAT = "<QQII"
_BOOT_INFO_FORMAT = "<" + _E820_FORMAT[1:] * MEMORY_MAP_SLOTS + "IQQQ"
BOOT_INFO_SIZE = struct.calcsize(_BOOT_INFO_FORMAT)
_UINT64_MASK = 0xFFFF_FFFF_FFFF_FFFF


@dataclass(frozen=True)
class E820Entry:
    """One region of the firmware memory map."""

    base_addr: int
    length: int
    type: int
    attr: int = 0


@dataclass(frozen=True)
class BootInfo:
    """What the boot loader hands over to the kernel."""

    memory_map: tuple[E820Entry, ...] = ()
    memory_map_entries: int = 0
    kernel_base: int = 0
    kernel_size: int = 0
    pml4_table: int = 0

    @classmethod
    def from_bytes(cls, data: bytes) -> "BootInfo":
        """Decode the packed little-endian boot information block."""
        if len(data) < BOOT_INFO_SIZE:
            raise ValueError(f"boot information needs {BOOT_INFO_SIZE} bytes, got {len(data)}")
        fields = struct.unpack_from(_BOOT_INFO_FORMAT, data)
        entry_fields = fields[: 4 * MEMORY_MAP_SLOTS]
        entries = tuple(
            E820Entry(*entry_fields[start:start + 4])
            for start in range(0, len(entry_fields), 4)
        )
        count, kernel_base, kernel_size, pml4_table = fields[4 * MEMORY_MAP_SLOTS:]
        if count > MEMORY_MAP_SLOTS:
            raise ValueError(f"memory map has {count} entries, at most {MEMORY_MAP_SLOTS} fit")
        return cls(entries, count, kernel_base, kernel_size, pml4_table)

    def kernel_pages(self) -> int:
        """Number of pages the kernel image occupies."""
        return ((self.kernel_size + PAGE_SIZE - 1) & ~(PAGE_SIZE - 1)) // PAGE_SIZE


def memory_report(boot_info: BootInfo) -> str:
    """The summary the kernel prints about its memory at start-up."""
    lines = [
        kformat("Kernel size: %llu bytes (%d pages)\n", boot_info.kernel_size, boot_info.kernel_pages()),
        kformat("PML4 table address: 0x%llx\n\n", boot_info.pml4_table),
        kformat("Memory map entries: %d\n", boot_info.memory_map_entries),
    ]
    total = available = 0
    entries = boot_info.memory_map[: boot_info.memory_map_entries]
    for number, entry in enumerate(entries):
        total = (total + entry.length) & _UINT64_MASK
        if entry.type == E820_USABLE:
            available = (available + entry.length) & _UINT64_MASK
        lines.append(
            kformat(
                "\tSegment %d (base=0x%llx, length=0x%llx, type=%d)\n",
                number, entry.base_addr, entry.length, entry.type,
            )
        )
    lines.append(
        kformat("Available memory: %zu MB / %zu MB\n\n", available // 1024 // 1024, total // 1024 // 1024)
    )
    return "".join(lines)


class Memory:
    """Physical memory management on top of the loader's page tables."""

    def __init__(
        self,
        boot_info: BootInfo,
        page_memory: WordMemory,
        allocate_page: Callable[[], Optional[int]],
    ) -> None:
        self.boot_info = boot_info
        self.page_memory = page_memory
        self.allocate_page = allocate_page
        self.report = memory_report(boot_info)

    def map_physical_address(self, physical_address: int, virtual_address: int, flags: int) -> None:
        """Map one page into the kernel's address space."""
        map_page(
            self.page_memory,
            self.boot_info.pml4_table,
            physical_address,
            virtual_address,
            flags,
            self.allocate_page,
        )