"""Build x86-64 page tables offline from a list of mappings and dump them as raw pages."""

from __future__ import annotations

import re
import struct
import sys
from dataclasses import dataclass, field
from typing import Iterable, Iterator, Optional, Sequence

PAGE_SIZE = 4096
ENTRIES_PER_TABLE = 512
PAGE_OFFSET_MASK = 0xFFF
PAGE_INDEX_MASK = 0x1FF
DEFAULT_FLAGS = 0b11

PT_SHIFT = 12
PD_SHIFT = 21
PDPT_SHIFT = 30
PML4_SHIFT = 39

LEVEL_NAMES = ("PML4", "PDPT", "PD", "PT")
PT_LEVEL = 3

PROGRAM_NAME = "pagegen"

_UINT64_MASK = 0xFFFF_FFFF_FFFF_FFFF
_TABLE_FORMAT = f"<{ENTRIES_PER_TABLE}Q"
_DIGITS = {
    2: re.compile(r"[01]+"),
    10: re.compile(r"[0-9]+"),
    16: re.compile(r"[0-9a-fA-F]+"),
}
_HEX_DIGITS = "0123456789abcdefABCDEF"


def get_index(address: int, shift: int) -> int:
    """The 9-bit table index of ``address`` at the level selected by ``shift``."""
    return (address >> shift) & PAGE_INDEX_MASK


def _parse_unsigned(text: str, base: int) -> int:
    """Read a leading unsigned 64-bit number; trailing text is ignored."""
    rest = text.lstrip(" \t\n\v\f\r")
    negative = False
    if rest and rest[0] in "+-":
        negative = rest[0] == "-"
        rest = rest[1:]
    if base == 16 and rest[:2] in ("0x", "0X") and len(rest) > 2 and rest[2] in _HEX_DIGITS:
        rest = rest[2:]
    match = _DIGITS[base].match(rest)
    if match is None:
        raise ValueError(f"invalid number: {text!r}")
    value = int(match.group(), base)
    if value > _UINT64_MASK:
        raise OverflowError(f"number out of range: {text!r}")
    return (-value) & _UINT64_MASK if negative else value


def parse_number(text: str) -> int:
    """Parse a number written in decimal, with a ``0x`` prefix or with a ``0b`` prefix."""
    if text.startswith("0x"):
        return _parse_unsigned(text, 16)
    if text.startswith("0b"):
        return _parse_unsigned(text[2:], 2)
    return _parse_unsigned(text, 10)


def strip_comments(line: str) -> str:
    """Drop everything from the first ``#`` on."""
    return line.split("#", 1)[0]


def help_text(program_name: str) -> str:
    return (
        f"Usage: {program_name} <input_file> --base=<address> [-v|-s] -o <output_file>\n"
        "\nOptions:\n"
        "  <input_file>        File containing physical and virtual addresses\n"
        "  --base=<address>    Base address for page tables (hexadecimal or binary)\n"
        "  -v                  Enable verbose mode to display details\n"
        "  -s                  Enable silent mode for no output\n"
        "  -o <output_file>    Name of the output file\n"
        "  --help              Display this help message\n"
        "\nInput file format:\n"
        "  physical_address virtual_address number_of_pages flags\n"
        "  # Comments start with '#' and are ignored\n"
        "\nExample:\n"
        "  0x7000 0xFFFFFFFF7FFFD000 1 0x3   # Map 1 page with flags 0x3\n"
    )


@dataclass(frozen=True)
class PageTableEntry:
    """A 64-bit table entry: page-aligned address plus 12 flag bits."""

    value: int = 0

    @classmethod
    def make(cls, address: int, flags: int) -> "PageTableEntry":
        return cls(((address & ~PAGE_OFFSET_MASK) | (flags & PAGE_OFFSET_MASK)) & _UINT64_MASK)

    def address(self) -> int:
        return self.value & ~PAGE_OFFSET_MASK & _UINT64_MASK

    def flags(self) -> int:
        return self.value & PAGE_OFFSET_MASK


@dataclass
class PageTable:
    """One 4 KiB table of 512 entries."""

    entries: list[PageTableEntry] = field(
        default_factory=lambda: [PageTableEntry()] * ENTRIES_PER_TABLE
    )

    def to_bytes(self) -> bytes:
        return struct.pack(_TABLE_FORMAT, *(entry.value for entry in self.entries))


@dataclass
class AllocatedTable:
    """A table together with where it will live and its level (0 is PML4, 3 is PT)."""

    address: int
    table: PageTable
    level: int


class PageTableManager:
    """Lays out page tables one page after another from ``base_address``."""

    def __init__(self, base_address: int, verbose: bool = False) -> None:
        self.base_address = base_address & _UINT64_MASK
        self.verbose = verbose
        self._next_address = (self.base_address + PAGE_SIZE) & _UINT64_MASK
        self._pml4 = PageTable()
        self._allocated = [AllocatedTable(self.base_address, self._pml4, 0)]
        self._by_address = {self.base_address: self._pml4}

    def _allocate_address(self) -> int:
        address = self._next_address
        self._next_address = (self._next_address + PAGE_SIZE) & _UINT64_MASK
        return address

    def _lookup(self, address: int) -> PageTable:
        try:
            return self._by_address[address]
        except KeyError:
            raise ValueError(f"no page table at 0x{address:x}") from None

    def map_pages(self, physical_address: int, virtual_address: int, num_pages: int, flags: int) -> None:
        """Map ``num_pages`` consecutive pages."""
        for page in range(num_pages):
            offset = page * PAGE_SIZE
            self.map_page(
                (virtual_address + offset) & _UINT64_MASK,
                (physical_address + offset) & _UINT64_MASK,
                flags,
            )

    def map_page(self, virtual_address: int, physical_address: int, flags: int) -> None:
        """Map one page, creating intermediate tables; an existing leaf is replaced."""
        table = self._pml4
        for level, shift in enumerate((PML4_SHIFT, PDPT_SHIFT, PD_SHIFT), start=1):
            index = get_index(virtual_address, shift)
            entry = table.entries[index]
            if entry.value == 0:
                child = PageTable()
                address = self._allocate_address()
                table.entries[index] = PageTableEntry.make(address, DEFAULT_FLAGS)
                self._allocated.append(AllocatedTable(address, child, level))
                self._by_address[address] = child
            else:
                child = self._lookup(entry.address())
            table = child
        table.entries[get_index(virtual_address, PT_SHIFT)] = PageTableEntry.make(physical_address, flags)

    def tables(self) -> list[AllocatedTable]:
        """Every table in the order it was allocated."""
        return list(self._allocated)

    def to_bytes(self) -> bytes:
        return b"".join(alloc.table.to_bytes() for alloc in self._allocated)

    def describe(self) -> str:
        """A listing of every table and its non-empty entries."""
        lines = []
        for alloc in self._allocated:
            lines.append(f"{LEVEL_NAMES[alloc.level]} Table at address 0x{alloc.address:x}:\n")
            for index, entry in enumerate(alloc.table.entries):
                if not entry.value:
                    continue
                if alloc.level == PT_LEVEL:
                    lines.append(f"  [{index:x}] -> 0x{entry.address():x}, flags = 0b{entry.flags():012b}\n")
                else:
                    lines.append(f"  [{index:x}] -> 0x{entry.address():x}\n")
            lines.append("\n")
        return "".join(lines)

    def write_tables_to_file(self, filename: str, silent: bool = False) -> None:
        """Write all tables to ``filename`` and report on standard output."""
        with open(filename, "wb") as output:
            output.write(self.to_bytes())
        if self.verbose:
            sys.stdout.write(self.describe())
        if not silent:
            sys.stdout.write(f"Page tables written to file {filename}\n")
            sys.stdout.write(f"Total pages written: {len(self._allocated)}\n")


def parse_mapping_lines(lines: Iterable[str]) -> Iterator[tuple[int, int, int, int]]:
    """Yield (physical, virtual, pages, flags) for each line holding a mapping.

    Comments, blank lines and lines with fewer than four fields are skipped.
    """
    for line in lines:
        fields = strip_comments(line).split()
        if len(fields) < 4:
            continue
        yield tuple(parse_number(text) for text in fields[:4])  # type: ignore[misc]


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)
    if not args:
        sys.stdout.write(help_text(PROGRAM_NAME))
        return 1

    verbose = silent = False
    base_arg = output_file = input_file = ""

    arguments = iter(args)
    for arg in arguments:
        if arg == "--help":
            sys.stdout.write(help_text(PROGRAM_NAME))
            return 0
        if arg.startswith("--base="):
            base_arg = arg[len("--base="):]
        elif arg == "-v":
            if silent:
                print("Options -v and -s cannot be used together", file=sys.stderr)
                return 1
            verbose = True
        elif arg == "-s":
            if verbose:
                print("Options -v and -s cannot be used together", file=sys.stderr)
                return 1
            silent = True
        elif arg == "-o":
            output_file = next(arguments, None)
            if output_file is None:
                print("Option -o requires an argument", file=sys.stderr)
                return 1
        elif arg.startswith("-"):
            print(f"Unknown option: {arg}", file=sys.stderr)
            return 1
        else:
            input_file = arg

    if not input_file:
        print("Missing input file", file=sys.stderr)
        return 1
    if not base_arg:
        print("Missing or invalid --base argument", file=sys.stderr)
        return 1
    if not output_file:
        print("Missing -o argument (output file)", file=sys.stderr)
        return 1

    try:
        manager = PageTableManager(parse_number(base_arg), verbose)
        try:
            with open(input_file, encoding="utf-8") as infile:
                mappings = list(parse_mapping_lines(infile))
        except OSError:
            print(f"Error opening file: {input_file}", file=sys.stderr)
            return 1
        for physical, virtual, pages, flags in mappings:
            manager.map_pages(physical, virtual, pages, flags)
    except (ValueError, OverflowError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    try:
        manager.write_tables_to_file(output_file, silent)
    except OSError:
        print(f"Error opening file: {output_file}", file=sys.stderr)
    return 0