# toykern

`toykern` models the parts of a small x86-64 hobby kernel in Python. You can
run each part and look at what it does. It also ships a command that builds
page-table images.

## Modules

- `toykern.formatting` has the integer-to-text helpers and `kformat`.
  - `itoa` renders 32-bit signed values with upper-case digits.
  - `itoa_ll` renders 64-bit unsigned values with upper-case digits.
  - `utoa_ll` renders 64-bit unsigned values with lower-case digits.
  - `kformat` is a printf-style formatter. It understands
    `%d %x %c %s %llx %llu %zu %p`. It prints any other character after `%`
    as written, with the `%`.
- `toykern.terminal` has an 80×25 VGA text terminal, `Terminal`.
  - It supports colours through `VgaColor`, `vga_entry_color` and `vga_entry`.
  - It handles newlines, 4-column tab stops and scrolling.
  - It provides `printf`, `puts` and `putchar`.
  - `cell` and `line_text` let you inspect the screen.
  - `panic` draws a panic screen and raises `KernelPanic`.
- `toykern.paging` builds and walks four-level page tables kept in a sparse
  `WordMemory`. It provides `map_page`, `unmap_page` and `table_indices`.
  Both mapping functions raise `MappingError` when they fail:
  - `map_page` raises it when a page is already mapped or when no table
    page is left.
  - `unmap_page` raises it when nothing is mapped.
- `toykern.memory` covers boot information and physical mapping.
  - `BootInfo.from_bytes` decodes the packed boot information block into
    `BootInfo` with its `E820Entry` list.
  - `memory_report` renders the start-up memory summary.
  - `Memory` maps physical pages through the loader's PML4 table.
- `toykern.heap` has the first-fit allocator and the heap-growth call behind
  it.
  - `Allocator` provides `malloc`, `free` and `blocks`.
  - `resize_heap` grows the heap. The heap starts at `0xFFFFFFFFF7F00000`
    and holds at most 7 pages.
  - `free` raises `KernelPanic` for an invalid pointer or a double free.
  - `HeapError` reports a heap that cannot grow.
- `toykern.interrupts` covers interrupts and system calls.
  - `InterruptTable` is the 256-entry interrupt descriptor table and is made
    of `IdtEntry` gates. `to_bytes` gives the table's raw bytes;
    `descriptor` gives the `lidt` operand.
  - The fault-message functions build the text the kernel shows for each
    fault.
  - `SyscallDispatcher` runs system call 0 (test) and system call 1
    (resize heap).
- `toykern.pagegen` builds a binary page-table image from a mapping file.
  It is the module behind the `toykern-pagegen` command.

## Installing

```
pip install .
```

## Formatting and the terminal

```python
from toykern.formatting import kformat
from toykern.terminal import Terminal

print(kformat("base=0x%llx pages=%d", 0xB8000, 3))  # base=0xb8000 pages=3

term = Terminal()
term.printf("Kernel size: %llu bytes\n", 12288)
print(term.line_text(0).rstrip())  # Kernel size: 12288 bytes
```

## Heap and paging

```python
from toykern.heap import Allocator, resize_heap
from toykern.memory import BootInfo, Memory
from toykern.paging import WordMemory

free_pages = iter(range(0x100000, 0x200000, 0x1000))
memory = Memory(BootInfo(pml4_table=0x9000), WordMemory(), lambda: next(free_pages))
heap = Allocator(lambda info, delta: resize_heap(info, delta, memory.map_physical_address))

address = heap.malloc(100)  # 0xfffffffff7f00020
heap.free(address)
```

## Interrupts

```python
from toykern.interrupts import InterruptTable, page_fault_message

idt = InterruptTable()
idt.set_entry(0x80, 0xFFFFFFFF80001234, 0xEE)
print(hex(idt.entry(0x80).handler_address()))  # 0xffffffff80001234
print(page_fault_message(0x1000, 0x0, 0x2))    # Page Fault at 0x1000 accessing 0x0 [-W---]
```

## Generating page tables

`toykern-pagegen` reads a text file that holds one mapping per line:

```
# physical_address virtual_address number_of_pages flags
0x7000 0xFFFFFFFF7FFFD000 1 0x3   # map 1 page with flags 0x3
```

The file follows these rules:

- Numbers may be decimal, `0x` hexadecimal or `0b` binary.
- Text after `#` is ignored.
- Lines with fewer than four fields are ignored.
- Mapping a page that is already mapped replaces the old entry.

```
toykern-pagegen mappings.txt --base=0x1000 -o tables.bin
toykern-pagegen mappings.txt --base=0x1000 -v -o tables.bin
toykern-pagegen --help
```

Options:

- `--base=<address>`: the address of the PML4 table. Each new table goes in
  the next 4 KiB page after the one before it.
- `-v`: list every table and its non-empty entries.
- `-s`: print nothing. This cannot be combined with `-v`.
- `-o <file>`: the output file. It receives one 4096-byte page per table.
  The PML4 comes first, then the other tables in the order they were
  created.

Without `-s`, the command ends by reporting the file name and the number of
pages written.

## What it does not do

The package does not boot or run on hardware. It has none of the following:

- a boot sequence that ties the parts together;
- port I/O;
- interrupt controller set-up;
- loading of the interrupt table into a processor;
- a real keyboard.

Interrupt handlers exist only as the messages they would show. Memory,
screen and page tables are Python objects.

## Running the tests

```
pip install .[test]
pytest
```