"""The interrupt descriptor table, fault messages and the system-call dispatcher."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Any, Callable

from toykern.formatting import kformat
from toykern.heap import resize_heap
from toykern.terminal import Terminal

IDT_ENTRIES = 256
KERNEL_CODE_SELECTOR = 0x08
INTERRUPT_GATE = 0x8E
USER_INTERRUPT_GATE = 0xEE

DIVIDE_BY_ZERO_VECTOR = 0x0
INVALID_OPCODE_VECTOR = 0x6
DOUBLE_FAULT_VECTOR = 0x8
GENERAL_PROTECTION_FAULT_VECTOR = 0xD
PAGE_FAULT_VECTOR = 0xE
KEYBOARD_VECTOR = 0x21
SYSCALL_VECTOR = 0x80

SYSCALL_TEST = 0
SYSCALL_RESIZE_HEAP = 1

_ENTRY_FORMAT = "<HHBBHII"
_DESCRIPTOR_FORMAT = "<HQ"
ENTRY_SIZE = struct.calcsize(_ENTRY_FORMAT)


def divide_by_zero_message(address: int) -> str:
    return kformat("Division by zero at 0x%llx", address)


def invalid_opcode_message(address: int) -> str:
    return kformat("Invalid opcode at 0x%llx", address)


def double_fault_message(address: int, error_code: int) -> str:
    return kformat("Double fault (saved isp 0x%llx, error code 0x%llx)", address, error_code)


def general_protection_fault_message(address: int, error_code: int) -> str:
    return kformat("General protection fault at 0x%llx (error code 0x%llx)", address, error_code)


def page_fault_message(origin: int, faulting_address: int, error_code: int) -> str:
    """Describe a page fault; the error-code bits print as P, W, U, R and E."""
    flags = "".join(
        letter if error_code & bit else "-"
        for letter, bit in (("P", 0x1), ("W", 0x2), ("U", 0x4), ("R", 0x8), ("E", 0x10))
    )
    return kformat("Page Fault at 0x%llx accessing 0x%llx [%s]", origin, faulting_address, flags)


def keyboard_message(scancode: int) -> str:
    return kformat("Scancode: 0x%x\n", scancode & 0xFF)


@dataclass(frozen=True)
class IdtEntry:
    """One 16-byte gate descriptor."""

    offset_low: int = 0
    selector: int = 0
    ist: int = 0
    type_attr: int = 0
    offset_mid: int = 0
    offset_high: int = 0
    zero: int = 0

    @classmethod
    def from_handler(cls, handler_address: int, type_attr: int) -> "IdtEntry":
        return cls(
            offset_low=handler_address & 0xFFFF,
            selector=KERNEL_CODE_SELECTOR,
            ist=0,
            type_attr=type_attr & 0xFF,
            offset_mid=(handler_address >> 16) & 0xFFFF,
            offset_high=(handler_address >> 32) & 0xFFFF_FFFF,
            zero=0,
        )

    def to_bytes(self) -> bytes:
        return struct.pack(
            _ENTRY_FORMAT,
            self.offset_low, self.selector, self.ist, self.type_attr,
            self.offset_mid, self.offset_high, self.zero,
        )

    def handler_address(self) -> int:
        return self.offset_low | self.offset_mid << 16 | self.offset_high << 32


class InterruptTable:
    """The 256-entry interrupt descriptor table."""

    def __init__(self) -> None:
        self._entries = [IdtEntry() for _ in range(IDT_ENTRIES)]

    def _check(self, vector: int) -> None:
        if not 0 <= vector < IDT_ENTRIES:
            raise IndexError(f"interrupt vector {vector} out of range")

    def set_entry(self, vector: int, handler_address: int, type_attr: int) -> None:
        self._check(vector)
        self._entries[vector] = IdtEntry.from_handler(handler_address, type_attr)

    def entry(self, vector: int) -> IdtEntry:
        self._check(vector)
        return self._entries[vector]

    def descriptor(self, base: int) -> bytes:
        """The 10-byte operand of ``lidt`` for a table placed at ``base``."""
        return struct.pack(_DESCRIPTOR_FORMAT, IDT_ENTRIES * ENTRY_SIZE - 1, base)

    def to_bytes(self) -> bytes:
        return b"".join(entry.to_bytes() for entry in self._entries)


def _to_int32(value: int) -> int:
    value &= 0xFFFF_FFFF
    return value - (1 << 32) if value & 0x8000_0000 else value


class SyscallDispatcher:
    """Handles software interrupt 0x80."""

    def __init__(self, terminal: Terminal, map_physical_address: Callable[[int, int, int], None]) -> None:
        self.terminal = terminal
        self.map_physical_address = map_physical_address

    def dispatch(self, syscall_number: int, arg1: Any, arg2: Any, arg3: Any) -> int:
        """Run a system call; failures raise, success returns 0."""
        if syscall_number == SYSCALL_TEST:
            self.terminal.printf("Syscall 0 called with arg1: %llu\n", arg1)
        elif syscall_number == SYSCALL_RESIZE_HEAP:
            resize_heap(arg1, _to_int32(int(arg2)), self.map_physical_address)
        else:
            self.terminal.printf("Unknown syscall: %llu\n", syscall_number)
        return 0