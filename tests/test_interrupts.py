import struct

import pytest

from toykern.heap import HEAP_BASE, HeapInfo
from toykern.interrupts import (
    ENTRY_SIZE,
    IDT_ENTRIES,
    INTERRUPT_GATE,
    KERNEL_CODE_SELECTOR,
    IdtEntry,
    InterruptTable,
    SyscallDispatcher,
    divide_by_zero_message,
    double_fault_message,
    general_protection_fault_message,
    invalid_opcode_message,
    keyboard_message,
    page_fault_message,
)
from toykern.terminal import KernelPanic, Terminal


def test_fault_messages():
    assert divide_by_zero_message(0x1234) == "Division by zero at 0x1234"
    assert invalid_opcode_message(0xabc) == "Invalid opcode at 0xabc"
    assert double_fault_message(0x10, 0x0) == "Double fault (saved isp 0x10, error code 0x0)"
    assert general_protection_fault_message(0x20, 0x8) == (
        "General protection fault at 0x20 (error code 0x8)"
    )


def test_page_fault_flags():
    assert page_fault_message(0x10, 0x20, 0x1 | 0x2 | 0x10) == "Page Fault at 0x10 accessing 0x20 [PW--E]"
    assert page_fault_message(0x10, 0x20, 0) == "Page Fault at 0x10 accessing 0x20 [-----]"


def test_keyboard_message_uses_upper_case_hex():
    assert keyboard_message(0x1C) == "Scancode: 0x1C\n"


def test_entry_round_trips_handler_address():
    address = 0xFFFFFFFF80123456
    entry = IdtEntry.from_handler(address, INTERRUPT_GATE)
    assert entry.handler_address() == address
    assert entry.selector == KERNEL_CODE_SELECTOR
    assert entry.type_attr == INTERRUPT_GATE


def test_entry_bytes_layout():
    address = 0xFFFFFFFF80123456
    data = IdtEntry.from_handler(address, INTERRUPT_GATE).to_bytes()
    assert len(data) == ENTRY_SIZE
    low, selector, ist, attr, mid, high, zero = struct.unpack("<HHBBHII", data)
    assert low | mid << 16 | high << 32 == address
    assert (selector, ist, attr, zero) == (KERNEL_CODE_SELECTOR, 0, INTERRUPT_GATE, 0)


def test_table_set_and_read_entry():
    table = InterruptTable()
    table.set_entry(0x21, 0x401000, INTERRUPT_GATE)
    assert table.entry(0x21).handler_address() == 0x401000
    assert table.entry(0x20) == IdtEntry()
    with pytest.raises(IndexError):
        table.set_entry(IDT_ENTRIES, 0x401000, INTERRUPT_GATE)


def test_table_bytes_and_descriptor():
    table = InterruptTable()
    table.set_entry(3, 0x401000, INTERRUPT_GATE)
    data = table.to_bytes()
    assert len(data) == IDT_ENTRIES * ENTRY_SIZE
    assert data[3 * ENTRY_SIZE:4 * ENTRY_SIZE] == table.entry(3).to_bytes()
    limit, base = struct.unpack("<HQ", table.descriptor(0x5000))
    assert limit == len(data) - 1
    assert base == 0x5000


def make_dispatcher():
    calls = []
    terminal = Terminal()
    dispatcher = SyscallDispatcher(terminal, lambda p, v, f: calls.append((p, v, f)))
    return dispatcher, terminal, calls


def test_test_syscall_prints_argument():
    dispatcher, terminal, _ = make_dispatcher()
    assert dispatcher.dispatch(0, 42, 0, 0) == 0
    assert terminal.line_text(0).rstrip() == "Syscall 0 called with arg1: 42"


def test_unknown_syscall_is_reported():
    dispatcher, terminal, _ = make_dispatcher()
    assert dispatcher.dispatch(9, 0, 0, 0) == 0
    assert terminal.line_text(0).rstrip() == "Unknown syscall: 9"


def test_resize_heap_syscall_grows_heap():
    dispatcher, _, calls = make_dispatcher()
    info = HeapInfo()
    assert dispatcher.dispatch(1, info, 2, 0) == 0
    assert info.base == HEAP_BASE
    assert info.num_pages == 2
    assert len(calls) == 1


def test_resize_heap_syscall_sign_extends_delta():
    dispatcher, _, _ = make_dispatcher()
    with pytest.raises(KernelPanic, match="Cannot resize heap"):
        dispatcher.dispatch(1, HeapInfo(HEAP_BASE, 2), 0xFFFFFFFFFFFFFFFF, 0)