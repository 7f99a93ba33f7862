"""An 80x25 VGA text-mode terminal and the kernel's output routines."""

from __future__ import annotations

from enum import IntEnum
from typing import Any

from toykern.formatting import kformat

VGA_WIDTH = 80
VGA_HEIGHT = 25
PANIC_TITLE = "Kernel panic: kabort()"
_TAB_WIDTH = 4


class VgaColor(IntEnum):
    BLACK = 0
    BLUE = 1
    GREEN = 2
    CYAN = 3
    RED = 4
    MAGENTA = 5
    BROWN = 6
    LIGHT_GREY = 7
    DARK_GREY = 8
    LIGHT_BLUE = 9
    LIGHT_GREEN = 10
    LIGHT_CYAN = 11
    LIGHT_RED = 12
    LIGHT_MAGENTA = 13
    LIGHT_BROWN = 14
    WHITE = 15


def _char_code(char: str | int) -> int:
    code = char if isinstance(char, int) else ord(char)
    return code & 0xFF


def vga_entry_color(fg: int, bg: int) -> int:
    """Attribute byte with ``fg`` in the low and ``bg`` in the high nibble."""
    return (int(fg) | int(bg) << 4) & 0xFF


def vga_entry(char: str | int, color: int) -> int:
    """A 16-bit text-buffer cell: character byte low, attribute byte high."""
    return _char_code(char) | (int(color) & 0xFF) << 8


class KernelPanic(Exception):
    """Raised when the kernel halts on an unrecoverable error."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class Terminal:
    """Text-mode screen with a write position, a colour and a hardware cursor."""

    width = VGA_WIDTH
    height = VGA_HEIGHT

    def __init__(self) -> None:
        self.row = 0
        self.column = 0
        self.color = vga_entry_color(VgaColor.WHITE, VgaColor.BLACK)
        self.cursor = (0, 0)
        self._cells = [0] * (self.width * self.height)
        self.clear()

    def _move_cursor(self, x: int, y: int) -> None:
        self.cursor = (x & 0xFFFF, y & 0xFFFF)

    def _put_entry_at(self, char: str | int, color: int, x: int, y: int) -> None:
        index = (y & 0xFFFF) * self.width + (x & 0xFFFF)
        # Cells past the end of the text buffer are never shown.
        if index < len(self._cells):
            self._cells[index] = vga_entry(char, color)

    def clear(self) -> None:
        """Blank the screen in the current colour and home the cursor."""
        self.row = 0
        self.column = 0
        blank = vga_entry(" ", self.color)
        self._cells = [blank] * (self.width * self.height)
        self._move_cursor(0, 0)

    def set_color(self, color: int) -> None:
        self.color = int(color) & 0xFF

    def scroll(self) -> None:
        """Move every line up by one and blank the bottom line."""
        blank = vga_entry(" ", self.color)
        self._cells = self._cells[self.width:] + [blank] * self.width
        if self.row > 0:
            self.row -= 1
        self._move_cursor(self.column, self.row)

    def put_char(self, char: str | int) -> None:
        """Write one character at the write position, handling newline and tab."""
        code = _char_code(char)
        if code == ord("\n"):
            self.column = 0
            self.row += 1
        elif code == ord("\t"):
            self.column = (self.column + _TAB_WIDTH) & ~(_TAB_WIDTH - 1)
            if self.column >= self.width:
                self.column = 0
                self.row += 1
        else:
            self._put_entry_at(code, self.color, self.column, self.row)
            self.column += 1
            if self.column == self.width:
                self.column = 0
                self.row += 1

        if self.row == self.height:
            self.scroll()
        self._move_cursor(self.column, self.row)

    def write(self, data: str) -> None:
        """Write every character of ``data``, NUL characters included."""
        for char in data:
            self.put_char(char)

    def write_string(self, data: str) -> None:
        """Write ``data`` up to its first NUL character."""
        self.write(data.split("\0", 1)[0])

    def write_at(self, data: str, x: int, y: int) -> None:
        """Place ``data`` from (x, y) without moving the write position."""
        for offset, char in enumerate(data.split("\0", 1)[0]):
            self._put_entry_at(char, self.color, x + offset, y)
            self._move_cursor(x + offset, y)

    def cell(self, x: int, y: int) -> tuple[str, int]:
        """The character and attribute byte shown at (x, y)."""
        if not (0 <= x < self.width and 0 <= y < self.height):
            raise IndexError(f"cell ({x}, {y}) is off screen")
        entry = self._cells[y * self.width + x]
        return chr(entry & 0xFF), entry >> 8

    def line_text(self, y: int) -> str:
        """The characters of screen line ``y``, trailing blanks included."""
        if not 0 <= y < self.height:
            raise IndexError(f"line {y} is off screen")
        start = y * self.width
        return "".join(chr(entry & 0xFF) for entry in self._cells[start:start + self.width])

    def printf(self, fmt: str, *args: Any) -> None:
        self.write_string(kformat(fmt, *args))

    def puts(self, text: str) -> None:
        self.printf("%s\n", text)

    def putchar(self, char: str | int) -> None:
        self.put_char(char)

    def panic(self, message: str) -> None:
        """Show the panic screen with ``message`` and halt by raising KernelPanic."""
        self.set_color(vga_entry_color(VgaColor.WHITE, VgaColor.BLUE))
        self.clear()
        self.write_at(PANIC_TITLE, self.width // 2 - 21 // 2, self.height // 2 - 1)
        self.write_at(message, self.width // 2 - len(message) // 2, self.height // 2)
        raise KernelPanic(message)