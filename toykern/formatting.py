"""Integer-to-text conversion and the kernel's small printf-style formatter."""

from __future__ import annotations

import re
from typing import Any, Iterator

_UINT64_MASK = 0xFFFF_FFFF_FFFF_FFFF
_UINT32_MASK = 0xFFFF_FFFF
_LOWER_DIGITS = "0123456789abcdef"

# A conversion is "%" followed by one character; "%llx", "%llu" and "%zu" are
# the only longer forms.  A lone "%l" or "%z" prints nothing.
_CONVERSION = re.compile(r"%(ll[xu]|zu|.)", re.DOTALL)


def _to_int32(value: int) -> int:
    value &= _UINT32_MASK
    return value - (1 << 32) if value & 0x8000_0000 else value


def _truncating_divmod(value: int, base: int) -> tuple[int, int]:
    """Quotient and remainder rounded toward zero, as in integer hardware."""
    quotient = abs(value) // base
    if value < 0:
        quotient = -quotient
    return quotient, value - quotient * base


def _check_base(base: int, highest: int) -> None:
    if not 2 <= base <= highest:
        raise ValueError(f"base must be between 2 and {highest}, got {base}")


def itoa(value: int, base: int) -> str:
    """Render a 32-bit signed integer; digits above 9 are upper case.

    Only base 10 gets a minus sign. Negative values in other bases keep the
    quirks of truncating division, so their digits fall below ``'0'``.
    """
    _check_base(base, 36)
    value = _to_int32(value)
    if value == 0:
        return "0"

    negative = value < 0 and base == 10
    if negative:
        value = _to_int32(-value)

    digits = []
    while value != 0:
        value, remainder = _truncating_divmod(value, base)
        if remainder < 10:
            digits.append(chr(ord("0") + remainder))
        else:
            digits.append(chr(ord("A") + remainder - 10))
    if negative:
        digits.append("-")
    return "".join(reversed(digits))


def itoa_ll(value: int, base: int) -> str:
    """Render a 64-bit unsigned integer with upper-case digits."""
    _check_base(base, 36)
    value &= _UINT64_MASK
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, base)
        digits.append(chr(ord("0") + remainder) if remainder < 10 else chr(ord("A") + remainder - 10))
    return "".join(reversed(digits))


def utoa_ll(value: int, base: int) -> str:
    """Render a 64-bit unsigned integer with lower-case digits."""
    _check_base(base, 16)
    value &= _UINT64_MASK
    digits = []
    while True:
        value, remainder = divmod(value, base)
        digits.append(_LOWER_DIGITS[remainder])
        if not value:
            break
    return "".join(reversed(digits))


def _char_text(arg: Any) -> str:
    if isinstance(arg, str):
        code = ord(arg[0]) if arg else 0
    else:
        code = int(arg)
    code &= 0xFF
    return chr(code) if code else ""


def _c_string(text: Any) -> str:
    return str(text).split("\0", 1)[0]


def kformat(fmt: str, *args: Any) -> str:
    """Format ``fmt`` with the conversions the kernel supports.

    Supported: ``%d``, ``%x``, ``%c``, ``%s``, ``%llx``, ``%llu``, ``%zu`` and
    ``%p``. Any other character after ``%`` is printed as is, together with
    the ``%``. Text stops at the first NUL character.
    """
    fmt = _c_string(fmt)
    arguments: Iterator[Any] = iter(args)

    def take() -> Any:
        try:
            return next(arguments)
        except StopIteration:
            raise TypeError("not enough arguments for format string") from None

    pieces = []
    position = 0
    for match in _CONVERSION.finditer(fmt):
        pieces.append(fmt[position:match.start()])
        position = match.end()
        spec = match.group(1)
        if spec == "d":
            pieces.append(itoa(int(take()), 10))
        elif spec == "x":
            pieces.append(itoa(int(take()), 16))
        elif spec == "c":
            pieces.append(_char_text(take()))
        elif spec == "s":
            pieces.append(_c_string(take()))
        elif spec == "llx":
            pieces.append(utoa_ll(int(take()), 16))
        elif spec in ("llu", "zu"):
            pieces.append(utoa_ll(int(take()), 10))
        elif spec == "p":
            pieces.append("0x" + utoa_ll(int(take()), 16))
        elif spec in ("l", "z"):
            continue
        else:
            pieces.append("%" + spec)
    pieces.append(fmt[position:])
    return "".join(pieces)