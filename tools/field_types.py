#!/usr/bin/env python3
"""
field_types.py - Field descriptors and per-type byte readers/writers

A FieldSpec is one entry of a compiled layout: a name, a wire type, an
optional explicit length and the arithmetic modifiers/bounds that apply to
the value. read_field() and write_field() are the only places that touch
raw bytes, and both bounds-check before reading.

Supported types:
    u8 u16 u24 u32 / s8 s16 s24 s32 (+ uint*/int*/i* aliases)
    bool     1 byte, 0 or 1
    ipv4     4 bytes rendered "a.b.c.d"
    hex      N bytes rendered as upper-case hex (device ids, names)
    ascii    N bytes decoded as ASCII, trailing NULs stripped
    version  N bytes (default 3) joined with '.' -> "1.2.3"

A length of 'rest' consumes every remaining byte (hex/ascii only).
"""

import math
from dataclasses import dataclass
from typing import Any, Optional, Tuple, Union

from codec_errors import TruncatedFrame, ValueOutOfRange


REST = 'rest'

INT_TYPES = {
    'u8': (1, False), 'uint8': (1, False),
    'u16': (2, False), 'uint16': (2, False),
    'u24': (3, False), 'uint24': (3, False),
    'u32': (4, False), 'uint32': (4, False),
    's8': (1, True), 'i8': (1, True), 'int8': (1, True),
    's16': (2, True), 'i16': (2, True), 'int16': (2, True),
    's24': (3, True), 'i24': (3, True), 'int24': (3, True),
    's32': (4, True), 'i32': (4, True), 'int32': (4, True),
}

# Types with a fixed default width; hex/ascii need an explicit length
DEFAULT_SIZES = {
    'bool': 1,
    'ipv4': 4,
    'version': 3,
}

VARIABLE_TYPES = ('hex', 'ascii')

KNOWN_TYPES = set(INT_TYPES) | set(DEFAULT_SIZES) | set(VARIABLE_TYPES)

MODIFIER_KEYS = ('mult', 'div', 'add')

# Scaled encoder input may miss an integer by float rounding error only
INTEGRAL_TOLERANCE = 1e-6


@dataclass(frozen=True)
class FieldSpec:
    """One field of a compiled layout."""
    name: str
    type: str = 'u8'
    length: Union[int, str, None] = None
    modifiers: Tuple[Tuple[str, float], ...] = ()
    minimum: Optional[int] = None
    maximum: Optional[int] = None
    tag: Optional[int] = None

    @property
    def size(self) -> Optional[int]:
        """Byte width, or None when the field consumes the remainder."""
        if self.length == REST:
            return None
        if self.type in INT_TYPES:
            return INT_TYPES[self.type][0]
        if isinstance(self.length, int):
            return self.length
        return DEFAULT_SIZES.get(self.type)

    def bounds(self) -> Tuple[Optional[int], Optional[int]]:
        """Inclusive (min, max) allowed for the raw value."""
        low, high = None, None
        if self.type in INT_TYPES:
            size, signed = INT_TYPES[self.type]
            if signed:
                low, high = -(1 << (size * 8 - 1)), (1 << (size * 8 - 1)) - 1
            else:
                low, high = 0, (1 << (size * 8)) - 1
        if self.minimum is not None:
            low = self.minimum if low is None else max(low, self.minimum)
        if self.maximum is not None:
            high = self.maximum if high is None else min(high, self.maximum)
        return low, high


def _truncated(spec: FieldSpec, direction: str) -> TruncatedFrame:
    return TruncatedFrame(
        f"Invalid {direction} payload: index out of bounds when reading {spec.name}"
    )


def read_field(spec: FieldSpec, buf: bytes, pos: int, endian: str = 'big',
               direction: str = 'uplink') -> Tuple[Any, int]:
    """Read one field at pos. Returns (value, new_pos)."""
    size = spec.size
    if size is None:
        size = len(buf) - pos
    if pos + size > len(buf):
        raise _truncated(spec, direction)

    data = buf[pos:pos + size]
    field_type = spec.type

    if field_type in INT_TYPES:
        signed = INT_TYPES[field_type][1]
        value = int.from_bytes(data, endian, signed=signed)
        if spec.minimum is not None or spec.maximum is not None:
            check_range(spec, value, direction, 'payload')
        return apply_modifiers(value, spec), pos + size

    if field_type == 'bool':
        if data[0] > 1:
            raise ValueOutOfRange(
                f"Invalid {direction} payload: {spec.name} must be 0 or 1, got {data[0]}"
            )
        return data[0] == 1, pos + size

    if field_type == 'ipv4':
        return '.'.join(str(b) for b in data), pos + size

    if field_type == 'hex':
        return data.hex().upper(), pos + size

    if field_type == 'ascii':
        return data.decode('ascii', errors='replace').rstrip('\x00'), pos + size

    if field_type == 'version':
        return '.'.join(str(b) for b in data), pos + size

    # Layouts are validated at load time, so this is a programming error
    raise ValueError(f"Cannot decode type: {field_type}")


def apply_modifiers(value: Any, spec: FieldSpec) -> Any:
    """Apply arithmetic modifiers in declaration order."""
    for op, operand in spec.modifiers:
        if op == 'mult':
            value = value * operand
        elif op == 'div':
            value = value / operand
        elif op == 'add':
            value = value + operand
    return value


def reverse_modifiers(value: Any, spec: FieldSpec) -> Any:
    """Undo modifiers for encoding (reverse order, inverse ops).

    The result is not rounded; write_field decides whether it is integral.
    """
    try:
        for op, operand in reversed(spec.modifiers):
            if op == 'mult':
                value = value / operand
            elif op == 'div':
                value = value * operand
            elif op == 'add':
                value = value - operand
    except (OverflowError, ValueError):
        raise ValueOutOfRange(
            f"Invalid downlink data: {spec.name} overflows after scaling"
        ) from None
    if isinstance(value, float) and not math.isfinite(value):
        raise ValueOutOfRange(
            f"Invalid downlink data: {spec.name} overflows after scaling"
        )
    return value


def check_range(spec: FieldSpec, value: int, direction: str,
                what: str = 'data') -> None:
    low, high = spec.bounds()
    if (low is not None and value < low) or (high is not None and value > high):
        raise ValueOutOfRange(
            f"Invalid {direction} {what}: {spec.name} must be between {low} and {high}, got {value}"
        )


def write_field(spec: FieldSpec, value: Any, endian: str = 'big') -> bytes:
    """Encode one downlink value. Raises ValueOutOfRange on bad input."""
    if spec.type == 'bool':
        if isinstance(value, bool):
            return bytes([1 if value else 0])
        if isinstance(value, int) and value in (0, 1):
            return bytes([value])
        raise ValueOutOfRange(
            f"Invalid downlink data: {spec.name} must be a boolean, got {value!r}"
        )

    if spec.type in INT_TYPES:
        # bool is an int subclass, but True is not a threshold
        if (isinstance(value, bool) or not isinstance(value, (int, float))
                or (isinstance(value, float) and not math.isfinite(value))):
            raise ValueOutOfRange(
                f"Invalid downlink data: {spec.name} must be a number, got {value!r}"
            )
        raw = reverse_modifiers(value, spec)
        if isinstance(raw, float):
            # 23.45 * 100 is 2345.0000000000005, which still counts as 2345
            nearest = round(raw)
            if abs(raw - nearest) > INTEGRAL_TOLERANCE:
                raise ValueOutOfRange(
                    f"Invalid downlink data: {spec.name} must be an integer "
                    f"after scaling, got {value!r}"
                )
            raw = nearest
        check_range(spec, raw, 'downlink')
        size, signed = INT_TYPES[spec.type]
        return raw.to_bytes(size, endian, signed=signed)

    raise ValueError(f"Cannot encode type: {spec.type}")
