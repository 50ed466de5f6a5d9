#!/usr/bin/env python3
"""
driver_codec.py - Frame codec for LoRaWAN device drivers

Decodes uplinks and encodes/decodes downlinks for one device driver using
a compiled layout table (see driver_loader.py for the YAML side).

Uplink layouts come in two shapes:

Frame table:
    A discriminator byte (offset 0) selects a FrameLayout. The frame's
    fields are read in order right after the discriminator. A frame may
    carry a SubtypeDispatch: a second discriminator read from an absolute
    offset inside the header, selecting the trailing measurement fields.

Tag stream:
    The payload is a sequence of (tag, value) groups. Each tag selects the
    width and decode rule of the value that follows it; decoding runs
    until the buffer is exhausted.

Downlinks are (tag, value) pairs written in tag order, only for the
fields present in the input.

All three operations are pure: the compiled layouts are frozen and
nothing is stored on the codec between calls. Errors never escape as
exceptions; they come back in the result with data/payload cleared.
A payload argument that is not bytes, a byte list or hex text is reported
as ValueOutOfRange (see parse_payload).

Usage:
    from driver_loader import load_driver
    from driver_codec import decode_uplink

    codec = load_driver('electrex_sample')
    result = codec.decode_uplink(bytes.fromhex('11...'))

    # TS013-style invocation
    out = decode_uplink(codec, {'bytes': [0x11, ...], 'fPort': 1})
"""

import logging
from collections import abc
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from codec_errors import (
    CodecError, PayloadTooLong, TruncatedFrame, UnknownFrameType,
    UnknownSubtype, UnknownFieldId, ValueOutOfRange,
)
from field_types import FieldSpec, read_field, write_field

logger = logging.getLogger(__name__)


MAX_UPLINK_LEN = 30
MAX_DOWNLINK_LEN = 4


@dataclass(frozen=True)
class SubtypeCase:
    """Measurement fields selected by a secondary discriminator value."""
    value: int
    label: str
    fields: Tuple[FieldSpec, ...] = ()


@dataclass(frozen=True)
class SubtypeDispatch:
    """Secondary discriminator read from an absolute frame offset."""
    offset: int
    cases: Mapping[int, SubtypeCase] = field(default_factory=dict)
    name: Optional[str] = None


@dataclass(frozen=True)
class FrameLayout:
    """Field layout selected by the frame discriminator."""
    discriminator: int
    label: str
    min_length: int
    fields: Tuple[FieldSpec, ...] = ()
    subtype: Optional[SubtypeDispatch] = None


@dataclass(frozen=True)
class TagStream:
    """Tag byte -> field read right after the tag."""
    cases: Mapping[int, FieldSpec] = field(default_factory=dict)


@dataclass(frozen=True)
class UplinkLayout:
    max_length: int = MAX_UPLINK_LEN
    discriminator_offset: int = 0
    frames: Mapping[int, FrameLayout] = field(default_factory=dict)
    tag_stream: Optional[TagStream] = None
    label_field: Optional[str] = 'frame_type'


@dataclass(frozen=True)
class DownlinkLayout:
    fport: int
    max_length: int = MAX_DOWNLINK_LEN
    fields: Tuple[FieldSpec, ...] = ()

    def field_for_tag(self, tag: int) -> Optional[FieldSpec]:
        for spec in self.fields:
            if spec.tag == tag:
                return spec
        return None


@dataclass
class DecodeResult:
    """Result of decoding a payload.

    data is None whenever errors is non-empty.
    """
    data: Optional[Dict[str, Any]] = None
    bytes_consumed: int = 0
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    error_codes: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return len(self.errors) == 0

    def fail(self, error: CodecError) -> 'DecodeResult':
        self.data = None
        self.bytes_consumed = 0
        self.errors.append(error.message)
        self.error_codes.append(error.code)
        return self

    def to_dict(self) -> Dict[str, Any]:
        out = {}
        if self.success and self.data is not None:
            out['data'] = self.data
        out['errors'] = list(self.errors)
        out['warnings'] = list(self.warnings)
        return out


@dataclass
class EncodeResult:
    """Result of encoding a downlink.

    payload and fPort are None whenever errors is non-empty.
    """
    payload: Optional[bytes] = None
    fPort: Optional[int] = None
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    error_codes: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return len(self.errors) == 0

    def fail(self, error: CodecError) -> 'EncodeResult':
        self.payload = None
        self.fPort = None
        self.errors.append(error.message)
        self.error_codes.append(error.code)
        return self

    def to_dict(self) -> Dict[str, Any]:
        out = {}
        if self.success and self.payload is not None:
            out['bytes'] = list(self.payload)
            out['fPort'] = self.fPort
        out['errors'] = list(self.errors)
        out['warnings'] = list(self.warnings)
        return out


def _merge(data: Dict[str, Any], name: str, value: Any,
           warnings: List[str], where: str) -> None:
    """Store a tag value; a repeated tag collects its values into a list."""
    if name not in data:
        data[name] = value
        return
    warnings.append(f"Repeated field '{name}' {where}")
    if isinstance(data[name], list):
        data[name].append(value)
    else:
        data[name] = [data[name], value]


class DriverCodec:
    """
    Codec for one device driver.

    Holds only immutable layouts; every call builds its own result, so an
    instance can be shared freely between callers and threads.
    """

    def __init__(self, name: str, uplink: Optional[UplinkLayout] = None,
                 downlink: Optional[DownlinkLayout] = None,
                 endian: str = 'big'):
        self.name = name
        self.uplink = uplink
        self.downlink = downlink
        self.endian = endian

    def __repr__(self) -> str:
        return f"DriverCodec({self.name!r})"

    @staticmethod
    def _check_length(buf: bytes, max_length: int, direction: str) -> None:
        if len(buf) > max_length:
            raise PayloadTooLong(
                f"Invalid {direction} payload: length exceeds {max_length} bytes"
            )

    def _read_fields(self, fields: Tuple[FieldSpec, ...], buf: bytes, pos: int,
                     data: Dict[str, Any]) -> int:
        for spec in fields:
            value, pos = read_field(spec, buf, pos, self.endian, 'uplink')
            # Internal fields are consumed but not reported
            if not spec.name.startswith('_'):
                data[spec.name] = value
        return pos

    # ------------------------------------------------------------------
    # Uplink
    # ------------------------------------------------------------------

    def decode_uplink(self, payload: bytes, fPort: int = None) -> DecodeResult:
        """
        Decode an uplink payload.

        Args:
            payload: Raw payload bytes
            fPort: LoRaWAN fPort (informational, layouts do not depend on it)

        Returns:
            DecodeResult with either data or errors
        """
        result = DecodeResult()
        try:
            buf = parse_payload(payload, 'uplink')
            logger.debug("%s: decoding %d byte uplink on fPort %s",
                         self.name, len(buf), fPort)
            if self.uplink is None:
                raise CodecError(f"Driver '{self.name}' defines no uplink frames")
            self._check_length(buf, self.uplink.max_length, 'uplink')
            if self.uplink.tag_stream is not None:
                data, pos = self._decode_tag_stream(buf, 0, result.warnings)
            else:
                data, pos = self._decode_frame(buf)
        except CodecError as e:
            logger.debug("%s: uplink rejected (%s): %s", self.name, e.code, e)
            return result.fail(e)

        if pos < len(buf):
            result.warnings.append(
                f"Ignored {len(buf) - pos} trailing byte(s) after offset {pos}"
            )
        result.data = data
        result.bytes_consumed = pos
        return result

    def _decode_frame(self, buf: bytes) -> Tuple[Dict[str, Any], int]:
        layout = self.uplink
        offset = layout.discriminator_offset
        if offset >= len(buf):
            raise TruncatedFrame(
                "Invalid uplink payload: index out of bounds when reading frame type"
            )

        discriminator = buf[offset]
        frame = layout.frames.get(discriminator)
        if frame is None:
            raise UnknownFrameType(
                f"Invalid uplink payload: unknown frame type 0x{discriminator:02x}"
            )
        logger.debug("%s: frame 0x%02x -> %s", self.name, discriminator, frame.label)

        if len(buf) < frame.min_length:
            raise TruncatedFrame(
                f"Invalid uplink payload: index out of bounds when reading {frame.label} "
                f"(need {frame.min_length} bytes, got {len(buf)})"
            )

        data = {}
        if layout.label_field:
            data[layout.label_field] = frame.label
        pos = self._read_fields(frame.fields, buf, offset + 1, data)

        subtype = frame.subtype
        if subtype is not None:
            what = subtype.name or 'subtype'
            if subtype.offset >= len(buf):
                raise TruncatedFrame(
                    f"Invalid uplink payload: index out of bounds when reading {what}"
                )
            value = buf[subtype.offset]
            case = subtype.cases.get(value)
            if case is None:
                raise UnknownSubtype(
                    f"Invalid uplink payload: unknown {what} id 0x{value:02x}"
                )
            logger.debug("%s: %s 0x%02x -> %s", self.name, what, value, case.label)
            if subtype.name:
                data[subtype.name] = case.label
            pos = self._read_fields(case.fields, buf, pos, data)

        return data, pos

    def _decode_tag_stream(self, buf: bytes, pos: int,
                           warnings: List[str]) -> Tuple[Dict[str, Any], int]:
        cases = self.uplink.tag_stream.cases
        data = {}
        while pos < len(buf):
            tag = buf[pos]
            spec = cases.get(tag)
            if spec is None:
                raise UnknownFieldId(
                    f"Invalid uplink payload: unknown field id 0x{tag:02x} at offset {pos}"
                )
            at = pos
            value, pos = read_field(spec, buf, pos + 1, self.endian, 'uplink')
            _merge(data, spec.name, value, warnings, f"at offset {at}")
        return data, pos

    # ------------------------------------------------------------------
    # Downlink
    # ------------------------------------------------------------------

    def encode_downlink(self, data: Mapping[str, Any]) -> EncodeResult:
        """
        Encode a downlink command.

        Only the fields present in data are written, each as tag + value,
        in tag order. An input with no known field yields an empty payload.
        """
        result = EncodeResult()
        output = bytearray()
        try:
            layout = self._require_downlink()
            if not isinstance(data, abc.Mapping):
                raise ValueOutOfRange(
                    f"Invalid downlink data: expected a mapping, got {type(data).__name__}"
                )
            known = {spec.name for spec in layout.fields}
            for key in data:
                if key not in known:
                    result.warnings.append(f"Unknown field ignored: {key}")

            for spec in layout.fields:
                value = data.get(spec.name)
                if value is None:
                    continue
                output.append(spec.tag)
                output.extend(write_field(spec, value, self.endian))

            if len(output) > layout.max_length:
                raise PayloadTooLong(
                    f"Invalid downlink data: encoded length {len(output)} "
                    f"exceeds {layout.max_length} bytes"
                )
        except CodecError as e:
            logger.debug("%s: downlink rejected (%s): %s", self.name, e.code, e)
            return result.fail(e)

        result.payload = bytes(output)
        result.fPort = layout.fport
        return result

    def decode_downlink(self, payload: bytes, fPort: int = None) -> DecodeResult:
        """Decode a downlink payload back into the encoder's input mapping."""
        result = DecodeResult()
        data = {}
        pos = 0
        try:
            buf = parse_payload(payload, 'downlink')
            layout = self._require_downlink()
            self._check_length(buf, layout.max_length, 'downlink')
            while pos < len(buf):
                tag = buf[pos]
                spec = layout.field_for_tag(tag)
                if spec is None:
                    raise UnknownFieldId(
                        f"Invalid downlink payload: unknown field id 0x{tag:02x} at offset {pos}"
                    )
                at = pos
                value, pos = read_field(spec, buf, pos + 1, self.endian, 'downlink')
                _merge(data, spec.name, value, result.warnings, f"at offset {at}")
        except CodecError as e:
            logger.debug("%s: downlink payload rejected (%s): %s", self.name, e.code, e)
            return result.fail(e)

        result.data = data
        result.bytes_consumed = pos
        return result

    def _require_downlink(self) -> DownlinkLayout:
        if self.downlink is None:
            raise CodecError(f"Driver '{self.name}' defines no downlink commands")
        return self.downlink


# ----------------------------------------------------------------------
# TS013-style invocation: dict in, dict out
# ----------------------------------------------------------------------

def parse_payload(payload: Any, direction: str = 'uplink') -> bytes:
    """Parse payload from bytes, a list of ints or a hex string.

    Input that cannot be turned into bytes at all (wrong container, byte
    values outside 0-255, bools, non-hex text) raises ValueOutOfRange:
    the caller handed over a value the codec cannot accept, the same way
    as an out-of-range encoder field. Bytes that parse but do not fit a
    layout are reported with the frame errors instead.
    """
    if isinstance(payload, (bytes, bytearray)):
        return bytes(payload)

    if isinstance(payload, (list, tuple)):
        if not all(isinstance(b, int) and not isinstance(b, bool) and 0 <= b <= 255
                   for b in payload):
            raise ValueOutOfRange(
                f"Invalid {direction} payload: bytes must be integers 0-255"
            )
        return bytes(payload)

    if isinstance(payload, str):
        clean = payload.replace(' ', '').replace('0x', '').replace(',', '')
        try:
            return bytes.fromhex(clean)
        except ValueError:
            raise ValueOutOfRange(
                f"Invalid {direction} payload: not a hex string: {payload!r}"
            ) from None

    raise ValueOutOfRange(
        f"Invalid {direction} payload: cannot parse {type(payload).__name__}"
    )


def decode_uplink(codec: DriverCodec, input: Mapping[str, Any]) -> Dict[str, Any]:
    """decodeUplink({bytes, fPort, recvTime}) -> {data?, errors, warnings}"""
    return codec.decode_uplink(input.get('bytes', b''),
                               fPort=input.get('fPort')).to_dict()


def encode_downlink(codec: DriverCodec, input: Mapping[str, Any]) -> Dict[str, Any]:
    """encodeDownlink({data}) -> {bytes?, fPort?, errors, warnings}"""
    return codec.encode_downlink(input.get('data', {})).to_dict()


def decode_downlink(codec: DriverCodec, input: Mapping[str, Any]) -> Dict[str, Any]:
    """decodeDownlink({bytes, fPort, recvTime}) -> {data?, errors, warnings}"""
    return codec.decode_downlink(input.get('bytes', b''),
                                 fPort=input.get('fPort')).to_dict()
