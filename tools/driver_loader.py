#!/usr/bin/env python3
"""
driver_loader.py - Load, validate and compile YAML driver definitions

A driver definition declares the uplink frame table (or tag stream) and
the downlink command set of one device model:

    name: electrex_sample
    endian: big
    uplink:
      max_length: 30
      frames:
        0x11:
          label: Status frame
          min_length: 13
          fields:
            - {name: device_id, type: hex, length: 4}
            - {name: port, type: u8}
            ...
        0x01:
          label: Data frame
          min_length: 14
          fields: [...]
          subtype:
            offset: 7
            name: meter_type
            cases:
              0x0a: {label: gas, fields: [{name: c1, type: u32}]}
    downlink:
      fport: 16
      max_length: 4
      fields:
        - {tag: 0x00, name: pulseCounterThreshold, type: u8, max: 255}
        - {tag: 0x01, name: alarm, type: bool}
    test_vectors: [...]

Drivers are looked up by name in the drivers/ directory next to tools/,
or in the directory named by the DRIVER_CODEC_PATH environment variable.

Usage:
    from driver_loader import load_driver

    codec = load_driver('electrex_sample')
    codec = load_driver('path/to/driver.yaml')
"""

import logging
import os
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Optional, Union

import yaml

from codec_errors import DefinitionError
from driver_codec import (
    DriverCodec, DownlinkLayout, FrameLayout, SubtypeCase, SubtypeDispatch,
    TagStream, UplinkLayout, MAX_DOWNLINK_LEN, MAX_UPLINK_LEN,
)
from field_types import (
    FieldSpec, INT_TYPES, KNOWN_TYPES, MODIFIER_KEYS, REST, VARIABLE_TYPES,
)

logger = logging.getLogger(__name__)


DRIVER_PATH_ENV = 'DRIVER_CODEC_PATH'
DEFAULT_DRIVER_DIR = Path(__file__).resolve().parent.parent / 'drivers'


def driver_dir() -> Path:
    """Directory searched for driver definitions by name."""
    override = os.environ.get(DRIVER_PATH_ENV)
    if override:
        return Path(override)
    return DEFAULT_DRIVER_DIR


def list_drivers() -> List[str]:
    """Names of all driver definitions in the driver directory."""
    directory = driver_dir()
    if not directory.is_dir():
        return []
    return sorted(p.stem for p in directory.glob('*.yaml'))


def resolve_driver_path(name_or_path: Union[str, Path]) -> Path:
    path = Path(name_or_path)
    if path.suffix in ('.yaml', '.yml') or path.exists():
        return path
    return driver_dir() / f"{name_or_path}.yaml"


def load_definition(name_or_path: Union[str, Path]) -> Dict[str, Any]:
    """Read a driver definition as a plain dict."""
    path = resolve_driver_path(name_or_path)
    with open(path) as f:
        definition = yaml.safe_load(f)
    if not isinstance(definition, dict):
        raise DefinitionError(str(path), ["document must be a mapping"])
    return definition


def load_driver(name_or_path: Union[str, Path]) -> DriverCodec:
    """Load and compile a driver definition."""
    definition = load_definition(name_or_path)
    return compile_definition(definition)


# ----------------------------------------------------------------------
# Structural validation
# ----------------------------------------------------------------------

def _is_byte(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 0 <= value <= 255


def validate_field(fld: Any, path: str, errors: List[str],
                   allow_rest: bool = False) -> None:
    """Validate one field definition."""
    if not isinstance(fld, dict):
        errors.append(f"{path}: must be an object")
        return

    name = fld.get('name')
    if not isinstance(name, str) or not name:
        errors.append(f"{path}: missing required 'name'")

    ftype = fld.get('type', 'u8')
    if ftype not in KNOWN_TYPES:
        errors.append(f"{path} ({name}): unknown type '{ftype}'")
        return

    length = fld.get('length')
    if length == REST:
        if ftype not in VARIABLE_TYPES:
            errors.append(f"{path} ({name}): length 'rest' only applies to {', '.join(VARIABLE_TYPES)}")
        elif not allow_rest:
            errors.append(f"{path} ({name}): length 'rest' is only allowed on the last field")
    elif length is not None:
        if not isinstance(length, int) or isinstance(length, bool) or length <= 0:
            errors.append(f"{path} ({name}): 'length' must be a positive integer or 'rest'")
        elif ftype in INT_TYPES and length != INT_TYPES[ftype][0]:
            errors.append(f"{path} ({name}): length {length} does not match type '{ftype}'")
    elif ftype in VARIABLE_TYPES:
        errors.append(f"{path} ({name}): type '{ftype}' requires 'length'")

    for mod in MODIFIER_KEYS:
        if mod in fld:
            val = fld[mod]
            if not isinstance(val, (int, float)) or isinstance(val, bool):
                errors.append(f"{path} ({name}): '{mod}' must be a number")
            elif mod in ('mult', 'div') and val == 0:
                errors.append(f"{path} ({name}): '{mod}' must not be zero")
            elif ftype not in INT_TYPES:
                errors.append(f"{path} ({name}): '{mod}' only applies to integer types")

    for bound in ('min', 'max'):
        if bound in fld:
            val = fld[bound]
            if not isinstance(val, int) or isinstance(val, bool):
                errors.append(f"{path} ({name}): '{bound}' must be an integer")
            elif ftype not in INT_TYPES:
                errors.append(f"{path} ({name}): '{bound}' only applies to integer types")


def validate_field_list(fields: Any, path: str, errors: List[str],
                        allow_rest: bool = True) -> None:
    if not isinstance(fields, list):
        errors.append(f"{path}: must be an array")
        return
    for i, fld in enumerate(fields):
        last = i == len(fields) - 1
        validate_field(fld, f"{path}[{i}]", errors, allow_rest=allow_rest and last)


def validate_uplink(uplink: Any, errors: List[str]) -> None:
    if not isinstance(uplink, dict):
        errors.append("uplink: must be an object")
        return

    max_length = uplink.get('max_length', MAX_UPLINK_LEN)
    if not isinstance(max_length, int) or max_length <= 0:
        errors.append("uplink.max_length: must be a positive integer")

    has_frames = 'frames' in uplink
    has_stream = 'tag_stream' in uplink
    if has_frames == has_stream:
        errors.append("uplink: must have exactly one of 'frames' or 'tag_stream'")
        return

    if has_stream:
        if 'label_field' in uplink:
            errors.append("uplink.label_field: only applies to 'frames'")
        stream = uplink['tag_stream']
        if not isinstance(stream, dict) or not stream:
            errors.append("uplink.tag_stream: must be a non-empty object")
            return
        for tag, fld in stream.items():
            if not _is_byte(tag):
                errors.append(f"uplink.tag_stream.{tag}: tag must be an integer 0-255")
            validate_field(fld, f"uplink.tag_stream.{tag}", errors, allow_rest=True)
        return

    label_field = uplink.get('label_field', 'frame_type')
    if label_field is not None and (not isinstance(label_field, str) or not label_field):
        errors.append("uplink.label_field: must be a non-empty string or null")

    offset = uplink.get('discriminator_offset', 0)
    if not isinstance(offset, int) or offset < 0:
        errors.append("uplink.discriminator_offset: must be a non-negative integer")
        offset = 0

    frames = uplink['frames']
    if not isinstance(frames, dict) or not frames:
        errors.append("uplink.frames: must be a non-empty object")
        return

    for key, frame in frames.items():
        fpath = f"uplink.frames.{key}"
        if not _is_byte(key):
            errors.append(f"{fpath}: discriminator must be an integer 0-255")
        if not isinstance(frame, dict):
            errors.append(f"{fpath}: must be an object")
            continue
        if not isinstance(frame.get('label'), str):
            errors.append(f"{fpath}: missing required 'label'")
        min_length = frame.get('min_length', offset + 1)
        if not isinstance(min_length, int) or min_length <= offset:
            errors.append(f"{fpath}.min_length: must be an integer greater than {offset}")
            min_length = offset + 1

        subtype = frame.get('subtype')
        validate_field_list(frame.get('fields', []), f"{fpath}.fields", errors,
                            allow_rest=subtype is None)
        if subtype is None:
            continue

        spath = f"{fpath}.subtype"
        if not isinstance(subtype, dict):
            errors.append(f"{spath}: must be an object")
            continue
        sub_offset = subtype.get('offset')
        if not isinstance(sub_offset, int) or sub_offset < 0:
            errors.append(f"{spath}.offset: must be a non-negative integer")
        elif sub_offset >= min_length:
            errors.append(f"{spath}.offset: {sub_offset} lies beyond min_length {min_length}")
        cases = subtype.get('cases')
        if not isinstance(cases, dict) or not cases:
            errors.append(f"{spath}.cases: must be a non-empty object")
            continue
        for value, case in cases.items():
            cpath = f"{spath}.cases.{value}"
            if not _is_byte(value):
                errors.append(f"{cpath}: subtype id must be an integer 0-255")
            if not isinstance(case, dict):
                errors.append(f"{cpath}: must be an object")
                continue
            if not isinstance(case.get('label'), str):
                errors.append(f"{cpath}: missing required 'label'")
            validate_field_list(case.get('fields', []), f"{cpath}.fields", errors)


def validate_downlink(downlink: Any, errors: List[str]) -> None:
    if not isinstance(downlink, dict):
        errors.append("downlink: must be an object")
        return

    fport = downlink.get('fport')
    if not isinstance(fport, int) or not 1 <= fport <= 255:
        errors.append("downlink.fport: port number must be 1-255")

    max_length = downlink.get('max_length', MAX_DOWNLINK_LEN)
    if not isinstance(max_length, int) or max_length <= 0:
        errors.append("downlink.max_length: must be a positive integer")
        max_length = MAX_DOWNLINK_LEN

    fields = downlink.get('fields')
    if not isinstance(fields, list) or not fields:
        errors.append("downlink.fields: must be a non-empty array")
        return

    seen_tags = set()
    seen_names = set()
    total = 0
    for i, fld in enumerate(fields):
        path = f"downlink.fields[{i}]"
        validate_field(fld, path, errors)
        if not isinstance(fld, dict):
            continue
        ftype = fld.get('type', 'u8')
        if ftype not in INT_TYPES and ftype != 'bool':
            errors.append(f"{path}: downlink fields must be integer or bool, got '{ftype}'")
        else:
            total += 1 + (INT_TYPES[ftype][0] if ftype in INT_TYPES else 1)
        tag = fld.get('tag')
        if not _is_byte(tag):
            errors.append(f"{path}: 'tag' must be an integer 0-255")
        elif tag in seen_tags:
            errors.append(f"{path}: duplicate tag {tag}")
        else:
            seen_tags.add(tag)
        name = fld.get('name')
        if name in seen_names:
            errors.append(f"{path}: duplicate name '{name}'")
        seen_names.add(name)

    if total > max_length:
        errors.append(f"downlink.fields: all fields together need {total} bytes, "
                      f"max_length is {max_length}")


def validate_definition(definition: Dict[str, Any]) -> List[str]:
    """Validate driver definition structure and return list of errors."""
    errors = []

    if not isinstance(definition, dict):
        return ["definition must be an object"]

    if 'name' not in definition:
        errors.append("Missing required field: 'name'")

    if definition.get('endian', 'big') not in ('big', 'little'):
        errors.append(f"'endian' must be 'big' or 'little', got '{definition['endian']}'")

    if 'uplink' not in definition and 'downlink' not in definition:
        errors.append("Driver must have 'uplink', 'downlink' (or both)")
    if 'uplink' in definition:
        validate_uplink(definition['uplink'], errors)
    if 'downlink' in definition:
        validate_downlink(definition['downlink'], errors)

    vectors = definition.get('test_vectors', [])
    if not isinstance(vectors, list):
        errors.append("'test_vectors' must be an array")
    else:
        for i, tv in enumerate(vectors):
            if not isinstance(tv, dict):
                errors.append(f"Test vector {i}: must be an object")
                continue
            if 'name' not in tv:
                errors.append(f"Test vector {i}: missing 'name'")
            direction = tv.get('direction', 'uplink')
            if direction not in ('uplink', 'downlink', 'encode'):
                errors.append(f"Test vector {i} ({tv.get('name', '?')}): "
                              f"direction must be uplink, downlink or encode")
            if direction == 'encode':
                if 'data' not in tv:
                    errors.append(f"Test vector {i} ({tv.get('name', '?')}): missing 'data'")
            elif 'payload' not in tv:
                errors.append(f"Test vector {i} ({tv.get('name', '?')}): missing 'payload'")
            if 'expected' not in tv and 'error' not in tv:
                errors.append(f"Test vector {i} ({tv.get('name', '?')}): "
                              f"needs 'expected' or 'error'")

    return errors


# ----------------------------------------------------------------------
# Compilation
# ----------------------------------------------------------------------

def compile_field(fld: Dict[str, Any]) -> FieldSpec:
    # Modifiers apply in YAML key order
    modifiers = tuple((key, fld[key]) for key in fld if key in MODIFIER_KEYS)
    return FieldSpec(
        name=fld['name'],
        type=fld.get('type', 'u8'),
        length=fld.get('length'),
        modifiers=modifiers,
        minimum=fld.get('min'),
        maximum=fld.get('max'),
        tag=fld.get('tag'),
    )


def _compile_frame(key: int, frame: Dict[str, Any], offset: int) -> FrameLayout:
    subtype = None
    if frame.get('subtype') is not None:
        sub = frame['subtype']
        cases = {
            value: SubtypeCase(
                value=value,
                label=case['label'],
                fields=tuple(compile_field(f) for f in case.get('fields', [])),
            )
            for value, case in sub['cases'].items()
        }
        subtype = SubtypeDispatch(
            offset=sub['offset'],
            cases=MappingProxyType(cases),
            name=sub.get('name'),
        )
    return FrameLayout(
        discriminator=key,
        label=frame['label'],
        min_length=frame.get('min_length', offset + 1),
        fields=tuple(compile_field(f) for f in frame.get('fields', [])),
        subtype=subtype,
    )


def compile_uplink(uplink: Dict[str, Any]) -> UplinkLayout:
    max_length = uplink.get('max_length', MAX_UPLINK_LEN)
    if 'tag_stream' in uplink:
        cases = {tag: compile_field(fld) for tag, fld in uplink['tag_stream'].items()}
        return UplinkLayout(
            max_length=max_length,
            tag_stream=TagStream(cases=MappingProxyType(cases)),
            label_field=None,
        )

    label_field = uplink.get('label_field', 'frame_type')
    offset = uplink.get('discriminator_offset', 0)
    frames = {key: _compile_frame(key, frame, offset)
              for key, frame in uplink['frames'].items()}
    return UplinkLayout(
        max_length=max_length,
        discriminator_offset=offset,
        frames=MappingProxyType(frames),
        label_field=label_field,
    )


def compile_downlink(downlink: Dict[str, Any]) -> DownlinkLayout:
    fields = sorted((compile_field(f) for f in downlink['fields']),
                    key=lambda spec: spec.tag)
    return DownlinkLayout(
        fport=downlink['fport'],
        max_length=downlink.get('max_length', MAX_DOWNLINK_LEN),
        fields=tuple(fields),
    )


def compile_definition(definition: Dict[str, Any]) -> DriverCodec:
    """Validate a definition and build its DriverCodec.

    Raises:
        DefinitionError: if the definition is structurally invalid
    """
    name = definition.get('name', 'unknown') if isinstance(definition, dict) else 'unknown'
    errors = validate_definition(definition)
    if errors:
        raise DefinitionError(name, errors)

    uplink: Optional[UplinkLayout] = None
    downlink: Optional[DownlinkLayout] = None
    if 'uplink' in definition:
        uplink = compile_uplink(definition['uplink'])
    if 'downlink' in definition:
        downlink = compile_downlink(definition['downlink'])

    codec = DriverCodec(name, uplink=uplink, downlink=downlink,
                        endian=definition.get('endian', 'big'))
    logger.debug("compiled driver %s (uplink=%s, downlink=%s)",
                 name, uplink is not None, downlink is not None)
    return codec
