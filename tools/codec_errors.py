#!/usr/bin/env python3
"""
codec_errors.py - Error taxonomy for the driver codec

Every failure the engine can hit while walking a payload is one of the
CodecError subclasses below. They are raised at the point of use and
turned into result entries (message + code) at the public boundary of
DriverCodec, so callers never see them as exceptions.

DefinitionError is different: it reports a malformed driver definition
and propagates to whoever tried to load it.
"""


class CodecError(Exception):
    """Base class for payload-level failures."""
    code = 'CodecError'

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class PayloadTooLong(CodecError):
    """Payload is longer than the direction allows."""
    code = 'PayloadTooLong'


class TruncatedFrame(CodecError):
    """Not enough bytes left for the field or frame being read."""
    code = 'TruncatedFrame'


class UnknownFrameType(CodecError):
    code = 'UnknownFrameType'


class UnknownSubtype(CodecError):
    code = 'UnknownSubtype'


class UnknownFieldId(CodecError):
    code = 'UnknownFieldId'


class ValueOutOfRange(CodecError):
    """Encode (or downlink decode) value violates a declared bound."""
    code = 'ValueOutOfRange'


class DefinitionError(ValueError):
    """Driver definition failed structural validation."""

    def __init__(self, name: str, errors):
        self.name = name
        self.errors = list(errors)
        details = '; '.join(self.errors)
        super().__init__(f"Invalid driver definition '{name}': {details}")
