#!/usr/bin/env python3
"""
validate_driver.py - Validate a driver definition and run its test vectors

Usage:
    python tools/validate_driver.py electrex_sample
    python tools/validate_driver.py drivers/sample_sensor.yaml --verbose
    python tools/validate_driver.py sample_sensor --json

Test vectors live in the driver file:

    test_vectors:
      - name: gas_meter
        payload: "01 0A000001 ..."          # uplink (default direction)
        expected: {meter_type: gas, c1: 42}
      - name: decode_alarm
        direction: downlink
        payload: "0101"
        expected: {alarm: true}
      - name: set_threshold
        direction: encode
        data: {pulseCounterThreshold: 10}
        expected: {payload: "000A", fport: 16}
      - name: out_of_range
        direction: encode
        data: {pulseCounterThreshold: 300}
        error: ValueOutOfRange
"""

import argparse
import json
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Tuple

import yaml

sys.path.insert(0, str(Path(__file__).parent))
from codec_errors import CodecError
from driver_codec import DriverCodec, parse_payload
from driver_loader import compile_definition, load_definition, validate_definition

logger = logging.getLogger(__name__)


@dataclass
class TestResult:
    """Result of a single test vector."""
    name: str
    passed: bool
    direction: str = 'uplink'
    description: str = ""
    payload_hex: str = ""
    expected: Dict[str, Any] = field(default_factory=dict)
    actual: Dict[str, Any] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'passed': self.passed,
            'direction': self.direction,
            'description': self.description,
            'payload': self.payload_hex,
            'expected': self.expected,
            'actual': self.actual,
            'errors': self.errors,
        }


@dataclass
class ValidationResult:
    """Result of driver validation."""
    driver_valid: bool
    driver_errors: List[str] = field(default_factory=list)
    test_results: List[TestResult] = field(default_factory=list)

    @property
    def tests_passed(self) -> int:
        return sum(1 for t in self.test_results if t.passed)

    @property
    def tests_failed(self) -> int:
        return sum(1 for t in self.test_results if not t.passed)

    @property
    def total_tests(self) -> int:
        return len(self.test_results)

    @property
    def all_passed(self) -> bool:
        return self.driver_valid and self.tests_failed == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'driver_valid': self.driver_valid,
            'driver_errors': self.driver_errors,
            'tests_passed': self.tests_passed,
            'tests_failed': self.tests_failed,
            'total_tests': self.total_tests,
            'all_passed': self.all_passed,
            'test_results': [t.to_dict() for t in self.test_results],
        }


def values_match(expected: Any, actual: Any, tolerance: float = 0.001) -> Tuple[bool, str]:
    """Compare expected and actual values with tolerance for floats."""
    if isinstance(expected, bool) or isinstance(actual, bool):
        if expected is not actual:
            return False, f"expected {expected}, got {actual}"
        return True, ""

    if isinstance(expected, (int, float)) and isinstance(actual, (int, float)):
        if abs(expected - actual) > tolerance:
            return False, f"expected {expected}, got {actual} (diff: {abs(expected - actual)})"
        return True, ""

    if isinstance(expected, list) and isinstance(actual, list):
        if len(expected) != len(actual):
            return False, f"list length mismatch: expected {len(expected)}, got {len(actual)}"
        for i, (e, a) in enumerate(zip(expected, actual)):
            match, msg = values_match(e, a, tolerance)
            if not match:
                return False, f"[{i}]: {msg}"
        return True, ""

    if type(expected) != type(actual):
        return False, f"type mismatch: expected {type(expected).__name__}, got {type(actual).__name__}"

    if expected != actual:
        if isinstance(expected, str):
            return False, f"expected '{expected}', got '{actual}'"
        return False, f"expected {expected}, got {actual}"

    return True, ""


def _check_error(result: TestResult, expected_code: str, codes: List[str]) -> None:
    if expected_code not in codes:
        got = ', '.join(codes) if codes else 'success'
        result.errors.append(f"expected error {expected_code}, got {got}")


def _compare_fields(result: TestResult, expected: Dict[str, Any]) -> None:
    for field_name, expected_value in expected.items():
        if field_name not in result.actual:
            result.errors.append(f"Missing field in output: '{field_name}'")
            continue
        match, msg = values_match(expected_value, result.actual[field_name])
        if not match:
            result.errors.append(f"{field_name}: {msg}")


def run_test_vector(codec: DriverCodec, tv: Dict[str, Any]) -> TestResult:
    """Run a single test vector and return result."""
    direction = tv.get('direction', 'uplink')
    result = TestResult(
        name=tv.get('name', 'unnamed'),
        passed=False,
        direction=direction,
        description=tv.get('description', ''),
        expected=tv.get('expected', {}),
    )
    expected_error = tv.get('error')

    if direction == 'encode':
        encoded = codec.encode_downlink(tv.get('data', {}))
        if expected_error:
            _check_error(result, expected_error, encoded.error_codes)
            if encoded.error_codes and encoded.payload is not None:
                result.errors.append("payload produced alongside an error")
        elif not encoded.success:
            result.errors.extend(encoded.errors)
        else:
            result.payload_hex = encoded.payload.hex().upper()
            result.actual = {'payload': result.payload_hex, 'fport': encoded.fPort}
            expected = dict(result.expected)
            if 'payload' in expected:
                try:
                    expected['payload'] = parse_payload(expected['payload'], 'downlink').hex().upper()
                except CodecError as e:
                    result.errors.append(f"Failed to parse expected payload: {e}")
                    return result
            _compare_fields(result, expected)
        result.passed = len(result.errors) == 0
        return result

    try:
        payload = parse_payload(tv.get('payload', ''), direction)
        result.payload_hex = payload.hex().upper()
    except CodecError as e:
        result.errors.append(f"Failed to parse payload: {e}")
        return result

    fPort = tv.get('fport') or tv.get('fPort')
    if direction == 'downlink':
        decoded = codec.decode_downlink(payload, fPort=fPort)
    else:
        decoded = codec.decode_uplink(payload, fPort=fPort)

    if expected_error:
        _check_error(result, expected_error, decoded.error_codes)
        if decoded.error_codes and decoded.data is not None:
            result.errors.append("data produced alongside an error")
    elif not decoded.success:
        result.errors.extend(decoded.errors)
    else:
        result.actual = decoded.data
        _compare_fields(result, result.expected)

    result.passed = len(result.errors) == 0
    return result


def validate_driver(definition: Dict[str, Any]) -> ValidationResult:
    """Validate driver definition and run all test vectors."""
    result = ValidationResult(driver_valid=True)

    structure_errors = validate_definition(definition)
    if structure_errors:
        result.driver_valid = False
        result.driver_errors = structure_errors
        return result

    codec = compile_definition(definition)
    for tv in definition.get('test_vectors', []):
        test_result = run_test_vector(codec, tv)
        logger.debug("%s: %s", test_result.name, 'PASS' if test_result.passed else 'FAIL')
        result.test_results.append(test_result)

    return result


def print_results(result: ValidationResult, verbose: bool = False):
    """Print validation results to console."""
    if result.driver_valid:
        print("Driver: VALID")
    else:
        print("Driver: INVALID")
        for error in result.driver_errors:
            print(f"  - {error}")
        return

    if result.total_tests == 0:
        print("\nNo test vectors found in driver.")
        return

    print(f"\nTest Vectors: {result.tests_passed}/{result.total_tests} passed")
    print("-" * 50)

    for tr in result.test_results:
        status = "PASS" if tr.passed else "FAIL"
        symbol = "✓" if tr.passed else "✗"
        print(f"{symbol} {tr.name} [{tr.direction}]: {status}")

        if verbose or not tr.passed:
            if tr.description:
                print(f"    Description: {tr.description}")
            if tr.payload_hex:
                print(f"    Payload: {tr.payload_hex}")
            for error in tr.errors:
                print(f"    ERROR: {error}")
            if verbose and tr.passed:
                print(f"    Expected: {tr.expected}")
                print(f"    Actual: {tr.actual}")
            print()

    print("-" * 50)
    if result.all_passed:
        print(f"PASSED: All {result.total_tests} tests passed")
    else:
        print(f"FAILED: {result.tests_failed} of {result.total_tests} tests failed")


def main():
    parser = argparse.ArgumentParser(
        description='Validate a driver definition and run its test vectors'
    )
    parser.add_argument('driver', help='Driver name or path to driver YAML file')
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Show detailed output for all tests')
    parser.add_argument('--json', action='store_true',
                        help='Output results as JSON')
    parser.add_argument('--log-level', default='WARNING',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Logging level (default: WARNING)')
    args = parser.parse_args()

    logging.basicConfig(level=args.log_level,
                        format='%(levelname)s %(name)s: %(message)s')

    try:
        definition = load_definition(args.driver)
    except (OSError, yaml.YAMLError, ValueError) as e:
        print(f"Error loading driver: {e}", file=sys.stderr)
        sys.exit(1)

    result = validate_driver(definition)

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        print(f"Validating: {args.driver}")
        print("=" * 50)
        print_results(result, args.verbose)

    sys.exit(0 if result.all_passed else 1)


if __name__ == '__main__':
    main()
