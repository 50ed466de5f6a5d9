"""
Tests for the driver validator and its test vector runner.
"""

import json
import subprocess
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / 'tools'))

import validate_driver
from driver_codec import DecodeResult
from driver_loader import compile_definition, load_definition

DRIVERS_DIR = Path(__file__).parent.parent / 'drivers'
TOOL_PATH = Path(__file__).parent.parent / 'tools' / 'validate_driver.py'
SHIPPED = sorted(p.name for p in DRIVERS_DIR.glob('*.yaml'))


class TestShippedDrivers:

    @pytest.mark.parametrize('filename', SHIPPED)
    def test_all_vectors_pass(self, filename):
        definition = load_definition(DRIVERS_DIR / filename)

        result = validate_driver.validate_driver(definition)

        failures = {t.name: t.errors for t in result.test_results if not t.passed}
        assert result.driver_valid, result.driver_errors
        assert failures == {}
        assert result.total_tests > 0


class TestValuesMatch:

    def test_float_tolerance(self):
        assert validate_driver.values_match(23.45, 23.4500001)[0]
        assert not validate_driver.values_match(23.45, 23.46)[0]

    def test_bool_is_not_int(self):
        match, msg = validate_driver.values_match(True, 1)

        assert not match
        assert 'expected True' in msg

    def test_type_mismatch(self):
        match, msg = validate_driver.values_match('10', 10)

        assert not match
        assert 'type mismatch' in msg

    def test_lists(self):
        assert validate_driver.values_match([1, 2, -1], [1, 2, -1])[0]
        match, msg = validate_driver.values_match([1, 2], [1, 3])
        assert not match
        assert msg.startswith('[1]')


class TestRunTestVector:

    @pytest.fixture
    def codec(self):
        return compile_definition(load_definition(DRIVERS_DIR / 'sample_sensor.yaml'))

    def test_wrong_expected_value(self, codec):
        tv = {'name': 'bad', 'payload': '01 5A', 'expected': {'battery': 91}}

        result = validate_driver.run_test_vector(codec, tv)

        assert not result.passed
        assert result.errors == ['battery: expected 91, got 90 (diff: 1)']

    def test_missing_output_field(self, codec):
        tv = {'name': 'missing', 'payload': '01 5A', 'expected': {'counter': 1}}

        result = validate_driver.run_test_vector(codec, tv)

        assert not result.passed
        assert "Missing field in output: 'counter'" in result.errors

    def test_expected_error_not_raised(self, codec):
        tv = {'name': 'no_error', 'payload': '01 5A', 'error': 'TruncatedFrame'}

        result = validate_driver.run_test_vector(codec, tv)

        assert not result.passed
        assert result.errors == ['expected error TruncatedFrame, got success']

    def test_expected_encode_error_not_raised(self, codec):
        tv = {'name': 'no_error', 'direction': 'encode',
              'data': {'pulseCounterThreshold': 10}, 'error': 'ValueOutOfRange'}

        result = validate_driver.run_test_vector(codec, tv)

        assert not result.passed
        assert result.errors == ['expected error ValueOutOfRange, got success']

    def test_data_alongside_error_flagged(self, codec, monkeypatch):
        def leaky_decode(payload, fPort=None):
            return DecodeResult(data={'battery': 90}, errors=['Invalid uplink payload'],
                                error_codes=['TruncatedFrame'])
        monkeypatch.setattr(codec, 'decode_uplink', leaky_decode)
        tv = {'name': 'leak', 'payload': '01 5A', 'error': 'TruncatedFrame'}

        result = validate_driver.run_test_vector(codec, tv)

        assert not result.passed
        assert result.errors == ['data produced alongside an error']

    def test_wrong_error_code(self, codec):
        tv = {'name': 'wrong', 'payload': '09 01', 'error': 'TruncatedFrame'}

        result = validate_driver.run_test_vector(codec, tv)

        assert not result.passed
        assert 'got UnknownFieldId' in result.errors[0]

    def test_encode_payload_compared_as_hex(self, codec):
        tv = {'name': 'enc', 'direction': 'encode',
              'data': {'pulseCounterThreshold': 10},
              'expected': {'payload': [0, 10], 'fport': 16}}

        result = validate_driver.run_test_vector(codec, tv)

        assert result.passed, result.errors
        assert result.payload_hex == '000A'

    def test_encode_wrong_port(self, codec):
        tv = {'name': 'enc', 'direction': 'encode',
              'data': {'alarm': False}, 'expected': {'payload': '0100', 'fport': 1}}

        result = validate_driver.run_test_vector(codec, tv)

        assert not result.passed
        assert result.errors == ['fport: expected 1, got 16 (diff: 15)']

    def test_unparseable_payload(self, codec):
        tv = {'name': 'junk', 'payload': 'not hex', 'expected': {}}

        result = validate_driver.run_test_vector(codec, tv)

        assert not result.passed
        assert result.errors[0].startswith('Failed to parse payload')


class TestValidateDriver:

    def test_invalid_definition_skips_vectors(self):
        result = validate_driver.validate_driver({'name': 'broken'})

        assert not result.driver_valid
        assert not result.all_passed
        assert result.total_tests == 0

    def test_to_dict_summary(self):
        definition = load_definition(DRIVERS_DIR / 'sample_sensor.yaml')

        summary = validate_driver.validate_driver(definition).to_dict()

        assert summary['all_passed'] is True
        assert summary['tests_failed'] == 0
        assert summary['total_tests'] == len(definition['test_vectors'])


class TestMain:

    def run_main(self, monkeypatch, *argv):
        monkeypatch.setattr(sys, 'argv', ['validate_driver.py', *argv])
        with pytest.raises(SystemExit) as exc_info:
            validate_driver.main()
        return exc_info.value.code

    def test_passing_driver(self, monkeypatch, capsys):
        code = self.run_main(monkeypatch, str(DRIVERS_DIR / 'electrex_sample.yaml'))

        out = capsys.readouterr().out
        assert code == 0
        assert 'Driver: VALID' in out
        assert 'PASSED' in out

    def test_json_output(self, monkeypatch, capsys):
        code = self.run_main(monkeypatch, str(DRIVERS_DIR / 'sample_sensor.yaml'), '--json')

        report = json.loads(capsys.readouterr().out)
        assert code == 0
        assert report['all_passed'] is True

    def test_failing_driver(self, monkeypatch, capsys, tmp_path):
        path = tmp_path / 'failing.yaml'
        path.write_text(
            "name: failing\n"
            "uplink:\n"
            "  tag_stream:\n"
            "    0x01: {name: battery, type: u8}\n"
            "test_vectors:\n"
            "  - {name: wrong, payload: '015A', expected: {battery: 1}}\n"
        )

        code = self.run_main(monkeypatch, str(path))

        assert code == 1
        assert 'FAILED' in capsys.readouterr().out

    def test_missing_file(self, monkeypatch, capsys, tmp_path):
        code = self.run_main(monkeypatch, str(tmp_path / 'absent.yaml'))

        assert code == 1
        assert 'Error loading driver' in capsys.readouterr().err


def test_command_line_run():
    """Run the tool as a script on a shipped driver."""
    result = subprocess.run(
        [sys.executable, str(TOOL_PATH), str(DRIVERS_DIR / 'sample_sensor.yaml'), '--verbose'],
        capture_output=True,
        text=True,
    )
    assert result.returncode == 0, f"Validation failed: {result.stdout}{result.stderr}"
    assert 'PASSED: All 9 tests passed' in result.stdout


def test_help():
    result = subprocess.run(
        [sys.executable, str(TOOL_PATH), '--help'],
        capture_output=True,
        text=True,
    )
    assert result.returncode == 0
    assert 'test vectors' in result.stdout
