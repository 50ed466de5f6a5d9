"""
Tests for the driver fuzzer.
"""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / 'tools'))

import fuzz_driver
from driver_loader import load_definition

DRIVERS_DIR = Path(__file__).parent.parent / 'drivers'


class TestDriverFuzzer:

    @pytest.mark.parametrize('filename', ['electrex_sample.yaml', 'electrex_sample_hex.yaml',
                                          'sample_sensor.yaml', 'sample_thermostat.yaml'])
    def test_no_crashes(self, filename):
        fuzzer = fuzz_driver.DriverFuzzer(load_definition(DRIVERS_DIR / filename), seed=1234)

        stats = fuzzer.run(duration_sec=30.0, max_inputs=2000)

        assert stats.crashes == 0, stats.crash_inputs[:5]
        assert stats.total_inputs == 2000
        assert stats.success + stats.rejected == stats.total_inputs

    def test_seed_is_reproducible(self):
        definition = load_definition(DRIVERS_DIR / 'sample_sensor.yaml')

        first = fuzz_driver.DriverFuzzer(definition, seed=99).run(30.0, max_inputs=300)
        second = fuzz_driver.DriverFuzzer(definition, seed=99).run(30.0, max_inputs=300)

        assert (first.success, first.rejected) == (second.success, second.rejected)

    def test_valid_payloads_come_from_vectors(self):
        fuzzer = fuzz_driver.DriverFuzzer(load_definition(DRIVERS_DIR / 'sample_sensor.yaml'),
                                          seed=1)

        payloads = fuzzer.get_valid_payloads()

        assert bytes.fromhex('00FBE6') in payloads
        assert all(isinstance(p, bytes) for p in payloads)

    @pytest.mark.parametrize('value', [10 ** 400, 1e307, float('inf'), float('nan'), 23.456])
    def test_scaled_field_rejects_without_crash(self, value):
        fuzzer = fuzz_driver.DriverFuzzer(load_definition(DRIVERS_DIR / 'sample_thermostat.yaml'),
                                          seed=1)

        assert fuzzer.fuzz_one('encode', {'setpoint': value}) is True
        assert fuzzer.stats.rejected == 1
        assert fuzzer.stats.crashes == 0

    def test_fuzz_one_counts_crash(self, monkeypatch):
        fuzzer = fuzz_driver.DriverFuzzer(load_definition(DRIVERS_DIR / 'sample_sensor.yaml'),
                                          seed=1)

        def explode(payload, fPort=None):
            raise RuntimeError('boom')
        monkeypatch.setattr(fuzzer.codec, 'decode_uplink', explode)

        assert fuzzer.fuzz_one('uplink', b'\x00') is False
        assert fuzzer.stats.crashes == 1
        assert fuzzer.stats.crash_inputs == [('uplink', b'\x00')]


class TestMain:

    def test_exit_code(self, monkeypatch, capsys):
        monkeypatch.setattr(sys, 'argv', ['fuzz_driver.py', str(DRIVERS_DIR / 'sample_sensor.yaml'),
                                          '-n', '200', '-s', '7'])

        with pytest.raises(SystemExit) as exc_info:
            fuzz_driver.main()

        assert exc_info.value.code == 0
        assert 'PASSED: No crashes detected' in capsys.readouterr().out
