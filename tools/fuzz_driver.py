#!/usr/bin/env python3
"""
fuzz_driver.py - Fuzz test a driver's decoders and encoder

The codec contract is that no input ever raises: every failure comes back
as a structured error. Any exception escaping decode_uplink,
decode_downlink or encode_downlink is counted as a crash.

Usage:
    python tools/fuzz_driver.py electrex_sample                # 10 second fuzz
    python tools/fuzz_driver.py sample_sensor --duration 60    # 1 minute fuzz
    python tools/fuzz_driver.py sample_sensor --seed 12345     # Reproducible
    python tools/fuzz_driver.py sample_sensor --iterations 5000
"""

import argparse
import logging
import random
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

sys.path.insert(0, str(Path(__file__).parent))
from codec_errors import CodecError
from driver_codec import DriverCodec, parse_payload
from driver_loader import compile_definition, load_definition

logger = logging.getLogger(__name__)


@dataclass
class FuzzStats:
    """Statistics from a fuzz run."""
    total_inputs: int = 0
    success: int = 0
    rejected: int = 0
    crashes: int = 0
    duration_sec: float = 0.0
    seed: int = 0
    crash_inputs: List[Any] = field(default_factory=list)

    @property
    def inputs_per_sec(self) -> float:
        if self.duration_sec > 0:
            return self.total_inputs / self.duration_sec
        return 0.0


class DriverFuzzer:
    """Fuzz tester for one compiled driver."""

    def __init__(self, definition: Dict[str, Any], seed: Optional[int] = None):
        self.definition = definition
        self.codec: DriverCodec = compile_definition(definition)
        self.seed = seed if seed is not None else random.randint(0, 2**32)
        self.rng = random.Random(self.seed)
        self.stats = FuzzStats(seed=self.seed)

    def generate_random_bytes(self, min_len: int = 0, max_len: int = 40) -> bytes:
        length = self.rng.randint(min_len, max_len)
        return bytes(self.rng.randint(0, 255) for _ in range(length))

    def generate_truncated(self, valid_payload: bytes) -> bytes:
        if len(valid_payload) == 0:
            return b''
        return valid_payload[:self.rng.randint(0, len(valid_payload) - 1)]

    def generate_extended(self, valid_payload: bytes) -> bytes:
        return valid_payload + self.generate_random_bytes(1, 20)

    def generate_bitflip(self, valid_payload: bytes) -> bytes:
        if len(valid_payload) == 0:
            return b''
        data = bytearray(valid_payload)
        for _ in range(self.rng.randint(1, max(1, len(data) // 2))):
            pos = self.rng.randint(0, len(data) - 1)
            data[pos] ^= (1 << self.rng.randint(0, 7))
        return bytes(data)

    def generate_downlink_data(self) -> Dict[str, Any]:
        """Random encoder input over the driver's field names plus noise."""
        names = [spec.name for spec in self.codec.downlink.fields] + ['unknown']
        values = [None, True, False, 0, 1, -1, 255, 256, 3.5, 23.456, 21.5, 'x', [],
                  10 ** 12, 10 ** 400, float('inf'), float('nan'), 1e307]
        return {name: self.rng.choice(values)
                for name in names if self.rng.random() < 0.6}

    def get_valid_payloads(self) -> List[bytes]:
        """Extract payloads from test vectors."""
        payloads = []
        for tv in self.definition.get('test_vectors', []):
            if 'payload' not in tv:
                continue
            try:
                payloads.append(parse_payload(tv['payload']))
            except CodecError:
                pass
        return payloads

    def fuzz_one(self, operation: str, value: Any) -> bool:
        """
        Run one operation.
        Returns True if the codec handled it safely, False if it raised.
        """
        self.stats.total_inputs += 1
        try:
            if operation == 'encode':
                result = self.codec.encode_downlink(value)
            elif operation == 'downlink':
                result = self.codec.decode_downlink(value)
            else:
                result = self.codec.decode_uplink(value)
        except Exception as e:
            logger.error("%s crashed on %r: %s", operation, value, e)
            self.stats.crashes += 1
            self.stats.crash_inputs.append((operation, value))
            return False

        if result.success:
            self.stats.success += 1
        else:
            self.stats.rejected += 1
        return True

    def run(self, duration_sec: float = 10.0,
            max_inputs: Optional[int] = None) -> FuzzStats:
        """Run fuzzing until the duration elapses or max_inputs is reached."""
        valid_payloads = self.get_valid_payloads()
        if not valid_payloads:
            valid_payloads = [self.generate_random_bytes(4, 20) for _ in range(5)]

        generators = [
            lambda: self.generate_random_bytes(0, 40),
            lambda: self.generate_random_bytes(0, 4),
            lambda: self.generate_truncated(self.rng.choice(valid_payloads)),
            lambda: self.generate_extended(self.rng.choice(valid_payloads)),
            lambda: self.generate_bitflip(self.rng.choice(valid_payloads)),
            lambda: bytes(self.rng.randint(1, 31)),
            lambda: bytes([0xFF] * self.rng.randint(1, 31)),
            lambda: b'',
        ]
        operations = []
        if self.codec.uplink is not None:
            operations.append('uplink')
        if self.codec.downlink is not None:
            operations.extend(['downlink', 'encode'])

        start_time = time.time()
        end_time = start_time + duration_sec
        while time.time() < end_time:
            if max_inputs is not None and self.stats.total_inputs >= max_inputs:
                break
            operation = self.rng.choice(operations)
            if operation == 'encode':
                value = self.generate_downlink_data()
            else:
                value = self.rng.choice(generators)()
            self.fuzz_one(operation, value)

        self.stats.duration_sec = time.time() - start_time
        return self.stats


def print_stats(stats: FuzzStats, name: str):
    """Print fuzzing statistics."""
    print(f"\n{name} Fuzzing Results")
    print("=" * 50)
    print(f"Seed: {stats.seed}")
    print(f"Duration: {stats.duration_sec:.1f}s")
    print(f"Total inputs: {stats.total_inputs}")
    print(f"Rate: {stats.inputs_per_sec:.0f} inputs/sec")
    print(f"Success: {stats.success}")
    print(f"Rejected: {stats.rejected} (expected)")
    print(f"Crashes: {stats.crashes}")

    if stats.crashes > 0:
        print("\nCRASH INPUTS (reproducible with --seed):")
        for i, (operation, value) in enumerate(stats.crash_inputs[:5]):
            shown = value.hex() if isinstance(value, bytes) else value
            print(f"  {i+1}: {operation} {shown}")
        print("\nFAILED: Codec raised on malformed input!")
    else:
        print("\nPASSED: No crashes detected")


def main():
    parser = argparse.ArgumentParser(
        description='Fuzz test a driver codec'
    )
    parser.add_argument('driver', help='Driver name or path to driver YAML file')
    parser.add_argument('-d', '--duration', type=float, default=10.0,
                        help='Fuzz duration in seconds (default: 10)')
    parser.add_argument('-n', '--iterations', type=int,
                        help='Stop after this many inputs')
    parser.add_argument('-s', '--seed', type=int,
                        help='Random seed for reproducibility')
    parser.add_argument('--log-level', default='WARNING',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Logging level (default: WARNING)')
    args = parser.parse_args()

    logging.basicConfig(level=args.log_level,
                        format='%(levelname)s %(name)s: %(message)s')

    definition = load_definition(args.driver)
    print(f"Fuzzing driver: {args.driver}")
    fuzzer = DriverFuzzer(definition, seed=args.seed)
    stats = fuzzer.run(args.duration, max_inputs=args.iterations)
    print_stats(stats, definition.get('name', 'Driver'))

    sys.exit(1 if stats.crashes > 0 else 0)


if __name__ == '__main__':
    main()
