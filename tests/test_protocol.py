"""Tests for the low-level FIT helpers."""

import struct

import pytest

from conftest import crc16
from fit_protocol import (
    HEADER_SIZE,
    PROTOCOL_VERSION,
    build_header,
    calculate_crc,
    decode_value,
    encode_value,
    holds_value,
    parse_header,
)


class TestCrc:
    def test_matches_bitwise_reference(self):
        payload = bytes(range(256)) * 3
        assert calculate_crc(payload) == crc16(payload)

    def test_continues_from_previous_value(self):
        payload = b'zwift ride with power and heart rate'
        partial = calculate_crc(payload[:10])
        assert calculate_crc(payload[10:], partial) == calculate_crc(payload)

    def test_data_followed_by_its_crc_resets_to_zero(self):
        payload = b'.FIT segment'
        assert calculate_crc(payload + struct.pack('<H', calculate_crc(payload))) == 0


class TestHeader:
    def test_build_and_parse(self):
        header = parse_header(build_header(1234))
        assert header.header_size == HEADER_SIZE
        assert header.protocol_version == PROTOCOL_VERSION
        assert header.data_size == 1234
        assert header.header_crc == crc16(build_header(1234)[:12])

    def test_legacy_header_has_no_crc(self):
        raw = struct.pack('<BBHI4s', 12, 0x10, 100, 0, b'.FIT')
        assert parse_header(raw).header_crc is None

    def test_rejects_bad_signature(self):
        raw = struct.pack('<BBHI4sH', 14, 0x10, 100, 0, b'.FOO', 0)
        with pytest.raises(ValueError, match="signature"):
            parse_header(raw)

    def test_rejects_bad_size(self):
        with pytest.raises(ValueError, match="header size"):
            parse_header(b'\x20' + b'\x00' * 31)


class TestValues:
    def test_invalid_integers_decode_to_none(self):
        assert decode_value(0x84, b'\xff\xff') is None
        assert decode_value(0x8C, b'\x00\x00\x00\x00') is None
        assert decode_value(0x02, b'\x8c') == 140

    def test_big_endian(self):
        assert decode_value(0x84, b'\x01\x04', endian=1) == 260

    def test_arrays(self):
        assert decode_value(0x02, b'\x01\x02\xff') == (1, 2, None)

    def test_strings(self):
        assert decode_value(0x07, b'Edge 840\x00\x00\x00') == 'Edge 840'
        assert decode_value(0x07, b'\x00\x00') is None

    def test_float_invalid(self):
        assert decode_value(0x88, b'\xff\xff\xff\xff') is None
        assert decode_value(0x88, struct.pack('<f', 1.5)) == 1.5

    def test_odd_size_kept_as_bytes(self):
        assert decode_value(0x84, b'\x01\x02\x03') == b'\x01\x02\x03'

    def test_encode(self):
        assert encode_value(0x84, 4062) == struct.pack('<H', 4062)
        assert encode_value(0x84, None) == b'\xff\xff'
        assert encode_value(0x07, 'Edge 840') == b'Edge 840\x00'


class TestHoldsValue:
    @pytest.mark.parametrize("base_type, value", [
        (0x84, 4062),
        (0x04, 1),
        (0x02, 7),
        (0x86, 4062),
        (0x8B, 1),
        (0x07, 'Edge 840'),
    ])
    def test_can_hold(self, base_type, value):
        assert holds_value(base_type, value)

    @pytest.mark.parametrize("base_type, value", [
        (0x0D, 1),
        (0x02, 4062),
        (0x02, 0xFF),
        (0x8B, 0),
        (0x88, 1),
        (0x84, 'Edge 840'),
        (0x07, 1),
        (0x1F, 1),
    ])
    def test_cannot_hold(self, base_type, value):
        assert not holds_value(base_type, value)
