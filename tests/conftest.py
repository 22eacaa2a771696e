"""Hand-built FIT fixtures, encoded without the package's writer."""

import struct

import pytest


ZWIFT = 260
GARMIN = 1

FILE_ID_FIELDS = [(0, 1, 0x00), (1, 2, 0x84), (2, 2, 0x84), (3, 4, 0x8C), (4, 4, 0x86)]
RECORD_FIELDS = [(253, 4, 0x86), (7, 2, 0x84), (3, 1, 0x02), (4, 1, 0x02)]
DEVICE_INFO_FIELDS = [(253, 4, 0x86), (0, 1, 0x02), (2, 2, 0x84), (4, 2, 0x84), (5, 2, 0x84)]

TIME_CREATED = 1000000000


def crc16(data):
    """Bitwise CRC-16/ARC, the checksum FIT uses."""
    crc = 0
    for byte in data:
        crc ^= byte
        for _ in range(8):
            crc = (crc >> 1) ^ 0xA001 if crc & 1 else crc >> 1
    return crc


def definition(local_num, kind, fields, dev_fields=(), endian=0):
    header = 0x40 | local_num | (0x20 if dev_fields else 0)
    prefix = '>' if endian else '<'
    out = bytes([header, 0, endian]) + struct.pack(prefix + 'H', kind) + bytes([len(fields)])
    for field in fields:
        out += bytes(field)
    if dev_fields:
        out += bytes([len(dev_fields)])
        for field in dev_fields:
            out += bytes(field)
    return out


def data(local_num, fmt, *values):
    return bytes([local_num]) + struct.pack(fmt, *values)


def segment(body, data_size=None):
    if data_size is None:
        data_size = len(body)
    header = struct.pack('<BBHI4s', 14, 0x10, 2100, data_size, b'.FIT')
    header += struct.pack('<H', crc16(header))
    return header + body


def finish(content):
    """Append the file CRC over everything before it."""
    return content + struct.pack('<H', crc16(content))


def fit_file(body, data_size=None):
    return finish(segment(body, data_size))


def activity_body(manufacturer=ZWIFT, product=0):
    """file_id, one record, one device_info."""
    return (
        definition(0, 0, FILE_ID_FIELDS)
        + data(0, '<BHHII', 4, manufacturer, product, 12345, TIME_CREATED)
        + definition(1, 20, RECORD_FIELDS)
        + data(1, '<IHBB', TIME_CREATED + 1, 250, 140, 90)
        + definition(2, 23, DEVICE_INFO_FIELDS)
        + data(2, '<IBHHH', TIME_CREATED + 2, 0, manufacturer, product, 100)
    )


@pytest.fixture
def write_fit(tmp_path):
    def _write(content, name='ride.fit'):
        path = tmp_path / name
        path.write_bytes(content)
        return path
    return _write


@pytest.fixture
def activity_file(write_fit):
    return write_fit(fit_file(activity_body()))


@pytest.fixture
def fake_device():
    return {'name': 'Fake Trainer', 'manufacturer_id': 32, 'product_id': 7}
