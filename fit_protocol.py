"""
FIT protocol constants and the small binary helpers shared by the
reader and the writer: file header, CRC-16 and base type coding.

Layout reference: https://developer.garmin.com/fit/protocol/
"""

import struct
from collections import namedtuple


FIT_SIGNATURE = b'.FIT'
HEADER_SIZE = 14
LEGACY_HEADER_SIZE = 12
CRC_SIZE = 2

# Output is always written as protocol 2.0
PROTOCOL_VERSION = 0x20
PROFILE_VERSION = 2132

# Record header bits
COMPRESSED_HEADER_MASK = 0x80
DEFINITION_MASK = 0x40
DEVELOPER_DATA_MASK = 0x20
LOCAL_MESG_NUM_MASK = 0x0F
MAX_LOCAL_MESG_NUM = 15

TIMESTAMP_FIELD_NUM = 253
TIMESTAMP_BASE_TYPE = 0x86

LITTLE_ENDIAN = 0
BIG_ENDIAN = 1

FitHeader = namedtuple(
    'FitHeader',
    ['header_size', 'protocol_version', 'profile_version', 'data_size', 'header_crc'],
)

BaseType = namedtuple('BaseType', ['name', 'fmt', 'invalid'])

# Keyed by base type number (low 5 bits of the base type byte)
BASE_TYPES = {
    0x00: BaseType('enum', 'B', 0xFF),
    0x01: BaseType('sint8', 'b', 0x7F),
    0x02: BaseType('uint8', 'B', 0xFF),
    0x03: BaseType('sint16', 'h', 0x7FFF),
    0x04: BaseType('uint16', 'H', 0xFFFF),
    0x05: BaseType('sint32', 'i', 0x7FFFFFFF),
    0x06: BaseType('uint32', 'I', 0xFFFFFFFF),
    0x07: BaseType('string', 's', None),
    0x08: BaseType('float32', 'f', None),
    0x09: BaseType('float64', 'd', None),
    0x0A: BaseType('uint8z', 'B', 0x00),
    0x0B: BaseType('uint16z', 'H', 0x0000),
    0x0C: BaseType('uint32z', 'I', 0x00000000),
    0x0D: BaseType('byte', 'B', None),
    0x0E: BaseType('sint64', 'q', 0x7FFFFFFFFFFFFFFF),
    0x0F: BaseType('uint64', 'Q', 0xFFFFFFFFFFFFFFFF),
    0x10: BaseType('uint64z', 'Q', 0x0000000000000000),
}

CRC_TABLE = [
    0x0000, 0xCC01, 0xD801, 0x1400, 0xF001, 0x3C00, 0x2800, 0xE401,
    0xA001, 0x6C00, 0x7800, 0xB401, 0x5000, 0x9C01, 0x8801, 0x4400
]


def calculate_crc(data, crc=0):
    """FIT CRC-16 over data, continuing from crc."""
    for byte in data:
        tmp = CRC_TABLE[crc & 0xF]
        crc = (crc >> 4) & 0x0FFF
        crc = crc ^ tmp ^ CRC_TABLE[byte & 0xF]
        tmp = CRC_TABLE[crc & 0xF]
        crc = (crc >> 4) & 0x0FFF
        crc = crc ^ tmp ^ CRC_TABLE[(byte >> 4) & 0xF]
    return crc


def parse_header(data, offset=0):
    """
    Parse the file header starting at offset.

    Raises ValueError when the bytes there are not a FIT header.
    """
    if len(data) - offset < LEGACY_HEADER_SIZE:
        raise ValueError(f"truncated header at offset {offset}")

    header_size = data[offset]
    if header_size not in (LEGACY_HEADER_SIZE, HEADER_SIZE):
        raise ValueError(f"unexpected header size {header_size} at offset {offset}")
    if len(data) - offset < header_size:
        raise ValueError(f"truncated header at offset {offset}")

    protocol_version, profile_version, data_size, signature = struct.unpack_from(
        '<BHI4s', data, offset + 1
    )
    if signature != FIT_SIGNATURE:
        raise ValueError(f"missing .FIT signature at offset {offset}")

    header_crc = None
    if header_size == HEADER_SIZE:
        header_crc = struct.unpack_from('<H', data, offset + 12)[0]

    return FitHeader(header_size, protocol_version, profile_version, data_size, header_crc)


def build_header(data_size):
    header = struct.pack(
        '<BBHI4s', HEADER_SIZE, PROTOCOL_VERSION, PROFILE_VERSION, data_size, FIT_SIGNATURE
    )
    return header + struct.pack('<H', calculate_crc(header))


def endian_prefix(endian):
    return '>' if endian == BIG_ENDIAN else '<'


def base_type_info(base_type):
    info = BASE_TYPES.get(base_type & 0x1F)
    if info is None:
        # Unknown base types are carried as opaque bytes
        return BASE_TYPES[0x0D]
    return info


def decode_value(base_type, raw, endian=LITTLE_ENDIAN):
    """
    Decode the raw bytes of one field.

    Returns None for the base type's invalid value, a tuple for arrays,
    str for strings and bytes for byte fields.
    """
    info = base_type_info(base_type)

    if info.name == 'string':
        text = bytes(raw).split(b'\x00', 1)[0]
        if not text:
            return None
        return text.decode('utf-8', errors='replace')

    if info.name == 'byte':
        if all(b == 0xFF for b in raw):
            return None
        return bytes(raw)

    size = struct.calcsize(info.fmt)
    if not raw or len(raw) % size:
        # Size does not fit the base type, keep the bytes as they are
        return bytes(raw)

    count = len(raw) // size
    values = struct.unpack(endian_prefix(endian) + info.fmt * count, bytes(raw))
    decoded = []
    for index, value in enumerate(values):
        chunk = raw[index * size:(index + 1) * size]
        if info.invalid is None:
            # floats are invalid when every byte is 0xFF
            invalid = all(b == 0xFF for b in chunk)
        else:
            invalid = value == info.invalid
        decoded.append(None if invalid else value)

    if count == 1:
        return decoded[0]
    return tuple(decoded)


def encode_value(base_type, value, endian=LITTLE_ENDIAN):
    """Encode a single scalar or string value for base_type."""
    info = base_type_info(base_type)

    if info.name == 'string':
        return (value or '').encode('utf-8') + b'\x00'

    if info.name == 'byte':
        return bytes(value)

    if value is None:
        size = struct.calcsize(info.fmt)
        if info.invalid is None:
            return b'\xff' * size
        value = info.invalid
    return struct.pack(endian_prefix(endian) + info.fmt, value)


def holds_value(base_type, value):
    """True when base_type can carry value without truncation or reading as invalid."""
    info = BASE_TYPES.get(base_type & 0x1F)
    if info is None:
        return False
    if isinstance(value, str):
        return info.name == 'string'
    if info.name in ('string', 'byte') or info.fmt in ('f', 'd'):
        return False
    if value is None or value == info.invalid:
        return False
    try:
        struct.pack(info.fmt, value)
    except struct.error:
        return False
    return True
