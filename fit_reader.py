"""
Streaming FIT decoder.

Yields messages in file order, keeping the encoded bytes of every field
so they can be written back unchanged. Definitions are tracked per local
message number and reset at every file segment.
"""

import struct
from collections import namedtuple
from pathlib import Path

from fit_errors import (
    InputNotFound,
    InputUnreadable,
    IntegrityError,
    MalformedContainer,
    RecoverableFraming,
)
from fit_messages import FieldValue, DevFieldValue, create_message, field_name, profile_field
from fit_protocol import (
    BIG_ENDIAN,
    COMPRESSED_HEADER_MASK,
    CRC_SIZE,
    DEFINITION_MASK,
    DEVELOPER_DATA_MASK,
    FIT_SIGNATURE,
    LEGACY_HEADER_SIZE,
    LITTLE_ENDIAN,
    LOCAL_MESG_NUM_MASK,
    TIMESTAMP_BASE_TYPE,
    TIMESTAMP_FIELD_NUM,
    calculate_crc,
    decode_value,
    endian_prefix,
    parse_header,
)


MessageDefinition = namedtuple(
    'MessageDefinition', ['kind', 'endian', 'field_defs', 'dev_field_defs']
)


def read_fit_bytes(path):
    path = Path(path)
    if not path.exists():
        raise InputNotFound(f"FIT file not found: {path}")
    if not path.is_file():
        raise InputUnreadable(f"Not a file: {path}")
    try:
        return path.read_bytes()
    except OSError as exc:
        raise InputUnreadable(f"Cannot read FIT file {path}: {exc}") from exc


def check_integrity(path):
    """
    Structural pre-check on a fresh read of the file.

    Validates header size, signature, header CRC and the trailing CRC
    over everything before it. The declared data size is left to the
    reader, which can recover from a wrong one.
    """
    data = read_fit_bytes(path)

    try:
        header = parse_header(data)
    except ValueError as exc:
        raise IntegrityError(f"Invalid FIT header: {exc}") from exc

    if header.header_crc:
        expected = calculate_crc(data[:LEGACY_HEADER_SIZE])
        if header.header_crc != expected:
            raise IntegrityError(
                f"Header CRC mismatch: stored=0x{header.header_crc:04X}, calc=0x{expected:04X}"
            )

    if len(data) < header.header_size + CRC_SIZE:
        raise IntegrityError("File too short to hold a CRC")

    stored = struct.unpack_from('<H', data, len(data) - CRC_SIZE)[0]
    expected = calculate_crc(data[:-CRC_SIZE])
    if stored != expected:
        raise IntegrityError(f"File CRC mismatch: stored=0x{stored:04X}, calc=0x{expected:04X}")

    return header


class FitReader:
    """
    Decode a FIT file into Message objects.

    messages() raises RecoverableFraming, before yielding anything from
    the segment, when a header's data size does not line up with the
    stream. Call resync() and iterate messages() again to continue from
    that segment; only one recovery is allowed per file.
    """

    def __init__(self, path):
        self.path = Path(path)
        self._data = read_fit_bytes(self.path)
        self._offset = 0
        self._resync = False
        self.recovered = False
        self.segments = 0

    def resync(self):
        if self.recovered:
            raise MalformedContainer("Declared data size inconsistent again after recovery")
        self._resync = True

    def messages(self):
        data = self._data
        while self._offset < len(data):
            start = self._offset
            try:
                header = parse_header(data, start)
            except ValueError as exc:
                raise MalformedContainer(f"Bad segment header: {exc}") from exc

            body_start = start + header.header_size
            if self._resync:
                body_end = self._find_body_end(start, body_start)
                self._resync = False
                self.recovered = True
            else:
                body_end = body_start + header.data_size
                if not self._framing_consistent(body_end):
                    message = (
                        f"Declared data size {header.data_size} does not match the "
                        f"stream (segment at offset {start})"
                    )
                    if self.recovered:
                        raise MalformedContainer(message)
                    raise RecoverableFraming(message, start)

            yield from self._decode_segment(body_start, body_end)
            self._offset = body_end + CRC_SIZE
            self.segments += 1

    def _framing_consistent(self, body_end):
        data = self._data
        crc_end = body_end + CRC_SIZE
        if crc_end > len(data):
            return False
        if crc_end == len(data):
            return True
        try:
            parse_header(data, crc_end)
        except ValueError:
            return False
        return True

    def _find_body_end(self, start, body_start):
        """Locate the real end of a segment: the next valid segment or the file CRC."""
        data = self._data
        search_from = body_start
        while True:
            signature_at = data.find(FIT_SIGNATURE, search_from)
            if signature_at == -1:
                break
            candidate = signature_at - 8
            search_from = signature_at + 1
            crc_at = candidate - CRC_SIZE
            if crc_at < body_start:
                continue
            try:
                parse_header(data, candidate)
            except ValueError:
                continue
            stored = struct.unpack_from('<H', data, crc_at)[0]
            if stored == calculate_crc(data[start:crc_at]):
                return crc_at

        body_end = len(data) - CRC_SIZE
        if body_end < body_start:
            raise MalformedContainer("No data section left to recover")
        return body_end

    def _take(self, pos, size, end):
        if pos + size > end:
            raise MalformedContainer(f"Record at offset {pos} runs past end of data")
        return self._data[pos:pos + size], pos + size

    def _decode_segment(self, pos, end):
        data = self._data
        definitions = {}
        last_timestamp = None

        while pos < end:
            record_header = data[pos]
            record_offset = pos
            pos += 1

            if record_header & COMPRESSED_HEADER_MASK:
                local_num = (record_header >> 5) & 0x03
                time_offset = record_header & 0x1F
                definition = definitions.get(local_num)
                if definition is None:
                    raise MalformedContainer(
                        f"Compressed record at offset {record_offset} uses undefined local type {local_num}"
                    )
                if last_timestamp is None:
                    raise MalformedContainer(
                        f"Compressed timestamp at offset {record_offset} has no reference timestamp"
                    )
                message, pos = self._decode_data(definition, pos, end)
                timestamp = (last_timestamp & ~0x1F) + time_offset
                if time_offset < (last_timestamp & 0x1F):
                    timestamp += 0x20
                self._prepend_timestamp(message, timestamp)
                last_timestamp = timestamp
                yield message

            elif record_header & DEFINITION_MASK:
                local_num = record_header & LOCAL_MESG_NUM_MASK
                has_dev = bool(record_header & DEVELOPER_DATA_MASK)
                definitions[local_num], pos = self._decode_definition(pos, end, has_dev)

            else:
                local_num = record_header & LOCAL_MESG_NUM_MASK
                definition = definitions.get(local_num)
                if definition is None:
                    raise MalformedContainer(
                        f"Data record at offset {record_offset} uses undefined local type {local_num}"
                    )
                message, pos = self._decode_data(definition, pos, end)
                timestamp = message.get_field(TIMESTAMP_FIELD_NUM)
                if timestamp is not None and isinstance(timestamp.value, int):
                    last_timestamp = timestamp.value
                yield message

    def _decode_definition(self, pos, end, has_dev):
        raw, pos = self._take(pos, 5, end)
        endian = BIG_ENDIAN if raw[1] == BIG_ENDIAN else LITTLE_ENDIAN
        kind = struct.unpack(endian_prefix(endian) + 'H', raw[2:4])[0]
        field_count = raw[4]

        raw, pos = self._take(pos, field_count * 3, end)
        field_defs = tuple(
            (raw[i], raw[i + 1], raw[i + 2]) for i in range(0, len(raw), 3)
        )

        dev_field_defs = ()
        if has_dev:
            raw, pos = self._take(pos, 1, end)
            raw, pos = self._take(pos, raw[0] * 3, end)
            dev_field_defs = tuple(
                (raw[i], raw[i + 1], raw[i + 2]) for i in range(0, len(raw), 3)
            )

        return MessageDefinition(kind, endian, field_defs, dev_field_defs), pos

    def _decode_data(self, definition, pos, end):
        kind = definition.kind
        endian = definition.endian

        fields = []
        for def_num, size, base_type in definition.field_defs:
            raw, pos = self._take(pos, size, end)
            value = decode_value(base_type, raw, endian)
            fields.append(FieldValue(def_num, field_name(kind, def_num), base_type, raw, value))

        dev_fields = []
        for def_num, size, dev_data_index in definition.dev_field_defs:
            raw, pos = self._take(pos, size, end)
            dev_fields.append(DevFieldValue(def_num, dev_data_index, raw))

        message = create_message(kind, fields, dev_fields, endian)
        expand_components(message)
        return message, pos

    @staticmethod
    def _prepend_timestamp(message, timestamp):
        raw = struct.pack(endian_prefix(message.endian) + 'I', timestamp)
        field = FieldValue(
            TIMESTAMP_FIELD_NUM,
            field_name(message.kind, TIMESTAMP_FIELD_NUM),
            TIMESTAMP_BASE_TYPE,
            raw,
            timestamp,
        )
        if message.get_field(TIMESTAMP_FIELD_NUM) is None:
            message.fields.insert(0, field)


def expand_components(message):
    """
    Fill message.expanded from the profile's component definitions,
    e.g. record speed -> enhanced_speed. Fields present in the encoding
    always win over a component of the same number.
    """
    for field in list(message.fields):
        profile = profile_field(message.kind, field.def_num)
        components = getattr(profile, 'components', None)
        if not components or not isinstance(field.value, int):
            continue

        for component in components:
            if message.get_field(component.def_num) is not None or not component.bits:
                continue
            value = (field.value >> (component.bit_offset or 0)) & ((1 << component.bits) - 1)
            scale = component.scale or 1
            offset = component.offset or 0
            if scale != 1 or offset:
                value = value / scale - offset
            message.expanded[component.name] = value
