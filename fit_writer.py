"""
Streaming FIT encoder.

Records are appended as messages arrive. Data size and CRC are only known
once the last message is in, so close() rewrites the header and reads
the file back to compute the trailing CRC.
"""

import struct
from collections import OrderedDict
from pathlib import Path

from fit_errors import OutputWriteError
from fit_protocol import (
    DEFINITION_MASK,
    DEVELOPER_DATA_MASK,
    MAX_LOCAL_MESG_NUM,
    build_header,
    calculate_crc,
    endian_prefix,
)


CRC_CHUNK_SIZE = 64 * 1024


def encode_definition(local_num, message):
    record_header = DEFINITION_MASK | local_num
    if message.dev_fields:
        record_header |= DEVELOPER_DATA_MASK

    parts = [
        bytes([record_header, 0, message.endian]),
        struct.pack(endian_prefix(message.endian) + 'H', message.kind),
        bytes([len(message.fields)]),
    ]
    for field in message.fields:
        parts.append(bytes([field.def_num, field.size, field.base_type]))

    if message.dev_fields:
        parts.append(bytes([len(message.dev_fields)]))
        for field in message.dev_fields:
            parts.append(bytes([field.def_num, field.size, field.dev_data_index]))

    return b''.join(parts)


class FitWriter:
    """
    Write messages, in the order given, to a new FIT file.

    Local message numbers are assigned here: a definition record is
    emitted whenever a message's layout is not bound to any local
    number, reusing the least recently used one when all 16 are taken.
    """

    def __init__(self, path):
        self.path = Path(path)
        self.data_size = 0
        self.messages_written = 0
        self.closed = False
        self._layouts = OrderedDict()

        try:
            self._file = open(self.path, 'w+b')
        except OSError as exc:
            raise OutputWriteError(f"Cannot create {self.path}: {exc}") from exc

        self._write(build_header(0))

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.close()
        else:
            self.abort()
        return False

    def write(self, message):
        if self.closed:
            raise OutputWriteError(f"{self.path} is already closed")

        local_num = self._local_num_for(message)
        record = bytes([local_num]) + message.encode()
        self._write(record)
        self.data_size += len(record)
        self.messages_written += 1

    def _local_num_for(self, message):
        layout = message.layout()
        for local_num, bound in self._layouts.items():
            if bound == layout:
                self._layouts.move_to_end(local_num)
                return local_num

        if len(self._layouts) <= MAX_LOCAL_MESG_NUM:
            local_num = len(self._layouts)
        else:
            local_num = next(iter(self._layouts))

        self._layouts[local_num] = layout
        self._layouts.move_to_end(local_num)

        definition = encode_definition(local_num, message)
        self._write(definition)
        self.data_size += len(definition)
        return local_num

    def _write(self, data):
        try:
            self._file.write(data)
        except OSError as exc:
            raise OutputWriteError(f"Cannot write {self.path}: {exc}") from exc

    def close(self):
        """Finalize header and CRC, then release the file. A failed finalize removes it."""
        if self.closed:
            return
        self.closed = True

        try:
            with self._file:
                self._file.seek(0)
                self._file.write(build_header(self.data_size))
                self._file.flush()

                self._file.seek(0)
                crc = 0
                while True:
                    chunk = self._file.read(CRC_CHUNK_SIZE)
                    if not chunk:
                        break
                    crc = calculate_crc(chunk, crc)

                self._file.seek(0, 2)
                self._file.write(struct.pack('<H', crc))
        except OSError as exc:
            self.path.unlink(missing_ok=True)
            raise OutputWriteError(f"Cannot finalize {self.path}: {exc}") from exc

    def abort(self):
        """Close without finalizing and remove the partial file."""
        if self.closed:
            return
        self.closed = True
        try:
            self._file.close()
        finally:
            self.path.unlink(missing_ok=True)
