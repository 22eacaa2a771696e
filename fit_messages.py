"""
In-memory model of decoded FIT messages.

A Message keeps the encoded bytes of every field it was read with, so a
message that nobody touches is written back exactly as it was read.
Values synthesised by the decoder live in Message.expanded and are never
encoded.
"""

from fitparse.profile import MESSAGE_TYPES

from fit_protocol import LITTLE_ENDIAN, decode_value, encode_value, holds_value


FILE_ID = 0
DEVICE_INFO = 23

UINT16 = 0x84
STRING = 0x07


def message_name(kind):
    message_type = MESSAGE_TYPES.get(kind)
    if message_type is None:
        return f"unknown_{kind}"
    return message_type.name


def profile_field(kind, def_num):
    message_type = MESSAGE_TYPES.get(kind)
    if message_type is None:
        return None
    return message_type.fields.get(def_num)


def field_name(kind, def_num):
    field = profile_field(kind, def_num)
    if field is None:
        return f"unknown_{def_num}"
    return field.name


class FieldValue:
    """One encoded field of a data message."""

    __slots__ = ('def_num', 'name', 'base_type', 'raw', 'value')

    def __init__(self, def_num, name, base_type, raw, value):
        self.def_num = def_num
        self.name = name
        self.base_type = base_type
        self.raw = bytes(raw)
        self.value = value

    @property
    def size(self):
        return len(self.raw)

    def __repr__(self):
        return f"<FieldValue {self.name}({self.def_num})={self.value!r}>"


class DevFieldValue:
    """Developer (third-party) field, carried as raw bytes."""

    __slots__ = ('def_num', 'dev_data_index', 'raw')

    def __init__(self, def_num, dev_data_index, raw):
        self.def_num = def_num
        self.dev_data_index = dev_data_index
        self.raw = bytes(raw)

    @property
    def size(self):
        return len(self.raw)

    def __repr__(self):
        return f"<DevFieldValue {self.dev_data_index}:{self.def_num} {self.raw.hex()}>"


class Message:
    def __init__(self, kind, fields=None, dev_fields=None, endian=LITTLE_ENDIAN):
        self.kind = kind
        self.endian = endian
        # Definition order; a definition may repeat a field number.
        self.fields = list(fields or ())
        self.dev_fields = list(dev_fields or ())
        self.expanded = {}

    @property
    def name(self):
        return message_name(self.kind)

    @property
    def field_nums(self):
        return [field.def_num for field in self.fields]

    def get_field(self, def_num):
        """First field with def_num, or None."""
        for field in self.fields:
            if field.def_num == def_num:
                return field
        return None

    def get(self, name, default=None):
        """Value of a field or expanded component by name."""
        for field in self.fields:
            if field.name == name:
                return field.value
        return self.expanded.get(name, default)

    def get_values(self):
        values = {}
        for field in self.fields:
            values.setdefault(field.name, field.value)
        for name, value in self.expanded.items():
            values.setdefault(name, value)
        return values

    def set_field(self, def_num, value, base_type):
        """
        Set a field, adding it with base_type when the message lacks it.

        An existing integer field keeps its base type and position when
        that type can hold value. Otherwise it is replaced in place by a
        field of base_type.
        """
        field = self.get_field(def_num)
        if field is not None and holds_value(field.base_type, value):
            field.raw = encode_value(field.base_type, value, self.endian)
            field.value = decode_value(field.base_type, field.raw, self.endian)
            return

        raw = encode_value(base_type, value, self.endian)
        new_field = FieldValue(
            def_num, field_name(self.kind, def_num), base_type, raw,
            decode_value(base_type, raw, self.endian),
        )
        if field is None:
            self.fields.append(new_field)
        else:
            self.fields[self.fields.index(field)] = new_field

    def remove_expanded_fields(self):
        self.expanded.clear()

    def layout(self):
        """Everything a definition record has to describe for this message."""
        return (
            self.kind,
            self.endian,
            tuple((f.def_num, f.size, f.base_type) for f in self.fields),
            tuple((f.def_num, f.size, f.dev_data_index) for f in self.dev_fields),
        )

    def encode(self):
        return b''.join([f.raw for f in self.fields] + [f.raw for f in self.dev_fields])

    def __repr__(self):
        return f"<{type(self).__name__} {self.name}({self.kind}) fields={len(self.fields)}>"


class IdentityMessage(Message):
    """Message carrying manufacturer and product codes."""

    MANUFACTURER = None
    PRODUCT = None

    @property
    def manufacturer(self):
        field = self.get_field(self.MANUFACTURER)
        return field.value if field else None

    @manufacturer.setter
    def manufacturer(self, value):
        self.set_field(self.MANUFACTURER, value, UINT16)

    @property
    def product(self):
        field = self.get_field(self.PRODUCT)
        return field.value if field else None

    @product.setter
    def product(self, value):
        self.set_field(self.PRODUCT, value, UINT16)


class FileIdMessage(IdentityMessage):
    MANUFACTURER = 1
    PRODUCT = 2


class DeviceInfoMessage(IdentityMessage):
    MANUFACTURER = 2
    PRODUCT = 4
    PRODUCT_NAME = 27

    @property
    def product_name(self):
        field = self.get_field(self.PRODUCT_NAME)
        return field.value if field else None

    @product_name.setter
    def product_name(self, value):
        self.set_field(self.PRODUCT_NAME, value, STRING)


MESSAGE_CLASSES = {
    FILE_ID: FileIdMessage,
    DEVICE_INFO: DeviceInfoMessage,
}


def create_message(kind, fields=None, dev_fields=None, endian=LITTLE_ENDIAN):
    cls = MESSAGE_CLASSES.get(kind, Message)
    return cls(kind, fields, dev_fields, endian)
