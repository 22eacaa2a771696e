"""
Per-message transform: put the target device into file_id and
device_info messages and drop decoder-expanded values from every message.
"""

from fit_errors import UnknownDeviceError
from fit_messages import DeviceInfoMessage, FileIdMessage


# Device presets
PRESETS = {
    '1': {
        'name': 'Garmin Edge 520',
        'manufacturer_id': 1,
        'product_id': 2067,
    },
    '2': {
        'name': 'Tacx Neo 2 Smart',
        'manufacturer_id': 89,
        'product_id': 4266,
    },
    '3': {
        'name': 'Garmin Edge 840',
        'manufacturer_id': 1,
        'product_id': 4062,
    },
}

DEFAULT_PRESET = '3'

# (manufacturer_id, product_id) -> device_info product_name
PRODUCT_NAMES = {
    (1, 2067): 'Edge 520',
    (1, 4062): 'Edge 840',
    (89, 4266): 'Tacx Neo 2 Smart',
}


def product_name_for(target, product_names=None):
    if product_names is None:
        product_names = PRODUCT_NAMES
    key = (target['manufacturer_id'], target['product_id'])
    name = product_names.get(key)
    if not name:
        raise UnknownDeviceError(
            f"No product name known for manufacturer {key[0]}, product {key[1]}"
        )
    return name


def strip_expanded_fields(message):
    """Drop values the decoder synthesised; they are not part of the encoding."""
    message.remove_expanded_fields()
    return message


def rewrite_identity(message, target, product_name):
    """
    Overwrite the identity fields of file_id and device_info messages.

    Returns True when the message carried device identity.
    """
    if isinstance(message, FileIdMessage):
        message.manufacturer = target['manufacturer_id']
        message.product = target['product_id']
        return True

    if isinstance(message, DeviceInfoMessage):
        message.manufacturer = target['manufacturer_id']
        message.product = target['product_id']
        message.product_name = product_name
        return True

    return False


class FieldRewriter:
    """
    Callable applied to every message in stream order.

    The target device is resolved once; construction fails when it has
    no product name so no file is written with an empty one.
    """

    def __init__(self, target, product_names=None):
        self.target = target
        self.product_name = product_name_for(target, product_names)
        self.identity_messages = 0

    def __call__(self, message):
        if rewrite_identity(message, self.target, self.product_name):
            self.identity_messages += 1
        return strip_expanded_fields(message)
