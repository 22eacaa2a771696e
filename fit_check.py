#!/usr/bin/env python3
"""
Show the device identity a FIT file claims, decoded independently with
fitparse. Handy to confirm what a converted file will look like to
Garmin Connect.
"""

import argparse
import sys
from pathlib import Path

from fitparse import FitFile

from fit_errors import FitConversionError
from fit_reader import check_integrity


IDENTITY_FIELDS = ('manufacturer', 'product', 'garmin_product', 'product_name', 'device_index')


def read_identity(fit_path):
    """
    Return (file_id, devices, message_count) as plain dicts decoded by fitparse.
    """
    fitfile = FitFile(str(fit_path))

    file_id = {}
    devices = []
    message_count = 0
    for record in fitfile.get_messages():
        message_count += 1
        if record.name == 'file_id' and not file_id:
            file_id = {
                field.name: field.value
                for field in record.fields
                if field.value is not None
            }
        elif record.name == 'device_info':
            devices.append({
                field.name: field.value
                for field in record.fields
                if field.name in IDENTITY_FIELDS and field.value is not None
            })

    return file_id, devices, message_count


def check_fit_file(fit_path):
    """
    Print integrity status and device identity of a FIT file.

    Returns True when the file passed the integrity check and decoded.
    """
    fit_path = Path(fit_path)
    print(f"Reading FIT file: {fit_path}")
    print("=" * 80)

    try:
        header = check_integrity(fit_path)
    except FitConversionError as exc:
        print(f"✗ {exc}")
        return False
    print(
        f"✓ Integrity OK (protocol {header.protocol_version >> 4}.{header.protocol_version & 0x0F}, "
        f"profile {header.profile_version}, data size {header.data_size} bytes)"
    )

    try:
        file_id, devices, message_count = read_identity(fit_path)
    except Exception as exc:  # pylint: disable=broad-except
        print(f"✗ Error decoding FIT file: {exc}")
        return False

    print("\n📄 FILE ID INFORMATION:")
    print("-" * 80)
    for name, value in file_id.items():
        print(f"  {name:20s}: {value}")

    print("\n🔧 DEVICE INFORMATION:")
    print("-" * 80)
    if not devices:
        print("  No device_info messages found")
    for index, device in enumerate(devices, start=1):
        print(f"\n  Device #{index}:")
        for name, value in device.items():
            print(f"    {name:20s}: {value}")

    print(f"\n📈 Messages decoded: {message_count}")
    return True


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Display device identity stored in a FIT file.",
    )
    parser.add_argument('fit_file', help="FIT file to inspect.")
    args = parser.parse_args(argv)

    return 0 if check_fit_file(args.fit_file) else 1


if __name__ == "__main__":
    sys.exit(main())
