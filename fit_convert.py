#!/usr/bin/env python3
"""
Zwift to Garmin FIT converter.

- Rewrites manufacturer/product in file_id and device_info messages
- Keeps every other message, field and developer field as recorded
- Writes `<name>_edge840.fit` next to the original (or a chosen path)
- Accepts a single FIT file or a directory of FIT files
"""

import argparse
import re
import sys
from collections import namedtuple
from pathlib import Path

from fit_errors import RecoverableFraming, UnknownDeviceError
from fit_messages import IdentityMessage
from fit_reader import FitReader, check_integrity
from fit_rewriter import DEFAULT_PRESET, PRESETS, FieldRewriter
from fit_writer import FitWriter


OUTPUT_SUFFIX = "_edge840"

ConversionResult = namedtuple('ConversionResult', ['messages_processed', 'identity_modified'])


def verbose_print(message: str, verbose: bool = False):
    if verbose:
        print(message)


def format_bytes(size: int) -> str:
    if size >= 1024 * 1024:
        return f"{size / (1024 * 1024):.1f} MB"
    if size >= 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size} bytes"


def output_path_for(input_path, suffix: str = OUTPUT_SUFFIX) -> Path:
    """Insert suffix before a .fit extension, or append suffix + .fit."""
    input_path = Path(input_path)
    name = input_path.name
    if name.lower().endswith(".fit"):
        name = re.sub(r"\.fit$", f"{suffix}.fit", name, flags=re.IGNORECASE)
    else:
        name = f"{name}{suffix}.fit"
    return input_path.with_name(name)


def resolve_target(preset_id):
    if preset_id not in PRESETS:
        raise UnknownDeviceError(
            f"Invalid preset ID '{preset_id}'. Must be one of {', '.join(sorted(PRESETS))}"
        )
    return PRESETS[preset_id]


def _describe_identity(message):
    return f"manufacturer={message.manufacturer}, product={message.product}"


def _pump(reader, rewriter, writer, verbose=False):
    for message in reader.messages():
        if not isinstance(message, IdentityMessage):
            writer.write(rewriter(message))
            continue
        verbose_print(f"  🔍 Found {message.name} - before: {_describe_identity(message)}", verbose)
        message = rewriter(message)
        verbose_print(f"  🔧 Modified {message.name} - after: {_describe_identity(message)}", verbose)
        writer.write(message)


def convert(input_path, output_path, preset_id=DEFAULT_PRESET, *, target=None,
            product_names=None, verbose: bool = False) -> ConversionResult:
    """
    Convert one FIT file.

    Decodes input_path, rewrites the device identity and writes
    output_path. Raises a FitConversionError subclass on failure, in
    which case no output file is left behind.
    """
    if target is None:
        target = resolve_target(preset_id)
    rewriter = FieldRewriter(target, product_names)

    input_path = Path(input_path)
    output_path = Path(output_path)

    verbose_print(f"Target device: {target['name']}", verbose)
    verbose_print(f"  Manufacturer ID: {target['manufacturer_id']}", verbose)
    verbose_print(f"  Product ID: {target['product_id']}", verbose)
    verbose_print(f"\nReading: {input_path}", verbose)

    check_integrity(input_path)
    verbose_print("✓ File integrity verified", verbose)

    reader = FitReader(input_path)
    with FitWriter(output_path) as writer:
        try:
            _pump(reader, rewriter, writer, verbose)
        except RecoverableFraming as exc:
            print(f"  ⚠ {exc}, attempting recovery...")
            reader.resync()
            _pump(reader, rewriter, writer, verbose)

    result = ConversionResult(writer.messages_written, rewriter.identity_messages > 0)

    original_size = input_path.stat().st_size
    new_size = output_path.stat().st_size
    verbose_print("Processing summary:", verbose)
    verbose_print(f"  Messages processed: {result.messages_processed}", verbose)
    verbose_print(
        f"  Device metadata modified: {'Yes' if result.identity_modified else 'No'}", verbose
    )
    verbose_print(f"  Original file size: {format_bytes(original_size)}", verbose)
    if original_size:
        ratio = new_size / original_size * 100
        verbose_print(f"  New file size: {format_bytes(new_size)} ({ratio:.1f}%)", verbose)
        if ratio < 90:
            verbose_print(
                "  ℹ File size reduction is normal: definitions are shared and "
                "expanded fields are not written back",
                verbose,
            )
    verbose_print(f"\n✓ Modified file saved to: {output_path}", verbose)

    return result


def find_fit_files(directory, suffix: str = OUTPUT_SUFFIX):
    """FIT files in directory, skipping ones that are already converted."""
    directory = Path(directory)
    return sorted(
        file_path
        for file_path in directory.iterdir()
        if file_path.is_file()
        and file_path.suffix.lower() == '.fit'
        and suffix.lower() not in file_path.stem.lower()
    )


def convert_batch(files, preset_id=DEFAULT_PRESET, suffix: str = OUTPUT_SUFFIX, *,
                  verbose: bool = False):
    """
    Convert every file independently.

    Returns (successful, total). A failing file is reported and the
    batch moves on.
    """
    files = list(files)
    converted_files = []
    failures = {}

    for index, fit_file in enumerate(files, start=1):
        target_path = output_path_for(fit_file, suffix)
        if verbose:
            print(f"\n[{index}/{len(files)}] Processing {fit_file.name} ...")
        else:
            print(f"[{index}/{len(files)}] {fit_file.name} → {target_path.name}", end=" ")
        try:
            convert(fit_file, target_path, preset_id, verbose=verbose)
        except Exception as exc:  # pylint: disable=broad-except
            failures[fit_file.name] = str(exc)
            if verbose:
                print(f"✗ Failed to convert {fit_file.name}: {exc}")
            else:
                print(f"✗ {exc}")
        else:
            converted_files.append(fit_file.name)
            if verbose:
                print(f"✓ Completed {fit_file.name}")
            else:
                print("✓")

    if len(files) > 1:
        print(
            f"\nSummary: {len(converted_files)}/{len(files)} file(s) converted successfully."
        )
        if failures:
            print("  ⚠ Failed to convert:")
            for fname, reason in sorted(failures.items()):
                print(f"    - {fname}: {reason}")

    return len(converted_files), len(files)


def parse_arguments(argv=None):
    parser = argparse.ArgumentParser(
        description="Make Zwift FIT files look like they were recorded by a Garmin device.",
    )
    parser.add_argument(
        'input',
        help="FIT file or directory of FIT files to convert.",
    )
    parser.add_argument(
        '-p',
        '--preset',
        default=DEFAULT_PRESET,
        choices=list(PRESETS.keys()),
        help=f"Preset ID to use (default: {DEFAULT_PRESET} - {PRESETS[DEFAULT_PRESET]['name']}).",
    )
    parser.add_argument(
        '-o',
        '--output',
        help="Output path when converting a single file (default: <name>_edge840.fit).",
    )
    parser.add_argument(
        '--suffix',
        default=OUTPUT_SUFFIX,
        help=f"Suffix for converted files (default: {OUTPUT_SUFFIX}).",
    )
    parser.add_argument(
        '-v',
        '--verbose',
        action='store_true',
        help="Show detailed per-file diagnostics.",
    )
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_arguments(argv)

    print("Zwift to Garmin FIT converter")
    print()

    input_path = Path(args.input)
    if not input_path.exists():
        print(f"Error: Input path does not exist: {input_path}")
        return 1

    if input_path.is_dir():
        files = find_fit_files(input_path, args.suffix)
        if not files:
            print(f"✗ No FIT files found in directory: {input_path.resolve()}")
            return 1
        print(f"Found {len(files)} FIT file(s) in: {input_path.resolve()}")
        successful, total = convert_batch(
            files, args.preset, args.suffix, verbose=args.verbose
        )
    else:
        output_path = Path(args.output) if args.output else output_path_for(input_path, args.suffix)
        try:
            convert(input_path, output_path, args.preset, verbose=args.verbose)
        except Exception as exc:  # pylint: disable=broad-except
            print(f"✗ Error converting {input_path.name}: {exc}")
            return 1
        print(f"✓ Conversion completed! Upload '{output_path}' to Garmin Connect.")
        return 0

    if successful == 0:
        print("⚠ All conversions failed. See messages above.")
        return 1
    if successful < total:
        print(f"⚠ {total - successful} file(s) failed to convert.")
    else:
        print("✓ All conversions succeeded.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
