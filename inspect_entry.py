#!/usr/bin/env python3
"""Locate one entry by name and show the records it occupies."""

import os
import sys
import argparse
from afsdir_driver import (
    DirectoryObject, DirectoryFormatError, DirEntry, walk_page, records_to_name_range,
    hex_dump,
)


def find_entry(stream, name):
    """First allocated entry called `name` (bytes), in on-disk order, or None."""
    for page in DirectoryObject(stream):
        for record in walk_page(page):
            if isinstance(record, DirEntry) and record.allocated and record.name == name:
                return record
    return None


def inspect_entry(filename, target_name):
    print(f"Inspecting {target_name} in {filename}...")
    with open(filename, 'rb') as f:
        entry = find_entry(f, os.fsencode(target_name))

    if entry is None:
        print("Entry not found.")
        return False

    low, high = records_to_name_range(entry.records)
    print(f"Found entry at page {entry.page_index}, slot {entry.slot}")
    print(f"FID: {entry.fid_string}")
    print(f"Flag: 0x{entry.flag:02X}  Next: {entry.next}")
    print(f"Name length: {len(entry.name)} -> {entry.records} records (holds {low}-{high})")
    print("Raw records:")
    print(hex_dump(entry.raw, offset=entry.slot * 32, indent="  "))
    return True


def main():
    prog_name = os.environ.get("DIROBJ_PROG_NAME")
    parser = argparse.ArgumentParser(prog=prog_name, description="Show the raw records of one directory entry.")
    parser.add_argument("file", help="Directory object file")
    parser.add_argument("name", help="Entry name to look up")
    args = parser.parse_args()

    try:
        found = inspect_entry(args.file, args.name)
    except (DirectoryFormatError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    sys.exit(0 if found else 1)


if __name__ == "__main__":
    main()
