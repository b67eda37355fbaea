#!/usr/bin/env python3
"""
Dirzap - AFS Directory Object Page Inspector.

A utility to inspect the raw pages of an AFS directory object.
Allows navigating through pages and viewing hex dumps with the decoded
page header.
"""

import sys
import os
import argparse
from afsdir_driver import DirectoryObject, DirectoryFormatError, hex_dump


def show_page(page, total):
    print(f"\n--- Page {page.index} of {total} | pgcount {page.pgcount} "
          f"| tag {page.tag} | freecount {page.freecount} ---")
    print(f"bitmap {page.bitmap_string()}")
    print(hex_dump(page.data))


def browse(pages, read_command=input):
    """Interactive page loop. Returns when the user quits."""
    index = 0
    while True:
        show_page(pages[index], len(pages))

        cmd = read_command("\n[N]ext, [P]rev, [J]ump, [Q]uit > ").lower().strip()
        if not cmd:
            cmd = 'n'

        if cmd == 'q':
            break
        elif cmd == 'n':
            index = min(index + 1, len(pages) - 1)
        elif cmd == 'p':
            index = max(index - 1, 0)
        elif cmd == 'j':
            try:
                p_in = read_command(f"Page [{index}]: ")
                if p_in:
                    target = int(p_in)
                    if 0 <= target < len(pages):
                        index = target
                    else:
                        print(f"No page {target}.")
            except ValueError:
                print("Invalid input.")


def main():
    # Allow overriding program name via environment variable (for wrapper scripts)
    prog_name = os.environ.get("DIROBJ_PROG_NAME")

    parser = argparse.ArgumentParser(
        prog=prog_name,
        description="Dirzap - AFS Directory Object Page Inspector"
    )
    parser.add_argument("file", nargs="?", help="Directory object file")

    args = parser.parse_args()

    filename = args.file

    if not filename:
        files = [f for f in os.listdir('.') if f.lower().endswith('.dir')]

        if files:
            print("Error: No file specified.")
            print("\nDirectory objects in current directory:")
            for f in sorted(files):
                print(f"  {f}")
        else:
            print("Error: No file specified and no directory objects found in current directory.")
        print("Usage: dirzap <filename>")
        sys.exit(1)

    if not os.path.exists(filename):
        print(f"Error: File '{filename}' not found.")
        sys.exit(1)

    print(f"\nLoading {filename}...")
    try:
        with open(filename, 'rb') as f:
            pages = list(DirectoryObject(f))
    except (DirectoryFormatError, OSError) as e:
        print(f"Error loading directory object: {e}")
        sys.exit(1)
    print(f"Pages: {len(pages)}")

    browse(pages)


if __name__ == "__main__":
    main()
