#!/usr/bin/env python3
"""
dirobj - Decode and analyze AFS directory objects.

Modes:
    dump    Full structural trace: page headers, directory header,
            every record with decoded fields and raw bytes.
    list    One line per entry: "<vnode>.<uniquifier> <name>", in
            on-disk order.
    stat    Entry/page/record totals, per-page fragmentation and
            remaining capacity by entry size ("stats" is accepted too).

The directory object is read from FILE, or standard input when FILE is
omitted or "-".
"""

import os
import sys
import argparse
import contextlib
import logging

from afsdir_driver import (
    __version__, DirectoryObject, DirectoryFormatError, DirEntry,
    EPP, MAX_PAGES, MAX_RECORDS, records_to_name_range,
    fragmentation_percent, render_bytes, walk_page, hex_dump,
)

logger = logging.getLogger(__name__)

FRAG_BUCKETS = 10


def dump_object(stream, out=None):
    """Print a structural trace of every page. Returns the page count."""
    pages = 0
    for page in DirectoryObject(stream):
        pages += 1
        print(f"page {page.index}: pgcount={page.pgcount} tag={page.tag} "
              f"freecount={page.freecount}", file=out)
        print(f"  bitmap {page.bitmap_string()}", file=out)
        print(hex_dump(page.slot_bytes(0), indent="    "), file=out)

        if page.dir_header is not None:
            header = page.dir_header
            print("  dirheader", file=out)
            for i, value in header.used_pages():
                print(f"    allomap[{i}] = {value}", file=out)
            for i, value in header.used_buckets():
                print(f"    hash[{i}] = {value}", file=out)

        for record in walk_page(page):
            if isinstance(record, DirEntry):
                state = "used" if record.allocated else "free"
                print(f"  {record.slot:2d} dirent {state} flag=0x{record.flag:02x} "
                      f"length={record.length} next={record.next} "
                      f"fid={record.fid_string} records={record.records} "
                      f"name=\"{record.display_name}\"", file=out)
                leftover = record.leftover.rstrip(b'\0')
                if leftover:
                    print(f"     leftover \"{render_bytes(leftover)}\"", file=out)
                data = record.raw[:32]
            else:
                print(f"  {record.slot:2d} cont  \"{record.text}\"", file=out)
                data = record.raw
            print(hex_dump(data, offset=record.slot * 32, indent="    "), file=out)
    return pages


def list_object(stream, out=None):
    """Print "<vnode>.<uniquifier> <name>" for each entry. Returns the count."""
    count = 0
    for page in DirectoryObject(stream):
        for record in walk_page(page):
            if isinstance(record, DirEntry) and record.allocated:
                print(f"{record.fid_string} {record.display_name}", file=out)
                count += 1
    return count


class DirectoryStats:
    """
    Accumulates occupancy and fragmentation figures page by page.

    Attributes:
        entries (int): Allocated entries.
        pages (int): Pages read.
        records_used (int): Header records plus records spanned by entries.
        records_free (int): Unallocated records.
        frag_buckets (list): Page counts per 10% fragmentation band.
        used_buckets (dict): Entry count per record span (1..MAX_RECORDS).
        free_buckets (dict): Positions where an entry of each span would
            still fit, including projected empty pages once finished.
    """
    def __init__(self):
        self.entries = 0
        self.pages = 0
        self.records_used = 0
        self.records_free = 0
        self.frag_buckets = [0] * FRAG_BUCKETS
        self.used_buckets = {k: 0 for k in range(1, MAX_RECORDS + 1)}
        self.free_buckets = {k: 0 for k in range(1, MAX_RECORDS + 1)}
        self.projected_pages = 0

    def add_page(self, page):
        self.pages += 1
        self.records_used += page.first_entry_slot

        for record in walk_page(page):
            if not isinstance(record, DirEntry):
                continue
            if record.allocated:
                self.entries += 1
                self.records_used += record.records
                self.used_buckets[record.records] += 1
            else:
                self.records_free += 1

        runs = [length for _, length in page.free_runs()]
        self._add_runs(runs)
        total_free = sum(runs)
        largest = max(runs) if runs else 0
        percent = fragmentation_percent(total_free, largest)
        self.frag_buckets[min(percent // 10, FRAG_BUCKETS - 1)] += 1

    def _add_runs(self, runs, weight=1):
        for k in self.free_buckets:
            self.free_buckets[k] += weight * sum(run // k for run in runs)

    def finish(self):
        """Fold the pages the object could still grow into."""
        self.projected_pages = MAX_PAGES - self.pages
        self._add_runs([EPP - 1], weight=self.projected_pages)

    @property
    def records_total(self):
        return self.pages * EPP


def stat_object(stream):
    """Read the whole object and return its DirectoryStats."""
    stats = DirectoryStats()
    for page in DirectoryObject(stream):
        stats.add_page(page)
    stats.finish()
    return stats


def format_stats(stats):
    """Render DirectoryStats as the fixed-format report."""
    lines = [
        f"entries: {stats.entries}",
        f"pages used: {stats.pages}",
        f"pages available: {MAX_PAGES - stats.pages}",
        f"records total: {stats.records_total}",
        f"records used: {stats.records_used}",
        f"records free: {stats.records_free}",
        "",
        "fragmentation   pages  percent",
    ]
    for i, count in enumerate(stats.frag_buckets):
        label = f"{i * 10}-{i * 10 + 9}%" if i < FRAG_BUCKETS - 1 else "90-100%"
        share = 100.0 * count / stats.pages if stats.pages else 0.0
        lines.append(f"  {label:<12} {count:6d}  {share:6.1f}%")

    lines.append("")
    lines.append("records  name length    used  available")
    for k in range(1, MAX_RECORDS + 1):
        low, high = records_to_name_range(k)
        lines.append(f"  {k:5d}  {low:4d}-{high:<4d}  {stats.used_buckets[k]:8d}  "
                     f"{stats.free_buckets[k]:9d}")
    return "\n".join(lines)


def stats_report(stream, out=None):
    stats = stat_object(stream)
    print(format_stats(stats), file=out)
    return stats


MODES = {
    'dump': dump_object,
    'list': list_object,
    'stat': stats_report,
    'stats': stats_report,
}


def open_input(filename):
    """Binary stream for `filename`; standard input for None or '-'."""
    if filename in (None, '-'):
        return contextlib.nullcontext(sys.stdin.buffer)
    return open(filename, 'rb')


def build_parser():
    # Allow overriding program name via environment variable (for wrapper scripts)
    prog_name = os.environ.get("DIROBJ_PROG_NAME")

    parser = argparse.ArgumentParser(
        prog=prog_name,
        description="Decode and analyze AFS directory objects.",
        epilog="Modes: dump, list, stat (stats), help, version. "
               "Example: dirobj list volume.dir"
    )
    parser.add_argument("mode", help="dump | list | stat | stats | help | version")
    parser.add_argument("file", nargs="?", help="Directory object (default: standard input)")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    level = logging.DEBUG if args.debug else logging.WARNING
    logging.basicConfig(level=level, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    mode = args.mode.lower()
    if mode == 'help':
        parser.print_help()
        return 0
    if mode == 'version':
        print(f"{parser.prog} {__version__}")
        return 0

    handler = MODES.get(mode)
    if handler is None:
        parser.print_usage(sys.stderr)
        print(f"Error: unknown mode '{args.mode}'", file=sys.stderr)
        return 1

    try:
        with open_input(args.file) as stream:
            handler(stream, sys.stdout)
    except (DirectoryFormatError, OSError) as e:
        logger.debug("decode failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
