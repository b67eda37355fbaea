#!/usr/bin/env python3
"""
AFS Directory Object Driver Module.

This module decodes the page-based directory objects AFS file servers and
clients use to store directory contents (name -> vnode/uniquifier). A
directory object is a sequence of 2048-byte pages, each split into 64
records of 32 bytes. Record 0 of every page is the page header; on page 0
the next 12 records hold the directory header (page allocation map and
hash table). Every other record is either the base record of an entry or
a continuation record holding overflow name bytes.

Classes:
    DirectoryFormatError: Raised when the bytes are not a directory object.
    Page: One decoded 2048-byte page (header fields, allocation bitmap).
    DirectoryHeader: Page allocation map and hash table from page 0.
    DirEntry: Base record of a directory entry.
    ContinuationRecord: Overflow name record belonging to a DirEntry.
    DirectoryObject: Reads pages one at a time from a byte stream.

Functions:
    name_to_records(name_length): Records consumed by a name.
    records_to_name_range(count): Name lengths stored in `count` records.
    free_runs(allocation): Contiguous free runs in an allocation vector.
    fragmentation_percent(total_free, largest_run): Page fragmentation.
    decode_record(page, slot): Decode one slot as an entry base record.
    walk_page(page): Yield every record of a page in on-disk order.
    hex_dump(data, offset, indent): Offset, hex and ASCII dump lines.
"""

import errno
import logging
import struct

__version__ = "1.0.0"

logger = logging.getLogger(__name__)

# Constants
PAGE_SIZE = 2048        # AFS_PAGESIZE
MAX_PAGES = 1023        # Pages in an expanded directory object
OLDMAXPAGES = 128       # Entries in the page allocation map (legacy cap)
EPP = 64                # Entries (records) per page
RECSIZE = 32            # Bytes per record
NHASHENT = 128          # Hash buckets
DHE = 12                # Records used by the directory header on page 0
MAXNAMELEN = 256
OLDNAMESIZE = 16        # Inline name bytes in the original entry layout
MAGIC = 1234            # Page header tag

# Multi-byte fields are stored in network byte order.
PAGE_HEADER_FORMAT = '>HHB8s'   # pgcount, tag, freecount, freebitmap
ENTRY_FORMAT = '>BBHII'         # flag, length, next, vnode, unique
ENTRY_PREFIX = struct.calcsize(ENTRY_FORMAT)

ALLOMAP_OFFSET = RECSIZE
HASHTABLE_OFFSET = ALLOMAP_OFFSET + OLDMAXPAGES


class DirectoryFormatError(ValueError):
    """The byte stream is not a well-formed directory object."""


def name_to_records(name_length):
    """
    Return the number of records an entry with a name of `name_length`
    bytes occupies (base record plus continuations).

    The terminating NUL is counted. Names of 16-19 bytes take a
    continuation record even though they would fit in the base record;
    file servers have always allocated this way, so existing objects
    depend on it.
    """
    return 1 + (name_length + 1 + OLDNAMESIZE - 1) // RECSIZE


MAX_RECORDS = name_to_records(MAXNAMELEN)


def records_to_name_range(count):
    """
    Return the inclusive (min, max) name lengths that occupy exactly
    `count` records, clamped to [1, MAXNAMELEN].
    A zero-length name still maps to 1 record, but no range includes 0.

    Raises:
        ValueError: If `count` is outside 1..MAX_RECORDS.
    """
    if count < 1 or count > MAX_RECORDS:
        raise ValueError(f"record count {count} outside 1..{MAX_RECORDS}")
    low = RECSIZE * (count - 1) - OLDNAMESIZE
    high = RECSIZE * count - OLDNAMESIZE - 1
    return max(1, low), min(MAXNAMELEN, high)


def free_runs(allocation, start=0):
    """
    Find contiguous runs of free slots.

    Args:
        allocation (list): One bool per slot, True = allocated.
        start (int): First slot to consider.

    Returns:
        list: (first_slot, length) for every free run, in slot order.
    """
    runs = []
    run_start = None
    for slot in range(start, len(allocation)):
        if allocation[slot]:
            if run_start is not None:
                runs.append((run_start, slot - run_start))
                run_start = None
        elif run_start is None:
            run_start = slot
    if run_start is not None:
        runs.append((run_start, len(allocation) - run_start))
    return runs


def fragmentation_percent(total_free, largest_run):
    """0 when all free slots are contiguous, approaching 100 as they scatter."""
    if total_free <= 0:
        return 0
    return int(round(100 * (1 - largest_run / total_free)))


def render_name(raw):
    """Decode name bytes for display, replacing unprintable characters."""
    text = raw.decode('utf-8', errors='replace')
    return "".join(c if c.isprintable() and c != "\ufffd" else "?" for c in text)


def render_bytes(raw):
    """Printable ASCII view of arbitrary bytes (leftover or garbage text)."""
    return "".join(chr(b) if 32 <= b <= 126 else '.' for b in raw)


def hex_dump(data, offset=0, indent=""):
    """Generate a hex dump of the provided data."""
    if not data:
        return f"{indent}<No Data>"

    output = []
    for i in range(0, len(data), 16):
        chunk = data[i:i+16]
        hex_part = " ".join(f"{b:02X}" for b in chunk)
        ascii_part = render_bytes(chunk)
        output.append(f"{indent}{offset + i:04X}  {hex_part:<48}  |{ascii_part}|")
    return "\n".join(output)


class Page:
    """
    A single directory page.

    Attributes:
        index (int): Zero-based page number within the object.
        data (bytes): The raw 2048 bytes.
        pgcount (int): Page count (meaningful on page 0 only).
        tag (int): Page tag, MAGIC for a valid page.
        freecount (int): Free-record count as stored by the server.
        bitmap (bytes): 8-byte allocation bitmap, bit i = record i.
        dir_header (DirectoryHeader): Set for page 0 only.
    """
    def __init__(self, index, data):
        self.index = index
        self.data = bytes(data)
        self.pgcount, self.tag, self.freecount, self.bitmap = struct.unpack_from(
            PAGE_HEADER_FORMAT, self.data, 0)
        self.dir_header = None

    @property
    def first_entry_slot(self):
        """First slot that can hold an entry (after the header records)."""
        if self.index == 0:
            return 1 + DHE
        return 1

    def is_allocated(self, slot):
        return bool(self.bitmap[slot >> 3] & (1 << (slot & 7)))

    def allocation(self):
        """Allocation vector, one bool per slot."""
        return [self.is_allocated(slot) for slot in range(EPP)]

    def bitmap_string(self):
        """Bitmap as a '1'/'0' string, slot 0 first."""
        return "".join('1' if used else '0' for used in self.allocation())

    def slot_bytes(self, slot, count=1):
        offset = slot * RECSIZE
        return self.data[offset:offset + count * RECSIZE]

    def free_runs(self):
        """Free runs among the slots available for entries."""
        return free_runs(self.allocation(), self.first_entry_slot)


class DirectoryHeader:
    """
    Directory header stored in records 1-12 of page 0.

    Attributes:
        alloc_map (bytes): One byte per page (OLDMAXPAGES), free records.
        hash_table (tuple): NHASHENT chain heads, 0 = empty bucket.
    """
    def __init__(self, page):
        data = page.data
        self.alloc_map = data[ALLOMAP_OFFSET:ALLOMAP_OFFSET + OLDMAXPAGES]
        self.hash_table = struct.unpack_from(f'>{NHASHENT}H', data, HASHTABLE_OFFSET)

    def used_pages(self):
        """(page, value) for allocation map entries that differ from EPP."""
        return [(i, v) for i, v in enumerate(self.alloc_map) if v != EPP]

    def used_buckets(self):
        """(bucket, slot) for non-empty hash chains."""
        return [(i, v) for i, v in enumerate(self.hash_table) if v]


class DirEntry:
    """
    Base record of a directory entry.

    Free slots are decoded the same way so their leftover bytes can be
    shown; `allocated` tells the two apart.

    Attributes:
        page_index (int), slot (int): Location of the base record.
        allocated (bool): Bitmap bit of the base record.
        flag, length, next, vnode, unique (int): Fixed fields.
        name (bytes): Name without the terminating NUL.
        records (int): Records spanned (1 for free slots).
        leftover (bytes): Bytes after the name terminator up to the end
            of the span, or the whole record for a free slot.
        raw (bytes): All bytes of the span.
    """
    def __init__(self, page_index, slot, allocated, fields, name, records, leftover, raw):
        self.page_index = page_index
        self.slot = slot
        self.allocated = allocated
        self.flag, self.length, self.next, self.vnode, self.unique = fields
        self.name = name
        self.records = records
        self.leftover = leftover
        self.raw = raw

    @property
    def fid(self):
        return (self.vnode, self.unique)

    @property
    def fid_string(self):
        return f"{self.vnode}.{self.unique}"

    @property
    def display_name(self):
        return render_name(self.name)

    def __repr__(self):
        return (f"DirEntry(page={self.page_index}, slot={self.slot}, "
                f"fid={self.fid_string}, name={self.name!r}, records={self.records})")


class ContinuationRecord:
    """A record holding overflow name bytes of the entry before it."""
    def __init__(self, page_index, slot, raw):
        self.page_index = page_index
        self.slot = slot
        self.raw = raw

    @property
    def text(self):
        return render_bytes(self.raw)


def decode_record(page, slot):
    """
    Decode `slot` of `page` as an entry base record.

    For an allocated slot the name is read across following records and
    the span is derived from its length; a free slot is confined to its
    own 32 bytes.
    """
    data = page.data
    offset = slot * RECSIZE
    fields = struct.unpack_from(ENTRY_FORMAT, data, offset)
    allocated = page.is_allocated(slot)
    name_start = offset + ENTRY_PREFIX

    if allocated:
        limit = min(PAGE_SIZE, name_start + MAXNAMELEN + 1)
    else:
        limit = offset + RECSIZE

    nul = data.find(b'\0', name_start, limit)
    if nul == -1:
        name = data[name_start:limit][:MAXNAMELEN]
        if allocated:
            logger.debug("page %d slot %d: unterminated name", page.index, slot)
    else:
        name = data[name_start:nul]

    if not allocated:
        return DirEntry(page.index, slot, False, fields, name, 1,
                        page.slot_bytes(slot), page.slot_bytes(slot))

    records = name_to_records(len(name))
    if slot + records > EPP:
        logger.debug("page %d slot %d: %d records run past page end",
                     page.index, slot, records)
        records = EPP - slot
    span_end = offset + records * RECSIZE
    leftover = data[nul + 1:span_end] if nul != -1 else b''
    return DirEntry(page.index, slot, True, fields, name, records,
                    leftover, data[offset:span_end])


def walk_page(page):
    """
    Yield every record of `page` after the header records, in slot order.

    An allocated base record is followed by one ContinuationRecord for
    each further record its name spans; free slots advance one at a time.
    """
    slot = page.first_entry_slot
    while slot < EPP:
        entry = decode_record(page, slot)
        yield entry
        for extra in range(slot + 1, slot + entry.records):
            yield ContinuationRecord(page.index, extra, page.slot_bytes(extra))
        slot += entry.records


class DirectoryObject:
    """
    Sequential page reader over a binary stream.

    Iterating yields validated Page objects until end of stream. Errors
    abort the iteration:
        DirectoryFormatError: empty stream, bad tag, more than MAX_PAGES.
        OSError (EIO): the stream ends in the middle of a page.
    """
    def __init__(self, stream):
        self.stream = stream
        self.pages_read = 0

    def _read_exact(self):
        chunks = []
        remaining = PAGE_SIZE
        while remaining > 0:
            chunk = self.stream.read(remaining)
            if not chunk:
                break
            if len(chunk) > remaining:
                raise OSError(errno.EIO,
                              f"read returned {len(chunk)} bytes, asked for {remaining}")
            chunks.append(chunk)
            remaining -= len(chunk)
        return b"".join(chunks)

    def read_page(self):
        """
        Read the next page.

        Returns:
            Page: The decoded page, or None at end of object.
        """
        data = self._read_exact()
        if not data:
            if self.pages_read == 0:
                raise DirectoryFormatError("empty directory object (no pages)")
            return None
        index = self.pages_read
        if len(data) < PAGE_SIZE:
            raise OSError(errno.EIO,
                          f"short read on page {index}: {len(data)} of {PAGE_SIZE} bytes")
        if index >= MAX_PAGES:
            raise DirectoryFormatError(f"too many pages (limit is {MAX_PAGES})")

        page = Page(index, data)
        if page.tag != MAGIC:
            raise DirectoryFormatError(
                f"not a directory object (page {index} tag {page.tag}, expected {MAGIC})")
        if index == 0:
            page.dir_header = DirectoryHeader(page)
        self.pages_read += 1
        logger.debug("read page %d: pgcount=%d freecount=%d",
                     index, page.pgcount, page.freecount)
        return page

    def __iter__(self):
        while True:
            page = self.read_page()
            if page is None:
                return
            yield page
