"""
Synthetic directory objects for the test suite.

`build_page` lays out one page the way a file server would: header
record, directory header on page 0, entries at the requested slots with
their continuation records marked allocated in the bitmap.
"""

import struct
import pytest

from afsdir_driver import (
    PAGE_SIZE, EPP, DHE, MAGIC, RECSIZE, OLDMAXPAGES, NHASHENT,
    PAGE_HEADER_FORMAT, ENTRY_FORMAT, ENTRY_PREFIX, name_to_records,
)


def build_page(index=0, entries=(), allocated=None, pgcount=1, tag=MAGIC,
               hash_table=None, fill=None):
    """
    Args:
        entries: (slot, vnode, unique, name_bytes) tuples.
        allocated: Explicit set of allocated slots, overriding the
            bitmap derived from the header and `entries`.
        hash_table: {bucket: slot} for page 0.
        fill: {offset: bytes} written last, for leftover/garbage bytes.
    """
    data = bytearray(PAGE_SIZE)
    bits = set(range(1 + DHE)) if index == 0 else {0}

    for slot, vnode, unique, name in entries:
        offset = slot * RECSIZE
        struct.pack_into(ENTRY_FORMAT, data, offset, 1, 0, 0, vnode, unique)
        start = offset + ENTRY_PREFIX
        raw = (name + b"\0")[:PAGE_SIZE - start]
        data[start:start + len(raw)] = raw
        bits.update(range(slot, min(EPP, slot + name_to_records(len(name)))))

    if allocated is not None:
        bits = set(allocated)

    bitmap = bytearray(8)
    for slot in bits:
        bitmap[slot >> 3] |= 1 << (slot & 7)
    struct.pack_into(PAGE_HEADER_FORMAT, data, 0,
                     pgcount if index == 0 else 0, tag, EPP - len(bits), bytes(bitmap))

    if index == 0:
        alloc_map = bytearray([EPP] * OLDMAXPAGES)
        alloc_map[0] = EPP - len(bits)
        data[RECSIZE:RECSIZE + OLDMAXPAGES] = alloc_map
        table = [0] * NHASHENT
        for bucket, slot in (hash_table or {}).items():
            table[bucket] = slot
        struct.pack_into(f'>{NHASHENT}H', data, RECSIZE + OLDMAXPAGES, *table)

    for offset, raw in (fill or {}).items():
        data[offset:offset + len(raw)] = raw
    return bytes(data)


@pytest.fixture
def page_builder():
    return build_page
