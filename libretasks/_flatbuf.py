"""FlatBuffer read primitives using only struct. No flatbuffers runtime.

A table is addressed as a ``(vtable_pos, table_pos)`` pair inside *buf*.
All positions are relative to the start of *buf*, which may be a
``memoryview`` slice of a larger backing buffer; that is how the metadata
flatbuffer embedded in a model buffer slot gets its own, independent root.

Out-of-range reads surface as ``struct.error`` / ``IndexError``; the public
parse entry points convert those into ``ParseError``.
"""

import struct

_U8 = struct.Struct("<B")
_I8 = struct.Struct("<b")
_U16 = struct.Struct("<H")
_U32 = struct.Struct("<I")
_I32 = struct.Struct("<i")
_I64 = struct.Struct("<q")
_U64 = struct.Struct("<Q")
_F32 = struct.Struct("<f")


def _check(buf, off, size):
    if off < 0 or off + size > len(buf):
        raise IndexError(f"read of {size} bytes at {off} outside buffer of {len(buf)} bytes")


def u8(buf, off):
    _check(buf, off, 1)
    return _U8.unpack_from(buf, off)[0]

def i8(buf, off):
    _check(buf, off, 1)
    return _I8.unpack_from(buf, off)[0]

def u16(buf, off):
    _check(buf, off, 2)
    return _U16.unpack_from(buf, off)[0]

def u32(buf, off):
    _check(buf, off, 4)
    return _U32.unpack_from(buf, off)[0]

def i32(buf, off):
    _check(buf, off, 4)
    return _I32.unpack_from(buf, off)[0]

def i64(buf, off):
    _check(buf, off, 8)
    return _I64.unpack_from(buf, off)[0]

def u64(buf, off):
    _check(buf, off, 8)
    return _U64.unpack_from(buf, off)[0]

def f32(buf, off):
    _check(buf, off, 4)
    return _F32.unpack_from(buf, off)[0]


_SCALAR_READERS = {
    "u8": (u8, 1), "i8": (i8, 1), "u16": (u16, 2), "u32": (u32, 4),
    "i32": (i32, 4), "i64": (i64, 8), "u64": (u64, 8), "f32": (f32, 4),
}


# ── Tables ──────────────────────────────────────────────────────────────────

def read_table(buf, table_pos):
    """Return (vtable, table_pos) for a flatbuffer table at *table_pos*."""
    vtable = table_pos - i32(buf, table_pos)
    _check(buf, vtable, 4)
    return vtable, table_pos


def root_table(buf):
    """Return the root table of the flatbuffer in *buf*."""
    return read_table(buf, u32(buf, 0))


def file_identifier(buf):
    """Return the 4-byte file identifier that follows the root offset."""
    _check(buf, 4, 4)
    return bytes(buf[4:8])


def field_offset(buf, vtable, table_pos, field_index):
    """Return absolute offset of field *field_index* (0-based) or None."""
    vtable_len = u16(buf, vtable)
    voffset_pos = 4 + field_index * 2  # skip vtable_size(2) + table_size(2)
    if voffset_pos + 2 > vtable_len:
        return None
    off = u16(buf, vtable + voffset_pos)
    if off == 0:
        return None
    return table_pos + off


def read_offset(buf, pos):
    """Follow a uoffset_t at *pos* and return the target position."""
    return pos + u32(buf, pos)


def read_vector(buf, vec_field_pos):
    """Return (count, first_element_pos) for a flatbuffer vector field."""
    vec_pos = read_offset(buf, vec_field_pos)
    count = u32(buf, vec_pos)
    return count, vec_pos + 4


def read_string(buf, str_field_pos):
    """Read a flatbuffer string at the offset stored at *str_field_pos*."""
    str_pos = read_offset(buf, str_field_pos)
    length = u32(buf, str_pos)
    _check(buf, str_pos + 4, length)
    return bytes(buf[str_pos + 4 : str_pos + 4 + length]).decode("utf-8")


# ── Typed field accessors ───────────────────────────────────────────────────

def scalar_field(buf, table, idx, kind, default=0):
    """Read a scalar field of type *kind* ("u8", "i32", "f32", ...)."""
    f = field_offset(buf, table[0], table[1], idx)
    if f is None:
        return default
    return _SCALAR_READERS[kind][0](buf, f)


def string_field(buf, table, idx, default=None):
    f = field_offset(buf, table[0], table[1], idx)
    if f is None:
        return default
    return read_string(buf, f)


def table_field(buf, table, idx):
    """Return the sub-table stored in field *idx*, or None."""
    f = field_offset(buf, table[0], table[1], idx)
    if f is None:
        return None
    return read_table(buf, read_offset(buf, f))


def table_vector_field(buf, table, idx):
    """Return the list of tables in a vector-of-tables field (empty if absent)."""
    f = field_offset(buf, table[0], table[1], idx)
    if f is None:
        return []
    count, start = read_vector(buf, f)
    return [read_table(buf, read_offset(buf, start + i * 4)) for i in range(count)]


def scalar_vector_field(buf, table, idx, kind):
    """Return the list of scalars in a vector field (empty if absent)."""
    f = field_offset(buf, table[0], table[1], idx)
    if f is None:
        return []
    reader, size = _SCALAR_READERS[kind]
    count, start = read_vector(buf, f)
    _check(buf, start, count * size)
    return [reader(buf, start + i * size) for i in range(count)]


def string_vector_field(buf, table, idx):
    f = field_offset(buf, table[0], table[1], idx)
    if f is None:
        return []
    count, start = read_vector(buf, f)
    return [read_string(buf, start + i * 4) for i in range(count)]


def byte_vector_field(buf, table, idx):
    """Return (start, length) of a [ubyte] vector field, or None if absent."""
    f = field_offset(buf, table[0], table[1], idx)
    if f is None:
        return None
    count, start = read_vector(buf, f)
    _check(buf, start, count)
    return start, count


def union_field(buf, table, type_idx):
    """Return (union_type, table_or_None) for a union at slots type_idx/type_idx+1."""
    union_type = scalar_field(buf, table, type_idx, "u8", 0)
    if union_type == 0:
        return 0, None
    return union_type, table_field(buf, table, type_idx + 1)
