"""
PX4 ULog Parser
===============
Binary format description and decoder for PX4 ULog (.ulg) flight logs.

Ref: https://docs.px4.io/main/en/dev_log/ulog_file_format.html

FILE STRUCTURE
--------------
A 16-byte file header followed by a stream of tagged messages:

    Offset  Size   Type        Description
    ------  ----   ----        -----------
    0       7      uint8[7]    Magic bytes: 'ULog' 0x01 0x12 0x35
    7       1      uint8       File format version
    8       8      uint64 LE   Log start time reference (us)
    16      ...                Message stream


Every message starts with a 3-byte header:

    Offset  Size   Type        Description
    ------  ----   ----        -----------
    0       2      uint16 LE   Payload size (bytes, header excluded)
    2       1      char        Message type tag
    3       N      bytes       Payload


MESSAGE TYPES
-------------
Tag   Name                  Payload
---   ----                  -------
'B'   Flag bits             compat[8], incompat[8], appended_offsets uint64[3]
'I'   Information           key_len, "<type> <name>", value
'F'   Format definition     "<name>:<type> <field>;<type> <field>;..."
'P'   Parameter             same framing as 'I' (uint32_t/int32_t/float)
'M'   Multi information     is_continued, key_len, "<type> <name>", value
'A'   Add logged message    multi_id uint8, msg_id uint16, format name
'D'   Logged data           msg_id uint16, fields as declared by the format
'L'   Logged string         log_level uint8, timestamp uint64, text
'S'   Synchronisation       sync magic uint8[8]
'O'   Dropout               duration uint16 (ignored)
'Q'   Default parameter     (ignored)

DECODING
--------
Pass 1 walks the message stream once and catalogues formats, parameters,
info entries, text messages and the registered logged-message instances.
'D' payloads are skipped there because their layout is only known once every
'F' record has been seen.

The formats are then flattened (arrays expanded, embedded formats inlined,
trailing padding removed) into fixed-width layouts.

Pass 2 decodes each instance by searching the whole buffer for its 5-byte
anchor (payload size, 'D', msg_id) and gathering every field as a numpy
column.
"""

import logging
import os
import re
import struct
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Dict, List, NamedTuple, Optional, Tuple, Union

import numpy as np


logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MAGIC = b'\x55\x4C\x6F\x67\x01\x12\x35'
HEADER_SIZE = 16      # magic(7) + version(1) + timestamp(8)
MSG_HEADER_SIZE = 3   # size(2) + type(1)
ANCHOR_SIZE = 5       # size(2) + type(1) + msg_id(2)
MAX_PAYLOAD_SIZE = 0xFFFF

# Message type tags
MSG_FLAG_BITS       = ord('B')
MSG_INFO            = ord('I')
MSG_FORMAT          = ord('F')
MSG_PARAMETER       = ord('P')
MSG_INFO_MULTIPLE   = ord('M')
MSG_ADD_LOGGED      = ord('A')
MSG_LOGGED_DATA     = ord('D')
MSG_LOGGING         = ord('L')
MSG_SYNC            = ord('S')
MSG_DROPOUT         = ord('O')
MSG_PARAM_DEFAULT   = ord('Q')

MESSAGE_NAMES = {
    MSG_FLAG_BITS:     'Flag Bits',
    MSG_INFO:          'Information',
    MSG_FORMAT:        'Format Definition',
    MSG_PARAMETER:     'Parameter',
    MSG_INFO_MULTIPLE: 'Multi Information',
    MSG_ADD_LOGGED:    'Add Logged Message',
    MSG_LOGGED_DATA:   'Logged Data',
    MSG_LOGGING:       'Logged String',
    MSG_SYNC:          'Synchronisation',
    MSG_DROPOUT:       'Dropout',
    MSG_PARAM_DEFAULT: 'Default Parameter',
}

# Smallest payload each catalogued message needs for its fixed part
_MIN_PAYLOAD = {
    MSG_FLAG_BITS:     40,
    MSG_INFO:          1,
    MSG_PARAMETER:     1,
    MSG_INFO_MULTIPLE: 2,
    MSG_ADD_LOGGED:    3,
    MSG_LOGGING:       9,
}

SYNC_MAGIC = bytes([0x2F, 0x73, 0x13, 0x20, 0x25, 0x0C, 0xBB, 0x12])

# Producers append fields named '_padding0' to round up the record size
PADDING_MARKER = 'padding0'

# Value stored for a field whose bytes run past the end of the file
MISSING = np.nan

# Incompat flag bit 0: data appended at the offsets in the flag bits message
INCOMPAT_DATA_APPENDED = 0x01


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class UlogError(ValueError):
    """Base class for fatal decoding errors.

    ``offset`` is the byte offset of the record that caused the failure, or
    None when the failure is not tied to a single record.
    """

    def __init__(self, message, offset=None):
        self.offset = offset
        if offset is not None:
            message = f'{message} (at byte {offset})'
        super().__init__(message)


class HeaderError(UlogError):
    pass


class SchemaError(UlogError):
    pass


class RecordTypeError(UlogError):
    '''An 'I' or 'P' record declares a value type we cannot decode.'''
    pass


# ---------------------------------------------------------------------------
# Primitive types
# ---------------------------------------------------------------------------

class Primitive(Enum):
    BOOL   = ('bool',     'u1')
    CHAR   = ('char',     'S1')
    INT8   = ('int8_t',   'i1')
    UINT8  = ('uint8_t',  'u1')
    INT16  = ('int16_t',  '<i2')
    UINT16 = ('uint16_t', '<u2')
    INT32  = ('int32_t',  '<i4')
    UINT32 = ('uint32_t', '<u4')
    INT64  = ('int64_t',  '<i8')
    UINT64 = ('uint64_t', '<u8')
    FLOAT  = ('float',    '<f4')
    DOUBLE = ('double',   '<f8')

    def __init__(self, type_name, dtype):
        self.type_name = type_name
        self.dtype = np.dtype(dtype)

    @property
    def width(self):
        return self.dtype.itemsize


_PRIMITIVES = {p.type_name: p for p in Primitive}
# the bare forms ('uint8') are accepted too
_PRIMITIVES.update({p.type_name[:-2]: p for p in Primitive if p.type_name.endswith('_t')})


def primitive_for(type_name):
    """Return the Primitive for a type name, or None if it is not primitive."""
    return _PRIMITIVES.get(type_name)


def type_width(type_name):
    """Byte width of a primitive type name.

    Returns None for anything that is not a primitive, which is how a
    reference to another declared format is recognised.
    """
    kind = _PRIMITIVES.get(type_name)
    return kind.width if kind is not None else None


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PrimitiveType:
    kind: Primitive


@dataclass(frozen=True)
class ArrayType:
    element: str
    length: int


@dataclass(frozen=True)
class NamedType:
    name: str


TypeSpec = Union[PrimitiveType, ArrayType, NamedType]

_ARRAY_RE = re.compile(r'^(?P<element>[^\[\]]+)\[(?P<length>[^\]]*)\]$')
_NAME_ARRAY_RE = re.compile(r'^(.*)(\[\d*\])$')


def parse_type_spec(text):
    """Parse a field type as written in a format definition.

    'float' -> PrimitiveType, 'float[4]' -> ArrayType, anything else is taken
    as the name of another format.
    """
    text = text.strip()
    match = _ARRAY_RE.match(text)
    if match:
        length = match.group('length').strip()
        if not length.isdigit() or int(length) <= 0:
            raise SchemaError(f"array size in '{text}' is not a positive integer")
        return ArrayType(match.group('element').strip(), int(length))

    kind = primitive_for(text)
    if kind is not None:
        return PrimitiveType(kind)

    return NamedType(text)


@dataclass(frozen=True)
class FormatDecl:
    name: str
    fields: Tuple[Tuple[str, str], ...]
    offset: Optional[int] = None


class FieldLayout(NamedTuple):
    name: str
    kind: Primitive
    offset: int
    width: int


@dataclass(frozen=True)
class ResolvedFormat:
    """Flat layout of a format.

    ``fields`` is the public view, ``padded_fields`` keeps the trailing
    padding so that ``size`` matches the on-disk record.
    """
    name: str
    fields: Tuple[FieldLayout, ...]
    padded_fields: Tuple[FieldLayout, ...]

    @property
    def size(self):
        return sum(f.width for f in self.padded_fields)

    @property
    def field_names(self):
        return [f.name for f in self.fields]


@dataclass(frozen=True)
class LoggedInstance:
    msg_id: int
    multi_id: int
    format_name: str

    @property
    def name(self):
        return f'{self.format_name}_{self.multi_id}'


@dataclass(frozen=True)
class FlagBits:
    compat_flags: bytes
    incompat_flags: bytes
    appended_offsets: Tuple[int, int, int]

    @property
    def has_appended_data(self):
        return bool(self.incompat_flags[0] & INCOMPAT_DATA_APPENDED)


class LogMessage(NamedTuple):
    timestamp: int
    level: int
    text: str


@dataclass(frozen=True)
class DecodeStats:
    """Counters for the conditions the decoder recovers from."""
    resyncs: int = 0
    malformed_records: int = 0
    truncated_records: int = 0
    truncated_samples: int = 0


@dataclass(frozen=True)
class DecodeResult:
    filename: Optional[str]
    version: int
    time_ref_utc: int
    flags: Optional[FlagBits]
    info: MappingProxyType
    params: MappingProxyType
    perf_messages: MappingProxyType
    messages: Tuple[LogMessage, ...]
    logs: MappingProxyType
    stats: DecodeStats


# ---------------------------------------------------------------------------
# Schema resolution
# ---------------------------------------------------------------------------

def is_padding(field_name):
    return PADDING_MARKER in field_name


def expand_arrays(fields):
    """Replace every array field by its numbered elements.

    Fields are scanned right to left so that splicing the expansion in does
    not move the fields still to be visited.
    """
    expanded = list(fields)
    for idx in range(len(expanded) - 1, -1, -1):
        name, type_text = expanded[idx]
        spec = parse_type_spec(type_text)
        if isinstance(spec, ArrayType):
            expanded[idx:idx + 1] = [(f'{name}_{i}', spec.element) for i in range(spec.length)]
    return expanded


def strip_padding(fields):
    """Drop the trailing padding fields (never the interleaved ones)."""
    end = len(fields)
    while end > 0 and is_padding(fields[end - 1][0]):
        end -= 1
    return fields[:end]


def _inline_embedded(decl, padded):
    """Expand embedded format references until every field is primitive.

    Each pending field carries the chain of formats it was expanded through;
    meeting a format already on its own chain is a reference cycle.
    """
    pending = [(name, type_name, (decl.name,)) for name, type_name in padded[decl.name]]

    while True:
        unresolved = [i for i, (_, type_name, _) in enumerate(pending) if type_width(type_name) is None]
        if not unresolved:
            break

        # right to left, as for the arrays
        for idx in reversed(unresolved):
            name, type_name, chain = pending[idx]
            if type_name not in padded:
                raise SchemaError(
                    f"field '{name}' of format '{decl.name}' has unknown type '{type_name}'",
                    decl.offset)
            if type_name in chain:
                cycle = ' -> '.join(chain + (type_name,))
                raise SchemaError(
                    f"format '{decl.name}' embeds itself ({cycle})", decl.offset)

            pending[idx:idx + 1] = [
                (f'{name}__{inner_name}', inner_type, chain + (type_name,))
                for inner_name, inner_type in padded[type_name]
            ]

    return [(name, type_name) for name, type_name, _ in pending]


def _layout(fields):
    layout = []
    offset = 0
    for name, type_name in fields:
        kind = primitive_for(type_name)
        layout.append(FieldLayout(name, kind, offset, kind.width))
        offset += kind.width
    return layout


def resolve_formats(decls):
    """Flatten every format definition into a fixed-width layout.

    Parameters
    ----------
    decls : dict
        Format name -> FormatDecl, as captured from the 'F' records.

    Returns
    -------
    dict
        Format name -> ResolvedFormat.

    Raises
    ------
    SchemaError
        If a field type is neither primitive nor a declared format, if
        formats embed each other in a cycle, or if an array size is invalid.
    """
    padded = {}
    for name, decl in decls.items():
        try:
            padded[name] = expand_arrays(decl.fields)
        except SchemaError as e:
            raise SchemaError(f"format '{name}': {e}", decl.offset) from e

    resolved = {}
    for name, decl in decls.items():
        flat = _inline_embedded(decl, padded)
        layout = _layout(flat)
        public = [f for f in layout[:len(strip_padding(flat))] if not is_padding(f.name)]
        resolved[name] = ResolvedFormat(name, tuple(public), tuple(layout))
        logger.debug('format %s: %d fields, %d bytes', name, len(public), resolved[name].size)

    return resolved


# ---------------------------------------------------------------------------
# Catalogue builders (pass 1)
# ---------------------------------------------------------------------------

class PerfLogBuilder:
    """Accumulates the 'M' messages of each key into lines of text.

    A message that is not continued is a line of its own. A continued one is
    glued to the current line until a line break starts the next one.
    """

    def __init__(self):
        self._lines: Dict[str, List[str]] = {}

    def add(self, name, text, continued):
        if name not in self._lines:
            logger.debug('adding message name %s', name)
        lines = self._lines.setdefault(name, [])

        if not continued:
            lines.append(text)
            return

        parts = text.lstrip('\n').split('\n')
        if not lines:
            lines.append('')
        lines[-1] += parts[0]
        lines.extend(parts[1:])

    def finalize(self):
        out = {}
        for name, lines in self._lines.items():
            lines = list(lines)
            while lines and lines[-1] == '':
                lines.pop()
            out[name] = tuple(lines)
        return MappingProxyType(out)


class InstanceRegistry:
    """Logged-message instances, keyed by msg_id. The first registration wins."""

    def __init__(self):
        self._by_id: Dict[int, LoggedInstance] = {}

    def register(self, instance):
        if instance.msg_id in self._by_id:
            logger.debug('msg_id %d already registered as %s, ignoring %s',
                         instance.msg_id, self._by_id[instance.msg_id].name, instance.name)
            return False
        self._by_id[instance.msg_id] = instance
        return True

    def finalize(self):
        return tuple(self._by_id.values())


class _Catalogue:
    """Everything pass 1 collects while walking the stream."""

    def __init__(self):
        self.flags = None
        self.info = {}
        self.params = {}
        self.formats: Dict[str, FormatDecl] = {}
        self.perf = PerfLogBuilder()
        self.instances = InstanceRegistry()
        self.messages: List[LogMessage] = []
        self.counts = Counter()


# ---------------------------------------------------------------------------
# Message handlers
# ---------------------------------------------------------------------------

def _decode_text(raw):
    return bytes(raw).decode('utf-8', errors='replace').rstrip('\x00')


def _sanitise_name(name):
    if name.startswith(' '):
        name = name[1:]
    if name.startswith('_'):
        name = name[1:]
    return name


def _split_key(payload, pos):
    """Read a 'key_len, key' pair and split the key into (type, name)."""
    key_len = payload[pos]
    key = _decode_text(payload[pos + 1:pos + 1 + key_len])
    type_name, _, name = key.partition(' ')
    return key_len, key, type_name, name.strip()


_INFO_TYPES = {
    'uint32_t': '<I',
    'uint64_t': '<Q',
    'int32_t':  '<i',
    'float':    '<f',
}

_PARAM_TYPES = {
    'uint32_t': '<I',
    'int32_t':  '<i',
    'float':    '<f',
}


def _unpack_value(type_name, fmt, value, record_offset):
    if len(value) < struct.calcsize(fmt):
        raise RecordTypeError(
            f"value of type '{type_name}' needs {struct.calcsize(fmt)} bytes, got {len(value)}",
            record_offset)
    return struct.unpack_from(fmt, value)[0]


def _handle_flag_bits(cat, payload, record_offset):
    if cat.flags is not None:
        logger.debug('second flag bits message at byte %d, ignored', record_offset)
        return
    cat.flags = FlagBits(
        compat_flags=bytes(payload[0:8]),
        incompat_flags=bytes(payload[8:16]),
        appended_offsets=struct.unpack_from('<3Q', payload, 16),
    )
    if cat.flags.has_appended_data:
        logger.info('log has appended data at %s', cat.flags.appended_offsets)


def _handle_info(cat, payload, record_offset):
    key_len, key, type_name, name = _split_key(payload, 0)
    value = payload[1 + key_len:]

    if type_name in _INFO_TYPES:
        cat.info[name] = _unpack_value(type_name, _INFO_TYPES[type_name], value, record_offset)
    elif 'char' in type_name:
        cat.info[name] = _decode_text(value)
    else:
        raise RecordTypeError(f"unrecognised type '{type_name}' for info '{name}'", record_offset)


def _handle_parameter(cat, payload, record_offset):
    key_len, key, type_name, name = _split_key(payload, 0)
    if type_name not in _PARAM_TYPES:
        raise RecordTypeError(f"unrecognised type '{type_name}' for parameter '{name}'", record_offset)
    cat.params[name] = _unpack_value(type_name, _PARAM_TYPES[type_name], payload[1 + key_len:], record_offset)


def _handle_format(cat, payload, record_offset):
    text = _decode_text(payload)
    name, _, body = text.partition(':')

    fields = []
    for item in body.split(';'):
        item = item.strip()
        if not item:
            continue
        type_name, _, field_name = item.partition(' ')
        field_name = _sanitise_name(field_name)
        # 'float b[2]' is read as 'float[2] b'
        match = _NAME_ARRAY_RE.match(field_name)
        if match:
            field_name, type_name = match.group(1), type_name + match.group(2)
        fields.append((field_name, type_name))

    if name in cat.formats:
        logger.debug('format %s redeclared', name)
    cat.formats[name] = FormatDecl(name, tuple(fields), record_offset)


_LENGTH_RE = re.compile(r'\[(\d+)\]')


def _handle_info_multiple(cat, payload, record_offset):
    continued = bool(payload[0])
    key_len, key, _, name = _split_key(payload, 1)
    name = _sanitise_name(_LENGTH_RE.sub('', name))

    start = 2 + key_len
    match = _LENGTH_RE.search(key)
    end = start + int(match.group(1)) if match else len(payload)
    cat.perf.add(name, _decode_text(payload[start:end]), continued)


def _handle_add_logged(cat, payload, record_offset):
    multi_id, msg_id = struct.unpack_from('<BH', payload, 0)
    format_name = _decode_text(payload[3:])
    cat.instances.register(LoggedInstance(msg_id, multi_id, format_name))


def _handle_logging(cat, payload, record_offset):
    level, timestamp = struct.unpack_from('<BQ', payload, 0)
    cat.messages.append(LogMessage(timestamp, level, _decode_text(payload[9:])))


def _handle_sync(cat, payload, record_offset):
    if bytes(payload[:8]) != SYNC_MAGIC:
        logger.debug('sync message with unexpected magic at byte %d', record_offset)


def _skip(cat, payload, record_offset):
    pass


_HANDLERS = {
    MSG_FLAG_BITS:     _handle_flag_bits,
    MSG_INFO:          _handle_info,
    MSG_FORMAT:        _handle_format,
    MSG_PARAMETER:     _handle_parameter,
    MSG_INFO_MULTIPLE: _handle_info_multiple,
    MSG_ADD_LOGGED:    _handle_add_logged,
    MSG_LOGGED_DATA:   _skip,   # decoded in pass 2
    MSG_LOGGING:       _handle_logging,
    MSG_SYNC:          _handle_sync,
    MSG_DROPOUT:       _skip,
    MSG_PARAM_DEFAULT: _skip,
}


# ---------------------------------------------------------------------------
# Pass 1: message stream
# ---------------------------------------------------------------------------

def read_header(data):
    """Check the magic and return (version, time_ref_utc)."""
    if len(data) < HEADER_SIZE:
        raise HeaderError(f'file is {len(data)} bytes, shorter than the {HEADER_SIZE}-byte header', 0)
    if bytes(data[:len(MAGIC)]) != MAGIC:
        raise HeaderError(f'bad magic {bytes(data[:len(MAGIC)]).hex()}', 0)

    version = data[7]
    time_ref_utc = struct.unpack_from('<Q', data, 8)[0]
    return version, time_ref_utc


def walk_messages(data):
    """Walk the message stream once and catalogue everything but the data.

    An unknown message type means we lost the message boundaries: the
    cursor moves a single byte forward and the header is read again from
    there until something recognisable turns up.

    Parameters
    ----------
    data : bytes
        Whole file contents (header included).

    Returns
    -------
    _Catalogue
    """
    cat = _Catalogue()
    view = memoryview(data)
    n = len(data)
    pos = HEADER_SIZE

    while pos < n:
        if pos + MSG_HEADER_SIZE > n:
            logger.warning('%d trailing bytes at byte %d are not a message header', n - pos, pos)
            cat.counts['truncated_records'] += 1
            break

        size, tag = struct.unpack_from('<HB', data, pos)
        handler = _HANDLERS.get(tag)
        if handler is None:
            logger.debug('unrecognised message type 0x%02x at byte %d', tag, pos)
            cat.counts['resyncs'] += 1
            pos += 1
            continue

        start = pos + MSG_HEADER_SIZE
        end = start + size
        if end > n:
            logger.warning("'%s' message at byte %d runs %d bytes past the end of the file",
                           chr(tag), pos, end - n)
            cat.counts['truncated_records'] += 1
            break

        if size < _MIN_PAYLOAD.get(tag, 0):
            logger.warning("'%s' message at byte %d is too short (%d bytes), skipped", chr(tag), pos, size)
            cat.counts['malformed_records'] += 1
        else:
            handler(cat, view[start:end], pos)

        pos = end

    if cat.counts['resyncs']:
        logger.warning('skipped %d bytes while resynchronising', cat.counts['resyncs'])

    return cat


# ---------------------------------------------------------------------------
# Pass 2: data extraction
# ---------------------------------------------------------------------------

def find_anchors(buf, signature):
    """Return the offset of every occurrence of ``signature`` in ``buf``.

    Overlapping occurrences are all reported.
    """
    n = buf.size - len(signature) + 1
    if n <= 0:
        return np.empty(0, dtype=np.intp)

    candidates = np.flatnonzero(buf[:n] == signature[0])
    for k in range(1, len(signature)):
        candidates = candidates[buf[candidates + k] == signature[k]]
    return candidates


def anchor_signature(instance, fmt):
    return struct.pack('<HBH', fmt.size + 2, MSG_LOGGED_DATA, instance.msg_id)


def extract_instance(buf, instance, fmt):
    """Decode every sample of one logged instance into columns.

    Parameters
    ----------
    buf : np.ndarray, dtype uint8
        Whole file contents.
    instance : LoggedInstance
    fmt : ResolvedFormat
        Resolved format of the instance.

    Returns
    -------
    (dict, int)
        Field name -> np.ndarray (one entry per sample) and the number of
        samples cut short by the end of the file. An instance without
        samples gets empty columns.

        'char' fields are not decoded. A field whose bytes run past the end
        of the buffer holds MISSING, and its column is promoted to float64.
    """
    starts = find_anchors(buf, anchor_signature(instance, fmt)) + ANCHOR_SIZE
    n_samples = starts.size
    if n_samples == 0:
        return {f.name: np.empty(0, dtype=f.kind.dtype)
                for f in fmt.fields if f.kind is not Primitive.CHAR}, 0

    columns = {}
    truncated = 0
    if fmt.size and starts[-1] + fmt.size > buf.size:
        truncated = int(np.count_nonzero(starts + fmt.size > buf.size))

    for field in fmt.fields:
        if field.kind is Primitive.CHAR:
            continue

        offsets = starts + field.offset
        complete = offsets + field.width <= buf.size
        raw = buf[offsets[complete][:, None] + np.arange(field.width)]
        values = raw.view(field.kind.dtype).reshape(-1)

        if values.size == n_samples:
            column = values
        else:
            column = np.full(n_samples, MISSING, dtype=np.float64)
            column[complete] = values
        columns[field.name] = column

    return columns, truncated


def _extract_all(buf, jobs, max_workers):
    def run(job):
        instance, fmt = job
        return extract_instance(buf, instance, fmt)

    if max_workers == 1 or len(jobs) <= 1:
        return [run(job) for job in jobs]

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        return list(pool.map(run, jobs))


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------

def _freeze_table(columns):
    table = {}
    for name, column in columns.items():
        column.flags.writeable = False
        table[name] = column
    return MappingProxyType(table)


def decode(data, filename=None, max_workers=None):
    """Decode a whole ULog file held in memory.

    Parameters
    ----------
    data : bytes
        Raw file contents.
    filename : str, optional
        Stored as-is in the result.
    max_workers : int, optional
        Threads used to extract the logged instances. 1 decodes them in the
        calling thread; None uses the ThreadPoolExecutor default.

    Returns
    -------
    DecodeResult

    Raises
    ------
    HeaderError, SchemaError, RecordTypeError
        On fatal errors. No partial result is returned.
    """
    data = bytes(data)
    version, time_ref_utc = read_header(data)
    logger.debug('reading v%d ulog file, %d bytes', version, len(data))

    cat = walk_messages(data)
    formats = resolve_formats(cat.formats)
    instances = cat.instances.finalize()

    jobs = []
    claimed = {}
    for instance in instances:
        fmt = formats.get(instance.format_name)
        if fmt is None:
            logger.warning("msg_id %d refers to undeclared format '%s', skipped",
                           instance.msg_id, instance.format_name)
            continue
        if fmt.size + 2 > MAX_PAYLOAD_SIZE:
            logger.warning("format '%s' is %d bytes, too large for a data message; msg_id %d skipped",
                           fmt.name, fmt.size, instance.msg_id)
            continue
        if instance.name in claimed:
            logger.warning('msg_id %d and %d are both named %s, keeping msg_id %d',
                           claimed[instance.name], instance.msg_id, instance.name, claimed[instance.name])
            continue
        claimed[instance.name] = instance.msg_id
        jobs.append((instance, fmt))

    buf = np.frombuffer(data, dtype=np.uint8)
    extracted = _extract_all(buf, jobs, max_workers)

    logs = {}
    for (instance, _), (columns, truncated) in zip(jobs, extracted):
        if not columns:
            continue
        cat.counts['truncated_samples'] += truncated
        n_samples = len(next(iter(columns.values())))
        logger.info('%s: %d samples', instance.name, n_samples)
        logs[instance.name] = _freeze_table(columns)

    if cat.counts['truncated_samples']:
        logger.warning('%d samples cut short by the end of the file', cat.counts['truncated_samples'])

    return DecodeResult(
        filename=filename,
        version=version,
        time_ref_utc=time_ref_utc,
        flags=cat.flags,
        info=MappingProxyType(dict(cat.info)),
        params=MappingProxyType(dict(cat.params)),
        perf_messages=cat.perf.finalize(),
        messages=tuple(cat.messages),
        logs=MappingProxyType({name: logs[name] for name in sorted(logs)}),
        stats=DecodeStats(**cat.counts),
    )


def read_ulog(filepath, max_workers=None):
    """Read and decode a .ulg file.

    Parameters
    ----------
    filepath : str or pathlib.Path
        Path to the .ulg file.
    max_workers : int, optional
        See decode().

    Returns
    -------
    DecodeResult
    """
    with open(filepath, 'rb') as f:
        data = f.read()

    return decode(data, filename=os.path.basename(filepath), max_workers=max_workers)


def print_summary(result):
    """Print a summary table of the logged instances in a decoded file."""
    print(f"{'Logged Message':<40} {'Samples':>10} {'Fields':>8}")
    print('-' * 60)
    for name, table in result.logs.items():
        n_samples = len(next(iter(table.values()))) if table else 0
        print(f"  {name:<38} {n_samples:>10} {len(table):>8}")
    print()
    print(f"  {len(result.params)} parameters, {len(result.info)} info entries, "
          f"{len(result.messages)} logged strings")


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

if __name__ == '__main__':
    import sys

    if len(sys.argv) < 2:
        print(f"Usage: python {os.path.basename(__file__)} <file.ulg> [--plot]")
        print(f"       Decode a PX4 .ulg file and print a summary.")
        print(f"       Add --plot to save a check plot per logged message.")
        sys.exit(1)

    logging.basicConfig(level=logging.WARNING, format='%(levelname)s %(message)s')

    filepath = sys.argv[1]
    do_plot = '--plot' in sys.argv

    print(f"Decoding: {filepath}")
    print(f"Size: {os.path.getsize(filepath) / 1e6:.1f} MB")
    print()

    try:
        result = read_ulog(filepath)
    except UlogError as e:
        print(f"Error: {e}")
        sys.exit(2)

    print_summary(result)

    if result.messages:
        print()
    for message in result.messages:
        # PX4 writes the level as an ASCII digit
        level = chr(message.level) if 0x30 <= message.level <= 0x37 else message.level
        print(f"  {message.timestamp / 1e6:10.3f}s [{level}] {message.text}")

    if do_plot:
        from px4_ulog_plots import plot_logs

        outdir = os.path.splitext(filepath)[0] + '_plots'
        for path in plot_logs(result, outdir=outdir):
            print(f"Plot saved: {path}")
