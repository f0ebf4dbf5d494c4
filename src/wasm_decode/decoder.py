"""WebAssembly binary format decoder."""

import logging
import time
from pathlib import Path
from typing import BinaryIO, Callable, TypeVar

from .errors import DecodeError, DecodeTimeout, FormatError, ReadError, TruncationError
from .types import (
    Module,
    ModuleHeader,
    Section,
    SectionId,
    ExternalKind,
    FuncType,
    ResizableLimits,
    TableType,
    MemoryType,
    GlobalType,
    InitExpr,
    ImportEntry,
    GlobalVariable,
    ExportEntry,
    ElemSegment,
    DataSegment,
    LocalEntry,
    FunctionBody,
    LocalName,
    FunctionNames,
    NameSection,
    TypeSection,
    ImportSection,
    FunctionSection,
    TableSection,
    MemorySection,
    GlobalSection,
    ExportSection,
    StartSection,
    ElementSection,
    CodeSection,
    DataSection,
    ValType,
    VALTYPE_ENCODING,
    ELEMTYPE_ENCODING,
    FORM_FUNC,
    WASM_MAGIC,
)
from . import opcodes

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Longest LEB128 encoding of a 64-bit immediate
MAX_LEB128_BYTES = 10


class BinaryReader:
    """A reader for binary data with position tracking.

    ``position`` and ``end`` are absolute offsets into ``data``. Readers made
    with :meth:`limit` share the same buffer, so every offset reported in an
    error points into the original module bytes.
    """

    def __init__(
        self,
        data: bytes,
        start: int = 0,
        end: int | None = None,
        deadline: float | None = None,
    ) -> None:
        self.data = data
        self.position = start
        self.end = len(data) if end is None else min(end, len(data))
        self.deadline = deadline

    def read_byte(self) -> int:
        """Read a single byte."""
        if self.position >= self.end:
            raise TruncationError(
                f"Unexpected end of data at position {self.position}", self.position
            )
        byte = self.data[self.position]
        self.position += 1
        return byte

    def read_bytes(self, n: int) -> bytes:
        """Read n bytes."""
        if self.position + n > self.end:
            raise TruncationError(
                f"Unexpected end of data: wanted {n} bytes at position {self.position}",
                self.end,
            )
        result = bytes(self.data[self.position : self.position + n])
        self.position += n
        return result

    def peek(self, n: int) -> bytes:
        """Return up to n bytes without consuming them."""
        return bytes(self.data[self.position : min(self.position + n, self.end)])

    def limit(self, n: int, what: str = "section") -> "BinaryReader":
        """Return a reader over the next n bytes and skip past them."""
        if self.position + n > self.end:
            raise TruncationError(
                f"Unexpected end of data: {what} at position {self.position} "
                f"declares {n} bytes, {self.remaining()} available",
                self.end,
            )
        view = BinaryReader(self.data, self.position, self.position + n, self.deadline)
        self.position += n
        return view

    def eof(self) -> bool:
        """Check if at end of data."""
        return self.position >= self.end

    def remaining(self) -> int:
        """Return number of remaining bytes."""
        return self.end - self.position

    def check_deadline(self) -> None:
        if self.deadline is not None and time.monotonic() > self.deadline:
            raise DecodeTimeout(
                f"Decoding timed out at position {self.position}", self.position
            )


def decode_unsigned_varint(reader: BinaryReader, max_bits: int = 32) -> tuple[int, int]:
    """Decode an unsigned LEB128 integer.

    Returns the value and the number of bytes consumed. An encoding longer
    than ``ceil(max_bits / 7)`` bytes, or one whose value does not fit in
    ``max_bits`` bits, is rejected.
    """
    start = reader.position
    max_bytes = -(-max_bits // 7)
    result = 0
    shift = 0
    for count in range(1, max_bytes + 1):
        byte = reader.read_byte()
        result |= (byte & 0x7F) << shift
        if (byte & 0x80) == 0:
            if result >> max_bits:
                raise FormatError(
                    f"LEB128 integer at position {start} overflows {max_bits} bits",
                    start,
                )
            return result, count
        shift += 7
    raise FormatError(f"LEB128 integer at position {start} too long", start)


def decode_unsigned_leb128(reader: BinaryReader, max_bits: int = 32) -> int:
    """Decode an unsigned LEB128 integer."""
    return decode_unsigned_varint(reader, max_bits)[0]


def decode_signed_leb128(reader: BinaryReader, max_bits: int = 32) -> int:
    """Decode a signed LEB128 integer."""
    start = reader.position
    max_bytes = -(-max_bits // 7)
    result = 0
    shift = 0
    for _ in range(max_bytes):
        byte = reader.read_byte()
        result |= (byte & 0x7F) << shift
        shift += 7
        if (byte & 0x80) == 0:
            # Sign extend if the sign bit (bit 6 of the last byte) is set
            if byte & 0x40:
                result -= 1 << shift
            if not -(1 << (max_bits - 1)) <= result < (1 << (max_bits - 1)):
                raise FormatError(
                    f"LEB128 integer at position {start} overflows {max_bits} bits",
                    start,
                )
            return result
    raise FormatError(f"LEB128 integer at position {start} too long", start)


def decode_zigzag_varint(reader: BinaryReader) -> int:
    """Decode a signed integer stored with bit 0 as its sign.

    The unsigned LEB128 value holds the magnitude in its upper bits; when bit 0
    is set the magnitude is inverted. Early wasm tooling wrote signed fields
    this way. It is not the signed LEB128 of the binary format, use
    :func:`decode_signed_leb128` for that.
    """
    value = decode_unsigned_leb128(reader)
    magnitude = value >> 1
    if value & 1:
        return ~magnitude
    return magnitude


def decode_string(reader: BinaryReader) -> str:
    """Decode a UTF-8 name (length-prefixed byte vector)."""
    length = decode_unsigned_leb128(reader)
    start = reader.position
    data = reader.read_bytes(length)
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise FormatError(f"Invalid UTF-8 in name at position {start}: {e}", start) from e


def decode_vector(reader: BinaryReader, decode_item: Callable[[BinaryReader], T]) -> tuple[T, ...]:
    """Decode a count followed by that many items."""
    count = decode_unsigned_leb128(reader)
    items = []
    for _ in range(count):
        reader.check_deadline()
        items.append(decode_item(reader))
    return tuple(items)


def decode_valtype(reader: BinaryReader) -> ValType:
    """Decode a value type."""
    byte = reader.read_byte()
    if byte not in VALTYPE_ENCODING:
        raise FormatError(
            f"Unknown value type: 0x{byte:02x} at position {reader.position - 1}",
            reader.position - 1,
        )
    return VALTYPE_ENCODING[byte]


def decode_elemtype(reader: BinaryReader) -> str:
    byte = reader.read_byte()
    if byte not in ELEMTYPE_ENCODING:
        raise FormatError(
            f"Unknown element type: 0x{byte:02x} at position {reader.position - 1}",
            reader.position - 1,
        )
    return ELEMTYPE_ENCODING[byte]


def decode_external_kind(reader: BinaryReader, context: str = "") -> ExternalKind:
    """Decode an external kind byte; ``context`` names the entry in errors."""
    start = reader.position
    byte = reader.read_byte()
    try:
        return ExternalKind(byte)
    except ValueError:
        raise FormatError(
            f"Invalid external kind ({byte}){context} at position {start}", start
        ) from None


def decode_limits(reader: BinaryReader) -> ResizableLimits:
    """Decode limits (flags, initial, optional maximum)."""
    flags = decode_unsigned_leb128(reader)
    initial = decode_unsigned_leb128(reader)
    maximum = None
    if flags & 0x01:
        maximum = decode_unsigned_leb128(reader)
    return ResizableLimits(flags, initial, maximum)


def decode_table_type(reader: BinaryReader) -> TableType:
    element_type = decode_elemtype(reader)
    return TableType(element_type, decode_limits(reader))


def decode_memory_type(reader: BinaryReader) -> MemoryType:
    return MemoryType(decode_limits(reader))


def decode_global_type(reader: BinaryReader) -> GlobalType:
    content_type = decode_valtype(reader)
    start = reader.position
    mutability = decode_unsigned_leb128(reader)
    if mutability > 1:
        raise FormatError(
            f"Invalid global mutability ({mutability}) at position {start}", start
        )
    return GlobalType(content_type, mutability == 1)


def _copy_leb128(reader: BinaryReader) -> bytes:
    """Consume one LEB128 encoding and return its raw bytes."""
    start = reader.position
    for _ in range(MAX_LEB128_BYTES):
        if (reader.read_byte() & 0x80) == 0:
            return bytes(reader.data[start : reader.position])
    raise FormatError(f"LEB128 immediate at position {start} too long", start)


def decode_init_expr(reader: BinaryReader) -> InitExpr:
    """Collect the raw bytes of an initializer expression up to its end marker.

    The immediates of constant instructions are copied without being looked
    at, so an immediate byte equal to ``end`` does not stop the expression.
    """
    start = reader.position
    expr = bytearray()
    while True:
        if reader.eof():
            raise TruncationError(
                f"Initializer expression at position {start} has no end marker",
                reader.position,
            )
        opcode = reader.read_byte()
        if opcode == opcodes.END:
            return InitExpr(bytes(expr))
        expr.append(opcode)
        if opcode in opcodes.LEB128_IMMEDIATE:
            expr += _copy_leb128(reader)
        elif opcode in opcodes.FIXED_IMMEDIATE:
            expr += reader.read_bytes(opcodes.FIXED_IMMEDIATE[opcode])


def decode_func_type(reader: BinaryReader) -> FuncType:
    """Decode a function type."""
    start = reader.position
    form = decode_unsigned_leb128(reader, 7)
    if form != FORM_FUNC:
        raise FormatError(
            f"Expected function type form 0x60, got 0x{form:02x} at position {start}",
            start,
        )
    params = decode_vector(reader, decode_valtype)
    results = decode_vector(reader, decode_valtype)
    return FuncType(form, params, results)


def decode_import_entry(reader: BinaryReader) -> ImportEntry:
    module = decode_string(reader)
    field = decode_string(reader)
    kind = decode_external_kind(reader, f" for import {module!r}.{field!r}")

    if kind == ExternalKind.FUNCTION:
        desc = decode_unsigned_leb128(reader)
    elif kind == ExternalKind.TABLE:
        desc = decode_table_type(reader)
    elif kind == ExternalKind.MEMORY:
        desc = decode_memory_type(reader)
    else:
        desc = decode_global_type(reader)
    return ImportEntry(module, field, kind, desc)


def decode_global_variable(reader: BinaryReader) -> GlobalVariable:
    global_type = decode_global_type(reader)
    return GlobalVariable(global_type, decode_init_expr(reader))


def decode_export_entry(reader: BinaryReader) -> ExportEntry:
    field = decode_string(reader)
    kind = decode_external_kind(reader)
    return ExportEntry(field, kind, decode_unsigned_leb128(reader))


def decode_elem_segment(reader: BinaryReader) -> ElemSegment:
    index = decode_unsigned_leb128(reader)
    offset = decode_init_expr(reader)
    elems = decode_vector(reader, decode_unsigned_leb128)
    return ElemSegment(index, offset, elems)


def decode_data_segment(reader: BinaryReader) -> DataSegment:
    index = decode_unsigned_leb128(reader)
    offset = decode_init_expr(reader)
    length = decode_unsigned_leb128(reader)
    return DataSegment(index, offset, reader.read_bytes(length))


def decode_local_entry(reader: BinaryReader) -> LocalEntry:
    count = decode_unsigned_leb128(reader)
    return LocalEntry(count, decode_valtype(reader))


def decode_function_body(reader: BinaryReader) -> FunctionBody:
    """Decode one function body.

    The code is every byte of the body after the local declarations, up to
    the last end marker. Nested blocks have their own end markers, so only
    the last one closes the function. Bytes after it are logged and skipped.
    """
    body_size = decode_unsigned_leb128(reader)
    start = reader.position
    body = reader.limit(body_size, "function body")
    locals_ = decode_vector(body, decode_local_entry)
    code = body.read_bytes(body.remaining())
    end = code.rfind(opcodes.END)
    if end < 0:
        raise TruncationError(
            f"Function body at position {start} has no end marker", body.position
        )
    if end != len(code) - 1:
        logger.warning(
            "%d bytes unread after end of function body at position %d, skipping",
            len(code) - end - 1,
            start,
        )
    return FunctionBody(body_size, locals_, code[:end])


def decode_local_name(reader: BinaryReader) -> LocalName:
    return LocalName(decode_string(reader))


def decode_function_names(reader: BinaryReader) -> FunctionNames:
    name = decode_string(reader)
    return FunctionNames(name, decode_vector(reader, decode_local_name))


def decode_name_section(reader: BinaryReader) -> NameSection:
    """Decode the name section.

    Every user section (id 0) is decoded with this grammar; other custom
    sections are not recognised.
    """
    name = decode_string(reader)
    return NameSection(name, decode_vector(reader, decode_function_names))


def decode_type_section(reader: BinaryReader) -> TypeSection:
    """Decode the type section."""
    return TypeSection(decode_vector(reader, decode_func_type))


def decode_import_section(reader: BinaryReader) -> ImportSection:
    """Decode the import section."""
    return ImportSection(decode_vector(reader, decode_import_entry))


def decode_function_section(reader: BinaryReader) -> FunctionSection:
    """Decode the function section (just type indices)."""
    return FunctionSection(decode_vector(reader, decode_unsigned_leb128))


def decode_table_section(reader: BinaryReader) -> TableSection:
    """Decode the table section."""
    return TableSection(decode_vector(reader, decode_table_type))


def decode_memory_section(reader: BinaryReader) -> MemorySection:
    """Decode the memory section."""
    return MemorySection(decode_vector(reader, decode_memory_type))


def decode_global_section(reader: BinaryReader) -> GlobalSection:
    """Decode the global section."""
    return GlobalSection(decode_vector(reader, decode_global_variable))


def decode_export_section(reader: BinaryReader) -> ExportSection:
    """Decode the export section."""
    return ExportSection(decode_vector(reader, decode_export_entry))


def decode_start_section(reader: BinaryReader) -> StartSection:
    """Decode the start section."""
    return StartSection(decode_unsigned_leb128(reader))


def decode_element_section(reader: BinaryReader) -> ElementSection:
    """Decode the element section."""
    return ElementSection(decode_vector(reader, decode_elem_segment))


def decode_code_section(reader: BinaryReader) -> CodeSection:
    """Decode the code section."""
    return CodeSection(decode_vector(reader, decode_function_body))


def decode_data_section(reader: BinaryReader) -> DataSection:
    """Decode the data section."""
    return DataSection(decode_vector(reader, decode_data_segment))


def decode_section(reader: BinaryReader) -> Section:
    """Decode a single section."""
    start = reader.position
    raw_id = decode_unsigned_leb128(reader)
    try:
        section_id = SectionId(raw_id)
    except ValueError:
        raise FormatError(
            f"Invalid section id {raw_id} at position {start}", start
        ) from None
    section_size = decode_unsigned_leb128(reader)

    logger.debug(
        "section %d: %d bytes at position %d", raw_id, section_size, reader.position
    )

    # Create a sub-reader for the section content
    section_reader = reader.limit(section_size)

    if section_id == SectionId.NAME:
        section = decode_name_section(section_reader)
    elif section_id == SectionId.TYPE:
        section = decode_type_section(section_reader)
    elif section_id == SectionId.IMPORT:
        section = decode_import_section(section_reader)
    elif section_id == SectionId.FUNCTION:
        section = decode_function_section(section_reader)
    elif section_id == SectionId.TABLE:
        section = decode_table_section(section_reader)
    elif section_id == SectionId.MEMORY:
        section = decode_memory_section(section_reader)
    elif section_id == SectionId.GLOBAL:
        section = decode_global_section(section_reader)
    elif section_id == SectionId.EXPORT:
        section = decode_export_section(section_reader)
    elif section_id == SectionId.START:
        section = decode_start_section(section_reader)
    elif section_id == SectionId.ELEMENT:
        section = decode_element_section(section_reader)
    elif section_id == SectionId.CODE:
        section = decode_code_section(section_reader)
    else:
        section = decode_data_section(section_reader)

    if not section_reader.eof():
        logger.warning(
            "%d bytes unread in %s at position %d, skipping",
            section_reader.remaining(),
            type(section).__name__,
            section_reader.position,
        )

    return section


def decode_header(reader: BinaryReader) -> ModuleHeader:
    """Decode the magic number and version."""
    magic = reader.peek(4)
    if magic != WASM_MAGIC:
        raise FormatError(
            f"Invalid WASM magic number: expected {WASM_MAGIC!r}, got {magic!r}",
            reader.position,
        )
    reader.read_bytes(4)
    version = int.from_bytes(reader.read_bytes(4), "little")
    return ModuleHeader(magic, version)


def _read_source(source: bytes | BinaryIO | Path) -> bytes:
    if isinstance(source, Path):
        try:
            return source.read_bytes()
        except OSError as e:
            raise ReadError(f"Cannot read {source}: {e}") from e
    if isinstance(source, (bytes, bytearray, memoryview)):
        return source
    # Assume file-like object
    try:
        data = source.read()
    except OSError as e:
        raise ReadError(f"Cannot read WASM data: {e}") from e
    if not isinstance(data, (bytes, bytearray)):
        raise TypeError(f"Expected a binary stream, read {type(data).__name__}")
    return data


def decode_module(
    source: bytes | BinaryIO | Path, *, timeout: float | None = None
) -> Module:
    """Decode a WebAssembly module from binary format.

    Args:
        source: WASM bytes, binary file-like object, or path to .wasm file
        timeout: Seconds the decode may take before DecodeTimeout is raised

    Returns:
        Decoded Module object

    Raises:
        DecodeError: If the binary format is invalid. ``error.module`` holds
            the header and the sections decoded before the failure.
    """
    data = _read_source(source)
    deadline = None if timeout is None else time.monotonic() + timeout
    reader = BinaryReader(data, deadline=deadline)

    header = None
    sections: list[Section] = []
    try:
        header = decode_header(reader)
        while not reader.eof():
            reader.check_deadline()
            sections.append(decode_section(reader))
    except DecodeError as e:
        e.module = Module(header, tuple(sections))
        raise

    return Module(header, tuple(sections))


def open_module(path: str | Path, *, timeout: float | None = None) -> Module:
    """Read and decode the module stored at ``path``."""
    try:
        with open(path, "rb") as f:
            data = f.read()
    except OSError as e:
        raise ReadError(f"Cannot read {path}: {e}") from e
    return decode_module(data, timeout=timeout)
