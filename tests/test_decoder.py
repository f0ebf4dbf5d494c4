"""Tests for the WebAssembly binary decoder."""

import io
import logging

import pytest
from wasm_decode.decoder import (
    BinaryReader,
    decode_module,
    open_module,
    decode_unsigned_leb128,
    decode_unsigned_varint,
    decode_signed_leb128,
    decode_zigzag_varint,
)
from wasm_decode.errors import (
    DecodeError,
    DecodeTimeout,
    FormatError,
    ReadError,
    TruncationError,
)
from wasm_decode.types import (
    Module,
    ModuleHeader,
    SectionId,
    ExternalKind,
    TypeSection,
    FunctionSection,
    ExportSection,
    CodeSection,
    ExportEntry,
    FunctionBody,
)


HEADER = bytes([0x00, 0x61, 0x73, 0x6D, 0x01, 0x00, 0x00, 0x00])

TYPE_SECTION = bytes(
    [
        0x01,  # section id: type
        0x07,  # section size
        0x01,  # 1 type
        0x60,  # func
        0x02,
        0x7F,
        0x7F,  # (i32, i32)
        0x01,
        0x7F,  # -> i32
    ]
)

FUNCTION_SECTION = bytes([0x03, 0x02, 0x01, 0x00])

EXPORT_SECTION = bytes(
    [
        0x07,  # section id: export
        0x07,  # section size
        0x01,  # 1 export
        0x03,  # name length: 3
        0x61,
        0x64,
        0x64,  # "add"
        0x00,  # export kind: func
        0x00,  # func index: 0
    ]
)

CODE_SECTION = bytes(
    [
        0x0A,  # section id: code
        0x09,  # section size
        0x01,  # 1 function body
        0x07,  # body size
        0x00,  # local count: 0
        0x20,
        0x00,  # get_local 0
        0x20,
        0x01,  # get_local 1
        0x6A,  # i32.add
        0x0B,  # end
    ]
)

ADD_MODULE = HEADER + TYPE_SECTION + FUNCTION_SECTION + EXPORT_SECTION + CODE_SECTION


class TestLEB128:
    """Test LEB128 variable-length integer encoding."""

    def test_decode_unsigned_zero(self):
        reader = BinaryReader(bytes([0x00]))
        assert decode_unsigned_varint(reader) == (0, 1)

    def test_decode_unsigned_single_byte(self):
        reader = BinaryReader(bytes([0x01]))
        assert decode_unsigned_leb128(reader) == 1

        reader = BinaryReader(bytes([0x7F]))
        assert decode_unsigned_leb128(reader) == 127

    def test_decode_unsigned_multibyte(self):
        # 128 = 0x80 0x01
        reader = BinaryReader(bytes([0x80, 0x01]))
        assert decode_unsigned_leb128(reader) == 128

        # 624485 = 0xE5 0x8E 0x26
        reader = BinaryReader(bytes([0xE5, 0x8E, 0x26]))
        assert decode_unsigned_varint(reader) == (624485, 3)
        assert reader.eof()

    def test_decode_unsigned_max_u32(self):
        # 2^32 - 1 = 0xFF 0xFF 0xFF 0xFF 0x0F
        reader = BinaryReader(bytes([0xFF, 0xFF, 0xFF, 0xFF, 0x0F]))
        assert decode_unsigned_leb128(reader) == 0xFFFFFFFF

    def test_decode_unsigned_too_long(self):
        reader = BinaryReader(bytes([0x80, 0x80, 0x80, 0x80, 0x80, 0x00]))
        with pytest.raises(FormatError, match="too long"):
            decode_unsigned_leb128(reader)

    def test_decode_unsigned_overflow(self):
        # Fifth byte carries bits above 2^32
        reader = BinaryReader(bytes([0xFF, 0xFF, 0xFF, 0xFF, 0x1F]))
        with pytest.raises(FormatError, match="overflows"):
            decode_unsigned_leb128(reader)

    def test_decode_unsigned_truncated(self):
        reader = BinaryReader(bytes([0x80]))
        with pytest.raises(TruncationError) as exc_info:
            decode_unsigned_leb128(reader)
        assert exc_info.value.offset == 1

    def test_decode_signed_zero(self):
        reader = BinaryReader(bytes([0x00]))
        assert decode_signed_leb128(reader) == 0

    def test_decode_signed_positive(self):
        reader = BinaryReader(bytes([0x01]))
        assert decode_signed_leb128(reader) == 1

        reader = BinaryReader(bytes([0x3F]))
        assert decode_signed_leb128(reader) == 63

    def test_decode_signed_negative(self):
        # -1 = 0x7F
        reader = BinaryReader(bytes([0x7F]))
        assert decode_signed_leb128(reader) == -1

        # -123456 = 0xC0 0xBB 0x78
        reader = BinaryReader(bytes([0xC0, 0xBB, 0x78]))
        assert decode_signed_leb128(reader) == -123456

    def test_decode_signed_min_i32(self):
        # -2^31 = 0x80 0x80 0x80 0x80 0x78
        reader = BinaryReader(bytes([0x80, 0x80, 0x80, 0x80, 0x78]))
        assert decode_signed_leb128(reader) == -(2**31)

    def test_decode_signed_overflow(self):
        # 2^31 does not fit in an i32
        reader = BinaryReader(bytes([0x80, 0x80, 0x80, 0x80, 0x08]))
        with pytest.raises(FormatError):
            decode_signed_leb128(reader)

    def test_decode_signed_i64(self):
        # -2^63 = 0x80 x9 0x7F
        reader = BinaryReader(bytes([0x80] * 9 + [0x7F]))
        assert decode_signed_leb128(reader, 64) == -(2**63)

    def test_decode_zigzag(self):
        cases = [
            (0x00, 0),
            (0x01, -1),
            (0x02, 1),
            (0x03, -2),
            (0x7F, -64),
        ]
        for byte, expected in cases:
            assert decode_zigzag_varint(BinaryReader(bytes([byte]))) == expected

    def test_zigzag_differs_from_signed(self):
        # The same byte means -1 in signed LEB128 and -64 with the sign bit in bit 0
        assert decode_signed_leb128(BinaryReader(bytes([0x7F]))) == -1
        assert decode_zigzag_varint(BinaryReader(bytes([0x7F]))) == -64


class TestBinaryReader:
    """Test the binary reader helper class."""

    def test_read_bytes(self):
        reader = BinaryReader(bytes([1, 2, 3, 4, 5]))
        assert reader.read_bytes(3) == bytes([1, 2, 3])
        assert reader.read_bytes(2) == bytes([4, 5])

    def test_read_byte(self):
        reader = BinaryReader(bytes([0xAB, 0xCD]))
        assert reader.read_byte() == 0xAB
        assert reader.read_byte() == 0xCD

    def test_position_tracking(self):
        reader = BinaryReader(bytes([1, 2, 3, 4, 5]))
        assert reader.position == 0
        reader.read_byte()
        assert reader.position == 1
        reader.read_bytes(2)
        assert reader.position == 3
        assert reader.remaining() == 2

    def test_eof(self):
        reader = BinaryReader(bytes([1, 2]))
        assert not reader.eof()
        reader.read_bytes(2)
        assert reader.eof()

    def test_read_past_eof_raises(self):
        reader = BinaryReader(bytes([1]))
        reader.read_byte()
        with pytest.raises(DecodeError):
            reader.read_byte()

    def test_read_bytes_past_eof_reports_first_missing_byte(self):
        reader = BinaryReader(bytes([1, 2, 3]))
        reader.read_byte()
        with pytest.raises(TruncationError) as exc_info:
            reader.read_bytes(4)
        assert exc_info.value.offset == 3

    def test_limit(self):
        reader = BinaryReader(bytes([1, 2, 3, 4, 5]))
        reader.read_byte()
        view = reader.limit(3)
        assert reader.position == 4
        assert view.position == 1
        assert view.read_bytes(3) == bytes([2, 3, 4])
        assert view.eof()
        with pytest.raises(TruncationError) as exc_info:
            view.read_byte()
        assert exc_info.value.offset == 4

    def test_limit_beyond_data(self):
        reader = BinaryReader(bytes(4))
        with pytest.raises(TruncationError) as exc_info:
            reader.limit(5)
        assert exc_info.value.offset == 4

    def test_nested_limit_stays_inside_parent(self):
        reader = BinaryReader(bytes(10))
        outer = reader.limit(4)
        with pytest.raises(TruncationError):
            outer.limit(5)

    def test_peek(self):
        reader = BinaryReader(bytes([1, 2]))
        assert reader.peek(4) == bytes([1, 2])
        assert reader.position == 0


class TestDecodeModule:
    """Test complete module decoding."""

    def test_decode_minimal_module(self):
        module = decode_module(HEADER)
        assert module == Module(ModuleHeader(b"\x00asm", 1), ())

    def test_decode_invalid_magic(self):
        wasm = bytes([0x00, 0x00, 0x00, 0x00, 0x01, 0x00, 0x00, 0x00]) + TYPE_SECTION
        with pytest.raises(FormatError, match="magic") as exc_info:
            decode_module(wasm)
        assert exc_info.value.offset == 0
        assert exc_info.value.module.sections == ()

    def test_decode_short_buffer_is_not_wasm(self):
        for wasm in (b"", b"\x00a", b"\x7fELF\x02\x01\x01\x00"):
            with pytest.raises(FormatError) as exc_info:
                decode_module(wasm)
            assert exc_info.value.module.sections == ()

    def test_decode_truncated_header(self):
        with pytest.raises(TruncationError) as exc_info:
            decode_module(HEADER[:6])
        assert exc_info.value.offset == 6
        assert exc_info.value.module.header is None

    def test_version_is_recorded(self):
        # Pre-release MVP binaries carry version 0xd
        wasm = bytes([0x00, 0x61, 0x73, 0x6D, 0x0D, 0x00, 0x00, 0x00])
        module = decode_module(wasm)
        assert module.header.version == 0xD

    def test_decode_add_module(self):
        module = decode_module(ADD_MODULE)
        assert [section.id for section in module.sections] == [
            SectionId.TYPE,
            SectionId.FUNCTION,
            SectionId.EXPORT,
            SectionId.CODE,
        ]
        types, functions, exports, code = module.sections
        assert isinstance(types, TypeSection)
        assert types.types[0].params == ("i32", "i32")
        assert types.types[0].results == ("i32",)
        assert isinstance(functions, FunctionSection)
        assert functions.types == (0,)
        assert isinstance(exports, ExportSection)
        assert exports.exports == (ExportEntry("add", ExternalKind.FUNCTION, 0),)
        assert isinstance(code, CodeSection)
        assert code.bodies == (
            FunctionBody(7, (), bytes([0x20, 0x00, 0x20, 0x01, 0x6A])),
        )

    def test_decode_is_repeatable(self):
        assert decode_module(ADD_MODULE) == decode_module(ADD_MODULE)

    def test_section_lookup(self):
        module = decode_module(ADD_MODULE)
        assert module.section(SectionId.EXPORT).exports[0].field == "add"
        assert module.section(SectionId.DATA) is None

    def test_unknown_section_id(self):
        wasm = HEADER + TYPE_SECTION + bytes([0x0C, 0x01, 0x00])
        with pytest.raises(FormatError, match="section id 12") as exc_info:
            decode_module(wasm)
        assert exc_info.value.offset == len(HEADER) + len(TYPE_SECTION)
        assert [type(s) for s in exc_info.value.module.sections] == [TypeSection]

    def test_unknown_section_id_at_end_of_data(self):
        # No payload length follows the id
        with pytest.raises(FormatError, match="section id 12") as exc_info:
            decode_module(HEADER + bytes([0x0C]))
        assert exc_info.value.offset == len(HEADER)
        assert exc_info.value.module.sections == ()

    def test_unknown_multibyte_section_id(self):
        # id 200 encoded as LEB128
        wasm = HEADER + bytes([0xC8, 0x01, 0x00])
        with pytest.raises(FormatError, match="section id 200") as exc_info:
            decode_module(wasm)
        assert exc_info.value.module.sections == ()

    def test_section_longer_than_data(self):
        wasm = HEADER + TYPE_SECTION[:6]
        with pytest.raises(TruncationError) as exc_info:
            decode_module(wasm)
        assert exc_info.value.offset == len(wasm)
        assert exc_info.value.module.sections == ()

    def test_truncation_keeps_completed_sections(self):
        wasm = HEADER + TYPE_SECTION + FUNCTION_SECTION[:3]
        with pytest.raises(TruncationError) as exc_info:
            decode_module(wasm)
        assert exc_info.value.offset == len(wasm)
        module = exc_info.value.module
        assert len(module.sections) == 1
        assert module.sections[0] == decode_module(HEADER + TYPE_SECTION).sections[0]

    def test_section_payload_cannot_read_into_next_section(self):
        # Type section declares 3 bytes but its content needs more
        short_type = bytes([0x01, 0x03, 0x01, 0x60, 0x02])
        wasm = HEADER + short_type + FUNCTION_SECTION
        with pytest.raises(TruncationError) as exc_info:
            decode_module(wasm)
        assert exc_info.value.offset == len(HEADER) + len(short_type)

    def test_unread_section_bytes_are_skipped(self, caplog):
        caplog.set_level(logging.WARNING, logger="wasm_decode.decoder")
        padded_type = bytes([0x01, 0x08]) + TYPE_SECTION[2:] + bytes([0xFF])
        module = decode_module(HEADER + padded_type + FUNCTION_SECTION)
        assert [section.id for section in module.sections] == [
            SectionId.TYPE,
            SectionId.FUNCTION,
        ]
        assert "1 bytes unread in TypeSection" in caplog.text

    def test_decode_from_file_object(self):
        module = decode_module(io.BytesIO(ADD_MODULE))
        assert module == decode_module(ADD_MODULE)

    def test_decode_from_path(self, tmp_path):
        path = tmp_path / "add.wasm"
        path.write_bytes(ADD_MODULE)
        assert decode_module(path) == decode_module(ADD_MODULE)

    def test_read_error(self):
        class BrokenStream:
            def read(self):
                raise OSError("device not ready")

        with pytest.raises(ReadError, match="device not ready"):
            decode_module(BrokenStream())

    def test_timeout(self):
        with pytest.raises(DecodeTimeout) as exc_info:
            decode_module(ADD_MODULE, timeout=-1)
        assert exc_info.value.module.header == ModuleHeader(b"\x00asm", 1)
        assert exc_info.value.module.sections == ()

    def test_generous_timeout(self):
        assert len(decode_module(ADD_MODULE, timeout=60).sections) == 4


class TestOpenModule:
    """Test decoding modules from files."""

    def test_open_module(self, tmp_path):
        path = tmp_path / "add.wasm"
        path.write_bytes(ADD_MODULE)
        assert open_module(path) == decode_module(ADD_MODULE)
        assert open_module(str(path)) == decode_module(ADD_MODULE)

    def test_open_missing_file(self, tmp_path):
        with pytest.raises(ReadError) as exc_info:
            open_module(tmp_path / "missing.wasm")
        assert exc_info.value.module is None
        assert isinstance(exc_info.value.__cause__, OSError)

    def test_open_invalid_file(self, tmp_path):
        path = tmp_path / "bad.wasm"
        path.write_bytes(b"not wasm at all")
        with pytest.raises(FormatError):
            open_module(path)
