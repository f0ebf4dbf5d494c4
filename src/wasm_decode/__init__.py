"""Pure Python WebAssembly binary decoder.

Decodes MVP WebAssembly modules into read-only section records, with no
dependencies outside the standard library.
"""

from .decoder import (
    decode_module,
    open_module,
    BinaryReader,
    decode_unsigned_leb128,
    decode_unsigned_varint,
    decode_signed_leb128,
    decode_zigzag_varint,
)
from .errors import (
    WasmError,
    DecodeError,
    FormatError,
    TruncationError,
    ReadError,
    DecodeTimeout,
)
from .types import (
    Module,
    ModuleHeader,
    SectionId,
    ExternalKind,
    FuncType,
    ImportEntry,
    ExportEntry,
    GlobalVariable,
    ElemSegment,
    DataSegment,
    FunctionBody,
    InitExpr,
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
)

__version__ = "0.1.0"

__all__ = [
    # Main API
    "decode_module",
    "open_module",
    # Decoder internals (for testing)
    "BinaryReader",
    "decode_unsigned_leb128",
    "decode_unsigned_varint",
    "decode_signed_leb128",
    "decode_zigzag_varint",
    # Types
    "Module",
    "ModuleHeader",
    "SectionId",
    "ExternalKind",
    "FuncType",
    "ImportEntry",
    "ExportEntry",
    "GlobalVariable",
    "ElemSegment",
    "DataSegment",
    "FunctionBody",
    "InitExpr",
    "NameSection",
    "TypeSection",
    "ImportSection",
    "FunctionSection",
    "TableSection",
    "MemorySection",
    "GlobalSection",
    "ExportSection",
    "StartSection",
    "ElementSection",
    "CodeSection",
    "DataSection",
    # Errors
    "WasmError",
    "DecodeError",
    "FormatError",
    "TruncationError",
    "ReadError",
    "DecodeTimeout",
]
