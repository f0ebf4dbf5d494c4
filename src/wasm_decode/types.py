"""WebAssembly module structure definitions."""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import ClassVar, Union


# Value type constants
VALTYPE_I32 = "i32"
VALTYPE_I64 = "i64"
VALTYPE_F32 = "f32"
VALTYPE_F64 = "f64"

# The only element type of the MVP
ELEMTYPE_ANYFUNC = "anyfunc"

# Binary encoding of value types
VALTYPE_ENCODING = {
    0x7F: VALTYPE_I32,
    0x7E: VALTYPE_I64,
    0x7D: VALTYPE_F32,
    0x7C: VALTYPE_F64,
}

ELEMTYPE_ENCODING = {
    0x70: ELEMTYPE_ANYFUNC,
}

# Type constructor of function signatures
FORM_FUNC = 0x60

ValType = str  # One of the VALTYPE_* constants

WASM_MAGIC = b"\x00asm"


class SectionId(IntEnum):
    """Numeric ids of module sections."""

    NAME = 0  # user section, always decoded as a name section
    TYPE = 1
    IMPORT = 2
    FUNCTION = 3
    TABLE = 4
    MEMORY = 5
    GLOBAL = 6
    EXPORT = 7
    START = 8
    ELEMENT = 9
    CODE = 10
    DATA = 11


class ExternalKind(IntEnum):
    """Kind of definition being imported or exported."""

    FUNCTION = 0
    TABLE = 1
    MEMORY = 2
    GLOBAL = 3


@dataclass(frozen=True)
class ModuleHeader:
    """Magic number and version that open every module."""

    magic: bytes
    version: int

    def __str__(self) -> str:
        magic = "".join(f"\\x{b:02x}" if b < 0x20 else chr(b) for b in self.magic)
        return f'ModuleHeader{{Magic="{magic}" Version=0x{self.version:x}}}'


@dataclass(frozen=True)
class FuncType:
    """WebAssembly function type (signature)."""

    form: int
    params: tuple[ValType, ...]
    results: tuple[ValType, ...]

    def __repr__(self) -> str:
        params = ", ".join(self.params)
        results = ", ".join(self.results)
        return f"({params}) -> ({results})"


@dataclass(frozen=True)
class ResizableLimits:
    """Memory or table limits.

    Bit 0 of ``flags`` is set when ``maximum`` is present.
    """

    flags: int
    initial: int
    maximum: int | None = None


@dataclass(frozen=True)
class TableType:
    """Table type with element type and limits."""

    element_type: str
    limits: ResizableLimits


@dataclass(frozen=True)
class MemoryType:
    """Memory type with limits."""

    limits: ResizableLimits


@dataclass(frozen=True)
class GlobalType:
    """Global type with value type and mutability."""

    content_type: ValType
    mutable: bool


@dataclass(frozen=True)
class InitExpr:
    """Initializer expression, kept as raw opcode bytes without the end marker."""

    expr: bytes


@dataclass(frozen=True)
class ImportEntry:
    """An import entry.

    ``type`` is a type index for functions, otherwise the TableType,
    MemoryType or GlobalType of the imported definition.
    """

    module: str
    field: str
    kind: ExternalKind
    type: Union[int, TableType, MemoryType, GlobalType]


@dataclass(frozen=True)
class GlobalVariable:
    """Global variable declaration."""

    type: GlobalType
    init: InitExpr


@dataclass(frozen=True)
class ExportEntry:
    """An export entry."""

    field: str
    kind: ExternalKind
    index: int


@dataclass(frozen=True)
class ElemSegment:
    """Element segment for table initialization."""

    index: int
    offset: InitExpr
    elems: tuple[int, ...]


@dataclass(frozen=True)
class DataSegment:
    """Data segment for memory initialization."""

    index: int
    offset: InitExpr
    data: bytes


@dataclass(frozen=True)
class LocalEntry:
    """``count`` locals of the same value type."""

    count: int
    type: ValType


@dataclass(frozen=True)
class FunctionBody:
    """A function body: local declarations and raw code without the end marker."""

    body_size: int
    locals: tuple[LocalEntry, ...]
    code: bytes


@dataclass(frozen=True)
class LocalName:
    name: str


@dataclass(frozen=True)
class FunctionNames:
    name: str
    locals: tuple[LocalName, ...]


# Sections. Each one records its id as a class attribute.


@dataclass(frozen=True)
class NameSection:
    id: ClassVar[SectionId] = SectionId.NAME

    name: str
    functions: tuple[FunctionNames, ...]


@dataclass(frozen=True)
class TypeSection:
    id: ClassVar[SectionId] = SectionId.TYPE

    types: tuple[FuncType, ...]


@dataclass(frozen=True)
class ImportSection:
    id: ClassVar[SectionId] = SectionId.IMPORT

    imports: tuple[ImportEntry, ...]


@dataclass(frozen=True)
class FunctionSection:
    """Type indices of the functions defined by the module."""

    id: ClassVar[SectionId] = SectionId.FUNCTION

    types: tuple[int, ...]


@dataclass(frozen=True)
class TableSection:
    id: ClassVar[SectionId] = SectionId.TABLE

    tables: tuple[TableType, ...]


@dataclass(frozen=True)
class MemorySection:
    id: ClassVar[SectionId] = SectionId.MEMORY

    memories: tuple[MemoryType, ...]


@dataclass(frozen=True)
class GlobalSection:
    id: ClassVar[SectionId] = SectionId.GLOBAL

    globals: tuple[GlobalVariable, ...]


@dataclass(frozen=True)
class ExportSection:
    id: ClassVar[SectionId] = SectionId.EXPORT

    exports: tuple[ExportEntry, ...]


@dataclass(frozen=True)
class StartSection:
    id: ClassVar[SectionId] = SectionId.START

    index: int


@dataclass(frozen=True)
class ElementSection:
    id: ClassVar[SectionId] = SectionId.ELEMENT

    elements: tuple[ElemSegment, ...]


@dataclass(frozen=True)
class CodeSection:
    """Function bodies, in the order of the function section."""

    id: ClassVar[SectionId] = SectionId.CODE

    bodies: tuple[FunctionBody, ...]


@dataclass(frozen=True)
class DataSection:
    id: ClassVar[SectionId] = SectionId.DATA

    segments: tuple[DataSegment, ...]


Section = Union[
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
]


def section_entries(section: Section) -> tuple:
    """Return the entries a section declares (the start index for Start)."""
    if isinstance(section, NameSection):
        return section.functions
    if isinstance(section, TypeSection):
        return section.types
    if isinstance(section, ImportSection):
        return section.imports
    if isinstance(section, FunctionSection):
        return section.types
    if isinstance(section, TableSection):
        return section.tables
    if isinstance(section, MemorySection):
        return section.memories
    if isinstance(section, GlobalSection):
        return section.globals
    if isinstance(section, ExportSection):
        return section.exports
    if isinstance(section, StartSection):
        return (section.index,)
    if isinstance(section, ElementSection):
        return section.elements
    if isinstance(section, CodeSection):
        return section.bodies
    if isinstance(section, DataSection):
        return section.segments
    raise TypeError(f"Not a section: {section!r}")


@dataclass(frozen=True)
class Module:
    """A decoded WebAssembly module.

    ``header`` is None only when decoding failed before the header was read.
    """

    header: ModuleHeader | None
    sections: tuple[Section, ...] = field(default=())

    def section(self, section_id: int) -> Section | None:
        """Return the first section with the given id, if any."""
        for section in self.sections:
            if section.id == section_id:
                return section
        return None
