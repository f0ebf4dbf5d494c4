"""Exception classes for the WebAssembly decoder."""


class WasmError(Exception):
    """Base class for all WebAssembly errors."""

    pass


class DecodeError(WasmError):
    """Error during binary format decoding.

    ``offset`` is the absolute byte offset at which the problem was detected,
    when known. ``module`` is filled in by :func:`decode_module` with the
    partially decoded module (header and every section completed before the
    failure).
    """

    def __init__(self, message: str, offset: int | None = None) -> None:
        super().__init__(message)
        self.offset = offset
        self.module = None


class FormatError(DecodeError):
    """The bytes do not follow the binary format (bad magic, unknown id...)."""

    pass


class TruncationError(DecodeError):
    """The data ended in the middle of a structure."""

    pass


class ReadError(DecodeError):
    """The underlying byte source could not be read."""

    pass


class DecodeTimeout(DecodeError):
    """Decoding took longer than the caller allowed."""

    pass
