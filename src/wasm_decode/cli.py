"""
wasm-dump: print the header and sections of WebAssembly modules.

Usage:
    wasm-dump module.wasm [more.wasm ...]
    wasm-dump -v module.wasm          # also log each section as it is decoded
    python -m wasm_decode module.wasm
"""

import logging
import sys

from .decoder import open_module
from .errors import DecodeError
from .types import Module, section_entries


def print_module(module: Module) -> None:
    if module.header is not None:
        print(f"module header: {module.header}")
    print(f"#sections: {len(module.sections)}")
    for section in module.sections:
        entries = len(section_entries(section))
        print(f"section: {section.id:2d} ({type(section).__name__}) entries={entries}")


def dump(path: str) -> bool:
    """Print one module. Returns False if it could not be fully decoded."""
    try:
        module = open_module(path)
    except DecodeError as e:
        if e.module is not None:
            print_module(e.module)
        print(f"{path}: {e}", file=sys.stderr)
        return False
    print_module(module)
    return True


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = sys.argv[1:] if argv is None else list(argv)

    if args and args[0] in ("-h", "--help"):
        print(__doc__)
        return 0

    level = logging.WARNING
    if args and args[0] in ("-v", "--verbose"):
        level = logging.DEBUG
        args = args[1:]

    if not args:
        print("Error: no input file", file=sys.stderr)
        print(__doc__, file=sys.stderr)
        return 2

    logging.basicConfig(format="wasm>> %(message)s", level=level)

    ok = True
    for path in args:
        if len(args) > 1:
            print(f"{path}:")
        ok = dump(path) and ok
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
