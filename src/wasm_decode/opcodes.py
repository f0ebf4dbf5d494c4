"""WebAssembly opcode definitions (MVP names).

Function bodies and initializer expressions are kept as raw bytes; only the
opcodes the decoder has to recognise while scanning them are listed here.
"""

# Control instructions
END = 0x0B

# Variable access
GET_GLOBAL = 0x23

# Constants
I32_CONST = 0x41
I64_CONST = 0x42
F32_CONST = 0x43
F64_CONST = 0x44

# Immediates of the instructions allowed in initializer expressions
LEB128_IMMEDIATE = {
    I32_CONST,
    I64_CONST,
    GET_GLOBAL,
}

FIXED_IMMEDIATE = {
    F32_CONST: 4,
    F64_CONST: 8,
}
