from opcodes import Opcode


def test_decode_fields():
    op = Opcode.decode(0xD1, 0x2F)
    assert op.value == 0xD12F
    assert op.nibbles == (0xD, 0x1, 0x2, 0xF)
    assert op.family == 0xD
    assert op.nnn == 0x12F
    assert op.nn == 0x2F
    assert op.n == 0xF
    assert op.x == 0x1
    assert op.y == 0x2


def test_str_is_hex_word():
    assert str(Opcode.decode(0x00, 0xE0)) == "00E0"
