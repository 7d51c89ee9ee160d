from collections import namedtuple


class Opcode(namedtuple("Opcode", ["value", "nibbles", "nnn", "nn", "n", "x", "y"])):
    """
    A decoded 16-bit instruction word.

    nibbles holds the four 4-bit fields from most to least significant.
    nnn is the low 12 bits (address), nn the low byte, n the low nibble,
    x and y the register indices in nibbles 1 and 2.
    """
    __slots__ = ()

    @classmethod
    def decode(cls, high: int, low: int):
        value = (high << 8) | low
        nibbles = ((high & 0xF0) >> 4, high & 0x0F, (low & 0xF0) >> 4, low & 0x0F)
        return cls(
            value=value,
            nibbles=nibbles,
            nnn=value & 0x0FFF,
            nn=low,
            n=nibbles[3],
            x=nibbles[1],
            y=nibbles[2],
        )

    @property
    def family(self) -> int:
        return self.nibbles[0]

    def __str__(self):
        return f"{self.value:04X}"
