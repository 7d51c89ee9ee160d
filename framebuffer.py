DISPLAY_WIDTH = 64
DISPLAY_HEIGHT = 32
SDISPLAY_WIDTH = 128
SDISPLAY_HEIGHT = 64
DISPLAY_SIZE = (SDISPLAY_WIDTH * SDISPLAY_HEIGHT) // 8


def get_bit(data, ix: int) -> bool:
    return bool((data[ix // 8] >> (7 - (ix % 8))) & 1)


def set_bit(data: bytearray, ix: int, val: bool):
    mask = 1 << (7 - (ix % 8))
    if val:
        data[ix // 8] |= mask
    else:
        data[ix // 8] &= ~mask & 0xFF


class Framebuffer:
    """
    One-bit-per-pixel display plane.

    The plane is always sized for the high resolution mode; in low resolution
    mode only the first 64x32 bits are addressed. Pixels are stored row-major,
    MSB first within each byte, and every coordinate wraps around the edges of
    the current resolution.
    """

    def __init__(self):
        self.display = bytearray(DISPLAY_SIZE)
        self.extended = False

    @property
    def width(self) -> int:
        return SDISPLAY_WIDTH if self.extended else DISPLAY_WIDTH

    @property
    def height(self) -> int:
        return SDISPLAY_HEIGHT if self.extended else DISPLAY_HEIGHT

    @property
    def row_length(self) -> int:
        return self.width // 8

    def _pixel_index(self, x: int, y: int) -> int:
        return (y % self.height) * self.width + (x % self.width)

    def get_pixel(self, x: int, y: int) -> bool:
        return get_bit(self.display, self._pixel_index(x, y))

    def set_pixel(self, x: int, y: int, val: bool):
        set_bit(self.display, self._pixel_index(x, y), val)

    def clear(self):
        self.display[:] = bytes(DISPLAY_SIZE)

    def draw_sprite(self, sprite, n: int, x: int, y: int) -> bool:
        """
        XOR a sprite onto the plane at (x, y) and report whether any lit pixel
        was turned off.

        A sprite with n rows is 8 pixels wide, one byte per row. With n == 0 the
        sprite is the 16x16 extended form, two bytes per row.
        """
        cols, rows = (16, 16) if n == 0 else (8, n)
        collision = False
        for row in range(rows):
            for col in range(cols):
                sprite_pixel = get_bit(sprite, row * cols + col)
                if not sprite_pixel:
                    continue
                if self.get_pixel(x + col, y + row):
                    collision = True
                    self.set_pixel(x + col, y + row, False)
                else:
                    self.set_pixel(x + col, y + row, True)
        return collision

    def scroll_down(self, n: int):
        """
        00CN - SCD nibble
        Scroll the display down by n rows, blanking the top n rows.
        """
        n = min(n, self.height)
        stride = self.row_length
        used = stride * self.height
        shift = stride * n
        self.display[shift:used] = self.display[0:used - shift]
        self.display[0:shift] = bytes(shift)

    def scroll_right(self):
        """
        00FB - SCR
        Scroll the display right by 4 pixels.
        """
        stride = self.row_length
        for row in range(self.height):
            start = row * stride
            carry = 0
            for i in range(start, start + stride):
                current = self.display[i]
                self.display[i] = (current >> 4) | ((carry << 4) & 0xF0)
                carry = current

    def scroll_left(self):
        """
        00FC - SCL
        Scroll the display left by 4 pixels.
        """
        stride = self.row_length
        for row in range(self.height):
            start = row * stride
            carry = 0
            for i in range(start + stride - 1, start - 1, -1):
                current = self.display[i]
                self.display[i] = ((current << 4) & 0xF0) | ((carry >> 4) & 0x0F)
                carry = current

    def rows(self):
        """Yield each visible row as a list of booleans."""
        for y in range(self.height):
            yield [self.get_pixel(x, y) for x in range(self.width)]
