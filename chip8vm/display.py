# Helpers over the packed frame buffer: 64x32 pixels, row-major, 8 pixels per byte, MSB first.

from chip8vm.machine import DISPLAY_HEIGHT, DISPLAY_WIDTH


def pixel(frame, x, y):
    index = y * DISPLAY_WIDTH + x
    return bool(frame[index // 8] & (0x80 >> (index % 8)))


def lit_pixels(frame):
    """Yield (x, y) for every pixel that is on."""
    for offset, block in enumerate(frame):
        if not block:
            continue
        for bit in range(8):
            if block & (0x80 >> bit):
                index = offset * 8 + bit
                yield index % DISPLAY_WIDTH, index // DISPLAY_WIDTH


def to_text(frame, on="#", off=" "):
    border = "+" + "-" * DISPLAY_WIDTH + "+"
    rows = [border]
    for y in range(DISPLAY_HEIGHT):
        rows.append("|" + "".join(
            on if pixel(frame, x, y) else off for x in range(DISPLAY_WIDTH)) + "|")
    rows.append(border)
    return "\n".join(rows)
