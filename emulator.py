import argparse
import logging
import random
import sys

from cpu import CPU, CycleResult, NUM_KEYS, ProgramTooLarge

logger = logging.getLogger('Chip8Host')

# Host keys laid out like the COSMAC VIP hex keypad:
#   1 2 3 4      1 2 3 C
#   q w e r  ->  4 5 6 D
#   a s d f      7 8 9 E
#   z x c v      A 0 B F
KEYMAP = {
    '1': 0x1, '2': 0x2, '3': 0x3, '4': 0xC,
    'q': 0x4, 'w': 0x5, 'e': 0x6, 'r': 0xD,
    'a': 0x7, 's': 0x8, 'd': 0x9, 'f': 0xE,
    'z': 0xA, 'x': 0x0, 'c': 0xB, 'v': 0xF,
}

CYCLES_PER_FRAME = 8
SUPER_CYCLES_PER_FRAME = 16


def read_program(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


def keys_from_string(chars: str) -> list:
    """Turn a string of held host keys into a keyboard snapshot."""
    keys = [False] * NUM_KEYS
    for char in chars.lower():
        if char not in KEYMAP:
            raise ValueError(f"No keypad key is mapped to {char!r}")
        keys[KEYMAP[char]] = True
    return keys


def render(chip8_cpu: CPU, on_pixel: str = '#', off_pixel: str = ' ') -> str:
    lines = []
    for row in chip8_cpu.framebuffer.rows():
        lines.append(''.join(on_pixel if pixel else off_pixel for pixel in row))
    return '\n'.join(lines)


def run_frame(chip8_cpu: CPU, keys) -> CycleResult:
    """Run one frame's worth of cycles, stopping early if the machine stops."""
    num_cycles = SUPER_CYCLES_PER_FRAME if chip8_cpu.is_extended_mode() else CYCLES_PER_FRAME
    for _ in range(num_cycles):
        result = chip8_cpu.cycle(keys)
        if result is not CycleResult.CONTINUE:
            return result
    return CycleResult.CONTINUE


def run(chip8_cpu: CPU, frames: int, keys, out=sys.stdout, final_only: bool = False) -> CycleResult:
    result = CycleResult.CONTINUE
    for frame in range(frames):
        result = run_frame(chip8_cpu, keys)

        if chip8_cpu.should_emit_tone():
            print("beep", file=out)

        if chip8_cpu.drawFlag and not final_only:
            print(render(chip8_cpu), file=out)
            print('-' * chip8_cpu.get_width(), file=out)
            chip8_cpu.drawFlag = False

        if result is not CycleResult.CONTINUE:
            logger.info(f"Machine stopped with {result.name} after {frame + 1} frames")
            break

    if final_only:
        print(render(chip8_cpu), file=out)
    return result


def configure_logging(log_file: str = None, verbose: bool = False):
    logging.basicConfig(filename=log_file,
                        filemode='a',
                        format='%(asctime)s,%(msecs)d %(name)s %(levelname)s %(message)s',
                        datefmt='%H:%M:%S',
                        level=logging.DEBUG if verbose else logging.WARNING)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        prog="chip8-emu",
        description="Run a CHIP-8 / SCHIP program and print its display as text.")
    parser.add_argument("rom", help="program file to load at 0x200")
    parser.add_argument("--frames", type=int, default=60,
                        help="number of frames to run (default: 60)")
    parser.add_argument("--keys", default="",
                        help="host keys held down for the whole run, e.g. 'qw'")
    parser.add_argument("--seed", type=int, default=None,
                        help="seed for the random number instruction")
    parser.add_argument("--final-only", action="store_true",
                        help="print only the display after the last frame")
    parser.add_argument("--log-file", default=None,
                        help="append log records to this file instead of stderr")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="log every executed opcode")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_file, args.verbose)

    try:
        keys = keys_from_string(args.keys)
    except ValueError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    chip8_cpu = CPU(rng=random.Random(args.seed))
    try:
        chip8_cpu.load_program(read_program(args.rom))
    except (OSError, ProgramTooLarge) as e:
        print(f"Loading {args.rom} failed: {e}", file=sys.stderr)
        return 2

    run(chip8_cpu, args.frames, keys, final_only=args.final_only)

    if chip8_cpu.error is not None:
        print(f"error: {chip8_cpu.error}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
