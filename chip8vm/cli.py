import argparse
import logging
import sys

from chip8vm import config
from chip8vm.display import to_text
from chip8vm.machine import Chip8, VMFault
from chip8vm.rom import Rom, Species

logger = logging.getLogger(__name__)


def build_parser():
    parser = argparse.ArgumentParser(prog="chip8vm", description="CHIP-8 virtual machine")
    parser.add_argument("rom", help="program image to run")
    parser.add_argument("--eti660", action="store_true",
                        help="load as an ETI 660 program (at 0x600 instead of 0x200)")
    parser.add_argument("--scale", type=int, default=config.SCALE,
                        help="window pixels per CHIP-8 pixel")
    parser.add_argument("--cpu-hz", type=int, default=config.CPU_HZ,
                        help="instructions executed per second")
    parser.add_argument("--headless", type=int, metavar="STEPS",
                        help="run STEPS instructions without a window and print the display")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="trace every instruction")
    return parser


def run_headless(machine, steps, cpu_hz=config.CPU_HZ, out=None):
    """Run `steps` instructions, ticking the timers at TIMER_HZ relative to `cpu_hz`."""
    out = out or sys.stdout
    per_tick = max(1, cpu_hz // config.TIMER_HZ)
    remaining = steps
    while remaining > 0:
        batch = min(per_tick, remaining)
        done = machine.step(batch)
        remaining -= batch
        machine.tick()
        if done < batch:
            # Blocked on a key press nobody is going to make
            logger.warning("Stopped waiting for a key press with %d steps left", remaining + batch - done)
            break
    print(to_text(machine.draw()), file=out)


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format=config.LOG_FORMAT)

    try:
        rom = Rom.from_file(args.rom)
    except OSError as e:
        logger.error("Failed to open file: %s", e)
        return 1

    machine = Chip8()
    species = Species.ETI660 if args.eti660 else Species.CHIP8
    if not machine.load(rom, species):
        logger.error("Failed to load ROM into emulator.")
        return 1

    if args.headless is not None:
        try:
            run_headless(machine, args.headless, cpu_hz=args.cpu_hz)
        except VMFault:
            return 1
        return 0

    # Imported here so headless runs don't need a display
    from chip8vm.frontend import run
    run(machine, scale=args.scale, cpu_hz=args.cpu_hz)
    return 0
