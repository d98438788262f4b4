from chip8vm.machine import FONT_START, FONTSET, MEMORY_SIZE, Chip8
from chip8vm.rom import Rom, Species


def test_rom_load_copies_any_bytes():
    buf = bytearray(b"\x12\x34")
    rom = Rom()
    assert rom.load(buf)
    buf[0] = 0
    assert rom.data == b"\x12\x34"
    assert len(rom) == 2


def test_rom_from_file(tmp_path):
    path = tmp_path / "prog.ch8"
    path.write_bytes(b"\x00\xE0")
    assert Rom.from_file(path).data == b"\x00\xE0"


def test_species_offsets():
    assert Species.CHIP8.offset == 0x200
    assert Species.ETI660.offset == 0x600


def test_load_primary_species():
    vm = Chip8()
    assert vm.load(Rom(b"\xAB\xCD"))
    assert vm.pc == 0x200
    assert vm.memory[0x200:0x202] == b"\xAB\xCD"
    assert vm.memory[FONT_START:FONT_START + 80] == FONTSET


def test_load_alternate_species():
    vm = Chip8()
    assert vm.load(Rom(b"\x01"), Species.ETI660)
    assert vm.pc == 0x600
    assert vm.memory[0x600] == 0x01


def test_oversized_image_fails_without_mutation():
    vm = Chip8()
    too_big = Rom(b"\xFF" * (MEMORY_SIZE - 0x200))
    assert not vm.load(too_big)
    assert vm.pc == 0
    assert vm.memory == bytearray(MEMORY_SIZE)


def test_largest_image_that_fits():
    vm = Chip8()
    assert vm.load(Rom(b"\x11" * (MEMORY_SIZE - 0x200 - 1)))
    assert not Chip8().load(Rom(b"\x11" * (MEMORY_SIZE - 0x600)), Species.ETI660)
