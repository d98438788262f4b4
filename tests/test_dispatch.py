import logging

import pytest

from chip8vm.machine import VMFault, decode


def test_decode_keys():
    assert decode(0x00E0) == (0x0, 0x0E0)
    assert decode(0x1234) == (0x1, None)
    assert decode(0x8AB4) == (0x8, 0x4)
    assert decode(0xE59E) == (0xE, 0x9E)
    assert decode(0xF165) == (0xF, 0x65)


@pytest.mark.parametrize("word", [
    0x0000,  # SYS calls are not supported
    0x0123,
    0x5121,
    0x8128,
    0x812F,
    0x9121,
    0xE100,
    0xF100,
    0xF1FF,
])
def test_undefined_instructions_fault(make_vm, word):
    with pytest.raises(VMFault, match="Unhandled instruction: 0x%04X" % word):
        make_vm(word).step()


def test_fault_logs_dump(make_vm, caplog):
    vm = make_vm(0x6142, 0x0001)
    with caplog.at_level(logging.ERROR, logger="chip8vm.machine"):
        with pytest.raises(VMFault) as excinfo:
            vm.step(2)
    assert "V1: 0x42" in excinfo.value.dump
    assert "PC: 0x204" in excinfo.value.dump
    assert "Unhandled instruction" in caplog.text
    assert "CHIP-8 state:" in caplog.text


def test_dump_lists_stack_frames(make_vm):
    vm = make_vm(0x2204, 0x0000, 0x6000)
    vm.step()
    text = vm.dump()
    assert "Stack (1 frames):" in text
    assert "0:\t0x202" in text


def test_every_group_has_handlers(make_vm):
    vm = make_vm(0x0000)
    groups = {group for group, _ in vm.funcmap}
    assert groups == set(range(16))
