import pytest

from chip8vm.machine import RUNNING, AwaitingKey, VMFault


def test_await_key_blocks_until_pressed(make_vm):
    vm = make_vm(0xF30A, 0x6101)
    assert vm.step() == 1
    assert vm.state == AwaitingKey(3)

    assert vm.step(10) == 0
    assert vm.pc == 0x202
    assert vm.state == AwaitingKey(3)


def test_await_key_delivers_lowest_key_without_fetching(make_vm):
    vm = make_vm(0xF30A, 0x6101)
    vm.step()
    vm.keys = (1 << 0xB) | (1 << 0x5)
    assert vm.step() == 1
    assert vm.V[3] == 0x5
    assert vm.state == RUNNING
    assert vm.pc == 0x202
    assert vm.V[1] == 0

    vm.step()
    assert vm.V[1] == 1


def test_await_key_batch_continues_after_delivery(make_vm):
    vm = make_vm(0xF30A, 0x6101, 0x6202)
    vm.press(0)
    assert vm.step(4) == 4
    assert vm.V[3] == 0
    assert (vm.V[1], vm.V[2]) == (1, 2)


@pytest.mark.parametrize("word,pressed,skips", [
    (0xE29E, True, True),
    (0xE29E, False, False),
    (0xE2A1, True, False),
    (0xE2A1, False, True),
])
def test_key_skips(make_vm, word, pressed, skips):
    vm = make_vm(word)
    vm.V[2] = 0xA
    if pressed:
        vm.press(0xA)
    vm.step()
    assert vm.pc == (0x204 if skips else 0x202)


@pytest.mark.parametrize("word", [0xE29E, 0xE2A1])
def test_key_skip_with_invalid_key_faults(make_vm, word):
    vm = make_vm(word)
    vm.V[2] = 16
    with pytest.raises(VMFault, match="Invalid key"):
        vm.step()


def test_key_mask_helpers(make_vm):
    vm = make_vm(0x0000)
    vm.press(0xF)
    vm.press(0x1)
    assert vm.keys == 0x8002
    vm.release(0xF)
    assert vm.keys == 0x0002
    assert vm.is_pressed(1)
    assert not vm.is_pressed(0xF)
    with pytest.raises(ValueError):
        vm.press(16)
    with pytest.raises(ValueError):
        vm.keys = 0x10000
