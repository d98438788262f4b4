"""
Shared helpers for the chip8vm tests.
"""
import random

import pytest

from chip8vm.machine import Chip8
from chip8vm.rom import Rom, Species


def assemble(*words):
    """Pack 16-bit instruction words big-endian into a program image."""
    return b"".join(word.to_bytes(2, "big") for word in words)


@pytest.fixture
def make_vm():
    def _make(*words, species=Species.CHIP8, seed=0):
        vm = Chip8(rng=random.Random(seed))
        assert vm.load(Rom(assemble(*words)), species)
        return vm
    return _make
