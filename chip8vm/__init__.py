from chip8vm.machine import AwaitingKey, Chip8, Running, VMFault
from chip8vm.rom import Rom, Species

__all__ = ["AwaitingKey", "Chip8", "Rom", "Running", "Species", "VMFault"]
