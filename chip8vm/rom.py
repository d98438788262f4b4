import enum
import logging

logger = logging.getLogger(__name__)


class Species(enum.Enum):
    """Program conventions, told apart only by where they expect to be loaded."""

    CHIP8 = 0x200
    ETI660 = 0x600

    @property
    def offset(self):
        return self.value


class Rom:
    """An immutable program image. Nothing is validated here, bad programs fault at run time."""

    def __init__(self, data=b""):
        self._data = bytes(data)

    def load(self, data):
        self._data = bytes(data)
        return True

    @property
    def data(self):
        return self._data

    def __len__(self):
        return len(self._data)

    @classmethod
    def from_file(cls, path):
        logger.info("Loading ROM: %s", path)
        with open(path, "rb") as f:
            return cls(f.read())
