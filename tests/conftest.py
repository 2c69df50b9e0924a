"""
Общие заглушки для тестов.

Author: НПО Лаборатория К
"""

import struct

import pytest

from compass.errors import BusError
from compass.hmc5883l import IDENTIFICATION, HMC5883LRegister


class FakeChannel:
    """Канал шины с заранее заданными показаниями датчика.

    Каждое чтение блока данных выдаёт следующую тройку (x, y, z),
    последняя тройка повторяется. Элемент-исключение поднимается.
    """

    def __init__(self, samples=None, ident=IDENTIFICATION, fail_writes=False):
        self.samples = list(samples or [(0, 0, 0)])
        self.ident = ident
        self.fail_writes = fail_writes
        self.writes = []
        self.reads = 0
        self.is_open = False

    def open(self):
        self.is_open = True

    def close(self):
        self.is_open = False

    def write_register(self, device_address, register, value):
        if self.fail_writes:
            raise BusError("NACK")
        self.writes.append((register, value))

    def read_block(self, device_address, start_register, length):
        if start_register == HMC5883LRegister.IDENT_A:
            return self.ident
        if start_register == HMC5883LRegister.STATUS:
            return bytes([0x01])

        self.reads += 1
        item = self.samples.pop(0) if len(self.samples) > 1 else self.samples[0]
        if isinstance(item, Exception):
            raise item

        x, y, z = item
        # Порядок на шине: X, Z, Y
        return struct.pack(">hhh", x, z, y)


@pytest.fixture
def fake_channel():
    """Фабрика заглушек канала."""
    return FakeChannel
