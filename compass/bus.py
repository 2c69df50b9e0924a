"""
Канал доступа к регистрам устройства на шине I2C.

Низкоуровневые операции записи одного регистра и блочного чтения
поверх smbus2. Повторов нет: любая ошибка передачи сразу
поднимается как BusError.

Author: НПО Лаборатория К
"""

import logging
import threading
from typing import Optional

import smbus2

from .errors import BusError


logger = logging.getLogger(__name__)


class BusRegisterChannel:
    """Канал чтения/записи регистров по шине I2C.

    Все передачи выполняются под блокировкой: аппаратная шина
    не допускает чередования транзакций.

    Attributes:
        bus_number: Номер адаптера I2C (/dev/i2c-N)
        is_open: Флаг открытого адаптера

    Example:
        >>> with BusRegisterChannel(1) as channel:
        ...     channel.write_register(0x1E, 0x02, 0x00)
        ...     data = channel.read_block(0x1E, 0x03, 6)
    """

    def __init__(self, bus_number: int = 1):
        self.bus_number = bus_number
        self._bus: Optional[smbus2.SMBus] = None
        self._lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        return self._bus is not None

    def open(self) -> None:
        """Открытие адаптера I2C.

        Raises:
            BusError: Адаптер недоступен
        """
        if self._bus is not None:
            return

        try:
            self._bus = smbus2.SMBus(self.bus_number)
        except OSError as e:
            raise BusError(
                f"Не удалось открыть /dev/i2c-{self.bus_number}: {e}"
            ) from e

        logger.debug("Шина I2C открыта: /dev/i2c-%d", self.bus_number)

    def close(self) -> None:
        """Закрытие адаптера."""
        with self._lock:
            if self._bus is not None:
                self._bus.close()
                self._bus = None
                logger.debug("Шина I2C закрыта: /dev/i2c-%d", self.bus_number)

    def write_register(
        self,
        device_address: int,
        register: int,
        value: int,
    ) -> None:
        """Запись одного байта в регистр.

        Args:
            device_address: Адрес устройства на шине
            register: Адрес регистра
            value: Записываемый байт (0-255)

        Raises:
            BusError: Ошибка передачи
        """
        with self._lock:
            bus = self._require_open()
            try:
                bus.write_byte_data(device_address, register, value & 0xFF)
            except OSError as e:
                raise BusError(
                    f"Ошибка записи 0x{device_address:02X}:0x{register:02X}: {e}"
                ) from e

    def read_block(
        self,
        device_address: int,
        start_register: int,
        length: int,
    ) -> bytes:
        """Чтение блока последовательных регистров.

        Args:
            device_address: Адрес устройства на шине
            start_register: Адрес первого регистра
            length: Количество байт

        Returns:
            bytes: Ровно length байт

        Raises:
            BusError: Ошибка передачи или короткое чтение
        """
        with self._lock:
            bus = self._require_open()
            try:
                data = bus.read_i2c_block_data(device_address, start_register, length)
            except OSError as e:
                raise BusError(
                    f"Ошибка чтения 0x{device_address:02X}:0x{start_register:02X}: {e}"
                ) from e

        if len(data) < length:
            raise BusError(
                f"Короткое чтение 0x{device_address:02X}:0x{start_register:02X}: "
                f"{len(data)} < {length} байт"
            )

        return bytes(data)

    def _require_open(self) -> smbus2.SMBus:
        if self._bus is None:
            raise BusError("Шина I2C не открыта")
        return self._bus

    def __enter__(self) -> "BusRegisterChannel":
        """Поддержка контекстного менеджера."""
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Закрытие при выходе из контекста."""
        self.close()
