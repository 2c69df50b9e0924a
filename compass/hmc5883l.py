"""
Драйвер трёхосевого магнитометра HMC5883L.

Настройка усиления, частоты выдачи и режима работы датчика,
чтение и разбор блока данных осей.

Datasheet:
    https://dlnmh9ip6v2uc.cloudfront.net/datasheets/Sensors/Magneto/HMC5883L-FDS.pdf

Register map:
    0x00 CONFIG_A   частота выдачи | режим смещения
    0x01 CONFIG_B   усиление (диапазон поля)
    0x02 MODE       режим работы
    0x03-0x08       данные: X_MSB X_LSB Z_MSB Z_LSB Y_MSB Y_LSB
    0x09 STATUS     LOCK | RDY
    0x0A-0x0C       идентификация: 'H' '4' '3'

Порядок осей в блоке данных X, Z, Y — не X, Y, Z.

Author: НПО Лаборатория К
"""

import logging
import struct
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import Optional, Sequence, Union

import numpy as np

from .bus import BusRegisterChannel
from .errors import BusError, ConfigurationError, DecodeError


logger = logging.getLogger(__name__)


HMC5883L_I2C_ADDRESS = 0x1E
IDENTIFICATION = b"H43"
DATA_LENGTH = 6

# Блок данных: три big-endian int16 в порядке X, Z, Y
_DATA_FORMAT = ">hhh"


class HMC5883LRegister(IntEnum):
    """Адреса регистров HMC5883L."""

    CONFIG_A = 0x00
    CONFIG_B = 0x01
    MODE = 0x02
    DATA_X_MSB = 0x03
    DATA_X_LSB = 0x04
    DATA_Z_MSB = 0x05
    DATA_Z_LSB = 0x06
    DATA_Y_MSB = 0x07
    DATA_Y_LSB = 0x08
    STATUS = 0x09
    IDENT_A = 0x0A
    IDENT_B = 0x0B
    IDENT_C = 0x0C


class Gain(Enum):
    """Усиление датчика.

    Значение члена — пара (биты CONFIG_B, разрешение в мГс/отсчёт).
    Биты и разрешение берутся из одного члена, поэтому не могут
    разойтись.

    Attributes:
        GAIN_088: ±0.88 Гс, 0.73 мГс/отсчёт
        GAIN_130: ±1.3 Гс, 0.92 мГс/отсчёт (по умолчанию)
        GAIN_190: ±1.9 Гс, 1.22 мГс/отсчёт
        GAIN_250: ±2.5 Гс, 1.52 мГс/отсчёт
        GAIN_400: ±4.0 Гс, 2.27 мГс/отсчёт
        GAIN_470: ±4.7 Гс, 2.56 мГс/отсчёт
        GAIN_560: ±5.6 Гс, 3.03 мГс/отсчёт
        GAIN_810: ±8.1 Гс, 4.35 мГс/отсчёт
    """

    GAIN_088 = (0x00, 0.73)
    GAIN_130 = (0x20, 0.92)
    GAIN_190 = (0x40, 1.22)
    GAIN_250 = (0x60, 1.52)
    GAIN_400 = (0x80, 2.27)
    GAIN_470 = (0xA0, 2.56)
    GAIN_560 = (0xC0, 3.03)
    GAIN_810 = (0xE0, 4.35)

    @property
    def bits(self) -> int:
        return self.value[0]

    @property
    def resolution(self) -> float:
        return self.value[1]


class DataOutputRate(IntEnum):
    """Частота выдачи данных в непрерывном режиме (биты DO2..DO0)."""

    RATE_0_75_HZ = 0x00
    RATE_1_5_HZ = 0x04
    RATE_3_HZ = 0x08
    RATE_7_5_HZ = 0x0C
    RATE_15_HZ = 0x10
    RATE_30_HZ = 0x14
    RATE_75_HZ = 0x18


class MeasurementBias(IntEnum):
    """Режим измерения (биты MS1..MS0 регистра CONFIG_A)."""

    NORMAL = 0x00
    POSITIVE = 0x01
    NEGATIVE = 0x02


class OperatingMode(IntEnum):
    """Режим работы (регистр MODE)."""

    CONTINUOUS = 0x00
    SINGLE = 0x01
    IDLE = 0x02


@dataclass(frozen=True)
class RawSample:
    """Сырые отсчёты трёх осей (int16)."""

    x: int
    y: int
    z: int


@dataclass(frozen=True)
class PhysicalSample:
    """Измерение в мГс с учётом разрешения и смещения.

    Attributes:
        x: Компонента X в мГс
        y: Компонента Y в мГс
        z: Компонента Z в мГс
        timestamp: Время получения
    """

    x: float
    y: float
    z: float
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        """Представление для отправки в телеметрию."""
        return {
            "x": self.x,
            "y": self.y,
            "z": self.z,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class SensorStatus:
    """Содержимое регистра STATUS.

    Attributes:
        ready: RDY — новые данные готовы
        locked: LOCK — регистры данных заблокированы до полного чтения
    """

    ready: bool
    locked: bool


def decode_sample(data: Sequence[int]) -> RawSample:
    """Разбор шести байт данных осей.

    Args:
        data: Байты начиная с DATA_X_MSB: X(MSB,LSB) Z(MSB,LSB) Y(MSB,LSB)

    Returns:
        RawSample: Отсчёты осей

    Raises:
        DecodeError: Меньше шести байт

    Example:
        >>> decode_sample(bytes([0x00, 0x64, 0x00, 0xC8, 0xFF, 0x38]))
        RawSample(x=100, y=-200, z=200)
    """
    if len(data) < DATA_LENGTH:
        raise DecodeError(
            f"Недостаточно данных: {len(data)} < {DATA_LENGTH} байт"
        )

    x, z, y = struct.unpack(_DATA_FORMAT, bytes(data[:DATA_LENGTH]))
    return RawSample(x=x, y=y, z=z)


def apply_resolution(raw: RawSample, gain: Gain) -> np.ndarray:
    """Перевод сырых отсчётов в мГс.

    Args:
        raw: Сырые отсчёты
        gain: Усиление, с которым они получены

    Returns:
        np.ndarray: Вектор [x, y, z] в мГс
    """
    return np.array([raw.x, raw.y, raw.z], dtype=np.float64) * gain.resolution


class MagnetometerDriver:
    """Драйвер HMC5883L.

    Attributes:
        channel: Канал доступа к регистрам
        address: Адрес датчика на шине
        gain: Запрограммированное усиление (None до configure())

    Example:
        >>> with BusRegisterChannel(1) as channel:
        ...     driver = MagnetometerDriver(channel)
        ...     driver.configure(Gain.GAIN_130, DataOutputRate.RATE_15_HZ)
        ...     raw = driver.read_sample()
    """

    def __init__(
        self,
        channel: BusRegisterChannel,
        address: int = HMC5883L_I2C_ADDRESS,
    ):
        self.channel = channel
        self.address = address
        self._gain: Optional[Gain] = None

    @property
    def gain(self) -> Optional[Gain]:
        return self._gain

    @property
    def is_configured(self) -> bool:
        return self._gain is not None

    def configure(
        self,
        gain: Gain,
        rate: DataOutputRate,
        bias: MeasurementBias = MeasurementBias.NORMAL,
        mode: OperatingMode = OperatingMode.CONTINUOUS,
    ) -> None:
        """Настройка датчика.

        Запись выполняется в порядке: усиление (CONFIG_B), частота и
        режим смещения (CONFIG_A), режим работы (MODE).

        Args:
            gain: Усиление
            rate: Частота выдачи данных
            bias: Режим измерения смещения
            mode: Режим работы

        Raises:
            ConfigurationError: Ошибка записи любого из регистров
        """
        self._gain = None

        writes = (
            (HMC5883LRegister.CONFIG_B, gain.bits),
            (HMC5883LRegister.CONFIG_A, rate | bias),
            (HMC5883LRegister.MODE, mode),
        )

        for register, value in writes:
            try:
                self.channel.write_register(self.address, register, value)
            except BusError as e:
                raise ConfigurationError(
                    f"Не удалось записать {register.name}=0x{int(value):02X}: {e}"
                ) from e

        self._gain = gain

        logger.info(
            "HMC5883L настроен: gain=%s (%.2f мГс/отсчёт), rate=%s, bias=%s, mode=%s",
            gain.name,
            gain.resolution,
            rate.name,
            bias.name,
            mode.name,
        )

    def read_identification(self) -> bytes:
        """Чтение идентификационных регистров.

        Returns:
            bytes: Три байта IDENT_A..IDENT_C

        Raises:
            BusError: Ошибка передачи
        """
        return self.channel.read_block(self.address, HMC5883LRegister.IDENT_A, 3)

    def verify_identity(self) -> None:
        """Проверка, что на адресе находится HMC5883L.

        Raises:
            ConfigurationError: Устройство не отвечает или не HMC5883L
        """
        try:
            ident = self.read_identification()
        except BusError as e:
            raise ConfigurationError(
                f"Устройство 0x{self.address:02X} не отвечает: {e}"
            ) from e

        if ident != IDENTIFICATION:
            raise ConfigurationError(
                f"Неожиданная идентификация 0x{self.address:02X}: "
                f"{ident!r}, ожидалось {IDENTIFICATION!r}"
            )

        logger.debug("HMC5883L обнаружен на 0x%02X", self.address)

    def read_status(self) -> SensorStatus:
        """Чтение регистра статуса.

        Raises:
            BusError: Ошибка передачи
        """
        status = self.channel.read_block(self.address, HMC5883LRegister.STATUS, 1)[0]
        return SensorStatus(ready=bool(status & 0x01), locked=bool(status & 0x02))

    def read_sample(self) -> RawSample:
        """Чтение сырых отсчётов осей.

        Returns:
            RawSample: Отсчёты X, Y, Z

        Raises:
            ConfigurationError: Датчик не настроен
            BusError: Ошибка передачи
            DecodeError: Короткий блок данных
        """
        self._check_configured()

        data = self.channel.read_block(
            self.address,
            HMC5883LRegister.DATA_X_MSB,
            DATA_LENGTH,
        )
        return decode_sample(data)

    def read_scaled(self) -> np.ndarray:
        """Чтение вектора в мГс без учёта смещения."""
        raw = self.read_sample()
        return apply_resolution(raw, self._gain)

    def read_physical(
        self,
        offset: Union[Sequence[float], np.ndarray],
    ) -> PhysicalSample:
        """Чтение измерения с учётом разрешения и смещения.

        Args:
            offset: Смещение [x, y, z] в мГс

        Returns:
            PhysicalSample: Новое измерение
        """
        vector = self.read_scaled() - np.asarray(offset, dtype=np.float64)
        return PhysicalSample(
            x=float(vector[0]),
            y=float(vector[1]),
            z=float(vector[2]),
        )

    def _check_configured(self) -> None:
        if self._gain is None:
            raise ConfigurationError("HMC5883L не настроен, вызовите configure()")
