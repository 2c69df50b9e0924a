"""
Конфигурация модуля компасной телеметрии.

Содержит настройки шины I2C, режима датчика HMC5883L, процедуры
калибровки и подключения к телеметрии.

Typical usage:
    >>> from compass.config import CompassConfig, load_config
    >>> config = load_config("config.json")
    >>> config.sensor.gain = "GAIN_130"
    >>> config.sample_period = 1.0

Author: НПО Лаборатория К
"""

import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

from .hmc5883l import DataOutputRate, Gain, MeasurementBias, OperatingMode


LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


@dataclass
class BusConfig:
    """Конфигурация шины I2C.

    Attributes:
        bus_number: Номер адаптера (/dev/i2c-N)
        device_address: Адрес датчика на шине
    """

    bus_number: int = 1
    device_address: int = 0x1E


@dataclass
class SensorConfig:
    """Режим работы датчика HMC5883L.

    Значения задаются именами членов перечислений из compass.hmc5883l,
    чтобы их можно было хранить в JSON и передавать из командной строки.

    Attributes:
        gain: Усиление (диапазон поля), например "GAIN_130"
        rate: Частота выдачи данных, например "RATE_15_HZ"
        bias: Режим измерения смещения ("NORMAL", "POSITIVE", "NEGATIVE")
        mode: Режим работы ("CONTINUOUS", "SINGLE", "IDLE")
        verify_identity: Проверять идентификационные регистры перед настройкой
    """

    gain: str = "GAIN_130"
    rate: str = "RATE_15_HZ"
    bias: str = "NORMAL"
    mode: str = "CONTINUOUS"
    verify_identity: bool = True


@dataclass
class CalibrationConfig:
    """Параметры калибровки смещения.

    Attributes:
        duration: Длительность окна калибровки в секундах
        interval: Период опроса датчика во время калибровки в секундах
    """

    duration: float = 10.0
    interval: float = 0.1


@dataclass
class TelemetryConfig:
    """Подключение к удалённой телеметрии.

    Attributes:
        endpoint: Базовый URL сервиса телеметрии
        device_id: Идентификатор устройства (заголовок X-Device-Id)
        timeout: Таймаут HTTP-запросов в секундах
        commands_enabled: Открывать WebSocket входящих команд
    """

    endpoint: str = "http://localhost:8080/v1"
    device_id: Optional[str] = None
    timeout: float = 5.0
    commands_enabled: bool = True


@dataclass
class CompassConfig:
    """Главная конфигурация.

    Attributes:
        bus: Настройки шины I2C
        sensor: Режим датчика
        calibration: Параметры калибровки
        telemetry: Настройки телеметрии
        sample_period: Период отправки измерений в секундах
        log_level: Уровень логирования ('DEBUG', 'INFO', 'WARNING', 'ERROR')

    Example:
        >>> config = CompassConfig()
        >>> config.calibration.duration = 20.0
        >>> config.validate()
        True
    """

    bus: BusConfig = field(default_factory=BusConfig)
    sensor: SensorConfig = field(default_factory=SensorConfig)
    calibration: CalibrationConfig = field(default_factory=CalibrationConfig)
    telemetry: TelemetryConfig = field(default_factory=TelemetryConfig)

    sample_period: float = 1.0
    log_level: str = "INFO"

    def validate(self) -> bool:
        """Проверка корректности конфигурации.

        Returns:
            bool: True если конфигурация валидна

        Raises:
            ValueError: Если параметры выходят за допустимые пределы
        """
        for name, value, types in (
            ("bus.bus_number", self.bus.bus_number, (int,)),
            ("bus.device_address", self.bus.device_address, (int,)),
            ("sample_period", self.sample_period, (int, float)),
            ("calibration.duration", self.calibration.duration, (int, float)),
            ("calibration.interval", self.calibration.interval, (int, float)),
            ("telemetry.timeout", self.telemetry.timeout, (int, float)),
        ):
            # bool — подкласс int, но числом здесь не считается
            if isinstance(value, bool) or not isinstance(value, types):
                raise ValueError(f"{name} должен быть числом, получено: {value!r}")

        if not 0 <= self.bus.device_address <= 0x7F:
            raise ValueError(
                f"device_address должен быть 7-битным, "
                f"получено: 0x{self.bus.device_address:X}"
            )

        for value, enum_cls, name in (
            (self.sensor.gain, Gain, "gain"),
            (self.sensor.rate, DataOutputRate, "rate"),
            (self.sensor.bias, MeasurementBias, "bias"),
            (self.sensor.mode, OperatingMode, "mode"),
        ):
            if not isinstance(value, str) or value not in enum_cls.__members__:
                raise ValueError(
                    f"Недопустимое значение {name}: {value}, "
                    f"ожидается одно из {', '.join(enum_cls.__members__)}"
                )

        if self.sample_period <= 0:
            raise ValueError(
                f"sample_period должен быть положительным, "
                f"получено: {self.sample_period}"
            )

        if self.calibration.interval <= 0:
            raise ValueError(
                f"calibration.interval должен быть положительным, "
                f"получено: {self.calibration.interval}"
            )

        if self.calibration.duration < self.calibration.interval:
            raise ValueError(
                f"calibration.duration ({self.calibration.duration}) "
                f"меньше интервала опроса ({self.calibration.interval})"
            )

        if self.telemetry.timeout <= 0:
            raise ValueError(
                f"telemetry.timeout должен быть положительным, "
                f"получено: {self.telemetry.timeout}"
            )

        if not isinstance(self.log_level, str) or self.log_level not in LOG_LEVELS:
            raise ValueError(f"Недопустимый log_level: {self.log_level}")

        return True

    def to_dict(self) -> dict:
        """Преобразование конфигурации в словарь.

        Returns:
            dict: Словарь с параметрами конфигурации
        """
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CompassConfig":
        """Создание конфигурации из словаря.

        Отсутствующие ключи получают значения по умолчанию.

        Args:
            data: Словарь в формате to_dict()

        Returns:
            CompassConfig: Новая конфигурация

        Raises:
            ValueError: Неизвестный раздел или параметр
        """
        sections = {
            "bus": BusConfig,
            "sensor": SensorConfig,
            "calibration": CalibrationConfig,
            "telemetry": TelemetryConfig,
        }
        kwargs: Dict[str, Any] = {}

        for key, value in data.items():
            if key in sections:
                try:
                    kwargs[key] = sections[key](**value)
                except TypeError as e:
                    raise ValueError(f"Ошибка в разделе '{key}': {e}") from e
            elif key in ("sample_period", "log_level"):
                kwargs[key] = value
            else:
                raise ValueError(f"Неизвестный параметр конфигурации: {key}")

        return cls(**kwargs)


def load_config(path: Union[str, Path]) -> CompassConfig:
    """Загрузка конфигурации из JSON-файла.

    Args:
        path: Путь к файлу

    Returns:
        CompassConfig: Загруженная конфигурация

    Raises:
        FileNotFoundError: Файл не найден
        ValueError: Некорректный JSON или параметры
    """
    text = Path(path).read_text(encoding="utf-8")
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError(f"Некорректный JSON в {path}: {e}") from e

    if not isinstance(data, dict):
        raise ValueError(f"Корень {path} должен быть объектом")

    return CompassConfig.from_dict(data)
