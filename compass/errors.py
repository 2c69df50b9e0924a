"""
Исключения модуля компасной телеметрии.

Иерархия:
    CompassError
    ├── BusError            — ошибка обмена по шине I2C
    ├── ConfigurationError  — датчик не удалось перевести в известный режим
    ├── DecodeError         — повреждённый или укороченный блок данных
    ├── CalibrationError    — ось не получила ни одного размаха
    └── DeliveryError       — телеметрия не приняла измерение

Ошибки подключения к телеметрии передаются стандартным ConnectionError.

Author: НПО Лаборатория К
"""

from typing import Optional, Sequence


class CompassError(Exception):
    """Базовое исключение пакета."""


class BusError(CompassError):
    """Ошибка передачи по шине (нет ACK, короткое чтение и т.п.)."""


class ConfigurationError(CompassError):
    """Ошибка конфигурации датчика. Фатальна для процесса."""


class DecodeError(CompassError):
    """Блок данных датчика не удалось разобрать."""


class CalibrationError(CompassError):
    """Калибровка не дала определённого смещения.

    Attributes:
        axes: Оси, для которых смещение не определено
    """

    def __init__(self, message: str, axes: Optional[Sequence[str]] = None):
        super().__init__(message)
        self.axes = tuple(axes or ())


class DeliveryError(CompassError):
    """Измерение не доставлено в телеметрию. Не фатально."""
