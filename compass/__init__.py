"""
Компасная телеметрия на магнитометре HMC5883L.

Периодический опрос трёхосевого магнитометра по шине I2C,
калибровка смещения при запуске и отправка измерений
в удалённую телеметрию.

Modules:
    bus: Канал доступа к регистрам по I2C
    hmc5883l: Драйвер HMC5883L
    calibration: Калибровка смещения
    sampling: Периодический опрос и отправка
    telemetry: Клиент телеметрии
    config: Конфигурация модуля

Example:
    >>> from compass import BusRegisterChannel, MagnetometerDriver, Gain, DataOutputRate
    >>> with BusRegisterChannel(1) as channel:
    ...     driver = MagnetometerDriver(channel)
    ...     driver.configure(Gain.GAIN_130, DataOutputRate.RATE_15_HZ)
    ...     print(driver.read_sample())

Author: НПО Лаборатория К
Version: 1.0.0
License: Proprietary
"""

__version__ = "1.0.0"
__author__ = "НПО Лаборатория К"
__email__ = "lab767@gmail.com"

from .bus import BusRegisterChannel
from .calibration import CalibrationEstimator, CalibrationResult
from .config import CompassConfig
from .errors import (
    BusError,
    CalibrationError,
    CompassError,
    ConfigurationError,
    DecodeError,
    DeliveryError,
)
from .hmc5883l import DataOutputRate, Gain, MagnetometerDriver, PhysicalSample, RawSample
from .sampling import SamplingLoop, Ticker
from .telemetry import HttpTelemetryClient, TelemetrySink

__all__ = [
    "BusRegisterChannel",
    "CalibrationEstimator",
    "CalibrationResult",
    "CompassConfig",
    "BusError",
    "CalibrationError",
    "CompassError",
    "ConfigurationError",
    "DecodeError",
    "DeliveryError",
    "DataOutputRate",
    "Gain",
    "MagnetometerDriver",
    "PhysicalSample",
    "RawSample",
    "SamplingLoop",
    "Ticker",
    "HttpTelemetryClient",
    "TelemetrySink",
]
