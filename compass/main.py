#!/usr/bin/env python3
"""
Точка входа компасной телеметрии.

Запуск:
    python -m compass.main
    # или
    compass-telemetry

Последовательность запуска:
    1. Настройка датчика (ошибка фатальна)
    2. Калибровка смещения (ошибка фатальна)
    3. Подключение к телеметрии (ошибка фатальна)
    4. Периодический опрос до SIGINT/SIGTERM

Аргументы командной строки:
    --config FILE            JSON-файл конфигурации
    --bus N                  Номер адаптера I2C (default: 1)
    --gain NAME              Усиление, например GAIN_130
    --rate NAME              Частота выдачи, например RATE_15_HZ
    --period S               Период отправки в секундах (default: 1.0)
    --calibration-seconds S  Длительность калибровки (default: 10)
    --endpoint URL           URL сервиса телеметрии
    --log-level LVL          Уровень логирования (default: INFO)

Author: НПО Лаборатория К
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import Optional

from .bus import BusRegisterChannel
from .calibration import CalibrationEstimator, CalibrationResult
from .config import LOG_LEVELS, CompassConfig, load_config
from .errors import BusError, CalibrationError, ConfigurationError
from .hmc5883l import (
    DataOutputRate,
    Gain,
    MagnetometerDriver,
    MeasurementBias,
    OperatingMode,
)
from .sampling import SamplingLoop
from .telemetry import HttpTelemetryClient, TelemetrySink


logger = logging.getLogger(__name__)


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    """Парсинг аргументов командной строки.

    Флаги, не указанные явно, остаются None и не перекрывают
    значения из файла конфигурации.

    Returns:
        argparse.Namespace: Разобранные аргументы
    """
    parser = argparse.ArgumentParser(
        description="HMC5883L compass telemetry",
    )

    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="JSON-файл конфигурации",
    )

    parser.add_argument(
        "--bus",
        type=int,
        default=None,
        help="Номер адаптера I2C (/dev/i2c-N)",
    )

    parser.add_argument(
        "--gain",
        type=str,
        default=None,
        choices=list(Gain.__members__),
        help="Усиление датчика",
    )

    parser.add_argument(
        "--rate",
        type=str,
        default=None,
        choices=list(DataOutputRate.__members__),
        help="Частота выдачи данных датчиком",
    )

    parser.add_argument(
        "--period",
        type=float,
        default=None,
        help="Период отправки измерений в секундах",
    )

    parser.add_argument(
        "--calibration-seconds",
        type=float,
        default=None,
        help="Длительность калибровки в секундах",
    )

    parser.add_argument(
        "--endpoint",
        type=str,
        default=None,
        help="URL сервиса телеметрии",
    )

    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=LOG_LEVELS,
        help="Уровень логирования",
    )

    return parser.parse_args(argv)


def setup_logging(level: str) -> None:
    """Настройка логирования.

    Args:
        level: Уровень логирования
    """
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def create_config(args: argparse.Namespace) -> CompassConfig:
    """Создание конфигурации из файла и аргументов.

    Args:
        args: Аргументы командной строки

    Returns:
        CompassConfig: Проверенная конфигурация

    Raises:
        ValueError: Некорректная конфигурация
    """
    config = load_config(args.config) if args.config else CompassConfig()

    # Bus
    if args.bus is not None:
        config.bus.bus_number = args.bus

    # Sensor
    if args.gain is not None:
        config.sensor.gain = args.gain
    if args.rate is not None:
        config.sensor.rate = args.rate

    # Sampling
    if args.period is not None:
        config.sample_period = args.period
    if args.calibration_seconds is not None:
        config.calibration.duration = args.calibration_seconds

    # Telemetry
    if args.endpoint is not None:
        config.telemetry.endpoint = args.endpoint

    # Logging
    if args.log_level is not None:
        config.log_level = args.log_level

    config.validate()
    return config


def configure_sensor(
    channel: BusRegisterChannel,
    config: CompassConfig,
) -> MagnetometerDriver:
    """Этап 1: настройка датчика.

    Raises:
        ConfigurationError: Датчик не удалось настроить
    """
    driver = MagnetometerDriver(channel, config.bus.device_address)

    if config.sensor.verify_identity:
        driver.verify_identity()

    driver.configure(
        Gain[config.sensor.gain],
        DataOutputRate[config.sensor.rate],
        MeasurementBias[config.sensor.bias],
        OperatingMode[config.sensor.mode],
    )
    return driver


def calibrate(
    driver: MagnetometerDriver,
    config: CompassConfig,
) -> CalibrationResult:
    """Этап 2: калибровка смещения.

    Raises:
        CalibrationError: Смещение не определено
    """
    return CalibrationEstimator().run(
        driver,
        duration=config.calibration.duration,
        interval=config.calibration.interval,
    )


async def async_main(
    config: CompassConfig,
    channel: Optional[BusRegisterChannel] = None,
    sink: Optional[TelemetrySink] = None,
) -> int:
    """Асинхронная точка входа.

    Args:
        config: Конфигурация
        channel: Канал шины (по умолчанию — адаптер из конфигурации)
        sink: Получатель измерений (по умолчанию — HTTP-клиент)

    Returns:
        int: Код возврата (0 = успех)
    """
    channel = channel or BusRegisterChannel(config.bus.bus_number)
    sink = sink or HttpTelemetryClient(config.telemetry)

    try:
        channel.open()
        driver = configure_sensor(channel, config)
        calibration = calibrate(driver, config)

        logger.info("Подключение к телеметрии...")
        await sink.connect()

        sampling = SamplingLoop(
            driver,
            calibration,
            sink,
            period=config.sample_period,
        )

        # Обработка сигналов
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, sampling.stop)
            except NotImplementedError:
                signal.signal(sig, lambda s, f: sampling.stop())

        await sampling.run()

    except (BusError, ConfigurationError) as e:
        logger.error("Датчик не настроен: %s", e)
        return 1

    except CalibrationError as e:
        logger.error("Калибровка не удалась: %s", e)
        return 1

    except ConnectionError as e:
        logger.error("Не удалось подключиться: %s", e)
        return 1

    finally:
        logger.info("Остановка сервисов...")
        await sink.close()
        channel.close()
        logger.info("Завершено")

    return 0


def main(argv: Optional[list] = None) -> int:
    """Главная точка входа.

    Returns:
        int: Код возврата
    """
    args = parse_args(argv)

    try:
        config = create_config(args)
    except (OSError, ValueError) as e:
        print(f"Ошибка конфигурации: {e}", file=sys.stderr)
        return 2

    setup_logging(config.log_level)

    return asyncio.run(async_main(config))


if __name__ == "__main__":
    sys.exit(main())
