"""
Периодический опрос магнитометра и отправка измерений.

Каждый такт: чтение датчика, перевод в мГс, вычитание смещения,
постановка измерения в очередь отправки. Отправкой занимается
отдельная задача, такт её не ждёт; порядок измерений сохраняется.

Author: НПО Лаборатория К
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .calibration import CalibrationResult
from .errors import BusError, DecodeError, DeliveryError
from .hmc5883l import MagnetometerDriver, PhysicalSample
from .telemetry import TelemetrySink


logger = logging.getLogger(__name__)


class Ticker:
    """Асинхронный таймер с фиксированным периодом.

    Первый такт срабатывает сразу. Если обработка такта заняла
    больше периода, следующий такт срабатывает немедленно, без
    накопления пропущенных.

    Example:
        >>> ticker = Ticker(1.0)
        >>> async for tick in ticker:
        ...     if tick == 9:
        ...         ticker.cancel()
    """

    def __init__(self, period: float):
        if period <= 0:
            raise ValueError(f"Период должен быть положительным, получено: {period}")

        self.period = period
        self.ticks = 0
        self._next_time: Optional[float] = None
        self._cancelled = False
        self._event: Optional[asyncio.Event] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Остановка таймера. Ожидающий такт завершается сразу."""
        self._cancelled = True
        if self._event is not None:
            self._event.set()

    def __aiter__(self) -> "Ticker":
        return self

    async def __anext__(self) -> int:
        if self._cancelled:
            raise StopAsyncIteration

        loop = asyncio.get_running_loop()
        if self._event is None:
            self._event = asyncio.Event()

        now = loop.time()
        if self._next_time is None:
            self._next_time = now
        else:
            self._next_time += self.period
            if self._next_time <= now:
                logger.debug(
                    "Такт %d опоздал на %.3f с",
                    self.ticks,
                    now - self._next_time,
                )
                self._next_time = now
            else:
                try:
                    await asyncio.wait_for(
                        self._event.wait(),
                        timeout=self._next_time - now,
                    )
                except asyncio.TimeoutError:
                    pass

        if self._cancelled:
            raise StopAsyncIteration

        tick = self.ticks
        self.ticks += 1
        return tick


@dataclass
class SamplingStatistics:
    """Статистика опроса.

    Attributes:
        ticks: Количество тактов
        delivered: Доставлено измерений
        delivery_failures: Ошибок доставки
        skipped_ticks: Тактов без измерения (ошибка шины или разбора)
        dropped: Измерений, не поместившихся в очередь отправки
    """

    ticks: int = 0
    delivered: int = 0
    delivery_failures: int = 0
    skipped_ticks: int = 0
    dropped: int = 0


class SamplingLoop:
    """Цикл опроса датчика и отправки измерений.

    Чтение датчика в sample_once выполняется синхронно в потоке
    событийного цикла: блочное чтение 6 байт по I2C занимает доли
    миллисекунды. Медленные операции с шиной сюда добавлять нельзя,
    иначе задержатся такты и отправка.

    Attributes:
        driver: Настроенный драйвер магнитометра
        calibration: Результат калибровки (неизменяемый)
        sink: Получатель измерений
        period: Период опроса в секундах
        statistics: Статистика опроса

    Example:
        >>> loop = SamplingLoop(driver, calibration, client, period=1.0)
        >>> await loop.run()
    """

    QUEUE_SIZE = 64
    DRAIN_TIMEOUT = 5.0

    def __init__(
        self,
        driver: MagnetometerDriver,
        calibration: CalibrationResult,
        sink: TelemetrySink,
        period: float = 1.0,
        command_handler: Optional[Callable[[Any], None]] = None,
    ):
        self.driver = driver
        self.calibration = calibration
        self.sink = sink
        self.period = period
        self.statistics = SamplingStatistics()

        self._offset = calibration.as_array()
        self._command_handler = command_handler
        self._queue: Optional[asyncio.Queue] = None
        self._ticker: Optional[Ticker] = None

        self.is_running: bool = False

    async def run(self, max_ticks: Optional[int] = None) -> None:
        """Запуск цикла до stop() или max_ticks тактов.

        Args:
            max_ticks: Ограничение числа тактов (None — без ограничения)
        """
        self.sink.on_command(self.handle_command)

        self._queue = asyncio.Queue(maxsize=self.QUEUE_SIZE)
        self._ticker = Ticker(self.period)
        sender = asyncio.ensure_future(self._send_loop())

        self.is_running = True
        logger.info("Опрос запущен: период %.2f с", self.period)

        try:
            async for tick in self._ticker:
                self.sample_once()
                if max_ticks is not None and tick + 1 >= max_ticks:
                    break
        finally:
            self._ticker.cancel()
            await self._drain()

            sender.cancel()
            try:
                await sender
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.exception("Задача отправки завершилась с ошибкой")

            self.is_running = False
            logger.info(
                "Опрос остановлен: тактов %d, доставлено %d, ошибок доставки %d, "
                "пропущено %d",
                self.statistics.ticks,
                self.statistics.delivered,
                self.statistics.delivery_failures,
                self.statistics.skipped_ticks,
            )

    def stop(self) -> None:
        """Остановка цикла после текущего такта."""
        if self._ticker is not None:
            self._ticker.cancel()

    def sample_once(self) -> Optional[PhysicalSample]:
        """Один такт: чтение датчика и постановка в очередь отправки.

        Returns:
            Optional[PhysicalSample]: Измерение или None, если такт пропущен
        """
        self.statistics.ticks += 1

        try:
            sample = self.driver.read_physical(self._offset)
        except (BusError, DecodeError) as e:
            self.statistics.skipped_ticks += 1
            logger.warning("Такт пропущен: %s", e)
            return None

        if self._queue is not None:
            try:
                self._queue.put_nowait(sample)
            except asyncio.QueueFull:
                self.statistics.dropped += 1
                logger.warning("Очередь отправки заполнена, измерение отброшено")

        return sample

    def handle_command(self, payload: Any) -> None:
        """Передача входящей команды обработчику без разбора."""
        if self._command_handler is None:
            logger.info("Получена команда: %s", payload)
            return

        try:
            self._command_handler(payload)
        except Exception as e:
            logger.error("Ошибка в обработчике команды: %s", e)

    async def _send_loop(self) -> None:
        """Отправка измерений из очереди по одному, в порядке поступления."""
        while True:
            sample = await self._queue.get()
            try:
                await self.sink.deliver(sample.to_dict())
            except (DeliveryError, ConnectionError) as e:
                self.statistics.delivery_failures += 1
                logger.warning("Не удалось отправить измерение: %s", e)
            except Exception:
                self.statistics.delivery_failures += 1
                logger.exception("Непредвиденная ошибка отправки измерения")
            else:
                self.statistics.delivered += 1
                logger.debug(
                    "Измерение отправлено: %.1f %.1f %.1f",
                    sample.x,
                    sample.y,
                    sample.z,
                )
            finally:
                self._queue.task_done()

    async def _drain(self) -> None:
        """Ожидание отправки оставшихся измерений."""
        try:
            await asyncio.wait_for(self._queue.join(), timeout=self.DRAIN_TIMEOUT)
        except asyncio.TimeoutError:
            logger.warning(
                "Не отправлено измерений при остановке: %d",
                self._queue.qsize(),
            )
