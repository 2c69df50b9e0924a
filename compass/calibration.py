"""
Калибровка смещения (hard-iron) магнитометра.

В течение фиксированного окна датчик вращают во всех направлениях
(восьмёркой), для каждой оси отслеживаются минимум и максимум.
Смещение оси — середина размаха:

    bias = (max + min) / 2

Результат калибровки неизменяем и живёт до перезапуска процесса.

Author: НПО Лаборатория К
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum, auto
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np

from .errors import BusError, CalibrationError, DecodeError


logger = logging.getLogger(__name__)


AXES = ("x", "y", "z")


class CalibrationState(Enum):
    """Состояния процедуры калибровки.

    Attributes:
        IDLE: Калибровка не начата
        SAMPLING: Идёт накопление размаха
        COMPLETE: Смещение вычислено
    """

    IDLE = auto()
    SAMPLING = auto()
    COMPLETE = auto()


class AxisWindow:
    """Текущий размах одной оси."""

    def __init__(self):
        self.minimum: Optional[float] = None
        self.maximum: Optional[float] = None

    def update(self, value: float) -> None:
        # Минимум и максимум обновляются независимо друг от друга
        if self.maximum is None or value > self.maximum:
            self.maximum = value
        if self.minimum is None or value < self.minimum:
            self.minimum = value

    @property
    def is_degenerate(self) -> bool:
        """Ось не наблюдалась или ни разу не изменилась."""
        return (
            self.minimum is None
            or self.maximum is None
            or self.maximum == self.minimum
        )


@dataclass(frozen=True)
class CalibrationResult:
    """Смещение по трём осям.

    Attributes:
        x: Смещение оси X в мГс
        y: Смещение оси Y в мГс
        z: Смещение оси Z в мГс
        extents: Размах (min, max) каждой оси
        samples_count: Количество учтённых измерений
    """

    x: float
    y: float
    z: float
    extents: Tuple[Tuple[float, float], ...] = ()
    samples_count: int = 0

    def as_array(self) -> np.ndarray:
        """Смещение в виде вектора [x, y, z]."""
        return np.array([self.x, self.y, self.z], dtype=np.float64)


class CalibrationEstimator:
    """Оценка смещения по размаху показаний.

    Attributes:
        state: Текущее состояние процедуры

    Example:
        >>> estimator = CalibrationEstimator()
        >>> estimator.start()
        >>> for vector in ([-30.0, 0.0, 5.0], [70.0, 10.0, -5.0]):
        ...     estimator.add_sample(vector)
        >>> estimator.finish().x
        20.0
    """

    def __init__(self):
        self.state = CalibrationState.IDLE
        self._windows: List[AxisWindow] = []
        self._samples_count = 0

    def start(self) -> None:
        """Переход в SAMPLING с пустым размахом по всем осям.

        Raises:
            CalibrationError: Калибровка уже идёт или завершена
        """
        if self.state is not CalibrationState.IDLE:
            raise CalibrationError(
                f"Калибровку нельзя начать из состояния {self.state.name}"
            )

        self._windows = [AxisWindow() for _ in AXES]
        self._samples_count = 0
        self.state = CalibrationState.SAMPLING

    def add_sample(self, vector: Sequence[float]) -> None:
        """Учёт одного измерения [x, y, z] (без смещения).

        Raises:
            CalibrationError: Калибровка не в состоянии SAMPLING
            ValueError: Вектор не трёхмерный
        """
        if self.state is not CalibrationState.SAMPLING:
            raise CalibrationError(
                f"Измерение не принимается в состоянии {self.state.name}"
            )

        if len(vector) != len(AXES):
            raise ValueError(f"Ожидается 3 компоненты, получено: {len(vector)}")

        for window, value in zip(self._windows, vector):
            window.update(float(value))

        self._samples_count += 1

    def finish(self) -> CalibrationResult:
        """Вычисление смещения и переход в COMPLETE.

        Returns:
            CalibrationResult: Смещение по осям

        Raises:
            CalibrationError: Калибровка не начата, либо какая-то ось
                              не получила размаха
        """
        if self.state is not CalibrationState.SAMPLING:
            raise CalibrationError(
                f"Калибровку нельзя завершить из состояния {self.state.name}"
            )

        degenerate = [
            axis for axis, window in zip(AXES, self._windows) if window.is_degenerate
        ]
        if degenerate:
            raise CalibrationError(
                f"Смещение не определено для осей {', '.join(degenerate)}: "
                f"датчик не вращали ({self._samples_count} измерений)",
                axes=degenerate,
            )

        bias = [(w.maximum + w.minimum) / 2 for w in self._windows]
        extents = tuple((w.minimum, w.maximum) for w in self._windows)

        self.state = CalibrationState.COMPLETE
        self._windows = []

        return CalibrationResult(
            x=bias[0],
            y=bias[1],
            z=bias[2],
            extents=extents,
            samples_count=self._samples_count,
        )

    def run(
        self,
        driver,
        duration: float = 10.0,
        interval: float = 0.1,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> CalibrationResult:
        """Блокирующая калибровка по датчику.

        Опрашивает driver.read_scaled() каждые interval секунд, пока
        не истечёт duration. Ошибки шины и разбора отдельных измерений
        пропускаются.

        Args:
            driver: Настроенный MagnetometerDriver
            duration: Длительность окна в секундах
            interval: Период опроса в секундах
            clock: Монотонные часы
            sleep: Функция ожидания

        Returns:
            CalibrationResult: Смещение по осям

        Raises:
            CalibrationError: Какая-то ось не получила размаха
        """
        logger.info(
            "Калибровка компаса: вращайте датчик восьмёркой в течение %.0f с...",
            duration,
        )

        self.start()

        started = clock()
        deadline = started + duration
        next_time = started
        skipped = 0

        while clock() < deadline:
            try:
                self.add_sample(driver.read_scaled())
            except (BusError, DecodeError) as e:
                skipped += 1
                logger.warning("Измерение калибровки пропущено: %s", e)

            next_time += interval
            sleep(max(0.0, next_time - clock()))

        if skipped:
            logger.warning("Пропущено измерений при калибровке: %d", skipped)

        result = self.finish()

        logger.info(
            "Смещение: %.0f %.0f %.0f мГс (%d измерений)",
            result.x,
            result.y,
            result.z,
            result.samples_count,
        )
        return result
