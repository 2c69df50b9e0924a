"""
Клиент удалённой телеметрии.

Ядро обращается к телеметрии через два узких интерфейса:
«доставить измерение» и «получить входящую команду». Повторы,
очереди и аутентификация остаются на стороне сервиса.

HTTP API:
    GET  {endpoint}/health     проверка доступности
    POST {endpoint}/readings   {"x": .., "y": .., "z": .., "timestamp": ..}
    WS   {endpoint}/commands   входящие команды (JSON), подтверждаются клиентом

Author: НПО Лаборатория К
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional

import aiohttp

from .config import TelemetryConfig
from .errors import DeliveryError


logger = logging.getLogger(__name__)


CommandHandler = Callable[[Any], None]


class TelemetrySink(ABC):
    """Интерфейс получателя измерений."""

    @abstractmethod
    async def connect(self) -> None:
        """Подключение к сервису.

        Raises:
            ConnectionError: Сервис недоступен
        """

    @abstractmethod
    async def deliver(self, reading: Dict[str, Any]) -> None:
        """Доставка одного измерения.

        Raises:
            DeliveryError: Измерение не принято
        """

    @abstractmethod
    def on_command(self, handler: CommandHandler) -> None:
        """Регистрация обработчика входящих команд."""

    @abstractmethod
    async def close(self) -> None:
        """Закрытие соединения."""


class HttpTelemetryClient(TelemetrySink):
    """Клиент телеметрии поверх aiohttp.

    Attributes:
        config: Настройки телеметрии
        is_connected: Флаг состояния подключения

    Example:
        >>> client = HttpTelemetryClient(TelemetryConfig(endpoint="http://hub:8080/v1"))
        >>> await client.connect()
        >>> await client.deliver({"x": 1.0, "y": 2.0, "z": 3.0})
        >>> await client.close()
    """

    def __init__(self, config: Optional[TelemetryConfig] = None):
        self.config = config or TelemetryConfig()
        self.is_connected: bool = False

        self._session: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._ws_task: Optional[asyncio.Task] = None
        self._command_handler: Optional[CommandHandler] = None

    @property
    def base_url(self) -> str:
        return self.config.endpoint.rstrip("/")

    async def connect(self) -> None:
        if self.is_connected:
            logger.warning("Соединение с телеметрией уже установлено")
            return

        headers = {}
        if self.config.device_id:
            headers["X-Device-Id"] = self.config.device_id

        self._session = aiohttp.ClientSession(
            headers=headers,
            timeout=aiohttp.ClientTimeout(total=self.config.timeout),
        )

        try:
            async with self._session.get(f"{self.base_url}/health") as resp:
                if resp.status != 200:
                    raise ConnectionError(
                        f"Телеметрия {self.base_url} недоступна: HTTP {resp.status}"
                    )

            if self.config.commands_enabled:
                self._ws = await self._session.ws_connect(f"{self.base_url}/commands")
                self._ws_task = asyncio.ensure_future(self._receive_commands())

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            await self.close()
            raise ConnectionError(
                f"Не удалось подключиться к {self.base_url}: {e}"
            ) from e
        except ConnectionError:
            await self.close()
            raise

        self.is_connected = True
        logger.info("Подключено к телеметрии: %s", self.base_url)

    async def deliver(self, reading: Dict[str, Any]) -> None:
        if not self.is_connected or self._session is None:
            raise DeliveryError("Соединение с телеметрией не установлено")

        try:
            async with self._session.post(
                f"{self.base_url}/readings",
                json=reading,
            ) as resp:
                if resp.status >= 300:
                    raise DeliveryError(
                        f"Телеметрия отклонила измерение: HTTP {resp.status}"
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise DeliveryError(f"Ошибка отправки измерения: {e}") from e

    def on_command(self, handler: CommandHandler) -> None:
        self._command_handler = handler

    async def close(self) -> None:
        if self._ws_task:
            self._ws_task.cancel()
            try:
                await self._ws_task
            except asyncio.CancelledError:
                pass
            self._ws_task = None

        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        self._ws = None

        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

        if self.is_connected:
            logger.info("Соединение с телеметрией закрыто")
        self.is_connected = False

    async def _receive_commands(self) -> None:
        """Приём входящих команд по WebSocket."""
        logger.debug("Приём команд запущен")

        async for msg in self._ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                await self._dispatch_command(msg.data)
            elif msg.type == aiohttp.WSMsgType.ERROR:
                logger.error("WebSocket ошибка: %s", self._ws.exception())
                break

        logger.debug("Приём команд остановлен")

    async def _dispatch_command(self, text: str) -> None:
        """Разбор, подтверждение и передача одной команды."""
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            logger.warning("Некорректная команда (не JSON): %r", text)
            return

        # Подтверждение получения — обязанность клиента, не ядра
        if isinstance(payload, dict) and "id" in payload:
            try:
                await self._ws.send_json({"type": "ack", "id": payload["id"]})
            except (aiohttp.ClientError, ConnectionResetError) as e:
                logger.warning(
                    "Не удалось подтвердить команду %s: %s", payload["id"], e
                )

        if self._command_handler is None:
            logger.info("Получена команда без обработчика: %s", payload)
            return

        try:
            self._command_handler(payload)
        except Exception as e:
            logger.error("Ошибка в обработчике команды: %s", e)
