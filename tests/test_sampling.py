"""
Tests for the sampling loop, telemetry client and startup pipeline.

Run tests:
    pytest tests/test_sampling.py -v

Author: НПО Лаборатория К
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from aiohttp import web
from aiohttp import test_utils

from compass.calibration import CalibrationResult
from compass.config import CompassConfig, TelemetryConfig
from compass.errors import BusError, DecodeError, DeliveryError
from compass.hmc5883l import DataOutputRate, Gain, MagnetometerDriver
from compass.main import async_main, create_config, parse_args
from compass.sampling import SamplingLoop, Ticker
from compass.telemetry import HttpTelemetryClient


def make_sink(deliver_side_effect=None):
    """Заглушка получателя измерений."""
    sink = MagicMock()
    sink.connect = AsyncMock()
    sink.deliver = AsyncMock(side_effect=deliver_side_effect)
    sink.close = AsyncMock()
    return sink


def make_driver(channel, gain=Gain.GAIN_088):
    driver = MagnetometerDriver(channel)
    driver.configure(gain, DataOutputRate.RATE_75_HZ)
    return driver


ZERO_BIAS = CalibrationResult(x=0.0, y=0.0, z=0.0)


class TestTicker:
    """Тесты асинхронного таймера."""

    def test_invalid_period(self):
        """Неположительный период отклоняется."""
        with pytest.raises(ValueError):
            Ticker(0)

    @pytest.mark.asyncio
    async def test_fixed_period(self):
        """Такты следуют с заданным периодом."""
        loop = asyncio.get_running_loop()
        ticker = Ticker(0.02)
        times = []

        async for tick in ticker:
            times.append(loop.time())
            if tick == 3:
                break

        assert ticker.ticks == 4
        assert times[-1] - times[0] >= 0.05

    @pytest.mark.asyncio
    async def test_cancel_while_waiting(self):
        """cancel() прерывает ожидание такта."""
        ticker = Ticker(10.0)
        ticks = []

        async def consume():
            async for tick in ticker:
                ticks.append(tick)

        task = asyncio.ensure_future(consume())
        await asyncio.sleep(0.01)
        ticker.cancel()
        await asyncio.wait_for(task, timeout=1.0)

        assert ticks == [0]
        assert ticker.cancelled is True


class TestSamplingLoop:
    """Тесты цикла опроса."""

    @pytest.mark.asyncio
    async def test_delivery_failure_does_not_stop_loop(self, fake_channel):
        """Ошибка доставки на такте N не мешает такту N+1."""
        sink = make_sink([DeliveryError("HTTP 503"), None, None])
        loop = SamplingLoop(
            make_driver(fake_channel([(1, 2, 3)])),
            ZERO_BIAS,
            sink,
            period=0.01,
        )

        await loop.run(max_ticks=3)

        assert sink.deliver.await_count == 3
        assert loop.statistics.ticks == 3
        assert loop.statistics.delivery_failures == 1
        assert loop.statistics.delivered == 2
        assert loop.is_running is False

    @pytest.mark.asyncio
    async def test_unexpected_delivery_error_does_not_stop_sender(self, fake_channel):
        """Непредвиденная ошибка получателя учитывается, отправка продолжается."""
        sink = make_sink([RuntimeError("boom"), None, None])
        loop = SamplingLoop(
            make_driver(fake_channel([(1, 2, 3)])),
            ZERO_BIAS,
            sink,
            period=0.01,
        )

        await loop.run(max_ticks=3)

        assert sink.deliver.await_count == 3
        assert loop.statistics.delivery_failures == 1
        assert loop.statistics.delivered == 2
        assert loop.is_running is False

    @pytest.mark.asyncio
    async def test_tick_does_not_wait_for_delivery(self, fake_channel):
        """Такты идут, пока получатель не подтвердил ни одного измерения."""
        release = asyncio.Event()
        sent = []

        async def deliver(reading):
            await release.wait()
            sent.append(reading["x"])

        sink = make_sink(deliver)
        samples = [(i, 0, 0) for i in range(1, 5)]
        loop = SamplingLoop(
            make_driver(fake_channel(samples)),
            ZERO_BIAS,
            sink,
            period=0.001,
        )

        task = asyncio.ensure_future(loop.run(max_ticks=4))
        for _ in range(200):
            if loop.statistics.ticks == 4:
                break
            await asyncio.sleep(0.005)

        assert loop.statistics.ticks == 4
        assert sent == []
        assert task.done() is False

        release.set()
        await asyncio.wait_for(task, timeout=1.0)

        assert sent == pytest.approx([i * 0.73 for i in range(1, 5)])
        assert loop.statistics.delivered == 4

    @pytest.mark.asyncio
    async def test_queue_overflow_drops_newest(self, fake_channel):
        """Переполнение очереди отбрасывает новые измерения, порядок сохраняется."""
        release = asyncio.Event()
        sent = []

        async def deliver(reading):
            await release.wait()
            sent.append(reading["x"])

        sink = make_sink(deliver)
        samples = [(i, 0, 0) for i in range(1, 7)]
        loop = SamplingLoop(
            make_driver(fake_channel(samples)),
            ZERO_BIAS,
            sink,
            period=0.01,
        )
        loop.QUEUE_SIZE = 2

        task = asyncio.ensure_future(loop.run(max_ticks=6))
        for _ in range(200):
            if loop.statistics.ticks == 6:
                break
            await asyncio.sleep(0.01)

        release.set()
        await asyncio.wait_for(task, timeout=1.0)

        # В очереди не больше двух измерений и одно в отправке
        assert loop.statistics.ticks == 6
        assert loop.statistics.dropped >= 3
        assert len(sent) + loop.statistics.dropped == 6
        assert sent == pytest.approx([i * 0.73 for i in range(1, len(sent) + 1)])

    @pytest.mark.asyncio
    async def test_drain_timeout(self, fake_channel):
        """Зависший получатель не задерживает остановку дольше DRAIN_TIMEOUT."""
        never = asyncio.Event()

        async def deliver(reading):
            await never.wait()

        sink = make_sink(deliver)
        loop = SamplingLoop(
            make_driver(fake_channel()),
            ZERO_BIAS,
            sink,
            period=0.01,
        )
        loop.DRAIN_TIMEOUT = 0.05

        await asyncio.wait_for(loop.run(max_ticks=2), timeout=1.0)

        assert loop.statistics.ticks == 2
        assert loop.statistics.delivered == 0
        assert loop.is_running is False

    @pytest.mark.asyncio
    async def test_order_preserved(self, fake_channel):
        """Измерения отправляются в порядке тактов."""
        sent = []

        async def deliver(reading):
            # Медленная доставка не должна менять порядок
            await asyncio.sleep(0.005)
            sent.append(reading["x"])

        sink = make_sink(deliver)
        samples = [(i, 0, 0) for i in range(1, 6)]
        loop = SamplingLoop(
            make_driver(fake_channel(samples)),
            ZERO_BIAS,
            sink,
            period=0.001,
        )

        await loop.run(max_ticks=5)

        assert sent == pytest.approx([i * 0.73 for i in range(1, 6)])

    @pytest.mark.asyncio
    async def test_bias_applied(self, fake_channel):
        """Смещение калибровки вычитается из каждого измерения."""
        sink = make_sink()
        calibration = CalibrationResult(x=10.0, y=-5.0, z=1.0)
        loop = SamplingLoop(
            make_driver(fake_channel([(100, 0, 0)]), Gain.GAIN_130),
            calibration,
            sink,
            period=0.01,
        )

        await loop.run(max_ticks=1)

        reading = sink.deliver.await_args.args[0]
        assert reading["x"] == pytest.approx(82.0)
        assert reading["y"] == pytest.approx(5.0)
        assert reading["z"] == pytest.approx(-1.0)

    @pytest.mark.asyncio
    async def test_bus_error_skips_tick(self, fake_channel):
        """Ошибки шины и разбора пропускают такт, цикл продолжается."""
        samples = [(1, 1, 1), BusError("NACK"), DecodeError("short"), (2, 2, 2)]
        sink = make_sink()
        loop = SamplingLoop(
            make_driver(fake_channel(samples)),
            ZERO_BIAS,
            sink,
            period=0.001,
        )

        await loop.run(max_ticks=4)

        assert loop.statistics.ticks == 4
        assert loop.statistics.skipped_ticks == 2
        assert sink.deliver.await_count == 2

    @pytest.mark.asyncio
    async def test_stop(self, fake_channel):
        """stop() завершает бесконечный цикл."""
        sink = make_sink()
        loop = SamplingLoop(
            make_driver(fake_channel()),
            ZERO_BIAS,
            sink,
            period=0.01,
        )

        task = asyncio.ensure_future(loop.run())
        await asyncio.sleep(0.05)
        loop.stop()
        await asyncio.wait_for(task, timeout=1.0)

        assert loop.statistics.ticks >= 1
        assert loop.is_running is False

    @pytest.mark.asyncio
    async def test_command_passthrough(self, fake_channel):
        """Команды передаются обработчику без изменений."""
        received = []
        sink = make_sink()
        loop = SamplingLoop(
            make_driver(fake_channel()),
            ZERO_BIAS,
            sink,
            period=0.01,
            command_handler=received.append,
        )

        await loop.run(max_ticks=1)

        sink.on_command.assert_called_once_with(loop.handle_command)
        payload = {"command": "reboot", "args": [1, 2]}
        loop.handle_command(payload)
        assert received == [payload]

    def test_command_handler_error_logged(self, fake_channel):
        """Ошибка обработчика команды не поднимается наружу."""
        handler = MagicMock(side_effect=RuntimeError("boom"))
        loop = SamplingLoop(
            make_driver(fake_channel()),
            ZERO_BIAS,
            make_sink(),
            command_handler=handler,
        )

        loop.handle_command("opaque")

        handler.assert_called_once_with("opaque")


async def start_telemetry_server(status=200):
    """Тестовый сервис телеметрии на aiohttp."""
    state = {"readings": [], "acks": []}

    async def health(request):
        return web.json_response({"ok": True}, status=status)

    async def readings(request):
        state["readings"].append(await request.json())
        if "fail" in state:
            return web.json_response({"error": "busy"}, status=503)
        return web.json_response({"accepted": True})

    async def commands(request):
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        await ws.send_json({"id": 7, "command": "blink"})
        state["acks"].append(await ws.receive_json(timeout=2.0))
        async for _ in ws:
            pass
        return ws

    app = web.Application()
    app.router.add_get("/v1/health", health)
    app.router.add_post("/v1/readings", readings)
    app.router.add_get("/v1/commands", commands)

    server = test_utils.TestServer(app)
    await server.start_server()
    return server, state


class TestHttpTelemetryClient:
    """Тесты клиента телеметрии."""

    @pytest.mark.asyncio
    async def test_deliver_and_commands(self):
        """Доставка измерения и приём команды с подтверждением."""
        server, state = await start_telemetry_server()
        received = asyncio.Event()
        commands = []

        def on_command(payload):
            commands.append(payload)
            received.set()

        client = HttpTelemetryClient(
            TelemetryConfig(endpoint=str(server.make_url("/v1")), device_id="compass-1")
        )
        client.on_command(on_command)

        try:
            await client.connect()
            assert client.is_connected is True

            await client.deliver({"x": 1.0, "y": 2.0, "z": 3.0})
            await asyncio.wait_for(received.wait(), timeout=2.0)
        finally:
            await client.close()
            await server.close()

        assert state["readings"] == [{"x": 1.0, "y": 2.0, "z": 3.0}]
        assert commands == [{"id": 7, "command": "blink"}]
        assert state["acks"] == [{"type": "ack", "id": 7}]
        assert client.is_connected is False

    @pytest.mark.asyncio
    async def test_deliver_rejected(self):
        """Ответ не 2xx — DeliveryError."""
        server, state = await start_telemetry_server()
        state["fail"] = True

        client = HttpTelemetryClient(
            TelemetryConfig(endpoint=str(server.make_url("/v1")), commands_enabled=False)
        )

        try:
            await client.connect()
            with pytest.raises(DeliveryError):
                await client.deliver({"x": 0.0, "y": 0.0, "z": 0.0})
        finally:
            await client.close()
            await server.close()

    @pytest.mark.asyncio
    async def test_connect_unhealthy(self):
        """Сервис отвечает ошибкой — ConnectionError."""
        server, _ = await start_telemetry_server(status=500)
        client = HttpTelemetryClient(TelemetryConfig(endpoint=str(server.make_url("/v1"))))

        try:
            with pytest.raises(ConnectionError):
                await client.connect()
        finally:
            await server.close()

        assert client.is_connected is False

    @pytest.mark.asyncio
    async def test_ack_failure_still_dispatches(self):
        """Сбой подтверждения не прерывает передачу команды обработчику."""
        commands = []
        client = HttpTelemetryClient()
        client.on_command(commands.append)
        client._ws = MagicMock()
        client._ws.send_json = AsyncMock(side_effect=ConnectionResetError("reset"))

        await client._dispatch_command('{"id": 3, "command": "blink"}')

        client._ws.send_json.assert_awaited_once_with({"type": "ack", "id": 3})
        assert commands == [{"id": 3, "command": "blink"}]

    @pytest.mark.asyncio
    async def test_deliver_not_connected(self):
        """Доставка без подключения — DeliveryError."""
        client = HttpTelemetryClient()

        with pytest.raises(DeliveryError):
            await client.deliver({"x": 0.0, "y": 0.0, "z": 0.0})


class TestMain:
    """Тесты последовательности запуска."""

    def test_create_config_overrides(self):
        """Аргументы перекрывают значения по умолчанию."""
        args = parse_args([
            "--bus", "0",
            "--gain", "GAIN_250",
            "--period", "2",
            "--endpoint", "http://hub/v1",
        ])

        config = create_config(args)

        assert config.bus.bus_number == 0
        assert config.sensor.gain == "GAIN_250"
        assert config.sample_period == 2.0
        assert config.telemetry.endpoint == "http://hub/v1"
        assert config.sensor.rate == "RATE_15_HZ"

    def test_create_config_invalid(self):
        """Некорректный период — ValueError."""
        with pytest.raises(ValueError):
            create_config(parse_args(["--period", "-1"]))

    def test_create_config_wrong_type_in_file(self, tmp_path):
        """Строка вместо числа в файле — ValueError."""
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"sample_period": "1"}), encoding="utf-8")

        with pytest.raises(ValueError):
            create_config(parse_args(["--config", str(path)]))

    @staticmethod
    def fast_config():
        config = CompassConfig()
        config.calibration.duration = 0.05
        config.calibration.interval = 0.01
        return config

    @pytest.mark.asyncio
    async def test_configuration_failure(self, fake_channel):
        """Ошибка настройки датчика завершает процесс с кодом 1."""
        channel = fake_channel(fail_writes=True)
        sink = make_sink()

        code = await async_main(self.fast_config(), channel=channel, sink=sink)

        assert code == 1
        sink.connect.assert_not_awaited()
        sink.close.assert_awaited_once()
        assert channel.is_open is False

    @pytest.mark.asyncio
    async def test_wrong_device(self, fake_channel):
        """Чужое устройство на адресе — код 1 без записи регистров."""
        channel = fake_channel(ident=b"\x00\x00\x00")

        code = await async_main(self.fast_config(), channel=channel, sink=make_sink())

        assert code == 1
        assert channel.writes == []

    @pytest.mark.asyncio
    async def test_calibration_failure(self, fake_channel):
        """Неподвижный датчик — код 1, телеметрия не подключается."""
        channel = fake_channel([(15, 15, 15)])
        sink = make_sink()

        code = await async_main(self.fast_config(), channel=channel, sink=sink)

        assert code == 1
        sink.connect.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_connection_failure(self, fake_channel):
        """Телеметрия недоступна — код 1."""
        channel = fake_channel([(-10, -10, -10), (10, 10, 10)])
        sink = make_sink()
        sink.connect.side_effect = ConnectionError("refused")

        code = await async_main(self.fast_config(), channel=channel, sink=sink)

        assert code == 1
        sink.deliver.assert_not_awaited()
        sink.close.assert_awaited_once()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
