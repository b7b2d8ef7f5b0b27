import threading
import time
import unittest

from fastapi.testclient import TestClient

from relay_cloud.api.server import create_app
from relay_device.actuator import RelayBank
from relay_device.loopback import LoopbackRelayIO
from relay_device.main import run_poll_loop
from relay_device.processor import CommandProcessor


class _RecordingApi:
    def __init__(self, responses: list[str] | None = None) -> None:
        self.responses = list(responses or [])
        self.acks: list[tuple[str, str]] = []

    def poll(self) -> str:
        if not self.responses:
            return "{}"
        return self.responses.pop(0)

    def acknowledge(self, command_id: str, status: str = "received") -> None:
        self.acks.append((command_id, status))


class _TestClientApi:
    """Routes device traffic through an in-process FastAPI TestClient."""

    def __init__(self, client: TestClient) -> None:
        self._client = client

    def poll(self) -> str:
        return self._client.get("/api/relay").text

    def acknowledge(self, command_id: str, status: str = "received") -> None:
        self._client.post("/api/relay", json={"command_id": command_id, "status": status})


def _wait_for(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class CommandProcessorTests(unittest.TestCase):
    def setUp(self) -> None:
        self.io = LoopbackRelayIO(relay_count=2)
        self.relays = RelayBank(self.io)
        self.api = _RecordingApi()
        self.processor = CommandProcessor(self.relays, self.api)

    def tearDown(self) -> None:
        self.relays.close()

    def test_empty_responses_are_no_ops(self) -> None:
        for body in ("", "   \r\n", "{}", "[]", "null"):
            result = self.processor.process(body)
            self.assertTrue(result.empty, body)
        self.assertEqual(self.api.acks, [])
        self.assertEqual(self.io.actuation_log, [])

    def test_command_is_applied_then_acknowledged(self) -> None:
        result = self.processor.process('  {"command_id": "c0ffee01", "relay2": {"state": 1}}\n')

        self.assertEqual(result.command_id, "c0ffee01")
        self.assertEqual(result.applied_relays, (2,))
        self.assertTrue(result.acknowledged)
        self.assertTrue(self.io.read(2))
        self.assertFalse(self.io.read(1))
        self.assertEqual(self.api.acks, [("c0ffee01", "received")])

    def test_invalid_state_is_ignored_but_still_acknowledged(self) -> None:
        result = self.processor.process('{"command_id": "bad00001", "relay1": {"state": 7}}')

        self.assertEqual(result.applied_relays, ())
        self.assertFalse(self.io.read(1))
        self.assertEqual(self.api.acks, [("bad00001", "received")])

    def test_command_without_id_is_not_acknowledged(self) -> None:
        result = self.processor.process('{"relay1": {"state": 1}}')

        self.assertEqual(result.applied_relays, (1,))
        self.assertFalse(result.acknowledged)
        self.assertEqual(self.api.acks, [])

    def test_plain_digit_bodies_switch_relay_one(self) -> None:
        on = self.processor.process("1")
        self.assertTrue(on.legacy)
        self.assertTrue(self.io.read(1))

        off = self.processor.process(" 0 ")
        self.assertTrue(off.legacy)
        self.assertFalse(self.io.read(1))
        self.assertEqual(self.api.acks, [])

    def test_unparseable_body_is_ignored(self) -> None:
        result = self.processor.process("<html>oops</html>")

        self.assertTrue(result.empty)
        self.assertEqual(self.io.actuation_log, [])

    def test_duration_turns_relay_off_again(self) -> None:
        self.processor.process('{"command_id": "timed001", "relay1": {"state": 1, "duration": 20}}')

        self.assertTrue(self.io.read(1))
        self.assertTrue(_wait_for(lambda: not self.io.read(1)))
        states = [record.state for record in self.io.actuation_log if record.relay == 1]
        self.assertEqual(states, [True, False])

    def test_off_command_cancels_pending_auto_off(self) -> None:
        self.processor.process('{"command_id": "timed002", "relay1": {"state": 1, "duration": 200}}')
        self.processor.process('{"command_id": "off00002", "relay1": {"state": 0}}')
        time.sleep(0.3)

        states = [record.state for record in self.io.actuation_log if record.relay == 1]
        self.assertEqual(states, [True, False])

    def test_out_of_range_durations_still_switch_and_acknowledge(self) -> None:
        bodies = [
            '{"command_id": "huge0001", "relay1": {"state": 1, "duration": 1e400}}',
            '{"command_id": "huge0002", "relay2": {"state": 1, "duration": NaN}}',
            '{"command_id": "huge0003", "relay1": {"state": 1, "duration": 1' + "0" * 400 + "}}",
        ]
        for body in bodies:
            self.processor.process(body)
        time.sleep(0.05)

        self.assertTrue(self.io.read(1))
        self.assertTrue(self.io.read(2))
        self.assertEqual(
            self.api.acks,
            [("huge0001", "received"), ("huge0002", "received"), ("huge0003", "received")],
        )


class PollLoopTests(unittest.TestCase):
    def test_poll_loop_counts_commands_and_survives_errors(self) -> None:
        io = LoopbackRelayIO()
        relays = RelayBank(io)
        api = _RecordingApi(['{"command_id": "loop0001", "relay1": {"state": 1}}'])
        calls = {"n": 0}
        original_poll = api.poll

        def flaky_poll() -> str:
            calls["n"] += 1
            if calls["n"] == 1:
                raise RuntimeError("network down")
            return original_poll()

        api.poll = flaky_poll
        logs: list[str] = []
        processor = CommandProcessor(relays, api)

        commands = run_poll_loop(
            processor,
            interval=0.0,
            stop_event=threading.Event(),
            iterations=3,
            log=logs.append,
        )

        self.assertEqual(commands, 1)
        self.assertEqual(calls["n"], 3)
        self.assertTrue(any("network down" in entry for entry in logs))
        self.assertTrue(io.read(1))

    def test_device_round_trip_confirms_state_on_server(self) -> None:
        app = create_app()
        service = app.state.service
        io = LoopbackRelayIO()
        relays = RelayBank(io)

        with TestClient(app) as client:
            processor = CommandProcessor(relays, _TestClientApi(client))
            service.set_actuator(1, True)
            service.set_actuator(2, True)

            result = processor.poll_once()
            idle = processor.poll_once()

        self.assertEqual(result.applied_relays, (2,))
        self.assertTrue(idle.empty)
        self.assertTrue(io.read(2))
        self.assertFalse(io.read(1))
        self.assertTrue(service.get_confirmed_state(2))
        self.assertFalse(service.get_confirmed_state(1))
        self.assertEqual(service.store.inflight_count(), 1)


if __name__ == "__main__":
    unittest.main()
