from __future__ import annotations

import asyncio

import numpy as np
import pytest

from copilot_core import ToolCall, ToolDefinition, ToolDispatcher, ToolRegistry, ToolResult
from fakes import FakeCapture, FakeConnector, FakeOutput, wait_for
from voice import SessionState, VoiceSessionBridge, VoiceSessionError
from voice.audio import float32_to_pcm16
from voice.live import LiveEvent


def _make_bridge(connector, *, frames=None, capture_error=None):
    captures: list[FakeCapture] = []
    outputs: list[FakeOutput] = []

    def capture_factory():
        capture = FakeCapture(frames=frames, fail_open=capture_error)
        captures.append(capture)
        return capture

    def output_factory():
        output = FakeOutput()
        outputs.append(output)
        return output

    registry = ToolRegistry()
    registry.register(
        ToolDefinition(
            "echo",
            lambda args: ToolResult.success(f"echo {args.get('text', '')}"),
            {"name": "echo", "description": "Echo text back."},
        )
    )
    bridge = VoiceSessionBridge(
        connector=connector,
        dispatcher=ToolDispatcher(registry),
        capture_factory=capture_factory,
        output_factory=output_factory,
    )
    return bridge, captures, outputs


def test_start_while_active_stops_instead_of_opening_second_session():
    async def scenario():
        connector = FakeConnector()
        bridge, captures, outputs = _make_bridge(connector)

        await bridge.start()
        assert bridge.state is SessionState.ACTIVE
        assert captures[0].started
        assert connector.declarations == [{"name": "echo", "description": "Echo text back."}]

        state = await bridge.toggle()

        assert state is SessionState.IDLE
        assert connector.opened == 1
        assert connector.closed == 1
        assert len(captures) == 1
        assert not captures[0].live
        assert outputs[0].closed

    asyncio.run(scenario())


def test_user_stop_releases_everything_and_resets_cursor():
    async def scenario():
        connector = FakeConnector()
        bridge, captures, outputs = _make_bridge(connector)
        await bridge.start()

        chunk = float32_to_pcm16(np.zeros(2400, dtype=np.float32))
        connector.session.push(LiveEvent(audio=chunk))
        connector.session.push(LiveEvent(audio=chunk))
        await wait_for(lambda: len(outputs[0].played) == 2)
        assert [start for _, _, start in outputs[0].played] == pytest.approx([0.0, 0.1])
        assert bridge.playback.next_start == pytest.approx(0.2)

        await bridge.stop()

        assert bridge.state is SessionState.IDLE
        assert captures[0].closed
        assert outputs[0].closed
        assert outputs[0].stop_all_calls == 1
        assert bridge.playback.next_start == 0.0
        assert bridge.playback.active_handles() == []
        assert connector.closed == 1

    asyncio.run(scenario())


def test_remote_close_is_handled_like_user_stop():
    async def scenario():
        connector = FakeConnector()
        bridge, captures, outputs = _make_bridge(connector)
        await bridge.start()

        connector.session.close_remote()
        await wait_for(lambda: bridge.state is SessionState.IDLE)

        assert captures[0].closed
        assert outputs[0].closed
        assert connector.closed == 1
        assert bridge.playback.next_start == 0.0

        await bridge.start()
        assert bridge.state is SessionState.ACTIVE
        assert connector.opened == 2
        await bridge.stop()

    asyncio.run(scenario())


def test_handshake_failure_aborts_to_idle_and_releases_devices():
    async def scenario():
        connector = FakeConnector(fail=ConnectionError("handshake refused"))
        bridge, captures, outputs = _make_bridge(connector)

        with pytest.raises(VoiceSessionError, match="handshake refused"):
            await bridge.start()

        assert bridge.state is SessionState.IDLE
        assert captures[0].closed
        assert not captures[0].started
        assert outputs[0].closed
        assert bridge.last_error == "handshake refused"

    asyncio.run(scenario())


def test_microphone_denial_never_opens_the_endpoint():
    async def scenario():
        connector = FakeConnector()
        bridge, captures, outputs = _make_bridge(connector, capture_error=PermissionError("microphone denied"))

        with pytest.raises(VoiceSessionError):
            await bridge.start()

        assert bridge.state is SessionState.IDLE
        assert connector.opened == 0
        assert outputs[0].closed

    asyncio.run(scenario())


def test_capture_keeps_one_frame_in_flight_and_drops_the_rest():
    async def scenario():
        frames = [np.full(4096, 0.25, dtype=np.float32) for _ in range(3)]
        connector = FakeConnector()
        bridge, _, _ = _make_bridge(connector, frames=frames)
        await bridge.start()

        await wait_for(lambda: len(connector.session.sent_audio) == 1)
        await asyncio.sleep(0.05)

        assert len(connector.session.sent_audio) == 1
        assert len(connector.session.sent_audio[0]) == 4096 * 2
        assert bridge.dropped_frames == 2
        assert bridge.volume == pytest.approx(0.25)

        await bridge.stop()
        assert bridge.volume == 0.0

    asyncio.run(scenario())


def test_tool_calls_in_one_turn_are_answered_together():
    async def scenario():
        connector = FakeConnector()
        bridge, _, _ = _make_bridge(connector)
        await bridge.start()

        connector.session.push(
            LiveEvent(
                tool_calls=[
                    ToolCall(id="call-1", name="echo", args={"text": "hi"}),
                    ToolCall(id="call-2", name="deleteEverything", args={}),
                ]
            )
        )
        await wait_for(lambda: len(connector.session.tool_responses) == 1)

        responses = connector.session.tool_responses[0]
        assert [response.id for response in responses] == ["call-1", "call-2"]
        assert responses[0].as_payload() == {"result": {"status": "success", "message": "echo hi"}}
        assert responses[1].result.status == "error"
        assert bridge.state is SessionState.ACTIVE

        await bridge.stop()

    asyncio.run(scenario())


def test_stream_error_tears_down_like_user_stop():
    async def scenario():
        connector = FakeConnector()
        bridge, captures, outputs = _make_bridge(connector)
        await bridge.start()
        connector.session.push(LiveEvent(audio=float32_to_pcm16(np.zeros(2400, dtype=np.float32))))
        await wait_for(lambda: len(outputs[0].played) == 1)

        connector.session.fail_remote(ConnectionError("socket reset"))
        await wait_for(lambda: bridge.state is SessionState.IDLE)

        assert bridge.last_error == "socket reset"
        assert captures[0].closed
        assert outputs[0].closed
        assert connector.closed == 1
        assert bridge.playback.next_start == 0.0
        assert bridge.playback.active_handles() == []

    asyncio.run(scenario())
