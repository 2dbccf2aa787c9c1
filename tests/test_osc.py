import asyncio
import typing

import pytest

import pythonosc.dispatcher
import pythonosc.osc_server
import pythonosc.udp_client

import lofai.engine
import lofai.osc


def client_for (bridge: lofai.osc.OscBridge) -> pythonosc.udp_client.SimpleUDPClient:

	return pythonosc.udp_client.SimpleUDPClient("127.0.0.1", bridge.port)


@pytest.mark.asyncio
async def test_osc_volume_handler (engine: lofai.engine.Engine) -> None:

	"""Sending /volume should update the master volume."""

	bridge = lofai.osc.OscBridge(engine, receive_port=0, send_port=0)
	await bridge.start()

	client = client_for(bridge)
	client.send_message("/volume", 0.25)

	await asyncio.sleep(0.1)

	assert engine.get_state().volume == 0.25

	client.send_message("/volume", 3.0)
	await asyncio.sleep(0.1)

	assert engine.get_state().volume == 0.25

	await bridge.stop()


@pytest.mark.asyncio
async def test_osc_skip_and_params (engine: lofai.engine.Engine) -> None:

	"""/params retunes the engine and /skip starts a new section in the chosen mode."""

	bridge = lofai.osc.OscBridge(engine, receive_port=0, send_port=0)
	await bridge.start()

	engine.generate_progression()

	client = client_for(bridge)
	client.send_message("/params", ["90-100", "high", "groovy", "sad"])
	await asyncio.sleep(0.1)

	client.send_message("/skip", [])
	await asyncio.sleep(0.1)

	state = engine.get_state()

	assert 188 <= state.bpm <= 204
	assert state.swing == pytest.approx(0.55)
	assert state.section_count == 1
	assert state.mode == "minor"

	await bridge.stop()


@pytest.mark.asyncio
async def test_osc_bad_params_are_ignored (engine: lofai.engine.Engine) -> None:

	bridge = lofai.osc.OscBridge(engine, receive_port=0, send_port=0)
	await bridge.start()

	bpm = engine.get_state().bpm

	client = client_for(bridge)
	client.send_message("/params", ["fast", "high", "groovy", "sad"])
	client.send_message("/params", ["focus", "high"])
	await asyncio.sleep(0.1)

	assert engine.get_state().bpm == bpm
	assert engine.current_params is None

	await bridge.stop()


@pytest.mark.asyncio
async def test_osc_noise_handlers (engine: lofai.engine.Engine) -> None:

	bridge = lofai.osc.OscBridge(engine, receive_port=0, send_port=0)
	await bridge.start()

	client = client_for(bridge)
	client.send_message("/noise/type", "brown")
	client.send_message("/noise/volume", 0.6)
	client.send_message("/noise/type", "purple")
	await asyncio.sleep(0.1)

	state = engine.get_state()

	assert state.noise_type == "brown"
	assert state.noise_volume == 0.6

	await bridge.stop()


@pytest.mark.asyncio
async def test_osc_play_and_stop (engine: lofai.engine.Engine) -> None:

	bridge = lofai.osc.OscBridge(engine, receive_port=0, send_port=0)
	await bridge.start()

	client = client_for(bridge)
	client.send_message("/play", [])
	await asyncio.sleep(0.1)

	assert engine.is_playing

	client.send_message("/stop", [])
	await asyncio.sleep(0.1)

	assert engine.get_state().status == "stopped"

	await bridge.stop()


def test_broadcast_sends_only_changes (engine: lofai.engine.Engine, monkeypatch: pytest.MonkeyPatch) -> None:

	"""Each address goes out once per distinct value."""

	bridge = lofai.osc.OscBridge(engine)
	sent: typing.List[typing.Tuple[str, tuple]] = []
	monkeypatch.setattr(bridge, "send", lambda address, *args: sent.append((address, args)))

	engine.generate_progression()
	bridge.broadcast(engine.get_state())

	assert [address for address, _ in sent] == ["/key", "/progress", "/bpm", "/section"]
	assert sent[2][1] == (156.0,)

	sent.clear()
	bridge.broadcast(engine.get_state())

	assert sent == []

	engine.progress_index = 3
	bridge.broadcast(engine.get_state())

	assert sent == [("/progress", (3,))]


@pytest.mark.asyncio
async def test_state_is_broadcast_to_a_listener (engine: lofai.engine.Engine) -> None:

	"""A started bridge forwards engine state changes over UDP."""

	received: typing.List[typing.Tuple[str, tuple]] = []

	def handle (address: str, *args: typing.Any) -> None:
		received.append((address, args))

	dispatcher = pythonosc.dispatcher.Dispatcher()
	dispatcher.map("/key", handle)
	dispatcher.map("/section", handle)

	loop = asyncio.get_running_loop()
	listener = pythonosc.osc_server.AsyncIOOSCUDPServer(("127.0.0.1", 0), dispatcher, loop)
	transport, _ = await listener.create_serve_endpoint()
	listen_port = transport.get_extra_info("sockname")[1]

	bridge = lofai.osc.OscBridge(engine, receive_port=0, send_port=listen_port)
	await bridge.start()

	engine.generate_progression()
	engine.skip()
	await asyncio.sleep(0.1)

	addresses = [address for address, _ in received]

	assert "/key" in addresses
	assert ("/section", (1, engine.sections.section_length)) in received
	assert any(args == (engine.get_state().key,) for address, args in received if address == "/key")

	await bridge.stop()
	transport.close()


@pytest.mark.asyncio
async def test_stop_unsubscribes (engine: lofai.engine.Engine) -> None:

	bridge = lofai.osc.OscBridge(engine, receive_port=0, send_port=0)
	await bridge.start()

	assert engine.events.listener_count("state") == 1
	assert bridge.port

	await bridge.stop()

	assert engine.events.listener_count("state") == 0
	assert bridge.port is None
