import random
import typing

import mido
import pytest

import lofai.config
import lofai.engine


class FakeMidiOut:

	"""MIDI output stub that keeps every message it is sent."""

	def __init__ (self, name: str = "Dummy MIDI") -> None:

		self.name = name
		self.messages: typing.List[mido.Message] = []
		self.closed = False


	def send (self, message: mido.Message) -> None:

		"""Record an outgoing MIDI message."""

		self.messages.append(message)


	def close (self) -> None:

		self.closed = True


	def of_type (self, message_type: str) -> typing.List[mido.Message]:

		"""Return the recorded messages of one type, in send order."""

		return [message for message in self.messages if message.type == message_type]


# Every fake port opened during the test, oldest first; tests read the last one.
opened_ports: typing.List[FakeMidiOut] = []


def _fake_get_output_names () -> typing.List[str]:

	"""Return a fixed list of MIDI output names for tests."""

	return ["Dummy MIDI"]


def _fake_open_output (name: str) -> FakeMidiOut:

	"""Return a fresh recording fake regardless of the name."""

	port = FakeMidiOut(name)
	opened_ports.append(port)
	return port


@pytest.fixture
def patch_midi (monkeypatch: pytest.MonkeyPatch) -> None:

	"""Patch mido to use a fake MIDI output for all tests that need it."""

	opened_ports.clear()
	monkeypatch.setattr(mido, "get_output_names", _fake_get_output_names)
	monkeypatch.setattr(mido, "open_output", _fake_open_output)


@pytest.fixture
def no_midi (monkeypatch: pytest.MonkeyPatch) -> None:

	"""Patch mido so that no MIDI output exists."""

	monkeypatch.setattr(mido, "get_output_names", lambda: [])


@pytest.fixture
def rng () -> random.Random:

	"""A seeded random source for repeatable assertions."""

	return random.Random(1234)


@pytest.fixture
def engine (patch_midi: None, rng: random.Random) -> typing.Iterator[lofai.engine.Engine]:

	"""An engine on a fake port, disposed after the test."""

	engine = lofai.engine.Engine(config=lofai.config.EngineConfig(), rng=rng)

	yield engine

	engine.dispose()


@pytest.fixture
def midi_ports (patch_midi: None) -> typing.List[FakeMidiOut]:

	"""Fake ports opened during the test, oldest first."""

	return opened_ports
