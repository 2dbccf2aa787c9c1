import asyncio
import pathlib
import random
import typing

import mido
import pytest

import lofai.config
import lofai.constants
import lofai.engine
import lofai.form
import lofai.instruments
import lofai.params
import lofai.transport


BAR = lofai.constants.MIDI_WHOLE_NOTE

NO_DROPOUTS = lofai.form.DropoutRates(kick=0.0, snare=0.0, hat=0.0, melody=0.0, density_range=(0.2, 0.5))


def make_config (**sections: typing.Any) -> lofai.config.EngineConfig:

	"""Default config with some section settings replaced."""

	config = lofai.config.EngineConfig()

	for name, value in sections.items():
		setattr(config.sections, name, value)

	return config


async def ready (engine: lofai.engine.Engine) -> lofai.engine.Engine:

	"""Load the engine and register its ticks without starting the wall clock."""

	await engine.initialize()
	engine.generate_progression()
	engine._register_sequences()

	return engine


async def halt (engine: lofai.engine.Engine) -> None:

	"""Stop the engine and let the cancelled clock task finish."""

	engine.stop()
	await asyncio.sleep(0)


def drum_notes (port: typing.Any, note: int) -> typing.List[mido.Message]:

	return [m for m in port.of_type("note_on") if m.channel == 9 and m.note == note]


@pytest.mark.asyncio
async def test_concurrent_initialize_loads_once (engine: lofai.engine.Engine) -> None:

	await asyncio.gather(engine.initialize(), engine.initialize())

	assert engine.load_count == 1
	assert engine.get_state().is_loaded
	assert engine.get_state().status == lofai.form.STATUS_LOADED

	await engine.initialize()
	assert engine.load_count == 1


@pytest.mark.asyncio
async def test_play_without_output_is_rejected (no_midi: None) -> None:

	"""No MIDI output means play() raises and the engine is not playing."""

	engine = lofai.engine.Engine(rng=random.Random(1))

	with pytest.raises(lofai.transport.AudioSessionError):
		await engine.play()

	assert not engine.is_playing
	assert engine.is_loaded

	engine.dispose()


@pytest.mark.asyncio
async def test_play_generates_content_and_starts (engine: lofai.engine.Engine, midi_ports: list) -> None:

	await engine.play()
	state = engine.get_state()

	assert state.status == lofai.form.STATUS_PLAYING
	assert state.key is not None
	assert len(state.progression) == 8
	assert engine.transport.running
	assert engine.graph.noise_sounding
	assert midi_ports[-1].of_type("program_change")

	await halt(engine)


@pytest.mark.asyncio
async def test_progression_cycles_and_section_ends_on_time (patch_midi: None) -> None:

	"""Length-8 progression, 16-bar section: the index wraps at 8 and the section ends at 16."""

	engine = await ready(lofai.engine.Engine(config=make_config(lengths=(16,), initial_length=16), rng=random.Random(3)))
	first_key = engine.context.key

	engine.transport.run_pulses(7 * BAR + 1)

	assert engine.progress_index == 0
	assert engine.sections.bar_count == 8
	assert engine.sections.section_count == 0
	assert engine.context.key == first_key

	engine.transport.run_pulses(7 * BAR)

	assert engine.sections.bar_count == 15
	assert engine.sections.section_count == 0

	engine.transport.run_pulses(BAR)

	state = engine.get_state()

	assert state.section_count == 1
	assert state.bar_count == 0
	assert state.progress_index == 0
	assert state.section_length == 16

	engine.dispose()


@pytest.mark.asyncio
async def test_cycle_start_rerolls_density (patch_midi: None) -> None:

	"""The first chord of each cycle draws a fresh melody density."""

	config = make_config()
	config.melody.density = 0.9

	engine = await ready(lofai.engine.Engine(config=config, rng=random.Random(4)))

	assert engine.melody_density == 0.9

	engine.transport.run_pulses(1)

	assert 0.2 <= engine.melody_density <= 0.5

	engine.dispose()


@pytest.mark.asyncio
async def test_lowest_energy_never_plays_kick_or_snare (midi_ports: list) -> None:

	"""Low energy silences kick and snare even when no voice is muted."""

	engine = lofai.engine.Engine(config=make_config(cycle_dropout=NO_DROPOUTS, section_dropout=NO_DROPOUTS), rng=random.Random(5))
	engine.apply_generation_params(lofai.params.GenerationParams("focus", "low", "bouncy", "neutral"))
	engine.transport.open_output()
	await ready(engine)

	engine.transport.run_pulses(16 * BAR)

	port = midi_ports[-1]

	assert drum_notes(port, 36) == []
	assert drum_notes(port, 38) == []
	assert drum_notes(port, 42)

	engine.dispose()


@pytest.mark.asyncio
async def test_high_energy_plays_full_kit (midi_ports: list) -> None:

	engine = lofai.engine.Engine(config=make_config(cycle_dropout=NO_DROPOUTS, section_dropout=NO_DROPOUTS), rng=random.Random(6))
	engine.apply_generation_params(lofai.params.GenerationParams("focus", "high", "groovy", "happy"))
	engine.transport.open_output()
	await ready(engine)

	engine.transport.run_pulses(8 * BAR)

	port = midi_ports[-1]

	assert drum_notes(port, 36)
	assert drum_notes(port, 38)
	assert drum_notes(port, 42)
	assert [m for m in port.of_type("note_on") if m.channel == 0]

	engine.dispose()


def test_apply_params_is_visible_without_playback (engine: lofai.engine.Engine) -> None:

	"""New tempo and swing show up in the next snapshot, with the transport idle."""

	engine.apply_generation_params(lofai.params.GenerationParams("focus", "medium", "bouncy", "sad"))
	state = engine.get_state()

	assert 120 <= state.bpm <= 144
	assert state.swing == pytest.approx(0.65)
	assert state.status == lofai.form.STATUS_IDLE
	assert engine.prefer_minor
	assert engine.current_params.valence == "sad"
	assert engine.kick_enabled and not engine.snare_enabled


def test_valence_applies_at_next_regeneration (engine: lofai.engine.Engine) -> None:

	"""A valence change does not touch the current key; the next section follows it."""

	engine.generate_progression()
	key = engine.context.key

	engine.apply_generation_params(lofai.params.GenerationParams("focus", "medium", "chill", "sad"))

	assert engine.context.key == key

	engine.skip()

	assert engine.context.key.is_minor


@pytest.mark.asyncio
async def test_skip_forces_a_transition (engine: lofai.engine.Engine) -> None:

	await engine.play()
	context = engine.context
	engine.sections.advance()
	engine.sections.advance()

	engine.skip()

	state = engine.get_state()
	names = {scheduled.name for _, _, scheduled in engine.transport.callback_queue}

	assert engine.context is not context
	assert state.bar_count == 0
	assert state.section_count == 1
	assert state.section_length in lofai.form.DEFAULT_SECTION_LENGTHS
	assert {"sweep down", "sweep up"} <= names

	await halt(engine)


@pytest.mark.asyncio
async def test_skip_while_idle_leaves_no_sweep_for_later (engine: lofai.engine.Engine, midi_ports: list) -> None:

	"""A skip before play changes content but does not sweep the filter when play starts."""

	engine.generate_progression()
	engine.skip()

	names = {scheduled.name for _, _, scheduled in engine.transport.callback_queue}

	assert engine.sections.section_count == 1
	assert not {"sweep down", "sweep up"} & names

	await engine.play()
	engine.transport.run_pulses(BAR)

	cutoff = [m.value for m in midi_ports[-1].of_type("control_change") if m.control == lofai.constants.CC_FILTER_CUTOFF]

	assert set(cutoff) == {lofai.instruments.filter_hz_to_cc(2000.0)}

	await halt(engine)


@pytest.mark.asyncio
async def test_stop_mid_sweep_reopens_the_filter (engine: lofai.engine.Engine, midi_ports: list) -> None:

	"""Stopping while the filter is closing leaves it open for the next play."""

	open_cc = lofai.instruments.filter_hz_to_cc(2000.0)

	await engine.play()
	engine.skip()
	engine.transport.run_pulses(BAR // 2)

	port = midi_ports[-1]
	cutoff = [m for m in port.of_type("control_change") if m.control == lofai.constants.CC_FILTER_CUTOFF and m.channel == 0]

	assert cutoff[-1].value < open_cc

	engine.stop()

	cutoff = [m for m in port.of_type("control_change") if m.control == lofai.constants.CC_FILTER_CUTOFF and m.channel == 0]

	assert cutoff[-1].value == open_cc
	assert engine.graph.filter_hz == 2000.0

	await engine.play()
	engine.transport.run_pulses(8 * BAR)

	cutoff = [m for m in port.of_type("control_change") if m.control == lofai.constants.CC_FILTER_CUTOFF and m.channel == 0]

	assert cutoff[-1].value == open_cc

	await halt(engine)


@pytest.mark.asyncio
async def test_dispose_silences_every_channel (engine: lofai.engine.Engine, midi_ports: list) -> None:

	await engine.play()
	engine.transport.run_pulses(BAR)
	engine.dispose()
	await asyncio.sleep(0)

	port = midi_ports[-1]
	all_off = {m.channel for m in port.of_type("control_change") if m.control == lofai.constants.CC_ALL_NOTES_OFF}

	assert all_off == set(range(16))
	assert port.closed


@pytest.mark.asyncio
async def test_stop_then_play_keeps_key_and_rewinds (engine: lofai.engine.Engine) -> None:

	await engine.play()
	engine.transport.run_pulses(3 * BAR + 1)

	key = engine.get_state().key
	progression = engine.get_state().progression

	assert engine.progress_index == 4

	engine.stop()

	assert engine.get_state().status == lofai.form.STATUS_STOPPED
	assert engine.progress_index == 0
	assert engine.sections.bar_count == 0
	assert engine.transport.pulse_count == 0

	await engine.play()

	assert engine.get_state().key == key
	assert engine.get_state().progression == progression
	assert engine.progress_index == 0

	await halt(engine)


@pytest.mark.asyncio
async def test_pause_keeps_position (engine: lofai.engine.Engine) -> None:

	await engine.play()
	engine.transport.run_pulses(2 * BAR + 1)
	engine.pause()

	state = engine.get_state()

	assert state.status == lofai.form.STATUS_PAUSED
	assert state.progress_index == 3
	assert state.bar_count == 3
	assert not engine.graph.noise_sounding
	assert engine.transport.pulse_count == 2 * BAR + 1

	await engine.play()

	assert engine.get_state().status == lofai.form.STATUS_PLAYING
	assert engine.progress_index == 3

	await halt(engine)


@pytest.mark.asyncio
async def test_stop_leaves_nothing_scheduled (engine: lofai.engine.Engine, midi_ports: list) -> None:

	"""After stop() no tick or sweep step fires and no note is left sounding."""

	await engine.play()
	engine.skip()
	engine.transport.run_pulses(BAR // 2)
	engine.stop()

	port = midi_ports[-1]
	sent = len(port.messages)

	engine.transport.run_pulses(4 * BAR)

	assert len(port.messages) == sent
	assert engine.transport.active_notes == set()

	await asyncio.sleep(0)


def test_stop_and_dispose_are_safe_in_any_state (engine: lofai.engine.Engine) -> None:

	engine.stop()
	engine.dispose()
	engine.dispose()

	assert engine.get_state().status == lofai.form.STATUS_IDLE


def test_ticks_without_content_are_silent (engine: lofai.engine.Engine) -> None:

	engine._chord_tick(0)
	engine._melody_tick(0)
	engine._kick_tick(0)

	assert engine.progress_index == 0
	assert engine.transport.event_queue == []


def test_subscribers_get_snapshots_until_unsubscribed (engine: lofai.engine.Engine) -> None:

	states: typing.List[lofai.engine.EngineState] = []

	unsubscribe = engine.subscribe(states.append)
	engine.set_volume(0.4)

	assert states[-1].volume == 0.4

	unsubscribe()
	engine.set_volume(0.6)

	assert states[-1].volume == 0.4


def test_snapshot_is_immutable (engine: lofai.engine.Engine) -> None:

	state = engine.get_state()

	with pytest.raises(AttributeError):
		state.bpm = 1  # type: ignore[misc]


@pytest.mark.asyncio
async def test_transitions_never_expose_a_mixed_key_and_progression (patch_midi: None) -> None:

	"""Every published snapshot has a progression that belongs to its key's mode."""

	engine = lofai.engine.Engine(config=make_config(lengths=(2,), initial_length=2), rng=random.Random(8))
	seen: typing.List[lofai.engine.EngineState] = []
	engine.subscribe(seen.append)

	await ready(engine)

	for valence in ("sad", "happy", "sad", "neutral"):
		engine.apply_generation_params(lofai.params.GenerationParams("focus", "medium", "chill", valence))
		engine.transport.run_pulses(4 * BAR)

	tonics = {"major": "I", "minor": "i"}
	with_content = [state for state in seen if state.key is not None]

	assert with_content
	assert all(state.progression[0] == tonics[state.mode] for state in with_content)
	assert {state.mode for state in with_content} == {"major", "minor"}

	engine.dispose()


def test_volume_and_noise_validation (engine: lofai.engine.Engine) -> None:

	with pytest.raises(ValueError):
		engine.set_volume(2.0)

	with pytest.raises(ValueError):
		engine.set_noise_type("purple")

	engine.set_noise_type("off")
	engine.set_noise_volume(0.1)

	state = engine.get_state()

	assert state.noise_type == "off"
	assert state.noise_volume == 0.1


@pytest.mark.asyncio
async def test_noise_type_change_while_playing (engine: lofai.engine.Engine) -> None:

	engine.set_noise_type("off")
	await engine.play()

	assert not engine.graph.noise_sounding

	engine.set_noise_type("white")

	assert engine.graph.noise_sounding

	await halt(engine)


def test_failing_listener_does_not_break_the_engine (engine: lofai.engine.Engine) -> None:

	def broken (state: lofai.engine.EngineState) -> None:
		raise RuntimeError("listener failure")

	engine.subscribe(broken)
	engine.generate_progression()
	engine.skip()

	assert engine.sections.section_count == 1


def test_render_writes_a_midi_file (engine: lofai.engine.Engine, tmp_path: pathlib.Path) -> None:

	filename = engine.render(4, str(tmp_path / "render.mid"))
	midi = mido.MidiFile(filename)
	piano = [m for m in midi.tracks[0] if m.type == "note_on" and m.channel == 0 and m.velocity > 0]

	assert len(piano) >= 16
	assert engine.get_state().progress_index == 0
	assert engine.get_state().bar_count == 0
	assert engine.transport.recorded_events == []
	assert engine.transport.midi_out is None


@pytest.mark.asyncio
async def test_render_refuses_while_playing (engine: lofai.engine.Engine) -> None:

	await engine.play()

	with pytest.raises(RuntimeError):
		engine.render(2)

	await halt(engine)
