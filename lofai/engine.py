"""The composition engine.

:class:`Engine` owns every piece of musical state and wires the tonal model,
melodic walk, drum sequencer and section tracker to a :class:`Transport`.
Five repeating callbacks drive it: a chord tick on every bar, a melody tick
on every eighth, and one tick per drum voice on that voice's grid.

All mutation happens inside those callbacks or in the public control
methods, which are expected to run on the same event loop.  Subscribers
receive an immutable :class:`EngineState` after every change.

Example:
	```python
	engine = lofai.engine.Engine(rng=random.Random(7))
	engine.subscribe(lambda state: print(state.key, state.progress_index))
	await engine.play()
	engine.apply_generation_params(lofai.params.GenerationParams("70-80", "medium", "groovy", "sad"))
	```
"""

import asyncio
import dataclasses
import logging
import random
import typing

import lofai.config
import lofai.constants
import lofai.event_emitter
import lofai.form
import lofai.instruments
import lofai.melody
import lofai.params
import lofai.rhythm
import lofai.tonal
import lofai.transport


logger = logging.getLogger(__name__)


StateListener = typing.Callable[["EngineState"], typing.Any]


@dataclasses.dataclass(frozen=True)
class EngineState:

	"""
	A read-only snapshot of the engine.

	Attributes:
		status: One of the ``lofai.form.STATUS_*`` values.
		key: Display name of the current key (``"Eb"``, ``"F#m"``), or None
			before the first progression exists.
		progression: Degree labels of the current progression.
		progress_index: Index of the next chord to play.
		bpm: Stored (doubled) tempo.
	"""

	status: str
	is_playing: bool
	is_loaded: bool
	key: typing.Optional[str]
	mode: typing.Optional[str]
	progression: typing.Tuple[str, ...]
	progress_index: int
	bpm: float
	swing: float
	volume: float
	noise_type: str
	noise_volume: float
	bar_count: int
	section_count: int
	section_length: int


class Engine:

	"""An endless generative lo-fi piece driven by a pulse clock."""

	def __init__ (
		self,
		config: typing.Optional[lofai.config.EngineConfig] = None,
		rng: typing.Optional[random.Random] = None,
		output_device: typing.Optional[str] = None
	) -> None:

		"""Build the engine; nothing is loaded and no port is opened.

		Parameters:
			config: Engine configuration (defaults to :class:`~lofai.config.EngineConfig`).
			rng: Random source for every musical decision.  Pass a seeded
				``random.Random`` for reproducible output.
			output_device: MIDI output name; the first available output if omitted.
		"""

		self.config = config or lofai.config.EngineConfig()
		self.rng = rng or random.Random()

		self.transport = lofai.transport.Transport(
			output_device_name = output_device,
			initial_bpm = self.config.tempo.default_bpm,
			swing = self.config.tempo.default_swing
		)

		self.instruments = lofai.instruments.InstrumentBank(self.transport, self.config.sound)
		self.graph = lofai.instruments.AudioGraph(self.transport, self.config.sound, self.instruments.channels)

		self.walk = lofai.melody.MelodicWalk(self.rng, self.config.melody.step_cap)
		self.rhythm = lofai.rhythm.RhythmSequencer(self.rng, self.config.drums.probabilities, self.config.drums.templates())
		self.sections = lofai.form.SectionTracker(self.config.sections.lengths, self.config.sections.initial_length, self.rng)

		self.events = lofai.event_emitter.EventEmitter()

		self.status: str = lofai.form.STATUS_IDLE
		self.context: typing.Optional[lofai.tonal.TonalContext] = None
		self.progress_index: int = 0
		self.toggles = lofai.form.InstrumentToggles()
		self.melody_density: float = self.config.melody.density
		self.velocity: float = self.config.melody.velocity
		self.kick_enabled: bool = True
		self.snare_enabled: bool = True
		self.prefer_minor: bool = False
		self.current_params: typing.Optional[lofai.params.GenerationParams] = None

		self.load_count: int = 0
		self._load_task: typing.Optional[asyncio.Future] = None
		self._sequences: typing.List[lofai.transport.ScheduledCallback] = []


	# Lifecycle

	async def initialize (self) -> None:

		"""Load instruments and become ready to play.

		Concurrent and repeated calls share one load.
		"""

		if self._load_task is None:
			self._load_task = asyncio.ensure_future(self._initialize())

		await self._load_task


	async def _initialize (self) -> None:

		self._load()


	def _load (self) -> None:

		if self.status != lofai.form.STATUS_IDLE:
			return

		self.load_count += 1
		self.instruments.load()
		self.status = lofai.form.STATUS_LOADED

		logger.info("Engine loaded")
		self._notify()


	@property
	def is_loaded (self) -> bool:

		return self.status != lofai.form.STATUS_IDLE


	@property
	def is_playing (self) -> bool:

		return self.status == lofai.form.STATUS_PLAYING


	async def play (self) -> None:

		"""Start (or resume) playback.

		Raises:
			lofai.transport.AudioSessionError: If no MIDI output can be opened.
				State is left unchanged so the caller can retry.
		"""

		if self.is_playing:
			return

		await self.initialize()
		await self.transport.acquire_output()

		self._connect_graph()

		if self.context is None:
			self.generate_progression()

		self._register_sequences()

		await self.transport.start()
		self.graph.start_noise()

		self.status = lofai.form.STATUS_PLAYING
		logger.info(f"Playing in {self.context.key.name()} at {self.transport.current_bpm} BPM")
		self._notify()


	def pause (self) -> None:

		"""Halt playback, keeping bar, section and progression position."""

		if not self.is_playing:
			return

		self.transport.pause()
		self.graph.stop_noise()

		self.status = lofai.form.STATUS_PAUSED
		self._notify()


	def stop (self) -> None:

		"""Halt playback and rewind to the first chord and bar.

		Key and progression are kept.  Safe to call in any state: nothing
		scheduled before the call fires after it.
		"""

		self.transport.stop()
		self.graph.stop_noise()
		self._sequences = []

		# Reopen the master filter in case a sweep was cut short.
		self.graph.set_filter(self.config.sound.master_filter_hz)

		self.progress_index = 0
		self.sections.reset_bar()

		if self.status in (lofai.form.STATUS_PLAYING, lofai.form.STATUS_PAUSED):
			self.status = lofai.form.STATUS_STOPPED
			logger.info("Engine stopped")

		self._notify()


	def skip (self) -> None:

		"""Jump to a new section now, as if the current one had ended."""

		self.sections.force_boundary()
		self._transition()
		self._notify()


	def dispose (self) -> None:

		"""Stop, silence every channel, release the MIDI port and drop every subscriber.  Safe to call twice."""

		self.stop()
		self.transport.panic()
		self.transport.close_output()
		self.graph.connected = False
		self.events.clear()

		if self._load_task is not None and not self._load_task.done():
			self._load_task.cancel()

		self._load_task = None
		self.status = lofai.form.STATUS_IDLE


	def render (self, bars: int, filename: typing.Optional[str] = None) -> typing.Optional[str]:

		"""Render ``bars`` bars offline into a MIDI file and return its name.

		Runs as fast as possible and never touches the MIDI port, even if one
		is open.  The engine is left stopped at bar 0 afterwards.
		"""

		if self.status in (lofai.form.STATUS_PLAYING, lofai.form.STATUS_PAUSED):
			raise RuntimeError("Cannot render while playing or paused")

		self._load()

		midi_out, self.transport.midi_out = self.transport.midi_out, None
		self.transport.recording = True
		self.graph.connected = False

		try:
			self._connect_graph()

			if self.context is None:
				self.generate_progression()

			self._register_sequences()
			self.graph.start_noise()

			logger.info(f"Rendering {bars} bars in {self.context.key.name()} at {self.transport.current_bpm} BPM")

			self.transport.render(bars)
			self.graph.stop_noise()
			saved = self.transport.save_recording(filename)

		finally:
			self.transport.recording = False
			self.transport.recorded_events = []
			self.stop()
			self.graph.connected = False
			self.transport.midi_out = midi_out

		return saved


	def _connect_graph (self) -> None:

		if self.graph.connected:
			return

		self.instruments.send_programs()
		self.graph.connect()


	def _register_sequences (self) -> None:

		"""Register the chord, melody and drum callbacks, once per run."""

		if self._sequences:
			return

		drums = self.rhythm.templates

		self._sequences = [
			self.transport.schedule_repeating(self._chord_tick, self.config.harmony.chord_subdivision, name="chord"),
			self.transport.schedule_repeating(self._melody_tick, self.config.melody.subdivision, name="melody"),
			self.transport.schedule_repeating(self._kick_tick, drums["kick"].subdivision, name="kick"),
			self.transport.schedule_repeating(self._snare_tick, drums["snare"].subdivision, name="snare"),
			self.transport.schedule_repeating(self._hat_tick, drums["hat"].subdivision, name="hat"),
		]


	# Content

	def generate_progression (self) -> None:

		"""Replace key, scale and progression together and drop the melody cursor somewhere new."""

		context = lofai.tonal.generate_tonal_context(
			self.rng,
			prefer_minor = self.prefer_minor,
			progression_length = self.config.harmony.progression_length,
			melody_octave = self.config.harmony.melody_octave
		)

		self.context = context
		self.progress_index = 0
		self.walk.reset(context.scale)

		self._notify()


	def _transition (self) -> None:

		"""Start a new section: new content, fresh dropouts, a filter sweep and a new length."""

		self.generate_progression()

		self.toggles, self.melody_density = lofai.form.reroll_toggles(self.rng, self.config.sections.section_dropout)

		if self.is_playing or self.transport.recording:
			self._schedule_sweep()

		length = self.sections.reroll_length()

		logger.info(
			f"Section {self.sections.section_count}: {self.context.key.name()} "
			f"{' '.join(self.context.progression.degrees())}, {length} bars"
		)


	def _schedule_sweep (self) -> None:

		"""Close the master filter, then open it again once the first glide is done."""

		sweep = self.config.sweep

		self.transport.schedule_once(lambda pulse: self.graph.ramp_filter(sweep.down_hz, sweep.seconds), name="sweep down")
		self.transport.schedule_once(
			lambda pulse: self.graph.ramp_filter(sweep.up_hz, sweep.seconds),
			delay_pulses = self.transport.seconds_to_pulses(sweep.seconds),
			name = "sweep up"
		)


	def _next_chord (self) -> None:

		"""Advance the progression and count the bar."""

		context = self.context

		if self.progress_index == 0:
			self.toggles, self.melody_density = lofai.form.reroll_toggles(self.rng, self.config.sections.cycle_dropout)

		self.progress_index = (self.progress_index + 1) % len(context.progression)

		if self.sections.advance():
			self._transition()

		self._notify()


	# Ticks

	def _chord_tick (self, pulse: int) -> None:

		context = self.context

		if context is None:
			return

		chord = context.progression[self.progress_index]
		harmony = self.config.harmony

		if self.instruments.is_loaded("piano"):
			self.instruments.trigger(
				"piano",
				chord.pitches(context.key, harmony.chord_octave, harmony.voicing_size),
				velocity = 1.0,
				duration_pulses = self.transport.beats_to_pulses(lofai.constants.subdivision_beats(harmony.chord_subdivision))
			)

		self._next_chord()


	def _melody_tick (self, pulse: int) -> None:

		if not self.instruments.is_loaded("piano"):
			return

		pitch = self.walk.step(self.melody_density, muted=self.toggles.melody)

		if pitch is None:
			return

		self.instruments.trigger(
			"piano",
			[pitch],
			velocity = self.velocity,
			duration_pulses = self.transport.beats_to_pulses(self.config.melody.note_beats)
		)


	def _drum_tick (self, voice: str, pulse: int, active: bool) -> None:

		if self.rhythm.fires(voice, pulse, active=active and self.instruments.is_loaded(voice)):
			self.instruments.trigger(voice, duration_pulses=self.transport.beats_to_pulses(self.config.drums.note_beats))


	def _kick_tick (self, pulse: int) -> None:

		self._drum_tick("kick", pulse, self.kick_enabled and not self.toggles.kick)


	def _snare_tick (self, pulse: int) -> None:

		self._drum_tick("snare", pulse, self.snare_enabled and not self.toggles.snare)


	def _hat_tick (self, pulse: int) -> None:

		self._drum_tick("hat", pulse, not self.toggles.hat)


	# Parameters and sound

	def apply_generation_params (self, params: lofai.params.GenerationParams) -> None:

		"""Retune the engine to a set of personalization arms.

		Tempo, swing and the drum biases change at once; density and velocity
		from the next melody tick; the minor/major preference only at the next
		new progression.  Playback is never interrupted.
		"""

		tempo = self.config.tempo
		bpm = lofai.params.tempo_to_bpm(params.tempo, self.rng, tempo.ranges, tempo.multiplier)

		energy = lofai.params.energy_settings(params.energy)
		groove = lofai.params.danceability_settings(params.danceability)

		self.transport.set_bpm(bpm)

		self.melody_density = energy.melody_density
		self.velocity = energy.velocity
		self.kick_enabled = energy.kick_enabled
		self.snare_enabled = energy.snare_enabled

		self.transport.set_swing(groove.swing)
		self.rhythm.kick_emphasis = groove.kick_emphasis
		self.rhythm.hat_activity = groove.hat_activity

		self.prefer_minor = lofai.params.prefers_minor(params.valence)
		self.current_params = params

		logger.info(f"Applied {params.tempo}/{params.energy}/{params.danceability}/{params.valence}: {bpm} BPM, swing {groove.swing}")

		self._notify()


	def set_volume (self, volume: float) -> None:

		"""Set the master volume (0.0-1.0)."""

		self.graph.set_volume(volume)
		self._notify()


	def set_noise_type (self, noise_type: str) -> None:

		"""Choose the noise bed colour: ``"off"``, ``"white"``, ``"pink"`` or ``"brown"``."""

		self.graph.set_noise_type(noise_type)

		if self.is_playing:
			self.graph.start_noise()

		self._notify()


	def set_noise_volume (self, volume: float) -> None:

		self.graph.set_noise_volume(volume)
		self._notify()


	# State

	def get_state (self) -> EngineState:

		"""Return a snapshot of the engine state."""

		context = self.context

		return EngineState(
			status = self.status,
			is_playing = self.is_playing,
			is_loaded = self.is_loaded,
			key = context.key.name() if context else None,
			mode = context.key.mode if context else None,
			progression = context.progression.degrees() if context else (),
			progress_index = self.progress_index,
			bpm = self.transport.current_bpm,
			swing = self.transport.swing,
			volume = self.graph.volume,
			noise_type = self.graph.noise_type,
			noise_volume = self.graph.noise_volume,
			bar_count = self.sections.bar_count,
			section_count = self.sections.section_count,
			section_length = self.sections.section_length
		)


	def subscribe (self, listener: StateListener) -> lofai.event_emitter.Unsubscribe:

		"""Call ``listener(state)`` after every change; returns the unsubscribe handle."""

		return self.events.subscribe("state", listener)


	def _notify (self) -> None:

		if self.events.listener_count("state") == 0:
			return

		self.events.emit("state", self.get_state())
