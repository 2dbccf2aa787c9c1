"""The sound layer: General MIDI instruments and the shared audio graph.

Instruments are named GM programs (the piano) or fixed GM percussion notes
(kick, snare, hat).  "Loading" one resolves its names to MIDI numbers; a name
that does not resolve leaves that instrument silent without affecting the
others.

The :class:`AudioGraph` holds what is shared by every voice: master volume,
the master low-pass filter used for transition sweeps, and the noise bed.
"""

import dataclasses
import logging
import math
import typing

import mido

import lofai.config
import lofai.constants
import lofai.midi_utils
import lofai.transport


logger = logging.getLogger(__name__)


NOISE_TYPES: typing.Tuple[str, ...] = ("off", "white", "pink", "brown")

# Noise bed gain range in dB, mapped from a 0.0-1.0 noise volume.
NOISE_DB_FLOOR = -60.0
NOISE_DB_RANGE = 40.0

NOISE_PITCH = 60

FILTER_MIN_HZ = 20.0
FILTER_MAX_HZ = 20000.0

# Pulses between CC steps while a filter ramp is in progress.
RAMP_STEP_PULSES = lofai.constants.MIDI_SIXTEENTH_NOTE


def filter_hz_to_cc (hz: float) -> int:

	"""Map a cutoff frequency onto CC 74, logarithmically from 20 Hz (0) to 20 kHz (127)."""

	hz = max(FILTER_MIN_HZ, min(FILTER_MAX_HZ, hz))
	position = math.log(hz / FILTER_MIN_HZ) / math.log(FILTER_MAX_HZ / FILTER_MIN_HZ)

	return int(round(position * 127))


def noise_volume_to_db (volume: float) -> float:

	"""Noise bed gain in dB for a 0.0-1.0 volume; 0 is silence."""

	if volume <= 0:
		return -math.inf

	return NOISE_DB_FLOOR + volume * NOISE_DB_RANGE


@dataclasses.dataclass
class Instrument:

	"""
	One playable voice.

	Attributes:
		name: Voice name (``"piano"``, ``"kick"`` ...).
		channel: MIDI channel (0-15).
		sound: GM program name, or GM drum note name when ``percussion`` is set.
		percussion: True for a fixed-note drum voice.
		level: Velocity scale applied to every trigger.
	"""

	name: str
	channel: int
	sound: str
	percussion: bool = False
	level: float = 1.0
	program: typing.Optional[int] = None
	note: typing.Optional[int] = None
	loaded: bool = False

	def load (self) -> None:

		"""Resolve the sound name.

		Raises:
			ValueError: If the name is not a known GM program or drum note.
		"""

		if self.percussion:
			if self.sound not in lofai.constants.GM_DRUM_NOTES:
				raise ValueError(f"Unknown drum sound: {self.sound!r}")
			self.note = lofai.constants.GM_DRUM_NOTES[self.sound]

		else:
			if self.sound not in lofai.constants.GM_PROGRAMS:
				raise ValueError(f"Unknown program: {self.sound!r}")
			self.program = lofai.constants.GM_PROGRAMS[self.sound]

		self.loaded = True


class InstrumentBank:

	"""The engine's instruments and the trigger call that plays them."""

	def __init__ (self, transport: lofai.transport.Transport, sound: lofai.config.SoundConfig) -> None:

		self.transport = transport

		self.instruments: typing.Dict[str, Instrument] = {
			"piano": Instrument("piano", sound.piano_channel, sound.piano_program),
			"kick": Instrument("kick", sound.drum_channel, sound.kick_note, percussion=True, level=sound.kick_level),
			"snare": Instrument("snare", sound.drum_channel, sound.snare_note, percussion=True, level=sound.snare_level),
			"hat": Instrument("hat", sound.drum_channel, sound.hat_note, percussion=True, level=sound.hat_level),
		}


	def load (self) -> typing.List[str]:

		"""Load every instrument; return the names that loaded.

		A failure is logged and leaves just that instrument silent.
		"""

		loaded: typing.List[str] = []

		for name, instrument in self.instruments.items():

			try:
				instrument.load()

			except ValueError as e:
				logger.warning(f"Instrument '{name}' failed to load and will stay silent: {e}")
				continue

			loaded.append(name)

		logger.info(f"Loaded instruments: {', '.join(loaded) if loaded else 'none'}")

		return loaded


	def is_loaded (self, name: str) -> bool:

		return name in self.instruments and self.instruments[name].loaded


	@property
	def channels (self) -> typing.List[int]:

		return sorted({instrument.channel for instrument in self.instruments.values()})


	def send_programs (self) -> None:

		"""Send a program change for each loaded melodic instrument."""

		for instrument in self.instruments.values():
			if instrument.loaded and instrument.program is not None:
				self.transport.send_now(mido.Message('program_change', channel=instrument.channel, program=instrument.program))


	def trigger (
		self,
		name: str,
		pitches: typing.Sequence[int] = (),
		velocity: float = 1.0,
		duration_pulses: int = lofai.constants.MIDI_SIXTEENTH_NOTE
	) -> None:

		"""Play an instrument now: fire and forget.

		Drum voices ignore ``pitches`` and play their fixed note.  An instrument
		that did not load is a no-op.
		"""

		instrument = self.instruments.get(name)

		if instrument is None or not instrument.loaded:
			return

		midi_velocity = lofai.midi_utils.level_to_velocity(velocity * instrument.level)

		if instrument.percussion:
			pitches = [instrument.note] if instrument.note is not None else []

		for pitch in pitches:
			self.transport.note(instrument.channel, pitch, midi_velocity, duration_pulses)


class AudioGraph:

	"""Master volume, the master filter and the noise bed."""

	def __init__ (self, transport: lofai.transport.Transport, sound: lofai.config.SoundConfig, channels: typing.Sequence[int]) -> None:

		"""
		Parameters:
			transport: Clock and MIDI output everything is sent through.
			sound: Channel, program and level settings.
			channels: Channels the master volume and filter apply to.
		"""

		self.transport = transport
		self.noise_channel = sound.noise_channel
		self.noise_programs = dict(sound.noise_programs)
		self.channels = [channel for channel in channels if channel != self.noise_channel]

		self.volume: float = sound.volume
		self.filter_hz: float = sound.master_filter_hz
		self.noise_type: str = "off"
		self.noise_volume: float = sound.noise_volume
		self.noise_sounding: bool = False
		self.connected: bool = False

		self.set_noise_type(sound.noise_type)


	def connect (self) -> None:

		"""Push the current volume, filter and noise settings to the output."""

		self.connected = True
		self._send_volume()
		self.set_filter(self.filter_hz)


	def set_volume (self, volume: float) -> None:

		"""Set the master volume (0.0-1.0)."""

		if not 0.0 <= volume <= 1.0:
			raise ValueError("Volume must be between 0 and 1")

		self.volume = volume
		self._send_volume()


	def _send_volume (self) -> None:

		if not self.connected:
			return

		master_db = lofai.midi_utils.level_to_db(self.volume)
		value = lofai.midi_utils.gain_db_to_cc(master_db)

		for channel in self.channels:
			self.transport.send_now(mido.Message('control_change', channel=channel, control=lofai.constants.CC_VOLUME, value=value))

		noise_value = lofai.midi_utils.gain_db_to_cc(master_db + noise_volume_to_db(self.noise_volume))
		self.transport.send_now(mido.Message('control_change', channel=self.noise_channel, control=lofai.constants.CC_VOLUME, value=noise_value))


	def set_filter (self, hz: float) -> None:

		"""Jump the master filter to a cutoff frequency."""

		self.filter_hz = hz

		if not self.connected:
			return

		value = filter_hz_to_cc(hz)

		for channel in self.channels:
			self.transport.send_now(mido.Message('control_change', channel=channel, control=lofai.constants.CC_FILTER_CUTOFF, value=value))


	def ramp_filter (self, target_hz: float, seconds: float) -> None:

		"""Glide the master filter linearly to ``target_hz`` over ``seconds``.

		The glide is queued on the transport as CC steps, so stopping the
		transport drops whatever is left of it.
		"""

		start_hz = self.filter_hz
		total_pulses = self.transport.seconds_to_pulses(seconds)
		steps = max(1, total_pulses // RAMP_STEP_PULSES)

		for step in range(1, steps + 1):
			hz = start_hz + (target_hz - start_hz) * step / steps
			value = filter_hz_to_cc(hz)
			for channel in self.channels:
				self.transport.control_change(channel, lofai.constants.CC_FILTER_CUTOFF, value, delay_pulses=step * total_pulses // steps)

		self.filter_hz = target_hz


	def set_noise_type (self, noise_type: str) -> None:

		"""Choose the noise colour, or ``"off"``.  A sounding bed switches immediately."""

		if noise_type not in NOISE_TYPES:
			raise ValueError(f"Unknown noise type: {noise_type!r}. Expected one of {NOISE_TYPES}")

		if noise_type != "off" and self.noise_programs.get(noise_type) not in lofai.constants.GM_PROGRAMS:
			raise ValueError(f"No known program for noise type {noise_type!r}")

		was_sounding = self.noise_sounding
		self.stop_noise()
		self.noise_type = noise_type

		if was_sounding:
			self.start_noise()


	def set_noise_volume (self, volume: float) -> None:

		"""Set the noise bed level (0.0-1.0)."""

		if not 0.0 <= volume <= 1.0:
			raise ValueError("Noise volume must be between 0 and 1")

		self.noise_volume = volume
		self._send_volume()


	def start_noise (self) -> None:

		"""Start the noise bed as a held note, unless it is off or already sounding."""

		if self.noise_type == "off" or self.noise_sounding or not self.connected:
			return

		program = lofai.constants.GM_PROGRAMS[self.noise_programs[self.noise_type]]

		self.transport.send_now(mido.Message('program_change', channel=self.noise_channel, program=program))
		self.transport.send_now(mido.Message('note_on', channel=self.noise_channel, note=NOISE_PITCH, velocity=100))
		self.noise_sounding = True

		logger.debug(f"Noise bed on ({self.noise_type})")


	def stop_noise (self) -> None:

		if not self.noise_sounding:
			return

		self.transport.send_now(mido.Message('note_off', channel=self.noise_channel, note=NOISE_PITCH, velocity=0))
		self.noise_sounding = False

		logger.debug("Noise bed off")
