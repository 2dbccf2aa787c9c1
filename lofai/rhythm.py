"""Probabilistic drum sequencing.

Each drum voice has a fixed template over its own grid, written as a small
string: ``x`` is a hit slot, ``.`` a ghost slot and ``-`` a rest.  On every
grid tick the sequencer looks up the slot under the current transport pulse
and rolls the dice for that voice alone.  Voices never look at each other's
decisions, so the groove loosens and tightens on its own.

The kick grid is an eighth note of transport time.  Because the stored tempo
is double the felt tempo, it is heard as a sixteenth-note grid.
"""

import dataclasses
import random
import typing

import lofai.constants


HIT = "x"
GHOST = "."
REST = "-"


@dataclasses.dataclass(frozen=True)
class DrumTemplate:

	"""A voice's slot pattern and the subdivision each slot occupies."""

	voice: str
	slots: str
	subdivision: str

	def __post_init__ (self) -> None:

		if not self.slots or any(slot not in (HIT, GHOST, REST) for slot in self.slots):
			raise ValueError(f"Invalid drum template for {self.voice}: {self.slots!r}")

		lofai.constants.subdivision_beats(self.subdivision)

	@property
	def interval_pulses (self) -> int:

		"""Pulses between consecutive slots."""

		return int(lofai.constants.subdivision_beats(self.subdivision) * lofai.constants.MIDI_QUARTER_NOTE)

	def slot_at (self, pulse: int) -> str:

		"""Return the slot that plays at an absolute transport pulse."""

		return self.slots[(pulse // self.interval_pulses) % len(self.slots)]


KICK_TEMPLATE = DrumTemplate(voice="kick", slots="x------xx-.-----", subdivision="eighth")
SNARE_TEMPLATE = DrumTemplate(voice="snare", slots="-x", subdivision="half")
HAT_TEMPLATE = DrumTemplate(voice="hat", slots="xxxxxxxx", subdivision="quarter")

DRUM_VOICES: typing.Tuple[str, ...] = ("kick", "snare", "hat")


@dataclasses.dataclass
class DrumProbabilities:

	"""Base firing rates and how strongly the groove parameters bend them."""

	kick: float = 0.6
	kick_emphasis_gain: float = 0.35
	kick_ghost_gain: float = 0.15
	snare: float = 0.8
	hat: float = 0.5
	hat_activity_gain: float = 0.4


class RhythmSequencer:

	"""Decides, tick by tick, whether kick, snare and hat fire."""

	def __init__ (
		self,
		rng: random.Random,
		probabilities: typing.Optional[DrumProbabilities] = None,
		templates: typing.Optional[typing.Dict[str, DrumTemplate]] = None
	) -> None:

		"""
		Parameters:
			rng: Random source for every firing decision.
			probabilities: Base rates; defaults to :class:`DrumProbabilities`.
			templates: Per-voice templates keyed by voice name; missing voices
				use the built-in kick, snare and hat templates.
		"""

		self.rng = rng
		self.probabilities = probabilities or DrumProbabilities()
		self.templates: typing.Dict[str, DrumTemplate] = {
			"kick": KICK_TEMPLATE,
			"snare": SNARE_TEMPLATE,
			"hat": HAT_TEMPLATE,
		}

		if templates:
			self.templates.update(templates)

		# Groove parameters written by the danceability mapping.
		self.kick_emphasis: float = 0.65
		self.hat_activity: float = 0.5


	def hit_probability (self, voice: str, slot: str) -> float:

		"""Return the chance that ``voice`` fires on ``slot``."""

		p = self.probabilities

		if slot == REST:
			return 0.0

		if voice == "kick":
			if slot == GHOST:
				return self.kick_emphasis * p.kick_ghost_gain
			return p.kick + self.kick_emphasis * p.kick_emphasis_gain

		if slot == GHOST:
			return 0.0

		if voice == "snare":
			return p.snare

		if voice == "hat":
			return p.hat + self.hat_activity * p.hat_activity_gain

		raise ValueError(f"Unknown drum voice: {voice!r}")


	def fires (self, voice: str, pulse: int, active: bool = True) -> bool:

		"""Roll for one voice at one transport pulse.

		Parameters:
			voice: ``"kick"``, ``"snare"`` or ``"hat"``.
			pulse: Absolute transport pulse of the tick.
			active: ``False`` when the voice is muted or disabled; it then never
				fires and no random number is drawn.
		"""

		if not active:
			return False

		slot = self.templates[voice].slot_at(pulse)
		probability = self.hit_probability(voice, slot)

		if probability <= 0.0:
			return False

		return self.rng.random() < probability
