"""Section tracking: bar and section counters, voice dropouts and engine status.

Defines :class:`SectionTracker` (the counters that decide when a section ends)
and :class:`InstrumentToggles` (which voices sit out the current section).
"""

import dataclasses
import logging
import random
import typing


logger = logging.getLogger(__name__)


STATUS_IDLE = "idle"
STATUS_LOADED = "loaded"
STATUS_PLAYING = "playing"
STATUS_PAUSED = "paused"
STATUS_STOPPED = "stopped"

DEFAULT_SECTION_LENGTHS: typing.Tuple[int, ...] = (16, 20, 24, 28, 32, 48)

VOICES: typing.Tuple[str, ...] = ("kick", "snare", "hat", "melody")


@dataclasses.dataclass
class InstrumentToggles:

	"""Per-voice "sitting out this section" flags."""

	kick: bool = False
	snare: bool = False
	hat: bool = False
	melody: bool = False

	def muted (self, voice: str) -> bool:

		"""Return True if ``voice`` is muted."""

		if voice not in VOICES:
			raise ValueError(f"Unknown voice: {voice!r}")

		return bool(getattr(self, voice))


@dataclasses.dataclass
class DropoutRates:

	"""Chance that each voice sits out, plus the range a fresh melody density is drawn from."""

	kick: float
	snare: float
	hat: float
	melody: float
	density_range: typing.Tuple[float, float]


def reroll_toggles (rng: random.Random, rates: DropoutRates) -> typing.Tuple[InstrumentToggles, float]:

	"""Draw fresh mutes for every voice and a fresh melody density.

	Each voice is rolled independently.  Returns ``(toggles, density)``.
	"""

	low, high = rates.density_range

	toggles = InstrumentToggles(
		kick = rng.random() < rates.kick,
		snare = rng.random() < rates.snare,
		hat = rng.random() < rates.hat,
	)
	density = low + rng.random() * (high - low)
	toggles.melody = rng.random() < rates.melody

	return toggles, density


class SectionTracker:

	"""Count bars and decide when the current section ends."""

	def __init__ (
		self,
		section_lengths: typing.Sequence[int] = DEFAULT_SECTION_LENGTHS,
		initial_length: int = 32,
		rng: typing.Optional[random.Random] = None
	) -> None:

		"""
		Parameters:
			section_lengths: Candidate lengths in bars, drawn from at each boundary.
			initial_length: Length of the first section.
			rng: Random source for length draws.
		"""

		if not section_lengths or any(length <= 0 for length in section_lengths):
			raise ValueError("Section lengths must be a non-empty list of positive bar counts")

		if initial_length <= 0:
			raise ValueError("Initial section length must be positive")

		self.section_lengths: typing.Tuple[int, ...] = tuple(section_lengths)
		self.bar_count: int = 0
		self.section_count: int = 0
		self.section_length: int = initial_length
		self._rng = rng or random.Random()


	def advance (self) -> bool:

		"""Count one bar; return True (and start a new section) when the section is full."""

		self.bar_count += 1

		if self.bar_count >= self.section_length:
			self.force_boundary()
			return True

		return False


	def force_boundary (self) -> None:

		"""End the current section now, whatever its bar count."""

		self.bar_count = 0
		self.section_count += 1


	def reroll_length (self) -> int:

		"""Draw the next section's length from the candidates."""

		self.section_length = self._rng.choice(self.section_lengths)
		logger.debug(f"Next section length: {self.section_length} bars")

		return self.section_length


	def reset_bar (self) -> None:

		"""Rewind to the first bar of the current section without ending it."""

		self.bar_count = 0
