"""Biased random walk over the active scale.

Provides :class:`MelodicWalk`, which owns the melody cursor (an index into
the current :class:`~lofai.tonal.Scale`) and moves it by small scale steps
more often than by leaps.  The cursor persists across ticks so the line
stays connected; it is reset only when a new scale arrives.
"""

import random
import typing

import lofai.tonal


# Relative weight of a move of 0, 1, 2, ... scale steps.  Must be non-increasing.
INTERVAL_WEIGHTS: typing.List[float] = [0.3, 0.25, 0.15, 0.1, 0.08, 0.05, 0.04, 0.03]

DEFAULT_STEP_CAP: int = 7


def cumulative_weights (count: int, weights: typing.Sequence[float] = INTERVAL_WEIGHTS) -> typing.List[float]:

	"""Normalise the first ``count`` weights into a cumulative distribution."""

	selected = list(weights[:count])
	total = sum(selected)
	cumulative: typing.List[float] = []
	running = 0.0

	for weight in selected:
		running += weight / total
		cumulative.append(running)

	return cumulative


def sample_distance (cumulative: typing.Sequence[float], roll: float) -> int:

	"""Inverse-CDF lookup: the first index whose cumulative weight reaches ``roll``.

	Returns ``len(cumulative)`` when rounding leaves the roll above the last
	entry; callers treat that as an out-of-range move.
	"""

	distance = 0

	while distance < len(cumulative) and roll > cumulative[distance]:
		distance += 1

	return distance


class MelodicWalk:

	"""The melody cursor and the walk that moves it."""

	def __init__ (self, rng: random.Random, step_cap: int = DEFAULT_STEP_CAP) -> None:

		"""Create a walk with no scale.

		Parameters:
			rng: Random source for direction, distance and density draws.
			step_cap: Largest move, in scale steps, in either direction.
		"""

		if step_cap < 1:
			raise ValueError("Step cap must be at least 1")

		if step_cap >= len(INTERVAL_WEIGHTS):
			raise ValueError(f"Step cap must be below {len(INTERVAL_WEIGHTS)}")

		self.rng = rng
		self.step_cap = step_cap
		self.scale: typing.Optional[lofai.tonal.Scale] = None
		self.position: int = 0


	def reset (self, scale: lofai.tonal.Scale) -> None:

		"""Adopt a new scale and drop the cursor at a random index inside it."""

		self.scale = scale
		self.position = self.rng.randrange(len(scale))


	def next_position (self) -> typing.Optional[int]:

		"""Draw the next cursor index without moving, or ``None`` if the draw leaves the scale."""

		if self.scale is None:
			return None

		length = len(self.scale)
		descend_range = min(self.position, self.step_cap) + 1
		ascend_range = min(length - self.position, self.step_cap)

		descend = descend_range > 1
		ascend = ascend_range > 1

		if descend and ascend:
			if self.rng.random() > 0.5:
				ascend = False
			else:
				descend = False

		cumulative = cumulative_weights(descend_range if descend else ascend_range)
		distance = sample_distance(cumulative, self.rng.random())
		candidate = self.position - distance if descend else self.position + distance

		if 0 <= candidate < length:
			return candidate

		return None


	def step (self, density: float, muted: bool = False) -> typing.Optional[int]:

		"""Advance one melody tick and return the MIDI pitch to sound, or ``None`` for silence.

		Nothing moves when the voice is muted, when the density draw fails,
		or when the walk would leave the scale.
		"""

		if muted or self.scale is None:
			return None

		if self.rng.random() > density:
			return None

		candidate = self.next_position()

		if candidate is None:
			return None

		self.position = candidate

		return self.scale[candidate]
