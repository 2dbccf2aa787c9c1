"""Personalization arms and their mapping onto synthesis parameters.

A listener's taste is expressed by four discrete "arms" chosen elsewhere
(tempo, energy, danceability, valence).  This module names the arms, bundles
a selection as :class:`GenerationParams`, and maps each arm onto the
continuous values the engine consumes.  The mappings are plain functions
with no knowledge of transport state.
"""

import dataclasses
import random
import typing


TEMPO_ARMS: typing.Tuple[str, ...] = ("focus", "60-70", "70-80", "80-90", "90-100")
ENERGY_ARMS: typing.Tuple[str, ...] = ("low", "medium", "high")
DANCEABILITY_ARMS: typing.Tuple[str, ...] = ("chill", "groovy", "bouncy")
VALENCE_ARMS: typing.Tuple[str, ...] = ("sad", "neutral", "happy")

# Felt tempo range (BPM) per tempo arm.
TEMPO_RANGES: typing.Dict[str, typing.Tuple[float, float]] = {
	"focus": (60, 72),
	"60-70": (70, 78),
	"70-80": (78, 86),
	"80-90": (86, 94),
	"90-100": (94, 102),
}

# Stored BPM is the felt BPM times this, so a heavy swing reads as a half-time groove.
TEMPO_MULTIPLIER: float = 2


@dataclasses.dataclass(frozen=True)
class EnergyParams:

	"""
	Attributes:
		density: Chance that a melody tick sounds a note.
		velocity: Note velocity, 0.0-1.0.
		instruments: How many voices may play; the kick needs 3, the snare 4.
	"""

	density: float
	velocity: float
	instruments: int


@dataclasses.dataclass(frozen=True)
class DanceabilityParams:

	swing: float
	kick_emphasis: float
	hihat_activity: float


@dataclasses.dataclass(frozen=True)
class ValenceParams:

	use_minor: bool


ENERGY_PARAMS: typing.Dict[str, EnergyParams] = {
	"low": EnergyParams(density=0.2, velocity=0.5, instruments=2),
	"medium": EnergyParams(density=0.33, velocity=0.7, instruments=3),
	"high": EnergyParams(density=0.5, velocity=0.85, instruments=4),
}

DANCEABILITY_PARAMS: typing.Dict[str, DanceabilityParams] = {
	"chill": DanceabilityParams(swing=0.45, kick_emphasis=0.4, hihat_activity=0.3),
	"groovy": DanceabilityParams(swing=0.55, kick_emphasis=0.65, hihat_activity=0.5),
	"bouncy": DanceabilityParams(swing=0.65, kick_emphasis=0.85, hihat_activity=0.75),
}

VALENCE_PARAMS: typing.Dict[str, ValenceParams] = {
	"sad": ValenceParams(use_minor=True),
	"neutral": ValenceParams(use_minor=False),
	"happy": ValenceParams(use_minor=False),
}

KICK_MIN_INSTRUMENTS = 3
SNARE_MIN_INSTRUMENTS = 4


def _check_arm (kind: str, arm: str, arms: typing.Tuple[str, ...]) -> None:

	if arm not in arms:
		raise ValueError(f"Unknown {kind} arm: {arm!r}. Expected one of {arms}")


@dataclasses.dataclass(frozen=True)
class GenerationParams:

	"""One arm per dimension, as chosen by the personalization layer."""

	tempo: str
	energy: str
	danceability: str
	valence: str

	def __post_init__ (self) -> None:

		"""Reject unknown arm names."""

		_check_arm("tempo", self.tempo, TEMPO_ARMS)
		_check_arm("energy", self.energy, ENERGY_ARMS)
		_check_arm("danceability", self.danceability, DANCEABILITY_ARMS)
		_check_arm("valence", self.valence, VALENCE_ARMS)


@typing.runtime_checkable
class ParamsSelector (typing.Protocol):

	"""Anything that can pick the next set of arms (e.g. a bandit)."""

	async def select_generation_params (self) -> GenerationParams:

		...


@dataclasses.dataclass(frozen=True)
class EnergySettings:

	"""What an energy arm does to the engine."""

	melody_density: float
	velocity: float
	kick_enabled: bool
	snare_enabled: bool


@dataclasses.dataclass(frozen=True)
class DanceabilitySettings:

	"""What a danceability arm does to the engine."""

	swing: float
	kick_emphasis: float
	hat_activity: float


def tempo_to_bpm (
	arm: str,
	rng: random.Random,
	ranges: typing.Optional[typing.Dict[str, typing.Tuple[float, float]]] = None,
	multiplier: float = TEMPO_MULTIPLIER
) -> int:

	"""Sample a felt tempo inside the arm's range and return the stored (multiplied) BPM.

	Example:
		```python
		tempo_to_bpm("focus", random.Random(1))   # somewhere in 120..144
		```
	"""

	_check_arm("tempo", arm, TEMPO_ARMS)

	low, high = (ranges or TEMPO_RANGES)[arm]
	target = low + rng.random() * (high - low)

	return int(round(target * multiplier))


def energy_settings (arm: str) -> EnergySettings:

	"""Map an energy arm to melody density, velocity and drum eligibility.

	Lower tiers switch whole voices off rather than thinning them: ``"low"``
	allows neither kick nor snare, ``"medium"`` allows the kick only.
	"""

	_check_arm("energy", arm, ENERGY_ARMS)

	params = ENERGY_PARAMS[arm]

	return EnergySettings(
		melody_density = params.density,
		velocity = params.velocity,
		kick_enabled = params.instruments >= KICK_MIN_INSTRUMENTS,
		snare_enabled = params.instruments >= SNARE_MIN_INSTRUMENTS
	)


def danceability_settings (arm: str) -> DanceabilitySettings:

	"""Map a danceability arm to swing and the kick/hat groove biases."""

	_check_arm("danceability", arm, DANCEABILITY_ARMS)

	params = DANCEABILITY_PARAMS[arm]

	return DanceabilitySettings(
		swing = params.swing,
		kick_emphasis = params.kick_emphasis,
		hat_activity = params.hihat_activity
	)


def prefers_minor (arm: str) -> bool:

	"""Return True when a valence arm asks for minor keys."""

	_check_arm("valence", arm, VALENCE_ARMS)

	return VALENCE_PARAMS[arm].use_minor


def random_params (rng: random.Random) -> GenerationParams:

	"""Pick every arm uniformly; a stand-in when no personalization layer is attached."""

	return GenerationParams(
		tempo = rng.choice(TEMPO_ARMS),
		energy = rng.choice(ENERGY_ARMS),
		danceability = rng.choice(DANCEABILITY_ARMS),
		valence = rng.choice(VALENCE_ARMS)
	)
