"""Keys, scales, chords and progressions.

Everything here is a value type or a pure constructor.  Randomness only
enters through an explicit ``random.Random`` passed by the caller, so a
seeded generator reproduces the same keys and progressions.

Module-level constants:
- ``NOTE_NAME_TO_PC`` / ``PC_TO_NOTE_NAME``: note name <-> pitch class (0-11).
- ``SCALE_INTERVALS``: two-octave interval tables per mode.  Every table has
  the same length, so a scale built from any key has the same length.
- ``CHORD_STACKS``: stacked-third interval lists per chord quality.
- ``DEGREES``: the seven diatonic chords of each mode.
- ``DEGREE_TRANSITIONS``: weighted moves between scale degrees, shared by
  both modes.
"""

import dataclasses
import random
import typing


NOTE_NAME_TO_PC: typing.Dict[str, int] = {
	"C": 0,
	"C#": 1,
	"Db": 1,
	"D": 2,
	"D#": 3,
	"Eb": 3,
	"E": 4,
	"F": 5,
	"F#": 6,
	"Gb": 6,
	"G": 7,
	"G#": 8,
	"Ab": 8,
	"A": 9,
	"A#": 10,
	"Bb": 10,
	"B": 11,
}

PC_TO_NOTE_NAME: typing.List[str] = [
	"C", "Db", "D", "Eb", "E", "F", "F#", "G", "Ab", "A", "Bb", "B",
]

MODES: typing.Tuple[str, ...] = ("major", "minor")

# Tonics the engine picks from on each regeneration.
MAJOR_KEY_NAMES: typing.List[str] = ["C", "Db", "D", "Eb", "E", "F", "F#", "G", "Ab", "A", "Bb", "B"]
MINOR_KEY_NAMES: typing.List[str] = ["C", "C#", "D", "Eb", "E", "F", "F#", "G", "G#", "A", "Bb", "B"]

SCALE_INTERVALS: typing.Dict[str, typing.List[int]] = {
	"major": [0, 2, 4, 5, 7, 9, 11, 12, 14, 16, 17, 19, 21, 23, 24],
	"minor": [0, 2, 3, 5, 7, 8, 10, 12, 14, 15, 17, 19, 20, 22, 24],
}

CHORD_STACKS: typing.Dict[str, typing.List[int]] = {
	"major_7th": [0, 4, 7, 11, 14],
	"minor_7th": [0, 3, 7, 10, 14],
	"dominant_7th": [0, 4, 7, 10, 14],
	"half_diminished_7th": [0, 3, 6, 10, 13],
}

DEGREES: typing.Dict[str, typing.List[typing.Tuple[str, int, str]]] = {
	"major": [
		("I", 0, "major_7th"),
		("ii", 2, "minor_7th"),
		("iii", 4, "minor_7th"),
		("IV", 5, "major_7th"),
		("V", 7, "dominant_7th"),
		("vi", 9, "minor_7th"),
		("vii°", 11, "half_diminished_7th"),
	],
	"minor": [
		("i", 0, "minor_7th"),
		("ii°", 2, "half_diminished_7th"),
		("III", 3, "major_7th"),
		("iv", 5, "minor_7th"),
		("v", 7, "minor_7th"),
		("VI", 8, "major_7th"),
		("VII", 10, "dominant_7th"),
	],
}

# Scale degree index (0 = tonic) -> {next degree index: weight}.
DEGREE_TRANSITIONS: typing.Dict[int, typing.Dict[int, int]] = {
	0: {1: 2, 2: 1, 3: 3, 4: 2, 5: 3},
	1: {4: 4, 3: 1, 2: 1, 6: 1},
	2: {5: 3, 3: 2, 1: 1},
	3: {4: 3, 0: 2, 1: 2, 2: 1, 6: 1},
	4: {0: 4, 5: 3, 2: 1, 3: 1},
	5: {1: 3, 3: 3, 4: 2, 2: 1},
	6: {0: 3, 2: 2, 5: 1},
}


def key_name_to_pc (key_name: str) -> int:

	"""Validate a note name and return its pitch class (0-11).

	Raises:
		ValueError: If the name is not recognised.
	"""

	if key_name not in NOTE_NAME_TO_PC:
		raise ValueError(f"Unknown key name: {key_name!r}. Expected e.g. 'C', 'F#', 'Bb'.")

	return NOTE_NAME_TO_PC[key_name]


@dataclasses.dataclass(frozen=True)
class Key:

	"""A tonic pitch class and a mode (``"major"`` or ``"minor"``)."""

	tonic_pc: int
	mode: str = "major"

	def __post_init__ (self) -> None:

		if self.mode not in MODES:
			raise ValueError(f"Unknown mode: {self.mode!r}. Expected one of {MODES}")

		if not 0 <= self.tonic_pc < 12:
			raise ValueError(f"Tonic pitch class must be 0-11, got {self.tonic_pc}")

	@classmethod
	def from_name (cls, tonic: str, mode: str = "major") -> "Key":

		"""Build a key from a note name, e.g. ``Key.from_name("F#", "minor")``."""

		return cls(tonic_pc=key_name_to_pc(tonic), mode=mode)

	@property
	def tonic_name (self) -> str:

		"""Return the tonic note name."""

		return PC_TO_NOTE_NAME[self.tonic_pc]

	@property
	def is_minor (self) -> bool:

		return self.mode == "minor"

	def name (self) -> str:

		"""Return a short display name: ``"C"`` for C major, ``"Am"`` for A minor."""

		return f"{self.tonic_name}m" if self.is_minor else self.tonic_name

	def tonic_midi (self, octave: int) -> int:

		"""Return the MIDI note of the tonic in an octave (C4 = 60)."""

		return 12 * (octave + 1) + self.tonic_pc


@dataclasses.dataclass(frozen=True)
class Scale:

	"""An ordered run of MIDI pitches.  Index 0 is the tonic and the lowest pitch."""

	key: Key
	pitches: typing.Tuple[int, ...]

	def __len__ (self) -> int:

		return len(self.pitches)

	def __getitem__ (self, index: int) -> int:

		return self.pitches[index]


def build_scale (key: Key, octave: int = 4) -> Scale:

	"""Stack the mode's interval table upward from the tonic.

	Parameters:
		key: The key to build from.
		octave: Octave of the tonic (C4 = 60).

	Returns:
		A :class:`Scale` whose first pitch is the tonic.

	Example:
		```python
		build_scale(Key.from_name("C")).pitches[:8]
		# (60, 62, 64, 65, 67, 69, 71, 72)
		```
	"""

	root = key.tonic_midi(octave)

	return Scale(key=key, pitches=tuple(root + interval for interval in SCALE_INTERVALS[key.mode]))


@dataclasses.dataclass(frozen=True)
class Chord:

	"""A scale-degree chord: its label, its semitone offset from the tonic and its quality."""

	degree: str
	offset: int
	quality: str

	def voicing (self, voice_count: int) -> typing.List[int]:

		"""Return ``voice_count`` semitone intervals to stack on the chord root.

		Intervals come from the quality's stacked thirds; past the end of the
		stack they repeat an octave higher.  The result depends only on the
		quality and ``voice_count``.

		Example:
			```python
			Chord("ii", 2, "minor_7th").voicing(4)   # [0, 3, 7, 10]
			Chord("ii", 2, "minor_7th").voicing(7)   # [0, 3, 7, 10, 14, 12, 15]
			```
		"""

		if voice_count <= 0:
			raise ValueError("Voice count must be positive")

		if self.quality not in CHORD_STACKS:
			raise ValueError(f"Unknown chord quality: {self.quality}")

		stack = CHORD_STACKS[self.quality]
		n = len(stack)

		return [stack[i % n] + 12 * (i // n) for i in range(voice_count)]

	def pitches (self, key: Key, octave: int, voice_count: int) -> typing.List[int]:

		"""Return MIDI notes for this chord in a key, rooted in the given octave."""

		root = key.tonic_midi(octave) + self.offset

		return [root + interval for interval in self.voicing(voice_count)]


def degree_chord (mode: str, index: int) -> Chord:

	"""Return the diatonic chord on scale degree ``index`` (0 = tonic) of a mode."""

	if mode not in DEGREES:
		raise ValueError(f"Unknown mode: {mode!r}")

	degree, offset, quality = DEGREES[mode][index]

	return Chord(degree=degree, offset=offset, quality=quality)


@dataclasses.dataclass(frozen=True)
class Progression:

	"""A fixed-length cyclic chord sequence."""

	chords: typing.Tuple[Chord, ...]

	def __len__ (self) -> int:

		return len(self.chords)

	def __getitem__ (self, index: int) -> Chord:

		return self.chords[index]

	def degrees (self) -> typing.Tuple[str, ...]:

		"""Return the degree labels, e.g. ``("I", "vi", "ii", "V")``."""

		return tuple(chord.degree for chord in self.chords)


def _choose_weighted (options: typing.Dict[int, int], rng: random.Random) -> int:

	"""Pick a key of ``options`` with probability proportional to its weight."""

	total = float(sum(options.values()))
	roll = rng.uniform(0, total)
	accum = 0.0

	for target, weight in options.items():
		accum += weight
		if roll <= accum:
			return target

	return list(options)[-1]


def generate_progression (length: int, rng: random.Random, mode: str = "major") -> Progression:

	"""Walk the degree transition table to build a progression.

	The progression always opens on the tonic chord; each following degree is
	drawn from ``DEGREE_TRANSITIONS`` of the previous one.

	Parameters:
		length: Number of chords (must be positive).
		rng: Random source.
		mode: ``"major"`` or ``"minor"``; selects the chord labels and qualities.
	"""

	if length <= 0:
		raise ValueError("Progression length must be positive")

	if mode not in DEGREES:
		raise ValueError(f"Unknown mode: {mode!r}")

	indices = [0]

	while len(indices) < length:
		indices.append(_choose_weighted(DEGREE_TRANSITIONS[indices[-1]], rng))

	return Progression(chords=tuple(degree_chord(mode, index) for index in indices))


def choose_key (rng: random.Random, prefer_minor: bool) -> Key:

	"""Pick a random tonic in the preferred mode."""

	if prefer_minor:
		return Key.from_name(rng.choice(MINOR_KEY_NAMES), "minor")

	return Key.from_name(rng.choice(MAJOR_KEY_NAMES), "major")


@dataclasses.dataclass(frozen=True)
class TonalContext:

	"""Key, scale and progression that are always replaced together."""

	key: Key
	scale: Scale
	progression: Progression


def generate_tonal_context (
	rng: random.Random,
	prefer_minor: bool = False,
	progression_length: int = 8,
	melody_octave: int = 4
) -> TonalContext:

	"""Build a fresh key, its scale and a progression in one step."""

	key = choose_key(rng, prefer_minor)

	return TonalContext(
		key = key,
		scale = build_scale(key, melody_octave),
		progression = generate_progression(progression_length, rng, key.mode)
	)
