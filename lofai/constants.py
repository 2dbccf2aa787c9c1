"""Timing and General MIDI constants.

The transport runs at **24 pulses per quarter note** (PPQN = 24).  Musical
subdivisions are addressed by name (``"whole"``, ``"eighth"`` ...) when
registering repeating callbacks; ``SUBDIVISION_BEATS`` maps each name to its
length in beats, where 1.0 = one quarter note.
"""

import typing


MIDI_SIXTEENTH_NOTE = 6
MIDI_EIGHTH_NOTE = 12
MIDI_QUARTER_NOTE = 24
MIDI_HALF_NOTE = 48
MIDI_WHOLE_NOTE = 96

BEATS_PER_BAR = 4

SUBDIVISION_BEATS: typing.Dict[str, float] = {
	"sixteenth": 0.25,
	"eighth": 0.5,
	"quarter": 1.0,
	"half": 2.0,
	"whole": 4.0,
}


def subdivision_beats (name: str) -> float:

	"""Return the length in beats of a named subdivision.

	Raises:
		ValueError: If the name is not one of ``SUBDIVISION_BEATS``.
	"""

	if name not in SUBDIVISION_BEATS:
		raise ValueError(f"Unknown subdivision: {name!r}. Expected one of {sorted(SUBDIVISION_BEATS)}")

	return SUBDIVISION_BEATS[name]


# General MIDI Level 1 percussion notes used by the drum voices.

GM_DRUM_NOTES: typing.Dict[str, int] = {
	"kick_1": 36,
	"kick_2": 35,
	"side_stick": 37,
	"snare_1": 38,
	"hand_clap": 39,
	"snare_2": 40,
	"hi_hat_closed": 42,
	"hi_hat_pedal": 44,
	"hi_hat_open": 46,
	"ride_1": 51,
	"shaker": 70,
}

# General MIDI Level 1 programs (0-indexed) the engine knows by name.

GM_PROGRAMS: typing.Dict[str, int] = {
	"acoustic_grand_piano": 0,
	"bright_acoustic_piano": 1,
	"electric_piano_1": 4,
	"electric_piano_2": 5,
	"celesta": 8,
	"vibraphone": 11,
	"marimba": 12,
	"nylon_guitar": 24,
	"warm_pad": 89,
	"rain": 96,
	"breath_noise": 121,
	"seashore": 122,
	"applause": 126,
}

CC_VOLUME = 7
CC_FILTER_CUTOFF = 74
CC_ALL_SOUND_OFF = 120
CC_ALL_NOTES_OFF = 123
