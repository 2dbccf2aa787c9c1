"""Engine configuration.

Every tunable lives in an :class:`EngineConfig` tree of dataclasses whose
defaults reproduce the lo-fi preset.  A YAML file can override any subset of
it; its layout mirrors the dataclass tree::

	tempo:
	  multiplier: 2
	  ranges:
	    focus: [58, 70]
	sections:
	  lengths: [16, 32]
	sound:
	  piano_program: acoustic_grand_piano
"""

import dataclasses
import logging
import os
import typing

import yaml

import lofai.form
import lofai.params
import lofai.rhythm


logger = logging.getLogger(__name__)


@dataclasses.dataclass
class TempoConfig:

	ranges: typing.Dict[str, typing.Tuple[float, float]] = dataclasses.field(default_factory=lambda: dict(lofai.params.TEMPO_RANGES))
	multiplier: float = lofai.params.TEMPO_MULTIPLIER
	default_bpm: float = 156
	default_swing: float = 1.0


@dataclasses.dataclass
class HarmonyConfig:

	progression_length: int = 8
	voicing_size: int = 4
	chord_octave: int = 3
	melody_octave: int = 4
	chord_subdivision: str = "whole"


@dataclasses.dataclass
class MelodyConfig:

	density: float = 0.33
	velocity: float = 0.7
	step_cap: int = 7
	subdivision: str = "eighth"
	note_beats: float = 2.0


@dataclasses.dataclass
class DrumConfig:

	probabilities: lofai.rhythm.DrumProbabilities = dataclasses.field(default_factory=lofai.rhythm.DrumProbabilities)
	kick_pattern: str = lofai.rhythm.KICK_TEMPLATE.slots
	kick_subdivision: str = lofai.rhythm.KICK_TEMPLATE.subdivision
	snare_pattern: str = lofai.rhythm.SNARE_TEMPLATE.slots
	snare_subdivision: str = lofai.rhythm.SNARE_TEMPLATE.subdivision
	hat_pattern: str = lofai.rhythm.HAT_TEMPLATE.slots
	hat_subdivision: str = lofai.rhythm.HAT_TEMPLATE.subdivision
	note_beats: float = 0.25

	def templates (self) -> typing.Dict[str, lofai.rhythm.DrumTemplate]:

		"""Build the drum templates described by this config."""

		return {
			"kick": lofai.rhythm.DrumTemplate("kick", self.kick_pattern, self.kick_subdivision),
			"snare": lofai.rhythm.DrumTemplate("snare", self.snare_pattern, self.snare_subdivision),
			"hat": lofai.rhythm.DrumTemplate("hat", self.hat_pattern, self.hat_subdivision),
		}


@dataclasses.dataclass
class SectionConfig:

	lengths: typing.Tuple[int, ...] = lofai.form.DEFAULT_SECTION_LENGTHS
	initial_length: int = 32
	cycle_dropout: lofai.form.DropoutRates = dataclasses.field(
		default_factory=lambda: lofai.form.DropoutRates(kick=0.15, snare=0.2, hat=0.25, melody=0.25, density_range=(0.2, 0.5))
	)
	section_dropout: lofai.form.DropoutRates = dataclasses.field(
		default_factory=lambda: lofai.form.DropoutRates(kick=0.13, snare=0.17, hat=0.22, melody=0.25, density_range=(0.2, 0.7))
	)


@dataclasses.dataclass
class SweepConfig:

	down_hz: float = 300.0
	up_hz: float = 2000.0
	seconds: float = 2.0


@dataclasses.dataclass
class SoundConfig:

	piano_channel: int = 0
	piano_program: str = "electric_piano_1"
	noise_channel: int = 1
	drum_channel: int = 9
	kick_note: str = "kick_1"
	snare_note: str = "snare_1"
	hat_note: str = "hi_hat_closed"
	kick_level: float = 1.0
	snare_level: float = 0.63
	hat_level: float = 0.5
	noise_programs: typing.Dict[str, str] = dataclasses.field(
		default_factory=lambda: {"white": "breath_noise", "pink": "seashore", "brown": "rain"}
	)
	noise_type: str = "pink"
	noise_volume: float = 0.3
	volume: float = 0.8
	master_filter_hz: float = 2000.0


@dataclasses.dataclass
class EngineConfig:

	"""The full engine configuration."""

	tempo: TempoConfig = dataclasses.field(default_factory=TempoConfig)
	harmony: HarmonyConfig = dataclasses.field(default_factory=HarmonyConfig)
	melody: MelodyConfig = dataclasses.field(default_factory=MelodyConfig)
	drums: DrumConfig = dataclasses.field(default_factory=DrumConfig)
	sections: SectionConfig = dataclasses.field(default_factory=SectionConfig)
	sweep: SweepConfig = dataclasses.field(default_factory=SweepConfig)
	sound: SoundConfig = dataclasses.field(default_factory=SoundConfig)


def _apply (target: typing.Any, data: typing.Any, path: str) -> None:

	"""Overlay a parsed YAML mapping onto a config dataclass, in place."""

	# An empty YAML section ("tempo:" with nothing under it) parses as None.
	if data is None:
		return

	if not isinstance(data, dict):
		raise ValueError(f"Config section '{path}' must be a mapping")

	known = {field.name for field in dataclasses.fields(target)}

	for name, value in data.items():

		if name not in known:
			raise ValueError(f"Unknown config key: {path}.{name}" if path else f"Unknown config key: {name}")

		current = getattr(target, name)
		child_path = f"{path}.{name}" if path else name

		if dataclasses.is_dataclass(current):
			_apply(current, value, child_path)

		elif isinstance(current, tuple):
			setattr(target, name, tuple(value))

		elif isinstance(current, dict):
			merged = dict(current)
			for key, item in value.items():
				merged[key] = tuple(item) if isinstance(item, list) else item
			setattr(target, name, merged)

		else:
			setattr(target, name, value)


def config_from_dict (data: typing.Optional[typing.Dict[str, typing.Any]]) -> EngineConfig:

	"""Return the default config with ``data`` overlaid on it."""

	config = EngineConfig()

	if data:
		_apply(config, data, "")

	return config


def load_config (config_path: str = "config.yaml") -> EngineConfig:

	"""
	Load configuration from a YAML file.

	A missing file is not an error: the defaults are returned.

	Raises:
		ValueError: If the file names a key the config does not have.
	"""

	if not os.path.exists(config_path):
		logger.warning(f"Config file {config_path} not found. Using defaults.")
		return EngineConfig()

	with open(config_path, "r") as f:
		data = yaml.safe_load(f)

	logger.info(f"Loaded config from {config_path}")

	return config_from_dict(data)
