import logging
import math
import typing

import mido


logger = logging.getLogger(__name__)


def select_output_device (device_name: typing.Optional[str] = None) -> typing.Tuple[typing.Optional[str], typing.Optional[typing.Any]]:

	"""
	Select and open a MIDI output device.

	If ``device_name`` is provided, attempts to open that specific device.
	If ``device_name`` is None, the first available output is used.
	If no devices exist, or opening fails, logs an error and returns ``(None, None)``.

	Returns:
		A tuple of (device_name, midi_out_object) or (None, None) on failure.
	"""

	try:
		outputs = mido.get_output_names()
		logger.info(f"Available MIDI outputs: {outputs}")

		if not outputs:
			logger.error("No MIDI output devices found.")
			return None, None

		if device_name is not None:
			if device_name not in outputs:
				logger.error(
					f"MIDI output device '{device_name}' not found. "
					f"Available devices: {outputs}"
				)
				return None, None

			selected_name = device_name

		else:
			selected_name = outputs[0]

			if len(outputs) > 1:
				logger.info(f"Several MIDI outputs found - using '{selected_name}' (pass a device name to choose)")

		midi_out = mido.open_output(selected_name)
		logger.info(f"Opened MIDI output: {selected_name}")
		return selected_name, midi_out

	except Exception as e:
		logger.error(f"Failed to open MIDI output: {e}")
		return None, None


def level_to_velocity (level: float) -> int:

	"""Map a 0.0-1.0 level onto a note-on velocity (1-127; 0 would mean note-off)."""

	return max(1, min(127, int(round(level * 127))))


def gain_db_to_cc (db: float) -> int:

	"""Map a gain in decibels onto CC 7, using the usual 40*log10 volume curve.

	``-inf`` (and anything below the curve's floor) maps to 0.
	"""

	if math.isinf(db) and db < 0:
		return 0

	return max(0, min(127, int(round(127 * 10 ** (db / 40.0)))))


def level_to_db (level: float) -> float:

	"""Convert a linear 0.0-1.0 level to decibels (0 becomes ``-inf``)."""

	if level <= 0:
		return -math.inf

	return 20 * math.log10(level)
