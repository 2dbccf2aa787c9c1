import logging
import pathlib
import random

import mido
import pytest

import lofai.__main__


def test_parse_args_defaults () -> None:

	args = lofai.__main__.parse_args([])

	assert args.config == "config.yaml"
	assert args.osc is False
	assert args.osc_receive_port == 9000
	assert args.render is None


def test_parse_args_rejects_unknown_arm () -> None:

	with pytest.raises(SystemExit):
		lofai.__main__.parse_args(["--energy", "extreme"])


def test_build_params_keeps_chosen_arms () -> None:

	args = lofai.__main__.parse_args(["--tempo", "70-80", "--valence", "sad"])
	params = lofai.__main__.build_params(args, random.Random(2))

	assert params.tempo == "70-80"
	assert params.valence == "sad"


def test_render_from_command_line (tmp_path: pathlib.Path, patch_midi: None) -> None:

	"""--render writes a MIDI file without opening a port."""

	output = tmp_path / "out.mid"

	code = lofai.__main__.main([
		"--config", str(tmp_path / "missing.yaml"),
		"--seed", "9",
		"--render", "2",
		"--output", str(output),
	])

	assert code == 0
	assert output.exists()
	assert any(m.type == "note_on" for m in mido.MidiFile(str(output)).tracks[0])


def test_invalid_volume_exits_with_error (tmp_path: pathlib.Path, caplog: pytest.LogCaptureFixture) -> None:

	with caplog.at_level(logging.ERROR, logger="lofai.__main__"):
		code = lofai.__main__.main(["--config", str(tmp_path / "missing.yaml"), "--volume", "4", "--render", "1"])

	assert code == 2
	assert "Volume must be between 0 and 1" in caplog.text


def test_playback_without_output_exits_with_error (tmp_path: pathlib.Path, no_midi: None) -> None:

	assert lofai.__main__.main(["--config", str(tmp_path / "missing.yaml")]) == 1
