import argparse
import asyncio
import dataclasses
import logging
import random
import signal
import sys
import typing

import lofai.config
import lofai.engine
import lofai.instruments
import lofai.osc
import lofai.params
import lofai.transport


logger = logging.getLogger(__name__)


def parse_args (argv: typing.Optional[typing.Sequence[str]] = None) -> argparse.Namespace:

	"""Parse command line arguments."""

	parser = argparse.ArgumentParser(prog="lofai", description="Endless generative lo-fi over MIDI")
	parser.add_argument("--config", default="config.yaml", help="YAML config file (default: config.yaml)")
	parser.add_argument("--device", default=None, help="MIDI output device (default: first available)")
	parser.add_argument("--seed", type=int, default=None, help="Random seed for reproducible output")
	parser.add_argument("--tempo", choices=lofai.params.TEMPO_ARMS, help="Tempo arm (default: random)")
	parser.add_argument("--energy", choices=lofai.params.ENERGY_ARMS, help="Energy arm (default: random)")
	parser.add_argument("--danceability", choices=lofai.params.DANCEABILITY_ARMS, help="Danceability arm (default: random)")
	parser.add_argument("--valence", choices=lofai.params.VALENCE_ARMS, help="Valence arm (default: random)")
	parser.add_argument("--noise", choices=lofai.instruments.NOISE_TYPES, help="Noise bed colour")
	parser.add_argument("--volume", type=float, default=None, help="Master volume, 0.0-1.0")
	parser.add_argument("--osc", action="store_true", help="Enable OSC control and state broadcasting")
	parser.add_argument("--osc-receive-port", type=int, default=9000, help="OSC listen port (default: 9000)")
	parser.add_argument("--osc-send-port", type=int, default=9001, help="OSC send port (default: 9001)")
	parser.add_argument("--osc-send-host", default="127.0.0.1", help="OSC send host (default: 127.0.0.1)")
	parser.add_argument("--render", type=int, metavar="BARS", default=None, help="Render this many bars to a MIDI file instead of playing")
	parser.add_argument("--output", default=None, help="MIDI file name for --render (default: timestamped)")
	parser.add_argument("--verbose", action="store_true", help="Debug logging")

	return parser.parse_args(argv)


def build_params (args: argparse.Namespace, rng: random.Random) -> lofai.params.GenerationParams:

	"""Arms given on the command line, random picks for the rest."""

	params = lofai.params.random_params(rng)
	chosen = {name: getattr(args, name) for name in ("tempo", "energy", "danceability", "valence") if getattr(args, name)}

	return dataclasses.replace(params, **chosen)


async def run (engine: lofai.engine.Engine, args: argparse.Namespace) -> None:

	"""
	Play until SIGINT or SIGTERM, then shut down cleanly.
	"""

	bridge: typing.Optional[lofai.osc.OscBridge] = None

	try:
		await engine.play()

		if args.osc:
			bridge = lofai.osc.OscBridge(
				engine,
				receive_port = args.osc_receive_port,
				send_port = args.osc_send_port,
				send_host = args.osc_send_host
			)
			await bridge.start()

		logger.info("Playing. Press Ctrl+C to stop.")

		stop_event = asyncio.Event()
		loop = asyncio.get_running_loop()

		def _request_stop () -> None:

			stop_event.set()

		for sig in (signal.SIGINT, signal.SIGTERM):
			loop.add_signal_handler(sig, _request_stop)

		await stop_event.wait()
		logger.info("Stopping...")

	finally:
		if bridge is not None:
			await bridge.stop()

		engine.dispose()


def main (argv: typing.Optional[typing.Sequence[str]] = None) -> int:

	"""
	Main entry point for the lofai application.
	"""

	args = parse_args(argv)

	logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

	config = lofai.config.load_config(args.config)
	rng = random.Random(args.seed)

	engine = lofai.engine.Engine(config=config, rng=rng, output_device=args.device)
	engine.apply_generation_params(build_params(args, rng))

	try:
		if args.volume is not None:
			engine.set_volume(args.volume)

		if args.noise is not None:
			engine.set_noise_type(args.noise)

	except ValueError as e:
		logger.error(str(e))
		return 2

	if args.render is not None:
		try:
			filename = engine.render(args.render, args.output)
		except ValueError as e:
			logger.error(str(e))
			return 2
		logger.info(f"Rendered {args.render} bars to {filename}")
		return 0

	try:
		asyncio.run(run(engine, args))

	except lofai.transport.AudioSessionError as e:
		logger.error(f"Cannot start playback: {e}")
		return 1

	return 0


if __name__ == "__main__":
	sys.exit(main())
