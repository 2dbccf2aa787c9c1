"""OSC control and state broadcasting.

The bridge listens on a UDP port (default 9000) for control messages and
sends state updates to a target host/port (default 127.0.0.1:9001).

Receive
───────
- ``/play``, ``/pause``, ``/stop``, ``/skip``
- ``/volume <float>``: Master volume, 0.0-1.0
- ``/noise/type <string>``: ``off``, ``white``, ``pink`` or ``brown``
- ``/noise/volume <float>``: Noise bed level, 0.0-1.0
- ``/params <tempo> <energy> <danceability> <valence>``: Apply arms

Send
────
- ``/key <string>``: On key change
- ``/progress <int>``: On chord change
- ``/bpm <float>``: On tempo change
- ``/section <int> <int>``: Section number and its length in bars, on section change
"""

import asyncio
import logging
import typing

import pythonosc.dispatcher
import pythonosc.osc_server
import pythonosc.udp_client

import lofai.params
import lofai.transport

if typing.TYPE_CHECKING:
	from lofai.engine import Engine, EngineState


logger = logging.getLogger(__name__)


class OscBridge:

	"""Async OSC server/client bound to one engine."""

	def __init__ (
		self,
		engine: "Engine",
		receive_port: int = 9000,
		send_port: int = 9001,
		send_host: str = "127.0.0.1"
	) -> None:

		self._engine = engine
		self._receive_port = receive_port
		self._send_port = send_port
		self._send_host = send_host

		self._server: typing.Optional[typing.Any] = None
		self._transport: typing.Optional[asyncio.BaseTransport] = None
		self._client: typing.Optional[pythonosc.udp_client.SimpleUDPClient] = None
		self._unsubscribe: typing.Optional[typing.Callable[[], None]] = None
		self._last_sent: typing.Dict[str, typing.Any] = {}
		self._pending: typing.Set[asyncio.Future] = set()

		self._dispatcher = pythonosc.dispatcher.Dispatcher()
		self._dispatcher.map("/play", self._handle_play)
		self._dispatcher.map("/pause", self._handle_pause)
		self._dispatcher.map("/stop", self._handle_stop)
		self._dispatcher.map("/skip", self._handle_skip)
		self._dispatcher.map("/volume", self._handle_volume)
		self._dispatcher.map("/noise/type", self._handle_noise_type)
		self._dispatcher.map("/noise/volume", self._handle_noise_volume)
		self._dispatcher.map("/params", self._handle_params)


	@property
	def port (self) -> typing.Optional[int]:

		"""The bound receive port (useful when constructed with port 0)."""

		if self._transport is None:
			return None

		return self._transport.get_extra_info("sockname")[1]


	async def start (self) -> None:

		"""Start the OSC server and client, and begin broadcasting state."""

		self._client = pythonosc.udp_client.SimpleUDPClient(self._send_host, self._send_port)

		self._server = pythonosc.osc_server.AsyncIOOSCUDPServer(
			("0.0.0.0", self._receive_port),
			self._dispatcher,
			asyncio.get_running_loop()  # type: ignore[arg-type]
		)

		transport, _ = await self._server.create_serve_endpoint()
		self._transport = transport

		self._unsubscribe = self._engine.subscribe(self.broadcast)

		logger.info(f"OSC listening on :{self.port}, sending to {self._send_host}:{self._send_port}")


	async def stop (self) -> None:

		"""Stop the OSC server."""

		if self._unsubscribe:
			self._unsubscribe()
			self._unsubscribe = None

		if self._transport:
			self._transport.close()
			self._transport = None
			logger.info("OSC server stopped")


	def send (self, address: str, *args: typing.Any) -> None:

		"""Send an OSC message."""

		if self._client:
			try:
				self._client.send_message(address, args)
			except Exception as e:
				logger.warning(f"OSC send error: {e}")


	def broadcast (self, state: "EngineState") -> None:

		"""Send whichever of key, progress, tempo and section changed since the last call."""

		values: typing.Dict[str, typing.Tuple[typing.Any, ...]] = {
			"/key": (state.key or "",),
			"/progress": (state.progress_index,),
			"/bpm": (float(state.bpm),),
			"/section": (state.section_count, state.section_length),
		}

		for address, args in values.items():
			if self._last_sent.get(address) != args:
				self._last_sent[address] = args
				self.send(address, *args)


	# Handlers

	def _handle_play (self, address: str, *args: typing.Any) -> None:

		future = asyncio.ensure_future(self._engine.play())
		self._pending.add(future)
		future.add_done_callback(self._play_done)

	def _play_done (self, future: asyncio.Future) -> None:

		self._pending.discard(future)

		if future.cancelled():
			return

		error = future.exception()

		if isinstance(error, lofai.transport.AudioSessionError):
			logger.warning(f"OSC /play failed: {error}")

		elif error is not None:
			logger.error("OSC /play failed", exc_info=error)

	def _handle_pause (self, address: str, *args: typing.Any) -> None:
		self._engine.pause()

	def _handle_stop (self, address: str, *args: typing.Any) -> None:
		self._engine.stop()

	def _handle_skip (self, address: str, *args: typing.Any) -> None:
		self._engine.skip()

	def _handle_volume (self, address: str, *args: typing.Any) -> None:
		if not args:
			return
		try:
			self._engine.set_volume(float(args[0]))
		except (ValueError, TypeError):
			logger.warning(f"Invalid OSC volume argument: {args[0]}")

	def _handle_noise_type (self, address: str, *args: typing.Any) -> None:
		if not args:
			return
		try:
			self._engine.set_noise_type(str(args[0]))
		except ValueError:
			logger.warning(f"Invalid OSC noise type: {args[0]}")

	def _handle_noise_volume (self, address: str, *args: typing.Any) -> None:
		if not args:
			return
		try:
			self._engine.set_noise_volume(float(args[0]))
		except (ValueError, TypeError):
			logger.warning(f"Invalid OSC noise volume argument: {args[0]}")

	def _handle_params (self, address: str, *args: typing.Any) -> None:
		if len(args) != 4:
			logger.warning(f"OSC /params needs 4 arguments, got {len(args)}")
			return
		try:
			params = lofai.params.GenerationParams(*(str(arg) for arg in args))
		except ValueError as e:
			logger.warning(f"Invalid OSC params: {e}")
			return
		self._engine.apply_generation_params(params)
