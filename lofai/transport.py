import asyncio
import dataclasses
import datetime
import heapq
import itertools
import logging
import time
import typing

import mido

import lofai.constants
import lofai.event_emitter
import lofai.midi_utils


logger = logging.getLogger(__name__)


TickCallback = typing.Callable[[int], typing.Any]


class AudioSessionError (RuntimeError):

	"""Raised when no MIDI output can be opened for playback."""


@dataclasses.dataclass (order=True)
class MidiEvent:

	"""
	Represents a MIDI event scheduled at a specific pulse.
	"""

	pulse: int
	message_type: str = dataclasses.field(compare=False)
	channel: int = dataclasses.field(compare=False)
	note: int = dataclasses.field(compare=False, default=0)
	velocity: int = dataclasses.field(compare=False, default=0)
	control: int = dataclasses.field(compare=False, default=0)
	value: int = dataclasses.field(compare=False, default=0)


@dataclasses.dataclass
class ScheduledCallback:

	"""
	Tracks a clock callback and its scheduling metadata.

	``interval_pulses`` is 0 for a one-shot callback.
	"""

	callback: TickCallback
	name: str
	interval_pulses: int
	nominal_pulse: int
	cancelled: bool = False


class Transport:

	"""
	The musical clock shared by every voice.

	The `Transport` counts pulses (24 per quarter note), fires repeating and
	one-shot callbacks at their pulse, and sends the MIDI events those
	callbacks queue.  Tempo and swing are global: every callback follows them.

	Callbacks for one pulse all run, in the order they were queued, before
	any callback for the next pulse.  A callback that raises is logged and
	skipped, so a failing voice goes silent for one tick instead of stopping
	the clock.
	"""

	def __init__ (
		self,
		output_device_name: typing.Optional[str] = None,
		initial_bpm: float = 156,
		swing: float = 0.0,
		record: bool = False,
		record_filename: typing.Optional[str] = None,
		spin_wait: bool = True
	) -> None:

		"""Initialize the transport; no MIDI port is opened yet.

		Parameters:
			output_device_name: MIDI output device name.  When omitted, the first
				available device is used once :meth:`acquire_output` is called.
			initial_bpm: Tempo in BPM.
			swing: Off-beat eighth delay, 0.0 (straight) to 1.0 (heaviest shuffle).
			record: When True, record all MIDI events for :meth:`save_recording`.
			record_filename: Optional filename for the recording (defaults to timestamp).
			spin_wait: When True, busy-wait the final sub-millisecond of each
				pulse interval for tighter timing.
		"""

		self.output_device_name = output_device_name
		self.pulses_per_beat = lofai.constants.MIDI_QUARTER_NOTE
		self.pulses_per_bar = self.pulses_per_beat * lofai.constants.BEATS_PER_BAR

		self.recording = record
		self.record_filename = record_filename
		self.recorded_events: typing.List[typing.Tuple[float, typing.Union[mido.Message, mido.MetaMessage]]] = []

		self.event_queue: typing.List[MidiEvent] = []
		self.callback_queue: typing.List[typing.Tuple[int, int, ScheduledCallback]] = []
		self._callback_counter = itertools.count()
		self.active_notes: typing.Set[typing.Tuple[int, int]] = set()
		self.events = lofai.event_emitter.EventEmitter()

		self.task: typing.Optional[asyncio.Task] = None
		self.pulse_count = 0
		self.running = False
		self.midi_out: typing.Any = None

		self.current_bpm: float = 0
		self.seconds_per_beat = 0.0
		self.seconds_per_pulse = 0.0
		self.swing: float = 0.0
		self._spin_wait: bool = spin_wait
		# Sleep to this many seconds before the target, then busy-wait the rest.
		self._spin_threshold: float = 0.001

		self.set_bpm(initial_bpm)
		self.set_swing(swing)


	# Tempo and swing

	def set_bpm (self, bpm: float) -> None:

		"""
		Instantly change the tempo.  Applies to every callback from the next pulse.
		"""

		if bpm <= 0:
			raise ValueError("BPM must be positive")

		self.current_bpm = bpm
		self.seconds_per_beat = 60.0 / self.current_bpm
		self.seconds_per_pulse = self.seconds_per_beat / self.pulses_per_beat

		logger.info(f"BPM set to {self.current_bpm:.2f}")

		if self.recording:
			self._record_event(self.pulse_count, mido.MetaMessage('set_tempo', tempo=mido.bpm2tempo(self.current_bpm)))


	def set_swing (self, swing: float) -> None:

		"""
		Set the swing amount (0.0-1.0).  Takes effect as callbacks are requeued.
		"""

		if swing < 0 or swing > 1:
			raise ValueError("Swing must be between 0 and 1")

		self.swing = swing


	def swing_offset (self, pulse: int) -> int:

		"""Return how many pulses late a callback at ``pulse`` should fire.

		Only the off-beat eighth of each quarter note moves; at full swing it is
		two thirds of an eighth late.
		"""

		eighth = lofai.constants.MIDI_EIGHTH_NOTE

		if pulse % self.pulses_per_beat != eighth:
			return 0

		return int(round(self.swing * (2.0 / 3.0) * eighth))


	def seconds_to_pulses (self, seconds: float) -> int:

		"""Convert a wall-clock duration to pulses at the current tempo."""

		return max(0, int(round(seconds / self.seconds_per_pulse)))


	def beats_to_pulses (self, beats: float) -> int:

		return max(1, int(round(beats * self.pulses_per_beat)))


	# Output session

	def open_output (self) -> None:

		"""Open the MIDI output port if it is not already open.

		Raises:
			AudioSessionError: If no output device can be opened.
		"""

		if self.midi_out is not None:
			return

		device_name, midi_out = lofai.midi_utils.select_output_device(self.output_device_name)

		if midi_out is None:
			raise AudioSessionError(
				f"Could not open MIDI output {self.output_device_name!r}" if self.output_device_name else "No MIDI output available"
			)

		self.output_device_name = device_name
		self.midi_out = midi_out


	async def acquire_output (self) -> None:

		"""Open the MIDI output without blocking the event loop."""

		if self.midi_out is not None:
			return

		loop = asyncio.get_running_loop()
		await loop.run_in_executor(None, self.open_output)


	def close_output (self) -> None:

		"""Close the MIDI output port, if open."""

		if self.midi_out is not None:
			try:
				self.midi_out.close()
			except Exception:
				logger.exception("Failed to close MIDI output")
			self.midi_out = None


	# Scheduling

	def _push_callback (self, scheduled: ScheduledCallback) -> None:

		fire_pulse = scheduled.nominal_pulse + self.swing_offset(scheduled.nominal_pulse)
		counter = next(self._callback_counter)
		heapq.heappush(self.callback_queue, (fire_pulse, counter, scheduled))


	def schedule_repeating (
		self,
		callback: TickCallback,
		subdivision: str,
		start_pulse: int = 0,
		name: typing.Optional[str] = None
	) -> ScheduledCallback:

		"""
		Call ``callback(pulse)`` on every occurrence of a named subdivision.

		Parameters:
			callback: Receives the nominal (unswung) pulse of each tick.
			subdivision: ``"whole"``, ``"half"``, ``"quarter"``, ``"eighth"`` or ``"sixteenth"``.
			start_pulse: Pulse of the first tick.
			name: Label used in log messages.

		Returns:
			The schedule entry; pass it to :meth:`cancel` to remove it.
		"""

		interval_pulses = self.beats_to_pulses(lofai.constants.subdivision_beats(subdivision))

		scheduled = ScheduledCallback(
			callback = callback,
			name = name or getattr(callback, "__name__", "callback"),
			interval_pulses = interval_pulses,
			nominal_pulse = start_pulse
		)

		self._push_callback(scheduled)

		return scheduled


	def schedule_once (self, callback: TickCallback, delay_pulses: int = 0, name: typing.Optional[str] = None) -> ScheduledCallback:

		"""
		Call ``callback(pulse)`` once, ``delay_pulses`` after the current pulse.

		One-shots live on the same queue as repeating callbacks, so
		:meth:`stop` removes them too.
		"""

		if delay_pulses < 0:
			raise ValueError("Delay cannot be negative")

		scheduled = ScheduledCallback(
			callback = callback,
			name = name or getattr(callback, "__name__", "callback"),
			interval_pulses = 0,
			nominal_pulse = self.pulse_count + delay_pulses
		)

		counter = next(self._callback_counter)
		heapq.heappush(self.callback_queue, (scheduled.nominal_pulse, counter, scheduled))

		return scheduled


	def cancel (self, scheduled: ScheduledCallback) -> None:

		"""Stop a scheduled callback from firing again."""

		scheduled.cancelled = True


	def clear_callbacks (self) -> None:

		"""Remove every repeating and one-shot callback."""

		for _, _, scheduled in self.callback_queue:
			scheduled.cancelled = True

		self.callback_queue = []
		self._callback_counter = itertools.count()


	# Sound output

	def note (self, channel: int, pitch: int, velocity: int, duration_pulses: int) -> None:

		"""
		Queue a note that starts at the current pulse and ends ``duration_pulses`` later.
		"""

		if not 0 <= pitch <= 127:
			logger.debug(f"Dropping out-of-range note {pitch}")
			return

		heapq.heappush(self.event_queue, MidiEvent(
			pulse = self.pulse_count,
			message_type = 'note_on',
			channel = channel,
			note = pitch,
			velocity = velocity
		))

		heapq.heappush(self.event_queue, MidiEvent(
			pulse = self.pulse_count + max(1, duration_pulses),
			message_type = 'note_off',
			channel = channel,
			note = pitch,
			velocity = 0
		))


	def control_change (self, channel: int, control: int, value: int, delay_pulses: int = 0) -> None:

		"""
		Queue a control change ``delay_pulses`` after the current pulse.
		"""

		heapq.heappush(self.event_queue, MidiEvent(
			pulse = self.pulse_count + delay_pulses,
			message_type = 'control_change',
			channel = channel,
			control = control,
			value = max(0, min(127, value))
		))


	def send_now (self, message: mido.Message) -> None:

		"""Send a message straight to the port, outside the event queue.

		With no port open (offline rendering) the message is only recorded.
		"""

		if self.midi_out is not None:
			try:
				self.midi_out.send(message)
			except Exception:
				logger.exception("MIDI send failed (device may be disconnected)")
				return

		if self.recording:
			self._record_event(self.pulse_count, message)


	# Clock

	def tick (self) -> None:

		"""
		Process one pulse: fire due callbacks, send due events, advance the pulse.
		"""

		pulse = self.pulse_count

		if pulse % self.pulses_per_bar == 0:
			self.events.emit("bar", pulse // self.pulses_per_bar)

		while self.callback_queue and self.callback_queue[0][0] <= pulse:

			_, _, scheduled = heapq.heappop(self.callback_queue)

			if scheduled.cancelled:
				continue

			nominal_pulse = scheduled.nominal_pulse

			if scheduled.interval_pulses > 0:
				scheduled.nominal_pulse = nominal_pulse + scheduled.interval_pulses
				self._push_callback(scheduled)

			try:
				scheduled.callback(nominal_pulse)
			except Exception:
				logger.exception(f"Error in {scheduled.name!r} at pulse {nominal_pulse} - silent this tick")

		self._process_pulse(pulse)
		self.pulse_count += 1


	def run_pulses (self, count: int) -> None:

		"""Advance the clock ``count`` pulses immediately, without waiting on wall time."""

		for _ in range(count):
			self.tick()


	def _process_pulse (self, pulse: int) -> None:

		"""
		Send all events due at or before ``pulse``.
		"""

		while self.event_queue and self.event_queue[0].pulse <= pulse:

			event = heapq.heappop(self.event_queue)

			if event.message_type == 'note_on' and event.velocity > 0:
				self.active_notes.add((event.channel, event.note))

			elif event.message_type == 'note_off':
				self.active_notes.discard((event.channel, event.note))

			self._send_midi(event)


	def _send_midi (self, event: MidiEvent) -> None:

		"""
		Send a queued event to the output port.
		"""

		if event.message_type in ('note_on', 'note_off'):
			msg = mido.Message(event.message_type, channel=event.channel, note=event.note, velocity=event.velocity)

		elif event.message_type == 'control_change':
			msg = mido.Message('control_change', channel=event.channel, control=event.control, value=event.value)

		else:
			return

		self.send_now(msg)


	async def start (self) -> None:

		"""Start the clock in a background asyncio task, from the current pulse."""

		if self.running:
			return

		self.running = True
		self.task = asyncio.create_task(self._run_loop())

		logger.info(f"Transport started at pulse {self.pulse_count}")

		self.events.emit("start")


	def pause (self) -> None:

		"""
		Halt the clock, keeping the pulse position and every scheduled callback.

		Sounding notes are released; queued notes are dropped.
		"""

		self._halt()
		self._release_notes()

		logger.info(f"Transport paused at pulse {self.pulse_count}")

		self.events.emit("pause")


	def stop (self) -> None:

		"""
		Halt the clock, drop every callback and queued event, and rewind to pulse 0.

		Safe to call in any state; nothing scheduled before the call fires after it.
		"""

		self._halt()
		self.clear_callbacks()
		self._release_notes()
		self.event_queue = []
		self.pulse_count = 0

		logger.info("Transport stopped")

		self.events.emit("stop")


	def _halt (self) -> None:

		self.running = False

		if self.task is not None and not self.task.done():
			self.task.cancel()

		self.task = None


	def _release_notes (self) -> None:

		"""Drop queued notes and send note-off for every sounding one."""

		self.event_queue = [event for event in self.event_queue if event.message_type not in ('note_on', 'note_off')]
		heapq.heapify(self.event_queue)

		for channel, note in sorted(self.active_notes):
			self.send_now(mido.Message('note_off', channel=channel, note=note, velocity=0))

		self.active_notes = set()


	def panic (self) -> None:

		"""
		Send all-notes-off and all-sound-off to every channel.
		"""

		logger.info("Panic: sending all notes off.")

		self._release_notes()

		for channel in range(16):
			self.send_now(mido.Message('control_change', channel=channel, control=lofai.constants.CC_ALL_NOTES_OFF, value=0))
			self.send_now(mido.Message('control_change', channel=channel, control=lofai.constants.CC_ALL_SOUND_OFF, value=0))


	async def _run_loop (self) -> None:

		"""Playback loop driven by the wall clock."""

		next_pulse_time = time.perf_counter()

		while self.running:

			while time.perf_counter() >= next_pulse_time:
				self.tick()
				next_pulse_time += self.seconds_per_pulse

				if not self.running:
					return

			sleep_time = next_pulse_time - time.perf_counter()

			if sleep_time > 0:
				if self._spin_wait and sleep_time > self._spin_threshold:
					await asyncio.sleep(sleep_time - self._spin_threshold)
					while time.perf_counter() < next_pulse_time:
						pass
				else:
					await asyncio.sleep(sleep_time)


	def render (self, bars: int) -> None:

		"""Run ``bars`` bars as fast as possible, recording every event.

		No output port is needed; everything lands in the recording.
		"""

		if bars <= 0:
			raise ValueError("Render length must be at least one bar")

		self.recording = True
		self._record_event(self.pulse_count, mido.MetaMessage('set_tempo', tempo=mido.bpm2tempo(self.current_bpm)))
		self.run_pulses(bars * self.pulses_per_bar)
		self._release_notes()


	# Recording

	def _record_event (self, pulse: int, message: typing.Union[mido.Message, mido.MetaMessage]) -> None:

		"""Record a MIDI message with an absolute pulse timestamp for later export."""

		self.recorded_events.append((float(pulse), message.copy()))


	def save_recording (self, filename: typing.Optional[str] = None) -> typing.Optional[str]:

		"""Save the recorded session to a MIDI file and return its name."""

		if not self.recorded_events:
			return None

		if filename is None:
			filename = self.record_filename or datetime.datetime.now().strftime("session_%Y%m%d_%H%M%S.mid")

		logger.info(f"Saving MIDI recording ({len(self.recorded_events)} events) to {filename}...")

		mid = mido.MidiFile(type=1)
		track = mido.MidiTrack()
		mid.tracks.append(track)

		# 24 PPQN internally, 480 ticks per beat in the file.
		ticks_per_pulse = 20
		mid.ticks_per_beat = 480

		last_pulse = 0.0

		for pulse, message in sorted(self.recorded_events, key=lambda x: x[0]):
			message.time = max(0, int((pulse - last_pulse) * ticks_per_pulse))
			track.append(message)
			last_pulse = pulse

		mid.save(filename)
		logger.info(f"Saved {filename}")

		return filename
