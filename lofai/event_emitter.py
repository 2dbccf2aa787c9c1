import logging
import typing


logger = logging.getLogger(__name__)

CallbackType = typing.Callable[..., typing.Any]
Unsubscribe = typing.Callable[[], None]


class EventEmitter:

	"""
	A synchronous event registry.  Listeners run in registration order.
	"""

	def __init__ (self) -> None:

		self._listeners: typing.Dict[str, typing.List[CallbackType]] = {}


	def on (self, event_name: str, callback: CallbackType) -> None:

		"""
		Register a callback for an event name.
		"""

		if event_name not in self._listeners:
			self._listeners[event_name] = []

		self._listeners[event_name].append(callback)

	def off (self, event_name: str, callback: CallbackType) -> None:

		"""
		Unregister a previously registered callback.

		Raises ``ValueError`` if the callback is not registered for the event.
		"""

		if event_name not in self._listeners or callback not in self._listeners[event_name]:
			raise ValueError(f"Callback not registered for event {event_name!r}")

		self._listeners[event_name].remove(callback)


	def subscribe (self, event_name: str, callback: CallbackType) -> Unsubscribe:

		"""
		Register a callback and return a handle that removes it.

		Calling the handle more than once is harmless.
		"""

		self.on(event_name, callback)

		def unsubscribe () -> None:

			if callback in self._listeners.get(event_name, []):
				self._listeners[event_name].remove(callback)

		return unsubscribe


	def listener_count (self, event_name: str) -> int:

		return len(self._listeners.get(event_name, []))


	def clear (self) -> None:

		"""Drop every listener."""

		self._listeners = {}


	def emit (self, event_name: str, *args: typing.Any, **kwargs: typing.Any) -> None:

		"""
		Call every listener for an event.

		A listener that raises is logged and skipped; the rest still run.
		"""

		if event_name not in self._listeners:
			return

		for callback in list(self._listeners[event_name]):

			try:
				callback(*args, **kwargs)

			except Exception:
				logger.exception(f"Listener for {event_name!r} failed")
