"""Role-agnostic message channel over an accessory transport.

The channel owns the frame decoder, the pending send queue and three
worker threads:

- AccessorySender: takes one frame at a time from the queue and writes it;
  a failed write goes back to the tail of the queue
- AccessoryReceiver: bounded-timeout reads fed through the decoder;
  completed UTF-8 payloads go to the message feed
- AccessorySupervisor: closes the transport when a worker reports the
  connection lost and, for supervised transports, reopens it with
  increasing back-off until it succeeds or the channel is stopped

The transport handle is only touched between HandleGuard.acquire() and
release(). Teardown disables the guard, waits for in-flight I/O and only
then closes the handle, so no worker ever uses a closed handle.
"""
from __future__ import annotations

import logging
import threading
from typing import Callable, Iterator, List, Optional

from ..errors import (
    AccessoryKitError,
    ChannelDisposedError,
    DecodeError,
    DeviceNotFoundError,
    FramingError,
    PayloadTooLargeError,
    PermissionDeniedError,
    PermissionRequiredError,
    TransportFailure,
)
from ..models import ConnectionState, DeviceIdentity, UsbEvent, UsbEventType
from ..protocol.framing import MAX_PAYLOAD_SIZE, FrameDecoder, encode_frame
from ..transport.base import Transport
from .feeds import Feed, StateFeed
from .send_queue import SendQueue

logger = logging.getLogger(__name__)

READ_TIMEOUT = 0.1  # seconds
SEND_RETRY_DELAY = 0.5  # seconds
RECONNECT_DELAY = 1.0  # seconds
MAX_RECONNECT_DELAY = 30.0  # seconds
JOIN_TIMEOUT = 2.0  # seconds
IDLE_WAIT = 0.1  # seconds


class HandleGuard:
    """Counts threads using the transport handle.

    acquire() fails once the guard is disabled; disable_and_wait() blocks
    until every current user has released.
    """

    def __init__(self):
        self._cond = threading.Condition()
        self._users = 0
        self._available = False

    def enable(self) -> None:
        with self._cond:
            self._available = True

    def acquire(self) -> bool:
        with self._cond:
            if not self._available:
                return False
            self._users += 1
            return True

    def release(self) -> None:
        with self._cond:
            self._users -= 1
            if self._users <= 0:
                self._users = 0
                self._cond.notify_all()

    def disable_and_wait(self, timeout: Optional[float] = None) -> bool:
        """Refuse new users and wait for current ones.

        Returns:
            True if no user remains
        """
        with self._cond:
            self._available = False
            return self._cond.wait_for(lambda: self._users == 0, timeout)

    @property
    def users(self) -> int:
        with self._cond:
            return self._users


class MessageChannel:
    """Duplex text message channel over one accessory transport.

    Example:
        >>> channel = MessageChannel.for_host()
        >>> channel.subscribe_messages(lambda text: print(f"Received: {text}"))
        >>> channel.subscribe_state(lambda state: print(f"State: {state.value}"))
        >>> channel.connect()
        True
        >>> channel.send("hello")
        True
        >>> channel.dispose()
    """

    def __init__(
        self,
        transport: Transport,
        *,
        max_payload: int = MAX_PAYLOAD_SIZE,
        read_timeout: float = READ_TIMEOUT,
        send_retry_delay: float = SEND_RETRY_DELAY,
        reconnect_delay: float = RECONNECT_DELAY,
        max_reconnect_delay: float = MAX_RECONNECT_DELAY,
        join_timeout: float = JOIN_TIMEOUT,
    ):
        """Initialize channel.

        Args:
            transport: Host or accessory transport (not yet open)
            max_payload: Largest message in bytes, for both directions
            read_timeout: Seconds per receive attempt
            send_retry_delay: Pause after a failed write
            reconnect_delay: First delay before a reconnect attempt
            max_reconnect_delay: Cap for the doubling reconnect delay
            join_timeout: Seconds to wait for workers and in-flight I/O
        """
        self._transport = transport
        self._max_payload = min(max_payload, MAX_PAYLOAD_SIZE)
        self._read_timeout = read_timeout
        self._send_retry_delay = send_retry_delay
        self._reconnect_delay = reconnect_delay
        self._max_reconnect_delay = max_reconnect_delay
        self._join_timeout = join_timeout

        self._decoder = FrameDecoder(max_payload=self._max_payload, on_error=self._on_framing_error)
        self._queue = SendQueue()
        self._messages: Feed[str] = Feed("message")
        self._states: StateFeed[ConnectionState] = StateFeed(ConnectionState.DISCONNECTED)

        # Serialises open/close of the transport
        self._lifecycle_lock = threading.RLock()
        self._handle = HandleGuard()
        self._connected = threading.Event()
        self._lost = threading.Event()

        self._workers: List[threading.Thread] = []
        self._stop: Optional[threading.Event] = None

        self._permission_requested = False
        self._disposed = False
        # Bumped on every successful open; the receiver resets its decoder on change
        self._generation = 0

        self.decode_errors = 0
        self.last_error: Optional[Exception] = None

    @classmethod
    def for_host(cls, identity: Optional[DeviceIdentity] = None, **kwargs) -> MessageChannel:
        """Channel for the USB host role (PC side)."""
        from ..transport.host import HostTransport
        return cls(HostTransport(identity), **kwargs)

    @classmethod
    def for_accessory(cls, path: Optional[str] = None,
                      identity_filter: Optional[DeviceIdentity] = None,
                      **kwargs) -> MessageChannel:
        """Channel for the USB accessory role (gadget side)."""
        from ..transport.accessory import ACCESSORY_DEVICE_PATH, AccessoryTransport
        return cls(
            AccessoryTransport(path or ACCESSORY_DEVICE_PATH, identity_filter=identity_filter),
            **kwargs,
        )

    # --- Properties ---

    @property
    def transport(self) -> Transport:
        return self._transport

    @property
    def state(self) -> ConnectionState:
        return self._states.current

    @property
    def is_connected(self) -> bool:
        return self._connected.is_set()

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    @property
    def pending_count(self) -> int:
        """Frames waiting to be written."""
        return self._queue.size

    @property
    def framing_errors(self) -> int:
        return self._decoder.framing_errors

    @property
    def max_payload(self) -> int:
        return self._max_payload

    # --- Lifecycle ---

    def connect(self) -> bool:
        """Open the transport and start the workers.

        Returns:
            True if connected, False otherwise (see state and last_error)

        Raises:
            ChannelDisposedError: the channel was disposed
        """
        self._check_disposed()
        with self._lifecycle_lock:
            if self.is_connected:
                return True
            if not self._establish():
                return False
            self._start_workers()
            return True

    def start_scan(self) -> bool:
        """Look for a device and connect to it if one is available."""
        return self.connect()

    def stop_scan(self) -> None:
        """Abandon a pending search or permission request."""
        with self._lifecycle_lock:
            self._permission_requested = False
            if not self.is_connected:
                self._set_state(ConnectionState.DISCONNECTED)

    def disconnect(self) -> None:
        """Stop the workers and close the transport.

        Pending messages stay queued for the next connect(). Safe to call
        multiple times.
        """
        self._stop_workers()
        with self._lifecycle_lock:
            self._teardown()
            self._lost.clear()
            self._permission_requested = False
            self._set_state(ConnectionState.DISCONNECTED)

    def dispose(self) -> None:
        """Disconnect and release every subscriber. Safe to call multiple times."""
        if self._disposed:
            return
        self.disconnect()
        self._disposed = True

        dropped = self._queue.clear()
        if dropped:
            logger.info(f"Dropped {dropped} unsent message(s) on dispose")

        self._messages.close()
        self._states.close()
        logger.info("Channel disposed")

    def set_device_identity(self, identity: DeviceIdentity) -> None:
        """Set the identity used for the next negotiation."""
        if not isinstance(identity, DeviceIdentity):
            raise TypeError("identity must be a DeviceIdentity")
        self._transport.set_identity(identity)
        logger.info(f"Device identity set to {identity.manufacturer}/{identity.model}")

    def __enter__(self) -> MessageChannel:
        """Context manager support - connect on enter."""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager support - dispose on exit."""
        self.dispose()

    # --- Messages ---

    def send(self, text: str) -> bool:
        """Queue a message for sending.

        Returns immediately; the sender thread writes it once connected.

        Returns:
            True if queued, False if the message was rejected
        """
        if self._disposed:
            logger.warning("Cannot send, channel disposed")
            return False
        if not text:
            logger.warning("Refusing to send an empty message")
            return False

        try:
            frame = encode_frame(text.encode("utf-8"), self._max_payload)
        except PayloadTooLargeError as e:
            logger.error(f"Message rejected: {e}")
            self.last_error = e
            return False
        except UnicodeEncodeError as e:
            logger.error(f"Message rejected, not encodable as UTF-8: {e}")
            self.last_error = e
            return False

        self._queue.put(frame)
        logger.debug(f"Queued message ({len(frame)} bytes framed, {self._queue.size} pending)")
        return True

    def subscribe_messages(self, callback: Callable[[str], None]) -> Callable[[], None]:
        """Subscribe to received messages.

        Callbacks run on the receiver thread and should not block.

        Returns:
            Unsubscribe function
        """
        return self._messages.subscribe(callback)

    def subscribe_state(self, callback: Callable[[ConnectionState], None]) -> Callable[[], None]:
        """Subscribe to state changes; the current state is sent immediately.

        Returns:
            Unsubscribe function
        """
        return self._states.subscribe(callback)

    def messages(self, timeout: Optional[float] = None) -> Iterator[str]:
        """Iterate over messages received from now on.

        Args:
            timeout: Stop after this many idle seconds, None to run until dispose
        """
        return self._messages.iterate(timeout)

    def states(self, timeout: Optional[float] = None) -> Iterator[ConnectionState]:
        """Iterate over state changes, starting with the current state."""
        return self._states.iterate(timeout)

    # --- Platform events ---

    def handle_event(self, event: UsbEvent) -> None:
        """Apply a platform USB notification to the connection state."""
        if self._disposed:
            logger.debug(f"Ignoring {event.kind.value} event, channel disposed")
            return

        kind = event.kind
        logger.debug(f"USB event: {kind.value}" + (f" ({event.detail})" if event.detail else ""))

        if kind is UsbEventType.DEVICE_ATTACHED:
            if not self.is_connected:
                self.connect()

        elif kind is UsbEventType.DEVICE_DETACHED:
            if not self.is_connected and not self._workers_alive():
                return
            logger.info("Device detached")
            if self._transport.supervised:
                self._signal_lost(TransportFailure("Device detached"))
            else:
                self.disconnect()

        elif kind is UsbEventType.PERMISSION_GRANTED:
            if self.state is ConnectionState.PERMISSION_REQUESTED:
                self.connect()

        elif kind is UsbEventType.PERMISSION_DENIED:
            with self._lifecycle_lock:
                self._permission_requested = False
                if self.is_connected:
                    return
                self.last_error = PermissionDeniedError("Permission denied for accessory")
                logger.error("Permission denied for accessory")
                self._set_state(ConnectionState.ERROR)

    # Internal methods

    def _check_disposed(self) -> None:
        if self._disposed:
            raise ChannelDisposedError("Channel has been disposed")

    def _set_state(self, state: ConnectionState) -> None:
        previous = self._states.current
        if self._states.publish(state):
            logger.info(f"Connection state {previous.value} -> {state.value}")

    def _establish(self) -> bool:
        """Open the transport once. Caller holds the lifecycle lock."""
        self._teardown()
        self._set_state(ConnectionState.SEARCHING)

        try:
            self._transport.open()

        except PermissionRequiredError as e:
            self.last_error = e
            if self._permission_requested:
                logger.error(f"Access still refused after permission was granted: {e}")
                self._permission_requested = False
                self._set_state(ConnectionState.ERROR)
                return False
            logger.info(f"Waiting for permission: {e}")
            self._permission_requested = True
            self._set_state(ConnectionState.PERMISSION_REQUESTED)
            return False

        except PermissionDeniedError as e:
            self.last_error = e
            logger.error(f"Permission denied: {e}")
            self._set_state(ConnectionState.ERROR)
            return False

        except DeviceNotFoundError as e:
            self.last_error = e
            logger.info(f"No device: {e}")
            self._set_state(ConnectionState.DISCONNECTED)
            return False

        except AccessoryKitError as e:
            self.last_error = e
            logger.error(f"Failed to connect: {e}")
            self._set_state(ConnectionState.ERROR)
            return False

        except Exception as e:
            self.last_error = e
            logger.error(f"Unexpected error while connecting: {e}", exc_info=True)
            self._transport.close()
            self._set_state(ConnectionState.ERROR)
            return False

        self._permission_requested = False
        self._generation += 1
        self._lost.clear()
        self._handle.enable()
        self._connected.set()
        self._set_state(ConnectionState.CONNECTED)
        logger.info(f"Connected via {self._transport.name}")
        return True

    def _teardown(self) -> None:
        """Close the transport once no worker is using it. Caller holds the lifecycle lock."""
        self._connected.clear()
        while not self._handle.disable_and_wait(self._join_timeout):
            logger.warning(f"Transport still in use after {self._join_timeout}s, waiting")
        try:
            self._transport.close()
        except Exception as e:
            logger.error(f"Error closing transport: {e}")

    def _signal_lost(self, error: Exception) -> None:
        self.last_error = error
        self._connected.clear()
        self._lost.set()

    def _on_framing_error(self, error: FramingError) -> None:
        self.last_error = error

    # --- Workers ---

    def _workers_alive(self) -> bool:
        return any(t.is_alive() for t in self._workers)

    def _start_workers(self) -> None:
        if self._workers and all(t.is_alive() for t in self._workers):
            return
        self._stop_workers()

        stop = threading.Event()
        self._stop = stop
        self._workers = [
            threading.Thread(target=self._sender_loop, args=(stop,),
                             daemon=True, name="AccessorySender"),
            threading.Thread(target=self._receiver_loop, args=(stop,),
                             daemon=True, name="AccessoryReceiver"),
            threading.Thread(target=self._supervisor_loop, args=(stop,),
                             daemon=True, name="AccessorySupervisor"),
        ]
        for thread in self._workers:
            thread.start()

    def _stop_workers(self) -> None:
        stop = self._stop
        workers = self._workers
        self._stop = None
        self._workers = []

        if stop is not None:
            stop.set()

        current = threading.current_thread()
        for thread in workers:
            if thread is current:
                continue
            thread.join(timeout=self._join_timeout)
            while thread.is_alive():
                logger.warning(f"{thread.name} did not stop within {self._join_timeout}s, waiting")
                thread.join(timeout=self._join_timeout)

    def _sender_loop(self, stop: threading.Event) -> None:
        """Write queued frames one at a time while connected."""
        logger.debug("Sender thread started")

        while not stop.is_set():
            if not self._connected.wait(IDLE_WAIT):
                continue

            frame = self._queue.get(timeout=IDLE_WAIT)
            if frame is None:
                continue

            if stop.is_set() or not self._handle.acquire():
                # Connection went away before the write started
                self._queue.unget(frame)
                continue

            error = None
            try:
                self._transport.write(frame)
            except Exception as e:
                error = e
            finally:
                self._handle.release()

            if error is None:
                logger.debug(f"Sent frame ({len(frame)} bytes)")
                continue

            logger.warning(f"Send failed, message requeued: {error}")
            self._queue.requeue(frame)
            self._signal_lost(error)
            stop.wait(self._send_retry_delay)

        logger.debug("Sender thread exiting")

    def _receiver_loop(self, stop: threading.Event) -> None:
        """Read chunks and publish decoded messages while connected."""
        logger.debug("Receiver thread started")
        generation = None

        while not stop.is_set():
            if not self._connected.wait(IDLE_WAIT):
                continue
            if not self._handle.acquire():
                stop.wait(IDLE_WAIT)
                continue

            if generation != self._generation:
                # New connection: drop any partial frame from the old one
                generation = self._generation
                self._decoder.reset()

            error = None
            data = None
            try:
                data = self._transport.read(self._read_timeout)
            except Exception as e:
                error = e
            finally:
                self._handle.release()

            if error is not None:
                if not stop.is_set():
                    logger.warning(f"Receive failed: {error}")
                    self._signal_lost(error)
                continue

            if data:
                self._dispatch(data)

        logger.debug("Receiver thread exiting")

    def _dispatch(self, data: bytes) -> None:
        for payload in self._decoder.feed(data):
            try:
                text = payload.decode("utf-8")
            except UnicodeDecodeError as e:
                self.decode_errors += 1
                self.last_error = DecodeError(f"Payload of {len(payload)} bytes is not UTF-8: {e}")
                logger.warning(f"Dropped message: {self.last_error}")
                continue

            logger.debug(f"Received message ({len(payload)} bytes)")
            self._messages.publish(text)

    def _supervisor_loop(self, stop: threading.Event) -> None:
        """Tear down lost connections and reconnect supervised transports."""
        logger.debug("Supervisor thread started")

        while not stop.is_set():
            if not self._lost.wait(IDLE_WAIT):
                continue
            # connect() may be joining this thread while it holds the lock
            if not self._lifecycle_lock.acquire(timeout=IDLE_WAIT):
                continue

            try:
                if stop.is_set():
                    break
                self._lost.clear()
                logger.warning(f"Connection lost: {self.last_error}")
                self._teardown()
                self._set_state(ConnectionState.DISCONNECTED)
            finally:
                self._lifecycle_lock.release()

            if not self._transport.supervised:
                logger.info("Waiting for the platform to report the accessory again")
                continue

            self._reconnect(stop)

        logger.debug("Supervisor thread exiting")

    def _reconnect(self, stop: threading.Event) -> None:
        delay = self._reconnect_delay
        attempt = 0

        while not stop.is_set():
            logger.info(f"Reconnecting in {delay:.1f}s")
            if stop.wait(delay):
                return
            if not self._lifecycle_lock.acquire(timeout=IDLE_WAIT):
                continue

            attempt += 1
            try:
                if stop.is_set() or self.is_connected:
                    return
                if self._establish():
                    logger.info(f"Reconnected after {attempt} attempt(s)")
                    return
                if self.state is ConnectionState.PERMISSION_REQUESTED or isinstance(
                        self.last_error, PermissionDeniedError):
                    logger.error("Reconnect needs permission; waiting for a new connect()")
                    return
            finally:
                self._lifecycle_lock.release()

            delay = min(delay * 2, self._max_reconnect_delay)
