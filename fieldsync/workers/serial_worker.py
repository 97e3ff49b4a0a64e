# =======================================================================================
# fieldsync/workers/serial_worker.py - Background Serial Tag Reader
# =======================================================================================
import asyncio
import json
import logging
import threading
import time
from collections import OrderedDict
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Callable, Dict, Optional
import serial
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from ..config import config
from ..models.enums import EventCode, ScanAction
from ..models.schemas import SerialMessage, ScanEvent
from ..utils.exceptions import FieldSyncError, InvalidTagError

logger = logging.getLogger(__name__)

CaptureFn = Callable[[str, ScanAction], ScanEvent]


def capture_on_loop(capturer, loop: asyncio.AbstractEventLoop, timeout: Optional[float] = None) -> CaptureFn:
    """
    Blocking capture callable for the serial thread, executed on the unit's loop.

    The deadline is enforced on the loop: `wait_for` cancels the capture and
    waits for it to settle, so a timeout means nothing was queued, and a capture
    that finished anyway is reported as captured.
    """
    wait = timeout if timeout is not None else config.POSITION_TIMEOUT + 5

    def submit(tag: str, action: ScanAction) -> ScanEvent:
        future = asyncio.run_coroutine_threadsafe(
            asyncio.wait_for(capturer.capture(tag, action), wait), loop
        )
        # outer bound only guards against a loop that stopped running
        return future.result(timeout=wait + 5)

    return submit


class TagReadDebouncer:
    """The bridge reports one physical read several times; collapse them."""

    def __init__(self, ttl: Optional[float] = None, max_entries: int = 512):
        self.ttl = ttl if ttl is not None else config.SERIAL_DEBOUNCE
        self.max_entries = max_entries
        # key = (uid, dev_id), value = monotonic time of last read
        self._seen: "OrderedDict[tuple, float]" = OrderedDict()

    def is_repeat(self, key: tuple, now: Optional[float] = None) -> bool:
        now = time.monotonic() if now is None else now
        last = self._seen.get(key)
        self._seen[key] = now
        self._seen.move_to_end(key)
        while len(self._seen) > self.max_entries:
            self._seen.popitem(last=False)
        return last is not None and now - last <= self.ttl


class SerialWorker:
    """Background worker reading tag scans from the reader bridge."""

    def __init__(self, submit: CaptureFn, port: Optional[str] = None, baud: Optional[int] = None):
        self.submit = submit
        self.port = port or config.SERIAL_PORT
        self.baud = baud or config.SERIAL_BAUD
        self.debouncer = TagReadDebouncer()
        self.running = False
        self._thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # Start / Stop
    # ------------------------------------------------------------------
    def start(self):
        """Start the serial worker in a background thread."""
        if not self.port:
            logger.info("SERIAL_PORT not configured; tag reader not started")
            return

        self.running = True
        self._thread = threading.Thread(target=self._run_loop, name="serial-reader", daemon=True)
        self._thread.start()
        logger.debug("Serial worker started on %s", self.port)

    def stop(self):
        """Stop the serial worker."""
        self.running = False
        if self._thread is not None:
            self._thread.join(timeout=config.SERIAL_TIMEOUT + 1)
            self._thread = None

    # ------------------------------------------------------------------
    # Message handling
    # ------------------------------------------------------------------
    def handle_line(self, line: str) -> Optional[Dict[str, Any]]:
        """Turn one bridge line into a capture; returns the receipt to send back."""
        try:
            message = SerialMessage.model_validate_json(line)
        except ValidationError as e:
            logger.debug("Serial parse error: %s | line=%s", e, line)
            return None

        if message.t != "req" or not message.uid:
            return None

        action = EventCode.to_action(message.event or 0)
        if self.debouncer.is_repeat((message.uid, message.dev_id)):
            logger.debug("Debounced repeat read uid=%s", message.uid)
            return self.create_response_message(message, 1, action, None)

        try:
            event = self.submit(message.uid, action)
        except InvalidTagError as e:
            logger.info("Rejected tag read %r: %s", message.uid, e)
            return self.create_response_message(message, 0, action, None)
        except (FieldSyncError, SQLAlchemyError, asyncio.TimeoutError, FutureTimeoutError) as e:
            logger.error("Capture failed for uid=%s: %s", message.uid, e)
            return self.create_response_message(message, 0, action, None)

        return self.create_response_message(message, 1, action, event)

    @staticmethod
    def create_response_message(
        message: SerialMessage, status: int, action: ScanAction, event: Optional[ScanEvent]
    ) -> Dict[str, Any]:
        """Generate JSON-serializable receipt for the bridge."""
        return {
            "t": "resp",
            "id": message.id,
            "mac": message.mac,
            "status": status,
            "ts": int(time.time()),
            "event": EventCode[action.name].value,
            "ticket": event.correlation_id[:8] if event else None,
        }

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------
    def _run_loop(self):
        """Main serial communication loop."""
        while self.running:
            try:
                self._handle_serial_connection()
            except serial.SerialException as e:
                logger.warning("Serial connection error: %s; retrying in 3s", e)
                time.sleep(3)

    def _handle_serial_connection(self):
        logger.info("Opening %s @ %s", self.port, self.baud)

        with serial.Serial(self.port, self.baud, timeout=config.SERIAL_TIMEOUT) as ser:
            while self.running:
                line = ser.readline().decode(errors="ignore").strip()
                if not line:
                    continue

                try:
                    response = self.handle_line(line)
                except Exception:
                    logger.exception("Failed to handle serial line: %s", line)
                    continue
                if response:
                    ser.write((json.dumps(response) + "\n").encode())
                    logger.debug("Sent: %s", response)
