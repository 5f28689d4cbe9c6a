"""Line-delimited progress stream.

One outbound byte stream carries two shapes, one per line:

- plain progress text, and
- JSON objects with a ``type`` discriminator: ``{"type": "phase",
  "message": ...}`` or ``{"type": "csv", "zip": ..., "filename": ...,
  "dataBase64": ...}``.

There is no end-of-stream marker; the stream ends when the connection
closes. ``decode_line`` is the consumer side of the same contract.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import queue
import threading
from typing import Iterator, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)


class PlainLine(BaseModel):
    kind: Literal["line"] = "line"
    text: str


class PhaseEvent(BaseModel):
    type: Literal["phase"] = "phase"
    message: str


class CsvEvent(BaseModel):
    type: Literal["csv"] = "csv"
    zip: str
    filename: str
    data_base64: str = Field(alias="dataBase64")

    model_config = ConfigDict(populate_by_name=True)

    def csv_text(self) -> str:
        return base64.b64decode(self.data_base64).decode("utf-8")


ProgressEvent = Union[PlainLine, PhaseEvent, CsvEvent]


def encode_event(event: Union[PhaseEvent, CsvEvent]) -> str:
    return json.dumps(event.model_dump(by_alias=True), ensure_ascii=False)


def decode_line(line: Union[str, bytes]) -> ProgressEvent:
    """Classify one stream line.

    JSON objects of a recognized ``type`` with the required fields become
    structured events; anything else (including malformed JSON) is a
    plain display line.
    """
    if isinstance(line, bytes):
        line = line.decode("utf-8", errors="replace")
    text = line.rstrip("\r\n")

    try:
        obj = json.loads(text)
    except ValueError:
        return PlainLine(text=text)
    if not isinstance(obj, dict):
        return PlainLine(text=text)

    try:
        if obj.get("type") == "phase":
            return PhaseEvent.model_validate(obj)
        if obj.get("type") == "csv":
            event = CsvEvent.model_validate(obj)
            base64.b64decode(event.data_base64, validate=True)
            return event
    except (ValidationError, binascii.Error, ValueError):
        pass
    return PlainLine(text=text)


_CLOSED = object()


class ProgressStream:
    """Thread-safe writer feeding one streamed HTTP response.

    Producers (the pipeline thread and page workers) call ``line``,
    ``phase`` and ``csv``; the response body iterates ``iter_lines``.
    """

    def __init__(self) -> None:
        self._queue: "queue.Queue[object]" = queue.Queue()
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _put(self, text: str) -> None:
        with self._lock:
            if self._closed:
                logger.debug("Dropping write after close: %.80s", text)
                return
            self._queue.put((text + "\n").encode("utf-8"))

    def line(self, text: str) -> None:
        logger.debug("progress: %s", text)
        self._put(text)

    def phase(self, message: str) -> None:
        self._put(encode_event(PhaseEvent(message=message)))

    def csv(self, zip_code: str, filename: str, content: str) -> None:
        payload = base64.b64encode(content.encode("utf-8")).decode("ascii")
        self._put(encode_event(CsvEvent(zip=zip_code, filename=filename, data_base64=payload)))

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._queue.put(_CLOSED)

    def iter_lines(self, timeout: Optional[float] = None) -> Iterator[bytes]:
        """Yield encoded lines until the stream is closed."""
        while True:
            item = self._queue.get(timeout=timeout)
            if item is _CLOSED:
                return
            yield item  # type: ignore[misc]
