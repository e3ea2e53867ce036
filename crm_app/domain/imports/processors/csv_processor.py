"""
Streaming CSV access for the import pipeline.

Files are never loaded whole: headers come from an empty read, the row count
from one ``csv.reader`` pass, and data rows from ``pd.read_csv(chunksize=...)``
with every cell kept as text. Each chunk becomes one batch of
header -> value dicts.
"""
import csv
import logging
import queue
import threading
from typing import Any, Dict, Iterator, List, Optional, Tuple

import pandas as pd

from crm_app.domain.imports.errors import SourceFileError

logger = logging.getLogger(__name__)

CSV_ENCODING = "utf-8-sig"

Batch = List[Dict[str, str]]


def _read_options() -> Dict[str, Any]:
    return {
        "dtype": str,
        "keep_default_na": False,
        "encoding": CSV_ENCODING,
        "encoding_errors": "replace",
        "skip_blank_lines": True,
        "index_col": False,
    }


def read_csv_headers(path: str) -> List[str]:
    """Return the header row of ``path`` ([] for an empty file)."""
    try:
        frame = pd.read_csv(path, nrows=0, **_read_options())
    except pd.errors.EmptyDataError:
        return []
    except (pd.errors.ParserError, OSError) as exc:
        raise SourceFileError(f"Could not read CSV headers: {exc}") from exc
    return [str(column).strip() for column in frame.columns]


def count_csv_rows(path: str) -> int:
    """
    Count data rows with one streaming pass (quoted newlines respected).

    Blank lines are skipped the same way the batch reader skips them.
    """
    rows = 0
    try:
        with open(path, "r", encoding=CSV_ENCODING, errors="replace", newline="") as handle:
            for record in csv.reader(handle):
                if record:
                    rows += 1
    except (csv.Error, OSError) as exc:
        raise SourceFileError(f"Could not count CSV rows: {exc}") from exc
    return max(rows - 1, 0)


def _frame_to_records(frame: pd.DataFrame, headers: List[str]) -> Batch:
    frame = frame.fillna("")
    frame.columns = headers
    return frame.to_dict("records")


def iter_csv_batches(path: str, batch_size: int) -> Iterator[Batch]:
    """
    Yield rows of ``path`` in lists of at most ``batch_size``.

    Rows with more fields than the header are truncated to the header width;
    short rows are padded with empty strings. An empty file yields nothing.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be positive")

    headers = read_csv_headers(path)
    if not headers:
        return
    width = len(headers)

    def truncate(fields: List[str]) -> List[str]:
        logger.debug("Truncating row with %d fields to %d", len(fields), width)
        return fields[:width]

    try:
        reader = pd.read_csv(
            path,
            chunksize=batch_size,
            engine="python",
            on_bad_lines=truncate,
            **_read_options(),
        )
        with reader:
            for chunk in reader:
                if chunk.empty:
                    continue
                yield _frame_to_records(chunk, headers)
    except pd.errors.EmptyDataError:
        return
    except (pd.errors.ParserError, csv.Error) as exc:
        raise SourceFileError(f"Could not parse CSV: {exc}") from exc


def preview_csv(path: str, rows: int = 3) -> Tuple[List[str], Batch]:
    """Headers plus the first ``rows`` data rows, for mapping previews."""
    headers = read_csv_headers(path)
    if not headers:
        return [], []
    for batch in iter_csv_batches(path, rows):
        return headers, batch[:rows]
    return headers, []


class _ReaderFailure:
    def __init__(self, error: BaseException):
        self.error = error


_DONE = object()


class PrefetchingBatchReader:
    """
    Reads the next batch on a background thread while the current one is processed.

    The queue holds one batch, so at most one batch is buffered ahead of the
    consumer. Reader exceptions are re-raised in the consuming thread.
    """

    def __init__(self, batches: Iterator[Batch], *, depth: int = 1, name: str = "csv-prefetch"):
        self._batches = batches
        self._queue: "queue.Queue[Any]" = queue.Queue(maxsize=depth)
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._name = name

    def _put(self, item: Any) -> bool:
        while not self._stop.is_set():
            try:
                self._queue.put(item, timeout=0.1)
                return True
            except queue.Full:
                continue
        return False

    def _produce(self) -> None:
        try:
            for batch in self._batches:
                if not self._put(batch):
                    return
        except Exception as exc:
            self._put(_ReaderFailure(exc))
            return
        self._put(_DONE)

    def __iter__(self) -> Iterator[Batch]:
        if self._thread is None:
            self._thread = threading.Thread(target=self._produce, name=self._name, daemon=True)
            self._thread.start()
        while True:
            item = self._queue.get()
            if item is _DONE:
                return
            if isinstance(item, _ReaderFailure):
                raise item.error
            yield item

    def close(self) -> None:
        self._stop.set()
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                break
        if self._thread is not None:
            self._thread.join(timeout=5)

    def __enter__(self) -> "PrefetchingBatchReader":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
