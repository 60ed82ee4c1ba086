"""
CSV logging of stepper state.

Buffers rows in memory and writes them in batches to minimize I/O overhead.
Implements the context manager protocol for safe resource handling.
"""
from __future__ import annotations

import csv
from pathlib import Path
from typing import Any, TextIO

VALID_FIELDS = ("q", "qdot", "qddot", "force", "impulse")


class CSVLogger:
    """
    Buffered CSV logger for joint-space state and constraint forces.

    Parameters
    ----------
    filepath : str | Path
        Output CSV file path
    buffer_size : int
        Number of rows to buffer before writing. Higher = fewer writes but
        more memory.
    fields : list[str] | None
        Quantities to log each step. Default: ``["q", "qdot", "qddot", "force"]``.
        Options: "q", "qdot", "qddot" (joint-space vectors),
        "force", "impulse" (one entry per constraint).

    Notes
    -----
    The logged object must expose ``t``, ``q``, ``qdot``, ``qddot`` and
    ``constraint_set`` (as :class:`~arbordyn.core.solver.ContactStepper`
    does).

    1. Context manager (recommended):
    >>> with CSVLogger("output.csv") as log:
    ...     stepper = ContactStepper(model, cs, csv_logger=log)
    ...     stepper.run(q, qdot, tau, duration=1.0, dt=1e-3)

    2. Manual management:
    >>> log = CSVLogger("output.csv")
    >>> log.log(stepper)
    >>> log.close()  # Important!
    """

    def __init__(
        self,
        filepath: str | Path,
        buffer_size: int = 1000,
        fields: list[str] | None = None
    ) -> None:
        self.filepath = Path(filepath)
        self.buffer_size = buffer_size
        self.fields = fields if fields is not None else ["q", "qdot", "qddot", "force"]

        invalid = set(self.fields) - set(VALID_FIELDS)
        if invalid:
            raise ValueError(
                f"Invalid fields: {invalid}. Valid options: {set(VALID_FIELDS)}"
            )

        self._buffer: list[list[str]] = []
        self._file: TextIO | None = None
        self._writer: Any = None  # csv.writer is a function, not a type
        self._header_written = False

        self.filepath.parent.mkdir(parents=True, exist_ok=True)

    def __enter__(self) -> CSVLogger:
        """Open file for writing."""
        self._file = open(self.filepath, "w", newline="", encoding="utf-8")
        self._writer = csv.writer(self._file)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Close file, flushing any remaining data."""
        self.close()

    @staticmethod
    def _get_val(state: Any, field: str) -> Any:
        if field in {"force", "impulse"}:
            return getattr(state.constraint_set, field)
        return getattr(state, field)

    def _write_header(self, state: Any) -> None:
        hdr = ["t"]
        for field in self.fields:
            val = self._get_val(state, field)
            names = None
            if field in {"force", "impulse"}:
                names = state.constraint_set.name
            for i in range(len(val)):
                label = names[i] if names is not None and names[i] else str(i)
                hdr.append(f"{field}_{label}")

        self._writer.writerow(hdr)
        self._file.flush()  # Ensure header written immediately
        self._header_written = True

    def log(self, state: Any) -> None:
        """
        Log the current state to the buffer.

        Automatically opens the file on first call if not using the context
        manager. Writes to disk when the buffer is full.
        """
        if self._file is None:
            self.__enter__()

        if not self._header_written:
            self._write_header(state)

        row = [f"{state.t:.10f}"]
        for field in self.fields:
            row.extend(f"{v:.10e}" for v in self._get_val(state, field))

        self._buffer.append(row)

        if len(self._buffer) >= self.buffer_size:
            self.flush()

    def flush(self) -> None:
        """Write buffered data to disk and clear buffer."""
        if self._writer and self._buffer:
            self._writer.writerows(self._buffer)
            if self._file:
                self._file.flush()
            self._buffer.clear()

    def close(self) -> None:
        """Flush remaining data and close file."""
        self.flush()
        if self._file:
            self._file.close()
            self._file = None
            self._writer = None
