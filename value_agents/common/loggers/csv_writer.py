from __future__ import annotations

import csv
import os
from typing import List, Mapping, Optional, TextIO

from .base_writer import Writer
from ..utils.logger_utils import (
    _open_append,
    _read_csv_header,
    _safe_call,
    _safe_file_size,
)


class CSVWriter(Writer):
    """
    Wide CSV backend: one row per ``write()`` with a frozen column schema.

    The schema is negotiated once, on the first write:

    - new or empty file: the keys of the first row, and a header is written;
    - existing file (resumed run): the header already on disk.

    Keys outside the frozen schema are ignored and missing keys are written as
    empty cells, so columns never drift across resumes.

    Parameters
    ----------
    run_dir : str
        Directory of the CSV file.
    filename : str, default="metrics.csv"
        File name inside ``run_dir``.
    encoding : str, default="utf-8"
        Text encoding for reading and appending.

    Notes
    -----
    Append-only; existing rows are never rewritten.
    """

    def __init__(
        self,
        run_dir: str,
        *,
        filename: str = "metrics.csv",
        encoding: str = "utf-8",
    ) -> None:
        self.path = os.path.join(run_dir, filename)
        self._encoding = str(encoding)

        self._file: Optional[TextIO] = _open_append(self.path, newline="", encoding=self._encoding)
        self._writer: Optional[csv.DictWriter] = None
        self.fieldnames: List[str] = []

    # ---------------------------------------------------------------------
    # Writer interface
    # ---------------------------------------------------------------------
    def write(self, row: Mapping[str, float]) -> None:
        if self._file is None:
            raise ValueError(f"CSVWriter is closed: {self.path}")

        if self._writer is None:
            self._prepare_schema(first_row=row)

        assert self._writer is not None
        self._writer.writerow({k: row.get(k, "") for k in self.fieldnames})

    def flush(self) -> None:
        _safe_call(self._file, "flush")

    def close(self) -> None:
        try:
            self.flush()
        finally:
            _safe_call(self._file, "close")
            self._file = None
            self._writer = None

    # ---------------------------------------------------------------------
    # Schema negotiation
    # ---------------------------------------------------------------------
    def _prepare_schema(self, first_row: Mapping[str, float]) -> None:
        """
        Freeze the column schema (resume-safe).

        The header of an existing file is read through a separate read-only
        handle; the append handle sits at EOF.
        """
        assert self._file is not None

        header = None
        if _safe_file_size(self._file) > 0:
            header = _read_csv_header(path=self.path, encoding=self._encoding)

        if header:
            self.fieldnames = [h for h in header if h]
            self._writer = csv.DictWriter(self._file, fieldnames=self.fieldnames)
            return

        # new file, or malformed one: start a header from this row
        self.fieldnames = [str(k) for k in first_row.keys()]
        self._writer = csv.DictWriter(self._file, fieldnames=self.fieldnames)
        self._writer.writeheader()
