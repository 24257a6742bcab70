"""Upload persistence and spreadsheet decoding.

Uploads are streamed to a temporary file under the configured upload
directory, decoded with pandas into a list of records and removed again.
Nothing is kept between requests.
"""
from __future__ import annotations

import datetime as _dt
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd

from apps.api import config


class DatasetDecodeError(ValueError):
    """Raised when an uploaded file cannot be decoded into records."""


def ensure_dirs() -> Path:
    base = config.get_upload_dir()
    base.mkdir(parents=True, exist_ok=True)
    return base


def file_extension(filename: Optional[str]) -> str:
    return Path(str(filename or "")).suffix.lower()


def validate_filename(filename: Optional[str]) -> str:
    ext = file_extension(filename)
    if ext not in config.ALLOWED_EXTENSIONS:
        allowed = ", ".join(config.ALLOWED_EXTENSIONS)
        raise ValueError(f"unsupported file type: only {allowed} allowed")
    return ext


def _read_chunks(file_obj, chunk_size: int = 1024 * 1024):
    while True:
        chunk = file_obj.file.read(chunk_size)
        if not chunk:
            break
        yield chunk


def save_file(file_obj, dest: Path, max_bytes: int | None = None) -> int:
    total = 0
    with dest.open("wb") as f:
        for chunk in _read_chunks(file_obj):
            total += len(chunk)
            if max_bytes is not None and total > max_bytes:
                try:
                    f.close()
                finally:
                    dest.unlink(missing_ok=True)
                raise ValueError("file too large")
            f.write(chunk)
    return total


def _to_native(value: Any) -> Any:
    if value is None or value is pd.NaT:
        return None
    if isinstance(value, float) and np.isnan(value):
        return None
    if isinstance(value, np.generic):
        value = value.item()
        if isinstance(value, float) and np.isnan(value):
            return None
    if isinstance(value, pd.Timestamp):
        if pd.isna(value):
            return None
        value = value.to_pydatetime()
    if isinstance(value, _dt.datetime):
        if value.time() == _dt.time(0, 0):
            return value.date().isoformat()
        return value.isoformat()
    if isinstance(value, (_dt.date, _dt.time)):
        return value.isoformat()
    return value


def frame_to_records(df: pd.DataFrame) -> List[Dict[str, Any]]:
    """Convert a DataFrame into JSON-friendly records, keeping column order."""
    df = df.dropna(how="all")
    columns = [str(c) for c in df.columns]
    records: List[Dict[str, Any]] = []
    for row in df.itertuples(index=False, name=None):
        records.append({col: _to_native(val) for col, val in zip(columns, row)})
    return records


def decode_file(path: Path, ext: str) -> List[Dict[str, Any]]:
    try:
        if ext == ".csv":
            df = pd.read_csv(path, encoding="utf-8-sig", skip_blank_lines=True)
        else:
            engine = "xlrd" if ext == ".xls" else "openpyxl"
            df = pd.read_excel(path, sheet_name=0, engine=engine)
    except pd.errors.EmptyDataError as exc:
        raise DatasetDecodeError("failed to read file: file contains no data") from exc
    except Exception as exc:
        # parser engines raise their own types (BadZipFile, InvalidFileException, XLRDError, ...)
        kind = "CSV" if ext == ".csv" else "Excel"
        raise DatasetDecodeError(f"failed to read {kind} file: {exc}") from exc
    return frame_to_records(df)


def load_upload(file_obj, *, max_bytes: Optional[int] = None) -> List[Dict[str, Any]]:
    """Persist an upload temporarily, decode it and return its records."""
    ext = validate_filename(getattr(file_obj, "filename", None))
    base = ensure_dirs()
    dest = base / f"{uuid.uuid4().hex[:12]}{ext}"
    limit = config.get_max_upload_bytes() if max_bytes is None else max_bytes
    try:
        save_file(file_obj, dest, max_bytes=limit)
        records = decode_file(dest, ext)
    finally:
        dest.unlink(missing_ok=True)
    if not records:
        raise ValueError("file is empty")
    return records
