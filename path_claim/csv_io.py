"""CSV input/output for exported location tracks (replayed through the recorder)."""

from __future__ import annotations

import csv
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, Sequence

from path_claim.models import LocationSample

logger = logging.getLogger(__name__)

#: Columns written by :func:`write_samples`; readers only require the first three.
FIELDNAMES: tuple[str, ...] = ("geoTime", "latitude", "longitude", "horizontalAccuracy")


@dataclass(frozen=True, slots=True)
class CsvSummary:
    """Quick summary of CSV parsing."""

    rows_total: int
    rows_parsed: int
    rows_skipped: int
    fieldnames: Sequence[str]


def _parse_int(value: str) -> int:
    return int(value.strip())


def _parse_float(value: str) -> float:
    return float(value.strip())


def _sample_from_row(row: dict[str, str]) -> LocationSample:
    accuracy = _parse_float(row.get("horizontalAccuracy", "-1") or "-1")
    return LocationSample(
        lat=_parse_float(row["latitude"]),
        lng=_parse_float(row["longitude"]),
        timestamp_ms=_parse_int(row["geoTime"]),
        # The export writes -1 when the fix carried no accuracy.
        accuracy_m=accuracy if accuracy >= 0 else None,
    )


def iter_samples(csv_path: str | Path) -> Iterator[LocationSample]:
    """Yield LocationSample objects from an exported track CSV.

    Args:
        csv_path: Path to the exported CSV.

    Yields:
        Samples parsed successfully, in file order.

    Raises:
        KeyError: If a required column (geoTime/latitude/longitude) is missing.

    Notes:
        The export uses these columns (observed):
          - geoTime: epoch milliseconds
          - latitude/longitude: decimal degrees
          - horizontalAccuracy: meters, -1 if unknown
    """

    p = Path(csv_path)
    with p.open("r", encoding="utf-8", newline="") as f:
        reader = csv.DictReader(f)
        if reader.fieldnames is None:
            return

        for row in reader:
            try:
                yield _sample_from_row(row)
            except KeyError as exc:
                raise KeyError(f"CSV缺少必要字段：{exc}. 实际字段：{reader.fieldnames}") from exc
            except (ValueError, TypeError, AttributeError):
                # 某些行可能损坏/空行，直接跳过
                continue


def load_samples(csv_path: str | Path) -> tuple[list[LocationSample], CsvSummary]:
    """Load all samples into memory, sorted by timestamp.

    Returns:
        (samples, summary)
    """

    p = Path(csv_path)
    rows_total = 0
    parsed: list[LocationSample] = []
    fieldnames: Sequence[str] = ()

    with p.open("r", encoding="utf-8", newline="") as f:
        reader = csv.DictReader(f)
        fieldnames = reader.fieldnames or ()
        for row in reader:
            rows_total += 1
            try:
                parsed.append(_sample_from_row(row))
            except (KeyError, ValueError, TypeError, AttributeError):
                continue

    parsed.sort(key=lambda s: s.timestamp_ms)
    summary = CsvSummary(
        rows_total=rows_total,
        rows_parsed=len(parsed),
        rows_skipped=rows_total - len(parsed),
        fieldnames=fieldnames,
    )
    if summary.rows_skipped > 0:
        logger.warning("CSV中有 %s 行解析失败已跳过", summary.rows_skipped)
    return parsed, summary


def write_samples(csv_path: str | Path, samples: Iterable[LocationSample]) -> int:
    """Write samples in the export format; returns the number of rows written."""

    p = Path(csv_path)
    p.parent.mkdir(parents=True, exist_ok=True)
    count = 0
    with p.open("w", encoding="utf-8", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=list(FIELDNAMES))
        writer.writeheader()
        for s in samples:
            writer.writerow(
                {
                    "geoTime": s.timestamp_ms,
                    "latitude": f"{s.lat:.8f}",
                    "longitude": f"{s.lng:.8f}",
                    "horizontalAccuracy": -1 if s.accuracy_m is None else s.accuracy_m,
                }
            )
            count += 1
    return count
