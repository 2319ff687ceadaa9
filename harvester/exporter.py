"""
Output Writer
=============
Serializes finished ``ListingRecord`` lists to JSON and CSV.

Default placement (inside the output directory)::

    output.json   pretty-printed array, UTF-8
    output.csv    one row per record, fixed column order

An extra JSON copy is written to ``out_path`` when one is given.
"""

from __future__ import annotations

import csv
import json
import logging
from pathlib import Path
from typing import Dict, Optional, Sequence

from .models import RECORD_FIELDS, ListingRecord

logger = logging.getLogger(__name__)


def export_json(records: Sequence[ListingRecord], filepath: str) -> str:
    """
    Export records to JSON.

    Returns:
        Absolute path to the created file
    """
    output_path = Path(filepath)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, 'w', encoding='utf-8') as f:
        json.dump([r.to_dict() for r in records], f, indent=2, ensure_ascii=False)

    logger.info(f"[EXPORT] JSON → {output_path.absolute()}")
    return str(output_path.absolute())


def export_csv(records: Sequence[ListingRecord], filepath: str) -> str:
    """Export records to CSV (header row is written even when empty)."""
    output_path = Path(filepath)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, 'w', encoding='utf-8', newline='') as f:
        writer = csv.DictWriter(f, fieldnames=RECORD_FIELDS, extrasaction='ignore')
        writer.writeheader()
        for record in records:
            writer.writerow(record.to_flat_dict())

    logger.info(f"[EXPORT] CSV → {output_path.absolute()}")
    return str(output_path.absolute())


def write_outputs(
    records: Sequence[ListingRecord],
    output_dir: str,
    out_path: Optional[str] = None,
) -> Dict[str, str]:
    """Write output.json + output.csv, plus the optional extra JSON copy."""
    base = Path(output_dir)
    written = {
        'json': export_json(records, str(base / 'output.json')),
        'csv': export_csv(records, str(base / 'output.csv')),
    }
    if out_path:
        written['out'] = export_json(records, out_path)
    return written
