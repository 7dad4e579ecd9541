"""
Monthly price snapshots, persisted as one JSON file per metal.

Each file maps a "YYYY-MM" key to the last live price seen that month:

    {
      "2024-03": {
        "price": 6274.64,
        "price_per_unit": 6274.64,
        "price_per_gram": 201.7344,
        "currency": "CAD",
        "provider": "goldapi.io (GOLD_API_KEY_1)",
        "cached": true,
        "timestamp": "2024-03-14T09:12:55.120000+00:00"
      }
    }

The store is only read when every live provider has failed.
"""

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from pydantic import ValidationError

from spotprice.config import MONTHLY_FALLBACK_PROVIDER
from spotprice.models import Metal, PricePayload


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def month_key(moment: datetime) -> str:
    return f"{moment.year}-{moment.month:02d}"


class SnapshotStore:
    def __init__(self, directory: Path, clock: Callable[[], datetime] = _utcnow):
        self._directory = Path(directory)
        self._clock = clock

    def path_for(self, metal: Metal) -> Path:
        return self._directory / f"{metal.value}-monthly-prices.json"

    def current_month(self) -> str:
        return month_key(self._clock())

    def _load(self, metal: Metal) -> dict[str, dict]:
        """Load stored records. A missing or unreadable file is an empty store."""
        path = self.path_for(metal)
        if not path.exists():
            return {}
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError, OSError) as e:
            logging.warning(f"[{metal.label} Monthly File] Ignoring unreadable {path}: {str(e)}")
            return {}

        if not isinstance(data, dict):
            logging.warning(f"[{metal.label} Monthly File] Ignoring {path}: top level is not an object")
            return {}
        return {key: value for key, value in data.items() if isinstance(key, str) and isinstance(value, dict)}

    def _save(self, metal: Metal, records: dict[str, dict]) -> None:
        """Replace the file in one step so readers never see a partial write."""
        self._directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self._directory, prefix=f".{metal.value}-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(records, f, indent=2)
            os.replace(tmp_path, self.path_for(metal))
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise

    def read(self, metal: Metal) -> Optional[PricePayload]:
        """
        Return the current month's snapshot, else the most recent stored month.

        The returned payload is tagged with MONTHLY_FALLBACK_PROVIDER. Records
        that no longer validate are skipped in favour of the next most recent.
        """
        records = self._load(metal)
        if not records:
            return None

        current = self.current_month()
        keys = sorted(records, reverse=True)
        if current in records:
            keys.remove(current)
            keys.insert(0, current)

        for key in keys:
            try:
                payload = PricePayload.model_validate(
                    {**records[key], "metal": metal, "provider": MONTHLY_FALLBACK_PROVIDER}
                )
            except ValidationError as e:
                logging.warning(f"[{metal.label} Monthly Fallback] Skipping invalid record {key}: {str(e)}")
                continue

            if key == current:
                logging.info(f"[{metal.label} Monthly Fallback] Using current month: {key}")
            else:
                logging.info(f"[{metal.label} Monthly Fallback] Using latest available: {key}")
            return payload

        return None

    def write(self, metal: Metal, payload: PricePayload) -> bool:
        """
        Upsert the current month with `payload`.

        Returns False instead of raising when the file cannot be written.
        """
        try:
            records = self._load(metal)
            now = self._clock()
            key = month_key(now)
            records[key] = {
                "price": payload.price_per_unit,
                "price_per_unit": payload.price_per_unit,
                "price_per_gram": payload.price_per_gram,
                "currency": payload.currency,
                "provider": payload.provider,
                "cached": True,
                "timestamp": now.isoformat(),
            }
            self._save(metal, records)
        except (OSError, TypeError, ValueError) as e:
            logging.error(f"[{metal.label} Monthly File] Error updating file: {str(e)}")
            return False

        logging.info(
            f"[{metal.label} Monthly File] Updated {key} with {payload.price_per_unit} "
            f"{payload.currency}/oz from {payload.provider}"
        )
        return True
