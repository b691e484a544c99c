# Thresholds.py
#
# Client-side warning thresholds, persisted as a small JSON key-value file.
# Reads always merge the stored values over the defaults.
import json
import logging
import os
from typing import Any, Dict, Mapping

import Config

logger = logging.getLogger("garden.thresholds")

DEFAULT_THRESHOLDS: Dict[str, float] = {
    "moistureLow": 30,
    "moistureHigh": 70,
    "tempLow": 18,
    "tempHigh": 28,
    "humidityLow": 40,
    "humidityHigh": 80,
    "nitrogenLow": 40,
    "nitrogenHigh": 60,
    "phosphorusLow": 35,
    "phosphorusHigh": 55,
    "potassiumLow": 45,
    "potassiumHigh": 65,
    # below these the kitchen-waste advice popup opens
    "nitrogenAdviceLow": 30,
    "phosphorusAdviceLow": 25,
    "potassiumAdviceLow": 35,
}


def merge_thresholds(stored: Mapping[str, Any]) -> Dict[str, float]:
    """Defaults overlaid with the known, numeric stored values."""
    merged = dict(DEFAULT_THRESHOLDS)
    for key, value in stored.items():
        if key not in DEFAULT_THRESHOLDS:
            continue
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            logger.warning("Ignoring non-numeric threshold %s=%r", key, value)
            continue
        merged[key] = value
    return merged


class ThresholdStore:
    def __init__(self, path: str = Config.THRESHOLDS_PATH) -> None:
        self.path = path

    def _read_raw(self) -> Dict[str, Any]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                loaded = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("Could not read thresholds from %s: %s", self.path, e)
            return {}
        return loaded if isinstance(loaded, dict) else {}

    def load(self) -> Dict[str, float]:
        return merge_thresholds(self._read_raw())

    def save(self, thresholds: Mapping[str, Any]) -> Dict[str, float]:
        merged = merge_thresholds(thresholds)
        os.makedirs(os.path.dirname(os.path.abspath(self.path)), exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(merged, f, indent=2)
        return merged

    def update(self, name: str, value: float) -> Dict[str, float]:
        if name not in DEFAULT_THRESHOLDS:
            raise KeyError(f"Unknown threshold: {name}")
        current = self.load()
        current[name] = value
        return self.save(current)

    def reset(self) -> Dict[str, float]:
        return self.save(DEFAULT_THRESHOLDS)
