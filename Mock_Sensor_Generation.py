#This program creates theoretical sensor data for software testing, in the same format
#as the ESP32 posts to /api/sensor-data: one reading per sensor kind.

import random


class MockSensorGenerator:
    """Generates garden readings around realistic means (normal distributions)."""

    def __init__(self, seed=None):
        self.rng = random.Random(seed)
        self.sequence = 0

        # Means / std deviations and clamp ranges per measurement
        self.sensor_params = {
            "moisture": {"mean": 60.0, "stddev": 8.0, "range": (30.0, 90.0)},      # soil moisture %
            "temp": {"mean": 23.0, "stddev": 2.0, "range": (18.0, 28.0)},          # DHT11 °C
            "humidity": {"mean": 60.0, "stddev": 8.0, "range": (40.0, 80.0)},      # DHT11 %
            "npk": {"mean": 50.0, "stddev": 5.0, "range": (20.0, 80.0)},           # ppm
        }

    def _clamp(self, value, min_val, max_val):
        return max(min_val, min(max_val, value))

    def _sample(self, name):
        p = self.sensor_params[name]
        lo, hi = p["range"]
        return round(self._clamp(self.rng.gauss(p["mean"], p["stddev"]), lo, hi), 1)

    def moisture(self, sensor_id):
        return {"type": "moisture", "id": sensor_id, "value": self._sample("moisture")}

    def dht11(self):
        return {"type": "dht11", "temp": self._sample("temp"), "humidity": self._sample("humidity")}

    def npk(self):
        return {"type": "npk", "n": self._sample("npk"), "p": self._sample("npk"), "k": self._sample("npk")}

    def generate(self):
        """One round of readings, the way the ESP32 loop sends them."""
        self.sequence += 1
        return [self.moisture("A"), self.moisture("B"), self.dht11(), self.npk()]
