#The Mock ESP32 Transmission script simulates the garden microcontroller
#posting sensor readings to the relay. Each round sends moisture A/B,
#DHT11 and NPK readings as separate JSON payloads.

# Mock_ESP32_Transmission.py
import argparse
import json
import logging
import time
import urllib.error
import urllib.request

import Config
import MSG
from Errors import GardenError
from Mock_Sensor_Generation import MockSensorGenerator

logger = logging.getLogger("garden.mock_esp32")


def post_json(url: str, payload: dict, timeout_s: float = 3.0) -> tuple[int, str]:
    # Post a JSON payload to a URL
    # Returns (status_code, response_body_text),
    # or (0, error_message) on network error.
    data = json.dumps(payload).encode("utf-8")
    req = urllib.request.Request(
        url=url,
        data=data,
        headers={"Content-Type": "application/json"},
        method="POST",
    )

    try:
        with urllib.request.urlopen(req, timeout=timeout_s) as resp:
            body = resp.read().decode("utf-8", errors="replace")
            return resp.getcode(), body
    except urllib.error.HTTPError as e:
        body = e.read().decode("utf-8", errors="replace")
        return e.code, body
    except urllib.error.URLError as e:
        return 0, str(e)


def send_round(url: str, gen: MockSensorGenerator, timeout_s: float) -> bool:
    """Send one round of readings. Returns False if any post failed."""
    ok = True
    for payload in gen.generate():
        # Validate against the canonical schema before sending
        try:
            MSG.validate_payload(payload)
        except GardenError as e:
            logger.error("[VALIDATION-ERR] %s err=%s", payload, e)
            ok = False
            continue

        status, body = post_json(url, payload, timeout_s=timeout_s)
        if status == 200:
            logger.info("[OK] round=%d %s", gen.sequence, payload)
        else:
            # status==0 means likely network/server unreachable
            logger.warning("[ERR] round=%d status=%d detail=%s", gen.sequence, status, body)
            ok = False
    return ok


def main():
    parser = argparse.ArgumentParser(description="Mock ESP32 posting garden readings")
    parser.add_argument("--url", default=f"http://127.0.0.1:{Config.PORT}/api/sensor-data")
    parser.add_argument("--period", type=float, default=5.0, help="seconds between rounds")
    parser.add_argument("--timeout", type=float, default=3.0, help="HTTP timeout")
    parser.add_argument("--seed", type=int, default=None)
    args = parser.parse_args()

    Config.setup_logging()
    backoff_s = 0.5        # retry backoff if server is down
    max_backoff_s = 8.0

    gen = MockSensorGenerator(seed=args.seed)
    logger.info("[ESP32-MOCK] Sending to: %s  Period: %ss", args.url, args.period)

    while True:
        if send_round(args.url, gen, args.timeout):
            backoff_s = 0.5  # reset backoff on success
            time.sleep(args.period)
        else:
            time.sleep(backoff_s)
            backoff_s = min(max_backoff_s, backoff_s * 2.0)


if __name__ == "__main__":
    main()
