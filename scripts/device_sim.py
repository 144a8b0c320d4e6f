"""Post TTN-shaped uplinks to a running gateway, the way a hangar device would."""

import base64
import os
import random
import time

import msgpack
import requests

API = os.getenv("API", "http://localhost:9000")
DEV_ID = os.getenv("DEV_ID", "hangar-sim-1")
DOWNLINK_URL = os.getenv("DOWNLINK_URL", "http://localhost:9001/downlink")
PERIOD = float(os.getenv("PERIOD", "5"))

counter = 0


def post_uplink(message: dict):
    global counter
    counter += 1
    payload = msgpack.packb(message, use_bin_type=True)
    r = requests.post(f"{API}/uplink/", json={
        "app_id": "hangar-sim",
        "dev_id": DEV_ID,
        "hardware_serial": "0004A30B001C0530",
        "port": 1,
        "counter": counter,
        "isRetry": False,
        "confirmed": False,
        "payload_raw": base64.b64encode(payload).decode("ascii"),
        "downlink_url": DOWNLINK_URL,
    })
    print(message["cmd"], r.status_code, r.text)


def main():
    post_uplink({"cmd": "start", "my-time": int(time.time())})
    while True:
        state = [random.random() < 0.5, random.random() < 0.5]
        post_uplink({"cmd": "status", "my-time": int(time.time()), "state": state})
        time.sleep(PERIOD)


if __name__ == "__main__":
    main()
