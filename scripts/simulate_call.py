#!/usr/bin/env python3
"""
Drive a local voicemail relay through one fake call.
Run the server first: uvicorn voicemail_relay.main:app --reload

    python scripts/simulate_call.py --caller +15551230000 --to +15559870000 \
        --recording-url https://api.twilio.com/2010-04-01/Accounts/AC.../Recordings/RE...
"""

import argparse
import uuid

import httpx

BASE_URL = "http://127.0.0.1:8000"


def simulate(base_url: str, caller: str, to_phone: str, recording_url: str, key: str = ""):
    call_sid = f"CA{uuid.uuid4().hex}"
    headers = {"x-simulator-key": key} if key else {}

    print("1. Health check...")
    response = httpx.get(f"{base_url}/health")
    print(f"   Status: {response.status_code}")
    print(f"   Response: {response.json()}\n")

    print("2. Voice webhook (greeting TwiML)...")
    response = httpx.post(
        f"{base_url}/v1/webhooks/twilio/voice",
        data={"CallSid": call_sid, "From": caller, "To": to_phone},
    )
    print(f"   Status: {response.status_code}")
    print(f"   TwiML:\n{response.text}\n")

    print("3. Simulated recording callback...")
    response = httpx.post(
        f"{base_url}/test/simulate-callback",
        json={"callSid": call_sid, "caller": caller, "toPhone": to_phone, "recordingUrl": recording_url},
        headers=headers,
        timeout=60,
    )
    print(f"   Status: {response.status_code}")
    print(f"   Response: {response.text}\n")

    print("4. Missed-call status callback (no-answer)...")
    response = httpx.post(
        f"{base_url}/v1/webhooks/twilio/status",
        data={"CallSid": f"CA{uuid.uuid4().hex}", "CallStatus": "no-answer", "From": caller, "To": to_phone},
    )
    print(f"   Status: {response.status_code}")
    print(f"   Response: {response.json()}\n")

    print("Done. Signature enforcement must be off (TWILIO_SIGNATURE_MODE=off) for steps 2 and 4.")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Simulate a missed call against a local server")
    parser.add_argument("--base-url", default=BASE_URL)
    parser.add_argument("--caller", required=True)
    parser.add_argument("--to", dest="to_phone", required=True)
    parser.add_argument("--recording-url", required=True)
    parser.add_argument("--key", default="", help="x-simulator-key, when SIMULATOR_API_KEY is set")
    args = parser.parse_args()

    simulate(args.base_url, args.caller, args.to_phone, args.recording_url, args.key)
