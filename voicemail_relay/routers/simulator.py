from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from voicemail_relay.deps import get_coordinator
from voicemail_relay.logging_config import logger
from voicemail_relay.models import SIMULATOR_REQUIRED_FIELDS, RecordingCallbackEvent, SimulateCallbackRequest
from voicemail_relay.security import verify_simulator_key

router = APIRouter(prefix="/test", tags=["Testing"])


def _run_simulated_recording(coordinator, event: RecordingCallbackEvent) -> None:
    try:
        outcome = coordinator.handle_recording(event)
        logger.info("simulated_recording_processed", call_sid=event.call_sid, skipped=outcome.skipped)
    except Exception as e:
        logger.error("simulated_recording_failed", call_sid=event.call_sid, error=str(e))


# POST /test/simulate-callback
# Gets: JSON {callSid, caller, toPhone (or to), recordingUrl} and, when configured, x-simulator-key header
# Returns: {"ok": true}; the recording pipeline runs after the response is sent
# Example:
#   curl -X POST http://localhost:8000/test/simulate-callback -H 'Content-Type: application/json' \
#     -d '{"callSid":"CA1","caller":"+15551230000","toPhone":"+15559870000","recordingUrl":"https://api.twilio.com/.../RE1"}'
@router.post("/simulate-callback")
async def simulate_callback(
    request: Request,
    background_tasks: BackgroundTasks,
    _: str = Depends(verify_simulator_key),
    coordinator=Depends(get_coordinator),
):
    """Drive the recording pipeline without a real phone call (disabled in production)."""

    try:
        body = await request.json()
    except ValueError:
        return JSONResponse({"error": "invalid_json"}, status_code=400)

    simulated = SimulateCallbackRequest.from_json(body)
    if simulated is None:
        return JSONResponse({"error": SIMULATOR_REQUIRED_FIELDS}, status_code=400)

    event = await run_in_threadpool(coordinator.start_simulated_call, simulated)
    background_tasks.add_task(_run_simulated_recording, coordinator, event)

    return {"ok": True}
