import asyncio
import logging

from fastapi import FastAPI, WebSocket, Request
from fastapi.responses import HTMLResponse, JSONResponse
from twilio.twiml.voice_response import VoiceResponse, Connect, Stream

from config import LOG_LEVEL, PORT, TWILIO_PHONE_NUMBER
from database import init_db
from call_bridge import CallBridge
from realtime import check_openai_connectivity
from registry import CallRegistry
from store import RecordStore

# ── App setup ──────────────────────────────────────────────────────────────────
app = FastAPI()

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("ivr")
for _name in ("websockets", "websockets.client", "websockets.server", "urllib3", "httpx", "httpcore"):
    logging.getLogger(_name).setLevel(logging.INFO)

app.state.store = RecordStore()
app.state.registry = CallRegistry()


def log_openai_status(context: str, working: bool, detail: str = ""):
    status = "WORKING" if working else "NOT WORKING"
    suffix = f" | {detail}" if detail else ""
    logger.info("[OPENAI][%s] %s%s", context, status, suffix)


# ── Startup ────────────────────────────────────────────────────────────────────
@app.on_event("startup")
async def startup():
    await asyncio.to_thread(init_db)
    ok, detail = await check_openai_connectivity()
    log_openai_status("startup", ok, detail)


@app.get("/", response_class=JSONResponse)
async def index_page():
    return {"status": "running"}


@app.get("/health", response_class=JSONResponse)
async def health(request: Request):
    return {"status": "ok", "activeCalls": len(request.app.state.registry)}


@app.get("/health/openai", response_class=JSONResponse)
async def health_openai():
    ok, detail = await check_openai_connectivity()
    log_openai_status("health", ok, detail)
    return {"working": ok, "detail": detail}


# ── Twilio webhook ─────────────────────────────────────────────────────────────
async def _record_incoming_call(store: RecordStore, call_sid: str, caller: str, called: str):
    try:
        restaurant = await asyncio.to_thread(store.resolve_restaurant, called)
        await asyncio.to_thread(
            store.create_call_log,
            call_sid,
            restaurant.id if restaurant else None,
            restaurant.name if restaurant else "Unknown",
            caller,
            called,
        )
    except Exception:
        logger.exception("[CALL] Could not record incoming call call_sid=%s", call_sid)


@app.api_route("/incoming-call", methods=["GET", "POST"])
async def incoming_call(request: Request):
    params = dict(request.query_params)
    if request.method == "POST":
        form = await request.form()
        params.update({k: str(v) for k, v in form.items()})

    caller = str(params.get("From") or params.get("Caller") or "Unknown")
    called = str(params.get("To") or params.get("Called") or TWILIO_PHONE_NUMBER)
    call_sid = str(params.get("CallSid") or "")

    if call_sid:
        await _record_incoming_call(request.app.state.store, call_sid, caller, called)

    host = request.headers.get("host")
    path = request.url.path or ""
    prefix = request.scope.get("root_path") or ""
    if not prefix and path.startswith("/api/"):
        prefix = "/api"

    response = VoiceResponse()
    connect = Connect()
    stream = Stream(url=f"wss://{host}{prefix}/media-stream")
    stream.parameter(name="callSid", value=call_sid)
    stream.parameter(name="callerPhone", value=caller)
    stream.parameter(name="calledNumber", value=called)
    connect.append(stream)
    response.append(connect)

    return HTMLResponse(content=str(response), media_type="application/xml")


# ── Media stream ───────────────────────────────────────────────────────────────
@app.websocket("/media-stream")
async def handle_media_stream(websocket: WebSocket):
    await websocket.accept()
    registry = websocket.app.state.registry
    logger.info("[CALL] Twilio WS connected, active calls: %d", len(registry))
    bridge = CallBridge(websocket, websocket.app.state.store, registry)
    try:
        await bridge.run()
    except Exception:
        logger.exception("[CALL] Bridge failed sid=%s", bridge.sid)


@app.get("/media-stream")
def media_stream_http_guard():
    return JSONResponse(
        status_code=426,
        content={
            "error":  "WebSocket required",
            "detail": "Use the Twilio Voice webhook /incoming-call to initiate a WebSocket media stream.",
        },
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
