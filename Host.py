# Host.py acts as both a Receiver and Application
#
# Responsibilities:
# - Receive ESP32 JSON readings over Wi-Fi (HTTP POST /api/sensor-data)
# - Validate per sensor kind (moisture / dht11 / npk)
# - Store to SQLite via DB.py
# - Push realtime updates to every viewer (WebSocket /ws), only after the write
# - Relay irrigation commands between viewers
# - Serve history (GET /api/sensor-history) and exports for the trend charts
# - Serve a live dashboard for mobile devices (GET /)

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import uvicorn
from fastapi import APIRouter, FastAPI, Query, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, Response

import Config
import History
from DB import SensorDatabase
from Errors import InvalidFormat, InvalidPayloadForKind, PersistenceFailure
from Ingest import SensorIngestor, utc_now
from MSG import info_event
from Relay import BroadcastRelay

logger = logging.getLogger("garden.host")

WELCOME_MESSAGE = "Welcome to the Vertical Garden WebSocket server!"

router = APIRouter()


# ----------------------------
# APP
# ----------------------------
def create_app(db: Optional[SensorDatabase] = None, relay: Optional[BroadcastRelay] = None) -> FastAPI:
    """Build the app around explicitly owned services.

    The database is started and stopped with the app lifespan; the relay is
    closed on shutdown.
    """
    db = db or SensorDatabase()
    relay = relay or BroadcastRelay()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db.start()
        try:
            yield
        finally:
            relay.close()
            db.stop()

    app = FastAPI(title=Config.APP_TITLE, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.db = db
    app.state.relay = relay
    app.state.ingestor = SensorIngestor(db, relay)
    app.include_router(router)
    return app


def _message(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"message": message})


# ----------------------------
# ROUTES
# ----------------------------
@router.get("/api/health")
def health() -> Dict[str, Any]:
    return {"status": "OK", "timestamp": utc_now().isoformat()}


@router.post("/api/sensor-data")
async def sensor_data(request: Request) -> JSONResponse:
    try:
        payload = await request.json()
    except ValueError:
        return _message(400, "Invalid JSON body")

    logger.info("Received sensor data from ESP32: %s", payload)
    ingestor: SensorIngestor = request.app.state.ingestor

    try:
        stored = await ingestor.ingest(payload)
    except InvalidFormat as e:
        logger.warning("Rejected sensor data without type: %s", payload)
        return _message(400, str(e))
    except InvalidPayloadForKind as e:
        logger.warning("Invalid data for sensor type %s: %s", e.kind, e.detail)
        return _message(400, str(e))
    except PersistenceFailure as e:
        logger.error("Error inserting sensor data into database: %s", e)
        return _message(500, "Failed to store sensor data")

    if stored is None:
        return _message(200, "Data received but not stored (unknown type)")
    return _message(200, "Data received and stored successfully")


def _history_rows(request: Request, limit: int, range_key: Optional[str]):
    since = History.range_start(range_key)
    db: SensorDatabase = request.app.state.db
    return db.get_sensor_history(limit=limit, since=since)


@router.get("/api/sensor-history")
def sensor_history(
    request: Request,
    limit: int = Query(Config.HISTORY_LIMIT, ge=1, le=Config.HISTORY_MAX_LIMIT),
    range_key: Optional[str] = Query(None, alias="range"),
) -> JSONResponse:
    """Most recent readings, newest first, as flat rows."""
    try:
        rows = _history_rows(request, limit, range_key)
    except ValueError as e:
        return _message(400, str(e))
    except PersistenceFailure as e:
        logger.error("Error fetching sensor history: %s", e)
        return _message(500, "Failed to fetch sensor history")
    return JSONResponse(status_code=200, content=rows)


@router.get("/api/sensor-history/export")
def export_history(
    request: Request,
    fmt: str = Query("csv", alias="format", pattern="^(csv|json)$"),
    limit: int = Query(Config.HISTORY_LIMIT, ge=1, le=Config.HISTORY_MAX_LIMIT),
    range_key: Optional[str] = Query(None, alias="range"),
) -> Response:
    try:
        rows = _history_rows(request, limit, range_key)
    except ValueError as e:
        return _message(400, str(e))
    except PersistenceFailure as e:
        logger.error("Error exporting sensor history: %s", e)
        return _message(500, "Failed to fetch sensor history")

    points = History.pivot_history(rows)
    if fmt == "csv":
        body, media_type = History.export_csv(points), "text/csv; charset=utf-8"
    else:
        body, media_type = History.export_json(points), "application/json"
    headers = {"Content-Disposition": f'attachment; filename="{History.export_filename(fmt)}"'}
    return Response(content=body, media_type=media_type, headers=headers)


@router.websocket("/ws")
async def websocket_endpoint(ws: WebSocket):
    relay: BroadcastRelay = ws.app.state.relay
    await ws.accept()
    handle = relay.subscribe(ws.send_text)
    relay.send_to(handle, info_event(WELCOME_MESSAGE))

    try:
        # Server pushes via the relay; this loop only reads viewer commands.
        while True:
            message = await ws.receive()
            if message["type"] == "websocket.disconnect":
                break
            raw = message.get("text")
            if raw is None:
                raw = (message.get("bytes") or b"").decode("utf-8", errors="replace")
            relay.handle_client_message(handle, raw)
    finally:
        relay.unsubscribe(handle)


@router.get("/", response_class=HTMLResponse)
def dashboard() -> str:
    # IMPORTANT: do not use f-strings here because CSS/JS contain many { } braces.
    html = """
<!doctype html>
<html>
<head>
  <meta charset="utf-8"/>
  <meta name="viewport" content="width=device-width, initial-scale=1"/>
  <title>__APP_TITLE__</title>
  <style>
    * { margin: 0; padding: 0; box-sizing: border-box; }
    body { font-family: -apple-system, "Segoe UI", Roboto, Arial, sans-serif; background: #f3f7f2; color: #1f2a1f; }
    header { background: linear-gradient(135deg, #3f9b5a 0%, #1e6b3a 100%); color: white; padding: 20px 24px; }
    header h1 { font-size: 24px; }
    main { max-width: 1100px; margin: 0 auto; padding: 20px; }
    .bar { display: flex; gap: 16px; align-items: center; margin-bottom: 20px; flex-wrap: wrap; }
    .badge { padding: 4px 10px; border-radius: 6px; font-size: 13px; background: #e5e7eb; }
    .badge.ok { background: #dcfce7; color: #166534; }
    .badge.err { background: #fee2e2; color: #991b1b; }
    .tiles { display: grid; grid-template-columns: repeat(auto-fit, minmax(160px, 1fr)); gap: 14px; }
    .tile { background: white; border-radius: 8px; padding: 16px; box-shadow: 0 2px 6px rgba(0,0,0,0.06); }
    .tile .label { font-size: 11px; text-transform: uppercase; color: #6b7280; letter-spacing: 0.5px; }
    .tile .value { font-size: 26px; font-weight: 600; margin-top: 6px; }
    button { padding: 8px 16px; border-radius: 6px; border: 1px solid #3f9b5a; background: white; color: #1e6b3a; cursor: pointer; }
    button.on { background: #3f9b5a; color: white; }
  </style>
</head>
<body>
<header><h1>__APP_TITLE__</h1></header>
<main>
  <div class="bar">
    <span>WebSocket <span class="badge" id="ws_status">disconnected</span></span>
    <span>Data <span class="badge" id="data_status">waiting</span> <small id="data_age"></small></span>
    <button id="irrigation" onclick="toggleIrrigation()">Irrigation off</button>
  </div>
  <div class="tiles">
    <div class="tile"><div class="label">Moisture A (%)</div><div class="value" id="moistureA">—</div></div>
    <div class="tile"><div class="label">Moisture B (%)</div><div class="value" id="moistureB">—</div></div>
    <div class="tile"><div class="label">Temperature (°C)</div><div class="value" id="temperature">—</div></div>
    <div class="tile"><div class="label">Humidity (%)</div><div class="value" id="humidity">—</div></div>
    <div class="tile"><div class="label">Nitrogen (ppm)</div><div class="value" id="nitrogen">—</div></div>
    <div class="tile"><div class="label">Phosphorus (ppm)</div><div class="value" id="phosphorus">—</div></div>
    <div class="tile"><div class="label">Potassium (ppm)</div><div class="value" id="potassium">—</div></div>
  </div>
</main>
<script>
const RECONNECT_MS = 3000;
const LIVE_MS = 5000;
let ws = null;
let irrigation = false;
let lastUpdateMs = 0;

function setText(id, v) {
  document.getElementById(id).textContent = (typeof v === "number") ? v.toFixed(1) : "—";
}

function setBadge(id, text, ok) {
  const el = document.getElementById(id);
  el.textContent = text;
  el.className = "badge " + (ok ? "ok" : "err");
}

function showIrrigation() {
  const btn = document.getElementById("irrigation");
  btn.textContent = irrigation ? "Irrigation on" : "Irrigation off";
  btn.className = irrigation ? "on" : "";
}

function applyReading(p) {
  lastUpdateMs = Date.now();
  if (p.type === "moisture") setText("moisture" + p.id, p.value);
  if (p.type === "dht11") { setText("temperature", p.temp); setText("humidity", p.humidity); }
  if (p.type === "npk") { setText("nitrogen", p.n); setText("phosphorus", p.p); setText("potassium", p.k); }
}

setInterval(function () {
  if (lastUpdateMs === 0) { setBadge("data_status", "waiting", false); return; }
  const age = Date.now() - lastUpdateMs;
  setBadge("data_status", age < LIVE_MS ? "live" : "stale", age < LIVE_MS);
  document.getElementById("data_age").textContent = (age / 1000).toFixed(1) + "s ago";
}, 500);

function toggleIrrigation() {
  if (!ws || ws.readyState !== WebSocket.OPEN) { console.warn("WebSocket not open"); return; }
  ws.send(JSON.stringify({ type: "control", action: "toggle_irrigation", payload: { status: !irrigation } }));
}

function connect() {
  const proto = (location.protocol === "https:") ? "wss" : "ws";
  ws = new WebSocket(proto + "://" + location.host + "/ws");
  ws.onopen = () => setBadge("ws_status", "connected", true);
  ws.onclose = (ev) => {
    setBadge("ws_status", "disconnected", false);
    setTimeout(connect, RECONNECT_MS);
  };
  ws.onmessage = (msg) => {
    let e;
    try { e = JSON.parse(msg.data); } catch (err) { return; }
    if (e.type === "sensor_update") applyReading(e.payload);
    else if (e.type === "irrigation_state") { irrigation = !!e.status; showIrrigation(); }
    else if (e.type === "error") console.error(e.message);
  };
}

connect();
</script>
</body>
</html>
"""
    return html.replace("__APP_TITLE__", Config.APP_TITLE)


app = create_app()


if __name__ == "__main__":
    Config.setup_logging()
    uvicorn.run(app, host=Config.HOST, port=Config.PORT)
