from __future__ import annotations

import logging
import os
from typing import Any, Dict

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse
from sqlalchemy import text

from .routes import router as v1_router
from ..db import SessionLocal, init_db
from ..settings import settings

# ---------------- Logging ----------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("seb-api")

API_VERSION = "4.2.1"

# ---------- HTML fallback (declare BEFORE use) ----------
LANDING_HTML = """
<!DOCTYPE html><html lang="en"><head><meta charset="UTF-8">
<meta name="viewport" content="width=device-width,initial-scale=1">
<title>SEB Fee Desk</title>
<script src="https://cdn.tailwindcss.com"></script>
<script defer src="https://cdn.jsdelivr.net/npm/alpinejs@3.x.x/dist/cdn.min.js"></script>
</head>
<body class="bg-slate-50" x-data="sebApp()" @keydown.window="onKey($event)">
<div class="container mx-auto px-4 py-8 max-w-5xl grid md:grid-cols-2 gap-6">
  <div class="bg-white rounded-lg shadow p-6">
    <h1 class="text-xl font-bold mb-4">Single Entry Bond</h1>
    <div class="flex gap-2 mb-4">
      <button @click="mode='standard'; recalc()" :class="mode==='standard' ? 'font-bold underline' : ''">Without PGA</button>
      <button @click="mode='pga'; recalc()" :class="mode==='pga' ? 'font-bold underline' : ''">With PGA</button>
    </div>
    <template x-if="mode==='standard'"><div>
      <input x-model="f.invoice_value" @input="recalc" placeholder="Invoice value" class="w-full p-2 border rounded mb-2">
      <input x-model="f.duties_value" @input="recalc" placeholder="Duties" class="w-full p-2 border rounded">
    </div></template>
    <template x-if="mode==='pga'"><div>
      <input x-model="f.pga_invoice_value" @input="recalc" placeholder="PGA invoice value" class="w-full p-2 border rounded mb-2">
      <input x-model="f.non_pga_invoice_value" @input="recalc" placeholder="Non-PGA invoice value" class="w-full p-2 border rounded">
    </div></template>
    <div class="mt-4 text-sm">Total bond: <span class="font-mono" x-text="'$' + (r.total_bond_value || '0')"></span></div>
    <div class="text-lg font-bold">Sell: <span class="font-mono" x-text="r.clipboard_text || '$0.000000'"></span>
      <button @click="navigator.clipboard.writeText(r.clipboard_text)" class="text-xs underline">copy</button></div>
    <p class="text-xs mt-2" x-text="r.advisory"></p>
  </div>
  <div class="bg-white rounded-lg shadow p-6">
    <h2 class="text-xl font-bold mb-4">Quick Calc</h2>
    <div class="font-mono text-right text-2xl p-2 border rounded mb-3" x-text="c.display_text"></div>
    <div class="grid grid-cols-4 gap-2">
      <template x-for="b in ['C','Backspace','÷','×','7','8','9','-','4','5','6','+','1','2','3','.','0','=']">
        <button @click="press({tokens:[b]})" class="p-2 border rounded" x-text="b"></button>
      </template>
    </div>
  </div>
</div>
<script>
function sebApp() {
  return {
    mode: 'standard', r: {}, c: {display_text: '0', expression_text: ''},
    f: {invoice_value: '', duties_value: '', pga_invoice_value: '', non_pga_invoice_value: ''},
    q: Promise.resolve(), seq: 0,
    init() { this.recalc(); },
    async recalc() {
      const n = ++this.seq;
      const q = new URLSearchParams({mode: this.mode, ...this.f});
      const data = await (await fetch('/api/v1/bond/estimate?' + q)).json();
      // a slower reply for older inputs must not overwrite a newer estimate
      if (n === this.seq) this.r = data;
    },
    press(extra) {
      // one press at a time; each request starts from the state the previous one returned
      this.q = this.q.then(async () => {
        const body = {display_text: this.c.display_text, expression_text: this.c.expression_text, ...extra};
        const r = await fetch('/api/v1/calculator/press', {method: 'POST', headers: {'Content-Type': 'application/json'}, body: JSON.stringify(body)});
        if (r.ok) this.c = await r.json();
      }).catch((err) => console.error('calculator press failed', err));
      return this.q;
    },
    onKey(e) {
      if (e.target instanceof HTMLInputElement || e.target instanceof HTMLTextAreaElement) return;
      if (e.key === 'Enter' || e.key === '=') e.preventDefault();
      this.press({keys: [e.key]});
    },
  }
}
</script></body></html>
"""

# ---------- App ----------
app = FastAPI(
    title="SEB Fee Desk",
    version=API_VERSION,
    description="Single entry bond fee calculator with a four-function quick calculator",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
)

app.include_router(v1_router)

# ----- CORS -----
allow_origins = settings.cors_origins
allow_all = (len(allow_origins) == 1 and allow_origins[0] == "*")
app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    # Browsers disallow credentials with "*"; use regex echo when fully open.
    allow_credentials=not allow_all,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_origin_regex=".*" if allow_all else None,
)

# ----- Startup -----
@app.on_event("startup")
def _startup():
    """Create the key-value table on startup."""
    try:
        init_db()
        logger.info("Startup complete, settings storage initialized.")
    except Exception:
        logger.exception("DB init failed during startup; settings fall back to defaults.")

# ----- Root -----
@app.get("/", include_in_schema=False, response_class=HTMLResponse, response_model=None)
def root() -> Response:
    return HTMLResponse(LANDING_HTML)

# ----- System -----
@app.get("/health", tags=["System"])
def health() -> Dict[str, Any]:
    db_ok = True
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1")).scalar()
    except Exception:
        db_ok = False
    return {
        "ok": True,
        "version": API_VERSION,
        "db_ok": db_ok,
        "features": [
            "bond_fee_estimator",
            "pga_multiplier",
            "quick_calculator",
            "admin_settings",
        ],
    }

# ----- Dev entrypoint -----
if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run("seb_mvp.api.main:app", host="0.0.0.0", port=port, reload=True)
