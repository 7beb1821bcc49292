# api_server.py
import os
import logging
from datetime import date
from pathlib import Path
from typing import Annotated, Literal

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, ConfigDict

# =========================
# ENV 載入 (dotenv + 手動備援)
# =========================
def _manual_load_env_from(path: Path):
    try:
        text = path.read_text(encoding="utf-8")
    except OSError:
        return False
    changed = False
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" in line:
            k, v = line.split("=", 1)
            k = k.strip()
            v = v.strip().strip('"').strip("'")
            if k and v:
                os.environ.setdefault(k, v)
                changed = True
    if changed:
        print(f"[env] manually loaded from: {path}")
    return changed

def _ensure_env_loaded():
    try:
        from dotenv import load_dotenv  # pip install python-dotenv
        p = Path(__file__).with_name(".env")
        if p.exists():
            load_dotenv(dotenv_path=p, override=False, encoding="utf-8")
            print(f"[env] dotenv loaded: {p}")
    except Exception as e:
        print(f"[env] python-dotenv not available or failed: {e}")

    if not os.environ.get("OPENAI_API_KEY"):
        for candidate in (".env", "OPENAI_API_KEY.env"):
            p = Path(__file__).with_name(candidate)
            if p.exists() and _manual_load_env_from(p):
                break

    print(f"[env] has OPENAI_API_KEY? {bool(os.environ.get('OPENAI_API_KEY'))}")

_ensure_env_loaded()

# --- 日誌基本設定 ---
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("bazi_api")

from bazi_calendar import (
    InvalidInput, BoundaryConvention, FourPillars,
    convert_strings, check_day_pillar, is_valid_pillar, upcoming_draw_dates,
)
from fortune_gateway import (
    GatewayConfig, AnalysisGatewayError, AnalysisGatewayNotConfigured,
    build_client, analyze_pillars, lucky_numbers,
)

LOCAL_CALENDAR_INFO = "已使用本地高精度萬年曆數據庫完成排盤。"

# CORS (開發階段允許 *，正式環境限制網域)
def get_cors_origins():
    """依環境決定 CORS 設定"""
    env = os.environ.get("ENV", "development")
    if env == "production":
        allowed_origins = os.environ.get("ALLOWED_ORIGINS", "https://yourdomain.com").split(",")
        return [origin.strip() for origin in allowed_origins]
    return ["*"]

# -------------------------
# 請求結構
# -------------------------
Pillar = Annotated[str, Field(min_length=2, max_length=2)]

class ConvertRequest(BaseModel):
    birth_date: str                  # "YYYY-MM-DD"
    birth_time: str                  # "HH:MM" (24h)
    convention: str | None = None    # "same_day" | "next_day"

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"birth_date": "2024-10-15", "birth_time": "12:00", "convention": "same_day"}
        }
    )

class ValidateRequest(BaseModel):
    date: str                        # "YYYY-MM-DD"
    day_pillar: Pillar

class PillarsIn(BaseModel):
    year_pillar: Pillar
    month_pillar: Pillar
    day_pillar: Pillar
    hour_pillar: Pillar

    def to_four_pillars(self) -> FourPillars:
        return FourPillars(self.year_pillar, self.month_pillar, self.day_pillar, self.hour_pillar)

class AnalyzeRequest(BaseModel):
    name: str = Field(min_length=1)
    input_mode: Literal["solar", "bazi"] = "solar"
    # solar 模式
    birth_date: str | None = None
    birth_time: str | None = None
    # bazi 模式
    year_pillar: str | None = None
    month_pillar: str | None = None
    day_pillar: str | None = None
    hour_pillar: str | None = None
    verify_date: str | None = None   # 選填：校驗日期
    include_ai: bool = True

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "name": "張小明",
                "input_mode": "solar",
                "birth_date": "1990-01-15",
                "birth_time": "08:30",
                "include_ai": True,
            }
        }
    )

# -------------------------
# helpers
# -------------------------
def _convention(app: FastAPI, name: str | None) -> BoundaryConvention:
    if name:
        return BoundaryConvention.from_name(name)
    return app.state.config.convention

def _require(value: str | None, label: str) -> str:
    if value is None or not value.strip():
        raise InvalidInput(f"缺少欄位: {label}")
    return value.strip()

def _manual_pillars(req: AnalyzeRequest) -> FourPillars:
    values = {}
    for key in ("year_pillar", "month_pillar", "day_pillar", "hour_pillar"):
        v = _require(getattr(req, key), key)
        if not is_valid_pillar(v):
            raise InvalidInput(f"無效干支 [{v}] ({key})")
        values[key] = v
    return FourPillars(**values)

def _gateway_http_error(e: AnalysisGatewayError) -> HTTPException:
    if isinstance(e, AnalysisGatewayNotConfigured):
        return HTTPException(status_code=503, detail="AI 服務未設定 (OPENAI_API_KEY)")
    return HTTPException(status_code=502, detail=f"AI 分析失敗: {e}")

# -------------------------
# app factory
# -------------------------
def create_app(config: GatewayConfig | None = None, client=None, today_fn=date.today) -> FastAPI:
    """
    設定與 OpenAI 用戶端在啟動時建立一次，存放在 app.state，
    再明確傳給 fortune_gateway 的函式。
    """
    config = config or GatewayConfig.from_env()
    if client is None:
        client = build_client(config)

    app = FastAPI(title="Mark Six Bazi API", version="0.3")
    app.state.config = config
    app.state.ai_client = client
    app.state.today_fn = today_fn

    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    def health():
        return {"ok": True}

    @app.post("/api/bazi/convert")
    def convert_endpoint(req: ConvertRequest, request: Request):
        try:
            fp = convert_strings(req.birth_date, req.birth_time,
                                 _convention(request.app, req.convention))
        except InvalidInput as e:
            raise HTTPException(status_code=400, detail=f"輸入錯誤: {e}")
        return {"ok": True, "pillars": fp.to_dict(), "degraded": fp.degraded}

    # 瀏覽器 GET 測試用
    @app.get("/api/bazi/convert")
    def convert_get(birth_date: str, birth_time: str, request: Request, convention: str | None = None):
        req = ConvertRequest(birth_date=birth_date, birth_time=birth_time, convention=convention)
        return convert_endpoint(req, request)

    @app.post("/api/bazi/validate")
    def validate_endpoint(req: ValidateRequest):
        try:
            check = check_day_pillar(req.date, req.day_pillar)
        except InvalidInput as e:
            raise HTTPException(status_code=400, detail=f"輸入錯誤: {e}")
        message = None
        if check.status == "unavailable":
            message = "萬年曆暫時無法校驗此日期，已略過校驗。"
        elif not check.matches:
            message = f"所選日期與輸入的日柱 [{req.day_pillar}] 不符，請檢查輸入。"
        return {
            "ok": True,
            "is_valid": check.is_valid,
            "status": check.status,
            "correct_pillar": check.actual_pillar,
            "message": message,
        }

    @app.get("/api/marksix/candidates")
    def candidates_endpoint(request: Request):
        st = request.app.state
        today = st.today_fn()
        cands = upcoming_draw_dates(today, st.config.draw_weekdays)
        return {"ok": True, "today": today.isoformat(), "candidates": [c.to_dict() for c in cands]}

    @app.post("/api/bazi/analyze")
    def analyze_endpoint(req: AnalyzeRequest, request: Request):
        st = request.app.state
        info = None
        birth_date = req.birth_date or ""
        birth_time = req.birth_time or ""

        # 1) 排盤 / 手動四柱
        try:
            if req.input_mode == "solar":
                birth_date = _require(req.birth_date, "birth_date")
                birth_time = _require(req.birth_time, "birth_time")
                fp = convert_strings(birth_date, birth_time, st.config.convention)
                info = LOCAL_CALENDAR_INFO
            else:
                fp = _manual_pillars(req)
                birth_date = (req.verify_date or "").strip()
                if birth_date:
                    check = check_day_pillar(birth_date, fp.day_pillar)
                    if not check.is_valid:
                        raise HTTPException(status_code=400, detail={
                            "message": f"所選日期與輸入的日柱 [{fp.day_pillar}] 不符，請檢查輸入。",
                            "correct_pillar": check.actual_pillar,
                        })
        except InvalidInput as e:
            raise HTTPException(status_code=400, detail=f"輸入錯誤: {e}")

        # 2) AI 分析
        analysis = None
        if req.include_ai:
            try:
                analysis = analyze_pillars(st.ai_client, st.config, fp)
            except AnalysisGatewayError as e:
                raise _gateway_http_error(e)

        profile = {
            "name": req.name,
            "year_pillar": fp.year_pillar,
            "month_pillar": fp.month_pillar,
            "day_pillar": fp.day_pillar,
            "hour_pillar": fp.hour_pillar,
            "precision": fp.precision if req.input_mode == "solar" else None,
            "birth_date": birth_date or None,
            "birth_time": birth_time or None,
            "bazi_analysis": analysis.model_dump() if analysis else None,
        }
        return {"ok": True, "profile": profile, "info": info}

    @app.post("/api/fortune/lucky-numbers")
    def lucky_numbers_endpoint(req: PillarsIn, request: Request):
        st = request.app.state
        for v in (req.year_pillar, req.month_pillar, req.day_pillar, req.hour_pillar):
            if not is_valid_pillar(v):
                raise HTTPException(status_code=400, detail=f"輸入錯誤: 無效干支 [{v}]")
        today = st.today_fn()
        cands = upcoming_draw_dates(today, st.config.draw_weekdays)
        try:
            fortune = lucky_numbers(st.ai_client, st.config, req.to_four_pillars(), cands, today)
        except AnalysisGatewayError as e:
            raise _gateway_http_error(e)
        return {
            "ok": True,
            "fortune": fortune.model_dump(),
            "candidates": [c.to_dict() for c in cands],
            "ai_model": st.config.model,
        }

    # 正式環境停用 debug 端點
    if os.environ.get("ENV") != "production":
        @app.get("/debug/env")
        def debug_env(request: Request):
            cfg = request.app.state.config
            return {
                "has_api_key": cfg.has_api_key,
                "model": cfg.model,
                "key_preview": (cfg.api_key[:7] + "..." if cfg.api_key else None),
                "draw_weekdays": sorted(cfg.draw_weekdays),
                "convention": cfg.convention.name.lower(),
            }
    else:
        @app.get("/debug/env")
        def debug_env():
            return {"message": "Debug endpoint disabled in production"}

    return app

app = create_app()

# -------------------------
# Entrypoint
# -------------------------
if __name__ == "__main__":
    import uvicorn
    port = int(os.environ.get("PORT", "8000"))
    uvicorn.run("api_server:app", host="0.0.0.0", port=port, reload=True)
