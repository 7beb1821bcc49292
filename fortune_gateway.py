# fortune_gateway.py
# 八字 → AI 命理分析（偏財運）與開運號碼 (OpenAI v1)

import json
import logging
import os
from dataclasses import dataclass
from datetime import date

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from bazi_calendar import (
    FourPillars, MarkSixCandidate, DEFAULT_DRAW_WEEKDAYS, DEFAULT_CONVENTION,
    BoundaryConvention, parse_weekdays,
)

logger = logging.getLogger("fortune_gateway")

DEFAULT_MODEL = "gpt-4o-mini"
PIAN_CAI_LEVELS = ("極強", "旺相", "中平", "偏弱", "極弱")
LUCKY_NUMBER_COUNT = 7
LUCKY_NUMBER_MIN, LUCKY_NUMBER_MAX = 1, 49

# -------------------------
# 錯誤
# -------------------------
class AnalysisGatewayError(RuntimeError):
    """AI 呼叫失敗或回覆內容無法使用。"""

class AnalysisGatewayNotConfigured(AnalysisGatewayError):
    """未設定 OPENAI_API_KEY。"""

# -------------------------
# 設定（啟動時建立一次，明確傳入）
# -------------------------
@dataclass(frozen=True)
class GatewayConfig:
    api_key: str | None = None
    model: str = DEFAULT_MODEL
    temperature: float = 0.7
    draw_weekdays: frozenset = DEFAULT_DRAW_WEEKDAYS
    convention: BoundaryConvention = DEFAULT_CONVENTION

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key)

    @classmethod
    def from_env(cls, environ=None) -> "GatewayConfig":
        env = os.environ if environ is None else environ
        try:
            temperature = float(env.get("OPENAI_TEMPERATURE", "0.7"))
        except ValueError:
            logger.warning("OPENAI_TEMPERATURE is not a number; using 0.7")
            temperature = 0.7
        return cls(
            api_key=env.get("OPENAI_API_KEY") or None,
            model=env.get("OPENAI_MODEL") or DEFAULT_MODEL,
            temperature=temperature,
            draw_weekdays=parse_weekdays(env.get("MARKSIX_DRAW_WEEKDAYS")),
            convention=BoundaryConvention.from_name(env.get("BAZI_BOUNDARY_CONVENTION")),
        )

def build_client(config: GatewayConfig):
    """OpenAI 用戶端。沒有 API key 時回傳 None（AI 端點會回 503）。"""
    if not config.has_api_key:
        logger.info("OPENAI_API_KEY not set; AI analysis disabled.")
        return None
    from openai import OpenAI  # openai>=1.x
    return OpenAI(api_key=config.api_key)

# -------------------------
# 回覆結構
# -------------------------
class BaziAnalysis(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    element_balance: str = Field(alias="elementBalance")
    summary: str
    pian_cai_strength: str = Field(alias="pianCaiStrength")
    pian_cai_analysis: str = Field(alias="pianCaiAnalysis")

class FortuneResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    numbers: list[int]
    betting_time: str = Field(alias="bettingTime")
    auspicious_date: str = Field(alias="auspiciousDate")
    explanation: str

    @field_validator("numbers")
    @classmethod
    def _check_numbers(cls, v: list[int]) -> list[int]:
        if len(v) != LUCKY_NUMBER_COUNT:
            raise ValueError(f"expected {LUCKY_NUMBER_COUNT} numbers, got {len(v)}")
        for n in v:
            if not (LUCKY_NUMBER_MIN <= n <= LUCKY_NUMBER_MAX):
                raise ValueError(f"number out of range 1-49: {n}")
        return v

# -------------------------
# 提示詞
# -------------------------
ANALYSIS_SYSTEM = (
    "你是一位專業的八字命理大師。你會收到已排好的四柱（請勿重新排盤）。"
    "請以繁體中文回覆，語氣審慎，以建議代替斷言。只輸出 JSON 物件。"
)

FORTUNE_SYSTEM = (
    "你是一位精通萬年曆與八字的命理師。候選攪珠日與其日柱已由萬年曆算好，請直接採用，勿自行推算。"
    "請以繁體中文回覆，只輸出 JSON 物件。"
)

def _pillar_lines(fp: FourPillars) -> str:
    return (f"年柱：{fp.year_pillar}\n月柱：{fp.month_pillar}\n"
            f"日柱：{fp.day_pillar}\n時柱：{fp.hour_pillar}")

def build_analysis_prompt(fp: FourPillars) -> str:
    levels = "/".join(PIAN_CAI_LEVELS)
    return (
        "請深入分析以下四柱命盤的「偏財運」（橫財運）：\n"
        f"{_pillar_lines(fp)}\n\n"
        "請提供：\n"
        "- elementBalance: 五行能量比例。\n"
        "- summary: 命盤精簡批註。\n"
        f"- pianCaiStrength: 偏財運強弱等級（{levels}）。\n"
        "- pianCaiAnalysis: 關於偏財運與命局互動（生剋合沖）的詳細解釋。\n\n"
        "請以 JSON 格式回傳。"
    )

def build_fortune_prompt(fp: FourPillars, candidates: list[MarkSixCandidate], today: date) -> str:
    if candidates:
        cand_lines = "\n".join(f"- {c.date} ({c.day_of_week}) {c.day_pillar}日" for c in candidates)
    else:
        cand_lines = "- （未來七天內沒有攪珠日）"
    return (
        f"今天是 {today.isoformat()}。以下是未來七天內六合彩可能的攪珠日及其日柱：\n"
        f"{cand_lines}\n\n"
        f"命主四柱：\n{_pillar_lines(fp)}\n\n"
        "請結合命主偏財運特徵，從候選日中選出建議日期，並計算 7 個開運號碼。\n"
        "請回傳：\n"
        "- numbers: 7 個 1-49 的整數。\n"
        "- bettingTime: 該日最適合命主的投注時辰。\n"
        "- auspiciousDate: 建議日期（必須包含日期與當日干支，例如：2024-10-15 (壬子日)）。\n"
        "- explanation: 號碼與時辰的命理選擇邏輯。\n\n"
        "請以 JSON 格式回傳。"
    )

# -------------------------
# 呼叫
# -------------------------
def _complete_json(client, config: GatewayConfig, system: str, user: str) -> dict:
    if client is None:
        raise AnalysisGatewayNotConfigured("OPENAI_API_KEY is not configured")
    try:
        resp = client.chat.completions.create(
            model=config.model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            temperature=config.temperature,
            response_format={"type": "json_object"},
        )
        text = resp.choices[0].message.content
    except Exception as e:
        logger.exception("AI request failed")
        raise AnalysisGatewayError(f"AI request failed: {e}") from e

    if not text:
        raise AnalysisGatewayError("AI returned an empty reply")
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise AnalysisGatewayError(f"AI reply is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise AnalysisGatewayError("AI reply is not a JSON object")
    return data

def analyze_pillars(client, config: GatewayConfig, fp: FourPillars) -> BaziAnalysis:
    data = _complete_json(client, config, ANALYSIS_SYSTEM, build_analysis_prompt(fp))
    try:
        return BaziAnalysis.model_validate(data)
    except ValidationError as e:
        raise AnalysisGatewayError(f"AI analysis reply is incomplete: {e}") from e

def lucky_numbers(client, config: GatewayConfig, fp: FourPillars,
                  candidates: list[MarkSixCandidate], today: date) -> FortuneResult:
    data = _complete_json(client, config, FORTUNE_SYSTEM, build_fortune_prompt(fp, candidates, today))
    try:
        return FortuneResult.model_validate(data)
    except ValidationError as e:
        raise AnalysisGatewayError(f"AI fortune reply is invalid: {e}") from e
