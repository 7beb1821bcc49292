from datetime import date

import pytest

fastapi = pytest.importorskip("fastapi", reason="fastapi not installed")
pytest.importorskip("httpx", reason="httpx not installed (required for TestClient)")

from fastapi.testclient import TestClient

from api_server import create_app
from fortune_gateway import GatewayConfig
from test_fortune_gateway import ANALYSIS_REPLY, FORTUNE_REPLY, FakeClient

TODAY = date(2024, 10, 14)


def _client(reply=None, error=None, config=None, ai=True):
    fake = FakeClient(reply, error) if ai else None
    app = create_app(
        config=config or GatewayConfig(api_key="sk-test" if ai else None),
        client=fake,
        today_fn=lambda: TODAY,
    )
    return TestClient(app), fake


def test_health():
    client, _ = _client(ai=False)
    assert client.get("/health").json() == {"ok": True}


def test_convert_post_and_get():
    client, _ = _client(ai=False)
    r = client.post("/api/bazi/convert", json={"birth_date": "2024-10-15", "birth_time": "12:00"})
    assert r.status_code == 200
    body = r.json()
    assert body["pillars"]["day_pillar"] == "壬子"
    assert body["degraded"] is False

    r = client.get("/api/bazi/convert", params={
        "birth_date": "2024-10-15", "birth_time": "23:30", "convention": "next_day",
    })
    assert r.status_code == 200
    assert r.json()["pillars"]["day_pillar"] == "癸丑"


@pytest.mark.parametrize("payload", [
    {"birth_date": "2024-10-32", "birth_time": "12:00"},
    {"birth_date": "2024-10-15", "birth_time": "25:00"},
    {"birth_date": "2024-10-15", "birth_time": "12:00", "convention": "bogus"},
])
def test_convert_invalid_input(payload):
    client, _ = _client(ai=False)
    assert client.post("/api/bazi/convert", json=payload).status_code == 400


def test_validate_endpoint():
    client, _ = _client(ai=False)
    ok = client.post("/api/bazi/validate", json={"date": "2024-10-15", "day_pillar": "壬子"}).json()
    assert ok["is_valid"] is True
    assert ok["status"] == "confirmed"
    assert ok["message"] is None

    bad = client.post("/api/bazi/validate", json={"date": "2024-10-15", "day_pillar": "乙巳"}).json()
    assert bad["is_valid"] is False
    assert bad["correct_pillar"] == "壬子"
    assert "乙巳" in bad["message"]


def test_candidates_endpoint_uses_injected_clock():
    client, _ = _client(ai=False)
    body = client.get("/api/marksix/candidates").json()
    assert body["today"] == "2024-10-14"
    assert [c["date"] for c in body["candidates"]] == [
        "2024-10-15", "2024-10-17", "2024-10-19", "2024-10-20",
    ]


def test_candidates_endpoint_respects_configured_schedule():
    client, _ = _client(ai=False, config=GatewayConfig(draw_weekdays=frozenset({2})))
    body = client.get("/api/marksix/candidates").json()
    assert [c["day_of_week"] for c in body["candidates"]] == ["週三"]


def test_analyze_solar_mode():
    client, fake = _client(ANALYSIS_REPLY)
    r = client.post("/api/bazi/analyze", json={
        "name": "張小明", "input_mode": "solar",
        "birth_date": "2024-10-15", "birth_time": "12:00",
    })
    assert r.status_code == 200
    body = r.json()
    profile = body["profile"]
    assert (profile["year_pillar"], profile["day_pillar"]) == ("甲辰", "壬子")
    assert profile["bazi_analysis"]["pian_cai_strength"] == "旺相"
    assert body["info"] == "已使用本地高精度萬年曆數據庫完成排盤。"
    assert len(fake.calls) == 1


def test_analyze_solar_mode_missing_time():
    client, fake = _client(ANALYSIS_REPLY)
    r = client.post("/api/bazi/analyze", json={
        "name": "張小明", "input_mode": "solar", "birth_date": "2024-10-15",
    })
    assert r.status_code == 400
    assert fake.calls == []


def test_analyze_bazi_mode_with_matching_verify_date():
    client, _ = _client(ANALYSIS_REPLY)
    r = client.post("/api/bazi/analyze", json={
        "name": "李四", "input_mode": "bazi",
        "year_pillar": "甲辰", "month_pillar": "甲戌", "day_pillar": "壬子", "hour_pillar": "丙午",
        "verify_date": "2024-10-15",
    })
    assert r.status_code == 200
    profile = r.json()["profile"]
    assert profile["birth_date"] == "2024-10-15"
    assert profile["precision"] is None


def test_analyze_bazi_mode_mismatch_stops_before_ai():
    client, fake = _client(ANALYSIS_REPLY)
    r = client.post("/api/bazi/analyze", json={
        "name": "李四", "input_mode": "bazi",
        "year_pillar": "甲辰", "month_pillar": "甲戌", "day_pillar": "乙巳", "hour_pillar": "丙午",
        "verify_date": "2024-10-15",
    })
    assert r.status_code == 400
    detail = r.json()["detail"]
    assert "乙巳" in detail["message"]
    assert detail["correct_pillar"] == "壬子"
    assert fake.calls == []


def test_analyze_bazi_mode_rejects_non_cycle_pillar():
    client, _ = _client(ANALYSIS_REPLY)
    r = client.post("/api/bazi/analyze", json={
        "name": "李四", "input_mode": "bazi",
        "year_pillar": "甲丑", "month_pillar": "甲戌", "day_pillar": "壬子", "hour_pillar": "丙午",
    })
    assert r.status_code == 400


def test_analyze_without_ai():
    client, _ = _client(ai=False)
    r = client.post("/api/bazi/analyze", json={
        "name": "王五", "birth_date": "2000-01-01", "birth_time": "12:00", "include_ai": False,
    })
    assert r.status_code == 200
    assert r.json()["profile"]["bazi_analysis"] is None


def test_analyze_ai_not_configured():
    client, _ = _client(ai=False)
    r = client.post("/api/bazi/analyze", json={
        "name": "王五", "birth_date": "2000-01-01", "birth_time": "12:00",
    })
    assert r.status_code == 503


def test_analyze_ai_failure():
    client, _ = _client(error=ConnectionError("boom"))
    r = client.post("/api/bazi/analyze", json={
        "name": "王五", "birth_date": "2000-01-01", "birth_time": "12:00",
    })
    assert r.status_code == 502


def test_lucky_numbers_endpoint():
    client, fake = _client(FORTUNE_REPLY)
    r = client.post("/api/fortune/lucky-numbers", json={
        "year_pillar": "甲辰", "month_pillar": "甲戌", "day_pillar": "壬子", "hour_pillar": "丙午",
    })
    assert r.status_code == 200
    body = r.json()
    assert body["fortune"]["numbers"] == FORTUNE_REPLY["numbers"]
    assert body["candidates"][0] == {"date": "2024-10-15", "day_of_week": "週二", "day_pillar": "壬子"}
    assert "2024-10-15 (週二) 壬子日" in fake.calls[0]["messages"][1]["content"]


def test_lucky_numbers_rejects_invalid_pillar():
    client, fake = _client(FORTUNE_REPLY)
    r = client.post("/api/fortune/lucky-numbers", json={
        "year_pillar": "甲辰", "month_pillar": "甲戌", "day_pillar": "XX", "hour_pillar": "丙午",
    })
    assert r.status_code == 400
    assert fake.calls == []


def test_debug_env_hides_key():
    client, _ = _client(ai=False, config=GatewayConfig(api_key="sk-1234567890"))
    body = client.get("/debug/env").json()
    assert body["has_api_key"] is True
    assert body["key_preview"] == "sk-1234..."
