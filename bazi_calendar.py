# bazi_calendar.py
# 公曆 → 八字四柱 + 日柱校驗 + 六合彩攪珠候選日
# 0.3: shared boundary convention (sect) for primary and noon-fallback paths

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum

from lunar_python import Solar  # pip install lunar-python

logger = logging.getLogger("bazi_calendar")

DATE_FMT = "%Y-%m-%d"
TIME_FMTS = ("%H:%M", "%H:%M:%S")

MIN_YEAR = 1900
MAX_YEAR = 2100

NOON = 12

# -------------------------
# 錯誤類型
# -------------------------
class InvalidInput(ValueError):
    """日期/時間/干支字串格式錯誤。不可在本地恢復，直接拋給呼叫端。"""

class CalendarComputationDegraded(RuntimeError):
    """主路徑排盤失敗。只在模組內部使用，對外以 precision="noon_fallback" 表示。"""

# -------------------------
# 干支表
# -------------------------
GAN_LIST = ["甲","乙","丙","丁","戊","己","庚","辛","壬","癸"]
ZHI_LIST = ["子","丑","寅","卯","辰","巳","午","未","申","酉","戌","亥"]

def build_sexagenary_cycle() -> list[str]:
    pairs = []
    si, zi = 0, 0
    for _ in range(60):
        pairs.append(GAN_LIST[si] + ZHI_LIST[zi])
        si = (si + 1) % 10
        zi = (zi + 1) % 12
    return pairs
SEXAGENARY_60 = build_sexagenary_cycle()
_SEXAGENARY_SET = frozenset(SEXAGENARY_60)

def is_valid_pillar(value) -> bool:
    return isinstance(value, str) and value in _SEXAGENARY_SET

# -------------------------
# 晚子時換日規則
# -------------------------
class BoundaryConvention(Enum):
    """
    23:00~23:59（晚子時）的日柱歸屬。值為 lunar-python EightChar 的 sect。
      - LATE_ZI_SAME_DAY (sect 2): 日柱算當天，時柱取次日子時
      - LATE_ZI_NEXT_DAY (sect 1): 日柱、時柱都算次日
    """
    LATE_ZI_NEXT_DAY = 1
    LATE_ZI_SAME_DAY = 2

    @property
    def sect(self) -> int:
        return self.value

    @property
    def rolls_day_pillar(self) -> bool:
        return self is BoundaryConvention.LATE_ZI_NEXT_DAY

    @classmethod
    def from_name(cls, name: str | None) -> "BoundaryConvention":
        if name is None or name == "":
            return DEFAULT_CONVENTION
        key = str(name).strip().lower().replace("-", "_")
        aliases = {
            "same_day": cls.LATE_ZI_SAME_DAY, "2": cls.LATE_ZI_SAME_DAY,
            "late_zi_same_day": cls.LATE_ZI_SAME_DAY,
            "next_day": cls.LATE_ZI_NEXT_DAY, "1": cls.LATE_ZI_NEXT_DAY,
            "late_zi_next_day": cls.LATE_ZI_NEXT_DAY,
        }
        if key not in aliases:
            raise InvalidInput(f"unknown boundary convention: {name}")
        return aliases[key]

DEFAULT_CONVENTION = BoundaryConvention.LATE_ZI_SAME_DAY

# -------------------------
# 資料結構
# -------------------------
@dataclass(frozen=True)
class SolarDateTime:
    year: int
    month: int
    day: int
    hour: int = NOON
    minute: int = 0

    def __post_init__(self):
        _check_ranges(self.year, self.month, self.day, self.hour, self.minute)

    @classmethod
    def from_date(cls, d: date, hour: int = NOON, minute: int = 0) -> "SolarDateTime":
        return cls(d.year, d.month, d.day, hour, minute)

    def as_date(self) -> date:
        return date(self.year, self.month, self.day)

    def isoformat(self) -> str:
        return f"{self.year:04d}-{self.month:02d}-{self.day:02d} {self.hour:02d}:{self.minute:02d}"

@dataclass(frozen=True)
class FourPillars:
    year_pillar: str
    month_pillar: str
    day_pillar: str
    hour_pillar: str
    precision: str = "exact"          # "exact" | "noon_fallback"
    convention: BoundaryConvention = DEFAULT_CONVENTION

    @property
    def degraded(self) -> bool:
        return self.precision != "exact"

    def as_tuple(self) -> tuple[str, str, str, str]:
        return (self.year_pillar, self.month_pillar, self.day_pillar, self.hour_pillar)

    def to_dict(self) -> dict:
        return {
            "year_pillar": self.year_pillar,
            "month_pillar": self.month_pillar,
            "day_pillar": self.day_pillar,
            "hour_pillar": self.hour_pillar,
            "precision": self.precision,
            "convention": self.convention.name.lower(),
        }

@dataclass(frozen=True)
class MarkSixCandidate:
    date: str
    day_of_week: str
    day_pillar: str

    def to_dict(self) -> dict:
        return {"date": self.date, "day_of_week": self.day_of_week, "day_pillar": self.day_pillar}

@dataclass(frozen=True)
class DayPillarCheck:
    """日柱校驗結果。status="unavailable" 表示萬年曆計算失敗（放行）。"""
    status: str                      # "confirmed" | "unavailable"
    claimed_pillar: str
    actual_pillar: str | None = None
    matches: bool | None = None
    reason: str | None = field(default=None, compare=False)

    @property
    def is_valid(self) -> bool:
        if self.status == "unavailable":
            return True
        return bool(self.matches)

# -------------------------
# 第1步: 輸入解析
# -------------------------
def _check_ranges(year: int, month: int, day: int, hour: int, minute: int) -> None:
    if not (MIN_YEAR <= year <= MAX_YEAR):
        raise InvalidInput(f"年份需在 {MIN_YEAR}-{MAX_YEAR} 範圍內: {year}")
    if not (0 <= hour <= 23):
        raise InvalidInput(f"小時需在 0-23 範圍內: {hour}")
    if not (0 <= minute <= 59):
        raise InvalidInput(f"分鐘需在 0-59 範圍內: {minute}")
    try:
        date(year, month, day)
    except (TypeError, ValueError) as e:
        raise InvalidInput(f"無效日期 {year}-{month}-{day}: {e}") from e

def parse_date(date_str: str) -> date:
    try:
        return datetime.strptime(str(date_str).strip(), DATE_FMT).date()
    except ValueError as e:
        raise InvalidInput(f"日期格式需為 YYYY-MM-DD: {date_str!r}") from e

def parse_time(time_str: str) -> tuple[int, int]:
    raw = str(time_str).strip()
    for fmt in TIME_FMTS:
        try:
            t = datetime.strptime(raw, fmt)
            return t.hour, t.minute
        except ValueError:
            continue
    raise InvalidInput(f"時間格式需為 HH:MM（24 小時制）: {time_str!r}")

def parse_solar(date_str: str, time_str: str) -> SolarDateTime:
    d = parse_date(date_str)
    hour, minute = parse_time(time_str)
    return SolarDateTime(d.year, d.month, d.day, hour, minute)

def _as_solar_noon(value) -> SolarDateTime:
    if isinstance(value, SolarDateTime):
        return SolarDateTime(value.year, value.month, value.day, NOON, 0)
    if isinstance(value, datetime):
        value = value.date()
    if isinstance(value, date):
        return SolarDateTime.from_date(value)
    return SolarDateTime.from_date(parse_date(value))

# -------------------------
# 第2步: 四柱（主路徑：EightChar + sect）
# -------------------------
def _eight_char(sdt: SolarDateTime, convention: BoundaryConvention):
    solar = Solar.fromYmdHms(sdt.year, sdt.month, sdt.day, sdt.hour, sdt.minute, 0)
    ec = solar.getLunar().getEightChar()
    ec.setSect(convention.sect)
    return ec

def _require_complete(pillars: tuple) -> None:
    for p in pillars:
        if not (isinstance(p, str) and len(p) == 2):
            raise CalendarComputationDegraded(f"incomplete pillar: {p!r}")

def _primary_pillars(sdt: SolarDateTime, convention: BoundaryConvention) -> FourPillars:
    ec = _eight_char(sdt, convention)
    pillars = (ec.getYear(), ec.getMonth(), ec.getDay(), ec.getTime())
    _require_complete(pillars)
    return FourPillars(*pillars, precision="exact", convention=convention)

# -------------------------
# 第3步: 降級方案（固定正午）
# -------------------------
def _noon_fallback_pillars(sdt: SolarDateTime, convention: BoundaryConvention) -> FourPillars:
    """
    時間固定為 12:00 重新排盤。年/月/日柱保持正確；時柱只是近似值（午時）。
    晚子時換日規則與主路徑共用同一個 convention。
    """
    lunar = Solar.fromYmdHms(sdt.year, sdt.month, sdt.day, NOON, 0, 0).getLunar()
    day_pillar = lunar.getDayInGanZhi()
    if convention.rolls_day_pillar and sdt.hour == 23:
        nxt = sdt.as_date() + timedelta(days=1)
        day_pillar = Solar.fromYmdHms(nxt.year, nxt.month, nxt.day, NOON, 0, 0).getLunar().getDayInGanZhi()
    pillars = (
        lunar.getYearInGanZhiExact(),
        lunar.getMonthInGanZhiExact(),
        day_pillar,
        lunar.getTimeInGanZhi(),
    )
    return FourPillars(*pillars, precision="noon_fallback", convention=convention)

def convert(sdt: SolarDateTime, convention: BoundaryConvention = DEFAULT_CONVENTION) -> FourPillars:
    """
    公曆日期時間 → 四柱。
    主路徑失敗（拋錯或時柱不完整）時改用正午降級計算，不會向呼叫端拋出計算錯誤。
    """
    try:
        return _primary_pillars(sdt, convention)
    except Exception as e:
        logger.warning("primary conversion failed for %s (%s); using noon fallback", sdt.isoformat(), e)
    return _noon_fallback_pillars(sdt, convention)

def convert_strings(date_str: str, time_str: str,
                    convention: BoundaryConvention = DEFAULT_CONVENTION) -> FourPillars:
    return convert(parse_solar(date_str, time_str), convention)

# -------------------------
# 第4步: 日柱校驗
# -------------------------
def check_day_pillar(value, claimed_pillar: str) -> DayPillarCheck:
    """以指定日期正午重算日柱（正午避開子時換日問題），與 claimed_pillar 逐字比對。"""
    sdt = _as_solar_noon(value)
    try:
        actual = _eight_char(sdt, DEFAULT_CONVENTION).getDay()
    except Exception as e:
        logger.warning("day pillar check unavailable for %s: %s", sdt.isoformat(), e)
        return DayPillarCheck(status="unavailable", claimed_pillar=claimed_pillar, reason=str(e))
    return DayPillarCheck(
        status="confirmed",
        claimed_pillar=claimed_pillar,
        actual_pillar=actual,
        matches=(actual == claimed_pillar),
    )

def validate_day_pillar(value, claimed_pillar: str) -> bool:
    return check_day_pillar(value, claimed_pillar).is_valid

# -------------------------
# 第5步: 六合彩攪珠候選日
# -------------------------
# date.weekday(): 0=週一 ... 6=週日
WEEKDAY_LABELS = ["週一", "週二", "週三", "週四", "週五", "週六", "週日"]
WEEKDAY_NAMES = {
    "mon": 0, "tue": 1, "wed": 2, "thu": 3, "fri": 4, "sat": 5, "sun": 6,
}
# 香港六合彩通常在週二、四、六或日
DEFAULT_DRAW_WEEKDAYS = frozenset({1, 3, 5, 6})
DEFAULT_HORIZON_DAYS = 7

def parse_weekdays(spec: str | None) -> frozenset:
    """"tue,thu,sat,sun" → {1, 3, 5, 6}。空值回傳預設攪珠日。"""
    if not spec:
        return DEFAULT_DRAW_WEEKDAYS
    out = set()
    for token in spec.split(","):
        key = token.strip().lower()[:3]
        if not key:
            continue
        if key not in WEEKDAY_NAMES:
            raise InvalidInput(f"unknown weekday: {token.strip()}")
        out.add(WEEKDAY_NAMES[key])
    return frozenset(out) if out else DEFAULT_DRAW_WEEKDAYS

def upcoming_draw_dates(today, draw_weekdays=DEFAULT_DRAW_WEEKDAYS,
                        horizon_days: int = DEFAULT_HORIZON_DAYS) -> list[MarkSixCandidate]:
    if isinstance(today, datetime):
        today = today.date()
    candidates = []
    for i in range(1, horizon_days + 1):
        target = today + timedelta(days=i)
        if target.weekday() not in draw_weekdays:
            continue
        fp = convert(SolarDateTime.from_date(target))
        candidates.append(MarkSixCandidate(
            date=target.isoformat(),
            day_of_week=WEEKDAY_LABELS[target.weekday()],
            day_pillar=fp.day_pillar,
        ))
    return candidates

# -------------------------
# 示範
# -------------------------
if __name__ == "__main__":
    fp = convert_strings("2024-10-15", "12:00")
    print("[Four Pillars]")
    print(f" Year : {fp.year_pillar}")
    print(f" Month: {fp.month_pillar}")
    print(f" Day  : {fp.day_pillar}")
    print(f" Hour : {fp.hour_pillar}  ({fp.precision})")

    print("\n[Day Pillar Check]")
    print(" 2024-10-15 壬子 :", validate_day_pillar("2024-10-15", "壬子"))
    print(" 2024-10-15 乙巳 :", validate_day_pillar("2024-10-15", "乙巳"))

    print("\n[Mark Six Candidates]")
    for c in upcoming_draw_dates(date.today()):
        print(f" {c.date} {c.day_of_week} {c.day_pillar}日")
