# tests_golden.py
# 簡易黃金測試：對幾組可信的輸入，檢查年/月/日/時柱是否與萬年曆完全一致。
# 直接執行: python tests_golden.py  /  pytest 也會收集 test_golden_cases

import sys
from bazi_calendar import BoundaryConvention, convert_strings

if sys.platform == "win32":
    # Windows 主控台強制 UTF-8 輸出
    try:
        sys.stdout.reconfigure(encoding="utf-8")
        sys.stderr.reconfigure(encoding="utf-8")
    except AttributeError:
        pass

GOLDEN_CASES = [
    # (name, date, time, convention, expected)
    ("2024-10-15 noon", "2024-10-15", "12:00", BoundaryConvention.LATE_ZI_SAME_DAY,
     ("甲辰", "甲戌", "壬子", "丙午")),
    # 立春前 → 仍屬 1999 己卯年；小寒前 → 子月
    ("2000-01-01 noon", "2000-01-01", "12:00", BoundaryConvention.LATE_ZI_SAME_DAY,
     ("己卯", "丙子", "戊午", "戊午")),
    ("1949-10-01 15:00", "1949-10-01", "15:00", BoundaryConvention.LATE_ZI_SAME_DAY,
     ("己丑", "癸酉", "甲子", "壬申")),
    # 晚子時：日柱算當天，時柱取次日（癸日）子時
    ("2024-10-15 23:30 same_day", "2024-10-15", "23:30", BoundaryConvention.LATE_ZI_SAME_DAY,
     ("甲辰", "甲戌", "壬子", "壬子")),
    ("2024-10-15 23:30 next_day", "2024-10-15", "23:30", BoundaryConvention.LATE_ZI_NEXT_DAY,
     ("甲辰", "甲戌", "癸丑", "壬子")),
    ("2024-10-16 00:30", "2024-10-16", "00:30", BoundaryConvention.LATE_ZI_SAME_DAY,
     ("甲辰", "甲戌", "癸丑", "壬子")),
]

def check_case(name: str, date_str: str, time_str: str, convention, expected) -> bool:
    try:
        fp = convert_strings(date_str, time_str, convention)
        got = fp.as_tuple()
        ok = (got == expected and fp.precision == "exact")
        status = "PASS ✅" if ok else "FAIL ❌"
        print(f"[{name}] {status}  got={got} ({fp.precision}), expected={expected}")
        return ok
    except Exception as e:
        print(f"[{name}] ERROR ❌  {e}")
        return False

def run_all() -> bool:
    all_ok = True
    for case in GOLDEN_CASES:
        all_ok &= check_case(*case)
    return all_ok

def test_golden_cases():
    assert run_all()

def main():
    print("=== 萬年曆排盤黃金測試 ===\n")
    all_ok = run_all()

    print("\n=== SUMMARY ===")
    if all_ok:
        print("🎉 ALL PASS ✅")
    else:
        print("❌ SOME FAIL - 請以失敗案例為準檢查 lunar-python 版本或換日規則。")
    return all_ok

if __name__ == "__main__":
    success = main()
    sys.exit(0 if success else 1)
