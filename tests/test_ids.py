from datetime import date

from pharmaqms.ids import new_display_number, new_id, year_component


def test_new_id_unique_within_a_burst():
    ids = {new_id("DEV") for _ in range(500)}
    assert len(ids) == 500
    assert all(i.startswith("DEV-") for i in ids)


def test_new_id_without_suffix():
    assert new_id("LOG", with_suffix=False).count("-") in (1, 2)


def test_display_number_formats():
    today = date(2025, 3, 1)
    assert new_display_number("CAPA", 0, offset=101, today=today) == "CAPA-25-101"
    assert new_display_number("D", 4, offset=501, sep="", today=today) == "D25-505"
    assert new_display_number("IA", 1, year_digits=4, width=2, today=today) == "IA-2025-02"
    assert new_display_number("IPQC", 0, width=4, today=today) == "IPQC-25-0001"
    assert new_display_number("MAT", 9, year_digits=0, width=3) == "MAT-010"


def test_year_component():
    assert year_component(date(2031, 1, 1)) == "31"
    assert year_component(date(2031, 1, 1), digits=4) == "2031"
