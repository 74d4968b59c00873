from decimal import Decimal

from reckon.money import format_minor, per_km, percent_of, round_half_away, to_minor, vat_amount


def test_round_half_away_from_zero():
    assert round_half_away(Decimal("2.5")) == 3
    assert round_half_away(Decimal("-2.5")) == -3
    assert round_half_away(Decimal("2.4999")) == 2
    assert round_half_away(Decimal("0.5")) == 1


def test_vat_on_net_amount():
    assert vat_amount(500_000, 750) == 37_500
    # 333 * 7.5% = 24.975
    assert vat_amount(333, 750) == 25
    assert vat_amount(0, 750) == 0


def test_percent_and_distance_fees():
    assert percent_of(12_345, 10) == 1_235
    assert per_km(10_000, Decimal("2.35")) == 23_500
    assert per_km(10_000, Decimal(0)) == 0


def test_major_minor_conversion():
    assert to_minor("1500.50") == 150_050
    assert to_minor(25) == 2_500
    assert format_minor(150_050, "NGN") == "1500.50 NGN"
    assert format_minor(-5, "NGN") == "-0.05 NGN"
