"""
Tests for Module 01 — AQI Engine.
Tests EPA breakpoint interpolation, the maximum-pollutant rule, categories
and the AQI → concentration inversion used for provider readings.
"""
import pytest

from pipeline.aqi.engine import (
    category_for,
    color_for,
    compute_aqi,
    concentration_from_aqi,
    get_breakpoints,
    health_info_for,
    pollutant_aqi,
)
from pipeline.models import POLLUTANTS, Reading


class TestBreakpointsLoad:
    def test_loads_all_pollutants(self):
        for pollutant in POLLUTANTS:
            brackets = get_breakpoints(pollutant)
            assert len(brackets) == 6

    def test_brackets_are_ordered(self):
        for pollutant in POLLUTANTS:
            brackets = get_breakpoints(pollutant)
            for lower, upper in zip(brackets, brackets[1:]):
                assert lower.conc_high < upper.conc_low
                assert lower.aqi_high < upper.aqi_low

    def test_unknown_pollutant_raises(self):
        with pytest.raises(ValueError):
            get_breakpoints("nh3")


class TestPollutantAQI:
    def test_pm25_top_of_good(self):
        """12.0 μg/m³ is the top of the Good bracket."""
        assert pollutant_aqi("pm25", 12.0) == (50, "Good")

    def test_pm25_bottom_of_moderate(self):
        assert pollutant_aqi("pm25", 12.1) == (51, "Moderate")

    def test_pm25_bracket_edges(self):
        assert pollutant_aqi("pm25", 35.4)[0] == 100
        assert pollutant_aqi("pm25", 35.5)[0] == 101
        assert pollutant_aqi("pm25", 55.4)[0] == 150

    def test_zero_concentration(self):
        assert pollutant_aqi("pm25", 0) == (0, "Good")

    def test_lowest_bracket_stays_in_range(self):
        for c in (0.0, 1.0, 5.5, 8.3, 11.9, 12.0):
            aqi, _ = pollutant_aqi("pm25", c)
            assert 0 <= aqi <= 50

    def test_gap_value_goes_to_next_bracket(self):
        """Concentrations between 12.0 and 12.1 are scored in the Moderate bracket."""
        aqi, level = pollutant_aqi("pm25", 12.05)
        assert level == "Moderate"
        assert aqi == 51

    def test_above_table_overflows(self):
        """Beyond the last bracket: last aqi_high + 100."""
        assert pollutant_aqi("pm25", 600) == (600, "Hazardous")
        assert pollutant_aqi("co", 99.0) == (600, "Hazardous")

    def test_co_interpolation(self):
        assert pollutant_aqi("co", 4.4)[0] == 50
        assert pollutant_aqi("co", 10.0)[0] == 109

    def test_none_is_skipped(self):
        assert pollutant_aqi("pm25", None) is None

    def test_negative_is_skipped(self):
        assert pollutant_aqi("pm25", -3.0) is None

    def test_non_numeric_is_skipped(self):
        assert pollutant_aqi("pm25", "n/a") is None


class TestComputeAQI:
    def test_all_missing_is_zero_unknown(self):
        result = compute_aqi(Reading(sensor_id=1))
        assert result.overall == 0
        assert result.dominant_pollutant == "Unknown"
        assert result.per_pollutant == {}
        assert result.category == "Good"

    def test_zero_only_keeps_unknown_dominant(self):
        """A zero sub-index never beats the initial 0."""
        result = compute_aqi(Reading(sensor_id=1, pm25=0.0))
        assert result.overall == 0
        assert result.dominant_pollutant == "Unknown"
        assert result.sub_aqi("pm25") == 0

    def test_maximum_pollutant_rule(self):
        result = compute_aqi(Reading(sensor_id=1, pm25=35.4, o3=86, no2=20))
        assert result.overall == 151
        assert result.dominant_pollutant == "O₃"
        assert result.sub_aqi("pm25") == 100
        assert result.category == "Unhealthy"

    def test_pm25_governs_over_pm10(self):
        result = compute_aqi({"pm25": 35.4, "pm10": 55})
        assert result.sub_aqi("pm10") == 51
        assert result.overall == 100
        assert result.dominant_pollutant == "PM2.5"

    def test_overall_is_max_of_sub_indices(self):
        result = compute_aqi(Reading(sensor_id=1, pm25=80, pm10=200, no2=90, co=1.2, o3=60, so2=40))
        assert result.overall == max(p.aqi for p in result.per_pollutant.values())

    def test_tie_goes_to_first_pollutant(self):
        """PM2.5 is evaluated before PM10, so it wins a tie."""
        result = compute_aqi(Reading(sensor_id=1, pm25=12.0, pm10=54))
        assert result.overall == 50
        assert result.dominant_pollutant == "PM2.5"

    def test_missing_pollutants_are_not_zero(self):
        result = compute_aqi(Reading(sensor_id=1, pm10=54))
        assert set(result.per_pollutant) == {"pm10"}
        assert result.dominant_pollutant == "PM10"

    def test_per_pollutant_details(self):
        result = compute_aqi(Reading(sensor_id=1, pm25=35.4))
        entry = result.per_pollutant["pm25"]
        assert entry.pollutant == "PM2.5"
        assert entry.concentration == 35.4
        assert entry.level == "Moderate"

    def test_accepts_mapping(self):
        result = compute_aqi({"pm25": 35.4, "pm10": None})
        assert result.overall == 100

    def test_overflow_reading(self):
        result = compute_aqi(Reading(sensor_id=1, pm25=600))
        assert result.overall == 600
        assert result.category == "Hazardous"

    def test_health_text_present(self):
        result = compute_aqi(Reading(sensor_id=1, pm25=150.4))
        assert result.overall == 200
        assert result.health_text.startswith("Unhealthy")
        assert result.recommendation


class TestCategories:
    @pytest.mark.parametrize("aqi,category", [
        (0, "Good"),
        (50, "Good"),
        (51, "Moderate"),
        (100, "Moderate"),
        (101, "Unhealthy for Sensitive Groups"),
        (151, "Unhealthy"),
        (201, "Very Unhealthy"),
        (301, "Hazardous"),
        (600, "Hazardous"),
    ])
    def test_category_bands(self, aqi, category):
        assert category_for(aqi) == category

    def test_colors(self):
        assert color_for(25) == "#00E400"
        assert color_for(175) == "#FF0000"
        assert color_for(450) == "#7E0023"

    def test_health_info(self):
        implication, recommendation = health_info_for(250)
        assert "Very Unhealthy" in implication
        assert "indoors" in recommendation


class TestConcentrationFromAQI:
    def test_inverts_pm25(self):
        assert concentration_from_aqi("pm25", 100) == 35.4
        assert concentration_from_aqi("pm25", 50) == 12.0
        assert concentration_from_aqi("pm25", 0) == 0.0

    def test_inverts_every_pollutant(self):
        for pollutant in POLLUTANTS:
            conc = concentration_from_aqi(pollutant, 120)
            assert conc is not None
            assert pollutant_aqi(pollutant, conc)[0] == pytest.approx(120, abs=2)

    def test_beyond_table_returns_top_concentration(self):
        assert concentration_from_aqi("pm25", 650) == 500.0

    def test_missing_or_negative(self):
        assert concentration_from_aqi("pm25", None) is None
        assert concentration_from_aqi("pm25", -1) is None
