import pytest

from geofusion.records import (
    AirQualityReading,
    ClimateStats,
    CrimeRate,
    EmploymentData,
    MunicipalityData,
    RawClimateStation,
    RentalPrice,
    TerrainStats,
    VoteSentiment,
    parse_records,
)


class TestFromDict:
    def test_terrain(self):
        terrain = TerrainStats.from_dict(
            {"codi": "08019", "avgSlopeDeg": 4.2, "dominantAspect": "S", "avgElevationM": 55}
        )
        assert terrain == TerrainStats(code="08019", avg_slope_deg=4.2, dominant_aspect="S", avg_elevation_m=55.0)

    def test_missing_fields_are_none(self):
        crime = CrimeRate.from_dict({"codi": "08019"})
        assert crime.total_offenses is None
        assert crime.rate_per_thousand is None
        assert crime.year is None

    def test_numeric_strings_accepted(self):
        rental = RentalPrice.from_dict({"codi": "08019", "avgEurMonth": "1150.5", "year": "2024"})
        assert rental.avg_eur_month == 1150.5
        assert rental.year == 2024

    def test_garbage_values_become_none(self):
        employment = EmploymentData.from_dict(
            {"codi": "08019", "population": "many", "unemploymentPct": True, "avgIncome": [1]}
        )
        assert employment.population is None
        assert employment.unemployment_pct is None
        assert employment.avg_income is None

    @pytest.mark.parametrize("raw", ["NaN", "nan", "Infinity", "-inf", float("nan"), float("inf"), 10**400])
    def test_non_finite_values_become_none(self, raw):
        station = RawClimateStation.from_dict({"id": "A", "avgTemp": raw, "avgPrecip": raw})
        assert station.avg_temp is None
        assert station.avg_precip is None

    def test_non_finite_integer_field(self):
        assert CrimeRate.from_dict({"codi": "08019", "totalOffenses": "Infinity"}).total_offenses is None

    def test_zero_is_kept(self):
        crime = CrimeRate.from_dict({"codi": "43001", "totalOffenses": 0, "ratePerThousand": 0.0})
        assert crime.total_offenses == 0
        assert crime.rate_per_thousand == 0.0

    def test_non_string_code(self):
        assert TerrainStats.from_dict({"codi": 8019}).code is None

    def test_vote_party_shares(self):
        votes = VoteSentiment.from_dict(
            {"codi": "0801900000", "partyPcts": {"ERC": 20.5, "PSC": "28.1", "Junts": None}}
        )
        assert votes.party_pcts == {"ERC": 20.5, "PSC": 28.1}

    def test_vote_party_shares_missing(self):
        assert VoteSentiment.from_dict({"codi": "0801900000", "partyPcts": "n/a"}).party_pcts == {}

    def test_air_quality_reads_station_fields(self):
        reading = AirQualityReading.from_dict(
            {"codi": "08019", "stationId": "8019043", "lat": 41.38, "lon": 2.15, "municipi": "Barcelona", "pm25": 12}
        )
        assert reading.station_id == "8019043"
        assert reading.municipality == "Barcelona"
        assert reading.pm25 == 12.0
        assert reading.o3 is None

    def test_climate_station_id_is_string(self):
        assert RawClimateStation.from_dict({"id": 42, "avgTemp": 15}).id == "42"
        assert RawClimateStation.from_dict({"avgTemp": 15}).id is None


class TestParseRecords:
    def test_unavailable(self):
        assert parse_records(None, CrimeRate, "crime") is None

    def test_not_an_array(self):
        assert parse_records({"codi": "08019"}, CrimeRate, "crime") is None

    def test_empty_array(self):
        assert parse_records([], CrimeRate, "crime") == []

    def test_non_objects_dropped(self):
        records = parse_records([{"codi": "08019"}, "junk", 3, None], CrimeRate, "crime")
        assert [r.code for r in records] == ["08019"]


class TestMunicipalityData:
    def test_defaults_empty(self):
        data = MunicipalityData()
        assert all(mapping == {} for mapping in data.categories().values())
        assert data.codes() == []

    def test_category_names(self):
        assert list(MunicipalityData().categories()) == [
            "terrain",
            "votes",
            "forest",
            "crime",
            "rental_prices",
            "employment",
            "climate",
            "air_quality",
            "internet",
            "transit_dist_km",
            "healthcare_dist_km",
            "school_dist_km",
            "amenity_dist_km",
        ]

    def test_codes_union(self):
        data = MunicipalityData(
            climate={"25120": ClimateStats(code="25120", avg_temp_c=15.0)},
            transit_dist_km={"08019": 0.4, "25120": 2.0},
        )
        assert data.codes() == ["08019", "25120"]


@pytest.mark.parametrize("record_type", [TerrainStats, CrimeRate, VoteSentiment, EmploymentData])
def test_empty_object_parses(record_type):
    record = record_type.from_dict({})
    assert record.code is None
