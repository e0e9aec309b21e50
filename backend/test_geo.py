"""
Tests for common/geo.py - haversine distance and radius checks
"""

import pytest

from common.geo import Coordinates, distance, is_within

BERN = Coordinates(46.9480, 7.4474)
ZURICH = Coordinates(47.3769, 8.5417)


class TestCoordinates:

    @pytest.mark.parametrize("lat,lon", [(91.0, 0.0), (-90.5, 0.0), (0.0, 180.1), (0.0, -181.0)])
    def test_out_of_range_rejected(self, lat, lon):
        with pytest.raises(ValueError):
            Coordinates(lat, lon)

    def test_boundaries_accepted(self):
        assert Coordinates(90.0, 180.0).latitude == 90.0
        assert Coordinates(-90.0, -180.0).longitude == -180.0

    def test_to_dict(self):
        assert BERN.to_dict() == {"latitude": 46.9480, "longitude": 7.4474}


class TestDistance:

    def test_identical_points_zero(self):
        assert distance(BERN, BERN) == 0

    def test_symmetric(self):
        assert distance(BERN, ZURICH) == pytest.approx(distance(ZURICH, BERN))

    def test_bern_zurich(self):
        # ~95 km great-circle
        assert distance(BERN, ZURICH) == pytest.approx(95_500, rel=0.01)

    def test_one_degree_latitude(self):
        d = distance(Coordinates(0.0, 0.0), Coordinates(1.0, 0.0))
        assert d == pytest.approx(111_195, rel=0.001)

    def test_antipodal_points(self):
        d = distance(Coordinates(0.0, 0.0), Coordinates(0.0, 180.0))
        assert d == pytest.approx(20_015_087, rel=0.001)


class TestIsWithin:

    CASES = [
        ("same point", BERN, 0, True),
        ("far away", ZURICH, 500, False),
        ("nearby", Coordinates(46.9500, 7.4474), 500, True),
    ]

    @pytest.mark.parametrize("name,other,threshold,expected", CASES)
    def test_is_within(self, name, other, threshold, expected):
        assert is_within(BERN, other, threshold) is expected, f"Failed on {name}"

    def test_agrees_with_distance(self):
        d = distance(BERN, ZURICH)
        assert is_within(BERN, ZURICH, d)
        assert not is_within(BERN, ZURICH, d - 1)
