from conftest import make_engineer

from scheduling_service.schemas import ServiceArea
from scheduling_service.service_areas import can_serve, engineers_for_postcode


def test_letters_only_area_matches_whole_postal_area():
    engineer = make_engineer(service_areas=[ServiceArea(postcode_area="MK", max_travel_minutes=45)])

    match = can_serve(engineer, "MK9 1AB")

    assert match.can_serve is True
    assert match.match_type == "area"
    assert match.max_travel_minutes == 45


def test_exact_outward_code_match():
    engineer = make_engineer(service_areas=[ServiceArea(postcode_area="DA5", max_travel_minutes=40)])

    match = can_serve(engineer, "DA5 2AB")

    assert match.can_serve is True
    assert match.match_type == "exact"
    assert match.max_travel_minutes == 40


def test_same_area_prefix_match():
    engineer = make_engineer(service_areas=[ServiceArea(postcode_area="DA1", max_travel_minutes=30)])

    match = can_serve(engineer, "DA5 2AB")

    assert match.can_serve is True
    assert match.match_type == "prefix"


def test_first_matching_area_wins():
    engineer = make_engineer(service_areas=[
        ServiceArea(postcode_area="DA1", max_travel_minutes=30),
        ServiceArea(postcode_area="DA5", max_travel_minutes=40),
    ])

    match = can_serve(engineer, "DA5 2AB")

    assert match.match_type == "prefix"
    assert match.max_travel_minutes == 30


def test_configured_area_is_case_and_space_insensitive():
    engineer = make_engineer(service_areas=[ServiceArea(postcode_area=" sw1a ", max_travel_minutes=50)])

    assert can_serve(engineer, "SW1A 1AA").match_type == "exact"


def test_no_declared_areas_never_matches():
    engineer = make_engineer(service_areas=[])
    assert can_serve(engineer, "DA5 2AB").can_serve is False


def test_unparseable_postcode_never_matches():
    engineer = make_engineer()
    assert can_serve(engineer, "").can_serve is False
    assert can_serve(engineer, "not a postcode").can_serve is False


def test_different_area_does_not_match():
    engineer = make_engineer(service_areas=[
        ServiceArea(postcode_area="SE1", max_travel_minutes=30),
        ServiceArea(postcode_area="M", max_travel_minutes=30),
    ])

    match = can_serve(engineer, "MK9 1AB")

    assert match.can_serve is False
    assert match.match_type is None


def test_engineers_for_postcode_sorted_by_ceiling():
    far = make_engineer("far", service_areas=[ServiceArea(postcode_area="DA", max_travel_minutes=90)])
    default = make_engineer("default", service_areas=[ServiceArea(postcode_area="DA5")])
    near = make_engineer("near", service_areas=[ServiceArea(postcode_area="DA5", max_travel_minutes=20)])
    elsewhere = make_engineer("elsewhere", service_areas=[ServiceArea(postcode_area="SE1")])

    result = engineers_for_postcode([far, default, near, elsewhere], "DA5 2AB")

    assert [(e.id, minutes) for e, minutes in result] == [("near", 20), ("default", 60), ("far", 90)]
