from territory_sync.common.models import Coordinate, LocationRecord
from territory_sync.geocode.quality import address_precision, is_international_event, placeholder_name, should_regeocode


def _record(**overrides) -> LocationRecord:
    fields = {
        "entity": "meets",
        "record_id": 1,
        "address": "1200 Main St, Austin, TX 78701",
        "name": "Texas State Open",
        "coordinate": Coordinate(30.27, -97.74),
        "territory": "Texas-Oklahoma",
        "geocode_status": "success",
        "geocode_error": None,
        "precision_score": 8,
        "display_name": None,
    }
    fields.update(overrides)
    return LocationRecord(**fields)


def test_address_precision_scores_components():
    assert address_precision("1200 Main St, Austin, TX 78701") == 8
    assert address_precision("Austin, Texas") == 2
    assert address_precision("Austin, TX") == 0
    assert address_precision(None, None) == 0


def test_address_precision_penalises_country_only_answers():
    assert address_precision("Austin, Texas", "United States") == 0


def test_placeholder_name_uses_tolerance():
    assert placeholder_name(39.78, -100.45) == "US Geographic Center (Kansas)"
    assert placeholder_name(39.81, -100.47) == "US Geographic Center (Kansas)"
    assert placeholder_name(30.27, -97.74) is None


def test_is_international_event_matches_whole_words():
    assert is_international_event("2024 IWF World Championships") is True
    assert is_international_event("Pan Am Masters") is True
    assert is_international_event("Marion County Open") is False
    assert is_international_event(None) is False


def test_should_regeocode_rules():
    assert should_regeocode(_record()) is False
    assert should_regeocode(_record(precision_score=3)) is True
    assert should_regeocode(_record(coordinate=None)) is True
    assert should_regeocode(_record(geocode_status="failure")) is True
    assert should_regeocode(_record(geocode_status=None)) is True


def test_should_regeocode_computes_missing_precision():
    assert should_regeocode(_record(precision_score=None)) is False
    assert should_regeocode(_record(precision_score=None, address="Austin, TX")) is True
