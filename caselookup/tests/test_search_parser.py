from caselookup.services.search_parser import parse_search_input


def test_empty_input_yields_nothing():
    assert parse_search_input("") == []
    assert parse_search_input("   ") == []


def test_standard_case_numbers_are_extracted():
    assert parse_search_input("22CR714844-590, 21IF001234-100") == ["22CR714844-590", "21IF001234-100"]


def test_lexis_nexis_format_is_normalised():
    assert parse_search_input("5902022CR 714844") == ["22CR714844-590"]


def test_lexis_nexis_without_type_defaults_to_cr():
    assert parse_search_input("5902022 714844") == ["22CR714844-590"]


def test_duplicates_are_dropped_keeping_first_order():
    text = "22cr714844-590\n21IF001234-100\n22CR714844-590"
    assert parse_search_input(text) == ["22CR714844-590", "21IF001234-100"]


def test_text_without_case_numbers_yields_nothing():
    assert parse_search_input("please look up my case") == []
