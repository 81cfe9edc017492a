"""Test security of filter and sort parsing."""

import pytest

from src.core import db_client


@pytest.mark.unit
def test_filter_parsing_escaped_double_quotes():
    """Escaped double quotes produced by sanitize_param are restored."""
    query = 'title = "foo\\"bar"'

    _, param = db_client._parse_single_comparison(query)

    assert param == 'foo"bar'


@pytest.mark.unit
def test_filter_parsing_single_quotes_escaped():
    """Escaped single quotes in single-quoted values are restored."""
    query = "location_text = 'O\\'Reilly Hall'"

    _, param = db_client._parse_single_comparison(query)

    assert param == "O'Reilly Hall"


@pytest.mark.unit
def test_filter_parsing_backslash():
    """A lone backslash survives sanitize_param and parsing."""
    query = 'title = "\\\\"'

    _, param = db_client._parse_single_comparison(query)

    assert param == "\\"


@pytest.mark.unit
def test_injection_attempt_is_parameterized():
    """Injection attempts are bound as values, not SQL."""
    malicious_value = 'foo" OR 1=1 --'
    sanitized = db_client.sanitize_param(malicious_value)
    query = f'poster_id = "{sanitized}"'

    cond, param = db_client._parse_single_comparison(query)

    assert cond == "poster_id = ?"
    assert param == malicious_value


@pytest.mark.unit
def test_injection_in_field_name_rejected():
    with pytest.raises(ValueError, match="Invalid filter syntax"):
        db_client._parse_single_comparison('status = "OPEN" OR 1 = "1"')


@pytest.mark.unit
def test_numeric_values_are_typed():
    cond, param = db_client._parse_single_comparison('price_cents >= "1000"')

    assert cond == "price_cents >= ?"
    assert param == 1000


@pytest.mark.unit
def test_like_operator_escapes_wildcards():
    cond, param = db_client._parse_single_comparison('title ~ "50%_off"')

    assert cond == "title LIKE ? ESCAPE '\\'"
    assert param == "%50\\%\\_off%"


@pytest.mark.unit
def test_or_group_and_conjunction():
    where, params = db_client.parse_filter(
        '(status = "OPEN" || status = "ACCEPTED") && category = "ERRAND" && price_cents >= "500"'
    )

    assert where == "(status = ? OR status = ?) AND category = ? AND price_cents >= ?"
    assert params == ["OPEN", "ACCEPTED", "ERRAND", 500]


@pytest.mark.unit
def test_empty_filter():
    assert db_client.parse_filter("") == ("", [])


@pytest.mark.unit
def test_sort_with_tiebreak():
    assert db_client.parse_sort("-price_cents,-created_at") == "price_cents DESC, created_at DESC, rowid DESC"
    assert db_client.parse_sort("+created_at") == "created_at ASC, rowid ASC"


@pytest.mark.unit
def test_sort_injection_falls_back_to_insertion_order():
    assert db_client.parse_sort("created_at; DROP TABLE tasks") == "rowid ASC"
    assert db_client.parse_sort("") == "rowid ASC"


@pytest.mark.unit
def test_collection_name_validated():
    with pytest.raises(ValueError, match="Invalid collection name"):
        db_client._validate_collection_name("tasks; DROP TABLE profiles")
