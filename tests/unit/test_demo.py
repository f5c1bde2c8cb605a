import pytest

from building_compliance.common.errors import SourceFetchFailed
from building_compliance.sources.demo import DemoFetcher

DATASETS = {
    "abcd-1234": [
        {"bbl": "1", "violationid": "a"},
        {"bbl": "1", "violationid": "b"},
        {"bbl": "2", "violationid": "c"},
    ]
}


def test_demo_fetcher_filters_on_equality_clauses():
    fetch = DemoFetcher(DATASETS)
    rows = fetch("https://host/resource/abcd-1234.json", {"$where": "bbl='1'"})
    assert [row["violationid"] for row in rows] == ["a", "b"]


def test_demo_fetcher_ignores_function_clauses_and_pages():
    fetch = DemoFetcher(DATASETS)
    query = {"$where": "upper(streetname)='X' AND missing_field='y'", "$limit": 2, "$offset": 1}
    assert [row["violationid"] for row in fetch("https://host/resource/abcd-1234.json", query)] == ["b", "c"]


def test_demo_fetcher_unknown_dataset_fails_like_a_source():
    with pytest.raises(SourceFetchFailed):
        DemoFetcher(DATASETS)("https://host/resource/zzzz-0000.json", {})


def test_demo_fetcher_honours_upper_in_clauses():
    fetch = DemoFetcher({"abcd-1234": [{"streetname": "Example Ave"}, {"streetname": "EXAMPLE PLACE"}]})
    query = {"$where": "upper(streetname) in('EXAMPLE AVE', 'EXAMPLE AVENUE')"}
    assert fetch("https://host/resource/abcd-1234.json", query) == [{"streetname": "Example Ave"}]
