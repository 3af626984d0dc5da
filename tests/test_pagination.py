import re

from pagination import MAX_LIMIT, Page, envelope, filter_value, matches_search, search_filter


def test_pages_are_stable_across_the_range():
    items = list(range(23))
    for page in (1, 2, 3):
        assert Page.of(page, 10).meta(len(items))["pages"] == 3
    last = Page.of(4, 10)
    assert last.slice(items) == []
    assert last.meta(len(items)) == {"total": 23, "page": 4, "limit": 10, "pages": 3}


def test_skip_and_slice():
    pg = Page.of(2, 5)
    assert pg.skip == 5
    assert pg.slice(list(range(1, 13))) == [6, 7, 8, 9, 10]


def test_defaults_and_limit_cap():
    assert Page.of(None, None, default_limit=50) == Page(1, 50)
    assert Page.of(0, -3) == Page(1, 20)
    assert Page.of(1, 1000).limit == MAX_LIMIT
    assert Page.of(1, 10).meta(0)["pages"] == 0


def test_search_filter_escapes_input():
    filt = search_filter(" a.b* ", ["first_name", "email"])
    pattern = filt["$or"][0]["first_name"]["$regex"]
    assert pattern == re.escape("a.b*")
    assert filt["$or"][1]["email"]["$options"] == "i"
    assert search_filter("   ", ["x"]) is None
    assert search_filter(None, ["x"]) is None


def test_matches_search_on_nested_fields():
    doc = {"first_name": "Ada", "student_profile": {"student_id": "STU42"}}
    assert matches_search(doc, "stu4", ["first_name", "student_profile.student_id"])
    assert not matches_search(doc, "zzz", ["first_name", "student_profile.student_id"])
    assert matches_search(doc, "", ["first_name"])


def test_filter_value_and_envelope():
    assert filter_value("all") is None
    assert filter_value("") is None
    assert filter_value("active") == "active"
    assert envelope({"x": 1}) == {"success": True, "data": {"x": 1}}
    assert envelope({}, message="done")["message"] == "done"
