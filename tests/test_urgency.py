"""Tests for `deepbuffer.urgency`."""

from deepbuffer.urgency import DEFAULT_ALERT_KEYWORDS, is_urgent, matched_keywords


def test_default_keywords_match():
    assert is_urgent("本番が落ちた！") is True
    assert matched_keywords("本番が落ちた！") == ["落ちた", "本番"]
    assert is_urgent("ランチどうする？") is False


def test_custom_keywords_are_case_insensitive():
    assert matched_keywords("Prod is DOWN", ["down", "outage"]) == ["down"]
    assert is_urgent("all good", alert_keywords=["down"]) is False


def test_empty_keyword_list_disables_matching():
    assert is_urgent(DEFAULT_ALERT_KEYWORDS[0], alert_keywords=[]) is False


def test_vip_author_is_urgent():
    assert is_urgent("ランチどうする？", "U_CEO", alert_keywords=[], vip_user_ids=["U_CEO"]) is True
    assert is_urgent("ランチどうする？", "U_OTHER", alert_keywords=[], vip_user_ids=["U_CEO"]) is False


def test_blank_keywords_are_ignored():
    assert matched_keywords("anything", ["", "  "]) == []
