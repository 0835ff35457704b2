import pytest
import json
from unittest.mock import patch

from switchboard_cli.core_api import panels_api_service
from switchboard_cli.core_api.exceptions import (
    PanelStorageError,
    InvalidParameterError,
    RuleCompilationError,
)
from switchboard_cli.features.panel_management.models import PanelConfig, PanelRule


def make_panel(name, rules=(), kind="filter"):
    return PanelConfig(
        name=name,
        kind=kind,
        rules=[PanelRule(field=f, pattern=p, action=a) for f, p, a in rules],
    )


# --- Test Environment Setup ---
@pytest.fixture
def mock_panels_file_path(tmp_path, monkeypatch):
    """Points the panels file at a temporary path for the duration of a test"""
    test_path = tmp_path / "test_panels.json"
    monkeypatch.setattr(panels_api_service, "PANELS_FILE_PATH", test_path)
    return test_path


@pytest.fixture
def sample_panels_list():
    return [
        {
            "name": "Work",
            "rules": [{"field": "from", "pattern": "@company\\.com", "action": "accept"}],
        },
        {"name": "Other", "kind": "catch_all", "rules": []},
    ]


# --- Tests for storage ---
def test_load_panels_file_not_exists_returns_defaults(mock_panels_file_path):
    result = panels_api_service.load_panels()

    assert [p.name for p in result] == ["Primary", "Social", "Updates", "Other"]
    assert result[-1].is_catch_all is True
    assert all(not p.rules for p in result)


def test_load_panels_with_valid_data(mock_panels_file_path, sample_panels_list):
    mock_panels_file_path.write_text(json.dumps(sample_panels_list))

    result = panels_api_service.load_panels()

    assert len(result) == 2
    assert all(isinstance(p, PanelConfig) for p in result)
    assert result[0].name == "Work"
    assert result[0].rules[0].pattern == "@company\\.com"
    assert result[1].is_catch_all is True


def test_load_panels_with_json_decode_error(mock_panels_file_path):
    mock_panels_file_path.write_text("This is not valid JSON")

    with pytest.raises(PanelStorageError, match="Invalid JSON in panels file"):
        panels_api_service.load_panels()


def test_load_panels_with_io_error(mock_panels_file_path):
    mock_panels_file_path.touch()

    with patch("builtins.open", side_effect=IOError("Mocked IO Error")):
        with pytest.raises(PanelStorageError, match="Could not read panels file"):
            panels_api_service.load_panels()


def test_load_panels_rejects_non_list_document(mock_panels_file_path):
    mock_panels_file_path.write_text(json.dumps({"name": "Work"}))

    with pytest.raises(PanelStorageError, match="must contain a JSON list"):
        panels_api_service.load_panels()


def test_load_panels_skips_invalid_entries(mock_panels_file_path, sample_panels_list):
    invalid_panel = {"name": "Broken", "rules": [{"field": "from", "pattern": "", "action": "accept"}]}
    mock_panels_file_path.write_text(json.dumps([sample_panels_list[0], invalid_panel]))

    result = panels_api_service.load_panels()

    assert [p.name for p in result] == ["Work"]


def test_save_panels_success(mock_panels_file_path):
    panels_api_service.save_panels([make_panel("Work", [("from", "@company\\.com", "accept")])])

    saved_data = json.loads(mock_panels_file_path.read_text())
    assert saved_data == [
        {
            "name": "Work",
            "kind": "filter",
            "rules": [{"field": "from", "pattern": "@company\\.com", "action": "accept"}],
        }
    ]


def test_save_panels_creates_parent_directories(tmp_path, monkeypatch):
    nested_path = tmp_path / "nested" / "dir" / "panels.json"
    monkeypatch.setattr(panels_api_service, "PANELS_FILE_PATH", nested_path)

    panels_api_service.save_panels([make_panel("All")])

    assert nested_path.exists()


def test_save_panels_io_error(mock_panels_file_path):
    with patch("builtins.open", side_effect=IOError("disk full")):
        with pytest.raises(PanelStorageError, match="Could not write to panels file"):
            panels_api_service.save_panels([make_panel("All")])


def test_add_panel_appends_and_saves(mock_panels_file_path):
    panels_api_service.save_panels([make_panel("All")])

    panels_api_service.add_panel(make_panel("Work", [("from", "boss", "accept")]))

    assert [p.name for p in panels_api_service.load_panels()] == ["All", "Work"]


def test_add_panel_at_position(mock_panels_file_path):
    panels_api_service.save_panels([make_panel("All"), make_panel("Other", kind="catch_all")])

    panels_api_service.add_panel(make_panel("Work", [("from", "boss", "accept")]), position=0)

    assert [p.name for p in panels_api_service.load_panels()] == ["Work", "All", "Other"]


def test_add_panel_duplicate_name_rejected(mock_panels_file_path):
    panels_api_service.save_panels([make_panel("Work", [("from", "boss", "accept")])])

    with pytest.raises(InvalidParameterError, match="already exists"):
        panels_api_service.add_panel(make_panel("work"))


def test_add_panel_second_catch_all_rejected(mock_panels_file_path):
    panels_api_service.save_panels([make_panel("Other", kind="catch_all")])

    with pytest.raises(InvalidParameterError, match="Only one catch_all"):
        panels_api_service.add_panel(make_panel("Leftovers", kind="catch_all"))


def test_add_panel_invalid_object():
    with pytest.raises(InvalidParameterError):
        panels_api_service.add_panel({"name": "Work"})


def test_delete_panel_by_name_case_insensitive(mock_panels_file_path):
    panels_api_service.save_panels([make_panel("Work", [("from", "boss", "accept")]), make_panel("All")])

    assert panels_api_service.delete_panel("WORK") is True
    assert [p.name for p in panels_api_service.load_panels()] == ["All"]


def test_delete_panel_not_found(mock_panels_file_path):
    panels_api_service.save_panels([make_panel("All")])

    with pytest.raises(InvalidParameterError, match="not found"):
        panels_api_service.delete_panel("Missing")


def test_reset_panels_writes_defaults(mock_panels_file_path):
    panels_api_service.save_panels([make_panel("Work", [("from", "boss", "accept")])])

    panels_api_service.reset_panels()

    assert [p.name for p in panels_api_service.load_panels()] == ["Primary", "Social", "Updates", "Other"]


# --- Tests for local matching ---
WORK_HEADERS = {"from": "Boss <boss@company.com>", "to": "me@gmail.com", "subject": "Q3 plan"}
NEWSLETTER_HEADERS = {"from": "noreply@company.com", "to": "me@gmail.com", "subject": "Weekly digest"}
SOCIAL_HEADERS = {"from": "info@twitter.com", "to": "me@gmail.com", "subject": "New follower"}


def test_rule_matches_is_case_insensitive():
    rule = PanelRule(field="from", pattern="@COMPANY\\.com", action="accept")
    assert panels_api_service.rule_matches(rule, WORK_HEADERS) is True


def test_rule_matches_uses_the_rule_field():
    rule = PanelRule(field="to", pattern="@company\\.com", action="accept")
    assert panels_api_service.rule_matches(rule, WORK_HEADERS) is False


def test_rule_matches_missing_field_is_no_match():
    rule = PanelRule(field="cc", pattern="team", action="accept")
    assert panels_api_service.rule_matches(rule, WORK_HEADERS) is False


def test_rule_matches_invalid_regex_is_no_match():
    rule = PanelRule(field="from", pattern="(unclosed", action="accept")
    assert panels_api_service.rule_matches(rule, WORK_HEADERS) is False


def test_panel_without_rules_matches_everything():
    assert panels_api_service.thread_matches_panel(make_panel("All"), SOCIAL_HEADERS) is True


def test_accept_rule_matches_thread():
    panel = make_panel("Work", [("from", "@company\\.com", "accept")])
    assert panels_api_service.thread_matches_panel(panel, WORK_HEADERS) is True
    assert panels_api_service.thread_matches_panel(panel, SOCIAL_HEADERS) is False


def test_reject_rule_wins_regardless_of_order():
    panel = make_panel(
        "Work",
        [("from", "@company\\.com", "accept"), ("from", "noreply", "reject")],
    )
    assert panels_api_service.thread_matches_panel(panel, WORK_HEADERS) is True
    assert panels_api_service.thread_matches_panel(panel, NEWSLETTER_HEADERS) is False


def test_reject_only_panel_matches_everything_else():
    panel = make_panel("Not newsletters", [("subject", "digest", "reject")])
    assert panels_api_service.thread_matches_panel(panel, WORK_HEADERS) is True
    assert panels_api_service.thread_matches_panel(panel, NEWSLETTER_HEADERS) is False


def test_catch_all_matches_only_unclaimed_threads():
    work = make_panel("Work", [("from", "@company\\.com", "accept")])
    everything = make_panel("All")
    other = make_panel("Other", kind="catch_all")
    panels = [work, everything, other]

    assert panels_api_service.thread_matches_panel(other, WORK_HEADERS, siblings=panels) is False
    assert panels_api_service.thread_matches_panel(other, SOCIAL_HEADERS, siblings=panels) is True


def test_assign_panel_returns_first_matching_index():
    panels = [
        make_panel("Work", [("from", "@company\\.com$", "accept")]),
        make_panel("Social", [("from", "@(facebook|twitter)\\.com$", "accept")]),
        make_panel("Other", kind="catch_all"),
    ]
    assert panels_api_service.assign_panel(panels, {"from": "boss@company.com"}) == 0
    assert panels_api_service.assign_panel(panels, {"from": "info@twitter.com"}) == 1
    assert panels_api_service.assign_panel(panels, {"from": "random@unknown.com"}) == 2


def test_assign_panel_no_match():
    panels = [make_panel("Work", [("from", "@company\\.com", "accept")])]
    assert panels_api_service.assign_panel(panels, SOCIAL_HEADERS) == -1
    assert panels_api_service.assign_panel([], SOCIAL_HEADERS) == -1


# --- Tests for regex_to_gmail_terms ---
@pytest.mark.parametrize("pattern, expected", [
    ("@company\\.com", ["@company.com"]),
    ("@company\\.com$", ["@company.com"]),
    ("^boss@", ["boss@"]),
    ("@(twitter|facebook)\\.com", ["@twitter.com", "@facebook.com"]),
    ("(?:news|digest)letter", ["newsletter", "digestletter"]),
    ("newsletter|digest", ["newsletter", "digest"]),
    ("news+letters?", ["newsletters"]),
    ("news|news", ["news"]),
    ("(a|b)-(c|d)", ["a-c", "a-d", "b-c", "b-d"]),
    (".*", []),
    ("^$", []),
    ("invoice(?!draft)", ["invoice"]),
    ("(?<=@)company\\.com", ["company.com"]),
    ("(?<!no)reply", ["reply"]),
    ("invoice\\d+", ["invoice"]),
    ("\\bsale\\b", ["sale"]),
    ("order-[0-9]{4}", ["order-"]),
    ("\\d+", []),
])
def test_regex_to_gmail_terms(pattern, expected):
    assert panels_api_service.regex_to_gmail_terms(pattern) == expected


# --- Tests for compile_panel_query ---
def test_compile_single_accept_rule():
    panel = make_panel("Work", [("from", "@company\\.com", "accept")])
    assert panels_api_service.compile_panel_query(panel) == "from:(@company.com)"


def test_compile_multiple_accept_rules_use_or_braces():
    panel = make_panel(
        "Work",
        [("from", "@company\\.com", "accept"), ("from", "@partner\\.com", "accept")],
    )
    assert panels_api_service.compile_panel_query(panel) == "{from:(@company.com) from:(@partner.com)}"


def test_compile_alternation_expands_to_or():
    panel = make_panel("Social", [("from", "@(twitter|facebook)\\.com$", "accept")])
    assert panels_api_service.compile_panel_query(panel) == "{from:(@twitter.com) from:(@facebook.com)}"


def test_compile_accept_and_reject():
    panel = make_panel(
        "Filtered",
        [("from", "@company\\.com", "accept"), ("from", "noreply@company\\.com", "reject")],
    )
    assert panels_api_service.compile_panel_query(panel) == "from:(@company.com) -from:(noreply@company.com)"


def test_compile_mixed_fields_and_actions():
    panel = make_panel(
        "Mix",
        [
            ("from", "@company\\.com", "accept"),
            ("from", "spam@company\\.com", "reject"),
            ("to", "team@company\\.com", "accept"),
        ],
    )
    assert panels_api_service.compile_panel_query(panel) == (
        "{from:(@company.com) to:(team@company.com)} -from:(spam@company.com)"
    )


def test_compile_reject_only_panel_is_not_empty():
    panel = make_panel(
        "Excluder",
        [("from", "spam@x\\.com", "reject"), ("from", "junk@y\\.com", "reject")],
    )
    assert panels_api_service.compile_panel_query(panel) == "-from:(spam@x.com) -from:(junk@y.com)"


def test_compile_subject_phrase_is_quoted():
    panel = make_panel("Sales", [("subject", "big sale", "accept")])
    assert panels_api_service.compile_panel_query(panel) == 'subject:("big sale")'


def test_compile_drops_lookarounds_and_class_escapes():
    panel = make_panel("Invoices", [("subject", "invoice\\d*(?!draft)", "accept")])
    assert panels_api_service.compile_panel_query(panel) == "subject:(invoice)"


def test_compile_cc_and_body_fields():
    panel = make_panel("Billing", [("cc", "accounts@", "accept"), ("body", "invoice", "accept")])
    assert panels_api_service.compile_panel_query(panel) == "{cc:(accounts@) (invoice)}"


def test_compile_duplicate_atoms_collapse():
    panel = make_panel("Work", [("from", "boss", "accept"), ("from", "^boss$", "accept")])
    assert panels_api_service.compile_panel_query(panel) == "from:(boss)"


def test_compile_empty_rules_is_empty_string():
    assert panels_api_service.compile_panel_query(make_panel("All")) == ""
    assert panels_api_service.compile_panel_query(make_panel("All"), negate_against=[]) == ""


def test_compile_empty_rules_with_negation_builds_catch_all():
    other = make_panel("Other", kind="catch_all")
    assert panels_api_service.compile_panel_query(other, negate_against=["A", "B"]) == "-(A) -(B)"


def test_compile_is_deterministic():
    panel = make_panel(
        "Work",
        [("from", "@(a|b)\\.com", "accept"), ("subject", "digest|weekly", "reject")],
    )
    first = panels_api_service.compile_panel_query(panel)
    assert all(panels_api_service.compile_panel_query(panel) == first for _ in range(5))


def test_compile_untranslatable_pattern_fails_whole_panel():
    panel = make_panel("Broken", [("from", "@company\\.com", "accept"), ("subject", ".*", "reject")])

    with pytest.raises(RuleCompilationError) as excinfo:
        panels_api_service.compile_panel_query(panel)
    assert excinfo.value.panel_name == "Broken"


# --- Tests for catch-all and search combination ---
def test_build_catch_all_query_skips_blank_queries():
    assert panels_api_service.build_catch_all_query(["from:(a)", "", "  ", "{to:(b) to:(c)}"]) == (
        "-(from:(a)) -({to:(b) to:(c)})"
    )


@pytest.mark.parametrize("sibling_queries", [[], [""], ["  ", ""]])
def test_build_catch_all_query_nothing_to_negate(sibling_queries):
    with pytest.raises(InvalidParameterError, match="non-blank sibling query"):
        panels_api_service.build_catch_all_query(sibling_queries)


def test_compile_catch_all_with_only_blank_siblings_is_rejected():
    other = make_panel("Other", kind="catch_all")
    with pytest.raises(InvalidParameterError):
        panels_api_service.compile_panel_query(other, negate_against=[""])


@pytest.mark.parametrize("panel_query, search, expected", [
    ("from:(@company.com)", "meeting notes", "(from:(@company.com)) (meeting notes)"),
    ("from:(@company.com)", None, "from:(@company.com)"),
    ("from:(@company.com)", "   ", "from:(@company.com)"),
    ("", "budget", "budget"),
    ("", None, ""),
])
def test_combine_with_search(panel_query, search, expected):
    assert panels_api_service.combine_with_search(panel_query, search) == expected
