from issue_relay.services.titles import (
    DEFAULT_TITLE,
    derive_title,
    is_generic_title,
    is_meaningful_title,
    resolve_title,
    truncate_title,
)


def test_derive_title_uses_first_sentence() -> None:
    assert derive_title("Add dark mode toggle. It should persist across sessions!") == "Add dark mode toggle"


def test_derive_title_strips_title_prefix_and_symbols() -> None:
    assert derive_title("# Title: Fix login (SSO) bug") == "Fix login SSO bug"


def test_derive_title_truncates_long_text() -> None:
    title = derive_title("word " * 30)
    assert len(title) == 50
    assert title.endswith("...")


def test_derive_title_falls_back_for_empty_text() -> None:
    assert derive_title("   !!! ") == DEFAULT_TITLE


def test_generic_and_meaningful_titles() -> None:
    assert is_generic_title("New Issue")
    assert is_generic_title("bug report: crash")
    assert not is_meaningful_title("Fix")
    assert not is_meaningful_title("")
    assert is_meaningful_title("Fix crash on startup")


def test_resolve_title_prefers_meaningful_explicit_title() -> None:
    assert resolve_title("Add dark mode toggle", "Support dark theme").title == "Support dark theme"
    assert resolve_title("Add dark mode toggle", "Issue").title == "Add dark mode toggle"
    assert resolve_title("Add dark mode toggle", "").title == "Add dark mode toggle"


def test_truncate_title_limits_length() -> None:
    assert truncate_title("x" * 80) == "x" * 67 + "..."
    assert truncate_title(" short ") == "short"
