"""Unit tests for path and date heuristics"""

from datetime import date

import pytest

from whatsnew_mcp.services.heuristics import (
    DEFAULT_PRODUCT,
    build_commits_url,
    build_file_url,
    build_raw_url,
    classify_change,
    extract_version,
    has_document_extension,
    infer_product,
    is_release_notes_path,
    is_under_prefix,
    normalize_release_date,
)


class TestPathFilters:
    """Test release-notes path recognition"""

    @pytest.mark.parametrize(
        "path",
        [
            "articles/finance/whats-new-10-0-40.md",
            "ce/sales/What-s-New/overview.md",
            "articles/RELEASE-NOTES/april.md",
        ],
    )
    def test_release_notes_markers_match_case_insensitively(self, path):
        assert is_release_notes_path(path)

    def test_unrelated_path_is_rejected(self):
        assert not is_release_notes_path("articles/finance/general-ledger.md")

    def test_custom_markers(self):
        assert is_release_notes_path("docs/changelog/2024.md", markers=("changelog",))
        assert not is_release_notes_path("docs/whats-new.md", markers=("changelog",))

    def test_document_extension(self):
        assert has_document_extension("a/whats-new.md")
        assert has_document_extension("a/WHATS-NEW.MD")
        assert not has_document_extension("a/whats-new.yml")

    def test_prefix(self):
        assert is_under_prefix("articles/x.md", "articles")
        assert not is_under_prefix("media/x.md", "articles")
        assert is_under_prefix("anything.md", "")


class TestInferProduct:
    """Test product label inference"""

    def test_first_match_in_table_order_wins(self):
        # "finance" precedes "supply-chain" in the default table
        path = "articles/finance/supply-chain/whats-new.md"
        assert infer_product(path) == "Dynamics 365 Finance"

    def test_case_insensitive(self):
        assert infer_product("articles/Business-Central/whats-new.md") == (
            "Dynamics 365 Business Central"
        )

    def test_default_when_nothing_matches(self):
        assert infer_product("articles/unknown/whats-new.md") == DEFAULT_PRODUCT

    def test_custom_mapping_and_default(self):
        mapping = {"alpha": "Alpha Product"}
        assert infer_product("docs/alpha/whats-new.md", mapping, "Other") == "Alpha Product"
        assert infer_product("docs/beta/whats-new.md", mapping, "Other") == "Other"


class TestExtractVersion:
    """Test version extraction from paths"""

    @pytest.mark.parametrize(
        "path,expected",
        [
            ("articles/whats-new-platform-updates-10-0-40.md", "10.0.40"),
            ("articles/10.0.38/whats-new.md", "10.0.38"),
            ("articles/whats-new-home-page.md", None),
        ],
    )
    def test_extract_version(self, path, expected):
        assert extract_version(path) == expected


class TestNormalizeReleaseDate:
    """Test declared-date normalization"""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("10/15/2024", "2024-10-15"),
            ("1/5/2024", "2024-01-05"),
            ("2024-03-01", "2024-03-01"),
            (date(2023, 12, 31), "2023-12-31"),
            ("soon", None),
            ("", None),
            (None, None),
        ],
    )
    def test_normalize(self, value, expected):
        assert normalize_release_date(value) == expected


class TestClassifyChange:
    """Test new-vs-updated classification"""

    def test_new_when_changed_shortly_after_first_seen(self):
        assert classify_change("2024-01-01T00:00:00Z", "2024-01-20T00:00:00Z", 30) == "new"

    def test_updated_when_changed_long_after_first_seen(self):
        assert classify_change("2023-01-01T00:00:00Z", "2024-01-20T00:00:00Z", 30) == "updated"

    def test_unknown_dates_are_updated(self):
        assert classify_change(None, "2024-01-20T00:00:00Z") == "updated"
        assert classify_change("2024-01-01", None) == "updated"

    def test_threshold_is_inclusive(self):
        assert classify_change("2024-01-01", "2024-01-31", 30) == "new"
        assert classify_change("2024-01-01", "2024-02-01", 30) == "updated"


class TestUrls:
    """Test URL builders"""

    def test_file_and_raw_urls(self):
        file_url = build_file_url("https://github.com/", "Org", "docs", "main", "a/whats-new.md")
        raw_url = build_raw_url(
            "https://raw.githubusercontent.com", "Org", "docs", "main", "a/whats-new.md"
        )
        assert file_url == "https://github.com/Org/docs/blob/main/a/whats-new.md"
        assert raw_url == "https://raw.githubusercontent.com/Org/docs/main/a/whats-new.md"

    def test_commits_url(self):
        file_url = "https://github.com/Org/docs/blob/main/a/whats-new.md"
        expected = "https://github.com/Org/docs/commits/main/a/whats-new.md"
        assert build_commits_url(file_url) == expected
