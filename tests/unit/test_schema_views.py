"""
Unit tests for view script synthesis.
"""

import pytest

from pgpatch.database.introspection import ViewMeta
from pgpatch.schema.views import (
    ViewNamingPolicy,
    ViewSynthesizer,
    extract_view_name,
    parse_view_ordering,
)


SEPARATOR = "\n\n" + "-" * 80 + "\n\n"

ORDERING = """
-- drop dependents first
DROP VIEW IF EXISTS report_v;
  drop view if exists summary_v;
DROP VIEW IF EXISTS base_v;
DROP VIEW IF EXISTS orders_tv;
DROP VIEW IF EXISTS users_tv;
SELECT 1;
"""


@pytest.fixture
def source_views():
    return [
        ViewMeta("base_v", " SELECT users.id\n   FROM users;"),
        ViewMeta("summary_v", " SELECT base_v.id\n   FROM base_v;"),
        ViewMeta("report_v", " SELECT summary_v.id\n   FROM summary_v;"),
        ViewMeta("users_tv", " SELECT * FROM users;"),
        ViewMeta("orders_tv", " SELECT * FROM orders;"),
        ViewMeta("adhoc_v", " SELECT 1;"),
    ]


class TestOrderingFile:

    @pytest.mark.parametrize("line,expected", [
        ("DROP VIEW IF EXISTS report_v;", "report_v"),
        ("   drop view if exists public.report_v;  ", "public.report_v"),
        ("DROP VIEW IF EXISTS report_v CASCADE;", "report_v"),
        ("DROP TABLE IF EXISTS report_v;", None),
        ("-- comment", None),
    ])
    def test_extract_view_name(self, line, expected):
        assert extract_view_name(line) == expected

    def test_parse_view_ordering(self):
        assert parse_view_ordering(ORDERING) == [
            "report_v", "summary_v", "base_v", "orders_tv", "users_tv",
        ]

    def test_parse_empty(self):
        assert parse_view_ordering(None) == []


class TestViewSynthesizer:

    def test_ordered_buckets(self, source_views):
        diff = ["report_v", "base_v", "summary_v", "orders_tv", "users_tv", "adhoc_v"]

        scripts = ViewSynthesizer().generate(source_views, diff, ORDERING)

        assert scripts.view_names == ["base_v", "summary_v", "report_v"]
        assert scripts.tenant_view_names == ["users_tv", "orders_tv"]
        assert scripts.unordered_view_names == ["adhoc_v"]
        assert scripts.total_views == 6
        assert scripts.views.split(SEPARATOR)[0] == (
            "CREATE OR REPLACE VIEW base_v \n AS SELECT users.id\n   FROM users;"
        )

    def test_tenant_view_body(self, source_views):
        scripts = ViewSynthesizer().generate(source_views, ["users_tv"], ORDERING)

        assert scripts.tenant_views == (
            "CREATE OR REPLACE VIEW users_tv \n AS SELECT * FROM users "
            "WHERE tenant_id = CAST(current_setting('app.tenant_id') AS integer);"
        )
        assert scripts.views == ""
        assert scripts.unordered_views == ""

    def test_without_ordering_everything_is_unordered(self, source_views):
        scripts = ViewSynthesizer().generate(source_views, ["base_v", "users_tv"], None)

        assert scripts.unordered_view_names == ["base_v", "users_tv"]
        assert scripts.views == "" and scripts.tenant_views == ""
        assert SEPARATOR in scripts.unordered_views

    def test_missing_definition_is_skipped(self, source_views, caplog):
        scripts = ViewSynthesizer().generate(source_views, ["ghost_v", "base_v"], ORDERING)

        assert scripts.skipped == ["ghost_v"]
        assert scripts.view_names == ["base_v"]
        assert "ghost_v" in caplog.text

    def test_position_is_deterministic(self, source_views):
        first = ViewSynthesizer().generate(source_views, ["report_v", "base_v"], ORDERING)
        second = ViewSynthesizer().generate(source_views, ["base_v", "report_v"], ORDERING)

        assert first.views == second.views

    def test_empty(self, source_views):
        scripts = ViewSynthesizer().generate(source_views, [], ORDERING)
        assert scripts.is_empty

    def test_custom_policy(self):
        policy = ViewNamingPolicy(tenant_suffix="_tenant", tenant_setting="app.org", tenant_column="org_id")
        views = [ViewMeta("items_tenant", " SELECT * FROM items;")]

        scripts = ViewSynthesizer(policy).generate(views, ["items_tenant"], "DROP VIEW IF EXISTS items_tenant;")

        assert "SELECT * FROM items WHERE org_id = CAST(current_setting('app.org') AS integer);" in scripts.tenant_views
