"""Tests for paginated rule retrieval."""

import datetime
import math

import pytest

from conftest import rule_entry
from policy_rule_cleanup.errors import FetchError, InconsistentPaginationError
from policy_rule_cleanup.fetcher import RULEBASE_EPOCH, fetch_rules, parse_audit_date, parse_rule


def _populate(server, count):
    server.rules = [rule_entry(f"uid-{n}", n, hits=n % 3) for n in range(1, count + 1)]


class TestPagination:
    @pytest.mark.parametrize("count,page_size", [(23, 10), (20, 10), (1, 10), (9, 3), (500, 100)])
    def test_reads_every_rule_once(self, server, logged_in, count, page_size):
        _populate(server, count)
        rules = list(fetch_rules(logged_in, "Network", page_size=page_size))
        assert server.count("show-access-rulebase") == math.ceil(count / page_size)
        uids = [rule.uid for rule in rules]
        assert len(uids) == len(set(uids)) == count
        assert set(uids) == {f"uid-{n}" for n in range(1, count + 1)}

    def test_empty_layer(self, server, logged_in):
        assert list(fetch_rules(logged_in, "Network")) == []
        assert server.count("show-access-rulebase") == 1

    def test_request_payload(self, server, logged_in):
        _populate(server, 3)
        list(fetch_rules(logged_in, "Network", hits_from=datetime.date(2024, 4, 15), page_size=2))
        first, second = [payload for command, payload, _ in server.calls
                         if command == "show-access-rulebase"]
        assert first["name"] == "Network"
        assert first["offset"] == 0 and second["offset"] == 2
        assert first["limit"] == 2
        assert first["show-hits"] is True
        assert first["hits-settings"] == {"from-date": "2024-04-15"}

    def test_unscoped_uses_epoch(self, server, logged_in):
        _populate(server, 1)
        list(fetch_rules(logged_in, "Network"))
        payload = server.calls[-1][1]
        assert payload["hits-settings"]["from-date"] == RULEBASE_EPOCH.isoformat()

    def test_lazy(self, server, logged_in):
        _populate(server, 30)
        rules = fetch_rules(logged_in, "Network", page_size=10)
        next(rules)
        assert server.count("show-access-rulebase") == 1

    def test_progress_callback(self, server, logged_in):
        _populate(server, 25)
        seen = []
        list(fetch_rules(logged_in, "Network", page_size=10,
                         on_page=lambda done, total: seen.append((done, total))))
        assert seen == [(10, 25), (20, 25), (25, 25)]

    def test_sections_are_flattened(self, server, logged_in):
        server.rules = [
            {"type": "access-section", "name": "Mgmt",
             "rulebase": [rule_entry("a", 1), rule_entry("b", 2)]},
            rule_entry("c", 3),
        ]
        # the server's total counts rules, not sections
        original = server._show_access_rulebase

        def with_rule_total(payload):
            response = original(payload)
            response._body.update(total=3, to=3)
            return response

        server._show_access_rulebase = with_rule_total
        rules = list(fetch_rules(logged_in, "Network"))
        assert [rule.uid for rule in rules] == ["a", "b", "c"]


class TestInconsistentPagination:
    def test_total_changes_mid_fetch(self, server, logged_in):
        _populate(server, 15)

        def concurrent_edit(srv):
            srv.rules.append(rule_entry(f"new-{len(srv.rules)}", len(srv.rules) + 1))

        server.after_page = concurrent_edit
        with pytest.raises(InconsistentPaginationError, match="changed"):
            list(fetch_rules(logged_in, "Network", page_size=10))

    def test_cursor_does_not_advance(self, server, logged_in):
        _populate(server, 15)
        server.stuck_cursor = True
        with pytest.raises(InconsistentPaginationError, match="advance"):
            list(fetch_rules(logged_in, "Network", page_size=10))
        assert server.count("show-access-rulebase") == 1

    def test_duplicate_uid(self, server, logged_in):
        server.rules = [rule_entry("dup", 1), rule_entry("dup", 2)]
        with pytest.raises(InconsistentPaginationError, match="twice"):
            list(fetch_rules(logged_in, "Network", page_size=1))

    def test_short_pages_hit_the_page_cap(self, server, logged_in):
        _populate(server, 10)
        original = server._show_access_rulebase

        def one_at_a_time(payload):
            return original(dict(payload, limit=1))

        server._show_access_rulebase = one_at_a_time
        with pytest.raises(InconsistentPaginationError):
            list(fetch_rules(logged_in, "Network", page_size=5))
        assert server.count("show-access-rulebase") == 2

    @pytest.mark.parametrize("total", [None, "15", -1, True])
    def test_page_without_valid_total(self, server, logged_in, total):
        _populate(server, 15)
        original = server._show_access_rulebase

        def bad_total(payload):
            response = original(payload)
            if total is None:
                del response._body["total"]
            else:
                response._body["total"] = total
            return response

        server._show_access_rulebase = bad_total
        with pytest.raises(FetchError, match="total"):
            list(fetch_rules(logged_in, "Network", page_size=10))
        assert server.count("show-access-rulebase") == 1

    def test_non_integer_high_water_mark(self, server, logged_in):
        _populate(server, 15)
        original = server._show_access_rulebase

        def textual_cursor(payload):
            response = original(payload)
            response._body["to"] = str(response._body["to"])
            return response

        server._show_access_rulebase = textual_cursor
        with pytest.raises(InconsistentPaginationError, match="advance"):
            list(fetch_rules(logged_in, "Network", page_size=10))


class TestParseRule:
    def test_fields(self):
        entry = rule_entry("abc", 4, hits=12, enabled=False,
                           disable_date=datetime.date(2024, 1, 2), audit_field="field-2")
        rule = parse_rule(entry, audit_field="field-2")
        assert rule.uid == "abc"
        assert rule.rule_number == 4
        assert rule.hit_count == 12
        assert rule.enabled is False
        assert rule.disable_date == datetime.date(2024, 1, 2)
        assert rule.source == ("Any",)
        assert rule.destination == ("web-servers",)
        assert rule.service == ("https",)
        assert rule.action == "Accept"
        assert rule.track == "Log"
        assert rule.creator == "admin"
        assert rule.creation_time == "2020-01-01T10:00+0000"

    def test_other_audit_field_ignored(self):
        entry = rule_entry("abc", 4, enabled=False, disable_date=datetime.date(2024, 1, 2),
                           audit_field="field-3")
        assert parse_rule(entry, audit_field="field-1").disable_date is None

    def test_missing_hits(self):
        entry = rule_entry("abc", 1)
        del entry["hits"]
        with pytest.raises(FetchError):
            parse_rule(entry)

    @pytest.mark.parametrize("field,value", [
        ("hits", {"value": "many"}),
        ("hits", {"value": None}),
        ("hits", {"value": -4}),
        ("rule-number", "first"),
    ])
    def test_malformed_numbers(self, field, value):
        entry = rule_entry("abc", 1)
        entry[field] = value
        with pytest.raises(FetchError, match="abc"):
            parse_rule(entry)

    def test_missing_hits_aborts_fetch(self, server, logged_in):
        server.rules = [rule_entry("abc", 1)]
        del server.rules[0]["hits"]
        with pytest.raises(FetchError):
            list(fetch_rules(logged_in, "Network"))


class TestParseAuditDate:
    def test_valid(self):
        assert parse_audit_date("2024-03-01") == datetime.date(2024, 3, 1)

    @pytest.mark.parametrize("value", [None, "", "not a date", "01/03/2024"])
    def test_absent_or_invalid(self, value):
        assert parse_audit_date(value) is None
