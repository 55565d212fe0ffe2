"""Tests for the static rule table and the models it feeds."""

import pytest
from pydantic import ValidationError

from autoaccept.models import (
    AgentStats,
    Configuration,
    TargetDescriptor,
    level_for_score,
    severity_label,
)
from autoaccept.rules import (
    BLACKLIST_RULES,
    BUILTIN_BANNED_COMMANDS,
    CHAIN_SPLIT_RE,
    DANGEROUS_EXTENSIONS,
    EXTENSION_RULES,
    SUSPICIOUS_RULES,
)


class TestRuleTable:
    def test_blacklist_size_and_order(self):
        assert len(BLACKLIST_RULES) == 25
        assert BLACKLIST_RULES[0].description == "Recursive deletion"
        assert BLACKLIST_RULES[-1].description == "Download and execute"

    def test_weights_in_range(self):
        for rule in BLACKLIST_RULES + EXTENSION_RULES + SUSPICIOUS_RULES:
            assert 0 <= rule.weight <= 100

    def test_one_extension_rule_per_extension(self):
        assert len(EXTENSION_RULES) == len(DANGEROUS_EXTENSIONS)
        assert all(r.weight == 75 for r in EXTENSION_RULES)

    def test_rules_case_insensitive(self):
        drop_table = next(r for r in BLACKLIST_RULES if r.description == "Drop table")
        assert drop_table.matches("DROP TABLE users")

    def test_builtin_banned_present(self):
        assert "rm -rf /" in BUILTIN_BANNED_COMMANDS
        assert all(entry.strip() for entry in BUILTIN_BANNED_COMMANDS)


class TestChainSplit:
    @pytest.mark.parametrize("text,parts", [
        ("a && b", ["a ", " b"]),
        ("a; b", ["a", " b"]),
        ("a || b", ["a ", " b"]),
        ("a | b", ["a ", " b"]),
    ])
    def test_separators(self, text, parts):
        assert CHAIN_SPLIT_RE.split(text) == parts


class TestConfiguration:
    def test_defaults(self):
        cfg = Configuration()
        assert cfg.poll_interval_ms == 300
        assert cfg.danger_threshold == 70
        assert cfg.safe_mode is False
        assert cfg.banned_commands == ()

    def test_frozen(self):
        cfg = Configuration()
        with pytest.raises(ValidationError):
            cfg.safe_mode = True

    def test_threshold_range(self):
        with pytest.raises(ValidationError):
            Configuration(danger_threshold=101)

    def test_poll_interval_positive(self):
        with pytest.raises(ValidationError):
            Configuration(poll_interval_ms=0)

    def test_wire_format_is_camel_case(self):
        wire = Configuration(banned_commands=["x"], safe_mode=True).to_wire()
        assert wire == {
            "pollIntervalMs": 300,
            "bannedCommands": ["x"],
            "whitelist": [],
            "safeMode": True,
            "dangerThreshold": 70,
        }

    def test_hashable_for_caching(self):
        assert hash(Configuration(whitelist=["a"])) == hash(Configuration(whitelist=["a"]))


class TestLevels:
    @pytest.mark.parametrize("score,level", [(100, 1), (80, 1), (79, 2), (50, 2), (49, 3), (1, 3)])
    def test_buckets(self, score, level):
        assert level_for_score(score) == level

    def test_labels(self):
        assert [severity_label(n) for n in (1, 2, 3, None)] == ["critical", "high", "medium", "none"]


class TestTargetDescriptor:
    def test_alias(self):
        d = TargetDescriptor.model_validate(
            {"id": "x", "type": "page", "webSocketDebuggerUrl": "ws://127.0.0.1:9000/devtools/page/x"}
        )
        assert d.socket_url.endswith("/x")
        assert d.usable

    def test_missing_socket_url_unusable(self):
        assert not TargetDescriptor(id="x", type="page").usable

    def test_webview_usable(self):
        assert TargetDescriptor(id="x", type="webview", socket_url="ws://h").usable


class TestAgentStats:
    def test_sum(self):
        total = AgentStats(clicks=1) + AgentStats(blocked=2) + AgentStats(clicks=3, blocked=1)
        assert (total.clicks, total.blocked) == (4, 3)

    def test_empty(self):
        assert AgentStats().empty
        assert not AgentStats(blocked=1).empty
