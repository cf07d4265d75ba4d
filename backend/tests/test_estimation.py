from __future__ import annotations

import datetime as dt

import pytest

from timespan.estimation import (
    DEFAULT_WEIGHTS,
    MAX_DURATION,
    CommitClassification,
    WeightTable,
    estimate,
)
from timespan.git_analysis import GitCommit, analyze

UTC = dt.timezone.utc


def make_analysis(message: str, files=(), insertions: int = 0, deletions: int = 0):
    commit = GitCommit(
        hash="0" * 40,
        message=message,
        author="Test User",
        author_email="test@example.com",
        timestamp=dt.datetime(2024, 1, 1, 12, tzinfo=UTC),
        files_changed=tuple(files),
        insertions=insertions,
        deletions=deletions,
    )
    return analyze(commit)


def test_test_commit_touching_markdown():
    result = estimate(make_analysis("test: add unit test", ["README.md"]))

    assert result.classification is CommitClassification.TEST
    assert result.duration == dt.timedelta(minutes=16)
    assert result.confidence == 0.5


def test_base_duration_only():
    result = estimate(make_analysis("chore: bump", ["LICENSE"]))
    assert result.duration == dt.timedelta(minutes=15)
    assert result.classification is CommitClassification.OTHER


def test_feature_from_code_extensions():
    result = estimate(make_analysis("add export", ["app/report.py", "app/view.ts"], insertions=80, deletions=20))

    # 15 base + round(100 / 50 * 10) + 5 per code extension
    assert result.duration == dt.timedelta(minutes=15 + 20 + 10)
    assert result.classification is CommitClassification.FEATURE
    assert result.confidence == 0.5


def test_extension_counted_once():
    result = estimate(make_analysis("add modules", ["a.py", "b.py", "c.py"]))
    assert result.duration == dt.timedelta(minutes=20)


def test_bugfix_bonus_and_full_agreement():
    result = estimate(make_analysis("Fix crash on empty input", ["parser.py"], insertions=10, deletions=15))

    # 15 base + 5 lines + 5 code + 10 fix
    assert result.duration == dt.timedelta(minutes=35)
    assert result.classification is CommitClassification.BUG_FIX
    assert result.confidence == 1.0


def test_duration_is_capped():
    result = estimate(make_analysis("import data", ["data.py"], insertions=5000, deletions=2000))
    assert result.duration == MAX_DURATION


@pytest.mark.parametrize(
    "message, expected",
    [
        ("fix flaky test", CommitClassification.BUG_FIX),
        ("test the docs builder", CommitClassification.TEST),
        ("docs: refactor guide", CommitClassification.DOCUMENTATION),
        ("Refactor storage", CommitClassification.REFACTOR),
        ("debug output", CommitClassification.BUG_FIX),
    ],
)
def test_keyword_priority(message, expected):
    assert estimate(make_analysis(message, ["notes.txt"])).classification is expected


def test_documentation_with_doc_files_has_full_confidence():
    result = estimate(make_analysis("docs: explain setup", ["docs/setup.md", "index.rst"]))
    assert result.classification is CommitClassification.DOCUMENTATION
    assert result.confidence == 1.0


def test_no_signal_agrees():
    result = estimate(make_analysis("update", ["image.png"]))
    assert result.classification is CommitClassification.OTHER
    assert result.confidence == 0.0


def test_test_files_support_test_classification():
    result = estimate(make_analysis("test: cover parser", ["tests/test_parser.py"]))
    assert result.classification is CommitClassification.TEST
    assert result.confidence == 1.0


def test_custom_weight_table():
    weights = WeightTable.build(["py"], ["md"], code_minutes=7, doc_minutes=2, overrides={".lock": 3})
    result = estimate(make_analysis("bump", ["a.py", "b.md", "poetry.lock"]), weights)
    assert result.duration == dt.timedelta(minutes=15 + 7 + 2 + 3)


def test_estimate_is_pure():
    analysis = make_analysis("fix bug", ["a.py"], insertions=42)
    assert estimate(analysis, DEFAULT_WEIGHTS) == estimate(analysis, DEFAULT_WEIGHTS)
