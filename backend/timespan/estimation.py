"""Estimate the time spent on a commit from its analysis.

``estimate`` is a pure function: the same analysis and weight table always
give the same estimate, and nothing outside the arguments is consulted.

Minutes are added up as follows:

* 15 minutes base;
* ``round((insertions + deletions) / 50 * 10)`` minutes for the size;
* the weight of every distinct file extension touched (code 5, docs and
  markup 1, anything else 0 by default);
* 10 minutes when the message mentions ``fix`` or ``bug``;
* the sum is capped at 4 hours.

Classification follows the ordered rules in :data:`KEYWORD_RULES` and falls
back to the file extensions. Confidence is the share of the two signals
(message keywords, touched files) that agree with the chosen classification.
"""

from __future__ import annotations

import datetime as dt
import enum
from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, Mapping, Optional, Tuple

from .config import DEFAULT_CODE_EXTENSIONS, DEFAULT_DOC_EXTENSIONS
from .git_analysis import CommitAnalysis

BASE_MINUTES = 15
LINES_PER_STEP = 50.0
MINUTES_PER_STEP = 10
BUGFIX_BONUS_MINUTES = 10
MAX_DURATION = dt.timedelta(hours=4)
SIGNALS_CONSIDERED = 2


class CommitClassification(str, enum.Enum):
    FEATURE = "Feature"
    BUG_FIX = "BugFix"
    TEST = "Test"
    DOCUMENTATION = "Documentation"
    REFACTOR = "Refactor"
    OTHER = "Other"


# Checked in order; the first rule with a matching keyword wins.
KEYWORD_RULES: Tuple[Tuple[Tuple[str, ...], CommitClassification], ...] = (
    (("fix", "bug"), CommitClassification.BUG_FIX),
    (("test",), CommitClassification.TEST),
    (("doc",), CommitClassification.DOCUMENTATION),
    (("refactor",), CommitClassification.REFACTOR),
)

CODE_COMPATIBLE = frozenset(
    {CommitClassification.FEATURE, CommitClassification.BUG_FIX, CommitClassification.REFACTOR}
)


@dataclass(frozen=True)
class WeightTable:
    code_extensions: FrozenSet[str]
    doc_extensions: FrozenSet[str]
    code_minutes: int = 5
    doc_minutes: int = 1
    overrides: Mapping[str, int] = field(default_factory=dict)

    @classmethod
    def build(
        cls,
        code_extensions: Iterable[str],
        doc_extensions: Iterable[str],
        code_minutes: int = 5,
        doc_minutes: int = 1,
        overrides: Optional[Mapping[str, int]] = None,
    ) -> "WeightTable":
        def _clean(values: Iterable[str]) -> FrozenSet[str]:
            return frozenset(value.strip().lstrip(".").lower() for value in values if value.strip())

        return cls(
            code_extensions=_clean(code_extensions),
            doc_extensions=_clean(doc_extensions),
            code_minutes=code_minutes,
            doc_minutes=doc_minutes,
            overrides={key.lstrip(".").lower(): value for key, value in (overrides or {}).items()},
        )

    @classmethod
    def from_settings(cls, config) -> "WeightTable":
        return cls.build(
            config.code_extensions,
            config.doc_extensions,
            code_minutes=config.code_extension_minutes,
            doc_minutes=config.doc_extension_minutes,
        )

    def is_code(self, extension: str) -> bool:
        return extension in self.code_extensions

    def is_doc(self, extension: str) -> bool:
        return extension in self.doc_extensions

    def minutes_for(self, extension: str) -> int:
        if extension in self.overrides:
            return self.overrides[extension]
        if self.is_code(extension):
            return self.code_minutes
        if self.is_doc(extension):
            return self.doc_minutes
        return 0


DEFAULT_WEIGHTS = WeightTable.build(DEFAULT_CODE_EXTENSIONS, DEFAULT_DOC_EXTENSIONS)


@dataclass(frozen=True)
class CommitEstimate:
    duration: dt.timedelta
    classification: CommitClassification
    confidence: float

    @property
    def minutes(self) -> int:
        return int(self.duration.total_seconds() // 60)


def _keyword_classification(analysis: CommitAnalysis) -> Optional[CommitClassification]:
    for keywords, classification in KEYWORD_RULES:
        if analysis.has_keyword(*keywords):
            return classification
    return None


def _file_compatible(analysis: CommitAnalysis, weights: WeightTable) -> FrozenSet[CommitClassification]:
    """Classifications the set of touched files is consistent with."""
    compatible = set()
    extensions = analysis.extensions
    if analysis.test_files:
        compatible.add(CommitClassification.TEST)
    if any(weights.is_code(ext) for ext in extensions):
        compatible.update(CODE_COMPATIBLE)
    if extensions and all(weights.is_doc(ext) for ext in extensions):
        compatible.add(CommitClassification.DOCUMENTATION)
    return frozenset(compatible)


def classify(analysis: CommitAnalysis, weights: WeightTable) -> CommitClassification:
    by_keyword = _keyword_classification(analysis)
    if by_keyword is not None:
        return by_keyword
    if any(weights.is_code(ext) for ext in analysis.extensions):
        return CommitClassification.FEATURE
    return CommitClassification.OTHER


def confidence(
    analysis: CommitAnalysis,
    classification: CommitClassification,
    weights: WeightTable,
) -> float:
    agreeing = 0
    if _keyword_classification(analysis) is classification:
        agreeing += 1
    if classification in _file_compatible(analysis, weights):
        agreeing += 1
    return agreeing / SIGNALS_CONSIDERED


def estimate_minutes(analysis: CommitAnalysis, weights: WeightTable) -> int:
    minutes = BASE_MINUTES
    lines_factor = analysis.total_changes / LINES_PER_STEP
    minutes += round(lines_factor * MINUTES_PER_STEP)
    extension_bonus = sum(weights.minutes_for(ext) for ext in analysis.extensions)
    minutes += max(extension_bonus, 0)
    if analysis.has_keyword("fix", "bug"):
        minutes += BUGFIX_BONUS_MINUTES
    return minutes


def estimate(analysis: CommitAnalysis, weights: Optional[WeightTable] = None) -> CommitEstimate:
    if weights is None:
        weights = DEFAULT_WEIGHTS
    duration = min(dt.timedelta(minutes=estimate_minutes(analysis, weights)), MAX_DURATION)
    classification = classify(analysis, weights)
    return CommitEstimate(
        duration=duration,
        classification=classification,
        confidence=confidence(analysis, classification, weights),
    )
