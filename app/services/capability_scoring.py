"""Capability scoring (v1).

Pure functions over a rubric and a ``question_id -> rating`` map. Nothing here
touches the database, so the same code scores drafts, completed snapshots and
the client's feedback view.

Rules:
- A domain average is the mean of the ratings present for its questions. A
  domain with no ratings yet has no average (``None``), never zero.
- The overall average is the mean of all present ratings across all domains,
  flattened, not the mean of domain averages.
- Pass/fail compares unrounded percentages (average / rating_scale * 100)
  against the assessment threshold. ``per_domain`` mode fails if any scored
  domain is below threshold; unscored domains never block a pass.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Mapping, Optional

from app.models.capability import PassFailMode

logger = logging.getLogger("app.scoring")

PASS_LABEL = "Pass"
FAIL_LABEL = "Needs Improvement"


@dataclass(frozen=True)
class PassFailResult:
    passed: bool
    label: str


@dataclass
class DomainScore:
    domain_id: str
    name: str
    average: Optional[float]
    rated_count: int
    pass_fail: Optional[PassFailResult] = None

    @property
    def display_average(self) -> Optional[float]:
        return display_round(self.average)


@dataclass
class ScoreSummary:
    rating_scale: int
    overall_average: Optional[float]
    pass_fail: Optional[PassFailResult]
    domains: List[DomainScore] = field(default_factory=list)

    @property
    def display_overall_average(self) -> Optional[float]:
        return display_round(self.overall_average)


def display_round(value: Optional[float]) -> Optional[float]:
    """Averages are shown with one decimal; comparisons never use this."""
    if value is None:
        return None
    return round(value, 1)


def _present_ratings(domain, ratings_by_question: Mapping[str, int]) -> List[int]:
    return [
        ratings_by_question[q.id]
        for q in domain.questions
        if ratings_by_question.get(q.id) is not None
    ]


def domain_average(domain, ratings_by_question: Mapping[str, int]) -> Optional[float]:
    values = _present_ratings(domain, ratings_by_question)
    if not values:
        return None
    return sum(values) / len(values)


def overall_average(domains: Iterable, ratings_by_question: Mapping[str, int]) -> Optional[float]:
    values: List[int] = []
    for domain in domains:
        values.extend(_present_ratings(domain, ratings_by_question))
    if not values:
        return None
    return sum(values) / len(values)


def _percentage(average: float, rating_scale: int) -> float:
    return average / rating_scale * 100


def _pass_fail_configured(assessment) -> bool:
    return bool(assessment.pass_fail_enabled) and assessment.pass_fail_threshold is not None


def _result(passed: bool) -> PassFailResult:
    return PassFailResult(passed=True, label=PASS_LABEL) if passed else PassFailResult(passed=False, label=FAIL_LABEL)


def pass_fail_status(assessment, domains, ratings_by_question: Mapping[str, int]) -> Optional[PassFailResult]:
    """Overall pass/fail outcome, or ``None`` when it can't be decided.

    ``None`` is returned unless pass/fail is enabled, a threshold is set and
    at least one rating exists.
    """
    if not _pass_fail_configured(assessment):
        return None
    domains = list(domains)
    overall = overall_average(domains, ratings_by_question)
    if overall is None:
        return None

    threshold = assessment.pass_fail_threshold
    scale = assessment.rating_scale
    mode = assessment.pass_fail_mode or PassFailMode.overall.value

    if mode == PassFailMode.per_domain.value:
        for domain in domains:
            avg = domain_average(domain, ratings_by_question)
            if avg is not None and _percentage(avg, scale) < threshold:
                return _result(False)
        return _result(True)

    return _result(_percentage(overall, scale) >= threshold)


def domain_pass_fail_status(assessment, domain, ratings_by_question: Mapping[str, int]) -> Optional[PassFailResult]:
    """Badge for a single domain; ``None`` if not configured or not yet scored."""
    if not _pass_fail_configured(assessment):
        return None
    avg = domain_average(domain, ratings_by_question)
    if avg is None:
        return None
    return _result(_percentage(avg, assessment.rating_scale) >= assessment.pass_fail_threshold)


def summarize(assessment, domains, ratings_by_question: Mapping[str, int]) -> ScoreSummary:
    domains = list(domains)
    domain_scores = [
        DomainScore(
            domain_id=d.id,
            name=d.name,
            average=domain_average(d, ratings_by_question),
            rated_count=len(_present_ratings(d, ratings_by_question)),
            pass_fail=domain_pass_fail_status(assessment, d, ratings_by_question),
        )
        for d in domains
    ]
    summary = ScoreSummary(
        rating_scale=assessment.rating_scale,
        overall_average=overall_average(domains, ratings_by_question),
        pass_fail=pass_fail_status(assessment, domains, ratings_by_question),
        domains=domain_scores,
    )
    logger.debug(
        "summary assessment=%s overall=%s pass_fail=%s",
        assessment.id, summary.overall_average, summary.pass_fail,
    )
    return summary


def validate_ratings(ratings: Mapping[str, object], question_ids: Iterable[str], rating_scale: int) -> List[str]:
    """Return list of validation error messages (empty if valid)."""
    errors: List[str] = []
    known = set(question_ids)
    unknown = sorted(k for k in ratings.keys() if k not in known)
    if unknown:
        errors.append(f"Unknown questions: {', '.join(unknown)}")
    out_of_range = sorted(
        k for k, v in ratings.items()
        if k in known and (isinstance(v, bool) or not isinstance(v, int) or v < 1 or v > rating_scale)
    )
    if out_of_range:
        errors.append(f"Out-of-range (1-{rating_scale}) ratings: {', '.join(out_of_range)}")
    return errors
