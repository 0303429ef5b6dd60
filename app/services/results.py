"""Subject and overall result derivation.

Results are always derived from the subject list, never trusted from storage:

- an absent marker (``AB``/``ABS``/``ABSENT``) in marks or result makes the
  subject Absent;
- numeric marks are compared against the pass threshold;
- otherwise an explicit result token (Pass/P, Fail/F) is used;
- a subject carrying no information counts as Pass.

The overall result is Absent if any subject is Absent, else Fail if any subject
failed, else Pass.
"""

from typing import Any, Iterable

from app.core.config import settings
from app.models.marksheet import SubjectResult

ABSENT_TOKENS = frozenset({"AB", "ABS", "ABSENT"})

_RESULT_TOKENS = {
    "PASS": SubjectResult.PASS,
    "P": SubjectResult.PASS,
    "FAIL": SubjectResult.FAIL,
    "F": SubjectResult.FAIL,
}


def _normalize_string(value: Any) -> str:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value).strip().upper()
    if isinstance(value, str):
        return value.strip().upper()
    return ""


def is_absent_value(value: Any) -> bool:
    """Check whether a marks/result value is an absent marker."""
    if value is None:
        return False
    return _normalize_string(value) in ABSENT_TOKENS


def normalize_result_token(value: Any) -> SubjectResult | None:
    """Map a free-form result token to a SubjectResult."""
    token = _normalize_string(value)
    if not token:
        return None
    if token in ABSENT_TOKENS:
        return SubjectResult.ABSENT
    return _RESULT_TOKENS.get(token)


def derive_result_from_marks(marks: Any, threshold: float | None = None) -> SubjectResult | None:
    """Pass/Fail from numeric marks, or None if marks are not numeric."""
    if marks is None or isinstance(marks, bool):
        return None
    try:
        numeric = float(marks)
    except (TypeError, ValueError):
        return None
    if threshold is None:
        threshold = settings.PASS_MARK_THRESHOLD
    return SubjectResult.PASS if numeric >= threshold else SubjectResult.FAIL


def derive_subject_result(subject: dict[str, Any], threshold: float | None = None) -> SubjectResult:
    """Derive the result of a single subject."""
    marks = subject.get("marks")
    result = subject.get("result")

    if is_absent_value(marks) or is_absent_value(result):
        return SubjectResult.ABSENT

    from_marks = derive_result_from_marks(marks, threshold)
    if from_marks:
        return from_marks

    return normalize_result_token(result) or SubjectResult.PASS


def normalize_subjects(
    subjects: Iterable[dict[str, Any]],
    threshold: float | None = None,
) -> list[dict[str, Any]]:
    """Return copies of the subjects with a derived ``result``."""
    return [
        {**subject, "result": derive_subject_result(subject, threshold).value}
        for subject in subjects
    ]


def derive_overall_result(
    subjects: Iterable[dict[str, Any]],
    threshold: float | None = None,
) -> SubjectResult:
    """Absent beats Fail beats Pass."""
    has_fail = False
    for subject in subjects:
        result = derive_subject_result(subject, threshold)
        if result == SubjectResult.ABSENT:
            return SubjectResult.ABSENT
        if result == SubjectResult.FAIL:
            has_fail = True
    return SubjectResult.FAIL if has_fail else SubjectResult.PASS
