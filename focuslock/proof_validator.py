"""
Proof scoring.

Pure functions, one per proof method. Each takes the submitted payload and
returns a ProofVerdict; persisting the proof and moving the session is the
caller's job.

    screenshot  accepted when an artifact reference is present (score 100)
    quiz        accepted when there are answers and the score reaches 70
    checkin     accepted when the stripped text is longer than 20 chars (score 90)
"""

from collections.abc import Callable
from dataclasses import dataclass, field

from focuslock.errors import ValidationError
from focuslock.models import ProofMethod

QUIZ_PASS_SCORE = 70
CHECKIN_MIN_LENGTH = 20
CHECKIN_SCORE = 90
SCREENSHOT_SCORE = 100


@dataclass
class ProofVerdict:
    accepted: bool
    score: int
    result: dict = field(default_factory=dict)
    artifact_url: str | None = None


def _normalize_answers(answers) -> dict[str, str]:
    if answers is None:
        return {}
    if isinstance(answers, dict):
        items = answers.items()
    elif isinstance(answers, list):
        items = ((str(i), a) for i, a in enumerate(answers))
    else:
        raise ValidationError("answers must be an object or a list")
    return {str(k): "" if v is None else str(v).strip() for k, v in items}


def score_screenshot(payload: dict) -> ProofVerdict:
    artifact = payload.get("artifactUrl") or payload.get("artifact_url") or payload.get("imageUrl")
    if isinstance(artifact, str):
        artifact = artifact.strip() or None
    accepted = bool(artifact)
    return ProofVerdict(
        accepted=accepted,
        score=SCREENSHOT_SCORE if accepted else 0,
        result={"valid": accepted},
        artifact_url=artifact,
    )


def score_quiz(payload: dict) -> ProofVerdict:
    """
    Score is the share of correct answers, as a percentage.

    With an answer key, an answer is correct when it matches the key
    (case-insensitive). Without one, any non-empty answer counts.
    """
    answers = _normalize_answers(payload.get("answers"))
    if not answers:
        return ProofVerdict(accepted=False, score=0, result={"answers": {}, "valid": False})

    key = _normalize_answers(payload.get("answerKey") or payload.get("answer_key"))
    if key:
        correct = sum(
            1 for q, expected in key.items() if answers.get(q, "").lower() == expected.lower()
        )
        total = len(key)
    else:
        correct = sum(1 for a in answers.values() if a)
        total = len(answers)

    score = round(correct * 100 / total) if total else 0
    accepted = score >= QUIZ_PASS_SCORE
    return ProofVerdict(
        accepted=accepted,
        score=score,
        result={"answers": answers, "correct": correct, "total": total, "valid": accepted},
    )


def score_checkin(payload: dict) -> ProofVerdict:
    text = payload.get("text")
    if text is not None and not isinstance(text, str):
        raise ValidationError("text must be a string")
    stripped = (text or "").strip()
    accepted = len(stripped) > CHECKIN_MIN_LENGTH
    return ProofVerdict(
        accepted=accepted,
        score=CHECKIN_SCORE if accepted else 0,
        result={"text": stripped, "valid": accepted},
    )


_SCORERS: dict[ProofMethod, Callable[[dict], ProofVerdict]] = {
    ProofMethod.SCREENSHOT: score_screenshot,
    ProofMethod.QUIZ: score_quiz,
    ProofMethod.CHECKIN: score_checkin,
}


def parse_method(method: str) -> ProofMethod:
    try:
        return ProofMethod(method)
    except ValueError as e:
        raise ValidationError(f"Unknown proof method: {method}") from e


def validate(method: str, payload: dict | None) -> ProofVerdict:
    """Score *payload* for *method*. Unknown methods raise ValidationError."""
    if payload is not None and not isinstance(payload, dict):
        raise ValidationError("Proof payload must be an object")
    return _SCORERS[parse_method(method)](payload or {})
