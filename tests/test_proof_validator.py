"""Tests for proof scoring."""

import pytest

from focuslock import proof_validator
from focuslock.errors import ValidationError
from focuslock.models import ProofMethod


class TestCheckin:
    def test_short_text_rejected(self):
        verdict = proof_validator.validate("checkin", {"text": "x" * 10})
        assert verdict.accepted is False
        assert verdict.score == 0

    def test_long_text_accepted(self):
        verdict = proof_validator.validate("checkin", {"text": "x" * 25})
        assert verdict.accepted is True
        assert verdict.score == 90

    def test_exactly_twenty_chars_rejected(self):
        """The threshold is strictly greater than 20."""
        assert proof_validator.score_checkin({"text": "a" * 20}).accepted is False
        assert proof_validator.score_checkin({"text": "a" * 21}).accepted is True

    def test_whitespace_is_stripped_before_counting(self):
        verdict = proof_validator.score_checkin({"text": "   short   " + " " * 30})
        assert verdict.accepted is False
        assert verdict.result["text"] == "short"

    def test_missing_text_rejected(self):
        assert proof_validator.score_checkin({}).accepted is False

    def test_non_string_text_is_invalid(self):
        with pytest.raises(ValidationError):
            proof_validator.score_checkin({"text": 42})


class TestQuiz:
    def test_no_answers_rejected(self):
        verdict = proof_validator.validate("quiz", {"answers": []})
        assert verdict.accepted is False
        assert verdict.score == 0

    def test_missing_answers_rejected(self):
        assert proof_validator.validate("quiz", {}).score == 0

    def test_all_answered_without_key(self):
        verdict = proof_validator.score_quiz({"answers": ["a", "b", "c"]})
        assert verdict.accepted is True
        assert verdict.score == 100

    def test_blank_answers_count_against_score(self):
        verdict = proof_validator.score_quiz({"answers": ["a", "", "  "]})
        assert verdict.score == 33
        assert verdict.accepted is False

    def test_answer_key_is_case_insensitive(self):
        verdict = proof_validator.score_quiz(
            {
                "answers": {"q1": "Paris", "q2": "blue", "q3": "4"},
                "answerKey": {"q1": "paris", "q2": "BLUE", "q3": "5"},
            }
        )
        assert verdict.score == 67
        assert verdict.accepted is False
        assert verdict.result["correct"] == 2

    def test_pass_mark_is_seventy(self):
        answers = {str(i): "x" for i in range(10)}
        key = {str(i): "x" if i < 7 else "y" for i in range(10)}
        verdict = proof_validator.score_quiz({"answers": answers, "answerKey": key})
        assert verdict.score == 70
        assert verdict.accepted is True

    def test_answers_must_be_collection(self):
        with pytest.raises(ValidationError):
            proof_validator.score_quiz({"answers": "all of them"})


class TestScreenshot:
    def test_artifact_accepted(self):
        verdict = proof_validator.validate("screenshot", {"artifactUrl": "s3://proofs/1.png"})
        assert verdict.accepted is True
        assert verdict.score == 100
        assert verdict.artifact_url == "s3://proofs/1.png"

    @pytest.mark.parametrize("key", ["artifact_url", "imageUrl"])
    def test_alternate_keys(self, key):
        assert proof_validator.score_screenshot({key: "file.png"}).accepted is True

    def test_missing_artifact_rejected(self):
        verdict = proof_validator.score_screenshot({"artifactUrl": "   "})
        assert verdict.accepted is False
        assert verdict.artifact_url is None


class TestDispatch:
    def test_parse_method(self):
        assert proof_validator.parse_method("quiz") is ProofMethod.QUIZ

    def test_unknown_method(self):
        with pytest.raises(ValidationError, match="Unknown proof method"):
            proof_validator.validate("selfie", {})

    def test_payload_must_be_object(self):
        with pytest.raises(ValidationError):
            proof_validator.validate("checkin", ["not", "a", "dict"])

    def test_none_payload_is_empty(self):
        assert proof_validator.validate("checkin", None).accepted is False
