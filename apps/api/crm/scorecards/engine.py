from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

ANSWER_TYPES = ("yes_no", "scale_1_5", "scale_1_10", "single_select", "multi_select")

# Informational section, never scored.
EXCLUDED_SECTIONS = frozenset({"Win Rate"})
DEFAULT_SECTION = "Other"
DEFAULT_PASS_THRESHOLD = 70

SCALE_MAX = {"scale_1_5": 5, "scale_1_10": 10}


class ScorecardError(Exception):
  status_code = 400

  def __init__(self, message: str) -> None:
    super().__init__(message)
    self.message = message


@dataclass
class ScorecardResult:
  responses: list[dict[str, Any]] = field(default_factory=list)
  section_scores: dict[str, float] = field(default_factory=dict)
  total_score: float = 0
  total_possible_score: float = 0
  normalized_score: int = 0
  is_pass: bool = False

  def as_dict(self) -> dict[str, Any]:
    return {
      "responses": self.responses,
      "section_scores": self.section_scores,
      "total_score": self.total_score,
      "total_possible_score": self.total_possible_score,
      "normalized_score": self.normalized_score,
      "is_pass": self.is_pass,
    }


def _number(value: Any, what: str) -> float:
  if isinstance(value, bool):
    return 1.0 if value else 0.0
  try:
    return float(value)
  except (TypeError, ValueError):
    raise ScorecardError(f"{what} is not a number: {value!r}") from None


def _option_weights(question: dict[str, Any]) -> list[float]:
  return [_number((o or {}).get("weight", 0), "option weight") for o in question.get("options") or []]


def _find_option(question: dict[str, Any], selected: Any, qn: int) -> float:
  options = question.get("options") or []
  if isinstance(selected, int) and not isinstance(selected, bool):
    if 0 <= selected < len(options):
      return _number(options[selected].get("weight", 0), "option weight")
    raise ScorecardError(f"Question {qn}: option index {selected} out of range")
  for o in options:
    if selected in (o.get("label"), o.get("value"), o.get("id")):
      return _number(o.get("weight", 0), "option weight")
  raise ScorecardError(f"Question {qn}: unknown option {selected!r}")


def max_question_value(question: dict[str, Any]) -> float:
  atype = question.get("answer_type")
  if atype == "yes_no":
    return 1.0
  if atype in SCALE_MAX:
    return float(SCALE_MAX[atype])
  weights = _option_weights(question)
  if atype == "single_select":
    return max(weights) if weights else 0.0
  if atype == "multi_select":
    return sum(weights)
  return 0.0


def answer_value(question: dict[str, Any], answer: Any, qn: int) -> float:
  """Unweighted value of one answer. Unanswered questions are worth 0."""
  atype = question.get("answer_type")
  if atype not in ANSWER_TYPES:
    raise ScorecardError(f"Question {qn}: unknown answer type {atype!r}")
  if answer is None or answer == "" or answer == []:
    return 0.0

  if atype == "yes_no":
    if isinstance(answer, str):
      v = answer.strip().lower()
      if v in ("yes", "true", "1"):
        return 1.0
      if v in ("no", "false", "0"):
        return 0.0
      raise ScorecardError(f"Question {qn}: expected yes/no, got {answer!r}")
    return 1.0 if _number(answer, f"Question {qn}") else 0.0

  if atype in SCALE_MAX:
    v = _number(answer, f"Question {qn}")
    if v != 0 and not 1 <= v <= SCALE_MAX[atype]:
      raise ScorecardError(f"Question {qn}: {v:g} is outside 1-{SCALE_MAX[atype]}")
    return v

  if atype == "single_select":
    return _find_option(question, answer, qn)

  selected = answer if isinstance(answer, (list, tuple, set)) else [answer]
  return sum(_find_option(question, s, qn) for s in selected)


def _answer_for(answers: Any, question: dict[str, Any], index: int) -> Any:
  if isinstance(answers, (list, tuple)):
    return answers[index] if index < len(answers) else None
  answers = answers or {}
  for k in (question.get("id"), index, str(index)):
    if k is not None and k in answers:
      return answers[k]
  return None


def score_scorecard(template: dict[str, Any], answers: Any, *, pass_threshold: int | None = None) -> ScorecardResult:
  """Weighted section and total scores of `answers` against the template's questions."""
  threshold = pass_threshold
  if threshold is None:
    threshold = template.get("pass_threshold")
  if threshold is None:
    threshold = DEFAULT_PASS_THRESHOLD
  result = ScorecardResult()

  for i, q in enumerate(template.get("questions") or []):
    section = q.get("section") or DEFAULT_SECTION
    if section in EXCLUDED_SECTIONS:
      continue
    weight = _number(q.get("weight", 1), f"Question {i} weight")
    answer = _answer_for(answers, q, i)
    weighted = weight * answer_value(q, answer, i)
    result.responses.append(
      {
        "question_index": i,
        "question_text": q.get("question_text") or q.get("text") or "",
        "section": section,
        "answer_type": q.get("answer_type"),
        "answer": answer,
        "weight": weight,
        "weighted_score": weighted,
      }
    )
    result.section_scores[section] = result.section_scores.get(section, 0) + weighted
    result.total_possible_score += weight * max_question_value(q)

  result.total_score = sum(result.section_scores.values())
  if result.total_possible_score > 0:
    result.normalized_score = round(100 * result.total_score / result.total_possible_score)
  result.is_pass = result.normalized_score >= int(threshold)
  return result
