from __future__ import annotations

import pytest

from crm.scorecards.engine import ScorecardError, score_scorecard


def test_single_yes_no_question_scores_full_marks() -> None:
  template = {"questions": [{"section": "Fit", "answer_type": "yes_no", "weight": 10}]}
  r = score_scorecard(template, {"0": "yes"})
  assert r.total_score == 10
  assert r.total_possible_score == 10
  assert r.normalized_score == 100
  assert r.is_pass is True
  assert r.section_scores == {"Fit": 10}


def test_multi_select_sums_selected_option_weights() -> None:
  template = {
    "questions": [
      {
        "section": "Services",
        "answer_type": "multi_select",
        "weight": 5,
        "options": [{"label": "Mowing", "weight": 1}, {"label": "Snow", "weight": 2}, {"label": "Irrigation", "weight": 3}],
      }
    ]
  }
  r = score_scorecard(template, {0: ["Mowing", "Snow"]})
  assert r.responses[0]["weighted_score"] == 15
  assert r.total_possible_score == 30
  assert r.normalized_score == 50
  assert r.is_pass is False


def test_scales_single_select_and_sections() -> None:
  template = {
    "pass_threshold": 60,
    "questions": [
      {"section": "Size", "answer_type": "scale_1_5", "weight": 2},
      {"section": "Size", "answer_type": "scale_1_10", "weight": 1},
      {"answer_type": "single_select", "weight": 3, "options": [{"label": "Low", "weight": 0}, {"label": "High", "weight": 2}]},
    ],
  }
  r = score_scorecard(template, [4, 7, 1])
  assert r.section_scores == {"Size": 15, "Other": 6}
  assert r.total_score == 21
  assert r.total_possible_score == 2 * 5 + 10 + 3 * 2
  assert r.normalized_score == round(100 * 21 / 26)
  assert r.is_pass is True


def test_win_rate_section_is_never_scored() -> None:
  template = {
    "questions": [
      {"section": "Win Rate", "answer_type": "scale_1_10", "weight": 10},
      {"section": "Fit", "answer_type": "yes_no", "weight": 1},
    ]
  }
  r = score_scorecard(template, {"0": 10, "1": True})
  assert "Win Rate" not in r.section_scores
  assert r.total_possible_score == 1
  assert r.normalized_score == 100


def test_unanswered_and_empty_templates_score_zero() -> None:
  r = score_scorecard({"questions": [{"answer_type": "yes_no", "weight": 4}]}, {})
  assert r.total_score == 0
  assert r.normalized_score == 0
  assert score_scorecard({"questions": []}, {}).normalized_score == 0


def test_out_of_range_scale_is_rejected() -> None:
  template = {"questions": [{"answer_type": "scale_1_5", "weight": 1}]}
  with pytest.raises(ScorecardError):
    score_scorecard(template, {"0": 6})


def test_unknown_option_is_rejected() -> None:
  template = {"questions": [{"answer_type": "single_select", "weight": 1, "options": [{"label": "A", "weight": 1}]}]}
  with pytest.raises(ScorecardError):
    score_scorecard(template, {"0": "Z"})


def test_zero_pass_threshold_is_honoured() -> None:
  template = {"pass_threshold": 0, "questions": [{"section": "Fit", "answer_type": "yes_no", "weight": 10}]}
  r = score_scorecard(template, {"0": "no"})
  assert r.normalized_score == 0
  assert r.is_pass is True
  assert score_scorecard(template, {"0": "no"}, pass_threshold=50).is_pass is False


def test_missing_threshold_defaults_to_seventy() -> None:
  template = {"pass_threshold": None, "questions": [{"answer_type": "scale_1_10", "weight": 1}]}
  assert score_scorecard(template, {"0": 7}).is_pass is True
  assert score_scorecard(template, {"0": 6}).is_pass is False
