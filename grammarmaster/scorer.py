"""
Scoring of attempt answer sets against quiz definitions.
"""
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .models import AnswerOutcome, Question, Quiz, ScoreReport


def score_attempt(questions: Sequence[Question], answers: Mapping[int, int]) -> ScoreReport:
    """
    Score an answer mapping against a question sequence.

    Questions without an entry in ``answers`` are recorded with answer None
    and counted as incorrect. Outcomes follow question order, not the order
    answers were selected in.

    Args:
        questions: Ordered questions of the quiz
        answers: Mapping of question id to selected option index

    Returns:
        ScoreReport with the score, question count and per-question outcomes
    """
    outcomes: List[AnswerOutcome] = []
    score = 0
    for question in questions:
        selected: Optional[int] = answers.get(question.id)
        correct = selected is not None and selected == question.correct_answer
        if correct:
            score += 1
        outcomes.append(AnswerOutcome(question_id=question.id, answer=selected, correct=correct))

    return ScoreReport(score=score, total_questions=len(questions), outcomes=outcomes)


def build_review(quiz: Quiz, answers: Mapping[int, int]) -> List[Dict[str, Any]]:
    """Per-question review entries: prompt, options, selection, correct answer and explanation."""
    report = score_attempt(quiz.questions, answers)
    review = []
    for question, outcome in zip(quiz.questions, report.outcomes):
        review.append({
            'questionId': question.id,
            'question': question.question,
            'options': list(question.options),
            'selectedAnswer': outcome.answer,
            'correctAnswer': question.correct_answer,
            'correct': outcome.correct,
            'explanation': question.explanation,
        })
    return review
