"""
Grading Session
Turns one (image, answer key) pair into a GradingSummary and tracks manual corrections.
"""
from typing import Dict, List, Mapping, Optional

from autograde.config import GRADING_FAILED_MESSAGE, SCAN_FAILED_MESSAGE
from autograde.errors import (
    AnalysisFailed,
    EmptyKey,
    InvalidAnswer,
    NoImage,
    NoResult,
    QuestionOutOfRange,
    SessionBusy,
)
from autograde.schemas import (
    DetectedAnswer,
    ExamConfig,
    GradingSummary,
    Option,
    SheetImage,
    StudentResult,
    normalize_option,
)
from autograde.services.ai_engine import analyze_answer_sheet, get_client
from autograde.services.history import History


def count_filled(key: Mapping[int, Option]) -> int:
    return sum(1 for option in key.values() if option is not None)


def is_match(correct: Option, student: Option) -> bool:
    """A question is correct only when the key is set and the letters agree."""
    if correct is None or student is None:
        return False
    return correct.strip().upper() == student.strip().upper()


def compute_score(correct_count: int, denominator: int, max_score: float) -> float:
    if denominator <= 0:
        return 0.0
    return correct_count * max_score / denominator


def build_graded_summary(
    detected: Mapping[int, DetectedAnswer],
    key: Mapping[int, Option],
    config: ExamConfig,
    image_url: Optional[str] = None,
) -> GradingSummary:
    """
    Reconciles detections against the key.

    The score denominator is the number of set key entries, or the full
    question count when none are set.
    """
    results: List[StudentResult] = []
    correct_count = 0
    for question in range(1, config.question_count + 1):
        correct = key.get(question)
        found = detected.get(question)
        student = found.answer if found else None
        is_correct = is_match(correct, student)
        if is_correct:
            correct_count += 1
        results.append(StudentResult(
            question_id=question,
            student_answer=student,
            correct_answer=correct,
            is_correct=is_correct,
            box_2d=found.box_2d if found else None,
        ))

    filled = count_filled(key)
    denominator = filled if filled > 0 else config.question_count
    return GradingSummary(
        total_questions=denominator,
        correct_count=correct_count,
        score=compute_score(correct_count, denominator, config.max_score),
        max_score=config.max_score,
        results=results,
        image_url=image_url,
    )


def build_scan_summary(
    detected: Mapping[int, DetectedAnswer],
    config: ExamConfig,
    image_url: Optional[str] = None,
) -> GradingSummary:
    """Detections only: no correct answers, no score."""
    results = []
    for question in range(1, config.question_count + 1):
        found = detected.get(question)
        results.append(StudentResult(
            question_id=question,
            student_answer=found.answer if found else None,
            correct_answer=None,
            is_correct=False,
            box_2d=found.box_2d if found else None,
        ))
    return GradingSummary(
        total_questions=config.question_count,
        results=results,
        image_url=image_url,
    )


def apply_correction(summary: GradingSummary, question_id: int, new_option: Option) -> GradingSummary:
    """
    Returns a new summary with one student answer replaced.

    Correctness is rechecked against the stored correct answer; count and
    score are recomputed only for graded summaries.
    """
    if not any(result.question_id == question_id for result in summary.results):
        raise QuestionOutOfRange(f"Question {question_id} is not part of this result.")

    results = [
        result.model_copy(update={
            "student_answer": new_option,
            "is_correct": is_match(result.correct_answer, new_option),
        }) if result.question_id == question_id else result
        for result in summary.results
    ]

    update: Dict = {"results": results}
    if summary.is_graded:
        correct_count = sum(1 for result in results if result.is_correct)
        update["correct_count"] = correct_count
        update["score"] = compute_score(
            correct_count, summary.total_questions, summary.max_score or 10.0
        )
    return summary.model_copy(update=update)


class GradingSession:
    """
    One loaded image and the summaries produced from it.

    Loading a new image discards the previous summary and its history. At
    most one gateway request runs at a time; `processing` gates new runs.
    """

    def __init__(self, max_history: Optional[int] = None):
        self.image: Optional[SheetImage] = None
        self.history = History(max_entries=max_history)
        self.processing = False
        self.error: Optional[str] = None

    @property
    def summary(self) -> Optional[GradingSummary]:
        return self.history.current

    def load_image(self, image: SheetImage) -> None:
        self.image = image
        self.history.reset()
        self.error = None

    def remove_image(self) -> None:
        self.image = None
        self.history.reset()
        self.error = None

    def _detect(self, config: ExamConfig, api_key: Optional[str], failure_message: str) -> Dict[int, DetectedAnswer]:
        if self.image is None:
            raise NoImage("Upload an exam image first.")
        if self.processing:
            raise SessionBusy("A sheet is already being processed.")

        self.processing = True
        self.error = None
        try:
            client = get_client(api_key)
            return analyze_answer_sheet(client, self.image, config.question_count, config.option_labels)
        except AnalysisFailed as e:
            print(f"[Session] Analysis failed: {e}")
            self.error = failure_message
            raise AnalysisFailed(failure_message) from e
        finally:
            self.processing = False

    def grade(
        self,
        key: Mapping[int, Option],
        config: ExamConfig,
        exam_code: str = "",
        api_key: Optional[str] = None,
    ) -> GradingSummary:
        """
        Grades the loaded image against a key and starts a fresh history.

        Raises:
            EmptyKey: Before any gateway call, if no key answer is set.
            AnalysisFailed: If the gateway fails; prior state is kept.
        """
        if count_filled(key) == 0:
            label = f"Exam code {exam_code}" if exam_code else "The selected exam code"
            raise EmptyKey(f"{label} has no answers yet. Please fill in the answer key first.")

        detected = self._detect(config, api_key, GRADING_FAILED_MESSAGE)
        summary = build_graded_summary(detected, key, config, self.image.data_url)
        self.history.reset(summary)
        print(f"[Session] Graded: {summary.correct_count}/{summary.total_questions}, score {summary.score:.2f}")
        return summary

    def scan_only(self, config: ExamConfig, api_key: Optional[str] = None) -> GradingSummary:
        """Reads the sheet without a key and starts a fresh history."""
        detected = self._detect(config, api_key, SCAN_FAILED_MESSAGE)
        summary = build_scan_summary(detected, config, self.image.data_url)
        self.history.reset(summary)
        return summary

    def update_answer(
        self,
        question_id: int,
        new_option: Option,
        valid_options: Optional[List[str]] = None,
    ) -> GradingSummary:
        if self.summary is None:
            raise NoResult("There is no result to correct.")
        option = normalize_option(new_option)
        if option is not None and valid_options is not None and option not in valid_options:
            raise InvalidAnswer(f"Option {option} is not one of {', '.join(valid_options)}.")

        summary = apply_correction(self.summary, question_id, option)
        self.history.record(summary)
        return summary

    def undo(self) -> Optional[GradingSummary]:
        return self.history.undo()

    def redo(self) -> Optional[GradingSummary]:
        return self.history.redo()
