"""
Exam Key Store
Keeps one answer key per exam code, all sized to the shared question count.
"""
import random
import re
from typing import Dict, Iterable, List, Mapping, Optional

from autograde.errors import (
    DuplicateCode,
    InvalidAnswer,
    InvalidExamCode,
    LastCodeProtected,
    NotFound,
    QuestionOutOfRange,
)
from autograde.schemas import Option, normalize_option

AnswerKey = Dict[int, Option]


def natural_sort_key(code: str) -> List:
    """Sort key that compares digit runs numerically ("9" < "10" < "A1")."""
    return [
        (0, int(part), "") if part.isdigit() else (1, 0, part.lower())
        for part in re.split(r"(\d+)", code)
        if part
    ]


def empty_key(question_count: int) -> AnswerKey:
    return {question: None for question in range(1, question_count + 1)}


class ExamKeyStore:
    """
    Mapping of exam code -> answer key.

    Invariants:
        - at least one code exists
        - every key holds exactly questions 1..question_count
    """

    def __init__(self, question_count: int, keys: Optional[Mapping[str, Mapping[int, Option]]] = None):
        self.question_count = question_count
        self._keys: Dict[str, AnswerKey] = {}
        for code, answers in (keys or {}).items():
            self._keys[code] = self._sized(answers, question_count)

    @staticmethod
    def _sized(answers: Mapping[int, Option], question_count: int) -> AnswerKey:
        key = empty_key(question_count)
        for question, option in answers.items():
            if 1 <= question <= question_count:
                key[question] = normalize_option(option)
        return key

    def _require(self, code: str) -> AnswerKey:
        if code not in self._keys:
            raise NotFound(f"Exam code {code} does not exist.")
        return self._keys[code]

    def __contains__(self, code: str) -> bool:
        return code in self._keys

    def __len__(self) -> int:
        return len(self._keys)

    def codes(self) -> List[str]:
        return sorted(self._keys, key=natural_sort_key)

    def first_code(self) -> str:
        return self.codes()[0]

    def get_key(self, code: str) -> AnswerKey:
        return dict(self._require(code))

    def filled_count(self, code: str) -> int:
        return sum(1 for option in self._require(code).values() if option is not None)

    def add_code(self, code: str) -> None:
        cleaned = (code or "").strip()
        if not cleaned:
            raise InvalidExamCode("Exam code must not be empty.")
        if cleaned in self._keys:
            raise DuplicateCode(f"Exam code {cleaned} already exists.")
        self._keys[cleaned] = empty_key(self.question_count)

    def rename_code(self, old: str, new: str) -> None:
        self._require(old)
        cleaned = (new or "").strip()
        if not cleaned:
            raise InvalidExamCode("Exam code must not be empty.")
        if cleaned == old:
            return
        if cleaned in self._keys:
            raise DuplicateCode(f"Exam code {cleaned} already exists.")
        self._keys[cleaned] = self._keys.pop(old)

    def delete_code(self, code: str) -> str:
        """
        Removes an exam code.

        Returns:
            The first remaining code, which selections pointing at the
            deleted code should move to.

        Raises:
            NotFound: If code does not exist.
            LastCodeProtected: If code is the only one left.
        """
        self._require(code)
        if len(self._keys) <= 1:
            raise LastCodeProtected("At least one exam code must be kept.")
        del self._keys[code]
        return self.first_code()

    def set_answer(
        self,
        code: str,
        question: int,
        option: Option,
        valid_options: Optional[Iterable[str]] = None,
    ) -> Option:
        """
        Toggles the answer for one question. Selecting the option that is
        already set clears it.

        Returns:
            The answer now stored for the question.
        """
        key = self._require(code)
        if not 1 <= question <= self.question_count:
            raise QuestionOutOfRange(
                f"Question {question} is outside 1..{self.question_count}."
            )
        option = normalize_option(option)
        if option is not None and valid_options is not None and option not in valid_options:
            raise InvalidAnswer(f"Option {option} is not one of {', '.join(valid_options)}.")

        key[question] = None if key[question] == option else option
        return key[question]

    def replace_key(self, code: str, answers: Mapping[int, Option]) -> None:
        """Overwrites a key with the given answers; missing questions become unset."""
        self._require(code)
        self._keys[code] = self._sized(answers, self.question_count)

    def clear_key(self, code: str) -> None:
        self.replace_key(code, {})

    def random_fill(self, code: str, valid_options: List[str], rng: Optional[random.Random] = None) -> None:
        chooser = rng or random
        self.replace_key(
            code,
            {question: chooser.choice(valid_options) for question in range(1, self.question_count + 1)},
        )

    def resize(self, question_count: int) -> None:
        self.question_count = question_count
        for code, answers in self._keys.items():
            self._keys[code] = self._sized(answers, question_count)

    def to_dict(self) -> Dict[str, Dict[str, Option]]:
        """JSON-ready copy (question numbers become strings)."""
        return {
            code: {str(question): option for question, option in answers.items()}
            for code, answers in self._keys.items()
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Mapping], question_count: int) -> "ExamKeyStore":
        keys: Dict[str, Dict[int, Option]] = {}
        for code, answers in data.items():
            parsed: Dict[int, Option] = {}
            for question, option in (answers or {}).items():
                if option is not None and not isinstance(option, str):
                    continue
                try:
                    parsed[int(question)] = option
                except (TypeError, ValueError):
                    continue
            keys[str(code)] = parsed
        return cls(question_count, keys)
