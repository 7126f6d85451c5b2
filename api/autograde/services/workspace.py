"""
Workspace
Process-wide application state: exam config, answer keys, selections,
preferences and the active grading session. Loaded once at startup; every
transition saves what it changed before returning.
"""
import random
from typing import Any, Dict, Optional

from pydantic import ValidationError

from autograde.config import (
    DEFAULT_EXAM_CODE,
    KEY_SCAN_FAILED_MESSAGE,
    STORAGE_KEY_ACTIVE_CODE,
    STORAGE_KEY_AUTO_GRADE,
    STORAGE_KEY_CONFIG,
    STORAGE_KEY_EXAM_KEYS,
    STORAGE_KEY_IMAGE,
    STORAGE_KEY_LEGACY_ANSWERS,
    STORAGE_KEY_SHOW_OVERLAY,
    STORAGE_KEY_SHOW_OVERLAY_DETAILS,
)
from autograde.errors import AnalysisFailed, ConfigOutOfRange, InvalidImage, MissingApiKey, NotFound
from autograde.schemas import ExamConfig, GradingSummary, Option, ScannedKey, SheetImage
from autograde.services.ai_engine import get_client, scan_answer_key
from autograde.services.grading import GradingSession
from autograde.services.key_store import AnswerKey, ExamKeyStore
from autograde.services.state_store import StateStore


def load_config(store: StateStore) -> ExamConfig:
    saved = store.get(STORAGE_KEY_CONFIG)
    if isinstance(saved, dict):
        try:
            return ExamConfig.model_validate({**ExamConfig().model_dump(), **saved})
        except ValidationError as e:
            print(f"[Store] Ignoring invalid saved config: {e}")
    return ExamConfig()


def load_keys(store: StateStore, question_count: int) -> ExamKeyStore:
    saved = store.get(STORAGE_KEY_EXAM_KEYS)
    if isinstance(saved, dict) and saved:
        keys = ExamKeyStore.from_dict(saved, question_count)
        if len(keys):
            return keys

    # Older saves held a single key without exam codes
    legacy = store.get(STORAGE_KEY_LEGACY_ANSWERS)
    if isinstance(legacy, dict):
        return ExamKeyStore.from_dict({DEFAULT_EXAM_CODE: legacy}, question_count)

    return ExamKeyStore(question_count, {DEFAULT_EXAM_CODE: {}})


class Workspace:
    """Explicit state transitions for the grading tool."""

    def __init__(self, store: StateStore, max_history: Optional[int] = None, rng: Optional[random.Random] = None):
        self.store = store
        self.rng = rng
        self.config = load_config(store)
        self.keys = load_keys(store, self.config.question_count)

        saved_code = store.get(STORAGE_KEY_ACTIVE_CODE)
        self.active_code: str = saved_code if saved_code in self.keys else self.keys.first_code()
        self.student_code: str = self.active_code

        self.auto_grade: bool = bool(store.get(STORAGE_KEY_AUTO_GRADE, False))
        self.show_overlay: bool = bool(store.get(STORAGE_KEY_SHOW_OVERLAY, True))
        self.show_overlay_details: bool = bool(store.get(STORAGE_KEY_SHOW_OVERLAY_DETAILS, True))

        self.session = GradingSession(max_history=max_history)
        saved_image = store.get(STORAGE_KEY_IMAGE)
        if isinstance(saved_image, str):
            try:
                self.session.load_image(SheetImage.from_data_url(saved_image))
            except ValueError as e:
                print(f"[Store] Failed to restore image: {e}")

        self._save_config()
        self._save_keys()
        self._save_selection()

    # --- persistence ---

    def _save_config(self) -> None:
        self.store.set(STORAGE_KEY_CONFIG, self.config.model_dump())

    def _save_keys(self) -> None:
        self.store.set(STORAGE_KEY_EXAM_KEYS, self.keys.to_dict())

    def _save_selection(self) -> None:
        self.store.set(STORAGE_KEY_ACTIVE_CODE, self.active_code)

    # --- exam config ---

    def update_config(self, **changes: Any) -> ExamConfig:
        """
        Applies config changes and resizes every answer key.

        Raises:
            ConfigOutOfRange: If any value is outside the accepted bounds.
        """
        updates = {name: value for name, value in changes.items() if value is not None}
        try:
            config = ExamConfig.model_validate({**self.config.model_dump(), **updates})
        except ValidationError as e:
            raise ConfigOutOfRange(f"Invalid exam configuration: {e.errors()[0]['msg']}") from e

        self.config = config
        self.keys.resize(config.question_count)
        self._save_config()
        self._save_keys()
        return config

    # --- exam codes ---

    def add_code(self, code: str) -> str:
        self.keys.add_code(code)
        code = code.strip()
        self.active_code = code
        self.student_code = code
        self._save_keys()
        self._save_selection()
        return code

    def rename_code(self, new_code: str, old_code: Optional[str] = None) -> str:
        old_code = old_code or self.active_code
        self.keys.rename_code(old_code, new_code)
        new_code = new_code.strip()
        if self.student_code == old_code:
            self.student_code = new_code
        if self.active_code == old_code:
            self.active_code = new_code
        self._save_keys()
        self._save_selection()
        return new_code

    def delete_code(self, code: Optional[str] = None) -> str:
        code = code or self.active_code
        fallback = self.keys.delete_code(code)
        if self.active_code == code:
            self.active_code = fallback
        if self.student_code == code:
            self.student_code = fallback
        self._save_keys()
        self._save_selection()
        return fallback

    def select_active_code(self, code: str) -> None:
        """Selects the key being edited; grading follows the same code."""
        if code not in self.keys:
            raise NotFound(f"Exam code {code} does not exist.")
        self.active_code = code
        self.student_code = code
        self._save_selection()

    def select_student_code(self, code: str) -> None:
        if code not in self.keys:
            raise NotFound(f"Exam code {code} does not exist.")
        self.student_code = code

    # --- answer keys ---

    def set_answer(self, question: int, option: Option, code: Optional[str] = None) -> Option:
        stored = self.keys.set_answer(
            code or self.active_code, question, option, self.config.option_labels
        )
        self._save_keys()
        return stored

    def clear_key(self, code: Optional[str] = None) -> None:
        self.keys.clear_key(code or self.active_code)
        self._save_keys()

    def random_fill(self, code: Optional[str] = None) -> None:
        self.keys.random_fill(code or self.active_code, self.config.option_labels, self.rng)
        self._save_keys()

    def active_key(self) -> AnswerKey:
        return self.keys.get_key(self.active_code)

    def scan_answer_key(self, image: SheetImage, api_key: Optional[str] = None) -> ScannedKey:
        """
        Detects the key from a photo, then overwrites the exam shape and the
        active code's answers. Nothing changes when no answer is found.
        """
        self._check_image(image)
        client = get_client(api_key)
        try:
            scanned = scan_answer_key(client, image)
        except AnalysisFailed as e:
            raise AnalysisFailed(KEY_SCAN_FAILED_MESSAGE) from e
        if not scanned.answers:
            raise AnalysisFailed(
                "No answers were found in the image. Please retry with a sharper, "
                "well lit photo taken square to the sheet."
            )

        self.update_config(
            question_count=scanned.question_count,
            option_count=scanned.option_count,
        )
        self.keys.replace_key(self.active_code, scanned.answers)
        self._save_keys()
        return scanned

    # --- preferences ---

    def set_auto_grade(self, enabled: bool) -> None:
        self.auto_grade = enabled
        self.store.set(STORAGE_KEY_AUTO_GRADE, enabled)

    def set_display_preferences(
        self,
        show_overlay: Optional[bool] = None,
        show_overlay_details: Optional[bool] = None,
    ) -> None:
        if show_overlay is not None:
            self.show_overlay = show_overlay
            self.store.set(STORAGE_KEY_SHOW_OVERLAY, show_overlay)
        if show_overlay_details is not None:
            self.show_overlay_details = show_overlay_details
            self.store.set(STORAGE_KEY_SHOW_OVERLAY_DETAILS, show_overlay_details)

    # --- grading ---

    @staticmethod
    def _check_image(image: SheetImage) -> None:
        if not image.data:
            raise InvalidImage("The uploaded image is empty.")
        if not image.mime_type.startswith("image/"):
            raise InvalidImage(f"Unsupported file type {image.mime_type}; upload a PNG or JPG.")

    def upload_image(self, image: SheetImage, api_key: Optional[str] = None) -> Optional[GradingSummary]:
        """
        Loads a new sheet, dropping the previous result and history.

        With auto-grade on, grades right away using the student code when its
        key is usable; otherwise the reason is left in `session.error`. Gateway
        failures and a missing API key are reported there too, and the upload
        still succeeds.
        """
        self._check_image(image)
        self.session.load_image(image)
        self.store.save_image(image.data_url)

        if not self.auto_grade:
            return None

        code = self.student_code
        if code not in self.keys:
            self.session.error = f"Exam code {code} does not exist."
            return None
        if self.keys.filled_count(code) == 0:
            self.session.error = (
                f"Cannot auto-grade: exam code {code} has no answer key yet. "
                "Please fill in the answers first."
            )
            return None
        try:
            return self.grade(api_key)
        except AnalysisFailed:
            return None
        except MissingApiKey as e:
            self.session.error = e.message
            return None

    def remove_image(self) -> None:
        self.session.remove_image()
        self.store.remove(STORAGE_KEY_IMAGE)

    def grade(self, api_key: Optional[str] = None) -> GradingSummary:
        code = self.student_code
        if code not in self.keys:
            raise NotFound(f"Exam code {code} does not exist.")
        return self.session.grade(self.keys.get_key(code), self.config, code, api_key)

    def scan_only(self, api_key: Optional[str] = None) -> GradingSummary:
        return self.session.scan_only(self.config, api_key)

    def update_answer(self, question_id: int, option: Option) -> GradingSummary:
        return self.session.update_answer(question_id, option, self.config.option_labels)

    def undo(self) -> Optional[GradingSummary]:
        return self.session.undo()

    def redo(self) -> Optional[GradingSummary]:
        return self.session.redo()

    # --- views ---

    def snapshot(self) -> Dict[str, Any]:
        """Everything a front-end needs to render the current state."""
        return {
            "config": self.config.model_dump(),
            "option_labels": self.config.option_labels,
            "codes": self.keys.codes(),
            "active_code": self.active_code,
            "student_code": self.student_code,
            "active_key": {str(q): option for q, option in self.active_key().items()},
            "filled_count": self.keys.filled_count(self.active_code),
            "auto_grade": self.auto_grade,
            "show_overlay": self.show_overlay,
            "show_overlay_details": self.show_overlay_details,
            "has_image": self.session.image is not None,
            "processing": self.session.processing,
            "error": self.session.error,
            "can_undo": self.session.history.can_undo,
            "can_redo": self.session.history.can_redo,
        }
