"""
Configuration Module for AutoGrade
Centralizes environment variables, exam defaults, storage keys and prompt templates.
"""
import os
import tempfile
from pathlib import Path

from dotenv import load_dotenv

from autograde.errors import MissingApiKey

# --- API Configuration ---
MODEL_NAME = "gemini-2.5-flash"

# --- Exam Defaults & Bounds ---
DEFAULT_QUESTION_COUNT = 40
DEFAULT_OPTION_COUNT = 4
DEFAULT_MAX_SCORE = 10.0
MAX_QUESTION_COUNT = 200
ALLOWED_OPTION_COUNTS = (4, 5)
MAX_SCORE_LIMIT = 1000.0
DEFAULT_EXAM_CODE = "101"

# Used when a scanned key reports no usable question count at all
FALLBACK_SCANNED_QUESTION_COUNT = 40

# Bounding boxes are [ymin, xmin, ymax, xmax] on this scale
BOX_SCALE = 1000

# --- Persistence ---
STORAGE_KEY_EXAM_KEYS = "exam_keys"
STORAGE_KEY_LEGACY_ANSWERS = "answer_key"
STORAGE_KEY_IMAGE = "student_image"
STORAGE_KEY_CONFIG = "config"
STORAGE_KEY_AUTO_GRADE = "auto_grade"
STORAGE_KEY_ACTIVE_CODE = "active_code"
STORAGE_KEY_SHOW_OVERLAY = "show_overlay"
STORAGE_KEY_SHOW_OVERLAY_DETAILS = "show_overlay_details"

# Images whose data URL exceeds this many characters are not persisted
MAX_STORED_IMAGE_CHARS = 5_000_000

BASE_DIR = Path(__file__).resolve().parents[2]
DATA_DIR = BASE_DIR / "data"
OUTPUT_DIR = BASE_DIR / "output"

# --- User-facing guidance ---
GRADING_FAILED_MESSAGE = (
    "Could not grade the sheet. Please check that:\n"
    "1. The photo is well lit and not blurry.\n"
    "2. The camera is held square to the sheet.\n"
    "3. Marks are filled or written clearly."
)
SCAN_FAILED_MESSAGE = (
    "Could not read the answers. Please retry with a sharper image.\n"
    "- Make sure there is enough light.\n"
    "- Keep the camera square to the sheet.\n"
    "- Marks should be clear."
)
KEY_SCAN_FAILED_MESSAGE = (
    "Could not read the answer key. Please upload a sharper, well lit image "
    "and make sure the sheet lies flat."
)


def get_api_key() -> str:
    """
    Validates and returns the Gemini API Key.

    Raises:
        MissingApiKey: If GEMINI_API_KEY is not found in environment.
    """
    # Load environment variables fresh (for testing and reload scenarios)
    load_dotenv()
    api_key = os.getenv("GEMINI_API_KEY")

    if not api_key:
        raise MissingApiKey(
            "GEMINI_API_KEY not found. "
            "Please create a .env file with your API key."
        )
    return api_key


def get_state_path() -> Path:
    """Resolve the JSON state file for local dev or serverless runtime."""
    load_dotenv()
    override = os.getenv("AUTOGRADE_STATE_PATH")
    if override:
        return Path(override).expanduser()
    if os.getenv("VERCEL"):
        return Path(tempfile.gettempdir()) / "autograde-data" / "state.json"
    return DATA_DIR / "state.json"


def get_runtime_output_dir() -> Path:
    """Resolve output directory for exported reports."""
    if os.getenv("VERCEL"):
        return Path(tempfile.gettempdir()) / "autograde-output"
    return OUTPUT_DIR


# --- Prompt Templates ---
PROMPT_TEMPLATES = {
    "sheet": """Analyze this image of a STUDENT'S multiple-choice exam answer sheet.
Total Questions: {question_count}.
Valid Options: {options}.

Identify the handwritten mark or filled bubble for questions 1 through {question_count}.
If a question has multiple marks, consider it invalid (null).
If a question is blank, mark it as null.

IMPORTANT: For every detected answer, provide the 'box_2d' coordinates [ymin, xmin, ymax, xmax] on a 0-{box_scale} scale wrapping the marked option.
Return JSON with a list of 'answers', each with 'question_number', 'answer' and 'box_2d'.""",

    "answer_key": """Analyze this image which contains the Answer Key (correct answers) for a multiple choice test.
1. Detect the total number of questions present in the list (count them).
2. Detect the number of options per question (e.g. 4 if A-D, 5 if A-E).
3. Extract the correct option for each question.

Return JSON with 'total_questions', 'option_count', and the list of 'answers', each with 'question_number' and 'answer'.""",
}


def get_prompt(prompt_type: str, **kwargs) -> str:
    """
    Retrieves a formatted prompt template for a gateway call.

    Args:
        prompt_type: Type of prompt ("sheet" or "answer_key").
        **kwargs: Variables to format into the template.

    Returns:
        Formatted prompt string.

    Raises:
        KeyError: If prompt_type is not found in templates.
    """
    if prompt_type not in PROMPT_TEMPLATES:
        raise KeyError(f"Prompt template '{prompt_type}' not found.")

    return PROMPT_TEMPLATES[prompt_type].format(**kwargs)
