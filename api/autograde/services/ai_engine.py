"""
AI Engine Service
Handles all interactions with Google Gemini API for answer sheet and answer key recognition.
"""
import json
from typing import Any, Dict, List, Optional

from google import genai
from google.genai import types
from pydantic import ValidationError

from autograde.config import (
    ALLOWED_OPTION_COUNTS,
    BOX_SCALE,
    DEFAULT_OPTION_COUNT,
    FALLBACK_SCANNED_QUESTION_COUNT,
    MAX_QUESTION_COUNT,
    MODEL_NAME,
    get_api_key,
    get_prompt,
)
from autograde.errors import AnalysisFailed
from autograde.schemas import (
    DetectedAnswer,
    KeyScanAnswer,
    KeyScanResponse,
    ScannedKey,
    SheetAnalysis,
    SheetImage,
    normalize_option,
    option_labels,
)


def get_client(api_key: Optional[str] = None) -> genai.Client:
    """
    Creates and returns a configured Gemini API client.

    Returns:
        genai.Client: Authenticated Gemini client.

    Raises:
        MissingApiKey: If API key is not configured.
    """
    resolved_key = api_key.strip() if api_key else ""
    if not resolved_key:
        resolved_key = get_api_key()
    return genai.Client(api_key=resolved_key)


def build_image_part(image: SheetImage) -> types.Part:
    """Wraps image bytes as an inline Gemini content part."""
    return types.Part.from_bytes(data=image.data, mime_type=image.mime_type)


def valid_box(box: Optional[List[int]]) -> Optional[List[int]]:
    """Returns the box when it is four coordinates on the 0-1000 grid, else None."""
    if box is None or len(box) != 4:
        return None
    if not all(0 <= value <= BOX_SCALE for value in box):
        return None
    return list(box)


def _load_json(text: Optional[str], label: str) -> Any:
    if not text or not text.strip():
        raise AnalysisFailed(f"[{label}] Empty response from Gemini")
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise AnalysisFailed(f"[{label}] Unparsable response from Gemini: {e}") from e


def parse_sheet_response(
    text: Optional[str],
    question_count: int,
    valid_options: List[str],
) -> Dict[int, DetectedAnswer]:
    """
    Parses the sheet call's JSON into one DetectedAnswer per question.

    Entries that fail validation, fall outside 1..question_count or carry an
    option outside valid_options are dropped one by one. Questions without a
    usable entry stay unset with no bounding box.

    Raises:
        AnalysisFailed: If the payload is not JSON or has no recognisable shape.
    """
    data = _load_json(text, "Sheet")
    if isinstance(data, list):
        raw_answers = data
    elif isinstance(data, dict):
        raw_answers = data.get("answers") or []
    else:
        raise AnalysisFailed("[Sheet] Unexpected response shape from Gemini")

    answers: Dict[int, DetectedAnswer] = {
        question: DetectedAnswer(question_number=question)
        for question in range(1, question_count + 1)
    }
    if not isinstance(raw_answers, list):
        return answers

    for raw in raw_answers:
        try:
            item = DetectedAnswer.model_validate(raw)
        except ValidationError:
            continue
        if not 1 <= item.question_number <= question_count:
            continue
        option = normalize_option(item.answer)
        if option is None or option not in valid_options:
            continue
        answers[item.question_number] = DetectedAnswer(
            question_number=item.question_number,
            answer=option,
            box_2d=valid_box(item.box_2d),
        )
    return answers


def reconcile_scanned_key(data: Any) -> ScannedKey:
    """
    Turns the key scan payload into a usable key and exam shape.

    The reported total is replaced by the highest question number carrying
    any answer, including letters outside the option alphabet, when it is
    missing or lower than that number; with no answers either, the fixed
    fallback count applies. Only letters in the alphabet are kept.
    """
    if not isinstance(data, dict):
        raise AnalysisFailed("[Key Scan] Unexpected response shape from Gemini")

    raw_answers = data.get("answers")
    entries: List[KeyScanAnswer] = []
    for raw in raw_answers if isinstance(raw_answers, list) else []:
        try:
            entries.append(KeyScanAnswer.model_validate(raw))
        except ValidationError:
            continue

    try:
        header = KeyScanResponse.model_validate({
            "total_questions": data.get("total_questions", data.get("totalQuestions")),
            "option_count": data.get("option_count", data.get("optionCount")),
        })
    except ValidationError:
        header = KeyScanResponse()

    option_count = header.option_count or DEFAULT_OPTION_COUNT
    if option_count not in ALLOWED_OPTION_COUNTS:
        option_count = DEFAULT_OPTION_COUNT
    labels = option_labels(option_count)

    answers: Dict[int, str] = {}
    highest = 0
    for entry in entries:
        option = normalize_option(entry.answer)
        if entry.question_number < 1 or option is None:
            continue
        highest = max(highest, entry.question_number)
        if option in labels:
            answers[entry.question_number] = option

    total = header.total_questions
    if not total or total < highest:
        total = highest
    if not total:
        total = FALLBACK_SCANNED_QUESTION_COUNT
    total = min(total, MAX_QUESTION_COUNT)

    return ScannedKey(
        answers={question: option for question, option in answers.items() if question <= total},
        question_count=total,
        option_count=option_count,
    )


def analyze_answer_sheet(
    client: genai.Client,
    image: SheetImage,
    question_count: int,
    valid_options: List[str],
) -> Dict[int, DetectedAnswer]:
    """
    Grading call: reads the student's marks from a sheet image.

    Args:
        client: Authenticated Gemini client.
        image: The uploaded sheet.
        question_count: Number of questions to read.
        valid_options: Allowed option letters, in order.

    Returns:
        Mapping of question number -> DetectedAnswer for 1..question_count.

    Raises:
        AnalysisFailed: If the call fails or the response is unparsable.
    """
    print(f"\n[Gateway] Analyzing sheet '{image.filename}' ({len(image.data) / 1024:.1f} KB)...")

    prompt = get_prompt(
        "sheet",
        question_count=question_count,
        options=", ".join(valid_options),
        box_scale=BOX_SCALE,
    )

    try:
        response = client.models.generate_content(
            model=MODEL_NAME,
            contents=[build_image_part(image), prompt],
            config=types.GenerateContentConfig(
                response_mime_type="application/json",
                response_schema=SheetAnalysis,
            ),
        )
    except Exception as e:
        print(f"[Gateway] Error: {e}")
        raise AnalysisFailed(f"Gemini request failed: {e}") from e

    return parse_sheet_response(response.text, question_count, valid_options)


def scan_answer_key(client: genai.Client, image: SheetImage) -> ScannedKey:
    """
    Key-scan call: detects question count, option count and correct answers
    from a photo of the answer key.

    Raises:
        AnalysisFailed: If the call fails or the response is unparsable.
    """
    print(f"\n[Gateway] Scanning answer key '{image.filename}'...")

    try:
        response = client.models.generate_content(
            model=MODEL_NAME,
            contents=[build_image_part(image), get_prompt("answer_key")],
            config=types.GenerateContentConfig(
                response_mime_type="application/json",
                response_schema=KeyScanResponse,
            ),
        )
    except Exception as e:
        print(f"[Gateway] Error: {e}")
        raise AnalysisFailed(f"Gemini request failed: {e}") from e

    scanned = reconcile_scanned_key(_load_json(response.text, "Key Scan"))
    print(f"[Gateway] Found {len(scanned.answers)} answers, {scanned.question_count} questions")
    return scanned
