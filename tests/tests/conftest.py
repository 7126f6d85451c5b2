"""
Pytest Configuration & Shared Fixtures
"""
import json
import random

import pytest
from unittest.mock import MagicMock

from autograde.schemas import ExamConfig, SheetImage
from autograde.services.state_store import StateStore
from autograde.services.workspace import Workspace

# Smallest valid PNG header; the gateway is always mocked so content does not matter
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


def gemini_response(payload) -> MagicMock:
    """Mock generate_content response carrying a JSON body."""
    response = MagicMock()
    response.text = payload if isinstance(payload, str) else json.dumps(payload)
    return response


@pytest.fixture
def sheet_image():
    return SheetImage(data=PNG_BYTES, mime_type="image/png", filename="sheet.png")


@pytest.fixture
def sample_png(tmp_path):
    """Create a temporary dummy PNG file."""
    path = tmp_path / "sheet.png"
    path.write_bytes(PNG_BYTES)
    return str(path)


@pytest.fixture
def small_config():
    return ExamConfig(question_count=3, option_count=4, max_score=10)


@pytest.fixture
def mock_gemini_client():
    """Mock Gemini client to avoid real API calls. Returns A, C, A for questions 1-3."""
    client = MagicMock()
    client.models.generate_content.return_value = gemini_response({
        "answers": [
            {"question_number": 1, "answer": "A", "box_2d": [100, 100, 120, 140]},
            {"question_number": 2, "answer": "c", "box_2d": [200, 100, 220, 140]},
            {"question_number": 3, "answer": "A", "box_2d": None},
        ]
    })
    return client


@pytest.fixture
def workspace():
    """In-memory workspace sized to three questions."""
    ws = Workspace(StateStore(), rng=random.Random(7))
    ws.update_config(question_count=3, option_count=4, max_score=10)
    return ws


@pytest.fixture
def keyed_workspace(workspace):
    """Workspace whose code 101 has key {1: A, 2: B, 3: unset}."""
    workspace.set_answer(1, "A")
    workspace.set_answer(2, "B")
    return workspace
