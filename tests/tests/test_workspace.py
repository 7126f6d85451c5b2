"""
Test Workspace
Tests state transitions, persistence side effects and startup loading.
"""
import pytest
from unittest.mock import MagicMock, patch

from autograde.config import (
    STORAGE_KEY_ACTIVE_CODE,
    STORAGE_KEY_AUTO_GRADE,
    STORAGE_KEY_CONFIG,
    STORAGE_KEY_EXAM_KEYS,
    STORAGE_KEY_IMAGE,
    STORAGE_KEY_LEGACY_ANSWERS,
)
from autograde.errors import (
    AnalysisFailed,
    ConfigOutOfRange,
    DuplicateCode,
    EmptyKey,
    InvalidImage,
    LastCodeProtected,
    MissingApiKey,
    NotFound,
)
from autograde.schemas import ScannedKey, SheetImage
from autograde.services.state_store import StateStore
from autograde.services.workspace import Workspace


def test_fresh_workspace_defaults():
    ws = Workspace(StateStore())
    assert ws.keys.codes() == ["101"]
    assert ws.active_code == "101"
    assert ws.student_code == "101"
    assert ws.config.question_count == 40
    assert len(ws.active_key()) == 40
    assert ws.auto_grade is False
    assert ws.show_overlay is True


def test_state_reloads_from_disk(tmp_path):
    path = tmp_path / "state.json"
    ws = Workspace(StateStore(path))
    ws.update_config(question_count=5, option_count=5, max_score=100)
    ws.add_code("102")
    ws.set_answer(3, "E")
    ws.set_auto_grade(True)
    ws.set_display_preferences(show_overlay=False)

    reloaded = Workspace(StateStore(path))
    assert reloaded.config.question_count == 5
    assert reloaded.config.option_count == 5
    assert reloaded.config.max_score == 100
    assert reloaded.keys.codes() == ["101", "102"]
    assert reloaded.active_code == "102"
    assert reloaded.keys.get_key("102")[3] == "E"
    assert reloaded.auto_grade is True
    assert reloaded.show_overlay is False


def test_truncated_state_file_is_not_overwritten_by_defaults(tmp_path):
    path = tmp_path / "state.json"
    saved = '{"exam_keys": {"555": {"1": "A", "2": "B"}}, "active_code": "555"}'
    path.write_text(saved[:-12], encoding="utf-8")

    ws = Workspace(StateStore(path))

    assert ws.keys.codes() == ["101"]
    assert (tmp_path / "state.json.corrupt").read_text(encoding="utf-8") == saved[:-12]


def test_legacy_single_key_is_migrated():
    store = StateStore()
    store.set(STORAGE_KEY_LEGACY_ANSWERS, {"1": "C", "2": "D"})
    store.set(STORAGE_KEY_CONFIG, {"question_count": 2})

    ws = Workspace(store)

    assert ws.keys.codes() == ["101"]
    assert ws.active_key() == {1: "C", 2: "D"}
    assert STORAGE_KEY_EXAM_KEYS in store


def test_invalid_saved_config_falls_back_to_defaults():
    store = StateStore()
    store.set(STORAGE_KEY_CONFIG, {"question_count": 999})
    assert Workspace(store).config.question_count == 40


def test_saved_active_code_must_exist():
    store = StateStore()
    store.set(STORAGE_KEY_EXAM_KEYS, {"7": {}, "3": {}})
    store.set(STORAGE_KEY_ACTIVE_CODE, "999")
    assert Workspace(store).active_code == "3"


def test_config_change_resizes_every_key(workspace):
    workspace.add_code("102")
    workspace.update_config(question_count=6)

    for code in workspace.keys.codes():
        assert sorted(workspace.keys.get_key(code)) == [1, 2, 3, 4, 5, 6]
    assert workspace.store.get(STORAGE_KEY_CONFIG)["question_count"] == 6
    assert len(workspace.store.get(STORAGE_KEY_EXAM_KEYS)["102"]) == 6


@pytest.mark.parametrize("changes", [
    {"question_count": 0},
    {"question_count": 201},
    {"option_count": 6},
    {"max_score": -1},
])
def test_config_out_of_range_changes_nothing(workspace, changes):
    with pytest.raises(ConfigOutOfRange):
        workspace.update_config(**changes)
    assert workspace.config.question_count == 3
    assert workspace.config.option_count == 4


def test_add_code_selects_it(workspace):
    workspace.add_code(" 102 ")
    assert workspace.active_code == "102"
    assert workspace.student_code == "102"
    assert workspace.store.get(STORAGE_KEY_ACTIVE_CODE) == "102"

    with pytest.raises(DuplicateCode):
        workspace.add_code("101")
    assert workspace.active_code == "102"


def test_rename_follows_selections(keyed_workspace):
    keyed_workspace.rename_code("201")
    assert keyed_workspace.active_code == "201"
    assert keyed_workspace.student_code == "201"
    assert keyed_workspace.active_key()[1] == "A"


def test_delete_redirects_selections(workspace):
    workspace.add_code("102")
    workspace.add_code("103")
    workspace.select_student_code("102")

    workspace.delete_code("102")

    assert workspace.student_code == "101"
    assert workspace.active_code == "103"


def test_delete_last_code_rejected(workspace):
    with pytest.raises(LastCodeProtected):
        workspace.delete_code()
    assert workspace.keys.codes() == ["101"]


def test_select_unknown_code(workspace):
    with pytest.raises(NotFound):
        workspace.select_active_code("404")
    with pytest.raises(NotFound):
        workspace.select_student_code("404")


def test_select_active_code_moves_student_code(workspace):
    workspace.add_code("102")
    workspace.select_active_code("101")
    assert workspace.student_code == "101"

    workspace.select_student_code("102")
    assert workspace.active_code == "101"


def test_set_answer_is_persisted(workspace):
    workspace.set_answer(2, "c")
    assert workspace.store.get(STORAGE_KEY_EXAM_KEYS)["101"]["2"] == "C"
    workspace.set_answer(2, "C")
    assert workspace.store.get(STORAGE_KEY_EXAM_KEYS)["101"]["2"] is None


def test_random_fill_and_clear(workspace):
    workspace.random_fill()
    assert workspace.keys.filled_count("101") == 3
    workspace.clear_key()
    assert workspace.keys.filled_count("101") == 0


def test_scan_answer_key_overwrites_config(workspace, sheet_image):
    workspace.add_code("102")
    scanned = ScannedKey(answers={1: "B", 4: "E"}, question_count=5, option_count=5)

    with patch("autograde.services.workspace.get_client", return_value=MagicMock()):
        with patch("autograde.services.workspace.scan_answer_key", return_value=scanned):
            workspace.scan_answer_key(sheet_image)

    assert workspace.config.question_count == 5
    assert workspace.config.option_count == 5
    assert workspace.active_key() == {1: "B", 2: None, 3: None, 4: "E", 5: None}
    assert len(workspace.keys.get_key("101")) == 5


def test_scan_answer_key_without_answers_changes_nothing(keyed_workspace, sheet_image):
    scanned = ScannedKey(answers={}, question_count=40, option_count=4)

    with patch("autograde.services.workspace.get_client", return_value=MagicMock()):
        with patch("autograde.services.workspace.scan_answer_key", return_value=scanned):
            with pytest.raises(AnalysisFailed):
                keyed_workspace.scan_answer_key(sheet_image)

    assert keyed_workspace.config.question_count == 3
    assert keyed_workspace.active_key() == {1: "A", 2: "B", 3: None}


def test_scan_answer_key_gateway_failure(keyed_workspace, sheet_image):
    with patch("autograde.services.workspace.get_client", return_value=MagicMock()):
        with patch("autograde.services.workspace.scan_answer_key", side_effect=AnalysisFailed("bad json")):
            with pytest.raises(AnalysisFailed) as excinfo:
                keyed_workspace.scan_answer_key(sheet_image)
    assert "answer key" in excinfo.value.message
    assert keyed_workspace.active_key() == {1: "A", 2: "B", 3: None}


def test_upload_rejects_non_images(workspace):
    with pytest.raises(InvalidImage):
        workspace.upload_image(SheetImage(data=b"%PDF", mime_type="application/pdf"))


def test_upload_persists_image_and_resets_session(keyed_workspace, sheet_image, mock_gemini_client):
    with patch("autograde.services.grading.get_client", return_value=mock_gemini_client):
        keyed_workspace.upload_image(sheet_image)
        keyed_workspace.grade()
        keyed_workspace.update_answer(2, "B")

        assert keyed_workspace.upload_image(sheet_image) is None

    assert keyed_workspace.session.summary is None
    assert len(keyed_workspace.session.history) == 0
    assert keyed_workspace.store.get(STORAGE_KEY_IMAGE) == sheet_image.data_url


def test_saved_image_restored_at_startup(sheet_image):
    store = StateStore()
    store.set(STORAGE_KEY_IMAGE, sheet_image.data_url)
    ws = Workspace(store)
    assert ws.session.image.data == sheet_image.data


def test_remove_image(workspace, sheet_image):
    workspace.upload_image(sheet_image)
    workspace.remove_image()
    assert workspace.session.image is None
    assert workspace.store.get(STORAGE_KEY_IMAGE) is None


def test_auto_grade_on_upload(keyed_workspace, sheet_image, mock_gemini_client):
    keyed_workspace.set_auto_grade(True)
    assert keyed_workspace.store.get(STORAGE_KEY_AUTO_GRADE) is True

    with patch("autograde.services.grading.get_client", return_value=mock_gemini_client):
        summary = keyed_workspace.upload_image(sheet_image)

    assert summary.correct_count == 1
    assert summary.score == pytest.approx(5.0)


def test_auto_grade_with_empty_key_sets_error(workspace, sheet_image):
    workspace.set_auto_grade(True)
    with patch("autograde.services.grading.analyze_answer_sheet") as mock_analyze:
        assert workspace.upload_image(sheet_image) is None
    mock_analyze.assert_not_called()
    assert "no answer key" in workspace.session.error
    assert workspace.session.image is not None


def test_auto_grade_failure_keeps_image(keyed_workspace, sheet_image):
    keyed_workspace.set_auto_grade(True)
    with patch("autograde.services.grading.get_client", return_value=MagicMock()):
        with patch("autograde.services.grading.analyze_answer_sheet", side_effect=AnalysisFailed("down")):
            assert keyed_workspace.upload_image(sheet_image) is None
    assert keyed_workspace.session.error.startswith("Could not grade")
    assert keyed_workspace.session.image is not None


def test_auto_grade_without_api_key_sets_error(keyed_workspace, sheet_image):
    keyed_workspace.set_auto_grade(True)
    with patch("autograde.services.grading.get_client", side_effect=MissingApiKey("GEMINI_API_KEY not found.")):
        assert keyed_workspace.upload_image(sheet_image) is None
    assert "GEMINI_API_KEY" in keyed_workspace.session.error
    assert keyed_workspace.session.image is not None
    assert keyed_workspace.session.processing is False
    assert keyed_workspace.store.get(STORAGE_KEY_IMAGE) == sheet_image.data_url


def test_grade_uses_student_code(keyed_workspace, sheet_image):
    keyed_workspace.add_code("102")
    keyed_workspace.upload_image(sheet_image)
    with pytest.raises(EmptyKey):
        keyed_workspace.grade()


def test_snapshot_shape(keyed_workspace):
    snapshot = keyed_workspace.snapshot()
    assert snapshot["codes"] == ["101"]
    assert snapshot["option_labels"] == ["A", "B", "C", "D"]
    assert snapshot["active_key"] == {"1": "A", "2": "B", "3": None}
    assert snapshot["filled_count"] == 2
    assert snapshot["has_image"] is False
