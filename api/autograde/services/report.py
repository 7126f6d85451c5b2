"""
Report Generator Service
Exports a grading summary as CSV text or as a .docx report.
"""
import csv
import io
from datetime import datetime
from typing import Optional

from docx import Document
from docx.shared import Pt

from autograde.schemas import GradingSummary, StudentResult

CSV_HEADER = ["Question", "Student Answer", "Correct Answer", "Status", "Points"]


def points_per_question(summary: GradingSummary) -> float:
    max_score = summary.max_score or 10.0
    return max_score / summary.total_questions if summary.total_questions > 0 else 0.0


def result_status(summary: GradingSummary, result: StudentResult) -> str:
    if not summary.is_graded:
        return "Scanned"
    return "Correct" if result.is_correct else "Incorrect"


def result_points(summary: GradingSummary, result: StudentResult) -> str:
    if summary.is_graded and result.is_correct:
        return f"{points_per_question(summary):.2f}"
    return "0"


def summary_line(summary: GradingSummary) -> str:
    if summary.is_graded:
        return (
            f"Score: {summary.score:.2f} / {summary.max_score:g}, "
            f"Correct: {summary.correct_count} / {summary.total_questions}"
        )
    return f"Scanned Questions: {summary.total_questions}"


def export_filename(extension: str, now: Optional[datetime] = None) -> str:
    stamp = (now or datetime.now()).strftime("%Y-%m-%dT%H-%M-%S")
    return f"exam_result_{stamp}.{extension}"


def export_csv(summary: GradingSummary) -> str:
    """
    Renders the summary as CSV with a UTF-8 BOM so spreadsheet apps pick
    the right encoding.
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    if summary.is_graded:
        writer.writerow([
            "# Summary",
            f"Score: {summary.score:.2f} / {summary.max_score:g}",
            f"Correct: {summary.correct_count} / {summary.total_questions}",
            "",
            "",
        ])
    else:
        writer.writerow(["# Summary", f"Scanned Questions: {summary.total_questions}", "", "", ""])
    writer.writerow([])

    for result in summary.results:
        writer.writerow([
            result.question_id,
            result.student_answer or "",
            result.correct_answer or "-",
            result_status(summary, result),
            result_points(summary, result),
        ])
    return "\ufeff" + buffer.getvalue()


def generate_docx(summary: GradingSummary, output_path: str) -> None:
    """
    Generates a .docx report from a GradingSummary.

    Args:
        summary: The result to export.
        output_path: Absolute path where the .docx file should be saved.
    """
    print(f"\n[Report] Generating DOCX at {output_path}...")
    doc = Document()

    title = "Grading Result" if summary.is_graded else "Scan Result"
    doc.core_properties.title = title
    doc.core_properties.subject = "Multiple-choice exam"

    style = doc.styles['Normal']
    style.font.size = Pt(12)

    heading = doc.add_heading(title, 0)
    heading.alignment = 1  # Center

    p_info = doc.add_paragraph()
    p_info.alignment = 1  # Center
    p_info.add_run(summary_line(summary)).bold = True

    doc.add_paragraph("_" * 50).alignment = 1  # Divider

    table = doc.add_table(rows=1, cols=len(CSV_HEADER))
    table.style = 'Table Grid'
    for cell, label in zip(table.rows[0].cells, CSV_HEADER):
        cell.text = label

    for result in summary.results:
        row_cells = table.add_row().cells
        row_cells[0].text = str(result.question_id)
        row_cells[1].text = result.student_answer or "-"
        row_cells[2].text = result.correct_answer or "-"
        row_cells[3].text = result_status(summary, result)
        row_cells[4].text = result_points(summary, result)

    doc.save(output_path)
    print("[Report] Done! File saved.")
