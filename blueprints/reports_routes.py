import logging
from datetime import datetime
from io import BytesIO
from xml.sax.saxutils import escape

from flask import Blueprint, jsonify, send_file
from reportlab.lib import colors
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from blueprints.sections_routes import owned_section
from utils.auth_utils import login_required
from utils.errors import GradingError, NotFoundError
from utils.grade_calculation import student_summary
from utils.grading_types import Section
from utils.services import get_services
from utils.statistics_utils import section_statistics

logger = logging.getLogger(__name__)

reports_bp = Blueprint("reports", __name__)

TABLE_STYLE = TableStyle(
    [
        ("BACKGROUND", (0, 0), (-1, 0), colors.grey),
        ("TEXTCOLOR", (0, 0), (-1, 0), colors.whitesmoke),
        ("ALIGN", (1, 0), (-1, -1), "CENTER"),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("BOTTOMPADDING", (0, 0), (-1, 0), 10),
        ("BACKGROUND", (0, 1), (-1, -1), colors.beige),
        ("GRID", (0, 0), (-1, -1), 1, colors.black),
    ]
)


def build_report_card(summary: dict) -> BytesIO:
    """Render a student summary as a one-page report card PDF."""
    buffer = BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=letter)
    styles = getSampleStyleSheet()
    elements = []

    elements.append(Paragraph(f"Report Card - {escape(summary['studentName'])}", styles["Title"]))
    elements.append(Spacer(1, 12))
    info_text = f"""
    Section: {escape(summary['sectionName'])}<br/>
    Grade Level: {summary['gradeLevel'] or '-'}<br/>
    Transmutation: {summary['transmutation']['label']}<br/>
    Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}
    """
    elements.append(Paragraph(info_text, styles["Normal"]))
    elements.append(Spacer(1, 20))

    data = [["Learning Area", "Q1", "Q2", "Q3", "Q4", "Final", "Remarks"]]
    for subject in summary["subjects"]:
        row = [subject["subjectName"]]
        for q in range(1, 5):
            result = subject["quarters"][f"quarter{q}"]
            row.append(result["display"]["transmutedGrade"] if result else "")
        row.append(subject["finalGradeDisplay"] or "")
        row.append(subject["descriptor"] or "")
        data.append(row)
    data.append(
        ["General Average", "", "", "", "", summary["generalAverageDisplay"] or "", summary["descriptor"] or ""]
    )

    table = Table(data)
    table.setStyle(TABLE_STYLE)
    elements.append(table)

    doc.build(elements)
    buffer.seek(0)
    return buffer


@reports_bp.route("/api/sections/<section_id>/statistics", methods=["GET"])
@login_required
def section_statistics_route(section_id):
    section = owned_section(section_id)
    if not isinstance(section, Section):
        return section
    try:
        return jsonify(section_statistics(section, get_services().synchronizer.default_revision))
    except GradingError:
        raise
    except Exception as e:
        logger.error(f"Error computing statistics for section {section_id}: {str(e)}")
        return jsonify({"error": "Failed to compute statistics"}), 500


@reports_bp.route("/api/sections/<section_id>/students/<student_id>/report-card", methods=["GET"])
@login_required
def export_report_card(section_id, student_id):
    """Export one student's report card as PDF."""
    section = owned_section(section_id)
    if not isinstance(section, Section):
        return section
    student = section.student(student_id)
    if student is None:
        raise NotFoundError(f"Student {student_id} not found in section {section_id}")
    try:
        summary = student_summary(section, student, get_services().synchronizer.default_revision)
        buffer = build_report_card(summary)
        filename = f"report_card_{student.id}_{datetime.now().strftime('%Y%m%d_%H%M%S')}.pdf"
        return send_file(
            buffer,
            as_attachment=True,
            download_name=filename,
            mimetype="application/pdf",
        )
    except GradingError:
        raise
    except Exception as e:
        logger.error(f"Error generating report card for student {student_id}: {str(e)}")
        return jsonify({"error": "Failed to generate report"}), 500
