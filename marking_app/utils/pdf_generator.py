"""
Assignment moderation report PDF generator.
Creates a PDF with the summary statistics, the rubric and the marker
comparison table for each control paper.
"""

from io import BytesIO
from datetime import datetime
from html import escape as html_escape

from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.units import inch
from reportlab.lib.colors import HexColor
from reportlab.platypus import SimpleDocTemplate, Table, TableStyle, Paragraph, Spacer
from reportlab.lib.enums import TA_CENTER

CLASSIFICATION_COLORS = {
    "within": "#dcfce7",
    "at_threshold": "#fef9c3",
    "outside": "#fee2e2",
}

CLASSIFICATION_LABELS = {
    "within": "Within deviation",
    "at_threshold": "At deviation threshold",
    "outside": "Outside deviation",
    "undetermined": "Standard not marked",
}


def generate_assignment_report_pdf(title, stats, rubric, papers, app_name="Marking App", standard_name=None):
    """
    Generate a PDF moderation report for an assignment.

    Args:
        title (str): Assignment title
        stats (dict): Output of ``aggregate``
        rubric (list): ``RubricCriterion.to_dict()`` entries
        papers (list): Output of ``build_report_rows``
        app_name (str): Name printed in the header
        standard_name (str): Display name of the standard marker

    Returns:
        BytesIO: PDF file as bytes
    """
    buffer = BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=A4, rightMargin=0.75*inch, leftMargin=0.75*inch,
                            topMargin=0.75*inch, bottomMargin=0.75*inch)

    styles = getSampleStyleSheet()
    title_style = ParagraphStyle(
        'ReportTitle',
        parent=styles['Heading1'],
        fontSize=22,
        textColor=HexColor('#0F172A'),
        spaceAfter=6,
        alignment=TA_CENTER,
        fontName='Helvetica-Bold'
    )
    subtitle_style = ParagraphStyle(
        'ReportSubtitle',
        parent=styles['Normal'],
        fontSize=10,
        textColor=HexColor('#555555'),
        spaceAfter=12,
        alignment=TA_CENTER,
    )
    heading_style = ParagraphStyle(
        'ReportHeading',
        parent=styles['Heading2'],
        fontSize=12,
        textColor=HexColor('#0F172A'),
        spaceAfter=8,
        spaceBefore=10,
        fontName='Helvetica-Bold'
    )
    normal_style = ParagraphStyle(
        'ReportNormal',
        parent=styles['Normal'],
        fontSize=9,
        textColor=HexColor('#333333'),
        spaceAfter=4,
    )

    content = []
    content.append(Paragraph(f"{html_escape(app_name)} - {html_escape(title)}", title_style))
    content.append(Paragraph(
        f"Moderation report | Generated: {datetime.now().strftime('%Y-%m-%d %H:%M')}",
        subtitle_style
    ))

    # Summary stats
    summary = [
        ["Control papers", "Average score", "Within deviation", "Outside deviation", "Flags open"],
        [
            str(stats.get("totalSubmissions", 0)),
            f"{stats.get('averageScorePercent', 0)}%",
            str(stats.get("withinDeviationCount", 0)),
            str(stats.get("outsideDeviationCount", 0)),
            str(stats.get("openFlagsCount", 0)),
        ],
    ]
    summary_table = Table(summary, colWidths=[1.3*inch] * 5)
    summary_table.setStyle(TableStyle([
        ('BACKGROUND', (0, 0), (-1, 0), HexColor('#f1f5f9')),
        ('GRID', (0, 0), (-1, -1), 0.5, HexColor('#cbd5e1')),
        ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
        ('FONTSIZE', (0, 0), (-1, -1), 9),
        ('ALIGN', (0, 0), (-1, -1), 'CENTER'),
    ]))
    content.append(summary_table)
    content.append(Spacer(1, 0.2*inch))

    # Rubric
    content.append(Paragraph("Rubric", heading_style))
    for criterion in rubric:
        name = html_escape(criterion.get("categoryName") or "")
        content.append(Paragraph(
            f"<b>{name}</b> | Points: {criterion.get('maxScore')} | "
            f"Deviation Threshold: {criterion.get('deviationScore')}%",
            normal_style
        ))
        if criterion.get("adminComments"):
            content.append(Paragraph(
                f"<i>Admin comment:</i> {html_escape(criterion['adminComments'])}", normal_style
            ))
        tier_rows = [[
            Paragraph(f"<b>{html_escape(t['name'])}</b> ({t['lowerBound']} - {t['upperBound']})", normal_style)
            for t in criterion.get("tiers", [])
        ]]
        if tier_rows[0]:
            tier_table = Table(tier_rows)
            tier_table.setStyle(TableStyle([
                ('GRID', (0, 0), (-1, -1), 0.5, HexColor('#e2e8f0')),
                ('VALIGN', (0, 0), (-1, -1), 'TOP'),
            ]))
            content.append(tier_table)
        content.append(Spacer(1, 0.1*inch))

    # Comparison per control paper
    standard_label = html_escape(standard_name or "Standard")
    for paper in papers:
        content.append(Paragraph(f"Control paper: {html_escape(paper['paper'])}", heading_style))
        rows = [["Criterion", f"{standard_label} (Standard)", "Marker", "Score", "Status"]]
        cell_styles = []
        for criterion in paper["criteria"]:
            standard = criterion["standardScore"]
            standard_text = "N/A" if standard is None else str(standard)
            if not criterion["markerScores"]:
                rows.append([criterion["criterionName"], standard_text, "-", "-", "-"])
                continue
            for entry in criterion["markerScores"]:
                classification = entry["classification"]
                rows.append([
                    criterion["criterionName"],
                    standard_text,
                    entry["markerName"] or str(entry["markerId"]),
                    str(entry["score"]),
                    CLASSIFICATION_LABELS[classification],
                ])
                color = CLASSIFICATION_COLORS.get(classification)
                if color:
                    cell_styles.append(('BACKGROUND', (3, len(rows) - 1), (4, len(rows) - 1), HexColor(color)))

        table = Table(rows, colWidths=[1.9*inch, 1.2*inch, 1.5*inch, 0.6*inch, 1.4*inch], repeatRows=1)
        table.setStyle(TableStyle([
            ('BACKGROUND', (0, 0), (-1, 0), HexColor('#f1f5f9')),
            ('GRID', (0, 0), (-1, -1), 0.5, HexColor('#cbd5e1')),
            ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
            ('FONTSIZE', (0, 0), (-1, -1), 8),
            ('VALIGN', (0, 0), (-1, -1), 'TOP'),
        ] + cell_styles))
        content.append(table)
        content.append(Spacer(1, 0.2*inch))

    if not papers:
        content.append(Paragraph("No control papers to display.", normal_style))

    content.append(Spacer(1, 0.3*inch))
    content.append(Paragraph(
        "This is an automated moderation report.",
        ParagraphStyle('Footer', parent=styles['Normal'], fontSize=8, textColor=HexColor('#999999'), alignment=TA_CENTER)
    ))

    doc.build(content)
    buffer.seek(0)
    return buffer
