"""
HTML template for pool maintenance report documents.

render_report_html() is a pure function: Report in, HTML string out. No file
or network access happens here; photos and the logo must already be resolved
into embeddable sources (see tools.pool.image_codec).

Given the same report, logo and generated_at, the output is byte-identical.
The generated-at line (and the footer year derived from it) is the only
part that changes between calls when generated_at is left to default.

Layout follows the printed report the technicians hand out: header with
logo and report number, general information, water parameters, chemicals
applied, equipment check, materials, observations, photo evidence, footer.
Sections with no data are left out entirely, except parameters (always
reported, even as 0) and photos (every slot is shown, absent ones as
"No disponible").
"""

import html
from datetime import datetime
from typing import Optional

from tools.pool.models import (
    PHOTO_ROLES,
    Chemicals,
    EquipmentStatus,
    Parameters,
    Report,
    equipment_label,
    format_number,
    normalize_equipment,
)

BRAND_NAME = "AquaPool Blue"
DOCUMENT_TITLE = "Reporte de Mantenimiento"
NOT_AVAILABLE = "No disponible"
NOT_RECORDED = "No registrado"
OPTIONAL_MARKER = " (Opcional)"

_MONTHS_ES = (
    "enero", "febrero", "marzo", "abril", "mayo", "junio",
    "julio", "agosto", "septiembre", "octubre", "noviembre", "diciembre",
)

_STYLE = """
    @page { margin: 0; size: A4; }
    * { margin: 0; padding: 0; box-sizing: border-box; }
    body { font-family: 'Segoe UI', Tahoma, Geneva, Verdana, sans-serif;
           line-height: 1.6; color: #1a1a1a; background: white; }
    .page { width: 100%; max-width: 210mm; min-height: 297mm;
            padding: 10mm 15mm 15mm 15mm; margin: 0 auto; }
    .header { padding: 20px 25px; border-radius: 8px; margin-bottom: 20px;
              border: 2px solid #e0e0e0; }
    .logo-section { float: left; width: 30%; }
    .logo { font-size: 24px; font-weight: bold; }
    .logo-img { height: 100px; width: auto; display: block; }
    .header-info { float: right; width: 65%; text-align: right; }
    .doc-title { font-size: 20px; font-weight: bold; margin-bottom: 8px;
                 text-transform: uppercase; }
    .report-number-label { font-size: 11px; font-weight: 500; margin-bottom: 6px; }
    .report-number { font-size: 18px; background: #f5f5f5; padding: 6px 14px;
                     border-radius: 15px; display: inline-block; font-weight: bold;
                     border: 2px solid #e0e0e0; }
    .report-date { font-size: 11px; margin-top: 8px; }
    .clearfix { clear: both; }
    .info-section { margin-bottom: 28px; page-break-inside: avoid; }
    .section-title { font-size: 18px; font-weight: 700; color: #1e3c72;
                     margin-bottom: 18px; padding-bottom: 10px;
                     border-bottom: 4px solid #2a5298; text-transform: uppercase;
                     letter-spacing: 1px; page-break-after: avoid; }
    .grid::after { content: ""; display: table; clear: both; }
    .info-card { width: 48%; float: left; margin: 0 2% 12px 0; background: #f8f9fa;
                 border-left: 4px solid #2a5298; padding: 12px 15px; border-radius: 6px; }
    .info-label { font-weight: 700; color: #495057; display: block; margin-bottom: 6px;
                  font-size: 11px; text-transform: uppercase; letter-spacing: 0.5px; }
    .info-value { color: #1e3c72; font-size: 15px; font-weight: 600; }
    .param-card { width: 31.33%; float: left; margin: 0 2% 12px 0; background: #e3f2fd;
                  border: 2px solid #1976d2; padding: 12px; border-radius: 8px;
                  text-align: center; }
    .param-label { font-weight: 700; color: #1565c0; font-size: 11px; margin-bottom: 8px;
                   text-transform: uppercase; letter-spacing: 0.5px; }
    .param-value { color: #0d47a1; font-size: 22px; font-weight: 700; }
    .chem-card { width: 31.33%; float: left; margin: 0 2% 12px 0; background: #fff3e0;
                 border: 2px solid #f57c00; padding: 10px; border-radius: 8px; }
    .chem-label { font-weight: 700; color: #e65100; font-size: 11px; margin-bottom: 4px;
                  text-transform: uppercase; }
    .chem-value { color: #bf360c; font-size: 18px; font-weight: 700; }
    .equip-card { width: 48%; float: left; margin: 0 2% 12px 0; padding: 12px 14px;
                  border-radius: 8px; border: 2px solid; }
    .equip-card.working { background: #e8f5e9; border-color: #43a047; }
    .equip-card.not-working { background: #ffebee; border-color: #e53935; }
    .equip-card.not-applicable { background: #f5f5f5; border-color: #999; opacity: 0.7; }
    .equip-icon { font-size: 24px; float: left; margin-right: 10px; }
    .equip-label { font-weight: 600; color: #2c3e50; font-size: 13px; margin-bottom: 3px;
                   text-transform: capitalize; }
    .equip-status { font-weight: 700; font-size: 11px; text-transform: uppercase;
                    letter-spacing: 0.5px; }
    .equip-card.working .equip-status { color: #2e7d32; }
    .equip-card.not-working .equip-status { color: #c62828; }
    .text-box { background: #fff8e1; border-left: 5px solid #ffa726; padding: 15px 18px;
                border-radius: 8px; margin-bottom: 18px; color: #e65100; font-size: 14px;
                line-height: 1.8; white-space: pre-wrap; }
    .photo-card { width: 48%; float: left; margin: 0 2% 15px 0; border: 3px solid #2a5298;
                  border-radius: 8px; overflow: hidden; }
    .photo-card.disabled { opacity: 0.5; border-color: #999; }
    .photo-title { background: #1e3c72; color: white; padding: 10px 14px; font-weight: bold;
                   font-size: 12px; text-transform: uppercase; text-align: center; }
    .photo-container { padding: 12px; text-align: center; background: #f8f9fa;
                       min-height: 180px; }
    .photo-container.no-photo { color: #999; font-style: italic; padding-top: 80px; }
    .photo-container img { max-width: 100%; max-height: 280px; border-radius: 6px; }
    .footer { margin-top: 40px; padding-top: 25px; border-top: 3px solid #2a5298;
              text-align: center; color: #666; font-size: 12px; }
    .footer-logo { font-size: 24px; font-weight: 700; color: #1e3c72; margin-bottom: 8px; }
"""


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------

def _esc(value: object) -> str:
    return html.escape(str(value), quote=True)


def format_date_es(value: Optional[datetime]) -> str:
    """5 de marzo de 2025, 9:05 AM"""
    if value is None:
        return NOT_RECORDED
    hour = value.hour % 12 or 12
    ampm = "PM" if value.hour >= 12 else "AM"
    return (
        f"{value.day} de {_MONTHS_ES[value.month - 1]} de {value.year}, "
        f"{hour}:{value.minute:02d} {ampm}"
    )


def _date_part(value: Optional[datetime]) -> str:
    return format_date_es(value).split(",")[0]


def _time_part(value: Optional[datetime]) -> str:
    if value is None:
        return "N/A"
    return format_date_es(value).split(",")[1].strip()


def _section(title: str, body: str) -> str:
    return f"""
    <div class="info-section">
      <div class="section-title">{title}</div>
      {body}
    </div>"""


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------

def _header(report: Report, logo: Optional[str], generated_at: datetime) -> str:
    if logo:
        logo_html = f'<img src="{_esc(logo)}" alt="{BRAND_NAME}" class="logo-img">'
    else:
        logo_html = f'<div class="logo">🏊 {BRAND_NAME}</div>'
    return f"""
    <div class="header">
      <div class="logo-section">
        {logo_html}
      </div>
      <div class="header-info">
        <div class="doc-title">{DOCUMENT_TITLE}</div>
        <div class="report-number-label">Número de Reporte</div>
        <div class="report-number">{_esc(report.report_number or 'N/A')}</div>
        <div class="report-date">Generado: {format_date_es(generated_at)}</div>
      </div>
      <div class="clearfix"></div>
    </div>"""


def _general_section(report: Report) -> str:
    rows = [
        ("Cliente / Proyecto", report.display_client or "N/A"),
        ("Ubicación", report.location or "N/A"),
        ("Técnico Responsable", report.technician or "N/A"),
        ("Fecha del Servicio", _date_part(report.entry_time)),
        ("Hora de Entrada", _time_part(report.entry_time)),
        ("Hora de Salida", _time_part(report.exit_time)),
    ]
    if report.received_by:
        rows.append(("Recibido por", report.received_by))
    cards = "".join(
        f"""
        <div class="info-card">
          <div class="info-label">{label}</div>
          <div class="info-value">{_esc(value)}</div>
        </div>"""
        for label, value in rows
    )
    return _section("📋 Información General", f'<div class="info-grid grid">{cards}\n      </div>')


def _parameters_section(parameters: Parameters) -> str:
    cards = "".join(
        f"""
        <div class="param-card">
          <div class="param-label">{label}</div>
          <div class="param-value">{format_number(value)}{(' ' + unit) if unit else ''}</div>
        </div>"""
        for _name, label, unit, value in parameters.items()
    )
    return _section("🔬 Parámetros del Agua", f'<div class="params-grid grid">{cards}\n      </div>')


def _chemicals_section(chemicals: Chemicals) -> str:
    applied = chemicals.applied()
    if not applied:
        return ""
    cards = "".join(
        f"""
        <div class="chem-card">
          <div class="chem-label">🧪 {label}</div>
          <div class="chem-value">{format_number(dosage)} {unit}</div>
        </div>"""
        for _name, label, unit, dosage in applied
    )
    return _section("🧪 Químicos Aplicados", f'<div class="chem-grid grid">{cards}\n      </div>')


def _equipment_section(equipment: dict[str, EquipmentStatus]) -> str:
    if not equipment:
        return ""
    cards = []
    for key, status in equipment.items():
        state = normalize_equipment(status)
        cards.append(f"""
        <div class="equip-card {state.css_class}">
          <div class="equip-icon">{state.glyph}</div>
          <div class="equip-label">{_esc(equipment_label(key))}</div>
          <div class="equip-status">{state.label}</div>
        </div>""")
    return _section(
        "⚙️ Revisión de Equipos",
        f'<div class="equip-grid grid">{"".join(cards)}\n      </div>',
    )


def _text_section(title: str, text: str) -> str:
    if not text or not text.strip():
        return ""
    return _section(title, f'<div class="text-box">{_esc(text.strip())}</div>')


def _photos_section(report: Report) -> str:
    cards = []
    for role in PHOTO_ROLES:
        src = report.photos.get(role.slot)
        title = f"Foto {role.title}"
        if not report.photo_required(role):
            title += OPTIONAL_MARKER
        if src:
            card_class, container_class = "photo-card", "photo-container"
            content = f'<img src="{_esc(src)}" alt="Foto {role.title}">'
        else:
            card_class, container_class = "photo-card disabled", "photo-container no-photo"
            content = NOT_AVAILABLE
        cards.append(f"""
        <div class="{card_class}" data-slot="{role.slot}">
          <div class="photo-title">{title}</div>
          <div class="{container_class}">{content}</div>
        </div>""")
    return _section(
        "📸 Evidencia Fotográfica",
        f'<div class="photos-grid grid">{"".join(cards)}\n      </div>',
    )


def _footer(generated_at: datetime) -> str:
    return f"""
    <div class="footer">
      <div class="footer-logo">{BRAND_NAME}</div>
      <div>Sistema de Gestión de Mantenimiento de Piscinas</div>
      <div>© {generated_at.year} - Todos los derechos reservados</div>
    </div>"""


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def render_report_html(
    report: Report,
    logo: Optional[str] = None,
    generated_at: Optional[datetime] = None,
) -> str:
    """Render a report into a complete HTML document.

    Args:
        report:       The report, with photo slots already resolved.
        logo:         Embeddable logo src; falls back to a text logo.
        generated_at: Timestamp printed in the header. Defaults to now.

    Returns:
        The HTML document as a string.
    """
    generated_at = generated_at or datetime.now()
    sections = [
        _header(report, logo, generated_at),
        _general_section(report),
        _parameters_section(report.parameters),
        _chemicals_section(report.chemicals),
        _equipment_section(report.equipment),
        _text_section("📦 Materiales Entregados", report.materials_delivered),
        _text_section("📝 Observaciones", report.observations),
        _photos_section(report),
        _footer(generated_at),
    ]
    body = "".join(s for s in sections if s)
    return (
        "<!DOCTYPE html>\n"
        '<html lang="es">\n'
        "<head>\n"
        '  <meta charset="UTF-8">\n'
        f"  <title>Reporte {_esc(report.report_number or 'N/A')}</title>\n"
        f"  <style>{_STYLE}  </style>\n"
        "</head>\n"
        "<body>\n"
        f'  <div class="page">{body}\n  </div>\n'
        "</body>\n"
        "</html>\n"
    )
