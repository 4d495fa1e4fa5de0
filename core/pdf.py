# core/pdf.py
"""
PDF rendering for invoices, receipts and visit summaries.

Documents are Django templates converted with xhtml2pdf. Arabic output
uses a TrueType font registered with reportlab and text that has been
reshaped and bidi-ordered by the ``shape`` template filter.
"""
import logging
import os

from django.conf import settings
from django.http import HttpResponse
from django.template.loader import render_to_string
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFont
from xhtml2pdf import pisa

from .i18n import get_pdf_language_config, translate
from .models import SystemSetting
from .utils import get_kuwait_now

logger = logging.getLogger(__name__)

ARABIC_FONT_NAME = 'NotoSansArabic'


class PDFGenerationError(Exception):
    pass


def register_arabic_font():
    """
    Register the Arabic font with reportlab once.

    Returns the font file path, or None when the font is not installed
    (xhtml2pdf then falls back to its built-in fonts).
    """
    font_path = getattr(settings, 'PDF_ARABIC_FONT_PATH', '')
    if not font_path or not os.path.exists(str(font_path)):
        logger.warning(f'Arabic PDF font not found at {font_path}')
        return None
    if ARABIC_FONT_NAME not in pdfmetrics.getRegisteredFontNames():
        pdfmetrics.registerFont(TTFont(ARABIC_FONT_NAME, str(font_path)))
    return str(font_path)


def build_pdf_context(context, language):
    """Add clinic header, layout parameters and print date to a document context"""
    config = get_pdf_language_config(language)
    font_path = register_arabic_font() if config['direction'] == 'rtl' else None
    if config['direction'] == 'rtl' and not font_path:
        config['font'] = 'Helvetica'

    return {
        **context,
        'lang': language,
        'pdf': config,
        'font_path': font_path,
        'clinic': SystemSetting.get_clinic_info(language),
        'printed_on': get_kuwait_now(),
    }


def render_pdf(template_name, context, filename, language='ar'):
    """
    Render a template to an inline PDF response.

    Raises:
        PDFGenerationError: when xhtml2pdf reports errors
    """
    html_string = render_to_string(template_name, build_pdf_context(context, language))
    response = HttpResponse(content_type='application/pdf')
    response['Content-Disposition'] = f'inline; filename="{filename}"'

    pisa_status = pisa.CreatePDF(html_string, dest=response, encoding='UTF-8')

    if pisa_status.err:
        logger.error(f'Error generating PDF {filename} from {template_name}')
        raise PDFGenerationError(translate('error.server_message', language))

    return response
