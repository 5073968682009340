"""
Templates that already carry {{field}} tags are rendered directly with docxtpl;
the replacement engine is not involved.
"""

import re
from io import BytesIO
from typing import List, Mapping

import structlog
from docx.opc.exceptions import PackageNotFoundError
from docxtpl import DocxTemplate
from jinja2 import DebugUndefined, Environment, TemplateError
from lxml.etree import XMLSyntaxError

from bidfill.errors import TagRenderError

logger = structlog.get_logger(__name__)

SIMPLE_TAG_RE = re.compile(r"\{\{\s*([A-Za-z_][\w.]*)\s*\}\}")


def find_tags(text: str) -> List[str]:
    return list(dict.fromkeys(SIMPLE_TAG_RE.findall(text)))


def render_tags(document: bytes, context: Mapping[str, str]) -> bytes:
    """
    Substitutes {{field}} tags from context. Unknown tags are left in the
    document as written so they stay visible for manual completion.
    """
    try:
        template = DocxTemplate(BytesIO(document))
        missing = sorted(template.get_undeclared_template_variables() - set(context))
        if missing:
            logger.warning("Template tags without data", tags=missing)
        template.render(dict(context), jinja_env=Environment(undefined=DebugUndefined), autoescape=True)
        out = BytesIO()
        template.save(out)
    except TemplateError as e:
        raise TagRenderError(f"Cannot render template tags: {e}") from e
    except (PackageNotFoundError, KeyError, ValueError, XMLSyntaxError) as e:
        raise TagRenderError(f"Cannot open tagged template: {e}") from e
    return out.getvalue()
