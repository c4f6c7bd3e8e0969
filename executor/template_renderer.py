from functools import lru_cache
from jinja2 import DebugUndefined, Template, meta
from jinja2.sandbox import SandboxedEnvironment
from typing import Dict, Any, List, Optional
import logging

from models.contact import Contact
from models.template import EmailTemplate

logger = logging.getLogger("automation_engine")


class TemplateRenderer:
    """
    Renders tenant-authored templates. The sandbox blocks attribute access to
    Python internals; only plain variable substitution is meant to work.
    """

    def __init__(self, cache_size: int = 256):
        # DebugUndefined renders unknown variables back as "{{ name }}" instead of failing
        self.env = SandboxedEnvironment(undefined=DebugUndefined)
        self._get_template = lru_cache(maxsize=cache_size)(self._compile)

    def _compile(self, template_str: str) -> Template:
        return self.env.from_string(template_str)

    def missing_variables(self, template_str: str, context: Dict[str, Any]) -> List[str]:
        """Returns the template variables that the context does not provide."""
        if not template_str:
            return []
        try:
            ast = self.env.parse(template_str)
        except Exception as e:
            return [f"Template Syntax Error: {e}"]
        return sorted(var for var in meta.find_undeclared_variables(ast) if var not in context)

    def render(self, template_str: Optional[str], context: Dict[str, Any]) -> str:
        """Renders a string template with the provided context."""
        if not template_str:
            return ""
        try:
            template = self._get_template(template_str)
            return template.render(**context)
        except Exception as e:
            logger.error(f"Error rendering template: {e}")
            raise ValueError(f"Template rendering failed: {e}")

    def render_for_contact(self, template_str: Optional[str], contact: Contact, additional_data: Optional[Dict[str, Any]] = None) -> str:
        return self.render(template_str, contact.template_variables(additional_data))

    def prepare_email(self, template: EmailTemplate, contact: Contact, additional_data: Optional[Dict[str, Any]] = None) -> Dict[str, Optional[str]]:
        """Personalizes an email template for one contact."""
        context = contact.template_variables(additional_data)

        missing = self.missing_variables(template.subject, context) + self.missing_variables(template.body_html, context)
        if missing:
            logger.warning(f"Template {template.id} has unresolved variables for contact {contact.id}: {missing}")

        return {
            "subject": self.render(template.subject, context),
            "html": self.render(template.body_html, context),
            "text": self.render(template.body_text, context) if template.body_text else None,
        }
