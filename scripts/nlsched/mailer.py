"""
Client for the Mailer service API.

Covers the three calls a newsletter send needs: generating email content from
a generator template, storing the result as a mail template, and creating a
sending job for a segment.
"""

import logging
import re
import uuid
from typing import Any, Dict, Optional

import requests

from .exceptions import MailerError

logger = logging.getLogger(__name__)

# Request settings
REQUEST_TIMEOUT = 30
USER_AGENT = "NewsletterScheduler/1.0"

GENERATE_MAIL_PATH = "api/v1/mailers/generate-mail"
TEMPLATES_PATH = "api/v1/mailers/templates"
JOBS_PATH = "api/v1/mailers/jobs"


def _form_value(value: Any) -> Any:
    """Booleans are sent as 1/0 in form bodies."""
    if isinstance(value, bool):
        return int(value)
    return value


def template_code(name: str) -> str:
    """Build a unique template code from a newsletter name."""
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-") or "newsletter"
    return f"{slug}-{uuid.uuid4().hex[:8]}"


class MailerClient:
    """HTTP client for the Mailer API."""

    def __init__(
        self,
        base_url: str,
        api_token: Optional[str] = None,
        timeout: int = REQUEST_TIMEOUT,
        session: Optional[requests.Session] = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            base_url: Mailer host, e.g. ``https://mailer.example.com``.
            api_token: Bearer token for the API.
            timeout: Request timeout in seconds.
            session: Optional pre-configured requests session.
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": USER_AGENT, "Accept": "application/json"})
        if api_token:
            self.session.headers["Authorization"] = f"Bearer {api_token}"

    def _post(self, path: str, **kwargs) -> Dict[str, Any]:
        url = f"{self.base_url}/{path}"
        try:
            response = self.session.post(url, timeout=self.timeout, **kwargs)
            response.raise_for_status()
        except requests.exceptions.Timeout as e:
            raise MailerError(f"Timeout calling {url}") from e
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            raise MailerError(f"HTTP error {status} for {url}", status_code=status) from e
        except requests.exceptions.RequestException as e:
            raise MailerError(f"Request failed for {url}: {e}") from e

        try:
            payload = response.json()
        except ValueError as e:
            raise MailerError(f"Invalid JSON from {url}", status_code=response.status_code) from e

        if not isinstance(payload, dict):
            raise MailerError(f"Unexpected response from {url}: {payload!r}")
        return payload

    def generate_email(self, generator_id: int, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        Render content with a generator template.

        Args:
            generator_id: Source template ID of the generator.
            params: Generator parameters (``articles`` or ``dynamic`` + ``articles_count``).

        Returns:
            The generator output, normally with ``htmlContent`` and ``textContent``.
        """
        form = {"source_template_id": generator_id}
        form.update({key: _form_value(value) for key, value in params.items()})
        payload = self._post(GENERATE_MAIL_PATH, data=form)
        logger.debug("Generated email with generator %s", generator_id)
        data = payload.get("data", payload)
        return data if isinstance(data, dict) else {}

    def create_template(
        self,
        name: str,
        layout_code: str,
        description: str,
        from_address: str,
        subject: str,
        text_content: str,
        html_content: str,
        mail_type_code: str,
    ) -> int:
        """Store rendered content as a mail template and return its ID."""
        payload = self._post(
            TEMPLATES_PATH,
            data={
                "name": name,
                "code": template_code(name),
                "mail_layout_code": layout_code,
                "description": description,
                "from": from_address,
                "subject": subject,
                "template_text": text_content,
                "template_html": html_content,
                "mail_type_code": mail_type_code,
            },
        )
        return self._id_from(payload, TEMPLATES_PATH)

    def create_job(self, segment_code: str, segment_provider: str, template_id: int) -> int:
        """Create a sending job for a segment and return its ID."""
        payload = self._post(
            JOBS_PATH,
            json={
                "segment_code": segment_code,
                "segment_provider": segment_provider,
                "template_id": template_id,
            },
        )
        return self._id_from(payload, JOBS_PATH)

    @staticmethod
    def _id_from(payload: Dict[str, Any], path: str) -> int:
        value = payload.get("id")
        if value is None and isinstance(payload.get("data"), dict):
            value = payload["data"].get("id")
        try:
            return int(value)
        except (TypeError, ValueError) as e:
            raise MailerError(f"Response from {path} has no usable id: {value!r}") from e
