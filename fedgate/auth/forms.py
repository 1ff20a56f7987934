# FedGate - SAML Federated Authentication Test Backend
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
Auto-submitting HTML forms for the HTTP-POST binding.

The browser posts the message to the IdP as soon as the page loads. The
only script allowed to run is the inline submit script, pinned by its
sha256 hash in the Content-Security-Policy header.
"""

import base64
import hashlib
from dataclasses import dataclass
from html import escape

from starlette.responses import HTMLResponse

from fedgate_core.exceptions import HtmlWritingError

REQUEST_FORM_ID = "SAMLRequestForm"
RESPONSE_FORM_ID = "SAMLResponseForm"

_SUBMIT_SCRIPT = (
    "document.getElementById('SAMLSubmitButton').style.visibility=\"hidden\";"
    "document.getElementById('{form_id}').submit();"
)


def _script_hash(script: str) -> str:
    digest = hashlib.sha256(script.encode("utf-8")).digest()
    return "sha256-" + base64.b64encode(digest).decode("ascii")


@dataclass(frozen=True)
class AutoSubmitForm:
    form_id: str
    field: str

    @property
    def script(self) -> str:
        return _SUBMIT_SCRIPT.replace("{form_id}", self.form_id)

    @property
    def content_security_policy(self) -> str:
        return (
            f"default-src; script-src '{_script_hash(self.script)}'; "
            "reflected-xss block; referrer no-referrer;"
        )

    def render(self, action: str, payload: str, relay_state: str = "") -> str:
        return (
            "<!DOCTYPE html><html><body>"
            f'<form method="post" action="{escape(action)}" id="{self.form_id}">'
            f'<input type="hidden" name="{self.field}" value="{escape(payload)}"/>'
            f'<input type="hidden" name="RelayState" value="{escape(relay_state)}"/>'
            '<input id="SAMLSubmitButton" type="submit" value="Submit"/>'
            "</form>"
            f"<script>{self.script}</script>"
            "</body></html>"
        )

    def response(self, action: str, payload: str) -> HTMLResponse:
        """
        Build the HTML response posting ``payload`` to ``action``.

        Raises:
            HtmlWritingError: If the page cannot be rendered
        """
        try:
            content = self.render(action, payload)
        except (TypeError, ValueError, AttributeError) as e:
            raise HtmlWritingError(f"Failed to render {self.form_id}: {e}", cause=e) from e
        return HTMLResponse(
            content,
            headers={"Content-Security-Policy": self.content_security_policy},
        )


SAML_REQUEST_FORM = AutoSubmitForm(form_id=REQUEST_FORM_ID, field="SAMLRequest")
SAML_RESPONSE_FORM = AutoSubmitForm(form_id=RESPONSE_FORM_ID, field="SAMLResponse")


__all__ = [
    "AutoSubmitForm",
    "SAML_REQUEST_FORM",
    "SAML_RESPONSE_FORM",
]
