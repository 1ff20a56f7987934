# FedGate - SAML Federated Authentication Test Backend
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
Error rendering.

Converts any exception into the client-facing ``ErrorBody``: the stable
code plus a localized message. The internal message and cause chain are
never part of the body.
"""

from collections.abc import Sequence

from pydantic import BaseModel

from fedgate_core.exceptions import (
    FedGateError,
    UnknownErrorObjectError,
    find_fedgate_error,
)

from .messages import MessageCatalog

_catalog = MessageCatalog()


class ErrorBody(BaseModel):
    """Error response returned to clients."""

    code: int
    message: str


def set_message_catalog(catalog: MessageCatalog) -> None:
    """Replace the catalog used to render error messages."""
    global _catalog
    _catalog = catalog


def to_error_body(
    error: BaseException,
    languages: Sequence[str] = (),
    catalog: MessageCatalog | None = None,
) -> tuple[int, ErrorBody]:
    """
    Convert an exception into ``(status_code, ErrorBody)``.

    Server codes render the generic internal-error message. Client codes
    render their own message with the error arguments followed by the code.
    """
    catalog = catalog or _catalog
    fedgate_error: FedGateError | None = find_fedgate_error(error)

    if fedgate_error is None:
        code = UnknownErrorObjectError.code
        message = catalog.lookup(["messages", "InternalServerError"], languages, f"0x{code:x}")
        return 500, ErrorBody(code=code, message=message)

    if fedgate_error.is_client_error:
        arguments = [*fedgate_error.arguments, fedgate_error.hex_code]
        message = catalog.lookup(["messages", fedgate_error.message_key], languages, *arguments)
    else:
        message = catalog.lookup(
            ["messages", "InternalServerError"], languages, fedgate_error.hex_code
        )

    return fedgate_error.status_code, ErrorBody(code=fedgate_error.code, message=message)


__all__ = [
    "ErrorBody",
    "set_message_catalog",
    "to_error_body",
]
