"""Contact form submission."""

import pydantic

from app.core.errors import ValidationFailure
from app.schemas.gateway import ContactRequest
from app.services.gateway_api import GatewayApi


async def submit_contact_form(
    api: GatewayApi,
    *,
    name: str,
    email: str,
    subject: str,
    message: str,
) -> ContactRequest:
    """Validate and send a contact form.

    Args:
        api: Gateway endpoints.
        name: Sender name (non-blank).
        email: Sender email (valid address).
        subject: Subject line (non-blank).
        message: Message body (non-blank).

    Returns:
        The validated request that was sent.

    Raises:
        ValidationFailure: A field is blank or the email is invalid. Nothing
            is sent in that case.
        APIError: Gateway failure.
    """
    try:
        contact = ContactRequest(name=name, email=email, subject=subject, message=message)
    except pydantic.ValidationError as exc:
        details = [
            {"field": ".".join(str(p) for p in e["loc"]), "error": e["msg"]}
            for e in exc.errors()
        ]
        raise ValidationFailure("Please fill in all fields correctly.", details) from exc

    await api.submit_contact(contact)
    return contact
