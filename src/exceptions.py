"""
Custom exceptions for the Pallet Labels application.

This module defines application-specific exceptions for error handling,
user feedback and HTTP status mapping. Using custom exceptions allows the
application to:
- Distinguish a forged QR code from an unreachable Todoist API
- Carry context (status codes, field names) up to the route boundary
- Map every failure to exactly one HTTP status in one place
- Keep workflow results as plain values instead of string matching

Warehouse staff scan pallets with phones on the loading dock, so every
exception also offers a short German message suitable for a phone screen.

Exception hierarchy:
    PalletLabelsError (base, 500)
    ├── AuthorizationError (bad or missing QR signature, 403)
    │   └── AuthenticationRequiredError (Basic Auth missing/invalid, 401)
    ├── RemoteServiceError (task API non-2xx or network failure, 502)
    ├── ValidationError (form/JSON input rejected, 400)
    ├── NotFoundError (unknown load list id, 404)
    ├── StorageError (completion log could not be written, 500)
    └── ConfigurationError (required settings missing at startup)
"""

from typing import Optional


class PalletLabelsError(Exception):
    """
    Base exception for all Pallet Labels errors.

    All application-specific exceptions inherit from this class, so the web
    layer can catch every expected failure with a single except clause and
    turn it into a response using ``http_status``.

    Note: This does NOT inherit from built-in errors like ValueError, IOError
    to maintain clear separation between application and system errors.
    """

    http_status = 500
    display_message = "Interner Fehler."

    def get_display_message(self) -> str:
        """Short German message for the HTML/JSON response body."""
        return self.display_message


class AuthorizationError(PalletLabelsError):
    """
    Raised when a completion request carries a missing or wrong signature.

    The signature is an HMAC of the task id, printed into the QR code on the
    pallet label. A mismatch means the URL was typed by hand or tampered with;
    nothing is logged and the remote task is never touched.
    """

    http_status = 403
    display_message = "Ungültige Signatur."


class AuthenticationRequiredError(AuthorizationError):
    """
    Raised when an admin route is requested without valid Basic Auth.

    Attributes:
        realm (str): Realm announced in the WWW-Authenticate header
    """

    http_status = 401

    def __init__(self, message: str, realm: str = "LagerApp"):
        super().__init__(message)
        self.realm = realm

    def get_display_message(self) -> str:
        return str(self) or "Authentifizierung erforderlich."


class RemoteServiceError(PalletLabelsError):
    """
    Raised when the remote task service fails or answers with non-2xx.

    For the primary close action this ends the request with a 502 and the
    completion log stays untouched, so the worker can simply scan again.
    Secondary lookups (label of a task, remaining pallets) catch it and
    degrade to an empty list.

    Attributes:
        status_code (Optional[int]): HTTP status of the failed call, None for
            network errors (timeout, DNS, connection refused)
        detail (str): Response body or transport error text, for the logs
    """

    http_status = 502
    display_message = (
        "Die Aufgabe konnte gerade nicht in Todoist bearbeitet werden. "
        "Bitte nochmal scannen oder später erneut versuchen."
    )

    def __init__(self, message: str, status_code: Optional[int] = None, detail: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class ValidationError(PalletLabelsError):
    """
    Raised when request input fails validation.

    Example usage:
        if not project:
            raise ValidationError("Bitte Projekt angeben.", field="project")

    Attributes:
        field (Optional[str]): Name of the offending form/JSON field
    """

    http_status = 400

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field

    def get_display_message(self) -> str:
        return str(self)


class NotFoundError(PalletLabelsError):
    """Raised when a load list id is unknown or has expired."""

    http_status = 404

    def get_display_message(self) -> str:
        return str(self) or "Liste nicht gefunden"


class StorageError(PalletLabelsError):
    """Raised when the completion log cannot be persisted."""

    display_message = "Ausbuchung konnte nicht gespeichert werden."


class ConfigurationError(PalletLabelsError):
    """
    Raised at startup when required settings are missing.

    Attributes:
        missing (list): Names of the missing settings
    """

    def __init__(self, message: str, missing: Optional[list] = None):
        super().__init__(message)
        self.missing = list(missing or [])
