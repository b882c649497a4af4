"""
Pooldoc error taxonomy

Every failure that reaches a caller of the document pipeline is one of the
classes below. Each carries a short human-readable ``user_message`` suitable
for an alert dialog or a CLI line, plus a ``retryable`` flag telling the
caller whether offering "try again" makes sense.

Degraded photos are never raised (the image codec absorbs them) and a
cancelled share is an outcome, not an error -- see tools.pool.dispatcher.

Usage:
    from core.errors import PipelineError, RenderFailure

    try:
        artifact = await builder.build(report)
    except PipelineError as e:
        console.print(e.user_message)
"""


class PipelineError(Exception):
    """Base class for categorized, user-facing pipeline failures."""

    retryable = False
    default_message = "No se pudo completar la operación"

    def __init__(self, message: str = "", cause: BaseException | None = None):
        self.user_message = message or self.default_message
        self.cause = cause
        super().__init__(self.user_message)

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.user_message} ({type(self.cause).__name__}: {self.cause})"
        return self.user_message


class RenderFailure(PipelineError):
    """The render-to-file step failed (out of disk, renderer crash)."""

    retryable = True
    default_message = "No se pudo generar el PDF"


class TransferValidationFailure(PipelineError):
    """A download completed but the payload is not a usable document."""

    retryable = True
    default_message = "El PDF descargado es inválido o está corrupto"


class TransferAuthFailure(PipelineError):
    """The server rejected the bearer token (HTTP 401). Never retried."""

    default_message = "Sesión no autorizada. Inicia sesión de nuevo."


class TransferExhausted(PipelineError):
    """Every download attempt failed.

    Attributes:
        attempts:      How many attempts were made.
        last_cause:    The failure reason of the final attempt.
        text_fallback: Always True -- the caller may offer a plain-text
                       summary instead of the document.
    """

    retryable = True
    default_message = "No se pudo descargar el PDF del servidor"

    def __init__(self, attempts: int, last_cause: str, cause: BaseException | None = None):
        self.attempts = attempts
        self.last_cause = last_cause
        self.text_fallback = True
        super().__init__(
            f"No se pudo descargar el PDF tras {attempts} intento(s): {last_cause}",
            cause=cause,
        )


class ShareUnavailable(PipelineError):
    """The platform has no share capability."""

    default_message = "La función de compartir no está disponible en este dispositivo"


class DispatchError(PipelineError):
    """The file handed to the dispatcher is missing or cannot be copied."""

    default_message = "El archivo del reporte no existe"
