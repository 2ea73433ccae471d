"""Domain exception hierarchy for appsynth.

Services raise these instead of bare ``ValueError`` so that the global
exception handler in ``main.py`` can map them to the correct HTTP status
code without fragile string matching.

The generation pipeline uses the second half of this module.  Those
errors never leave the supervisor as exceptions: every one except
:class:`Aborted` ends the build with a single final-failure event.
"""


class SynthError(Exception):
    """Base for all domain exceptions."""

    def __init__(self, message: str = "An unexpected error occurred", *, status_code: int = 500):
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(SynthError):
    """Resource not found (404)."""

    def __init__(self, message: str = "Not found"):
        super().__init__(message, status_code=404)


class BadRequestError(SynthError):
    """Client sent an invalid request (400)."""

    def __init__(self, message: str = "Bad request"):
        super().__init__(message, status_code=400)


class ConflictError(SynthError):
    """Request conflicts with current resource state (409)."""

    def __init__(self, message: str = "Conflict"):
        super().__init__(message, status_code=409)


class AuthError(SynthError):
    """Authentication or authorization failure (401/403)."""

    def __init__(self, message: str = "Not authorized", *, status_code: int = 401):
        super().__init__(message, status_code=status_code)


# ---------------------------------------------------------------------------
# Generation pipeline
# ---------------------------------------------------------------------------


class MalformedResponse(SynthError):
    """Model output could not be recovered as structured JSON."""

    def __init__(self, message: str = "Model response was not valid JSON", *, snippet: str = ""):
        super().__init__(message, status_code=502)
        self.snippet = snippet


class UnknownProvider(SynthError):
    """Provider config names an id with no implementation."""

    def __init__(self, provider_id: str):
        super().__init__(f"Unknown provider: {provider_id}", status_code=400)
        self.provider_id = provider_id


class ProviderCallFailed(SynthError):
    """Network, auth or quota failure from an upstream model provider."""

    def __init__(self, provider_id: str, message: str):
        super().__init__(f"{provider_id}: {message}", status_code=502)
        self.provider_id = provider_id


class MissingConfiguration(SynthError):
    """A stage has no system instruction in the settings store."""

    def __init__(self, stage_key: str):
        super().__init__(
            f"No system instruction configured for stage '{stage_key}'",
        )
        self.stage_key = stage_key


class MissingDependency(SynthError):
    """A planned step depends on a file that does not exist yet."""

    def __init__(self, path: str, missing: list[str]):
        super().__init__(
            f"Step for '{path}' depends on missing file(s): {', '.join(missing)}",
            status_code=422,
        )
        self.path = path
        self.missing = missing


class RuntimeValidationFailed(SynthError):
    """The assembled file set did not boot."""

    def __init__(self, message: str):
        super().__init__(message, status_code=422)


class RepairFailed(SynthError):
    """A repair cycle could not produce a bootable file set."""

    def __init__(self, detail: str):
        super().__init__(f"Repair failed: {detail}", status_code=422)
        self.detail = detail


class RepairLimitReached(RepairFailed):
    """The build has used up its repair cycles."""

    def __init__(self, limit: int):
        super().__init__(f"repair limit reached ({limit} cycles)")
        self.limit = limit


class Aborted(SynthError):
    """Cancellation was observed.  Not a build failure."""

    def __init__(self, message: str = "Build cancelled"):
        super().__init__(message, status_code=409)


def format_error_response(
    *,
    error: str,
    detail: object = None,
    request_id: str = "",
) -> dict:
    """Build a structured error response dict.

    Parameters
    ----------
    error : str
        Short error title (e.g. ``"Internal Server Error"``).
    detail : object
        Human-readable detail string or validation error list.
    request_id : str
        The request ID for tracing.

    Returns
    -------
    dict
        ``{"error": ..., "detail": ..., "request_id": ...}``
    """
    return {
        "error": error,
        "detail": detail if detail is not None else error,
        "request_id": request_id,
    }
