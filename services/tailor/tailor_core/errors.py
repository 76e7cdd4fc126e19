from __future__ import annotations


class TailorError(Exception):
    def __init__(self, detail: str, status_code: int = 400) -> None:
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code


class TransportFailure(TailorError):
    """The model could not be reached or refused the request."""

    _MESSAGES = {
        "timeout": "The language model did not respond in time. Please try again.",
        "network_error": "Could not reach the language model provider.",
        "auth_error": "The language model provider rejected the API key.",
        "rate_limited": "The language model provider is rate limiting requests. Please retry shortly.",
        "provider_error": "The language model provider returned an error.",
    }

    def __init__(self, code: str, cause: str = "") -> None:
        super().__init__(self._MESSAGES.get(code, self._MESSAGES["provider_error"]), status_code=502)
        self.code = code
        self.cause = cause


class RunCancelled(TailorError):
    def __init__(self, reason: str = "cancelled") -> None:
        super().__init__(f"run_cancelled:{reason}", status_code=499)
        self.reason = reason


class MergeError(TailorError):
    def __init__(self, detail: str) -> None:
        super().__init__(detail, status_code=500)


class ResponseRejected(Exception):
    MALFORMED = "malformed_response"
    CONTRACT = "contract_violation"

    def __init__(self, kind: str, detail: str) -> None:
        super().__init__(f"{kind}: {detail}")
        self.kind = kind
        self.detail = detail
