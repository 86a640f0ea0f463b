"""Domain errors surfaced to clients as transient notifications."""

GENERIC_ERROR_MESSAGE = "An unexpected error occurred."

# Identity provider error codes -> human-readable messages
AUTH_ERROR_MESSAGES = {
    "auth/invalid-credential": "Invalid email or password. Please try again.",
    "auth/email-already-in-use": "An account with this email already exists.",
    "auth/display-name-taken": "That name is already in use. Please choose another.",
    "auth/account-exists-with-different-credential": (
        "An account with this email already exists using a different sign-in method. "
        "Please sign in with the original provider."
    ),
    "auth/wrong-password": "Your current password is incorrect.",
    "auth/requires-recent-login": "Current password is required to change it.",
    "auth/unsupported-provider": "That sign-in provider is not supported.",
    "auth/provider-error": "Could not sign in with that provider.",
}


def describe_auth_error(code: str) -> str:
    return AUTH_ERROR_MESSAGES.get(code, GENERIC_ERROR_MESSAGE)


class ChatError(Exception):
    status_code = 400
    title = "Error"

    def __init__(self, detail: str = GENERIC_ERROR_MESSAGE, title: str = None):
        super().__init__(detail)
        self.detail = detail
        if title:
            self.title = title


class ValidationFailed(ChatError):
    status_code = 400
    title = "Invalid Input"


class NotFound(ChatError):
    status_code = 404
    title = "Not Found"


class PermissionDenied(ChatError):
    status_code = 403
    title = "Permission Denied"


class AuthError(ChatError):
    """Identity provider failure carrying a stable error code."""
    status_code = 401
    title = "Sign-In Failed"

    def __init__(self, code: str, title: str = None, status_code: int = None):
        super().__init__(describe_auth_error(code), title)
        self.code = code
        if status_code:
            self.status_code = status_code


class AIServiceError(ChatError):
    status_code = 502
    title = "AI Error"
