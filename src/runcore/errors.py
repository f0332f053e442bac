"""Exception taxonomy shared by the shell and one-shot execution paths.

Errors raised by the services carry a short, user-presentable message.  The
API layer maps each class to an HTTP status; anything outside this taxonomy
is treated as an internal failure and never echoed to the client.
"""

from __future__ import annotations

from typing import List


class RuncoreError(Exception):
    """Base class for all expected service errors."""

    status_code = 500


class SessionNotFound(RuncoreError):
    status_code = 404

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class SessionBusy(RuncoreError):
    """A command is already running in the session."""

    status_code = 409

    def __init__(self, session_id: str) -> None:
        super().__init__("A command is already running in this session")
        self.session_id = session_id


class LanguageUnavailable(RuncoreError):
    status_code = 400


class UnsupportedLanguage(LanguageUnavailable):
    def __init__(self, extension: str) -> None:
        shown = extension or "(none)"
        super().__init__(f"Unsupported file type: {shown}")
        self.extension = extension


class LanguageNotInstalled(LanguageUnavailable):
    def __init__(self, language: str) -> None:
        super().__init__(f"{language} is not installed on this server")
        self.language = language


class InvalidFilePath(RuncoreError):
    status_code = 400

    def __init__(self, path: str) -> None:
        super().__init__(f"Invalid file path: {path}")
        self.path = path


class ScratchFailure(RuncoreError):
    """One or more files could not be written to the scratch directory."""

    status_code = 500

    def __init__(self, failed: List[str]) -> None:
        super().__init__("Failed to write files: " + ", ".join(failed))
        self.failed = failed
