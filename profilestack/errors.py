from typing import List, Optional


class ProfileStackError(Exception):
    """Base class for every error the profile core raises on purpose."""


class InvalidCredential(ProfileStackError):
    pass


class ProfileNotFound(ProfileStackError):
    pass


class EntryNotFound(ProfileStackError):
    pass


class SessionStateError(ProfileStackError):
    """Operation not valid for the current session (e.g. guest while signed in)."""


class SyncStateError(ProfileStackError):
    """SyncResolver asked to do something its current state does not allow."""


class DecisionAlreadyResolved(SyncStateError):
    pass


class SyncFailed(ProfileStackError):
    """Writing the resolved profile failed before anything was committed."""

    def __init__(self, message: str, *, step: Optional[str] = None):
        super().__init__(message)
        self.step = step


class PartialSyncFailure(SyncFailed):
    """Some overwrite steps committed before one failed.

    The remote profile is inconsistent across collections until "keep local"
    is run again; the overwrite is total so repeating it is safe.
    """

    def __init__(self, message: str, *, completed: List[str], step: str):
        super().__init__(message, step=step)
        self.completed = list(completed)


class GenerationFailed(ProfileStackError):
    pass


class GenerationUnavailable(ProfileStackError):
    pass
