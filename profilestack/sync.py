"""
Login-time reconciliation of guest data with the account's stored profile.

    IDLE -> AUTHENTICATING -> CLASSIFYING -+-> AUTO_RESOLVING  -+-> FINALIZING -> SETTLED
                                           +-> AWAITING_CHOICE -+
    failures: AUTHENTICATING -> IDLE (bad credential) or FAILED, FINALIZING -> FAILED

AWAITING_CHOICE holds a PendingSyncDecision in memory only. Nothing has been
written at that point, so dropping it (tab closed, cancel()) is harmless and
the next attempt starts again from sign-in.
"""

import logging
from enum import Enum
from typing import Any, Callable, Dict, Optional, Union

from pydantic import BaseModel

from .conflict import Classification, classify
from .errors import (
    DecisionAlreadyResolved,
    InvalidCredential,
    ProfileStackError,
    SyncFailed,
    SyncStateError,
)
from .identity import Identity, identity_from_claims
from .models import Profile, collection_counts
from .remote import RemoteProfileService
from .session import SessionController

logger = logging.getLogger(__name__)


class SyncState(str, Enum):
    IDLE = "idle"
    AUTHENTICATING = "authenticating"
    CLASSIFYING = "classifying"
    AUTO_RESOLVING = "auto_resolving"
    AWAITING_CHOICE = "awaiting_choice"
    FINALIZING = "finalizing"
    SETTLED = "settled"
    FAILED = "failed"


_IN_FLIGHT = {
    SyncState.AUTHENTICATING,
    SyncState.CLASSIFYING,
    SyncState.AUTO_RESOLVING,
    SyncState.FINALIZING,
}


class SyncResult(BaseModel):
    identity: Identity
    profile: Profile
    classification: Classification
    kept_local: bool


class PendingSyncDecision:
    """Both sides carry data; waits for the user to pick one.

    Exactly one of resolve_with_local(), resolve_with_remote() or cancel() may
    be called. Any further call raises DecisionAlreadyResolved.
    """

    def __init__(self, resolver: "SyncResolver", identity: Identity, local: Profile, remote: Profile):
        self._resolver = resolver
        self.identity = identity
        self.local_profile = local
        self.remote_profile = remote
        self._closed = False

    @property
    def is_open(self) -> bool:
        return not self._closed

    @property
    def local_counts(self) -> Dict[str, int]:
        return collection_counts(self.local_profile)

    @property
    def remote_counts(self) -> Dict[str, int]:
        return collection_counts(self.remote_profile)

    def _close(self) -> None:
        if self._closed:
            raise DecisionAlreadyResolved("This sync decision has already been made")
        if self._resolver.pending is not self:
            raise SyncStateError("This sync decision is no longer current")
        self._closed = True

    def resolve_with_local(self) -> SyncResult:
        """Overwrite the remote profile with the local one, collection by collection."""
        self._close()
        return self._resolver._finalize(
            self.identity, self.remote_profile, Classification.CONFLICT, push=self.local_profile,
        )

    def resolve_with_remote(self) -> SyncResult:
        """Keep the remote profile as fetched; the local data is discarded."""
        self._close()
        return self._resolver._finalize(self.identity, self.remote_profile, Classification.CONFLICT)

    def cancel(self) -> None:
        self._close()
        self._resolver._abandon()


class SyncResolver:
    """Runs one login attempt at a time for a single browser session.

    Only this class writes the remote profile during login, and only for the
    identity that just signed in.
    """

    def __init__(
        self,
        remote: RemoteProfileService,
        session: SessionController,
        verify_identity: Callable[[Any], Identity] = identity_from_claims,
    ):
        self.remote = remote
        self.session = session
        self.verify_identity = verify_identity
        self.state = SyncState.IDLE
        self.pending: Optional[PendingSyncDecision] = None
        self.last_error: Optional[Exception] = None

    def _transition(self, state: SyncState) -> None:
        logger.debug("sync state %s -> %s", self.state.value, state.value)
        self.state = state

    def _fail(self, error: Exception, state: SyncState = SyncState.FAILED) -> None:
        self.last_error = error
        self.pending = None
        self._transition(state)

    def begin_login(self, credential: Any) -> Union[SyncResult, PendingSyncDecision]:
        """Start reconciliation for a provider callback carrying `credential`.

        Returns a SyncResult when no user input is needed, otherwise the
        PendingSyncDecision the caller must resolve.
        """
        if self.state == SyncState.AWAITING_CHOICE:
            raise SyncStateError("Choose local or cloud data before signing in again")
        if self.state in _IN_FLIGHT:
            raise SyncStateError(f"A login is already in progress ({self.state.value})")
        if self.session.is_authenticated:
            raise SyncStateError("Already signed in; log out first")

        self.last_error = None
        self._transition(SyncState.AUTHENTICATING)
        try:
            # taken once, before any I/O; edits made elsewhere after this point are not seen
            local = self.session.local_snapshot()
            identity = self.verify_identity(credential)
        except InvalidCredential as e:
            logger.warning("Sign-in rejected: %s", e)
            self._fail(e, SyncState.IDLE)
            raise
        except Exception as e:
            logger.exception("Sign-in verification failed")
            error = SyncFailed(f"Could not verify your sign-in: {e}", step="authenticate")
            self._fail(error)
            raise error from e

        try:
            remote = self.remote.ensure_profile(identity)
        except ProfileStackError as e:
            logger.error("Could not load profile for subject %s: %s", identity.subject_id, e)
            self._fail(e)
            raise
        except Exception as e:
            logger.exception("Remote profile fetch failed for subject %s", identity.subject_id)
            error = SyncFailed(f"Could not load your cloud profile: {e}", step="fetch")
            self._fail(error)
            raise error from e

        self._transition(SyncState.CLASSIFYING)
        classification = classify(local, remote)
        logger.info("Login for subject %s classified as %s", identity.subject_id, classification.value)

        if classification == Classification.CONFLICT:
            self.pending = PendingSyncDecision(self, identity, local, remote)
            self._transition(SyncState.AWAITING_CHOICE)
            return self.pending

        self._transition(SyncState.AUTO_RESOLVING)
        push = local if classification == Classification.ADOPT_LOCAL else None
        return self._finalize(identity, remote, classification, push=push)

    def _finalize(
        self,
        identity: Identity,
        remote: Profile,
        classification: Classification,
        push: Optional[Profile] = None,
    ) -> SyncResult:
        self._transition(SyncState.FINALIZING)
        try:
            profile = self.remote.replace_profile(identity, push) if push is not None else remote
            self.session.complete_authentication(identity, profile)
        except ProfileStackError as e:
            logger.error("Finalizing login for subject %s failed: %s", identity.subject_id, e)
            self._fail(e)
            raise
        except Exception as e:
            logger.exception("Finalizing login for subject %s failed", identity.subject_id)
            error = SyncFailed(f"Could not finish signing in: {e}", step="finalize")
            self._fail(error)
            raise error from e

        self.pending = None
        self._transition(SyncState.SETTLED)
        return SyncResult(
            identity=identity,
            profile=profile,
            classification=classification,
            kept_local=push is not None,
        )

    def _abandon(self) -> None:
        logger.info("Pending sync decision abandoned")
        self.pending = None
        self._transition(SyncState.IDLE)
