import logging
from typing import Any, Dict, Optional

from .errors import EntryNotFound, SessionStateError
from .identity import Identity
from .local_session import LocalSession
from .models import (
    PERSONAL_FIELDS,
    CollectionKind,
    Entry,
    Profile,
    build_entry,
    new_local_id,
    split_display_name,
)
from .remote import RemoteProfileService

logger = logging.getLogger(__name__)


class SessionContext:
    """Who is using the app right now and which profile they are editing.

    Owned by the application (the web UI keeps one per browser session) and
    passed in, so nothing here is process-global.
    """

    def __init__(self):
        self.identity: Optional[Identity] = None
        self.active_profile: Optional[Profile] = None
        self.is_guest: bool = False


class SessionController:
    def __init__(self, context: SessionContext, local_session: LocalSession, remote: RemoteProfileService):
        self.context = context
        self.local_session = local_session
        self.remote = remote

    # --- accessors ---------------------------------------------------------

    @property
    def active_profile(self) -> Optional[Profile]:
        profile = self.context.active_profile
        return profile.model_copy(deep=True) if profile is not None else None

    @property
    def identity(self) -> Optional[Identity]:
        return self.context.identity

    @property
    def is_guest(self) -> bool:
        return self.context.is_guest

    @property
    def is_authenticated(self) -> bool:
        return self.context.identity is not None

    @property
    def is_logged_out(self) -> bool:
        return not self.is_authenticated and not self.is_guest

    def local_snapshot(self) -> Optional[Profile]:
        """Copy of the guest's local profile, or None when not in guest mode."""
        if not self.context.is_guest:
            return None
        return self.local_session.snapshot()

    # --- identity transitions ---------------------------------------------

    def begin_guest(self, name: str) -> Profile:
        if self.is_authenticated:
            raise SessionStateError("Already signed in; log out before continuing as a guest")
        if self.is_guest:
            raise SessionStateError("A guest session is already active")
        if not (name or "").strip():
            raise ValueError("Please enter your name")

        first_name, last_name = split_display_name(name)
        profile = self.local_session.create(first_name, last_name)
        self.context.is_guest = True
        self.context.active_profile = profile
        logger.info("Guest session started")
        return profile.model_copy(deep=True)

    def restore_guest(self) -> bool:
        """Pick up a guest profile left in local storage by an earlier visit."""
        if not self.is_logged_out:
            return False
        profile = self.local_session.load()
        if profile is None:
            return False
        self.context.is_guest = True
        self.context.active_profile = profile.model_copy(deep=True)
        logger.info("Restored guest session from local storage")
        return True

    def complete_authentication(self, identity: Identity, profile: Profile) -> None:
        if self.is_authenticated:
            raise SessionStateError("A signed-in session is already active")
        self.context.identity = identity
        self.context.active_profile = profile.model_copy(deep=True)
        self.context.is_guest = False
        # guest data is either synced or deliberately discarded by now
        self.local_session.clear()
        logger.info("Session authenticated for subject %s", identity.subject_id)

    def logout(self) -> None:
        subject = self.context.identity.subject_id if self.context.identity else None
        self.context.identity = None
        self.context.active_profile = None
        self.context.is_guest = False
        # guest data is device-scoped and does not survive logout
        self.local_session.clear()
        logger.info("Logged out%s", f" subject {subject}" if subject else " guest")

    # --- profile editing ---------------------------------------------------

    def _require_profile(self) -> Profile:
        if self.context.active_profile is None:
            raise SessionStateError("No active profile")
        return self.context.active_profile

    def _store_local(self, profile: Profile) -> None:
        self.local_session.replace(profile)
        self.context.active_profile = profile

    def _refresh_remote(self) -> None:
        self.context.active_profile = self.remote.get_profile(self.context.identity)

    def update_personal(self, **fields: Any) -> Profile:
        profile = self._require_profile()
        unknown = set(fields) - set(PERSONAL_FIELDS)
        if unknown:
            raise ValueError(f"Unknown profile fields: {sorted(unknown)}")

        if self.is_authenticated:
            self.context.active_profile = self.remote.update_basic_info(self.context.identity, fields)
        else:
            self._store_local(profile.model_copy(update=fields))
        return self.active_profile

    def add_entry(self, kind: CollectionKind, data: Dict[str, Any]) -> Entry:
        profile = self._require_profile()
        kind = CollectionKind(kind)

        if self.is_authenticated:
            entry = self.remote.create_entry(self.context.identity, kind, data)
            self._refresh_remote()
            return entry

        entry = build_entry(kind, data, entry_id=new_local_id())
        self._store_local(profile.model_copy(update={kind.value: profile.entries(kind) + [entry]}))
        return entry

    def update_entry(self, kind: CollectionKind, entry_id: str, data: Dict[str, Any]) -> Entry:
        profile = self._require_profile()
        kind = CollectionKind(kind)

        if self.is_authenticated:
            entry = self.remote.update_entry(self.context.identity, kind, entry_id, data)
            self._refresh_remote()
            return entry

        entries = profile.entries(kind)
        for idx, current in enumerate(entries):
            if current.id == entry_id:
                merged = {**current.model_dump(), **data}
                entries[idx] = build_entry(kind, merged, entry_id=entry_id)
                self._store_local(profile.model_copy(update={kind.value: entries}))
                return entries[idx]
        raise EntryNotFound(f"No {kind.value} entry {entry_id}")

    def delete_entry(self, kind: CollectionKind, entry_id: str) -> None:
        profile = self._require_profile()
        kind = CollectionKind(kind)

        if self.is_authenticated:
            self.remote.delete_entry(self.context.identity, kind, entry_id)
            self._refresh_remote()
            return

        entries = profile.entries(kind)
        remaining = [e for e in entries if e.id != entry_id]
        if len(remaining) == len(entries):
            raise EntryNotFound(f"No {kind.value} entry {entry_id}")
        self._store_local(profile.model_copy(update={kind.value: remaining}))
