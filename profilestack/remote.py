"""
Server-side profile storage
===========================

One UserAccount per identity-provider subject, one ProfileRecord per account.
Flat personal fields are columns; each collection is a JSON column holding the
entries as dicts, each with a durable id assigned here.

Every public method runs in its own DB session and commits once, so each call
is atomic on its own but a sequence of calls is not.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Union

from sqlalchemy import Column, JSON, Text
from sqlmodel import Field, Session, SQLModel, create_engine, select

from .config import DATABASE_URL
from .errors import EntryNotFound, PartialSyncFailure, ProfileNotFound, SyncFailed
from .identity import Identity
from .models import (
    COLLECTION_KINDS,
    PERSONAL_FIELDS,
    CollectionKind,
    Entry,
    Profile,
    build_entry,
    new_remote_id,
    split_display_name,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserAccount(SQLModel, table=True):
    __tablename__ = "user_account"

    id: Optional[int] = Field(default=None, primary_key=True)
    subject_id: str = Field(max_length=255, index=True, unique=True)
    email: str = Field(max_length=255)
    name: str = Field(default="", max_length=255)
    picture: Optional[str] = Field(default=None, max_length=1000)
    created_at: datetime = Field(default_factory=_utcnow)


class ProfileRecord(SQLModel, table=True):
    __tablename__ = "profile"

    id: str = Field(default_factory=new_remote_id, primary_key=True, max_length=64)
    user_id: int = Field(foreign_key="user_account.id", index=True, unique=True)

    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    email: Optional[str] = Field(default=None, max_length=255)
    phone: Optional[str] = Field(default=None, max_length=50)
    location: Optional[str] = Field(default=None, max_length=255)
    bio: Optional[str] = Field(default=None, sa_column=Column(Text))
    profile_pic: Optional[str] = Field(default=None, max_length=1000)
    linkedin: Optional[str] = Field(default=None, max_length=500)
    github: Optional[str] = Field(default=None, max_length=500)
    portfolio: Optional[str] = Field(default=None, max_length=500)

    education: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    experience: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    skills: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    projects: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    certifications: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))

    updated_at: datetime = Field(default_factory=_utcnow)


def create_db_engine(database_url: str = DATABASE_URL, **kwargs):
    connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
    return create_engine(database_url, echo=False, connect_args=connect_args, **kwargs)


def _record_to_profile(record: ProfileRecord) -> Profile:
    data: Dict[str, Any] = {name: getattr(record, name) for name in PERSONAL_FIELDS}
    data["id"] = record.id
    data["user_id"] = str(record.user_id)
    for kind in COLLECTION_KINDS:
        data[kind.value] = list(getattr(record, kind.value) or [])
    return Profile.model_validate(data)


def _entry_payload(entry: Union[Entry, Dict[str, Any]]) -> Dict[str, Any]:
    if isinstance(entry, Entry):
        return entry.model_dump(mode="json")
    return dict(entry)


class RemoteProfileService:
    """Authoritative profile store for signed-in users."""

    def __init__(self, engine=None, database_url: Optional[str] = None):
        self.engine = engine if engine is not None else create_db_engine(database_url or DATABASE_URL)
        SQLModel.metadata.create_all(self.engine)

    def _session(self) -> Session:
        return Session(self.engine)

    def _find_user(self, session: Session, identity: Identity) -> Optional[UserAccount]:
        statement = select(UserAccount).where(UserAccount.subject_id == identity.subject_id)
        return session.exec(statement).first()

    def _load_record(self, session: Session, identity: Identity) -> ProfileRecord:
        user = self._find_user(session, identity)
        if user is None:
            raise ProfileNotFound(f"No account for subject {identity.subject_id}")
        statement = select(ProfileRecord).where(ProfileRecord.user_id == user.id)
        record = session.exec(statement).first()
        if record is None:
            raise ProfileNotFound(f"Account {user.id} has no profile")
        return record

    def _commit(self, session: Session, record: ProfileRecord) -> Profile:
        record.updated_at = _utcnow()
        session.add(record)
        session.commit()
        session.refresh(record)
        return _record_to_profile(record)

    # --- identity provisioning -------------------------------------------

    def ensure_profile(self, identity: Identity) -> Profile:
        """Return the identity's profile, creating account and empty profile on first login."""
        with self._session() as session:
            user = self._find_user(session, identity)
            if user is None:
                user = UserAccount(
                    subject_id=identity.subject_id,
                    email=identity.email,
                    name=identity.display_name,
                    picture=identity.picture_url,
                )
                session.add(user)
                # account and profile commit together
                session.flush()

                first_name, last_name = split_display_name(identity.display_name)
                record = ProfileRecord(
                    user_id=user.id,
                    first_name=first_name,
                    last_name=last_name,
                    email=identity.email,
                    profile_pic=identity.picture_url,
                )
                logger.info("Provisioned account %s for subject %s", user.id, identity.subject_id)
                return self._commit(session, record)

            user.email = identity.email
            user.name = identity.display_name or user.name
            user.picture = identity.picture_url or user.picture
            session.add(user)
            session.commit()
            return _record_to_profile(self._load_record(session, identity))

    def get_profile(self, identity: Identity) -> Profile:
        with self._session() as session:
            return _record_to_profile(self._load_record(session, identity))

    # --- flat fields -------------------------------------------------------

    def update_basic_info(self, identity: Identity, fields: Dict[str, Any]) -> Profile:
        unknown = set(fields) - set(PERSONAL_FIELDS)
        if unknown:
            raise ValueError(f"Unknown profile fields: {sorted(unknown)}")
        with self._session() as session:
            record = self._load_record(session, identity)
            for name, value in fields.items():
                setattr(record, name, value)
            return self._commit(session, record)

    # --- collections -------------------------------------------------------

    def replace_collection(
        self,
        identity: Identity,
        kind: CollectionKind,
        entries: Sequence[Union[Entry, Dict[str, Any]]],
    ) -> List[Entry]:
        """Replace a whole collection; prior entries not in `entries` are gone.

        Incoming identifiers are dropped and fresh durable ones assigned.
        """
        kind = CollectionKind(kind)
        stored = [
            build_entry(kind, _entry_payload(e), entry_id=new_remote_id()).model_dump(mode="json")
            for e in entries
        ]
        with self._session() as session:
            record = self._load_record(session, identity)
            setattr(record, kind.value, stored)
            profile = self._commit(session, record)
        return profile.entries(kind)

    def create_entry(self, identity: Identity, kind: CollectionKind, data: Dict[str, Any]) -> Entry:
        kind = CollectionKind(kind)
        entry = build_entry(kind, data, entry_id=new_remote_id())
        with self._session() as session:
            record = self._load_record(session, identity)
            current = list(getattr(record, kind.value) or [])
            current.append(entry.model_dump(mode="json"))
            setattr(record, kind.value, current)
            self._commit(session, record)
        return entry

    def update_entry(
        self,
        identity: Identity,
        kind: CollectionKind,
        entry_id: str,
        data: Dict[str, Any],
    ) -> Entry:
        kind = CollectionKind(kind)
        with self._session() as session:
            record = self._load_record(session, identity)
            current = list(getattr(record, kind.value) or [])
            for idx, stored in enumerate(current):
                if stored.get("id") == entry_id:
                    merged = {**stored, **data}
                    updated = build_entry(kind, merged, entry_id=entry_id)
                    current[idx] = updated.model_dump(mode="json")
                    setattr(record, kind.value, current)
                    self._commit(session, record)
                    return updated
        raise EntryNotFound(f"No {kind.value} entry {entry_id}")

    def delete_entry(self, identity: Identity, kind: CollectionKind, entry_id: str) -> None:
        kind = CollectionKind(kind)
        with self._session() as session:
            record = self._load_record(session, identity)
            current = list(getattr(record, kind.value) or [])
            remaining = [stored for stored in current if stored.get("id") != entry_id]
            if len(remaining) == len(current):
                raise EntryNotFound(f"No {kind.value} entry {entry_id}")
            setattr(record, kind.value, remaining)
            self._commit(session, record)

    # --- composite overwrite ----------------------------------------------

    def replace_profile(self, identity: Identity, profile: Profile) -> Profile:
        """Overwrite the remote profile with `profile`, then read it back.

        Runs as separate calls: flat fields first, then one collection at a
        time. Local flat fields that are unset leave the remote value alone;
        every collection is replaced wholesale, never merged.
        """
        steps = [("personal", lambda: self.update_basic_info(
            identity,
            {name: value for name, value in profile.personal_fields().items() if value is not None},
        ))]
        for kind in COLLECTION_KINDS:
            steps.append((kind.value, lambda kind=kind: self.replace_collection(identity, kind, profile.entries(kind))))

        completed: List[str] = []
        for step_name, step in steps:
            try:
                step()
            except Exception as e:
                if completed:
                    logger.error(
                        "Overwrite for subject %s failed at %s after %s",
                        identity.subject_id, step_name, ", ".join(completed),
                    )
                    raise PartialSyncFailure(
                        f"Profile sync stopped at {step_name}: {e}",
                        completed=completed,
                        step=step_name,
                    ) from e
                logger.warning("Overwrite for subject %s failed before any write: %s", identity.subject_id, e)
                raise SyncFailed(f"Profile sync failed: {e}", step=step_name) from e
            completed.append(step_name)

        return self.get_profile(identity)
