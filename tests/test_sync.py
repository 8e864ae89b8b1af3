import os

import pytest

from profilestack.conflict import Classification
from profilestack.errors import (
    DecisionAlreadyResolved,
    InvalidCredential,
    PartialSyncFailure,
    SyncFailed,
    SyncStateError,
)
from profilestack.identity import identity_from_claims
from profilestack.models import CollectionKind, Profile, SkillLevel, is_empty
from profilestack.remote import RemoteProfileService
from profilestack.session import SessionContext, SessionController
from profilestack.sync import PendingSyncDecision, SyncResolver, SyncResult, SyncState


def _seed_two_experiences(remote, identity):
    remote.ensure_profile(identity)
    remote.create_entry(identity, CollectionKind.EXPERIENCE, {"company": "Acme", "position": "Engineer"})
    remote.create_entry(identity, CollectionKind.EXPERIENCE, {"company": "Globex", "position": "Lead", "current": True})


def _guest_with_python(controller):
    controller.begin_guest("Jane Doe")
    controller.add_entry(CollectionKind.SKILLS, {"name": "Python", "level": "INTERMEDIATE"})


def _without_ids(entries):
    return [{k: v for k, v in e.model_dump().items() if k != "id"} for e in entries]


class FlakyRemote(RemoteProfileService):
    """Fails replace_collection for one collection until told otherwise."""

    def __init__(self, *args, fail_on=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.fail_on = fail_on

    def replace_collection(self, identity, kind, entries):
        if self.fail_on is not None and CollectionKind(kind) == self.fail_on:
            raise RuntimeError("database went away")
        return super().replace_collection(identity, kind, entries)


class BrokenBasicInfoRemote(RemoteProfileService):
    def update_basic_info(self, identity, fields):
        raise RuntimeError("write refused")


class UnreachableRemote(RemoteProfileService):
    def ensure_profile(self, identity):
        raise RuntimeError("connection refused")


# --- the four login scenarios --------------------------------------------------

def test_fresh_signup_without_guest_data(resolver, controller, ada_claims, local_path):
    result = resolver.begin_login(ada_claims)

    assert isinstance(result, SyncResult)
    assert result.classification == Classification.USE_REMOTE
    assert not result.kept_local
    assert resolver.state == SyncState.SETTLED
    assert controller.is_authenticated and not controller.is_guest
    assert is_empty(controller.active_profile)
    assert controller.active_profile.first_name == "Ada"
    assert not os.path.exists(local_path)


def test_guest_data_adopted_when_remote_is_empty(resolver, controller, remote, ada, ada_claims, local_session):
    controller.begin_guest("Jane Doe")
    controller.add_entry(CollectionKind.EDUCATION, {"institution": "Harvard University", "degree": "B.S."})

    result = resolver.begin_login(ada_claims)

    assert result.classification == Classification.ADOPT_LOCAL
    assert result.kept_local
    education = controller.active_profile.education
    assert len(education) == 1
    assert education[0].institution == "Harvard University"
    assert education[0].degree == "B.S."
    assert not education[0].id.startswith("local-")
    assert remote.get_profile(ada).education[0].institution == "Harvard University"
    assert not local_session.exists()


def test_conflict_keep_local_overwrites_remote(resolver, controller, remote, ada, ada_claims, local_session):
    _seed_two_experiences(remote, ada)
    _guest_with_python(controller)

    decision = resolver.begin_login(ada_claims)
    assert isinstance(decision, PendingSyncDecision)
    assert resolver.state == SyncState.AWAITING_CHOICE
    assert decision.local_counts["skills"] == 1
    assert decision.remote_counts["experience"] == 2
    # nothing written and not signed in while the user decides
    assert not controller.is_authenticated
    assert len(remote.get_profile(ada).experience) == 2

    result = decision.resolve_with_local()

    assert result.classification == Classification.CONFLICT
    assert result.kept_local
    profile = controller.active_profile
    assert [(s.name, s.level) for s in profile.skills] == [("Python", SkillLevel.INTERMEDIATE)]
    assert profile.experience == []
    stored = remote.get_profile(ada)
    assert len(stored.skills) == 1 and stored.experience == []
    assert not local_session.exists()
    assert resolver.state == SyncState.SETTLED


def test_conflict_keep_remote_discards_local(resolver, controller, remote, ada, ada_claims, local_session):
    _seed_two_experiences(remote, ada)
    _guest_with_python(controller)

    decision = resolver.begin_login(ada_claims)
    result = decision.resolve_with_remote()

    assert not result.kept_local
    profile = controller.active_profile
    assert [e.company for e in profile.experience] == ["Acme", "Globex"]
    assert profile.skills == []
    assert remote.get_profile(ada).skills == []
    assert not local_session.exists()


# --- pending decision lifecycle ------------------------------------------------

def test_decision_cannot_be_resolved_twice(resolver, controller, remote, ada, ada_claims):
    _seed_two_experiences(remote, ada)
    _guest_with_python(controller)
    decision = resolver.begin_login(ada_claims)
    decision.resolve_with_remote()

    assert not decision.is_open
    with pytest.raises(DecisionAlreadyResolved):
        decision.resolve_with_local()
    with pytest.raises(DecisionAlreadyResolved):
        decision.cancel()
    # the second call changed nothing
    assert controller.active_profile.skills == []
    assert len(remote.get_profile(ada).experience) == 2


def test_cancel_leaves_guest_data_and_allows_new_login(resolver, controller, remote, ada, ada_claims, local_session):
    _seed_two_experiences(remote, ada)
    _guest_with_python(controller)
    decision = resolver.begin_login(ada_claims)

    decision.cancel()

    assert resolver.state == SyncState.IDLE
    assert resolver.pending is None
    assert controller.is_guest and not controller.is_authenticated
    assert local_session.snapshot().skills[0].name == "Python"
    assert len(remote.get_profile(ada).experience) == 2

    again = resolver.begin_login(ada_claims)
    assert isinstance(again, PendingSyncDecision)
    with pytest.raises(SyncStateError):
        decision.resolve_with_local()


def test_second_login_while_awaiting_choice_is_rejected(resolver, controller, remote, ada, ada_claims):
    _seed_two_experiences(remote, ada)
    _guest_with_python(controller)
    resolver.begin_login(ada_claims)

    with pytest.raises(SyncStateError):
        resolver.begin_login(ada_claims)
    assert resolver.state == SyncState.AWAITING_CHOICE


def test_login_when_already_signed_in_is_rejected(resolver, ada_claims):
    resolver.begin_login(ada_claims)
    with pytest.raises(SyncStateError):
        resolver.begin_login(ada_claims)


def test_login_again_after_logout(resolver, controller, ada_claims):
    resolver.begin_login(ada_claims)
    controller.logout()

    result = resolver.begin_login(ada_claims)
    assert result.classification == Classification.USE_REMOTE
    assert controller.is_authenticated


# --- failures ----------------------------------------------------------------

@pytest.mark.parametrize(
    "claims",
    [
        None,
        {"is_logged_in": False},
        {"is_logged_in": True, "sub": "abc"},
        {"is_logged_in": True, "email": "ada@example.com"},
    ],
)
def test_invalid_credential_returns_to_idle(resolver, controller, remote, local_session, claims):
    controller.begin_guest("Jane Doe")
    controller.add_entry(CollectionKind.SKILLS, {"name": "Python"})

    with pytest.raises(InvalidCredential):
        resolver.begin_login(claims)

    assert resolver.state == SyncState.IDLE
    assert controller.is_guest
    assert local_session.snapshot().skills[0].name == "Python"


def test_verifier_crash_fails_and_allows_retry(remote, controller, local_session, ada_claims):
    def crashing_verifier(credential):
        raise RuntimeError("jwks endpoint unreachable")

    _guest_with_python(controller)
    resolver = SyncResolver(remote, controller, verify_identity=crashing_verifier)

    with pytest.raises(SyncFailed) as excinfo:
        resolver.begin_login(ada_claims)

    assert excinfo.value.step == "authenticate"
    assert resolver.state == SyncState.FAILED
    assert controller.is_guest
    assert local_session.exists()

    resolver.verify_identity = identity_from_claims
    result = resolver.begin_login(ada_claims)

    assert result.classification == Classification.ADOPT_LOCAL
    assert [s.name for s in controller.active_profile.skills] == ["Python"]


def test_edits_after_login_starts_are_not_pushed(resolver, controller, remote, ada, ada_claims):
    _seed_two_experiences(remote, ada)
    _guest_with_python(controller)
    decision = resolver.begin_login(ada_claims)

    # guest keeps editing while the choice is open
    controller.add_entry(CollectionKind.SKILLS, {"name": "Go"})
    decision.resolve_with_local()

    assert [s.name for s in controller.active_profile.skills] == ["Python"]
    assert [s.name for s in remote.get_profile(ada).skills] == ["Python"]


def test_unreachable_remote_fails_without_touching_local(engine, local_session, ada_claims):
    remote = UnreachableRemote(engine=engine)
    controller = SessionController(SessionContext(), local_session, remote)
    resolver = SyncResolver(remote, controller)
    _guest_with_python(controller)

    with pytest.raises(SyncFailed) as excinfo:
        resolver.begin_login(ada_claims)

    assert excinfo.value.step == "fetch"
    assert resolver.state == SyncState.FAILED
    assert controller.is_guest
    assert local_session.exists()


def test_failure_before_any_write_is_not_partial(engine, local_session, ada_claims):
    remote = BrokenBasicInfoRemote(engine=engine)
    controller = SessionController(SessionContext(), local_session, remote)
    resolver = SyncResolver(remote, controller)
    _guest_with_python(controller)

    with pytest.raises(SyncFailed) as excinfo:
        resolver.begin_login(ada_claims)

    assert not isinstance(excinfo.value, PartialSyncFailure)
    assert excinfo.value.step == "personal"
    assert resolver.state == SyncState.FAILED
    assert not controller.is_authenticated
    assert local_session.exists()


def test_partial_overwrite_is_reported_and_retry_finishes(engine, local_session, ada, ada_claims):
    remote = FlakyRemote(engine=engine, fail_on=CollectionKind.SKILLS)
    controller = SessionController(SessionContext(), local_session, remote)
    resolver = SyncResolver(remote, controller)
    _seed_two_experiences(remote, ada)
    _guest_with_python(controller)

    decision = resolver.begin_login(ada_claims)
    with pytest.raises(PartialSyncFailure) as excinfo:
        decision.resolve_with_local()

    err = excinfo.value
    assert err.step == "skills"
    assert err.completed == ["personal", "education", "experience"]
    assert resolver.state == SyncState.FAILED
    assert not controller.is_authenticated
    # local copy survives so the overwrite can be repeated
    assert local_session.snapshot().skills[0].name == "Python"
    stored = remote.get_profile(ada)
    assert stored.experience == [] and stored.skills == []

    remote.fail_on = None
    result = resolver.begin_login(ada_claims)

    assert isinstance(result, SyncResult)
    assert [s.name for s in controller.active_profile.skills] == ["Python"]
    assert controller.active_profile.experience == []
    assert not local_session.exists()


# --- overwrite semantics -------------------------------------------------------

def test_replace_profile_twice_gives_same_content(remote, ada):
    remote.ensure_profile(ada)
    local = Profile(
        bio="Builds things",
        education=[{"institution": "Harvard University", "degree": "B.S."}],
        skills=[{"name": "Python"}, {"name": "Go", "level": "ADVANCED"}],
        projects=[{"title": "Stack", "tech_stack": ["python", "sqlite"]}],
    )

    first = remote.replace_profile(ada, local)
    second = remote.replace_profile(ada, local)

    assert second.bio == first.bio == "Builds things"
    for kind in CollectionKind:
        assert _without_ids(second.entries(kind)) == _without_ids(first.entries(kind))


def test_unset_local_fields_keep_remote_values(remote, ada):
    remote.ensure_profile(ada)
    remote.update_basic_info(ada, {"phone": "555-0100", "bio": "old bio"})

    merged = remote.replace_profile(ada, Profile(bio="new bio", skills=[{"name": "Python"}]))

    assert merged.bio == "new bio"
    assert merged.phone == "555-0100"
    assert merged.first_name == "Ada"
