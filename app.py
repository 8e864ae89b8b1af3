import logging
import time

import streamlit as st
from pydantic import ValidationError

from profilestack import config
from profilestack.errors import (
    InvalidCredential,
    PartialSyncFailure,
    ProfileStackError,
)
from profilestack.generation import BIO_TONES, PlatformType, ProfileGenerator
from profilestack.local_session import BrowserLocalStore, JsonFileLocalStore, LocalSession
from profilestack.models import COLLECTION_KINDS, CollectionKind, SkillLevel, collection_counts
from profilestack.remote import RemoteProfileService
from profilestack.render import content_to_docx_bytes
from profilestack.session import SessionContext, SessionController
from profilestack.sync import PendingSyncDecision, SyncResolver, SyncState

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("profilestack.app")

st.set_page_config(page_title="ProfileStack", layout="wide")

# localStorage values only arrive after the component's first rerun
LOCAL_BOOTSTRAP_RUNS = 3 if config.LOCAL_STORE == "browser" else 1

# (field, label, widget, required)
ENTRY_FIELDS = {
    CollectionKind.EDUCATION: [
        ("institution", "Institution", "text", True),
        ("degree", "Degree", "text", True),
        ("field_of_study", "Field of study", "text", False),
        ("start_date", "Start date", "text", False),
        ("end_date", "End date", "text", False),
        ("grade", "Grade", "text", False),
        ("description", "Description", "area", False),
    ],
    CollectionKind.EXPERIENCE: [
        ("company", "Company", "text", True),
        ("position", "Position", "text", True),
        ("location", "Location", "text", False),
        ("start_date", "Start date", "text", False),
        ("end_date", "End date", "text", False),
        ("current", "I currently work here", "bool", False),
        ("description", "Description", "area", False),
    ],
    CollectionKind.SKILLS: [
        ("name", "Skill", "text", True),
        ("level", "Level", "level", False),
        ("category", "Category", "text", False),
    ],
    CollectionKind.PROJECTS: [
        ("title", "Title", "text", True),
        ("description", "Description", "area", False),
        ("tech_stack", "Tech stack", "list", False),
        ("live_url", "Live URL", "text", False),
        ("repo_url", "Repository URL", "text", False),
        ("start_date", "Start date", "text", False),
        ("end_date", "End date", "text", False),
    ],
    CollectionKind.CERTIFICATIONS: [
        ("name", "Certification", "text", True),
        ("issuing_org", "Issuing organization", "text", True),
        ("issue_date", "Issue date", "text", False),
        ("expiry_date", "Expiry date", "text", False),
        ("credential_id", "Credential ID", "text", False),
        ("credential_url", "Credential URL", "text", False),
    ],
}

PERSONAL_FORM = [
    ("first_name", "First name"),
    ("last_name", "Last name"),
    ("email", "Email"),
    ("phone", "Phone"),
    ("location", "Location"),
    ("linkedin", "LinkedIn"),
    ("github", "GitHub"),
    ("portfolio", "Portfolio"),
]


@st.cache_resource
def _remote_service() -> RemoteProfileService:
    return RemoteProfileService()


def _local_store():
    if config.LOCAL_STORE == "file":
        return JsonFileLocalStore(config.LOCAL_STATE_PATH)
    return BrowserLocalStore()


def _init_session():
    if "controller" in st.session_state:
        return
    controller = SessionController(SessionContext(), LocalSession(_local_store()), _remote_service())
    st.session_state["controller"] = controller
    st.session_state["resolver"] = SyncResolver(_remote_service(), controller)
    st.session_state["generator"] = ProfileGenerator()
    st.session_state["local_bootstrap_runs"] = 0
    st.session_state["login_attempted"] = False


def _flash(message: str):
    st.session_state["flash"] = message


def _apply(fn, *args, **kwargs) -> bool:
    """Run a profile mutation; report problems inline instead of crashing the page."""
    try:
        fn(*args, **kwargs)
    except ValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        st.error(f"Invalid data: {first.get('msg', e)}")
        return False
    except (ProfileStackError, ValueError) as e:
        st.error(str(e))
        return False
    return True


def _is_provider_logged_in() -> bool:
    try:
        return bool(getattr(st.user, "is_logged_in", False))
    except Exception:
        return False


# --- startup: restore guest data, then reconcile a fresh sign-in -------------

def _bootstrap_local(controller: SessionController) -> bool:
    """True once local storage has had a chance to report guest data."""
    if st.session_state["local_bootstrap_runs"] >= LOCAL_BOOTSTRAP_RUNS:
        return True
    st.session_state["local_bootstrap_runs"] += 1
    if controller.restore_guest():
        st.session_state["local_bootstrap_runs"] = LOCAL_BOOTSTRAP_RUNS
        return True
    if st.session_state["local_bootstrap_runs"] >= LOCAL_BOOTSTRAP_RUNS:
        return True
    time.sleep(0.15)
    st.rerun()
    return False


def _maybe_sync_login(controller: SessionController, resolver: SyncResolver):
    if not _is_provider_logged_in() or controller.is_authenticated:
        return
    if resolver.state == SyncState.AWAITING_CHOICE or st.session_state["login_attempted"]:
        return
    st.session_state["login_attempted"] = True
    try:
        outcome = resolver.begin_login(st.user)
    except InvalidCredential as e:
        st.session_state["login_error"] = f"Sign-in failed: {e}"
        return
    except PartialSyncFailure as e:
        st.session_state["login_error"] = (
            f"Your local data was only partly uploaded (stopped at {e.step}). "
            "Your local data is still on this device; retry to finish the upload."
        )
        return
    except ProfileStackError as e:
        st.session_state["login_error"] = f"Could not sync your profile: {e}. Your local data was kept."
        return

    if not isinstance(outcome, PendingSyncDecision):
        _flash("Your local profile was saved to the cloud." if outcome.kept_local else "Signed in.")


def _render_login_error():
    message = st.session_state.get("login_error")
    if not message:
        return
    st.error(message)
    cols = st.columns(2)
    if cols[0].button("Retry sign-in", key="retry_login"):
        st.session_state["login_error"] = None
        st.session_state["login_attempted"] = False
        st.rerun()
    if cols[1].button("Sign out of Google", key="abort_login"):
        st.session_state["login_error"] = None
        st.session_state["login_attempted"] = False
        st.logout()


# --- screens -------------------------------------------------------------------

def _render_conflict(decision: PendingSyncDecision):
    st.title("Profile data conflict")
    st.warning("You have profile data stored locally AND in the cloud. Choose which one to keep.")

    local_counts = decision.local_counts
    remote_counts = decision.remote_counts
    left, right = st.columns(2)
    with left:
        st.subheader("Use local data")
        st.caption("From this browser. Replaces everything stored in the cloud.")
        for kind in COLLECTION_KINDS:
            st.write(f"{kind.label}: {local_counts[kind.value]}")
        choose_local = st.button("Use local data", key="choose_local", type="primary")
    with right:
        st.subheader("Use cloud data")
        st.caption("From your account. Local data on this device is discarded.")
        for kind in COLLECTION_KINDS:
            st.write(f"{kind.label}: {remote_counts[kind.value]}")
        choose_remote = st.button("Use cloud data", key="choose_remote")

    if not (choose_local or choose_remote):
        return
    try:
        with st.spinner("Syncing your profile..."):
            if choose_local:
                decision.resolve_with_local()
                _flash("Your local profile now replaces the cloud copy.")
            else:
                decision.resolve_with_remote()
                _flash("Loaded your cloud profile.")
    except PartialSyncFailure as e:
        st.session_state["login_error"] = (
            f"Upload stopped at {e.step}; your cloud profile is incomplete. "
            "Your local data is still on this device; sign in again and keep local data to finish."
        )
    except ProfileStackError as e:
        st.session_state["login_error"] = f"Could not finish syncing: {e}. Your local data was kept."
    st.rerun()


def _render_landing(controller: SessionController):
    st.title("ProfileStack")
    st.write(
        "Store your education, experience, skills, projects and certifications once, "
        "then generate LinkedIn summaries, GitHub READMEs, resumes, freelance bios and cover letters."
    )
    _render_login_error()

    left, right = st.columns(2)
    with left:
        st.subheader("Sign in")
        st.caption("Your profile is stored in the cloud and follows you across devices.")
        if st.button("Sign in with Google", key="google_login", type="primary"):
            st.login(config.AUTH_PROVIDER)
    with right:
        st.subheader("Continue as guest")
        st.caption("Data stays in this browser until you sign in. Logging out discards it.")
        with st.form("guest_form"):
            name = st.text_input("Your name", key="guest_name")
            submitted = st.form_submit_button("Continue as guest")
        if submitted and _apply(controller.begin_guest, name):
            st.rerun()


def _render_sidebar(controller: SessionController):
    profile = controller.active_profile
    with st.sidebar:
        st.header(profile.display_name() or "Your profile")
        if controller.is_guest:
            st.info("Guest mode: data is stored in this browser only.")
            if st.button("Sign in with Google to sync", key="guest_google_login"):
                st.login(config.AUTH_PROVIDER)
        else:
            st.caption(controller.identity.email)

        counts = collection_counts(profile)
        for kind in COLLECTION_KINDS:
            st.write(f"{kind.label}: {counts[kind.value]}")

        if st.button("Log out", key="logout"):
            controller.logout()
            st.session_state["login_attempted"] = False
            st.session_state["generated"] = None
            st.session_state["suggested_skills"] = []
            if _is_provider_logged_in():
                st.logout()
            st.rerun()


def _render_personal(controller: SessionController):
    profile = controller.active_profile
    with st.form("personal_form"):
        cols = st.columns(2)
        values = {}
        for idx, (name, label) in enumerate(PERSONAL_FORM):
            values[name] = cols[idx % 2].text_input(label, value=getattr(profile, name) or "", key=f"personal_{name}")
        values["bio"] = st.text_area("Bio", value=profile.bio or "", height=160, key="personal_bio")
        submitted = st.form_submit_button("Save")
    if submitted:
        cleaned = {k: (v.strip() or None) for k, v in values.items()}
        if _apply(controller.update_personal, **cleaned):
            _flash("Personal info saved.")
            st.rerun()

    with st.expander("Improve bio with AI"):
        tone = st.selectbox("Tone", BIO_TONES, key="bio_tone")
        if st.button("Improve bio", key="improve_bio", disabled=controller.is_guest):
            try:
                with st.spinner("Rewriting your bio..."):
                    st.session_state["improved_bio"] = st.session_state["generator"].improve_bio(profile.bio or "", tone)
            except ProfileStackError as e:
                st.error(str(e))
        if controller.is_guest:
            st.caption("AI features require a signed-in account.")
        improved = st.session_state.get("improved_bio")
        if improved:
            st.write(improved)
            if st.button("Use this bio", key="use_improved_bio") and _apply(controller.update_personal, bio=improved):
                st.session_state["improved_bio"] = None
                _flash("Bio updated.")
                st.rerun()


def _entry_form(kind: CollectionKind, form_key: str, entry=None):
    """Render an add/edit form; returns cleaned data on a valid submit."""
    values = entry.model_dump() if entry is not None else {}
    fields = ENTRY_FIELDS[kind]
    data = {}
    with st.form(form_key, clear_on_submit=entry is None):
        for name, label, widget, required in fields:
            current = values.get(name)
            wkey = f"{form_key}_{name}"
            if widget == "area":
                data[name] = st.text_area(label, value=current or "", key=wkey)
            elif widget == "bool":
                data[name] = st.checkbox(label, value=bool(current), key=wkey)
            elif widget == "level":
                levels = [level.value for level in SkillLevel]
                index = levels.index(current) if current in levels else levels.index(SkillLevel.INTERMEDIATE.value)
                data[name] = st.selectbox(label, levels, index=index, key=wkey)
            elif widget == "list":
                raw = st.text_input(f"{label} (comma separated)", value=", ".join(current or []), key=wkey)
                data[name] = [t.strip() for t in raw.split(",") if t.strip()]
            else:
                data[name] = st.text_input(f"{label} *" if required else label, value=current or "", key=wkey)
        submitted = st.form_submit_button("Save" if entry is not None else f"Add {kind.label.lower()}")

    if not submitted:
        return None
    missing = [label for name, label, _, required in fields if required and not str(data.get(name) or "").strip()]
    if missing:
        st.error("Required: " + ", ".join(missing))
        return None
    return {k: (v.strip() or None) if isinstance(v, str) else v for k, v in data.items()}


def _entry_title(kind: CollectionKind, entry) -> str:
    if kind == CollectionKind.EDUCATION:
        return f"{entry.degree} at {entry.institution}"
    if kind == CollectionKind.EXPERIENCE:
        return f"{entry.position} at {entry.company}" + (" (current)" if entry.current else "")
    if kind == CollectionKind.SKILLS:
        return f"{entry.name} ({entry.level.value})"
    if kind == CollectionKind.PROJECTS:
        return entry.title
    return f"{entry.name} by {entry.issuing_org}"


def _render_collection(controller: SessionController, kind: CollectionKind):
    entries = controller.active_profile.entries(kind)
    if not entries:
        st.caption(f"No {kind.label.lower()} yet.")

    for entry in entries:
        with st.expander(_entry_title(kind, entry)):
            data = _entry_form(kind, f"edit_{kind.value}_{entry.id}", entry)
            if data is not None and _apply(controller.update_entry, kind, entry.id, data):
                _flash(f"{kind.label} updated.")
                st.rerun()
            if st.button("Delete", key=f"delete_{kind.value}_{entry.id}"):
                if _apply(controller.delete_entry, kind, entry.id):
                    _flash(f"{kind.label} entry deleted.")
                    st.rerun()

    st.subheader(f"Add {kind.label.lower()}")
    data = _entry_form(kind, f"add_{kind.value}")
    if data is not None and _apply(controller.add_entry, kind, data):
        _flash(f"{kind.label} entry added.")
        st.rerun()

    if kind == CollectionKind.SKILLS:
        _render_skill_suggestions(controller)


def _render_skill_suggestions(controller: SessionController):
    with st.expander("Suggest skills with AI"):
        if controller.is_guest:
            st.caption("AI features require a signed-in account.")
            return
        if st.button("Suggest skills", key="suggest_skills"):
            try:
                with st.spinner("Looking at your experience and projects..."):
                    st.session_state["suggested_skills"] = st.session_state["generator"].suggest_skills(
                        controller.active_profile
                    )
            except ProfileStackError as e:
                st.error(str(e))
        for idx, skill in enumerate(st.session_state.get("suggested_skills") or []):
            cols = st.columns([4, 1])
            cols[0].write(skill)
            if cols[1].button("Add", key=f"add_suggested_{idx}") and _apply(
                controller.add_entry, CollectionKind.SKILLS, {"name": skill}
            ):
                st.session_state["suggested_skills"] = [
                    s for s in st.session_state["suggested_skills"] if s != skill
                ]
                st.rerun()


def _render_generate(controller: SessionController):
    platform = PlatformType(st.radio(
        "Platform",
        [p.value for p in PlatformType],
        format_func=lambda value: PlatformType(value).label,
        horizontal=True,
        key="platform",
    ))
    job_title = company = None
    if platform == PlatformType.COVER_LETTER:
        cols = st.columns(2)
        job_title = cols[0].text_input("Job title", key="cover_job_title")
        company = cols[1].text_input("Company", key="cover_company")
    extra = st.text_area("Additional context (optional)", key="generate_context", height=100)

    if st.button("Generate", key="generate", type="primary"):
        try:
            with st.spinner(f"Generating {platform.label} content..."):
                content = st.session_state["generator"].generate_for_platform(
                    controller.active_profile,
                    platform,
                    is_guest=controller.is_guest,
                    job_title=job_title,
                    company=company,
                    additional_context=extra,
                )
            st.session_state["generated"] = (platform.value, content)
        except ProfileStackError as e:
            st.error(str(e))

    generated = st.session_state.get("generated")
    if not generated:
        return
    platform_value, content = generated
    label = PlatformType(platform_value).label
    st.subheader(f"{label} content")
    st.markdown(content)
    cols = st.columns(2)
    cols[0].download_button(
        "Download DOCX",
        data=content_to_docx_bytes(label, content),
        file_name=f"{platform_value}.docx",
        mime="application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        key="download_docx",
    )
    cols[1].download_button(
        "Download TXT",
        data=content.encode("utf-8"),
        file_name=f"{platform_value}.txt",
        mime="text/plain",
        key="download_txt",
    )


def _render_dashboard(controller: SessionController):
    _render_sidebar(controller)
    st.title("Your profile")
    tabs = st.tabs(["Personal"] + [kind.label for kind in COLLECTION_KINDS] + ["Generate"])
    with tabs[0]:
        _render_personal(controller)
    for tab, kind in zip(tabs[1:-1], COLLECTION_KINDS):
        with tab:
            _render_collection(controller, kind)
    with tabs[-1]:
        _render_generate(controller)


def main():
    _init_session()
    controller: SessionController = st.session_state["controller"]
    resolver: SyncResolver = st.session_state["resolver"]

    if controller.is_logged_out and not _bootstrap_local(controller):
        return
    _maybe_sync_login(controller, resolver)

    flash = st.session_state.pop("flash", None)
    if flash:
        st.success(flash)

    # while a decision is pending nothing else is reachable
    if resolver.state == SyncState.AWAITING_CHOICE and resolver.pending is not None:
        _render_conflict(resolver.pending)
        return

    if controller.active_profile is None:
        _render_landing(controller)
        return

    _render_login_error()
    _render_dashboard(controller)


main()
