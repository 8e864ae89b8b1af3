import json
import logging
import os
from typing import Any, Dict, Optional

from pydantic import ValidationError

from .models import Profile, new_local_id

logger = logging.getLogger(__name__)

STORAGE_KEY = "profilestack_profile"
STORAGE_VERSION = 1


def parse_stored_payload(raw: Any) -> Optional[Dict[str, Any]]:
    """Pull the profile dict out of a stored payload.

    Accepts a JSON string or an already-decoded dict; anything else, or a
    payload from another version, counts as "nothing stored".
    """
    if raw is None:
        return None

    data = raw
    if isinstance(data, str):
        if not data.strip():
            return None
        try:
            data = json.loads(data)
        except (json.JSONDecodeError, TypeError):
            return None

    if not isinstance(data, dict):
        return None
    if data.get("version") != STORAGE_VERSION:
        return None

    profile = data.get("profile")
    if not isinstance(profile, dict):
        return None
    return profile


def build_storage_payload(profile_data: Dict[str, Any]) -> Dict[str, Any]:
    return {"version": STORAGE_VERSION, "profile": profile_data}


class JsonFileLocalStore:
    """Guest profile kept in a JSON file on this machine."""

    def __init__(self, path: str):
        self.path = path

    def load(self) -> Optional[Dict[str, Any]]:
        if not os.path.exists(self.path):
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = f.read()
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Could not read local profile file: %s", e)
            return None
        return parse_stored_payload(raw)

    def save(self, profile_data: Dict[str, Any]) -> None:
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(build_storage_payload(profile_data), f, ensure_ascii=False)

    def clear(self) -> None:
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass


class BrowserLocalStore:
    """Guest profile kept in the browser's localStorage.

    The component only reports stored values after the first rerun, so an
    early load() may return None even when data exists.
    """

    def __init__(self, key: str = STORAGE_KEY):
        self.key = key
        self._storage = None
        self._calls = 0

    def _local_storage(self):
        if self._storage is None:
            from streamlit_local_storage import LocalStorage

            self._storage = LocalStorage()
        return self._storage

    def _widget_key(self, action: str) -> str:
        # every component call in one script run needs its own widget key
        self._calls += 1
        return f"{self.key}_{action}_{self._calls}"

    def load(self) -> Optional[Dict[str, Any]]:
        try:
            raw = self._local_storage().getItem(self.key)
        except Exception:
            # no Streamlit runtime or the component is not mounted yet
            logger.debug("Browser localStorage unavailable for read")
            return None
        return parse_stored_payload(raw)

    def save(self, profile_data: Dict[str, Any]) -> None:
        payload = json.dumps(build_storage_payload(profile_data), ensure_ascii=False)
        try:
            self._local_storage().setItem(self.key, payload, key=self._widget_key("set"))
        except Exception:
            logger.debug("Browser localStorage unavailable for write")

    def clear(self) -> None:
        try:
            self._local_storage().deleteItem(self.key, key=self._widget_key("delete"))
        except Exception:
            logger.debug("Browser localStorage unavailable for delete")


class LocalSession:
    """The anonymous, device-scoped profile a guest builds before signing in.

    Nothing here talks to the server; data leaves the device only when the
    sync flow pushes it.
    """

    def __init__(self, store):
        self._store = store
        self._profile: Optional[Profile] = None

    def load(self) -> Optional[Profile]:
        if self._profile is not None:
            return self._profile
        raw = self._store.load()
        if raw is None:
            return None
        try:
            self._profile = Profile.model_validate(raw)
        except ValidationError as e:
            logger.warning("Ignoring malformed local profile (%d errors)", e.error_count())
            return None
        return self._profile

    def exists(self) -> bool:
        return self.load() is not None

    def snapshot(self) -> Optional[Profile]:
        profile = self.load()
        if profile is None:
            return None
        return profile.model_copy(deep=True)

    def create(self, first_name: str, last_name: str) -> Profile:
        profile = Profile(
            id=new_local_id(),
            user_id=f"guest-{new_local_id()[6:]}",
            first_name=first_name,
            last_name=last_name,
        )
        self.replace(profile)
        logger.info("Created local guest profile %s", profile.id)
        return profile.model_copy(deep=True)

    def replace(self, profile: Profile) -> None:
        stored = profile.model_copy(deep=True)
        self._store.save(stored.model_dump(mode="json"))
        self._profile = stored

    def clear(self) -> None:
        self._store.clear()
        self._profile = None
        logger.info("Cleared local guest profile")
