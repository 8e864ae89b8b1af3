from enum import Enum
from typing import Optional

from .models import Profile, is_empty


class Classification(str, Enum):
    USE_REMOTE = "use_remote"
    ADOPT_LOCAL = "adopt_local"
    CONFLICT = "conflict"


def classify(local: Optional[Profile], remote: Optional[Profile]) -> Classification:
    """Decide how a guest's local profile and the account's remote profile combine.

    Rules are checked in order:
    1. no local data (None or empty) -> USE_REMOTE, even if remote is empty too
    2. no remote data (None or empty) -> ADOPT_LOCAL
    3. both carry data -> CONFLICT, the user has to pick a side

    Pure and total: never raises, never touches either store.
    """
    if local is None or is_empty(local):
        return Classification.USE_REMOTE
    if remote is None or is_empty(remote):
        return Classification.ADOPT_LOCAL
    return Classification.CONFLICT
