import uuid
from enum import Enum
from typing import Dict, List, Optional, Type

from pydantic import BaseModel, Field, model_validator


def new_local_id() -> str:
    # ephemeral tag for entries created on the device; never reused remotely
    return f"local-{uuid.uuid4().hex[:12]}"


def new_remote_id() -> str:
    return uuid.uuid4().hex


class SkillLevel(str, Enum):
    BEGINNER = "BEGINNER"
    INTERMEDIATE = "INTERMEDIATE"
    ADVANCED = "ADVANCED"
    EXPERT = "EXPERT"


class Entry(BaseModel):
    id: str = Field(default_factory=new_local_id)


class Education(Entry):
    institution: str
    degree: str
    field_of_study: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    grade: Optional[str] = None
    description: Optional[str] = None


class Experience(Entry):
    company: str
    position: str
    location: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    current: bool = False
    description: Optional[str] = None


class Skill(Entry):
    name: str
    level: SkillLevel = SkillLevel.INTERMEDIATE
    category: Optional[str] = None


class Project(Entry):
    title: str
    description: Optional[str] = None
    tech_stack: List[str] = Field(default_factory=list)
    live_url: Optional[str] = None
    repo_url: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None


class Certification(Entry):
    name: str
    issuing_org: str
    issue_date: Optional[str] = None
    expiry_date: Optional[str] = None
    credential_id: Optional[str] = None
    credential_url: Optional[str] = None


class CollectionKind(str, Enum):
    EDUCATION = "education"
    EXPERIENCE = "experience"
    SKILLS = "skills"
    PROJECTS = "projects"
    CERTIFICATIONS = "certifications"

    @property
    def entry_model(self) -> Type[Entry]:
        return _ENTRY_MODELS[self]

    @property
    def label(self) -> str:
        return self.value.capitalize()


_ENTRY_MODELS: Dict[CollectionKind, Type[Entry]] = {
    CollectionKind.EDUCATION: Education,
    CollectionKind.EXPERIENCE: Experience,
    CollectionKind.SKILLS: Skill,
    CollectionKind.PROJECTS: Project,
    CollectionKind.CERTIFICATIONS: Certification,
}

# Order matters for the overwrite sequence in remote.replace_profile
COLLECTION_KINDS: List[CollectionKind] = list(CollectionKind)

PERSONAL_FIELDS = (
    "first_name",
    "last_name",
    "email",
    "phone",
    "location",
    "bio",
    "profile_pic",
    "linkedin",
    "github",
    "portfolio",
)


class Profile(BaseModel):
    """One user's profile: flat personal fields plus five entry collections.

    Collection order is insertion order and only matters for display.
    """

    id: str = ""
    user_id: str = ""

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[str] = None
    bio: Optional[str] = None
    profile_pic: Optional[str] = None
    linkedin: Optional[str] = None
    github: Optional[str] = None
    portfolio: Optional[str] = None

    education: List[Education] = Field(default_factory=list)
    experience: List[Experience] = Field(default_factory=list)
    skills: List[Skill] = Field(default_factory=list)
    projects: List[Project] = Field(default_factory=list)
    certifications: List[Certification] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_entry_ids(self):
        for kind in COLLECTION_KINDS:
            seen = set()
            for entry in getattr(self, kind.value):
                if entry.id in seen:
                    raise ValueError(f"duplicate {kind.value} id: {entry.id}")
                seen.add(entry.id)
        return self

    def entries(self, kind: CollectionKind) -> List[Entry]:
        return list(getattr(self, CollectionKind(kind).value))

    def personal_fields(self) -> Dict[str, Optional[str]]:
        return {name: getattr(self, name) for name in PERSONAL_FIELDS}

    def display_name(self) -> str:
        parts = [p for p in (self.first_name, self.last_name) if p]
        return " ".join(parts)


def is_empty(profile: Profile) -> bool:
    """True when the profile carries no meaningful data.

    Only the bio and the five collections count; names and contact fields are
    filled in at account creation and would make every profile look non-empty.
    """
    if profile.bio and profile.bio.strip():
        return False
    return all(len(getattr(profile, kind.value)) == 0 for kind in COLLECTION_KINDS)


def collection_counts(profile: Optional[Profile]) -> Dict[str, int]:
    if profile is None:
        return {kind.value: 0 for kind in COLLECTION_KINDS}
    return {kind.value: len(getattr(profile, kind.value)) for kind in COLLECTION_KINDS}


def split_display_name(name: str):
    tokens = (name or "").split()
    if not tokens:
        return "", ""
    return tokens[0], " ".join(tokens[1:])


def build_entry(kind: CollectionKind, data: Dict, *, entry_id: Optional[str] = None) -> Entry:
    payload = dict(data)
    if entry_id is not None:
        payload["id"] = entry_id
    return CollectionKind(kind).entry_model.model_validate(payload)
