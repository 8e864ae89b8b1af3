import json
import logging
import re
from enum import Enum
from typing import Callable, List, Optional

from langchain_core.exceptions import OutputParserException
from langchain_core.output_parsers import PydanticOutputParser
from langchain_core.prompts import ChatPromptTemplate
from langchain_openai import ChatOpenAI
from pydantic import BaseModel, Field

from .config import OPENAI_MODEL
from .errors import GenerationFailed, GenerationUnavailable
from .models import Profile
from .prompts import (
    IMPROVE_BIO_PROMPT,
    PLATFORM_INSTRUCTIONS,
    PROFILE_PROMPT,
    SUGGEST_SKILLS_PROMPT,
    SYSTEM_BASE,
)

logger = logging.getLogger(__name__)

TextGenerator = Callable[[str], str]

BIO_TONES = ("professional", "casual", "creative")


class PlatformType(str, Enum):
    LINKEDIN = "linkedin"
    GITHUB = "github"
    RESUME = "resume"
    FREELANCE = "freelance"
    JOB_PORTAL = "job_portal"
    COVER_LETTER = "cover_letter"

    @property
    def label(self) -> str:
        return {
            "linkedin": "LinkedIn",
            "github": "GitHub",
            "resume": "Resume",
            "freelance": "Freelance",
            "job_portal": "Job Portal",
            "cover_letter": "Cover Letter",
        }[self.value]


def generate_text(prompt: str) -> str:
    """Single completion call. Any provider error becomes GenerationFailed."""
    template = ChatPromptTemplate.from_messages([
        ("system", SYSTEM_BASE),
        ("human", "{prompt}"),
    ])
    try:
        llm = ChatOpenAI(model=OPENAI_MODEL, temperature=0.7)
        chain = template | llm
        raw = chain.invoke({"prompt": prompt})
    except Exception as e:
        raise GenerationFailed(str(e)) from e
    return raw.content if hasattr(raw, "content") else str(raw)


def has_generation_data(profile: Optional[Profile]) -> bool:
    # projects and certifications alone are not enough to write about
    if profile is None:
        return False
    return bool(
        (profile.bio and profile.bio.strip())
        or profile.education
        or profile.experience
        or profile.skills
    )


def _or_none(lines: List[str]) -> str:
    return "\n".join(lines) if lines else "None"


def build_platform_prompt(
    profile: Profile,
    platform: PlatformType,
    job_title: Optional[str] = None,
    company: Optional[str] = None,
    additional_context: Optional[str] = None,
) -> str:
    platform = PlatformType(platform)
    instruction = PLATFORM_INSTRUCTIONS[platform.value].format(
        job_title=(job_title or "").strip() or "the position",
        company=(company or "").strip() or "the company",
    )

    education = [
        f"- {e.degree} at {e.institution} ({e.field_of_study or ''})" for e in profile.education
    ]
    experience = [
        f"- {e.position} at {e.company} ({'Current' if e.current else 'Past'}): {e.description or ''}"
        for e in profile.experience
    ]
    skills = [f"- {s.name} ({s.level.value})" for s in profile.skills]
    projects = [
        f"- {p.title}: {p.description or ''} [{', '.join(p.tech_stack)}]" for p in profile.projects
    ]
    certifications = [f"- {c.name} by {c.issuing_org}" for c in profile.certifications]

    context = (additional_context or "").strip()
    return PROFILE_PROMPT.format(
        instruction=instruction,
        name=profile.display_name() or "Not provided",
        bio=profile.bio or "Not provided",
        location=profile.location or "Not provided",
        education=_or_none(education),
        experience=_or_none(experience),
        skills=_or_none(skills),
        projects=_or_none(projects),
        certifications=_or_none(certifications),
        additional_context=f"\nAdditional Context: {context}\n" if context else "",
        platform=platform.value,
    )


def _strip_code_fence(text: str) -> str:
    m = re.search(r"```(?:json)?\s*(.*?)```", text, re.S)
    return m.group(1) if m else text


class SkillSuggestions(BaseModel):
    skills: List[str] = Field(default_factory=list, description="Skill names to add, most relevant first")


_SKILLS_PARSER = PydanticOutputParser(pydantic_object=SkillSuggestions)


def _loose_skill_list(raw: str) -> List[str]:
    # models often ignore the schema and send a bare array or a bulleted list
    text = _strip_code_fence(raw or "").strip()
    parsed = None
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        start, end = text.find("["), text.rfind("]")
        if start != -1 and end > start:
            try:
                parsed = json.loads(text[start:end + 1])
            except json.JSONDecodeError:
                parsed = None

    if isinstance(parsed, list):
        items = [str(s).strip() for s in parsed if isinstance(s, (str, int, float))]
    else:
        # one skill per line or comma separated
        items = [s.strip(" -•*\"'\t") for s in re.split(r"[\n,]", text)]
    return [s for s in items if s]


def parse_skill_list(raw: str) -> List[str]:
    """Read the model's skill suggestions, tolerating chatter around the array."""
    try:
        parsed = _SKILLS_PARSER.parse(raw or "")
    except OutputParserException:
        return _loose_skill_list(raw)
    return [s.strip() for s in parsed.skills if s and s.strip()]


class ProfileGenerator:
    """Platform-tailored text from a profile. Retries are the caller's business."""

    def __init__(self, generate: TextGenerator = generate_text):
        self._generate = generate

    def _call(self, prompt: str) -> str:
        try:
            return self._generate(prompt)
        except GenerationFailed:
            raise
        except Exception as e:
            raise GenerationFailed(str(e)) from e

    def generate_for_platform(
        self,
        profile: Optional[Profile],
        platform: PlatformType,
        *,
        is_guest: bool = False,
        job_title: Optional[str] = None,
        company: Optional[str] = None,
        additional_context: Optional[str] = None,
    ) -> str:
        if is_guest:
            raise GenerationUnavailable("AI generation requires a signed-in account. Please sign in with Google.")
        if not has_generation_data(profile):
            raise GenerationUnavailable(
                "Please add some profile data first (bio, education, experience, or skills)."
            )
        platform = PlatformType(platform)
        if platform != PlatformType.COVER_LETTER:
            job_title = company = None

        prompt = build_platform_prompt(profile, platform, job_title, company, additional_context)
        logger.info("Generating %s content", platform.value)
        return self._call(prompt)

    def improve_bio(self, bio: str, tone: str = "professional") -> str:
        if not (bio or "").strip():
            raise GenerationUnavailable("Write a bio first, then ask for improvements.")
        tone = (tone or "professional").strip().lower()
        if tone not in BIO_TONES:
            raise ValueError(f"Unknown tone {tone!r}; expected one of {', '.join(BIO_TONES)}")
        return self._call(IMPROVE_BIO_PROMPT.format(tone=tone, bio=bio.strip())).strip()

    def suggest_skills(self, profile: Profile, limit: int = 10) -> List[str]:
        prompt = SUGGEST_SKILLS_PROMPT.format(
            skills=", ".join(s.name for s in profile.skills) or "None",
            experience=", ".join(f"{e.position} at {e.company}" for e in profile.experience) or "None",
            projects=", ".join(
                f"{p.title} ({', '.join(p.tech_stack)})" for p in profile.projects
            ) or "None",
            format_instructions=_SKILLS_PARSER.get_format_instructions(),
        )
        existing = {s.name.strip().lower() for s in profile.skills}
        suggestions: List[str] = []
        for skill in parse_skill_list(self._call(prompt)):
            key = skill.lower()
            if key in existing:
                continue
            existing.add(key)
            suggestions.append(skill)
        return suggestions[:limit]
