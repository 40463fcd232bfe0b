"""
Therapist personas.

A persona is configuration only: display data for the client plus the voice,
language and focus used to build the system prompt.
"""

from dataclasses import dataclass

from haven.models.api import TherapistResponse

SUPPORTED_LANGUAGES: dict[str, str] = {
    "en": "English",
    "es": "Spanish",
    "ja": "Japanese",
    "ar": "Arabic",
    "fr": "French",
    "de": "German",
    "hi": "Hindi",
    "ru": "Russian",
}


@dataclass(frozen=True)
class Therapist:
    id: str
    name: str
    title: str
    specialization: str
    language: str
    voice: str
    focus: tuple[str, ...]
    description: str

    def __post_init__(self) -> None:
        if self.language not in SUPPORTED_LANGUAGES:
            raise ValueError(f"Unsupported language for {self.id}: {self.language}")

    def to_response(self) -> TherapistResponse:
        return TherapistResponse(
            id=self.id,
            name=self.name,
            title=self.title,
            specialization=self.specialization,
            language=self.language,
            voice=self.voice,
            focus=list(self.focus),
            description=self.description,
        )


THERAPISTS: dict[str, Therapist] = {
    t.id: t
    for t in (
        Therapist(
            id="sofia-martinez",
            name="Dr. Sofia Martinez",
            title="Trauma & Anxiety Specialist",
            specialization="Trauma Recovery",
            language="es",
            voice="shimmer",
            focus=("Trauma Recovery", "Anxiety Disorders", "PTSD"),
            description="Warm, steady support for working through trauma and persistent anxiety.",
        ),
        Therapist(
            id="yuki-tanaka",
            name="Dr. Yuki Tanaka",
            title="Mindfulness & Stress Management",
            specialization="Mindfulness",
            language="ja",
            voice="shimmer",
            focus=("Mindfulness", "Stress Management", "Meditation"),
            description="Calm, present-moment practices for stress and overwhelm.",
        ),
        Therapist(
            id="ahmed-al-rashid",
            name="Dr. Ahmed Al-Rashid",
            title="Depression & Relationship Counselor",
            specialization="Depression",
            language="ar",
            voice="echo",
            focus=("Depression", "Couples Therapy", "Family Counseling"),
            description="Compassionate help with low mood and strained relationships.",
        ),
        Therapist(
            id="marcel-dubois",
            name="Dr. Marcel Dubois",
            title="Existential & Philosophical Therapy",
            specialization="Existential Therapy",
            language="fr",
            voice="echo",
            focus=("Existential Therapy", "Life Purpose", "Meaning"),
            description="Reflective conversations about meaning, purpose and life transitions.",
        ),
        Therapist(
            id="emma-johnson",
            name="Dr. Emma Johnson",
            title="CBT & Behavioral Change Specialist",
            specialization="CBT",
            language="en",
            voice="shimmer",
            focus=("Cognitive Behavioral Therapy", "Habit Change", "Goal Setting"),
            description="Practical, structured tools for changing thoughts and habits.",
        ),
        Therapist(
            id="hans-mueller",
            name="Dr. Hans Mueller",
            title="Cognitive Behavioral Specialist",
            specialization="CBT & OCD",
            language="de",
            voice="echo",
            focus=("CBT", "OCD", "Systematic Approach"),
            description="Methodical, evidence-based work on intrusive thoughts and compulsions.",
        ),
        Therapist(
            id="priya-sharma",
            name="Dr. Priya Sharma",
            title="Holistic & Spiritual Wellness",
            specialization="Holistic Therapy",
            language="hi",
            voice="shimmer",
            focus=("Holistic Therapy", "Spiritual Counseling", "Ayurveda"),
            description="Whole-person care that weaves body, mind and spirit together.",
        ),
        Therapist(
            id="elena-volkov",
            name="Dr. Elena Volkov",
            title="Depth Psychology & Dreams",
            specialization="Jungian Analysis",
            language="ru",
            voice="coral",
            focus=("Jungian Analysis", "Dream Work", "Shadow Work"),
            description="Exploration of dreams, symbols and the unconscious.",
        ),
    )
}

DEFAULT_THERAPIST_ID = "emma-johnson"


def get_therapist(therapist_id: str | None) -> Therapist | None:
    if not therapist_id:
        return None
    return THERAPISTS.get(therapist_id)


def list_therapists() -> list[Therapist]:
    return list(THERAPISTS.values())


def is_supported_language(language: str | None) -> bool:
    return bool(language) and language in SUPPORTED_LANGUAGES
