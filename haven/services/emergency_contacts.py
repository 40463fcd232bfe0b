"""
Emergency Contacts - crisis helplines by the country on the user's profile.

Countries without an entry, and users without a country, get the
international directories instead.
"""

from dataclasses import dataclass

from haven.models.api import EmergencyContactItem


@dataclass(frozen=True)
class EmergencyContact:
    name: str
    number: str
    description: str
    website: str | None = None

    def to_response(self) -> EmergencyContactItem:
        return EmergencyContactItem(
            name=self.name,
            number=self.number,
            description=self.description,
            website=self.website,
        )


EMERGENCY_CONTACTS: dict[str, tuple[EmergencyContact, ...]] = {
    "United States": (
        EmergencyContact(
            "988 Suicide & Crisis Lifeline", "988", "24/7 crisis support", "988lifeline.org"
        ),
        EmergencyContact("Crisis Text Line", "Text HOME to 741741", "24/7 crisis support via text"),
    ),
    "Canada": (
        EmergencyContact("Crisis Services Canada", "1-833-456-4566", "24/7 crisis support"),
        EmergencyContact(
            "Crisis Text Line Canada", "Text CONNECT to 686868", "24/7 crisis support via text"
        ),
    ),
    "United Kingdom": (
        EmergencyContact("Samaritans", "116 123", "24/7 emotional support", "samaritans.org"),
        EmergencyContact("Shout", "Text SHOUT to 85258", "24/7 crisis support via text"),
    ),
    "Australia": (
        EmergencyContact(
            "Lifeline Australia", "13 11 14", "24/7 crisis support", "lifeline.org.au"
        ),
        EmergencyContact(
            "Beyond Blue", "1300 22 4636", "Mental health support", "beyondblue.org.au"
        ),
    ),
    "Germany": (
        EmergencyContact("Telefonseelsorge", "0800 111 0 111", "24/7 crisis support"),
        EmergencyContact("Nummer gegen Kummer", "116 111", "Youth crisis support"),
    ),
    "France": (EmergencyContact("SOS Amitié", "09 72 39 40 50", "24/7 emotional support"),),
    "India": (
        EmergencyContact("Vandrevala Foundation", "9999 666 555", "24/7 mental health support"),
        EmergencyContact("iCall", "9152987821", "Counselling support"),
    ),
    "Japan": (
        EmergencyContact("TELL Lifeline", "03-5774-0992", "English crisis support"),
        EmergencyContact("Befrienders Japan", "03-5286-9090", "Crisis support"),
    ),
    "Brazil": (EmergencyContact("Centro de Valorização da Vida", "188", "24/7 crisis support"),),
    "Mexico": (EmergencyContact("SAPTEL", "55 5259 8121", "Crisis support"),),
    "Spain": (EmergencyContact("Teléfono de la Esperanza", "717 003 717", "24/7 crisis support"),),
    "Netherlands": (
        EmergencyContact("113 Zelfmoordpreventie", "0900 0113", "24/7 suicide prevention"),
    ),
    "Switzerland": (EmergencyContact("Die Dargebotene Hand", "143", "24/7 crisis support"),),
    "Austria": (EmergencyContact("Rat auf Draht", "147", "24/7 crisis support"),),
    "Russia": (
        EmergencyContact("Emergency Psychological Help", "8-800-2000-122", "24/7 crisis support"),
    ),
    "South Korea": (
        EmergencyContact("Korea Suicide Prevention Center", "1588-9191", "24/7 crisis support"),
    ),
    "Singapore": (
        EmergencyContact("Samaritans of Singapore", "1800-221-4444", "24/7 crisis support"),
    ),
    "South Africa": (
        EmergencyContact("Lifeline South Africa", "0861 322 322", "24/7 crisis support"),
    ),
    "Kenya": (EmergencyContact("Befrienders Kenya", "+254 722 178 177", "Crisis support"),),
    "Egypt": (EmergencyContact("Befrienders Cairo", "762 1602", "Crisis support"),),
    "Israel": (EmergencyContact("Eran", "1201", "24/7 crisis support"),),
    "Saudi Arabia": (
        EmergencyContact("National Center for Mental Health", "920033360", "Mental health support"),
    ),
    "Argentina": (
        EmergencyContact("Centro de Asistencia al Suicida", "135", "24/7 crisis support"),
    ),
}

DEFAULT_EMERGENCY_CONTACTS: tuple[EmergencyContact, ...] = (
    EmergencyContact(
        "International Association for Suicide Prevention",
        "Visit iasp.info/resources/Crisis_Centres",
        "Find local crisis centers",
        "iasp.info",
    ),
    EmergencyContact(
        "Befrienders Worldwide",
        "Visit befrienders.org",
        "Find local support centers",
        "befrienders.org",
    ),
)

_BY_LOWER_NAME = {name.lower(): contacts for name, contacts in EMERGENCY_CONTACTS.items()}


def get_emergency_contacts(country: str | None) -> tuple[EmergencyContact, ...]:
    """Helplines for the country, matched case-insensitively."""
    if not country or not country.strip():
        return DEFAULT_EMERGENCY_CONTACTS
    return _BY_LOWER_NAME.get(country.strip().lower(), DEFAULT_EMERGENCY_CONTACTS)
