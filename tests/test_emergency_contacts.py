"""
Tests for the emergency contacts catalogue.
"""

import pytest

from haven.services.emergency_contacts import (
    DEFAULT_EMERGENCY_CONTACTS,
    EMERGENCY_CONTACTS,
    EmergencyContact,
    get_emergency_contacts,
)


class TestLookup:
    def test_exact_country(self):
        contacts = get_emergency_contacts("United States")
        assert contacts == EMERGENCY_CONTACTS["United States"]
        assert contacts[0].number == "988"

    @pytest.mark.parametrize("country", ["united kingdom", "UNITED KINGDOM", "  United Kingdom "])
    def test_case_and_whitespace_ignored(self, country):
        assert get_emergency_contacts(country) == EMERGENCY_CONTACTS["United Kingdom"]

    @pytest.mark.parametrize("country", ["Atlantis", "", "   ", None])
    def test_falls_back_to_international(self, country):
        assert get_emergency_contacts(country) == DEFAULT_EMERGENCY_CONTACTS


class TestCatalogue:
    def test_every_entry_usable(self):
        for country, contacts in EMERGENCY_CONTACTS.items():
            assert contacts, country
            for contact in contacts:
                assert contact.name and contact.number and contact.description, country

    def test_defaults_link_to_directories(self):
        assert len(DEFAULT_EMERGENCY_CONTACTS) == 2
        assert all(contact.website for contact in DEFAULT_EMERGENCY_CONTACTS)

    def test_to_response(self):
        item = EmergencyContact("Eran", "1201", "24/7 crisis support").to_response()
        assert item.name == "Eran"
        assert item.number == "1201"
        assert item.website is None
