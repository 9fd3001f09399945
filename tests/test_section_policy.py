import pytest

from src.form_bldr.errors import ValidationError
from src.form_bldr.field_configs import ChoiceConfig
from src.form_bldr.field_store import SectionLists
from src.form_bldr.field_types import FieldType
from src.form_bldr.library_catalog import LibraryItem
from src.form_bldr.section_policy import (
    CreateNew,
    SectionAssignmentPolicy,
    SelectExisting,
    slugify,
    unique_key,
)
from src.form_bldr.types import FieldSection
from tests.test_field_store import make_field

FORM = FieldSection.FORM
CONTACT = FieldSection.CONTACT


@pytest.fixture
def policy(catalog) -> SectionAssignmentPolicy:
    return SectionAssignmentPolicy(catalog.contact_keys())


class TestKeys:
    @pytest.mark.parametrize("raw,expected", [
        ("Job Title (optional)", "job_title_optional"),
        ("Über uns", "uber_uns"),
        ("  --  ", "field"),
        ("", "field"),
        ("E-mail", "e_mail"),
    ])
    def test_slugify(self, raw, expected):
        assert slugify(raw) == expected

    def test_slugify_caps_length(self):
        assert len(slugify("x" * 200)) == 64

    def test_unique_key_suffix_starts_at_2(self):
        assert unique_key("notes", set()) == "notes"
        assert unique_key("notes", {"notes"}) == "notes_2"
        assert unique_key("notes", {"notes", "notes_2"}) == "notes_3"

    def test_unique_key_truncates_to_fit(self):
        base = "k" * 64
        key = unique_key(base, {base})
        assert len(key) == 64
        assert key.endswith("_2")


class TestPlanAdd:
    def test_generic_item_goes_to_form(self, policy, catalog):
        plan = policy.plan_add(catalog.require("text"), SectionLists())
        assert isinstance(plan, CreateNew)
        assert plan.section is FORM
        assert plan.field.key == "text"
        assert plan.field.config.section is FORM

    def test_generic_item_follows_drop_section(self, policy, catalog):
        plan = policy.plan_add(catalog.require("text"), SectionLists(), drop_section=CONTACT)
        assert plan.section is CONTACT
        assert plan.field.config.section is CONTACT

    def test_contact_item_ignores_drop_section(self, policy, catalog):
        plan = policy.plan_add(catalog.require("contact.email"), SectionLists(), drop_section=FORM)
        assert plan.section is CONTACT

    def test_template_section_ignores_drop_section(self, policy):
        item = LibraryItem(id="pinned", kind="preset", type=FieldType.TEXT, title="Pinned", section=FORM)
        plan = policy.plan_add(item, SectionLists(), drop_section=CONTACT)
        assert plan.section is FORM

    def test_generic_key_unique_across_both_sections(self, policy, catalog):
        lists = SectionLists(form=(make_field("a", key="notes"),),
                             contact=(make_field("b", CONTACT, key="notes_2"),))
        plan = policy.plan_add(catalog.require("preset.notes"), lists)
        assert plan.field.key == "notes_3"

    def test_generic_key_avoids_absent_contact_keys(self, policy):
        item = LibraryItem(id="custom", kind="generic", type=FieldType.TEXT, title="Email")
        plan = policy.plan_add(item, SectionLists())
        assert plan.field.key == "email_2"

    def test_template_can_ask_for_contact(self, policy):
        item = LibraryItem(id="custom", kind="preset", type=FieldType.TEXT, title="Department",
                           section=CONTACT)
        plan = policy.plan_add(item, SectionLists())
        assert plan.section is CONTACT
        assert plan.field.config.section is CONTACT

    def test_contact_item_uses_fixed_key(self, policy, catalog):
        plan = policy.plan_add(catalog.require("contact.email"), SectionLists())
        assert isinstance(plan, CreateNew)
        assert plan.section is CONTACT
        assert plan.field.key == "email"
        assert plan.field.type is FieldType.EMAIL

    def test_existing_contact_key_selects_instead(self, policy, catalog):
        existing = make_field("f-email", CONTACT, key="email")
        plan = policy.plan_add(catalog.require("contact.email"), SectionLists(contact=(existing,)))
        assert plan == SelectExisting(field_id="f-email", section=CONTACT)

    def test_contact_key_found_in_form_section_still_selects(self, policy, catalog):
        existing = make_field("f-email", FORM, key="email")
        plan = policy.plan_add(catalog.require("contact.email"), SectionLists(form=(existing,)))
        assert plan == SelectExisting(field_id="f-email", section=FORM)

    def test_select_without_options_is_a_validation_error(self, policy):
        item = LibraryItem(id="bad", kind="generic", type=FieldType.SINGLE_SELECT, title="Pick")
        with pytest.raises(ValidationError) as ei:
            policy.plan_add(item, SectionLists())
        assert ei.value.code == "EMPTY_OPTIONS"

    def test_preset_config_is_applied(self, policy, catalog):
        plan = policy.plan_add(catalog.require("preset.yesno"), SectionLists())
        assert isinstance(plan.field.config, ChoiceConfig)
        assert plan.field.config.options == ("Yes", "No")


class TestEnsureKeyAvailable:
    def test_conflict_with_other_field(self, policy):
        lists = SectionLists(form=(make_field("a", key="notes"), make_field("b", key="other")))
        with pytest.raises(ValidationError) as ei:
            policy.ensure_key_available("notes", lists, field_id="b")
        assert ei.value.code == "KEY_CONFLICT"

    def test_own_key_is_fine(self, policy):
        lists = SectionLists(form=(make_field("a", key="notes"),))
        policy.ensure_key_available("notes", lists, field_id="a")

    def test_contact_keys_are_reserved(self, policy):
        lists = SectionLists(form=(make_field("a", key="notes"),))
        with pytest.raises(ValidationError):
            policy.ensure_key_available("firstName", lists, field_id="a")

    @pytest.mark.parametrize("bad", ["", "has space", "x" * 65, "ümlaut"])
    def test_malformed_keys(self, policy, bad):
        with pytest.raises(ValidationError) as ei:
            policy.ensure_key_available(bad, SectionLists())
        assert ei.value.code == "INVALID_KEY"
