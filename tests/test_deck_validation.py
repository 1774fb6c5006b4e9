"""Tests for section composition rules and the validation-rules partial merge."""

import pytest

from decksmith.analysis.deck_validation import (
    check_reorder_membership,
    validate_section_cards,
)
from decksmith.models.card import ResolvedPrint
from decksmith.models.deck import ValidationRules
from decksmith.models.failure import FailureKind, ValidationFailedError
from decksmith.services.partial_merge import merge_validation_rules


def card(
    name: str,
    colors: tuple[str, ...] = (),
    type_line: str = "Instant",
    print_id: str | None = None,
    oracle_id: str | None = None,
) -> ResolvedPrint:
    slug = name.lower().replace(" ", "-")
    return ResolvedPrint(
        print_id=print_id or f"p-{slug}",
        oracle_id=oracle_id or f"o-{slug}",
        name=name,
        type_line=type_line,
        colors=colors,
    )


FOREST = card("Forest", type_line="Basic Land — Forest")
BOLT = card("Lightning Bolt", ("R",))
BOLT_ALT = card("Lightning Bolt", ("R",), print_id="p-bolt-alt", oracle_id="o-lightning-bolt")
MURDER = card("Murder", ("B",))
SOL_RING = card("Sol Ring", type_line="Artifact")


class TestMaxCards:
    def test_at_limit_passes(self) -> None:
        rules = ValidationRules(max_cards=2)
        assert validate_section_cards(rules, [(BOLT, 1), (MURDER, 1)]) is None

    def test_over_limit_reports_limit_and_attempted(self) -> None:
        rules = ValidationRules(max_cards=2)

        violation = validate_section_cards(rules, [(BOLT, 1), (MURDER, 1), (SOL_RING, 1)])

        assert violation is not None
        assert violation.rule == "maxCards"
        assert violation.limit == 2
        assert violation.attempted == 3

    def test_quantities_count(self) -> None:
        violation = validate_section_cards(ValidationRules(max_cards=3), [(BOLT, 4)])
        assert violation is not None
        assert violation.attempted == 4


class TestSingleton:
    def test_two_prints_of_same_card_violate(self) -> None:
        """Singleton counts rules identities, not prints."""
        violation = validate_section_cards(
            ValidationRules(singleton=True), [(BOLT, 1), (BOLT_ALT, 1)]
        )

        assert violation is not None
        assert violation.rule == "singleton"
        assert violation.attempted == 2

    def test_basic_lands_exempt(self) -> None:
        assert validate_section_cards(ValidationRules(singleton=True), [(FOREST, 30)]) is None

    def test_singleton_false_allows_copies(self) -> None:
        assert validate_section_cards(ValidationRules(singleton=False), [(BOLT, 4)]) is None


class TestColorIdentity:
    def test_card_outside_identity_rejected(self) -> None:
        violation = validate_section_cards(
            ValidationRules(color_identity=("G",)), [(MURDER, 1)]
        )

        assert violation is not None
        assert violation.rule == "colorIdentity"
        assert violation.limit == ["G"]
        assert violation.attempted == ["B"]

    def test_colorless_always_allowed(self) -> None:
        assert validate_section_cards(ValidationRules(color_identity=()), [(SOL_RING, 1)]) is None

    def test_explicit_colorless_letter_ignored(self) -> None:
        rules = ValidationRules(color_identity=("C", "R"))
        assert validate_section_cards(rules, [(BOLT, 1), (SOL_RING, 1)]) is None


class TestCheckOrder:
    def test_first_violation_wins(self) -> None:
        rules = ValidationRules(max_cards=1, singleton=True, color_identity=("G",))

        violation = validate_section_cards(rules, [(BOLT, 1), (BOLT_ALT, 1)])

        assert violation is not None
        assert violation.rule == "maxCards"

    def test_to_error(self) -> None:
        violation = validate_section_cards(ValidationRules(max_cards=0), [(BOLT, 1)])
        assert violation is not None

        error = violation.to_error()

        assert isinstance(error, ValidationFailedError)
        assert error.kind == FailureKind.VALIDATION_FAILED
        assert error.status_code == 422
        assert error.context == {"rule": "maxCards", "limit": 0, "attempted": 1}


class TestReorderMembership:
    def test_permutation_accepted(self) -> None:
        assert check_reorder_membership(["a", "b", "c"], ["c", "a", "b"]) is None

    def test_missing_member_rejected(self) -> None:
        violation = check_reorder_membership(["a", "b", "c"], ["a", "b"])
        assert violation is not None
        assert violation.rule == "reorder-membership"

    def test_unknown_member_rejected(self) -> None:
        assert check_reorder_membership(["a", "b"], ["a", "z"]) is not None

    def test_duplicate_rejected(self) -> None:
        assert check_reorder_membership(["a", "b"], ["a", "a", "b"]) is not None

    def test_empty_section(self) -> None:
        assert check_reorder_membership([], []) is None


class TestMergeValidationRules:
    def test_supplied_keys_replace_others_kept(self) -> None:
        merged = merge_validation_rules({"maxCards": 60, "singleton": True}, {"maxCards": 100})
        assert merged == {"maxCards": 100, "singleton": True}

    def test_null_value_removes_key(self) -> None:
        merged = merge_validation_rules({"maxCards": 60, "singleton": True}, {"singleton": None})
        assert merged == {"maxCards": 60}

    def test_null_patch_clears_rules(self) -> None:
        assert merge_validation_rules({"maxCards": 60}, None) is None

    def test_empty_result_is_none(self) -> None:
        assert merge_validation_rules({"maxCards": 60}, {"maxCards": None}) is None

    def test_current_not_modified(self) -> None:
        current = {"maxCards": 60}
        merge_validation_rules(current, {"singleton": True})
        assert current == {"maxCards": 60}

    def test_unknown_key_rejected(self) -> None:
        with pytest.raises(ValidationFailedError) as exc_info:
            merge_validation_rules(None, {"maxCards": 2, "maxRarity": "rare"})

        assert exc_info.value.rule == "unknown-field"
        assert exc_info.value.attempted == ["maxRarity"]

    @pytest.mark.parametrize(
        "patch",
        [
            {"maxCards": "ten"},
            {"maxCards": -1},
            {"maxCards": True},
            {"singleton": "yes"},
            {"colorIdentity": "G"},
            {"colorIdentity": ["G", "X"]},
            {"colorIdentity": ["G", "G"]},
        ],
    )
    def test_ill_typed_value_rejected(self, patch: dict) -> None:
        with pytest.raises(ValidationFailedError) as exc_info:
            merge_validation_rules(None, patch)

        assert exc_info.value.rule == "field-type"
        assert exc_info.value.errors[0]["field"] == next(iter(patch))


class TestValidationRulesJson:
    def test_round_trip_omits_unset(self) -> None:
        rules = ValidationRules.from_json({"maxCards": 2, "colorIdentity": ["G", "U"]})

        assert rules.color_identity == ("G", "U")
        assert rules.to_json() == {"maxCards": 2, "colorIdentity": ["G", "U"]}

    def test_none_is_empty(self) -> None:
        assert ValidationRules.from_json(None).is_empty()
