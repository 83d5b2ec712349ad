"""Tests for affinity effect enforcement, scene casts and runtime affinity state."""

import pytest

from movie_games.affinity import (
    AffinityState,
    enforce_affinity,
    enforce_roster,
    pick_protagonist,
    resolve_scene_characters,
)
from movie_games.coercion import coerce_template
from movie_games.errors import UnknownCharacter
from movie_games.models import AffinityEffect, CharacterInput


CAST = [
    {"id": "c_player", "name": "Lin", "role": "protagonist"},
    {"id": "c_2", "name": "Zhou", "role": "partner"},
    {"id": "c_3", "name": "Mei", "role": "suspect"},
]


def _template(choices: list, characters=None, cast=CAST):
    node = {"content": "scene", "choices": choices}
    if characters is not None:
        node["characters"] = characters
    return coerce_template({"title": "T", "characters": cast, "nodes": {"start": node}})


def _effect(template):
    return template.nodes["start"].choices[0].affinity_effect


# ---------------------------------------------------------------------------
# Protagonist
# ---------------------------------------------------------------------------

class TestProtagonist:
    def test_is_main_flag_wins(self) -> None:
        template = _template([], cast=[
            {"name": "Lin", "role": "protagonist"},
            {"name": "Zhou", "isMain": True},
        ])
        assert pick_protagonist(template.characters) == "Zhou"

    def test_role_heuristic(self) -> None:
        template = _template([])
        assert pick_protagonist(template.characters) == "Lin"

    def test_first_person_name(self) -> None:
        template = _template([], cast=[{"name": "Zhou"}, {"name": "我"}])
        assert pick_protagonist(template.characters) == "我"

    def test_never_picked_by_position(self) -> None:
        template = _template([], cast=[{"name": "Zhou"}, {"name": "Mei"}])
        assert pick_protagonist(template.characters) is None


# ---------------------------------------------------------------------------
# Scene characters
# ---------------------------------------------------------------------------

class TestSceneCharacters:
    def test_ids_resolved_trimmed_and_deduplicated(self) -> None:
        template = _template([], characters=["c_2", " Zhou ", "Mei", ""])
        findings = resolve_scene_characters(template)
        assert template.nodes["start"].characters == ["Zhou", "Mei"]
        assert findings == []

    def test_unknown_name_kept_and_reported(self) -> None:
        template = _template([], characters=["Ghost"])
        findings = resolve_scene_characters(template)
        assert template.nodes["start"].characters == ["Ghost"]
        assert [f.kind for f in findings] == ["unknown-character"]
        assert findings[0].path == "nodes.start.characters[0]"

    def test_strict_mode_rejects_unknown(self) -> None:
        template = _template([], characters=["Ghost"])
        with pytest.raises(UnknownCharacter):
            resolve_scene_characters(template, strict=True)

    def test_absent_cast_stays_absent(self) -> None:
        template = _template([])
        resolve_scene_characters(template)
        assert template.nodes["start"].characters is None


# ---------------------------------------------------------------------------
# Effects
# ---------------------------------------------------------------------------

class TestEnforceAffinity:
    def _choice(self, target: str, delta: int) -> dict:
        return {"text": "x", "nextNodeId": "END", "affinityEffect": {"characterId": target, "delta": delta}}

    def test_valid_effect_kept(self) -> None:
        template = _template([self._choice("Zhou", 5)], characters=["Lin", "Zhou"])
        assert enforce_affinity(template) == []
        assert _effect(template).character_id == "Zhou"
        assert _effect(template).delta == 5

    @pytest.mark.parametrize("delta, expected", [(35, 20), (-99, -20), (20, 20)])
    def test_delta_clamped(self, delta, expected) -> None:
        template = _template([self._choice("Zhou", delta)], characters=["Zhou"])
        findings = enforce_affinity(template)
        assert _effect(template).delta == expected
        assert [f.kind for f in findings] == (["affinity-clamped"] if delta != expected else [])

    def test_target_not_in_scene_dropped(self) -> None:
        template = _template([self._choice("Mei", 5)], characters=["Lin", "Zhou"])
        findings = enforce_affinity(template)
        assert _effect(template) is None
        assert [f.kind for f in findings] == ["affinity-dropped"]
        assert "affinityEffect" not in template.nodes["start"].choices[0].to_json()

    def test_protagonist_target_dropped(self) -> None:
        template = _template([self._choice("Lin", 5)], characters=["Lin", "Zhou"])
        enforce_affinity(template)
        assert _effect(template) is None

    def test_legacy_id_resolved_to_name(self) -> None:
        template = _template([self._choice("c_2", 3)], characters=["Zhou"])
        enforce_affinity(template)
        assert _effect(template).character_id == "Zhou"

    def test_empty_target_dropped(self) -> None:
        template = _template([self._choice("  ", 3)], characters=["Zhou"])
        enforce_affinity(template)
        assert _effect(template) is None

    def test_out_of_range_and_invalid_target(self) -> None:
        template = _template([self._choice("Mei", 50)], characters=["Zhou"])
        findings = enforce_affinity(template)
        assert _effect(template) is None
        assert [f.kind for f in findings] == ["affinity-clamped", "affinity-dropped"]


# ---------------------------------------------------------------------------
# Roster
# ---------------------------------------------------------------------------

class TestRoster:
    def test_cast_restricted_to_requested_names(self) -> None:
        template = _template([], characters=["Lin", "Zhou", "Mei"])
        enforce_roster(template, [
            CharacterInput(name="Lin", gender="female", is_main=True),
            CharacterInput(name="Zhou", description="partner"),
        ])
        assert list(template.characters) == ["Lin", "Zhou"]
        assert template.characters["Lin"].is_main is True
        assert template.characters["Lin"].gender == "female"
        assert template.nodes["start"].characters == ["Lin", "Zhou"]

    def test_scene_left_empty_becomes_unknown(self) -> None:
        template = _template([], characters=["Mei"])
        enforce_roster(template, [CharacterInput(name="Lin")])
        assert template.nodes["start"].characters is None

    def test_new_requested_character_created(self) -> None:
        template = _template([])
        enforce_roster(template, [CharacterInput(name="Ann", description="stranger")])
        assert template.characters["Ann"].role == "stranger"
        assert template.characters["Ann"].id == "Ann"


# ---------------------------------------------------------------------------
# Runtime state
# ---------------------------------------------------------------------------

class TestAffinityState:
    def test_default_value(self) -> None:
        assert AffinityState().get("Zhou") == 50

    def test_apply_accumulates(self) -> None:
        state = AffinityState()
        state.apply(AffinityEffect(character_id="Zhou", delta=20))
        assert state.apply(AffinityEffect(character_id="Zhou", delta=-5)) == 65

    def test_clamped_to_bounds(self) -> None:
        state = AffinityState({"Zhou": 95})
        assert state.apply(AffinityEffect(character_id="Zhou", delta=20)) == 100
        state = AffinityState({"Mei": 5})
        assert state.apply(AffinityEffect(character_id="Mei", delta=-20)) == 0
