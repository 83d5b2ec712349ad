"""End-to-end tests for the ingestion pipeline: raw LLM/import data → IngestResult."""

import json

import pytest

from movie_games.errors import DanglingReference, DuplicateNodeId, MalformedInput, SensitiveContent
from movie_games.ingest import ingest, revalidate
from movie_games.models import CharacterInput
from movie_games.sanitizer import ContentSanitizer


# A typical model reply: fenced, legacy keys, content wrappers, list-shaped
# characters, an ending alias and an out-of-range affinity delta.
LEGACY_REPLY = "```json\n" + json.dumps({
    "projectId": "p-1",
    "title": "Rain City",
    "meta": {
        "logline": ["A detective", "chases a ghost."],
        "synopsis": "Noir.",
        "targetRuntimeMinutes": "20",
        "genre": ["noir", "mystery"],
        "language": "en-US",
    },
    "characters": [
        {"id": "c_player", "name": "Lin", "role": "protagonist", "age": "34"},
        {"id": "c_2", "name": "Zhou", "description": "Lin's partner"},
    ],
    "nodes": {
        "n_start": {
            "content": {"text": "Rain hammers the window.", "notes": "open on a close-up"},
            "characters": ["c_player", "c_2"],
            "choices": [
                {"text": "Call Zhou", "nextNodeId": "n_1",
                 "affinityEffect": {"characterId": "c_2", "delta": 45}},
                {"text": "Go alone", "nextNodeId": "n_2",
                 "affinityEffect": {"characterId": "Lin", "delta": 5}},
            ],
        },
        "n_1": {"content": "Zhou picks up.", "characters": "Zhou",
                "choices": [{"text": "Meet", "nextNodeId": "good_end"}]},
        "n_2": {"content": "The street is empty.", "endingKey": "bad"},
        "n_9": {"content": "A deleted scene.", "choices": [{"text": "x", "nextNodeId": "n_1"}]},
    },
    "endings": {
        "good_end": {"type": "positive", "description": "Case closed."},
        "bad": {"type": "bad", "description": "Lost in the rain."},
    },
}) + "\n```"


def _structure(result) -> dict:
    return {"template": result.template.to_json(), "start": result.start, "orphans": result.orphans}


class TestLegacyReply:
    @pytest.fixture
    def result(self):
        return ingest(LEGACY_REPLY)

    def test_node_keys_canonical(self, result) -> None:
        assert list(result.template.nodes) == ["start", "1", "2", "9"]
        assert all(key == node.id for key, node in result.template.nodes.items())

    def test_references_follow_renames(self, result) -> None:
        nodes = result.template.nodes
        assert [c.next_node_id for c in nodes["start"].choices] == ["1", "2"]
        assert nodes["1"].choices[0].next_node_id == "ending_good"
        assert nodes["2"].ending_key == "ending_bad"

    def test_shapes_resolved(self, result) -> None:
        template = result.template
        assert template.meta.logline == "A detective\nchases a ghost."
        assert template.meta.target_runtime_minutes == 20
        assert template.nodes["start"].content == "Rain hammers the window."
        assert template.nodes["start"].characters == ["Lin", "Zhou"]
        assert template.nodes["1"].characters == ["Zhou"]
        assert template.characters["Zhou"].background == "Lin's partner"
        assert template.endings["ending_good"].type == "good"

    def test_affinity_repaired(self, result) -> None:
        start = result.template.nodes["start"]
        assert start.choices[0].affinity_effect.character_id == "Zhou"
        assert start.choices[0].affinity_effect.delta == 20
        # protagonist target dropped
        assert start.choices[1].affinity_effect is None
        kinds = [f.kind for f in result.findings]
        assert "affinity-clamped" in kinds
        assert "affinity-dropped" in kinds

    def test_start_and_orphans(self, result) -> None:
        assert result.start == "start"
        assert [(o.node_id, o.reason) for o in result.orphans] == [("9", "unreachable-from-start")]

    def test_idempotent(self, result) -> None:
        again = revalidate(result.template)
        assert _structure(again) == _structure(result)

    def test_reingest_of_json_is_idempotent(self, result) -> None:
        again = ingest(json.dumps(result.template.to_json()))
        assert _structure(again) == _structure(result)


class TestScenarios:
    def test_legacy_prefixes_collapse(self) -> None:
        result = ingest({
            "title": "T",
            "nodes": {
                "node_start": {"choices": [{"text": "go", "nextNodeId": "node_2"}]},
                "node_2": {"choices": []},
            },
        })
        assert list(result.template.nodes) == ["start", "2"]
        assert result.template.nodes["start"].choices[0].next_node_id == "2"
        assert result.start == "start"
        assert result.orphans == []

    def test_start_without_choices_falls_back_to_one(self) -> None:
        result = ingest({"nodes": {
            "start": {"content": "intro"},
            "1": {"content": "a", "choices": [{"text": "go", "nextNodeId": "END"}]},
        }})
        assert result.start == "1"
        assert [o.reason for o in result.orphans] == ["superseded-start"]

    def test_affinity_target_outside_scene_keeps_template_valid(self) -> None:
        result = ingest({
            "characters": [{"name": "Zhou"}, {"name": "Mei"}],
            "nodes": {"start": {
                "content": "a",
                "characters": ["Zhou"],
                "choices": [{"text": "go", "nextNodeId": "END",
                             "affinityEffect": {"characterId": "Mei", "delta": 5}}],
            }},
        })
        assert result.template.nodes["start"].choices[0].affinity_effect is None
        assert "affinityEffect" not in json.dumps(result.template.to_json())

    def test_empty_and_absent_casts_distinguishable(self) -> None:
        result = ingest({"nodes": {
            "start": {"content": "a", "characters": [], "choices": [{"text": "go", "nextNodeId": "1"}]},
            "1": {"content": "b", "choices": [{"text": "go", "nextNodeId": "END"}]},
        }})
        dumped = result.template.to_json()["nodes"]
        assert dumped["start"]["characters"] == []
        assert "characters" not in dumped["1"]


class TestSanitizing:
    WORDS = ["ghost", "ghoul", "wraith", "shade"]

    def _raw(self, text: str) -> dict:
        return {"title": "T", "nodes": {"start": {
            "content": text, "choices": [{"text": "go", "nextNodeId": "END"}],
        }}}

    def test_three_terms_redacted(self) -> None:
        result = ingest(self._raw("ghost ghoul wraith"), sanitizer=ContentSanitizer(self.WORDS))
        assert result.template.nodes["start"].content == "***** ***** ******"

    def test_repeated_term_counts_once(self) -> None:
        result = ingest(self._raw("ghost Ghost ghost ghost"), sanitizer=ContentSanitizer(self.WORDS))
        assert result.template.nodes["start"].content == "***** ***** ***** *****"

    def test_four_terms_rejected(self) -> None:
        with pytest.raises(SensitiveContent):
            ingest(self._raw("ghost ghoul wraith shade"), sanitizer=ContentSanitizer(self.WORDS))

    def test_masked_name_keeps_scene_and_affinity(self) -> None:
        result = ingest({
            "title": "T",
            "characters": [
                {"id": "c_1", "name": "Lin", "isMain": True},
                {"id": "c_2", "name": "Ghost Wu"},
            ],
            "nodes": {"start": {
                "content": "a",
                "characters": ["Lin", "Ghost Wu"],
                "choices": [{"text": "go", "nextNodeId": "END",
                             "affinityEffect": {"characterId": "Ghost Wu", "delta": 5}}],
            }},
        }, sanitizer=ContentSanitizer(self.WORDS))
        template = result.template
        assert list(template.characters) == ["Lin", "***** Wu"]
        assert template.characters["***** Wu"].name == "***** Wu"
        start = template.nodes["start"]
        assert start.characters == ["Lin", "***** Wu"]
        assert start.choices[0].affinity_effect.character_id == "***** Wu"
        assert not [f for f in result.findings if f.kind == "unknown-character"]


class TestFatalErrors:
    def test_malformed_names_path(self) -> None:
        with pytest.raises(MalformedInput) as exc:
            ingest({"nodes": {"start": {"content": 42}}})
        assert exc.value.path == "nodes.start.content"

    def test_collision(self) -> None:
        with pytest.raises(DuplicateNodeId):
            ingest({"nodes": {"n_1": {"content": "a"}, "node_1": {"content": "b"}}})

    def test_dangling(self) -> None:
        with pytest.raises(DanglingReference):
            ingest({"nodes": {"start": {"content": "a", "choices": [{"text": "go", "nextNodeId": "n_5"}]}}})

    def test_input_mapping_not_mutated(self) -> None:
        raw = {"nodes": {"n_start": {"content": "a", "choices": [{"text": "go", "nextNodeId": "END"}]}}}
        ingest(raw)
        assert list(raw["nodes"]) == ["n_start"]


class TestRoster:
    def test_requested_cast_enforced(self) -> None:
        result = ingest(
            {"characters": [{"name": "Lin"}, {"name": "Extra"}],
             "nodes": {"start": {"content": "a", "characters": ["Lin", "Extra"],
                                 "choices": [{"text": "go", "nextNodeId": "END"}]}}},
            roster=[CharacterInput(name="Lin", is_main=True)],
        )
        assert list(result.template.characters) == ["Lin"]
        assert result.template.nodes["start"].characters == ["Lin"]
