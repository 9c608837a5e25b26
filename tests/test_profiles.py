from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from warpos.errors import CycleError, NotFoundError, ValidationError
from warpos.profiles import ProfileResolver, ProfileStore, collect_observation_groups
from warpos.storage import load_yaml


def _write_profile(root: Path, profile_id: str, payload: dict) -> None:
    path = root.joinpath(*profile_id.split("/")).with_suffix(".yaml")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(payload, sort_keys=False), encoding="utf-8")


def _inherits(*targets: str) -> list[dict[str, str]]:
    return [{"type": "inherits", "target": target} for target in targets]


@pytest.fixture()
def store(tmp_path: Path) -> ProfileStore:
    return ProfileStore(tmp_path / "profiles")


def test_compile_single_profile_exact_text(store: ProfileStore) -> None:
    _write_profile(
        store.root,
        "test",
        {
            "description": "Test profile description",
            "context": {"observations": ["Observation 1", "Observation 2"]},
        },
    )
    resolver = ProfileResolver(store)

    framework = resolver.resolve_and_compile(["test"])

    assert framework == "# Profile: test\nTest profile description\n\n## context\n- Observation 1\n- Observation 2"


def test_compile_multiple_profiles_joins_sections(store: ProfileStore) -> None:
    _write_profile(store.root, "base", {"observations": ["Be precise"]})
    _write_profile(
        store.root,
        "team/dev",
        {"description": "Developer", "relations": _inherits("base"), "code": {"style": {"observations": ["Type hints"]}}},
    )

    framework = ProfileResolver(store).resolve_and_compile(["team/dev"])

    assert framework == (
        "# Profile: base\n\n## observations\n- Be precise\n\n"
        "# Profile: team/dev\nDeveloper\n\n## code.style\n- Type hints"
    )


def test_diamond_inheritance_emits_shared_ancestor_once(store: ProfileStore) -> None:
    _write_profile(store.root, "d", {"observations": ["root"]})
    _write_profile(store.root, "b", {"relations": _inherits("d")})
    _write_profile(store.root, "c", {"relations": _inherits("d")})
    _write_profile(store.root, "a", {"relations": _inherits("b", "c")})

    resolved = ProfileResolver(store).resolve(["a"])

    assert [profile.id for profile in resolved] == ["d", "b", "c", "a"]


def test_shared_ancestor_collapses_across_entries(store: ProfileStore) -> None:
    _write_profile(store.root, "base", {})
    _write_profile(store.root, "x", {"relations": _inherits("base")})
    _write_profile(store.root, "y", {"relations": _inherits("base")})

    resolved = ProfileResolver(store).resolve(["x", "y", "x"])

    assert [profile.id for profile in resolved] == ["base", "x", "y"]


def test_kind_inherits_relation_is_accepted_and_other_kinds_ignored(store: ProfileStore) -> None:
    _write_profile(store.root, "parent", {})
    _write_profile(store.root, "other", {})
    _write_profile(
        store.root,
        "child",
        {"relations": [{"kind": "inherits", "target": "parent"}, {"type": "related", "target": "other"}]},
    )

    resolved = ProfileResolver(store).resolve(["child"])

    assert [profile.id for profile in resolved] == ["parent", "child"]


def test_cycle_raises_cycle_error(store: ProfileStore) -> None:
    _write_profile(store.root, "a", {"relations": _inherits("b")})
    _write_profile(store.root, "b", {"relations": _inherits("a")})

    with pytest.raises(CycleError, match="Cycle detected in domain profile inheritance at: a"):
        ProfileResolver(store).resolve(["a"])


def test_self_inheritance_is_a_cycle(store: ProfileStore) -> None:
    _write_profile(store.root, "loop", {"relations": _inherits("loop")})

    with pytest.raises(CycleError):
        ProfileResolver(store).resolve(["loop"])


def test_missing_profile_raises_not_found(store: ProfileStore) -> None:
    with pytest.raises(NotFoundError, match="Profile 'missing' not found"):
        ProfileResolver(store).resolve(["missing"])


def test_missing_ancestor_raises_not_found(store: ProfileStore) -> None:
    _write_profile(store.root, "child", {"relations": _inherits("ghost")})

    with pytest.raises(NotFoundError) as excinfo:
        ProfileResolver(store).resolve(["child"])

    assert excinfo.value.identifier == "ghost"
    assert str(store.root) not in str(excinfo.value)


def test_empty_entry_list_resolves_to_nothing(store: ProfileStore) -> None:
    resolver = ProfileResolver(store)

    assert resolver.resolve([]) == []
    assert resolver.resolve_and_compile([]) == ""


def test_collect_observation_groups_skips_empty_and_non_string_entries() -> None:
    groups = collect_observation_groups(
        {
            "observations": ["top", 3],
            "empty": {"observations": []},
            "deep": {"nested": {"observations": ["leaf"]}},
        }
    )

    assert [(group.group_path, group.observations) for group in groups] == [
        ("observations", ["top"]),
        ("deep.nested", ["leaf"]),
    ]


def test_store_lists_nested_ids_sorted(store: ProfileStore) -> None:
    assert store.list_ids() == []

    _write_profile(store.root, "zeta", {})
    _write_profile(store.root, "example/developer", {})

    assert store.list_ids() == ["example/developer", "zeta"]


def test_store_put_get_and_deprecate(store: ProfileStore) -> None:
    store.put("example/dev", "description: Dev\nobservations:\n  - Keep it small\n")

    assert "Keep it small" in store.get_text("example/dev")

    store.deprecate("example/dev", "replaced")
    payload = yaml.safe_load(store.get_text("example/dev"))

    assert payload["deprecated"] is True
    assert payload["deprecated_reason"] == "replaced"
    assert payload["observations"] == ["Keep it small"]
    assert ProfileResolver(store).resolve_and_compile(["example/dev"]).startswith("# Profile: example/dev\nDev")


def test_store_put_rejects_non_mapping_yaml(store: ProfileStore) -> None:
    with pytest.raises(ValidationError, match="mapping"):
        store.put("bad", "- just\n- a list\n")

    assert store.list_ids() == []


def test_deprecate_missing_profile_raises_not_found(store: ProfileStore) -> None:
    with pytest.raises(NotFoundError):
        store.deprecate("absent")

    assert not store.root.exists()


@pytest.mark.parametrize("profile_id", ["../escape", "/abs", "a\\b", "trailing/", "a//b", "", "dev\n", "a\tb"])
def test_unsafe_profile_ids_are_rejected(store: ProfileStore, profile_id: str) -> None:
    with pytest.raises(ValidationError):
        store.get_text(profile_id)


def test_plain_scalars_stay_observation_strings(store: ProfileStore) -> None:
    store.put(
        "p",
        "release:\n  observations:\n    - 2024-01-01\n    - No\n    - yes\n    - 12:30\n    - Ship it\n"
        "on:\n  observations:\n    - off\n",
    )

    framework = ProfileResolver(store).resolve_and_compile(["p"])

    assert framework == (
        "# Profile: p\n\n## release\n- 2024-01-01\n- No\n- yes\n- 12:30\n- Ship it\n\n## on\n- off"
    )


def test_core_schema_still_types_booleans_and_numbers() -> None:
    assert load_yaml("a: true\nb: 3\nc: 2.5\nd: 0x1F\ne: null\nf: False\n") == {
        "a": True,
        "b": 3,
        "c": 2.5,
        "d": 31,
        "e": None,
        "f": False,
    }
