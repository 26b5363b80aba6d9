from __future__ import annotations

import pytest

from rompack.errors import InvalidImport, MalformedModule, MissingExport, ModuleTooLarge
from rompack.module.postprocess import ModulePolicy, import_allowed, postprocess_module
from rompack.module.sections import SectionId, parse_sections
from wasm_helper import (
    code_section,
    custom_section,
    export_section,
    function_section,
    game_module,
    import_section,
    module,
    section,
    type_section,
)


def test_postprocess_is_idempotent():
    data = game_module(customs=[("name", b"\x00\x03abc"), ("producers", b"\x00")])
    once = postprocess_module(data).data
    twice = postprocess_module(once).data
    assert once == twice
    assert len(once) < len(data)


def test_custom_sections_are_dropped_regardless_of_size():
    data = game_module(
        customs=[("name", b"x" * 4096), (".debug_line", b"\x01"), ("target_features", b"")]
    )
    result = postprocess_module(data)
    ids = [s.id for s in parse_sections(result.data)]
    assert SectionId.CUSTOM not in ids
    assert [label for label, _ in result.dropped] == [
        "custom:name",
        "custom:.debug_line",
        "custom:target_features",
    ]


def test_kept_sections_keep_relative_order_and_payloads():
    data = game_module()
    kept_in = [s for s in parse_sections(data) if s.id != SectionId.CUSTOM]
    kept_out = parse_sections(postprocess_module(data).data)
    assert [(s.id, s.payload) for s in kept_in] == [(s.id, s.payload) for s in kept_out]


def test_non_canonical_section_sizes_are_reencoded():
    padded = module(
        section(1, b"\x01\x60\x00\x00", padded_size=True),
        function_section(1),
        export_section([("boot", 0, 0)]),
        code_section(1),
    )
    out = postprocess_module(padded).data
    assert len(out) == len(padded) - 4
    assert postprocess_module(out).data == out


def test_disallowed_import_fails_with_name():
    data = game_module(imports=[("graphics", "draw_line"), ("os", "exec")])
    with pytest.raises(InvalidImport) as info:
        postprocess_module(data)
    assert info.value.name == "os.exec"


def test_first_disallowed_import_is_reported():
    data = game_module(imports=[("env", "abort"), ("os", "exec")])
    with pytest.raises(InvalidImport) as info:
        postprocess_module(data)
    assert info.value.name == "env.abort"


def test_exact_import_allow_list():
    policy = ModulePolicy(allowed_imports=("graphics.clear_screen",))
    postprocess_module(game_module(), policy)
    with pytest.raises(InvalidImport):
        postprocess_module(game_module(imports=[("graphics", "draw_line")]), policy)


def test_import_allowed_patterns():
    assert import_allowed("audio.play", ["audio.*"])
    assert not import_allowed("audiox.play", ["audio.*"])
    assert import_allowed("misc.log", ["misc.log"])
    assert not import_allowed("misc.log2", ["misc.log"])


def test_missing_required_export():
    policy = ModulePolicy(required_exports=("boot", "handle_menu"))
    with pytest.raises(MissingExport) as info:
        postprocess_module(game_module(), policy)
    assert info.value.name == "handle_menu"


def test_required_exports_present():
    policy = ModulePolicy(required_exports=("update", "render"))
    postprocess_module(game_module(), policy)


def test_module_size_limit_boundary():
    data = game_module()
    size = len(postprocess_module(data).data)
    postprocess_module(data, ModulePolicy(max_size=size))
    with pytest.raises(ModuleTooLarge):
        postprocess_module(data, ModulePolicy(max_size=size - 1))


def test_entry_points_table():
    data = game_module(exports=("boot", "helper", "render"))
    result = postprocess_module(data)
    assert [(e.name, e.function_index) for e in result.entry_points] == [
        ("boot", 1),
        ("render", 3),
    ]


def test_custom_kept_section_policy():
    policy = ModulePolicy(
        kept_sections=frozenset({SectionId.TYPE, SectionId.FUNCTION, SectionId.CODE})
    )
    out = postprocess_module(game_module(), policy).data
    assert [s.id for s in parse_sections(out)] == [
        SectionId.TYPE,
        SectionId.FUNCTION,
        SectionId.CODE,
    ]


def test_garbage_is_malformed():
    with pytest.raises(MalformedModule):
        postprocess_module(b"not wasm at all")


def test_custom_only_module():
    out = postprocess_module(module(type_section(), custom_section("name", b""))).data
    assert out == module(type_section())


def test_second_import_section_is_rejected():
    data = game_module() + import_section([("os", "exec")])
    with pytest.raises(MalformedModule):
        postprocess_module(data)
