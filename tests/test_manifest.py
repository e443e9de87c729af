from tools.manifest import (
    build_manifest,
    classify_role,
    empty_manifest,
    extract_imports,
    structure_summary,
)


def _build(files):
    return build_manifest([(p, c, 1.0) for p, c in files.items()])


def test_extract_imports_in_order():
    src = (
        "import React, { useState } from 'react'\n"
        "import './App.css'\n"
        "export { thing } from \"./thing\"\n"
        "const lodash = require('lodash')\n"
        "const Page = lazy(() => import('./pages/Page'))\n"
    )
    assert extract_imports(src) == ["react", "./App.css", "./thing", "lodash", "./pages/Page"]


def test_local_imports_resolve_against_snapshot(manifest):
    app = manifest["src/App.jsx"]
    assert app.local_imports == ("src/components/Header.tsx", "src/components/Footer.jsx")
    assert manifest["src/components/Header.tsx"].local_imports == ("src/components/styles.css",)
    assert manifest["src/components/styles.css"].imported_by == ("src/components/Header.tsx",)
    assert manifest["src/main.jsx"].local_imports == ("src/App.jsx", "src/index.css")


def test_neighbours_cover_both_directions(manifest):
    assert manifest.neighbours("src/App.jsx") == (
        "src/components/Footer.jsx", "src/components/Header.tsx", "src/main.jsx",
    )
    assert manifest.neighbours("missing.js") == ()


def test_index_and_alias_resolution():
    m = _build({
        "src/App.jsx": "import Button from '@/components/Button'\nimport api from './api'\n",
        "src/components/Button/index.jsx": "export default () => null\n",
        "src/api.ts": "export default {}\n",
    })
    assert m["src/App.jsx"].local_imports == ("src/components/Button/index.jsx", "src/api.ts")


def test_entry_point_and_roles(manifest):
    assert manifest.entry_point == "src/main.jsx"
    assert manifest["package.json"].role == "config"
    assert manifest["vite.config.js"].role == "config"
    assert manifest["src/index.css"].role == "style"
    assert manifest["src/components/Header.tsx"].role == "component"
    assert manifest["src/components/Header.tsx"].component == "Header"
    assert manifest["src/utils/format.ts"].role == "utility"
    assert classify_role("src/hooks/useAuth.ts") == "hook"
    assert classify_role("src/pages/About.jsx") == "page"


def test_unsafe_paths_are_skipped_and_duplicates_keep_last():
    m = build_manifest([
        ("../outside.js", "x", 0),
        ("/home/user/app/src/a.js", "first", 0),
        ("src/a.js", "second", 0),
    ])
    assert m.paths() == ["src/a.js"]
    assert m.content("src/a.js") == "second"


def test_manifest_is_read_only(manifest):
    import pytest
    with pytest.raises(TypeError):
        manifest.files["new.js"] = None


def test_structure_summary_lists_tree_and_graph(manifest):
    text = structure_summary(manifest)
    assert text.startswith("PROJECT: 10 files, entry point: src/main.jsx")
    assert "Header.tsx  [component]" in text
    assert "src/components/Header.tsx -> src/components/styles.css" in text


def test_empty_manifest_summary():
    assert structure_summary(empty_manifest()) == "PROJECT: (empty)"
    assert len(empty_manifest()) == 0
