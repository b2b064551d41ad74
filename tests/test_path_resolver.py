"""Tests for specifier resolution and resolver configuration."""

import json
import re

import pytest

from dependency_audit.config import (
    AnalysisOptions,
    ResolverConfig,
    compile_js_regex,
    load_resolver_config,
    read_jsonc,
)
from dependency_audit.models import ExternalModule, LocalModule
from dependency_audit.path_resolver import (
    PathResolver,
    is_builtin,
    package_name,
    resolve_specifier,
    strip_query,
)


def _touch(path):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("")
    return str(path)


@pytest.fixture
def project(tmp_path):
    root = tmp_path / "project"
    root.mkdir()
    return root


def test_package_name_and_builtins():
    assert package_name("lodash/fp") == "lodash"
    assert package_name("@scope/pkg/sub/path") == "@scope/pkg"
    assert package_name("@scope") == "@scope"
    assert is_builtin("fs/promises")
    assert is_builtin("node:test")
    assert not is_builtin("@types/node")
    assert strip_query("./logo.svg?url") == "./logo.svg"
    assert strip_query("#internal") == "#internal"


def test_external_and_builtin_specifiers(project):
    resolver = PathResolver(ResolverConfig(root=str(project)))
    importer = str(project / "src" / "index.js")

    assert resolver.resolve("@scope/pkg/sub", importer) == ExternalModule("@scope/pkg")
    assert resolver.resolve("node:fs", importer) == ExternalModule("fs", builtin=True)
    assert resolver.resolve("fs/promises", importer) == ExternalModule("fs", builtin=True)
    assert resolver.resolve("https://cdn.example.com/lib.js", importer).builtin


def test_resolution_is_deterministic(project):
    config = ResolverConfig(root=str(project))
    importer = str(project / "a.js")
    first = resolve_specifier("react-dom/client", importer, config)
    second = resolve_specifier("react-dom/client", importer, config)
    assert first == second == ExternalModule("react-dom")


def test_relative_specifiers_try_extensions_and_index_files(project):
    button = _touch(project / "src" / "components" / "Button.tsx")
    index = _touch(project / "src" / "utils" / "index.ts")
    compiled = _touch(project / "src" / "helpers.ts")
    importer = str(project / "src" / "main.ts")
    resolver = PathResolver(ResolverConfig(root=str(project)))

    assert resolver.resolve("./components/Button", importer) == LocalModule(button)
    assert resolver.resolve("./utils", importer) == LocalModule(index)
    assert resolver.resolve("./helpers.js", importer) == LocalModule(compiled)

    missing = resolver.resolve("./nowhere", importer)
    assert missing == LocalModule(str(project / "src" / "nowhere"))


def test_tsconfig_paths_with_comments(project):
    (project / "tsconfig.json").write_text("""{
      // shared aliases
      "compilerOptions": {
        "baseUrl": ".",
        "paths": {
          "@app/*": ["src/app/*"],
          "@config": ["src/config/index.ts"],
        },
      },
    }""")
    service = _touch(project / "src" / "app" / "service.ts")
    config_file = _touch(project / "src" / "config" / "index.ts")
    _touch(project / "src" / "shared" / "format.ts")

    config, warnings = load_resolver_config(str(project))
    resolver = PathResolver(config)
    importer = str(project / "src" / "main.ts")

    assert warnings == []
    assert resolver.resolve("@app/service", importer) == LocalModule(service)
    assert resolver.resolve("@config", importer) == LocalModule(config_file)
    # baseUrl lookups only succeed for files that exist
    assert resolver.resolve("src/shared/format", importer) == LocalModule(
        str(project / "src" / "shared" / "format.ts")
    )
    assert resolver.resolve("lodash", importer) == ExternalModule("lodash")


def test_tsconfig_extends_chain(project):
    (project / "tsconfig.base.json").write_text(json.dumps({
        "compilerOptions": {"baseUrl": ".", "paths": {"~lib/*": ["lib/*"]}},
    }))
    (project / "tsconfig.json").write_text(json.dumps({
        "extends": "./tsconfig.base.json",
        "compilerOptions": {"strict": True},
    }))
    target = _touch(project / "lib" / "math.js")

    config, _ = load_resolver_config(str(project))

    assert config.base_url == str(project)
    assert PathResolver(config).resolve("~lib/math", str(project / "a.ts")) == LocalModule(target)


def test_catch_all_path_mapping_keeps_packages_external(project):
    (project / "tsconfig.json").write_text(json.dumps({
        "compilerOptions": {"paths": {"*": ["types/*"]}},
    }))
    local = _touch(project / "types" / "globals.d.ts")

    config, _ = load_resolver_config(str(project))
    resolver = PathResolver(config)
    importer = str(project / "index.ts")

    assert resolver.resolve("react", importer) == ExternalModule("react")
    assert resolver.resolve("globals.d.ts", importer) == LocalModule(local)


def test_vite_alias_object(project):
    (project / "vite.config.ts").write_text("""
import { defineConfig } from 'vite'
import path from 'path'

export default defineConfig({
  resolve: {
    alias: {
      '@': path.resolve(__dirname, './src'),
      'lodash': 'lodash-es',
    },
  },
})
""")
    button = _touch(project / "src" / "components" / "Button.vue")

    config, _ = load_resolver_config(str(project))
    resolver = PathResolver(config)
    importer = str(project / "src" / "main.ts")

    assert resolver.resolve("@/components/Button.vue", importer) == LocalModule(button)
    assert resolver.resolve("lodash/debounce", importer) == ExternalModule("lodash-es")


def test_vite_alias_array_with_regex(project):
    (project / "vite.config.js").write_text("""
export default {
  resolve: {
    alias: [
      { find: /^~(.+)$/, replacement: '$1' },
      { find: 'utils', replacement: '/src/utils' },
    ],
  },
}
""")
    helpers = _touch(project / "src" / "utils" / "helpers.js")

    config, _ = load_resolver_config(str(project))
    resolver = PathResolver(config)
    importer = str(project / "src" / "main.js")

    assert resolver.resolve("~bootstrap/dist/css/bootstrap.css", importer) == ExternalModule(
        "bootstrap"
    )
    assert resolver.resolve("utils/helpers", importer) == LocalModule(helpers)


def test_jest_module_name_mapper(project):
    (project / "package.json").write_text(json.dumps({
        "name": "app",
        "jest": {"moduleNameMapper": {"^@/(.*)$": "<rootDir>/src/$1"}},
    }))
    store = _touch(project / "src" / "store.js")

    config, warnings = load_resolver_config(str(project))

    assert warnings == []
    assert [alias.source for alias in config.aliases] == ["jest"]
    assert PathResolver(config).resolve("@/store", str(project / "test.js")) == LocalModule(store)


def test_explicit_aliases_take_precedence(project):
    (project / "vite.config.js").write_text("export default { resolve: { alias: { 'x': 'y' } } }")
    options = AnalysisOptions(aliases=(("x", "z"),))

    config, _ = load_resolver_config(str(project), options)

    assert [alias.source for alias in config.aliases] == ["options", "vite"]
    assert PathResolver(config).resolve("x", str(project / "a.js")) == ExternalModule("z")


def test_invalid_tsconfig_is_a_warning(project):
    (project / "tsconfig.json").write_text("{ not json")

    config, warnings = load_resolver_config(str(project))

    assert config.path_mappings == ()
    assert [warning.kind for warning in warnings] == ["invalid-config"]


def test_stylesheet_specifiers(project):
    partial = _touch(project / "styles" / "_variables.scss")
    importer = str(project / "styles" / "main.scss")
    resolver = PathResolver(ResolverConfig(root=str(project)))

    assert resolver.resolve("~bootstrap/scss/bootstrap", importer, stylesheet=True) == (
        ExternalModule("bootstrap")
    )
    assert resolver.resolve("variables", importer, stylesheet=True) == LocalModule(partial)
    assert resolver.resolve("sass:math", importer, stylesheet=True).builtin


def test_home_relative_specifier(project):
    target = _touch(project / "src" / "lib.ts")
    resolver = PathResolver(ResolverConfig(root=str(project)))
    assert resolver.resolve("~/src/lib", str(project / "a.ts")) == LocalModule(target)


def test_read_jsonc_keeps_comment_markers_inside_strings(tmp_path):
    path = tmp_path / "config.json"
    path.write_text('{"url": "http://example.com/*x*/", // note\n "n": 1,}')
    assert read_jsonc(str(path)) == {"url": "http://example.com/*x*/", "n": 1}


def test_compile_js_regex():
    pattern = compile_js_regex(r"^(?<scope>@[\w-]+)/(?<name>[\w-]+)\k<name>$", "i")
    assert pattern.match("@APP/abab").group("scope") == "@APP"
    with pytest.raises(re.error):
        compile_js_regex(r"^\p{Lu}+$", "u")


def test_vite_regex_alias_containing_slashes_and_comments(project):
    (project / "vite.config.ts").write_text("""
// aliases are shared with storybook
export default defineConfig({
  resolve: {
    alias: [
      { find: /^~\\//, replacement: './src/' }, // home directory
      // { find: 'gone', replacement: './gone' },
      { find: /^(?<pkg>@app)$/, replacement: './src/app' },
    ],
  },
})
""")
    nav = _touch(project / "src" / "components" / "Nav.vue")
    app = _touch(project / "src" / "app" / "index.ts")

    config, warnings = load_resolver_config(str(project))
    resolver = PathResolver(config)
    importer = str(project / "src" / "main.ts")

    assert warnings == []
    assert [alias.key for alias in config.aliases] == ["^~\\/", "^(?<pkg>@app)$"]
    assert all(alias.pattern is not None for alias in config.aliases)
    assert resolver.resolve("~/components/Nav.vue", importer) == LocalModule(nav)
    assert resolver.resolve("@app", importer) == LocalModule(app)
    assert resolver.resolve("gone", importer) == ExternalModule("gone")


def test_unsupported_alias_regex_is_a_warning(project):
    (project / "vite.config.js").write_text("""
export default {
  resolve: {
    alias: [
      { find: /^\\p{Lu}+$/u, replacement: './src/upper' },
      { find: 'utils', replacement: './src/utils' },
    ],
  },
}
""")

    config, warnings = load_resolver_config(str(project))

    assert [alias.key for alias in config.aliases] == ["utils"]
    assert [warning.kind for warning in warnings] == ["invalid-config"]
    assert warnings[0].path == str(project / "vite.config.js")


def test_webpack_alias_through_constant(project):
    (project / "webpack.config.js").write_text("""
const path = require('path');
const aliases = {
  Components: path.resolve(__dirname, 'src', 'components'),
  'react$': 'preact/compat',
};

module.exports = { resolve: { alias: aliases } };
""")
    header = _touch(project / "src" / "components" / "Header.jsx")

    config, _ = load_resolver_config(str(project))
    resolver = PathResolver(config)
    importer = str(project / "src" / "index.js")

    assert resolver.resolve("Components/Header", importer) == LocalModule(header)
    assert resolver.resolve("react", importer) == ExternalModule("preact")
    assert resolver.resolve("react/jsx-runtime", importer) == ExternalModule("react")


def test_jest_config_module_name_mapper(project):
    (project / "jest.config.js").write_text("""
module.exports = {
  testEnvironment: 'jsdom',
  moduleNameMapper: {
    '^@/(.*)$': '<rootDir>/src/$1',
    '\\\\.(css|less)$': 'identity-obj-proxy',
  },
};
""")
    store = _touch(project / "src" / "store.js")

    config, warnings = load_resolver_config(str(project))
    resolver = PathResolver(config)
    importer = str(project / "test" / "store.test.js")

    assert warnings == []
    assert [alias.source for alias in config.aliases] == ["jest", "jest"]
    assert resolver.resolve("@/store", importer) == LocalModule(store)
    assert resolver.resolve("./theme.css", importer) == LocalModule(str(project / "test" / "theme.css"))
    assert resolver.resolve("styles/theme.less", importer) == ExternalModule("identity-obj-proxy")
