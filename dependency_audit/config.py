"""
Analysis options and resolver configuration loading.

Resolver configuration is assembled once per run from ``tsconfig.json`` /
``jsconfig.json`` and the bundler configuration files found at the project
root. Bundler configs are JavaScript; they are parsed with tree-sitter and
only their literal alias tables are read, so anything computed at runtime is
out of reach.
"""

from __future__ import annotations

import fnmatch
import json
import logging
import os
import posixpath
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

from .extractor import StructuralExtraction, string_value
from .models import AnalysisWarning
from .registry import DEFAULT_REGISTRY_URL


logger = logging.getLogger(__name__)


SCOPE_ALIASES = {
    "all": "all",
    "production": "production",
    "prod": "production",
    "dependencies": "production",
    "development": "development",
    "dev": "development",
    "devDependencies": "development",
    "peer": "peer",
    "peerDependencies": "peer",
}


@dataclass(frozen=True)
class IndirectUsageRule:
    """Declared packages matching ``pattern`` count as used when a trigger is imported."""

    pattern: str
    triggers: Tuple[str, ...]

    def matches(self, package_name: str) -> bool:
        return fnmatch.fnmatchcase(package_name, self.pattern)


DEFAULT_INDIRECT_USAGE_RULES: Tuple[IndirectUsageRule, ...] = (
    IndirectUsageRule("@babel/*", ("@babel/core", "babel")),
    IndirectUsageRule("eslint-plugin-*", ("eslint",)),
    IndirectUsageRule("eslint-config-*", ("eslint",)),
    IndirectUsageRule("*-loader", ("webpack",)),
    IndirectUsageRule("vite-plugin-*", ("vite",)),
    IndirectUsageRule("@vitejs/*", ("vite",)),
    IndirectUsageRule("prettier-plugin-*", ("prettier",)),
)


@dataclass(frozen=True)
class AnalysisOptions:
    """Options controlling one analysis run."""

    scope: str = "all"
    include_dev: bool = True
    check_peer_dependencies: bool = True
    max_traversal_depth: int = 5
    exclude_patterns: Tuple[str, ...] = ()
    check_outdated: bool = False
    max_workers: Optional[int] = None
    max_scan_depth: int = 64
    aliases: Tuple[Tuple[str, str], ...] = ()
    indirect_usage_rules: Tuple[IndirectUsageRule, ...] = DEFAULT_INDIRECT_USAGE_RULES
    show_progress: bool = False
    registry_url: str = DEFAULT_REGISTRY_URL
    lookup_timeout: float = 10

    def __post_init__(self) -> None:
        normalized = SCOPE_ALIASES.get(self.scope)
        if normalized is None:
            raise ValueError(
                f"Unknown scope {self.scope!r}; expected one of {sorted(SCOPE_ALIASES)}"
            )
        object.__setattr__(self, "scope", normalized)
        object.__setattr__(self, "exclude_patterns", tuple(self.exclude_patterns))
        object.__setattr__(self, "aliases", tuple(tuple(pair) for pair in self.aliases))
        if self.max_traversal_depth < 0:
            raise ValueError("max_traversal_depth must not be negative")
        if self.max_workers is not None and self.max_workers < 1:
            raise ValueError("max_workers must be at least 1")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "AnalysisOptions":
        """Build options from a mapping using snake_case or camelCase keys."""
        camel = {
            "includeDev": "include_dev",
            "checkPeerDependencies": "check_peer_dependencies",
            "maxTraversalDepth": "max_traversal_depth",
            "excludePatterns": "exclude_patterns",
            "checkOutdated": "check_outdated",
            "maxWorkers": "max_workers",
            "maxScanDepth": "max_scan_depth",
            "showProgress": "show_progress",
            "registryUrl": "registry_url",
            "lookupTimeout": "lookup_timeout",
        }
        known = set(cls.__dataclass_fields__)
        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            name = camel.get(key, key)
            if name not in known:
                logger.debug("Ignoring unknown option %s", key)
                continue
            if name == "aliases" and isinstance(value, Mapping):
                value = tuple(value.items())
            kwargs[name] = value
        return cls(**kwargs)

    def declaration_in_scope(self, declaration_type: str) -> bool:
        if declaration_type == "development" and not self.include_dev:
            return False
        if self.scope == "all":
            return True
        return self.scope == declaration_type


DEFAULT_EXTENSIONS: Tuple[str, ...] = (
    ".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs", ".mts", ".cts",
    ".vue", ".svelte", ".json",
    ".css", ".scss", ".sass", ".less",
)


@dataclass(frozen=True)
class PathMapping:
    """One ``compilerOptions.paths`` entry, targets absolute."""

    pattern: str
    targets: Tuple[str, ...]

    @property
    def is_wildcard(self) -> bool:
        return "*" in self.pattern


@dataclass(frozen=True)
class Alias:
    """A bundler alias.

    ``kind`` is ``exact``, ``prefix``, ``wildcard`` or ``regex``; ``is_path``
    tells whether the target names a file location or a package. Regex
    aliases carry their compiled ``pattern``.
    """

    key: str
    target: str
    kind: str
    is_path: bool
    source: str
    pattern: Optional[re.Pattern] = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class ResolverConfig:
    root: str
    extensions: Tuple[str, ...] = DEFAULT_EXTENSIONS
    base_url: Optional[str] = None
    path_mappings: Tuple[PathMapping, ...] = ()
    aliases: Tuple[Alias, ...] = ()

    @property
    def index_files(self) -> Tuple[str, ...]:
        return tuple(f"index{ext}" for ext in self.extensions)


_JSONC_TOKEN_RE = re.compile(r'("(?:\\.|[^"\\])*")|//[^\n]*|/\*.*?\*/', re.DOTALL)
_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")


def read_jsonc(path: str) -> Any:
    """Read JSON that may contain comments and trailing commas."""
    with open(path, "r", encoding="utf-8") as handle:
        text = handle.read()
    try:
        return json.loads(text)
    except ValueError:
        pass
    stripped = _JSONC_TOKEN_RE.sub(lambda m: m.group(1) or "", text)
    stripped = _TRAILING_COMMA_RE.sub(r"\1", stripped)
    return json.loads(stripped)


def _extends_path(base: str, config_dir: str, root: str) -> Optional[str]:
    if base.startswith("."):
        candidate = os.path.normpath(os.path.join(config_dir, base))
    else:
        candidate = os.path.join(root, "node_modules", base)
    for path in (candidate, candidate + ".json", os.path.join(candidate, "tsconfig.json")):
        if os.path.isfile(path):
            return path
    return None


def _load_compiler_options(
    config_path: str, root: str, warnings: List[AnalysisWarning]
) -> Tuple[Optional[str], Tuple[PathMapping, ...]]:
    """Follow the ``extends`` chain and return (absolute baseUrl, path mappings)."""
    chain: List[Tuple[str, Dict[str, Any]]] = []
    seen = set()
    pending: List[str] = [config_path]
    while pending:
        path = pending.pop()
        real = os.path.realpath(path)
        if real in seen:
            continue
        seen.add(real)
        try:
            data = read_jsonc(path)
        except (OSError, ValueError) as e:
            warnings.append(AnalysisWarning(
                "invalid-config", f"Could not parse {os.path.basename(path)}: {e}", path
            ))
            continue
        if not isinstance(data, dict):
            warnings.append(AnalysisWarning(
                "invalid-config", f"{os.path.basename(path)} is not an object", path
            ))
            continue
        chain.append((path, data))
        extends = data.get("extends")
        bases = extends if isinstance(extends, list) else [extends] if isinstance(extends, str) else []
        for base in bases:
            resolved = _extends_path(base, os.path.dirname(path), root)
            if resolved is None:
                warnings.append(AnalysisWarning(
                    "invalid-config", f"Cannot follow extends {base!r}", path
                ))
                continue
            pending.append(resolved)

    base_url: Optional[str] = None
    paths: Optional[Dict[str, Any]] = None
    paths_dir: Optional[str] = None
    # Apply from the most basic config to the most derived one.
    for path, data in reversed(chain):
        options = data.get("compilerOptions") or {}
        if not isinstance(options, dict):
            continue
        if isinstance(options.get("baseUrl"), str):
            base_url = os.path.normpath(os.path.join(os.path.dirname(path), options["baseUrl"]))
        if isinstance(options.get("paths"), dict):
            paths = options["paths"]
            paths_dir = os.path.dirname(path)

    mappings: List[PathMapping] = []
    if paths:
        target_base = base_url or paths_dir or root
        for pattern, targets in paths.items():
            if isinstance(targets, str):
                targets = [targets]
            if not isinstance(targets, list):
                continue
            mappings.append(PathMapping(
                pattern=pattern,
                targets=tuple(
                    os.path.normpath(os.path.join(target_base, target))
                    for target in targets
                    if isinstance(target, str)
                ),
            ))
    return base_url, tuple(mappings)


_PATH_CALL_RE = re.compile(r"\b(?:resolve|join|URL|fileURLToPath)\s*\(|__dirname|import\.meta")
_JS_NAMED_GROUP_RE = re.compile(r"\(\?<(?![=!])")
_JS_NAMED_BACKREF_RE = re.compile(r"\\k<(\w+)>")
_JS_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL}


def compile_js_regex(source: str, flags: str = "") -> re.Pattern:
    """Compile JavaScript regular expression source with ``re``.

    Named groups and named backreferences are rewritten to Python syntax.

    Raises:
        re.error: if the pattern uses syntax ``re`` does not support.
    """
    source = _JS_NAMED_GROUP_RE.sub("(?P<", source)
    source = _JS_NAMED_BACKREF_RE.sub(r"(?P=\1)", source)
    compiled_flags = 0
    for flag in flags:
        compiled_flags |= _JS_FLAGS.get(flag, 0)
    return re.compile(source, compiled_flags)


def _target_is_path(target: str, value: str, root: str) -> bool:
    if target.startswith((".", "/", "<rootDir>")) or _PATH_CALL_RE.search(value):
        return True
    return os.path.exists(os.path.join(root, target.split("/")[0]))


def _alias_kind(key: str) -> Tuple[str, str]:
    if key.endswith("$"):
        return key[:-1], "exact"
    if "*" in key:
        return key, "wildcard"
    return key, "prefix"


def _find_config_files(root: str, stem: str) -> List[str]:
    found = []
    for ext in (".js", ".ts", ".mjs", ".cjs", ".mts", ".cts"):
        path = os.path.join(root, stem + ext)
        if os.path.isfile(path):
            found.append(path)
    return found


def _node_text(node) -> str:
    return node.text.decode("utf-8", errors="replace")


def _walk(node) -> Iterator:
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(current.named_children))


_JS_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "0": "\0"}
_WRAPPER_NODES = ("as_expression", "satisfies_expression", "parenthesized_expression")


def _js_string(node) -> Optional[str]:
    value = string_value(node)
    if value is None:
        return None
    return re.sub(r"\\(.)", lambda m: _JS_ESCAPES.get(m.group(1), m.group(1)), value)


def _property_name(node) -> Optional[str]:
    if node is None:
        return None
    if node.type in ("property_identifier", "identifier"):
        return _node_text(node)
    return _js_string(node)


class ConfigModule:
    """Literal values of a parsed JavaScript or TypeScript config file."""

    def __init__(self, path: str, content: str) -> None:
        self.path = path
        self.tree = StructuralExtraction().parse(content, path)
        self.constants: Dict[str, Any] = {}
        for node in _walk(self.tree.root_node):
            if node.type == "variable_declarator":
                name = node.child_by_field_name("name")
                value = node.child_by_field_name("value")
                if name is not None and name.type == "identifier" and value is not None:
                    self.constants.setdefault(_node_text(name), value)

    @classmethod
    def load(cls, path: str) -> "ConfigModule":
        with open(path, "r", encoding="utf-8", errors="replace") as handle:
            return cls(path, handle.read())

    def values_of(self, *keys: str) -> List[Any]:
        """Value nodes of every ``key: value`` pair named one of ``keys``."""
        found = []
        for node in _walk(self.tree.root_node):
            if node.type == "pair" and _property_name(node.child_by_field_name("key")) in keys:
                value = self.dereference(node.child_by_field_name("value"))
                if value is not None:
                    found.append(value)
        return found

    def dereference(self, node):
        """Follow identifiers to the literal a top-level constant holds."""
        seen = set()
        while node is not None and node.type == "identifier":
            name = _node_text(node)
            if name in seen:
                return None
            seen.add(name)
            node = self.constants.get(name)
        while node is not None and node.type in _WRAPPER_NODES:
            node = node.named_children[0] if node.named_children else None
        return node

    def pairs(self, node) -> List[Tuple[str, Any]]:
        """(key, value node) pairs of an object literal."""
        if node is None or node.type != "object":
            return []
        pairs = []
        for child in node.named_children:
            if child.type != "pair":
                continue
            key = _property_name(child.child_by_field_name("key"))
            value = self.dereference(child.child_by_field_name("value"))
            if key is not None and value is not None:
                pairs.append((key, value))
        return pairs

    def target(self, node) -> Optional[str]:
        """Alias target of a string, a path-building call or the first array entry."""
        node = self.dereference(node)
        if node is None:
            return None
        value = _js_string(node)
        if value is not None:
            return value
        if node.type == "array":
            for element in node.named_children:
                value = self.target(element)
                if value is not None:
                    return value
            return None
        if node.type in ("call_expression", "new_expression"):
            parts = [
                value
                for value in (_js_string(sub) for sub in _walk(node))
                if value is not None
            ]
            return posixpath.join(*parts) if parts else None
        return None


def _regex_alias(
    source: str,
    flags: str,
    target: str,
    is_path: bool,
    origin: str,
    path: str,
    warnings: List[AnalysisWarning],
) -> Optional[Alias]:
    try:
        pattern = compile_js_regex(source, flags)
    except re.error as e:
        warnings.append(AnalysisWarning(
            "invalid-config",
            f"Unsupported alias pattern /{source}/ in {os.path.basename(path)}: {e}",
            path,
        ))
        return None
    return Alias(source, target, "regex", is_path, origin, pattern)


def _aliases_from_object(
    module: ConfigModule, node, origin: str, root: str
) -> List[Alias]:
    aliases = []
    for key, value in module.pairs(node):
        target = module.target(value)
        if target is None:
            continue
        key, kind = _alias_kind(key)
        aliases.append(Alias(key, target, kind, _target_is_path(target, _node_text(value), root), origin))
    return aliases


def _aliases_from_array(
    module: ConfigModule, node, origin: str, root: str, warnings: List[AnalysisWarning]
) -> List[Alias]:
    aliases = []
    for entry in node.named_children:
        fields = dict(module.pairs(module.dereference(entry)))
        find = fields.get("find")
        replacement = fields.get("replacement")
        if find is None or replacement is None:
            continue
        target = module.target(replacement)
        if target is None:
            continue
        is_path = _target_is_path(target, _node_text(replacement), root)
        if find.type == "regex":
            pattern = find.child_by_field_name("pattern")
            flags = find.child_by_field_name("flags")
            alias = _regex_alias(
                _node_text(pattern) if pattern is not None else "",
                _node_text(flags) if flags is not None else "",
                target,
                is_path,
                origin,
                module.path,
                warnings,
            )
            if alias is not None:
                aliases.append(alias)
            continue
        key = _js_string(find)
        if key is not None:
            key, kind = _alias_kind(key)
            aliases.append(Alias(key, target, kind, is_path, origin))
    return aliases


def _bundler_aliases(
    root: str, stem: str, origin: str, warnings: List[AnalysisWarning]
) -> List[Alias]:
    aliases: List[Alias] = []
    for path in _find_config_files(root, stem):
        try:
            module = ConfigModule.load(path)
        except OSError as e:
            warnings.append(AnalysisWarning("invalid-config", f"Cannot read {path}: {e}", path))
            continue
        if module.tree.root_node.has_error:
            logger.debug("Syntax errors in %s; reading the aliases that parsed", path)
        found: List[Alias] = []
        for value in module.values_of("alias"):
            if value.type == "array":
                found.extend(_aliases_from_array(module, value, origin, root, warnings))
            else:
                found.extend(_aliases_from_object(module, value, origin, root))
        logger.debug("Loaded %d %s aliases from %s", len(found), origin, path)
        aliases.extend(found)
    return aliases


def _jest_aliases(root: str, warnings: List[AnalysisWarning]) -> List[Alias]:
    mapper: List[Tuple[str, str, str]] = []

    manifest_path = os.path.join(root, "package.json")
    json_configs = [os.path.join(root, "jest.config.json")]
    for path in json_configs + [manifest_path]:
        if not os.path.isfile(path):
            continue
        try:
            data = read_jsonc(path)
        except (OSError, ValueError):
            continue
        if path == manifest_path:
            data = data.get("jest") if isinstance(data, dict) else None
        if not isinstance(data, dict):
            continue
        table = data.get("moduleNameMapper") or {}
        if isinstance(table, dict):
            for key, value in table.items():
                if isinstance(value, list):
                    value = value[0] if value else None
                if isinstance(value, str):
                    mapper.append((key, value, path))

    for path in _find_config_files(root, "jest.config"):
        try:
            module = ConfigModule.load(path)
        except OSError as e:
            warnings.append(AnalysisWarning("invalid-config", f"Cannot read {path}: {e}", path))
            continue
        for table in module.values_of("moduleNameMapper"):
            for key, value in module.pairs(table):
                target = module.target(value)
                if target is not None:
                    mapper.append((key, target, path))

    aliases = []
    for key, target, path in mapper:
        alias = _regex_alias(
            key, "", target, _target_is_path(target, target, root), "jest", path, warnings
        )
        if alias is not None:
            aliases.append(alias)
    return aliases


def load_resolver_config(
    root: str, options: Optional[AnalysisOptions] = None
) -> Tuple[ResolverConfig, List[AnalysisWarning]]:
    """Build the resolver configuration for ``root``.

    Args:
        root: Absolute project root.
        options: Analysis options; explicit aliases take precedence over
            bundler configuration.

    Returns:
        The configuration and the warnings raised while reading config files.
    """
    options = options or AnalysisOptions()
    root = os.path.abspath(root)
    warnings: List[AnalysisWarning] = []

    base_url: Optional[str] = None
    mappings: Tuple[PathMapping, ...] = ()
    for name in ("tsconfig.json", "jsconfig.json"):
        path = os.path.join(root, name)
        if os.path.isfile(path):
            base_url, mappings = _load_compiler_options(path, root, warnings)
            logger.debug("Loaded %d path mappings from %s", len(mappings), name)
            break

    aliases: List[Alias] = []
    for key, target in options.aliases:
        key, kind = _alias_kind(key)
        aliases.append(Alias(key, target, kind, _target_is_path(target, target, root), "options"))
    aliases.extend(_bundler_aliases(root, "vite.config", "vite", warnings))
    aliases.extend(_bundler_aliases(root, "vitest.config", "vite", warnings))
    aliases.extend(_bundler_aliases(root, "webpack.config", "webpack", warnings))
    aliases.extend(_jest_aliases(root, warnings))

    for warning in warnings:
        logger.warning("%s: %s", warning.kind, warning.message)

    config = ResolverConfig(
        root=root,
        base_url=base_url,
        path_mappings=mappings,
        aliases=tuple(aliases),
    )
    return config, warnings
