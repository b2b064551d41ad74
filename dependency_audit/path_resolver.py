"""
Turn raw module specifiers into module identities.
"""

from __future__ import annotations

import logging
import os
import re
from typing import Iterable, Optional

from .config import Alias, ResolverConfig, compile_js_regex
from .models import ExternalModule, LocalModule, ModuleIdentity


logger = logging.getLogger(__name__)


NODE_BUILTINS = frozenset({
    "assert", "async_hooks", "buffer", "child_process", "cluster", "console",
    "constants", "crypto", "dgram", "diagnostics_channel", "dns", "domain",
    "events", "fs", "http", "http2", "https", "inspector", "module", "net",
    "os", "path", "perf_hooks", "process", "punycode", "querystring",
    "readline", "repl", "stream", "string_decoder", "sys", "timers", "tls",
    "trace_events", "tty", "url", "util", "v8", "vm", "wasi",
    "worker_threads", "zlib",
})

STYLESHEET_EXTENSIONS = (".scss", ".sass", ".css", ".less")
_URL_SCHEME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]+:")
_COMPILED_EXTENSIONS = {
    ".js": (".ts", ".tsx"),
    ".jsx": (".tsx",),
    ".mjs": (".mts",),
    ".cjs": (".cts",),
}


def package_name(specifier: str) -> str:
    """Package part of a bare specifier: ``@scope/name`` or ``name``."""
    if specifier.startswith("@"):
        parts = specifier.split("/")
        return "/".join(parts[:2]) if len(parts) >= 2 else specifier
    return specifier.split("/")[0]


def is_builtin(specifier: str) -> bool:
    if specifier.startswith("node:"):
        return True
    return not specifier.startswith("@") and package_name(specifier) in NODE_BUILTINS


def is_relative(specifier: str) -> bool:
    return specifier in (".", "..") or specifier.startswith(("./", "../", "/"))


def strip_query(specifier: str) -> str:
    """Drop ``?query`` and ``#hash`` suffixes; a leading ``#`` is a subpath import."""
    for marker in ("?", "#"):
        index = specifier.find(marker, 1)
        if index > 0:
            specifier = specifier[:index]
    return specifier


class PathResolver:
    """Resolve specifiers against an immutable ``ResolverConfig``."""

    def __init__(self, config: ResolverConfig) -> None:
        self.config = config

    def resolve(
        self, specifier: str, containing_file: str, stylesheet: bool = False
    ) -> ModuleIdentity:
        spec = strip_query(specifier.strip())
        if spec.startswith("node:"):
            return ExternalModule(package_name(spec[len("node:"):]), builtin=True)
        if _URL_SCHEME_RE.match(spec) or spec.startswith("//"):
            return ExternalModule(spec, builtin=True)

        directory = os.path.dirname(containing_file)
        if is_relative(spec):
            return self._resolve_relative(spec, directory)

        mapped = self._resolve_path_mapping(spec)
        if mapped is not None:
            return mapped

        for alias in self.config.aliases:
            replaced = apply_alias(alias, spec)
            if replaced is None:
                continue
            logger.debug("Alias %s (%s) matched %s", alias.key, alias.source, spec)
            if alias.is_path:
                return LocalModule(self._locate(self._alias_target_path(replaced)))
            return ExternalModule(package_name(replaced), builtin=is_builtin(replaced))

        if stylesheet:
            if spec.startswith("~") and not spec.startswith("~/"):
                name = spec[1:]
                return ExternalModule(package_name(name), builtin=is_builtin(name))
            found = self._find_stylesheet(os.path.join(directory, spec))
            if found is not None:
                return LocalModule(found)

        if spec.startswith("~/"):
            return LocalModule(self._locate(os.path.join(self.config.root, spec[2:])))

        return ExternalModule(package_name(spec), builtin=is_builtin(spec))

    def _resolve_relative(self, spec: str, directory: str) -> LocalModule:
        if spec.startswith("/"):
            if os.path.exists(spec):
                return LocalModule(self._locate(spec))
            return LocalModule(self._locate(os.path.join(self.config.root, spec.lstrip("/"))))
        return LocalModule(self._locate(os.path.join(directory, spec)))

    def _resolve_path_mapping(self, spec: str) -> Optional[LocalModule]:
        candidates = None
        catch_all = False
        for mapping in self.config.path_mappings:
            if not mapping.is_wildcard and mapping.pattern == spec:
                candidates = list(mapping.targets)
                break
        if candidates is None:
            best = None
            for mapping in self.config.path_mappings:
                if not mapping.is_wildcard:
                    continue
                prefix, _, suffix = mapping.pattern.partition("*")
                if (
                    spec.startswith(prefix)
                    and spec.endswith(suffix)
                    and len(spec) >= len(prefix) + len(suffix)
                    and (best is None or len(prefix) > len(best[0]))
                ):
                    best = (prefix, suffix, mapping)
            if best is not None:
                prefix, suffix, mapping = best
                star = spec[len(prefix):len(spec) - len(suffix)]
                candidates = [target.replace("*", star, 1) for target in mapping.targets]
                catch_all = prefix == "" and suffix == ""

        if candidates:
            for candidate in candidates:
                found = self._find_file(candidate)
                if found is not None and _outside_node_modules(found):
                    return LocalModule(found)
            # A bare "*" mapping only redirects when a file really exists.
            if not catch_all and _outside_node_modules(candidates[0]):
                return LocalModule(os.path.normpath(candidates[0]))

        if self.config.base_url:
            found = self._find_file(os.path.join(self.config.base_url, spec))
            if found is not None and _outside_node_modules(found):
                return LocalModule(found)
        return None

    def _alias_target_path(self, target: str) -> str:
        root = self.config.root
        target = target.replace("<rootDir>", root)
        if target.startswith(root):
            return target
        return os.path.join(root, target.lstrip("/"))

    def _locate(self, path: str) -> str:
        found = self._find_file(path)
        return found if found is not None else os.path.normpath(path)

    def _find_file(self, path: str) -> Optional[str]:
        path = os.path.normpath(path)
        if os.path.isfile(path):
            return path
        for ext in self.config.extensions:
            if os.path.isfile(path + ext):
                return path + ext
        stem, ext = os.path.splitext(path)
        for replacement in _COMPILED_EXTENSIONS.get(ext, ()):
            if os.path.isfile(stem + replacement):
                return stem + replacement
        if os.path.isdir(path):
            for index in self.config.index_files:
                candidate = os.path.join(path, index)
                if os.path.isfile(candidate):
                    return candidate
        return None

    def _find_stylesheet(self, path: str) -> Optional[str]:
        path = os.path.normpath(path)
        directory, base = os.path.split(path)
        for candidate in _stylesheet_candidates(directory, base):
            if os.path.isfile(candidate):
                return candidate
        return None


def _stylesheet_candidates(directory: str, base: str) -> Iterable[str]:
    for name in (base, f"_{base}"):
        yield os.path.join(directory, name)
        for ext in STYLESHEET_EXTENSIONS:
            yield os.path.join(directory, name + ext)
    for index in ("index", "_index"):
        for ext in STYLESHEET_EXTENSIONS:
            yield os.path.join(directory, base, index + ext)


def _outside_node_modules(path: str) -> bool:
    return "node_modules" not in path.replace("\\", "/").split("/")


def apply_alias(alias: Alias, spec: str) -> Optional[str]:
    """Return the rewritten specifier, or None when ``alias`` does not apply."""
    key, target = alias.key, alias.target
    if alias.kind == "exact":
        return target if spec == key else None
    if alias.kind == "prefix":
        if spec == key:
            return target
        if key.endswith("/") and spec.startswith(key):
            return target.rstrip("/") + "/" + spec[len(key):]
        if spec.startswith(key + "/"):
            return target.rstrip("/") + spec[len(key):]
        return None
    if alias.kind == "wildcard":
        prefix, _, suffix = key.partition("*")
        if not (spec.startswith(prefix) and spec.endswith(suffix)):
            return None
        if len(spec) < len(prefix) + len(suffix):
            return None
        star = spec[len(prefix):len(spec) - len(suffix)]
        if "*" in target:
            return target.replace("*", star, 1)
        return target.rstrip("/") + "/" + star
    pattern = alias.pattern if alias.pattern is not None else compile_js_regex(key)
    match = pattern.search(spec)
    if not match:
        return None

    def substitute(reference: re.Match) -> str:
        name = reference.group(1) or reference.group(2)
        if name.isdigit():
            index = int(name)
            if index > match.re.groups:
                return ""
            return match.group(index) or ""
        return match.groupdict().get(name) or ""

    replaced = re.sub(r"\$(?:(\d+)|<(\w+)>)", substitute, target)
    # Jest maps the whole module path; bundlers replace only the matched part.
    if alias.source == "jest":
        return replaced
    return spec[:match.start()] + replaced + spec[match.end():]


def resolve_specifier(
    specifier: str, containing_file: str, config: ResolverConfig, stylesheet: bool = False
) -> ModuleIdentity:
    return PathResolver(config).resolve(specifier, containing_file, stylesheet)
