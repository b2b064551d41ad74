"""
Import extraction for script, markup and stylesheet sources.

Scripts are parsed with tree-sitter. When the parse tree contains error
nodes the file is scanned with line-oriented patterns instead, and the
result is flagged as degraded.
"""

from __future__ import annotations

import logging
import os
import re
import threading
from dataclasses import dataclass, replace
from typing import List, Optional, Tuple

import tree_sitter_javascript as tsjs
import tree_sitter_typescript as tsts
from tree_sitter import Language, Parser, Tree

from .models import ExtractionStrategy, ImportKind, ImportReference, LanguageKind
from .scanner import language_of


logger = logging.getLogger(__name__)


_LANGUAGES = {
    "javascript": Language(tsjs.language()),
    "typescript": Language(tsts.language_typescript()),
    "tsx": Language(tsts.language_tsx()),
}

# Parser instances are not shared between worker threads.
_local = threading.local()


def _parser(grammar: str) -> Parser:
    parsers = getattr(_local, "parsers", None)
    if parsers is None:
        parsers = _local.parsers = {}
    if grammar not in parsers:
        parsers[grammar] = Parser(_LANGUAGES[grammar])
    return parsers[grammar]


def grammar_for(path: str) -> str:
    ext = os.path.splitext(path)[1].lower()
    if ext == ".tsx":
        return "tsx"
    if ext in (".ts", ".mts", ".cts"):
        return "typescript"
    return "javascript"


@dataclass(frozen=True)
class ExtractionResult:
    references: Tuple[ImportReference, ...]
    strategy: ExtractionStrategy
    degraded: bool = False


def select_strategy(tree: Tree) -> ExtractionStrategy:
    """Pick the extraction strategy for a parse result."""
    if tree.root_node.has_error:
        return ExtractionStrategy.PATTERN
    return ExtractionStrategy.STRUCTURAL


def string_value(node) -> Optional[str]:
    """Value of a string or substitution-free template literal node."""
    if node is None:
        return None
    if node.type == "string":
        value = node.text.decode("utf-8", errors="replace")[1:-1]
    elif node.type == "template_string":
        if any(child.type == "template_substitution" for child in node.children):
            return None
        value = node.text.decode("utf-8", errors="replace")[1:-1]
    else:
        return None
    return value if value.strip() else None


class StructuralExtraction:
    """Syntax-tree walk over a tree-sitter parse."""

    strategy = ExtractionStrategy.STRUCTURAL

    def parse(self, content: str, path: str, grammar: Optional[str] = None) -> Tree:
        parser = _parser(grammar or grammar_for(path))
        return parser.parse(content.encode("utf-8", errors="replace"))

    def extract(
        self, content: str, path: str, grammar: Optional[str] = None
    ) -> List[ImportReference]:
        return self.extract_tree(self.parse(content, path, grammar), path)

    def extract_tree(self, tree: Tree, path: str) -> List[ImportReference]:
        references: List[ImportReference] = []
        stack = [tree.root_node]
        while stack:
            node = stack.pop()
            reference = self._reference(node, path)
            if reference is not None:
                references.append(reference)
            stack.extend(reversed(node.children))
        return references

    def _reference(self, node, path: str) -> Optional[ImportReference]:
        if node.type == "import_statement":
            source = node.child_by_field_name("source")
            if source is not None:
                return self._make(source, ImportKind.STATIC_IMPORT, node, path)
            for child in node.named_children:
                if child.type == "import_require_clause":
                    source = child.child_by_field_name("source")
                    if source is None:
                        source = next(
                            (sub for sub in child.named_children if sub.type == "string"), None
                        )
                    return self._make(source, ImportKind.REQUIRE_CALL, node, path)
            return None

        if node.type == "export_statement":
            source = node.child_by_field_name("source")
            if source is not None:
                return self._make(source, ImportKind.RE_EXPORT, node, path)
            return None

        if node.type != "call_expression":
            return None

        function = node.child_by_field_name("function")
        arguments = node.child_by_field_name("arguments")
        if function is None or arguments is None:
            return None
        if function.type == "import":
            kind = ImportKind.DYNAMIC_IMPORT
        elif function.type == "identifier" and function.text == b"require":
            kind = ImportKind.REQUIRE_CALL
        elif function.type == "member_expression":
            target = function.child_by_field_name("object")
            prop = function.child_by_field_name("property")
            if (
                target is None
                or prop is None
                or target.text != b"require"
                or prop.text != b"resolve"
            ):
                return None
            kind = ImportKind.REQUIRE_RESOLVE
        else:
            return None

        if not arguments.named_children:
            return None
        return self._make(arguments.named_children[0], kind, node, path)

    @staticmethod
    def _make(source, kind: ImportKind, statement, path: str) -> Optional[ImportReference]:
        value = string_value(source)
        if value is None:
            return None
        return ImportReference(
            specifier=value,
            kind=kind,
            file=path,
            line=statement.start_point[0] + 1,
        )


_BLOCK_COMMENT_RE = re.compile(r"/\*.*?\*/", re.DOTALL)
_LINE_COMMENT_RE = re.compile(r"(^|[\s;{}()])//[^\n]*", re.MULTILINE)

_SCRIPT_PATTERNS: Tuple[Tuple[re.Pattern, ImportKind], ...] = (
    (
        re.compile(
            r"(?<![\w$.])import\s+(?:type\s+)?(?:[\w$*{},\s]*?\bfrom\s*)?(['\"])([^'\"\n]+)\1"
        ),
        ImportKind.STATIC_IMPORT,
    ),
    (
        re.compile(
            r"(?<![\w$.])export\s+(?:type\s+)?(?:\*(?:\s+as\s+[\w$]+)?|\{[^}]*\})\s*"
            r"from\s*(['\"])([^'\"\n]+)\1"
        ),
        ImportKind.RE_EXPORT,
    ),
    (
        re.compile(r"(?<![\w$.])import\s*\(\s*(['\"`])([^'\"`\n$]+)\1\s*[,)]"),
        ImportKind.DYNAMIC_IMPORT,
    ),
    (
        re.compile(r"(?<![\w$.])require\s*\(\s*(['\"`])([^'\"`\n$]+)\1\s*\)"),
        ImportKind.REQUIRE_CALL,
    ),
    (
        re.compile(r"(?<![\w$.])require\.resolve\s*\(\s*(['\"`])([^'\"`\n$]+)\1"),
        ImportKind.REQUIRE_RESOLVE,
    ),
)


def _blank_comments(content: str) -> str:
    """Remove comments while keeping line numbers intact."""
    content = _BLOCK_COMMENT_RE.sub(lambda m: "\n" * m.group(0).count("\n"), content)
    return _LINE_COMMENT_RE.sub(lambda m: m.group(1), content)


class PatternExtraction:
    """Regular-expression scan; best effort and never raises."""

    strategy = ExtractionStrategy.PATTERN

    def extract(self, content: str, path: str) -> List[ImportReference]:
        if not isinstance(content, str) or not content:
            return []
        text = _blank_comments(content)
        found = []
        for pattern, kind in _SCRIPT_PATTERNS:
            for match in pattern.finditer(text):
                specifier = match.group(2)
                if not specifier.strip():
                    continue
                found.append((match.start(), specifier, kind))
        found.sort(key=lambda item: item[0])
        return [
            ImportReference(
                specifier=specifier,
                kind=kind,
                file=path,
                line=text.count("\n", 0, start) + 1,
            )
            for start, specifier, kind in found
        ]


_STYLE_STATEMENT_RE = re.compile(r"@(import|use|forward)\b")
_URL_RE = re.compile(r"url\(\s*(['\"]?)([^'\")\s]+)\1\s*\)")
_QUOTED_RE = re.compile(r"(['\"])([^'\"\n]+)\1")
_STYLE_LINE_COMMENT_RE = re.compile(r"(?<![:'\"(/])//[^\n]*")


def extract_stylesheet(content: str, path: str, line_offset: int = 0) -> List[ImportReference]:
    """Find ``@import``, ``@use`` and ``@forward`` targets."""
    text = _BLOCK_COMMENT_RE.sub(lambda m: "\n" * m.group(0).count("\n"), content)
    text = _STYLE_LINE_COMMENT_RE.sub("", text)
    indented = path.endswith(".sass")
    references = []
    for match in _STYLE_STATEMENT_RE.finditer(text):
        start = match.end()
        terminator = "\n" if indented else ";"
        end = text.find(terminator, start)
        if end < 0:
            end = len(text)
        statement = text[start:end]
        line = text.count("\n", 0, match.start()) + 1 + line_offset

        specifiers = [url.group(2) for url in _URL_RE.finditer(statement)]
        remainder = _URL_RE.sub("", statement)
        quoted = [quote.group(2) for quote in _QUOTED_RE.finditer(remainder)]
        if match.group(1) == "import":
            specifiers.extend(quoted)
        elif quoted and not specifiers:
            specifiers.append(quoted[0])

        for specifier in specifiers:
            if specifier.strip():
                references.append(ImportReference(
                    specifier=specifier.strip(),
                    kind=ImportKind.STYLESHEET_IMPORT,
                    file=path,
                    line=line,
                ))
    return references


_SCRIPT_BLOCK_RE = re.compile(r"<script\b([^>]*)>(.*?)</script\s*>", re.DOTALL | re.IGNORECASE)
_STYLE_BLOCK_RE = re.compile(r"<style\b([^>]*)>(.*?)</style\s*>", re.DOTALL | re.IGNORECASE)
_LANG_RE = re.compile(r"""\blang\s*=\s*["']?(\w+)""")


def _shift(references: List[ImportReference], offset: int) -> List[ImportReference]:
    return [replace(ref, line=ref.line + offset) for ref in references]


class ImportExtractor:
    """Dispatch extraction by language kind and record the strategy used."""

    def __init__(self) -> None:
        self.structural = StructuralExtraction()
        self.pattern = PatternExtraction()

    def extract_script(
        self, content: str, path: str, grammar: Optional[str] = None
    ) -> ExtractionResult:
        tree = self.structural.parse(content, path, grammar)
        strategy = select_strategy(tree)
        if strategy is ExtractionStrategy.STRUCTURAL:
            references = self.structural.extract_tree(tree, path)
            return ExtractionResult(tuple(references), strategy)
        logger.debug("Syntax errors in %s, falling back to pattern extraction", path)
        return ExtractionResult(tuple(self.pattern.extract(content, path)), strategy, degraded=True)

    def extract_markup(self, content: str, path: str) -> ExtractionResult:
        references: List[ImportReference] = []
        degraded = False
        for block in _SCRIPT_BLOCK_RE.finditer(content):
            lang = _LANG_RE.search(block.group(1))
            grammar = "javascript"
            if lang and lang.group(1).lower() in ("ts", "typescript"):
                grammar = "typescript"
            elif lang and lang.group(1).lower() == "tsx":
                grammar = "tsx"
            offset = content.count("\n", 0, block.start(2))
            result = self.extract_script(block.group(2), path, grammar)
            degraded = degraded or result.degraded
            references.extend(_shift(list(result.references), offset))
        for block in _STYLE_BLOCK_RE.finditer(content):
            offset = content.count("\n", 0, block.start(2))
            references.extend(extract_stylesheet(block.group(2), path, offset))
        references.sort(key=lambda ref: ref.line)
        strategy = ExtractionStrategy.PATTERN if degraded else ExtractionStrategy.STRUCTURAL
        return ExtractionResult(tuple(references), strategy, degraded)

    def extract(
        self, content: str, path: str, language: Optional[LanguageKind] = None
    ) -> ExtractionResult:
        """Extract the import references of one file.

        Args:
            content: Decoded file content.
            path: Path of the file; it is copied onto every reference.
            language: Language kind; derived from the extension when omitted.

        Returns:
            ExtractionResult with the references in document order.
        """
        language = language or language_of(path) or LanguageKind.SCRIPT
        if language is LanguageKind.STYLESHEET:
            references = extract_stylesheet(content, path)
            return ExtractionResult(tuple(references), ExtractionStrategy.STRUCTURAL)
        if language is LanguageKind.MARKUP:
            return self.extract_markup(content, path)
        return self.extract_script(content, path)


def extract_imports(
    content: str, path: str, language: Optional[LanguageKind] = None
) -> ExtractionResult:
    return ImportExtractor().extract(content, path, language)
