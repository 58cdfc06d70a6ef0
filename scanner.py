"""
Source scanner: static analysis of submitted JavaScript.

Nothing here executes submitted code. The scan runs in two passes:

1. ``strip_comments`` walks the source with a small lexer that knows about
   string, template and regex literals, and replaces ``//`` and ``/* */``
   comments with whitespace. Offsets and line breaks are preserved, so the
   stripped text lines up character for character with the original.
   ``blank_literals`` additionally blanks the contents of literals, which
   lets brace matching ignore braces inside strings.
2. Detection over the stripped text: the ``ClawmachineGame`` object, its six
   required methods, the forbidden capability catalogue, and non-blocking
   warnings.

Pattern matching over source text is an approximation. Obfuscated access
(computed property names, string concatenation) is not detected; runtime
capability restriction in the player is what actually contains a game.
"""
import logging
import re
from html import unescape
from typing import List, Optional, Tuple
from urllib.parse import unquote

from classifier import KIND_HTML, KIND_SCRIPT, Artifact, decode_text
from errors import InvalidGameFile
from schemas import GameWarning

logger = logging.getLogger(__name__)

GAME_OBJECT = "ClawmachineGame"
REQUIRED_METHODS = ("init", "start", "reset", "getState", "sendInput", "getMeta")

_IDENT_CHARS = re.compile(r"[\w$]")
# Keywords after which a "/" starts a regex literal rather than a division.
_REGEX_KEYWORDS = frozenset({
    "return", "typeof", "instanceof", "in", "of", "new", "delete", "void",
    "throw", "case", "do", "else", "yield", "await",
})
_REGEX_PUNCTUATION = frozenset("(,=:[!&|?{};+-*%<>~^")

# name shown in found_apis -> pattern over comment-stripped source
FORBIDDEN_APIS: Tuple[Tuple[str, "re.Pattern[str]"], ...] = tuple(
    (name, re.compile(pattern)) for name, pattern in (
        ("localStorage", r"\blocalStorage\b"),
        ("sessionStorage", r"\bsessionStorage\b"),
        ("indexedDB", r"\bindexedDB\b"),
        ("document.cookie", r"\bdocument\s*\.\s*cookie\b"),
        ("fetch", r"(?<![\w$.])fetch\s*\(|\b(?:window|self|globalThis)\s*\.\s*fetch\b"),
        ("XMLHttpRequest", r"\bXMLHttpRequest\b"),
        ("WebSocket", r"\bWebSocket\b"),
        ("EventSource", r"\bEventSource\b"),
        ("navigator.sendBeacon", r"\bsendBeacon\b"),
        ("RTCPeerConnection", r"\b(?:webkit)?RTCPeerConnection\b"),
        ("eval", r"(?<![\w$.])eval\s*\(|\b(?:window|self|globalThis)\s*\.\s*eval\b"),
        ("Function", r"(?<![\w$.])Function\s*\("),
        ("import", r"(?<![\w$.])import\s*\(|\bimport\b[^;\n]*?\bfrom\s*['\"](?:https?:)?//"),
        ("importScripts", r"\bimportScripts\b"),
        ("Worker", r"\bnew\s+(?:Shared)?Worker\s*\("),
        ("serviceWorker", r"\bserviceWorker\b"),
        ("window.open", r"\bwindow\s*\.\s*open\s*\("),
        ("setTimeout(string)", r"\bset(?:Timeout|Interval)\s*\(\s*['\"`]"),
        ("window.parent", r"\bwindow\s*\.\s*(?:parent|top|opener)\b"
                          r"|(?<![\w$.])(?:parent|top)\s*\.\s*(?:postMessage|location|document)\b"),
    )
)

_CONSOLE_RE = re.compile(r"\bconsole\s*\.\s*(?:log|debug|info|warn|error|trace|table|dir)\s*\(")
_DIALOG_RE = re.compile(r"(?:\bwindow\s*\.\s*|(?<![\w$.]))(alert|confirm|prompt)\s*\(")
_VIEWPORT_RE = re.compile(r"<meta\b[^>]*\bname\s*=\s*[\"']?viewport\b", re.I)

_GAME_DECL_RE = re.compile(
    r"\b(?:window|globalThis|self)\s*(?:\.\s*" + GAME_OBJECT + r"|\[\s*[\"']" + GAME_OBJECT + r"[\"']\s*\])\s*=(?!=)"
    r"|\b(?:var|let|const)\s+" + GAME_OBJECT + r"\s*=(?!=)"
    r"|\bclass\s+" + GAME_OBJECT + r"\b"
    r"|\bfunction\s+" + GAME_OBJECT + r"\b"
)

_HTML_COMMENT_RE = re.compile(r"<!--.*?-->", re.S)
_SCRIPT_BLOCK_RE = re.compile(r"<script\b([^>]*)>(.*?)</script\s*>", re.I | re.S)
_SCRIPT_TYPE_RE = re.compile(r"\btype\s*=\s*[\"']?([^\"'\s>]+)", re.I)
_ATTR_VALUE = r"\s*=\s*(?:\"([^\"]*)\"|'([^']*)'|([^\s\"'>]+))"
_EVENT_ATTR_RE = re.compile(r"\son[a-z]+" + _ATTR_VALUE, re.I)
_URL_ATTR_RE = re.compile(r"\s(?:href|src|action|formaction|data|xlink:href)" + _ATTR_VALUE, re.I)
_SRCDOC_ATTR_RE = re.compile(r"\ssrcdoc" + _ATTR_VALUE, re.I)
_JS_URL_RE = re.compile(r"^[\s\x00-\x1f]*javascript\s*:", re.I)
# Script types that hold data rather than code; every other type is scanned.
_DATA_SCRIPT_TYPES = {
    "application/json", "application/ld+json", "importmap", "speculationrules",
    "text/plain", "text/html", "text/template", "text/x-template",
    "x-shader/x-vertex", "x-shader/x-fragment",
}


# -----------------
# Lexer
# -----------------
def _blank(text: str) -> str:
    return "".join(ch if ch == "\n" else " " for ch in text)


def _scan_string(src: str, i: int, quote: str) -> int:
    """Return the index just past the string starting at src[i]."""
    j, n = i + 1, len(src)
    while j < n:
        ch = src[j]
        if ch == "\\":
            j += 2
            continue
        if ch == quote:
            return j + 1
        if ch == "\n":
            return j
        j += 1
    return n


def _scan_regex(src: str, i: int) -> Optional[int]:
    """Return the index just past the regex literal at src[i], or None if it is not one."""
    j, n = i + 1, len(src)
    in_class = False
    while j < n:
        ch = src[j]
        if ch == "\\":
            j += 2
            continue
        if ch == "\n":
            return None
        if ch == "[":
            in_class = True
        elif ch == "]":
            in_class = False
        elif ch == "/" and not in_class:
            j += 1
            while j < n and _IDENT_CHARS.match(src[j]):
                j += 1
            return j
        j += 1
    return None


def _scan_template(src: str, i: int) -> Tuple[int, bool]:
    """
    Scan template text starting at src[i] (just after ` or a closing }).
    Returns (index, closed): index is past the closing backtick when closed,
    otherwise just past the opening "${" of an interpolation.
    """
    j, n = i, len(src)
    while j < n:
        ch = src[j]
        if ch == "\\":
            j += 2
            continue
        if ch == "`":
            return j + 1, True
        if ch == "$" and j + 1 < n and src[j + 1] == "{":
            return j + 2, False
        j += 1
    return n, True


def _regex_allowed(last: str) -> bool:
    return last == "" or last in _REGEX_PUNCTUATION or last in _REGEX_KEYWORDS


def _lex(src: str, blank_literals: bool) -> str:
    out: List[str] = []
    stack: List[str] = []  # "{" for blocks, "${" for template interpolations
    last = ""
    i, n = 0, len(src)

    def literal(start: int, end: int, open_len: int = 1, close_len: int = 1) -> None:
        text = src[start:end]
        if blank_literals and end - start > open_len:
            inner_end = len(text) - close_len if len(text) - close_len >= open_len else len(text)
            text = text[:open_len] + _blank(text[open_len:inner_end]) + text[inner_end:]
        out.append(text)

    def template_from(start: int, content_start: int) -> int:
        nonlocal last
        end, closed = _scan_template(src, content_start)
        if closed:
            literal(start, end, open_len=content_start - start)
            last = ")"
        else:
            literal(start, end, open_len=content_start - start, close_len=2)
            stack.append("${")
            last = "{"
        return end

    while i < n:
        ch = src[i]
        nxt = src[i + 1] if i + 1 < n else ""

        if ch == "/" and nxt == "/":
            end = src.find("\n", i)
            end = n if end == -1 else end
            out.append(" " * (end - i))
            i = end
        elif ch == "/" and nxt == "*":
            end = src.find("*/", i + 2)
            end = n if end == -1 else end + 2
            out.append(_blank(src[i:end]))
            i = end
        elif ch in "'\"":
            end = _scan_string(src, i, ch)
            literal(i, end)
            last = ")"
            i = end
        elif ch == "`":
            i = template_from(i, i + 1)
        elif ch == "}" and stack and stack[-1] == "${":
            stack.pop()
            i = template_from(i, i + 1)
        elif ch == "/":
            end = _scan_regex(src, i) if _regex_allowed(last) else None
            if end is None:
                out.append(ch)
                last = ch
                i += 1
            else:
                literal(i, end, close_len=0)
                last = ")"
                i = end
        elif _IDENT_CHARS.match(ch):
            j = i + 1
            while j < n and _IDENT_CHARS.match(src[j]):
                j += 1
            word = src[i:j]
            out.append(word)
            last = word if word in _REGEX_KEYWORDS else "a"
            i = j
        else:
            if ch == "{":
                stack.append("{")
            elif ch == "}" and stack:
                stack.pop()
            out.append(ch)
            if not ch.isspace():
                last = ch
            i += 1
    return "".join(out)


def strip_comments(source: str) -> str:
    """Remove // and /* */ comments, leaving string, template and regex literals intact."""
    return _lex(source, blank_literals=False)


def blank_literals(source: str) -> str:
    """Like strip_comments, but also blank out the contents of literals."""
    return _lex(source, blank_literals=True)


# -----------------
# Interface shape
# -----------------
def _match_brace(code: str, open_idx: int) -> int:
    depth = 0
    for idx in range(open_idx, len(code)):
        if code[idx] == "{":
            depth += 1
        elif code[idx] == "}":
            depth -= 1
            if depth == 0:
                return idx
    return len(code)


def _top_level_members(blanked: str, open_idx: int) -> str:
    """Text of the body at depth 1 only; nested blocks are blanked."""
    close_idx = _match_brace(blanked, open_idx)
    out = []
    depth = 0
    for idx in range(open_idx, min(close_idx + 1, len(blanked))):
        ch = blanked[idx]
        if ch == "{":
            depth += 1
            out.append(" ")
        elif ch == "}":
            depth -= 1
            out.append(" ")
        else:
            out.append(ch if depth == 1 or ch == "\n" else " ")
    return "".join(out)


def _body_start(blanked: str, pos: int) -> Optional[int]:
    """Position of the "{" opening the object/class value that begins at pos."""
    rest = blanked[pos:]
    m = re.match(r"\s*(?:new\s+)?(?:class\b[^{]*|function\b[^{]*|\(\s*\)\s*=>\s*\(?\s*)?\{", rest)
    if m:
        return pos + m.end() - 1
    return None


def _alias_target(blanked: str, pos: int) -> Optional[str]:
    m = re.match(r"\s*([A-Za-z_$][\w$]*)\s*(?:;|$|\n)", blanked[pos:])
    return m.group(1) if m else None


def _find_alias_body(blanked: str, name: str) -> Optional[int]:
    m = re.search(
        r"\b(?:var|let|const)\s+" + re.escape(name) + r"\s*=(?!=)|\bclass\s+" + re.escape(name) + r"\b",
        blanked,
    )
    if not m:
        return None
    if blanked[m.start():m.start() + 5] == "class":
        return _body_start(blanked, m.start())
    return _body_start(blanked, m.end())


def find_missing_methods(stripped: str, blanked: str) -> Optional[List[str]]:
    """
    Locate the game object and return the required methods it lacks, in
    declaration order. Returns None when the object itself is absent.
    """
    decl = _GAME_DECL_RE.search(stripped)
    if not decl:
        return None

    names = [GAME_OBJECT]
    if decl.group(0).startswith(("class", "function")):
        start = _body_start(blanked, decl.start())
    else:
        start = _body_start(blanked, decl.end())
        if start is None:
            alias = _alias_target(blanked, decl.end())
            if alias:
                names.append(alias)
                start = _find_alias_body(blanked, alias)

    # Without a literal body (factory calls, IIFEs, `new X()`) fall back to
    # looking for method definitions anywhere in the source.
    body = _top_level_members(blanked, start) if start is not None else None
    owners = "|".join(re.escape(n) for n in names)

    missing = []
    for method in REQUIRED_METHODS:
        if body is not None:
            member_re = re.compile(
                r"(?:(?<![\w$.])" + method + r"\s*(?:[(:,]|=(?!=)|$)|\bthis\s*\.\s*" + method + r"\s*=(?!=))"
            )
            found = member_re.search(body)
        else:
            found = re.search(
                r"\bfunction\s+" + method + r"\s*\("
                r"|(?<![\w$.])" + method + r"\s*(?::|\([^()]*\)\s*\{)"
                r"|\b(?:const|let|var)\s+" + method + r"\s*=(?!=)"
                r"|\bthis\s*\.\s*" + method + r"\s*=(?!=)",
                blanked,
            )
        if not found:
            found = re.search(
                r"\b(?:" + owners + r")\s*(?:\.\s*prototype\s*)?\.\s*" + method + r"\s*=(?!=)",
                stripped,
            )
        if not found:
            missing.append(method)
    return missing


# -----------------
# Forbidden APIs and warnings
# -----------------
def find_forbidden_apis(*sources: str) -> List[str]:
    return [name for name, pattern in FORBIDDEN_APIS if any(pattern.search(s) for s in sources)]


def collect_warnings(stripped: str, html: Optional[str] = None) -> List[GameWarning]:
    warnings = []
    console_calls = len(_CONSOLE_RE.findall(stripped))
    if console_calls:
        warnings.append(GameWarning(
            code="DEBUG_OUTPUT",
            message=f"Found {console_calls} console call(s); remove debug output before publishing",
        ))
    dialogs = sorted(set(_DIALOG_RE.findall(stripped)))
    if dialogs:
        warnings.append(GameWarning(
            code="BLOCKING_DIALOG",
            message=f"Blocking dialog call(s) found: {', '.join(dialogs)}; these are suppressed in the player",
        ))
    if html is not None and not _VIEWPORT_RE.search(html):
        warnings.append(GameWarning(
            code="MISSING_VIEWPORT",
            message='No <meta name="viewport"> tag; the game may render poorly on mobile',
        ))
    return warnings


def _attr_value(m: "re.Match[str]") -> str:
    return unescape(next(g for g in m.groups() if g is not None))


def _strip_page(html: str) -> str:
    """The whole page with HTML and JS comments blanked."""
    return strip_comments(_HTML_COMMENT_RE.sub(lambda m: _blank(m.group(0)), html))


def extract_html_scripts(html: str) -> str:
    """
    Everything a browser may run from an HTML page, joined as one script:
    inline script bodies of any non-data type, on* handler attributes,
    javascript: URLs, and the same again inside srcdoc documents.
    """
    html = _HTML_COMMENT_RE.sub(lambda m: _blank(m.group(0)), html)
    parts = []
    for m in _SCRIPT_BLOCK_RE.finditer(html):
        type_match = _SCRIPT_TYPE_RE.search(m.group(1))
        script_type = type_match.group(1).lower() if type_match else ""
        if script_type not in _DATA_SCRIPT_TYPES and m.group(2).strip():
            parts.append(m.group(2))

    markup = _SCRIPT_BLOCK_RE.sub(" ", html)
    for m in _EVENT_ATTR_RE.finditer(markup):
        parts.append(_attr_value(m))
    for m in _URL_ATTR_RE.finditer(markup):
        value = _attr_value(m)
        if _JS_URL_RE.match(value):
            parts.append(unquote(_JS_URL_RE.sub("", value, count=1)))
    for m in _SRCDOC_ATTR_RE.finditer(markup):
        nested = extract_html_scripts(_attr_value(m))
        if nested:
            parts.append(nested)
    return "\n;\n".join(parts)


def scan_source(source: str, html: Optional[str] = None) -> List[GameWarning]:
    """
    Run the interface and forbidden-API checks over ``source``.

    Raises InvalidGameFile on the first failing check (game object, then
    methods, then forbidden APIs); each check reports everything it found.
    Returns the non-blocking warnings otherwise.

    When ``html`` is given, ``source`` is the script extracted from it and
    the forbidden-API check also runs over the whole page.
    """
    stripped = strip_comments(source)
    blanked = blank_literals(source)

    missing = find_missing_methods(stripped, blanked)
    if missing is None:
        raise InvalidGameFile(
            f"No {GAME_OBJECT} object found; assign it with window.{GAME_OBJECT} = {{...}}",
            sub_reason="MISSING_GAME_OBJECT",
            details={"expected_object": GAME_OBJECT, "required_methods": list(REQUIRED_METHODS)},
        )
    if missing:
        raise InvalidGameFile(
            f"{GAME_OBJECT} is missing required methods: {', '.join(missing)}",
            sub_reason="MISSING_METHOD",
            details={"missing_methods": missing},
        )

    found = find_forbidden_apis(stripped) if html is None else find_forbidden_apis(stripped, _strip_page(html))
    if found:
        raise InvalidGameFile(
            f"Forbidden APIs used: {', '.join(found)}",
            sub_reason="FORBIDDEN_API",
            details={"found_apis": found},
        )

    return collect_warnings(stripped, html)


def scan_artifact(artifact: Artifact, warnings: List[GameWarning]) -> None:
    if artifact.text is None:
        artifact.text = decode_text(artifact.data, "Script file" if artifact.kind == KIND_SCRIPT else "HTML file")

    if artifact.kind == KIND_HTML:
        warnings.extend(scan_source(extract_html_scripts(artifact.text), html=artifact.text))
    else:
        warnings.extend(scan_source(artifact.text))
    logger.debug(f"Source scan passed for {artifact.filename}")
