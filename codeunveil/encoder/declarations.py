"""Find the names a program declares, and the names that must not be renamed."""

import re

from codeunveil.core.languages import LUA, PYTHON, get_profile
from codeunveil.core.lexer import IDENTIFIER, STRING, SYMBOL, Token, identifier_tokens, tokenize
from codeunveil.encoder.dialects import HELPER_PREFIX

_NEVER_RENAMED = frozenset({"self", "cls", "this", "arguments", "_ENV"})
_EMBEDDED_NAME = re.compile(r"[A-Za-z_$][\w$]*")


def _parameters(tokens: list[Token], open_index: int) -> list[str]:
    """Names at parameter positions of the list opened at ``open_index``.

    Default values, annotations and nested destructuring patterns are skipped.
    """
    names = []
    depth = 0
    expect = True
    for index in range(open_index, len(tokens)):
        token = tokens[index]
        if token.kind == SYMBOL:
            if token.text in "([{":
                depth += 1
            elif token.text in ")]}":
                depth -= 1
                if depth == 0:
                    break
            elif depth == 1 and token.text == ",":
                expect = True
                continue
            if depth == 1 and token.text in "*.":
                continue
            if index != open_index:
                expect = False
            continue
        if depth == 1 and expect and token.kind == IDENTIFIER:
            names.append(token.text)
        expect = False
    return names


def _next_symbol(tokens: list[Token], start: int, text: str, limit: int = 64) -> int:
    for index in range(start, min(len(tokens), start + limit)):
        if tokens[index].kind == SYMBOL and tokens[index].text == text:
            return index
    return -1


def _name_list(tokens: list[Token], index: int, stop_words: tuple[str, ...]) -> list[str]:
    """Comma-separated identifiers starting at ``index`` (``a, b, c in``)."""
    names = []
    while index < len(tokens):
        token = tokens[index]
        if token.kind != IDENTIFIER or token.text in stop_words:
            break
        names.append(token.text)
        if index + 1 < len(tokens) and tokens[index + 1].text == ",":
            index += 2
        else:
            break
    return names


def _lua_declarations(tokens: list[Token]) -> list[str]:
    names = []
    for index, token in enumerate(tokens):
        if token.kind != IDENTIFIER:
            continue
        if token.text == "local":
            names.extend(_name_list(tokens, index + 1, ("function",)))
        elif token.text == "function":
            following = tokens[index + 1] if index + 1 < len(tokens) else None
            if following is not None and following.kind == IDENTIFIER:
                after = tokens[index + 2] if index + 2 < len(tokens) else None
                if after is not None and after.text == "(":
                    names.append(following.text)
            paren = _next_symbol(tokens, index + 1, "(", limit=8)
            if paren != -1:
                names.extend(_parameters(tokens, paren))
        elif token.text == "for":
            names.extend(_name_list(tokens, index + 1, ("in",)))
    return names


def _arrow_at(tokens: list[Token], index: int) -> bool:
    token = tokens[index]
    following = tokens[index + 1] if index + 1 < len(tokens) else None
    return token.text == "=" and following is not None and following.text == ">" and following.start == token.end


def _javascript_declarations(code: str, tokens: list[Token]) -> list[str]:
    names = []
    for index, token in enumerate(tokens):
        if token.kind == IDENTIFIER and token.text in ("var", "let", "const"):
            names.extend(_javascript_declarators(code, tokens, index + 1))
        elif token.kind == IDENTIFIER and token.text == "function":
            following = tokens[index + 1] if index + 1 < len(tokens) else None
            if following is not None and following.kind == IDENTIFIER:
                names.append(following.text)
            paren = _next_symbol(tokens, index + 1, "(", limit=4)
            if paren != -1:
                names.extend(_parameters(tokens, paren))
        elif token.kind == IDENTIFIER and token.text == "catch":
            if index + 2 < len(tokens) and tokens[index + 1].text == "(" and tokens[index + 2].kind == IDENTIFIER:
                names.append(tokens[index + 2].text)
        elif token.kind == SYMBOL and _arrow_at(tokens, index) and index > 0:
            previous = tokens[index - 1]
            if previous.kind == IDENTIFIER:
                if index < 2 or tokens[index - 2].text != ".":
                    names.append(previous.text)
            elif previous.text == ")":
                opener = _opening_paren(tokens, index - 1)
                if opener != -1:
                    names.extend(_parameters(tokens, opener))
    return names


def _javascript_declarators(code: str, tokens: list[Token], index: int) -> list[str]:
    """Names bound by one ``var``/``let``/``const`` statement."""
    names = []
    depth = 0
    expect = True
    previous = None
    while index < len(tokens):
        token = tokens[index]
        if previous is not None and depth == 0 and previous.text != "," and "\n" in code[previous.end:token.start]:
            break
        if token.kind == SYMBOL:
            if token.text in "([{":
                depth += 1
            elif token.text in ")]}":
                depth -= 1
                if depth < 0:
                    break
            elif token.text == ";" and depth == 0:
                break
            elif token.text == "," and depth == 0:
                expect = True
                previous = token
                index += 1
                continue
        elif token.kind == IDENTIFIER and depth == 0:
            if token.text in ("of", "in"):
                break
            if expect:
                names.append(token.text)
        expect = False
        previous = token
        index += 1
    return names


def _opening_paren(tokens: list[Token], close_index: int) -> int:
    depth = 0
    for index in range(close_index, -1, -1):
        text = tokens[index].text
        if tokens[index].kind != SYMBOL:
            continue
        if text == ")":
            depth += 1
        elif text == "(":
            depth -= 1
            if depth == 0:
                return index
    return -1


def _starts_line(code: str, token: Token) -> bool:
    line_start = code.rfind("\n", 0, token.start) + 1
    return not code[line_start:token.start].strip()


def _python_declarations(code: str, tokens: list[Token]) -> list[str]:
    names = []
    for index, token in enumerate(tokens):
        if token.kind != IDENTIFIER:
            continue
        following = tokens[index + 1] if index + 1 < len(tokens) else None
        if token.text == "def" and following is not None and following.kind == IDENTIFIER:
            names.append(following.text)
            paren = _next_symbol(tokens, index + 2, "(", limit=2)
            if paren != -1:
                names.extend(_parameters(tokens, paren))
        elif token.text == "lambda":
            names.extend(_name_list(tokens, index + 1, ()))
        elif token.text == "for":
            start = index + 1
            if following is not None and following.text == "(":
                start += 1
            names.extend(_name_list(tokens, start, ("in",)))
        elif token.text == "as" and following is not None and following.kind == IDENTIFIER:
            names.append(following.text)
        elif _starts_line(code, token):
            targets = _name_list(tokens, index, ())
            end = index + 2 * len(targets) - 1
            if end < len(tokens):
                operator = tokens[end]
                after = tokens[end + 1] if end + 1 < len(tokens) else None
                if operator.text == "=" and not (after is not None and after.text == "=" and after.start == operator.end):
                    names.extend(targets)
    return names


def _enclosing_brackets(tokens: list[Token]) -> list[str]:
    """The innermost open bracket before each token ("" at top level)."""
    stack = []
    enclosing = []
    for token in tokens:
        enclosing.append(stack[-1] if stack else "")
        if token.kind != SYMBOL:
            continue
        if token.text in "([{":
            stack.append(token.text)
        elif token.text in ")]}" and stack:
            stack.pop()
    return enclosing


def _excluded_names(code: str, tokens: list[Token], language: str) -> set[str]:
    """Names that renaming would break: fields, keywords, imports and embedded references."""
    referenced = {t.start for t in identifier_tokens(code, language)}
    excluded = {t.text for t in tokens if t.kind == IDENTIFIER and t.start not in referenced}

    enclosing = _enclosing_brackets(tokens)
    for index, token in enumerate(tokens):
        if token.kind == STRING:
            embeds = token.text.startswith("`") if language != PYTHON else "f" in token.text.split(token.text[-1])[0].lower()
            if embeds:
                excluded.update(_EMBEDDED_NAME.findall(token.text))
            continue
        if token.kind != IDENTIFIER:
            continue
        previous = tokens[index - 1].text if index > 0 else ""
        following = tokens[index + 1] if index + 1 < len(tokens) else None
        if language == PYTHON:
            if enclosing[index] == "(" and following is not None and following.text == "=":
                after = tokens[index + 2] if index + 2 < len(tokens) else None
                if not (after is not None and after.text == "=" and after.start == following.end):
                    excluded.add(token.text)
        elif language != LUA:
            if enclosing[index] == "{" and previous in ("{", ",") and following is not None and following.text in (",", "}"):
                excluded.add(token.text)

    for line in code.splitlines():
        stripped = line.lstrip()
        if stripped.startswith(("import ", "from ", "export ")) or "require(" in stripped:
            excluded.update(_EMBEDDED_NAME.findall(stripped))
    return excluded


def declared_names(code: str, language: str) -> list[str]:
    """Names declared by ``code`` that can be renamed consistently.

    Returned in first-declaration order so that renaming is reproducible.
    """
    tokens = tokenize(code, language)
    if language == LUA:
        candidates = _lua_declarations(tokens)
    elif language == PYTHON:
        candidates = _python_declarations(code, tokens)
    else:
        candidates = _javascript_declarations(code, tokens)

    profile = get_profile(language)
    excluded = _excluded_names(code, tokens, language)
    names = {}
    for name in candidates:
        if name in excluded or name in _NEVER_RENAMED or profile.is_protected(name):
            continue
        if name.startswith(HELPER_PREFIX) or (name.startswith("__") and name.endswith("__")):
            continue
        names.setdefault(name, None)
    return list(names)
