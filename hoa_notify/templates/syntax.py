"""Translate mustache-style template sources to Jinja2.

Stored templates are written in the Handlebars dialect used by the HOA web
application. Jinja2 compiles them after this translation:

    {{name}}                      -> {{ name }}
    {{{html}}}                    -> {{ html | safe }}
    {{#if x}} a {{else}} b {{/if}} -> {% if x %} a {% else %} b {% endif %}
    {{#unless x}} ... {{/unless}} -> {% if not (x) %} ... {% endif %}
    {{formatDate due_date}}       -> {{ formatDate(due_date) }}
    {{#if (eq status "approved")}} -> {% if eq(status, "approved") %}
    {{! comment }}                -> {# comment #}

Anything already written as Jinja2 (``{% ... %}``, filters, call syntax) is
left untouched.
"""

import re
from typing import Iterable, List

_TAG = re.compile(r"\{\{\{\s*(.+?)\s*\}\}\}|\{\{(?!\{)\s*(.+?)\s*\}\}", re.DOTALL)
_ARG_TOKEN = re.compile(r'"[^"]*"|\'[^\']*\'|\(|\)|[^\s()]+')
_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_JINJA_CALL = re.compile(r"^[A-Za-z_][A-Za-z0-9_.]*\(")


class TemplateSyntaxTranslationError(ValueError):
    """Raised for unbalanced block helpers or malformed subexpressions."""


def to_jinja(source: str, helpers: Iterable[str]) -> str:
    """Rewrite mustache tags in ``source`` to Jinja2 syntax.

    Args:
        source: Template text
        helpers: Names callable as ``{{helper arg1 arg2}}``

    Raises:
        TemplateSyntaxTranslationError: On unbalanced ``#if``/``#unless`` blocks
    """
    helper_names = frozenset(helpers)
    open_blocks: List[str] = []

    def replace(match: "re.Match[str]") -> str:
        triple, expr = match.group(1), match.group(2)
        if triple is not None:
            return "{{ " + _expression(triple, helper_names) + " | safe }}"

        if expr.startswith("!"):
            return "{# " + expr.lstrip("!-").rstrip("-").strip() + " #}"

        if expr.startswith("#"):
            keyword, _, condition = expr[1:].partition(" ")
            if keyword not in ("if", "unless"):
                raise TemplateSyntaxTranslationError(f"Unsupported block helper: #{keyword}")
            if not condition.strip():
                raise TemplateSyntaxTranslationError(f"#{keyword} requires a condition")
            open_blocks.append(keyword)
            condition_jinja = _expression(condition.strip(), helper_names)
            if keyword == "unless":
                return "{% if not (" + condition_jinja + ") %}"
            return "{% if " + condition_jinja + " %}"

        if expr.startswith("/"):
            keyword = expr[1:].strip()
            if not open_blocks or open_blocks[-1] != keyword:
                raise TemplateSyntaxTranslationError(f"Unexpected closing tag /{keyword}")
            open_blocks.pop()
            return "{% endif %}"

        if expr == "else":
            if not open_blocks:
                raise TemplateSyntaxTranslationError("{{else}} outside of a block")
            return "{% else %}"

        return "{{ " + _expression(expr, helper_names) + " }}"

    translated = _TAG.sub(replace, source)
    if open_blocks:
        raise TemplateSyntaxTranslationError(f"Unclosed block helper: #{open_blocks[-1]}")
    return translated


def _expression(expr: str, helpers: frozenset) -> str:
    """Translate one tag body; pass through anything that is already Jinja."""
    if _JINJA_CALL.match(expr):
        return expr

    tokens = _ARG_TOKEN.findall(expr)
    if not tokens:
        return expr

    # "(eq a b)" on its own
    if tokens[0] == "(" and len(tokens) > 1 and tokens[1] in helpers:
        call, consumed = _subexpression(tokens, 0, helpers)
        if consumed == len(tokens):
            return call
        return expr

    if tokens[0] in helpers and len(tokens) > 1 and all(_is_argument(t) for t in tokens[1:]):
        args, position = [], 1
        while position < len(tokens):
            if tokens[position] == "(":
                call, position = _subexpression(tokens, position, helpers)
                args.append(call)
            else:
                args.append(tokens[position])
                position += 1
        return f"{tokens[0]}({', '.join(args)})"

    return expr


def _is_argument(token: str) -> bool:
    if token[:1] in ("\"", "'"):
        return True
    return token in ("(", ")") or not any(ch in token for ch in "|,=[]{}")


def _subexpression(tokens: List[str], start: int, helpers: frozenset):
    """Parse ``( helper arg ... )`` beginning at ``tokens[start]``.

    Returns:
        (jinja call string, index after the closing paren)
    """
    if start + 1 >= len(tokens) or not _IDENTIFIER.match(tokens[start + 1]):
        raise TemplateSyntaxTranslationError("Subexpression must start with a helper name")
    name = tokens[start + 1]
    if name not in helpers:
        raise TemplateSyntaxTranslationError(f"Unknown helper in subexpression: {name}")

    args, position = [], start + 2
    while position < len(tokens):
        token = tokens[position]
        if token == ")":
            return f"{name}({', '.join(args)})", position + 1
        if token == "(":
            call, position = _subexpression(tokens, position, helpers)
            args.append(call)
        else:
            args.append(token)
            position += 1
    raise TemplateSyntaxTranslationError(f"Unclosed subexpression for helper {name}")
