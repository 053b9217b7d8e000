"""
A small SCSS-style stylesheet compiler.

Supports the subset a blog theme needs:

* ``$variables`` (block scoped, with ``!default``) and ``#{}`` interpolation
* nested rules with ``&`` parent references, flattened to plain selectors
* ``@media``/``@supports`` blocks nested inside rules, bubbled to the top
* ``//`` line comments

When compiled with an ``environment`` (e.g. ``{'prefers-color-scheme': 'dark'}``)
media queries are evaluated statically: matching blocks are applied,
root-level custom properties they override replace the base values, and
``var(--name)`` references are substituted with literal values.
"""

import re
import logging

from .errors import StylesheetError

logger = logging.getLogger('Quire.Stylesheet')

VARIABLE = re.compile(r'\$([A-Za-z_][\w-]*)')
INTERPOLATION = re.compile(r'#\{\s*\$([A-Za-z_][\w-]*)\s*\}')
AT_RULE = re.compile(r'^@([\w-]+)\s*(.*)$', re.S)
ROOT_SELECTORS = (':root', 'html')
CONDITIONAL_RULES = ('media', 'supports', 'layer', 'container')
DECLARATION_BLOCKS = ('font-face', 'page', 'counter-style', 'property')
DEFAULT_ENVIRONMENT = {
    'type': 'screen',
    'prefers-color-scheme': 'light',
}
MAX_VAR_DEPTH = 20


class Rule:
    def __init__(self, selectors, declarations=None):
        self.selectors = selectors
        self.declarations = declarations if declarations is not None else []

    @property
    def is_root(self):
        return all(selector in ROOT_SELECTORS for selector in self.selectors)


class Conditional:
    def __init__(self, name, query, children=None):
        self.name = name
        self.query = query
        self.children = children if children is not None else []


class AtBlock:
    """``@font-face`` style blocks, or ``@keyframes`` when ``frames`` is set."""

    def __init__(self, prelude, declarations=None, frames=None):
        self.prelude = prelude
        self.declarations = declarations if declarations is not None else []
        self.frames = frames


class Statement:
    def __init__(self, text):
        self.text = text


# Parsing

def strip_comments(source):
    """Remove ``/* */`` and ``//`` comments outside strings and url()."""
    out = []
    i, length = 0, len(source)
    quote = None
    depth = 0
    while i < length:
        char = source[i]
        if quote:
            out.append(char)
            if char == '\\' and i + 1 < length:
                out.append(source[i + 1])
                i += 2
                continue
            if char == quote:
                quote = None
            i += 1
            continue
        if char in '"\'':
            quote = char
        elif char == '(':
            depth += 1
        elif char == ')':
            depth = max(0, depth - 1)
        elif source.startswith('/*', i):
            end = source.find('*/', i + 2)
            if end == -1:
                raise StylesheetError("unterminated comment")
            i = end + 2
            continue
        elif source.startswith('//', i) and depth == 0:
            end = source.find('\n', i)
            i = length if end == -1 else end
            continue
        out.append(char)
        i += 1
    return ''.join(out)


def split_top_level(text, separator=','):
    """Split on ``separator`` outside parentheses, brackets and strings."""
    parts, current = [], []
    depth = 0
    quote = None
    for char in text:
        if quote:
            if char == quote:
                quote = None
        elif char in '"\'':
            quote = char
        elif char in '([':
            depth += 1
        elif char in ')]':
            depth -= 1
        elif char == separator and depth == 0:
            parts.append(''.join(current))
            current = []
            continue
        current.append(char)
    parts.append(''.join(current))
    return [part.strip() for part in parts if part.strip()]


class _Parser:
    """Recursive descent over blocks, declarations and at-rules."""

    def __init__(self, source):
        self.text = strip_comments(source)
        self.pos = 0

    def parse(self):
        return self.parse_items(top_level=True)

    def _read_chunk(self):
        """Read up to the next ``;``, ``{`` or ``}`` at depth zero."""
        start = self.pos
        depth = 0
        quote = None
        text = self.text
        while self.pos < len(text):
            char = text[self.pos]
            if quote:
                if char == '\\':
                    self.pos += 1
                elif char == quote:
                    quote = None
            elif char in '"\'':
                quote = char
            elif char == '(':
                depth += 1
            elif char == ')':
                depth -= 1
            elif depth == 0 and char in ';{}':
                # '#{' starts an interpolation, not a block
                if char == '{' and self.pos > 0 and text[self.pos - 1] == '#':
                    end = text.find('}', self.pos)
                    if end == -1:
                        raise StylesheetError("unterminated interpolation")
                    self.pos = end + 1
                    continue
                return text[start:self.pos].strip(), char
            self.pos += 1
        return text[start:].strip(), None

    def parse_items(self, top_level=False):
        items = []
        while True:
            chunk, terminator = self._read_chunk()
            if terminator is None:
                if not top_level:
                    raise StylesheetError("unbalanced braces: missing '}'")
                if chunk:
                    items.append(self._statement(chunk))
                return items

            if terminator == '}':
                if top_level:
                    raise StylesheetError("unbalanced braces: unexpected '}'")
                if chunk:
                    items.append(self._statement(chunk))
                self.pos += 1
                return items

            self.pos += 1
            if terminator == ';':
                if chunk:
                    items.append(self._statement(chunk))
                continue

            # terminator == '{'
            if not chunk:
                raise StylesheetError("block without a selector")
            children = self.parse_items()
            if chunk.startswith('@'):
                match = AT_RULE.match(chunk)
                if not match:
                    raise StylesheetError(f"invalid at-rule: {chunk}")
                items.append(('at', match.group(1).lower(), match.group(2).strip(), children))
            else:
                items.append(('rule', chunk, children))

    def _statement(self, chunk):
        if chunk.startswith('$'):
            name, sep, value = chunk[1:].partition(':')
            if not sep:
                raise StylesheetError(f"invalid variable declaration: {chunk}")
            return ('var', name.strip(), value.strip())
        if chunk.startswith('@'):
            match = AT_RULE.match(chunk)
            if not match:
                raise StylesheetError(f"invalid at-rule: {chunk}")
            return ('at', match.group(1).lower(), chunk, None)
        prop, sep, value = chunk.partition(':')
        if not sep or not prop.strip():
            raise StylesheetError(f"invalid declaration: {chunk}")
        return ('decl', prop.strip(), value.strip())


# Compilation

class StylesheetCompiler:
    """Compile parsed stylesheet items into flat CSS nodes."""

    def __init__(self, environment=None):
        self.environment = None
        if environment is not None:
            self.environment = dict(DEFAULT_ENVIRONMENT)
            self.environment.update(environment)

    def compile(self, source):
        items = _Parser(source).parse()
        root = []
        self._compile_items(items, [], {}, root, root, None)
        if self.environment is not None:
            root = self._apply_environment(root)
        return render_nodes(root)

    def _substitute(self, text, scope, plain=True):
        """Replace ``#{$var}`` (and bare ``$var`` when ``plain``) outside strings."""
        def lookup(match):
            name = match.group(1)
            if name not in scope:
                raise StylesheetError(f"undefined variable ${name}")
            return scope[name]

        parts = re.split(r'("(?:[^"\\]|\\.)*"|\'(?:[^\'\\]|\\.)*\')', text)
        for index in range(0, len(parts), 2):
            part = INTERPOLATION.sub(lookup, parts[index])
            if plain:
                part = VARIABLE.sub(lookup, part)
            parts[index] = part
        return ''.join(parts)

    def _combine(self, parents, selector_text, scope):
        children = split_top_level(self._substitute(selector_text, scope, plain=False))
        selectors = []
        if not parents:
            for child in children:
                if '&' in child:
                    raise StylesheetError(f"'&' used outside of a nested rule: {child}")
                selectors.append(' '.join(child.split()))
            return selectors
        for parent in parents:
            for child in children:
                if '&' in child:
                    combined = child.replace('&', parent)
                else:
                    combined = f'{parent} {child}'
                selectors.append(' '.join(combined.split()))
        return selectors

    def _compile_items(self, items, parents, scope, out, root, context):
        scope = dict(scope)
        rule = None
        for item in items:
            kind = item[0]
            if kind == 'var':
                name, value = item[1], item[2]
                default = value.endswith('!default')
                value = value.replace('!default', '').replace('!global', '').strip()
                if default and name in scope:
                    continue
                scope[name] = self._substitute(value, scope)
            elif kind == 'decl':
                if not parents:
                    raise StylesheetError(f"declaration outside of a rule: {item[1]}")
                if rule is None:
                    rule = Rule(parents)
                    out.append(rule)
                rule.declarations.append((self._substitute(item[1], scope, plain=False),
                                          self._substitute(item[2], scope)))
            elif kind == 'rule':
                selectors = self._combine(parents, item[1], scope)
                self._compile_items(item[2], selectors, scope, out, root, context)
            else:
                self._compile_at_rule(item, parents, scope, out, root, context)

    def _compile_at_rule(self, item, parents, scope, out, root, context):
        _, name, prelude, children = item
        if children is None:
            if name in ('use', 'forward', 'mixin', 'include', 'extend'):
                raise StylesheetError(f"@{name} is not supported")
            root.append(Statement(self._substitute(prelude, scope)))
            return

        prelude = self._substitute(prelude, scope)
        if name in CONDITIONAL_RULES:
            if context is not None and context.name == name == 'media':
                queries = [f'{outer} and {inner}'
                           for outer in split_top_level(context.query)
                           for inner in split_top_level(prelude)]
                block = Conditional(name, ', '.join(queries))
                root.append(block)
            else:
                block = Conditional(name, prelude)
                out.append(block)
            self._compile_items(children, parents, scope, block.children, root, block)
        elif name.endswith('keyframes'):
            frames = []
            for child in children:
                if child[0] != 'rule':
                    raise StylesheetError(f"unexpected content in @{name}")
                declarations = [(c[1], self._substitute(c[2], scope)) for c in child[2] if c[0] == 'decl']
                frames.append((' '.join(child[1].split()), declarations))
            root.append(AtBlock(f'@{name} {prelude}', frames=frames))
        else:
            if name not in DECLARATION_BLOCKS:
                logger.debug(f"Treating @{name} as a declaration block")
            declarations = [(c[1], self._substitute(c[2], scope)) for c in children if c[0] == 'decl']
            root.append(AtBlock(f'@{name} {prelude}'.strip(), declarations))

    # Static evaluation

    def _apply_environment(self, nodes):
        table = {}
        base_names = set()
        conditional_names = []

        def collect(nodes, conditional):
            for node in nodes:
                if isinstance(node, Rule) and node.is_root:
                    for prop, value in node.declarations:
                        if prop.startswith('--'):
                            table[prop] = value
                            if conditional:
                                conditional_names.append(prop)
                            else:
                                base_names.add(prop)
                elif isinstance(node, Conditional):
                    if node.name != 'media':
                        collect(node.children, conditional)
                    elif media_matches(node.query, self.environment):
                        collect(node.children, True)

        def emit(nodes, conditional):
            result = []
            for node in nodes:
                if isinstance(node, Rule):
                    declarations = []
                    for prop, value in node.declarations:
                        if prop.startswith('--') and node.is_root:
                            if conditional and (prop in base_names or hoist_into is not None):
                                continue
                            value = table[prop]
                        declarations.append((prop, resolve_vars(value, table)))
                    if node is hoist_into:
                        declarations.extend((prop, resolve_vars(table[prop], table)) for prop in hoisted)
                    if declarations:
                        result.append(Rule(node.selectors, declarations))
                elif isinstance(node, Conditional):
                    if node.name == 'media':
                        if media_matches(node.query, self.environment):
                            result.extend(emit(node.children, True))
                    else:
                        result.append(Conditional(node.name, node.query, emit(node.children, conditional)))
                elif isinstance(node, AtBlock):
                    declarations = [(p, resolve_vars(v, table)) for p, v in node.declarations]
                    frames = None
                    if node.frames is not None:
                        frames = [(s, [(p, resolve_vars(v, table)) for p, v in d]) for s, d in node.frames]
                    result.append(AtBlock(node.prelude, declarations, frames))
                else:
                    result.append(node)
            return result

        collect(nodes, False)
        # Properties only set under a matching query join the first top-level
        # root rule, so the selector structure does not depend on the environment
        hoisted = [prop for prop in dict.fromkeys(conditional_names) if prop not in base_names]
        hoist_into = next((node for node in nodes if isinstance(node, Rule) and node.is_root), None)
        return emit(nodes, False)


def resolve_vars(value, table, depth=0):
    """Substitute ``var(--name[, fallback])`` with values from ``table``."""
    if 'var(' not in value:
        return value
    if depth > MAX_VAR_DEPTH:
        raise StylesheetError(f"custom property cycle while resolving: {value}")

    out = []
    i = 0
    while True:
        start = value.find('var(', i)
        if start == -1:
            out.append(value[i:])
            break
        out.append(value[i:start])
        level, end = 0, start + 3
        while end < len(value):
            if value[end] == '(':
                level += 1
            elif value[end] == ')':
                level -= 1
                if level == 0:
                    break
            end += 1
        if level != 0:
            raise StylesheetError(f"unbalanced parentheses in: {value}")
        inner = value[start + 4:end]
        name, _, fallback = inner.partition(',')
        name = name.strip()
        if name in table:
            out.append(resolve_vars(table[name], table, depth + 1))
        elif fallback.strip():
            out.append(resolve_vars(fallback.strip(), table, depth + 1))
        else:
            out.append(value[start:end + 1])
        i = end + 1
    return ''.join(out)


def _numeric(value):
    match = re.match(r'^\s*(-?\d+(?:\.\d+)?)', str(value))
    return float(match.group(1)) if match else None


def _feature_matches(expression, environment):
    name, sep, expected = expression.partition(':')
    name = name.strip().lower()
    if not sep:
        return bool(environment.get(name))
    expected = expected.strip().lower()

    for prefix, compare in (('min-', lambda a, b: a >= b), ('max-', lambda a, b: a <= b)):
        if name.startswith(prefix):
            actual = _numeric(environment.get(name[len(prefix):], ''))
            bound = _numeric(expected)
            return actual is not None and bound is not None and compare(actual, bound)

    if name not in environment:
        return False
    return str(environment[name]).strip().lower() == expected


def media_matches(query, environment):
    """Evaluate a media query list against a simulated environment."""
    for single in split_top_level(query.lower()):
        negate = False
        if single.startswith('not '):
            negate, single = True, single[4:]
        elif single.startswith('only '):
            single = single[5:]

        matched = True
        for part in re.split(r'\s+and\s+', single.strip()):
            part = part.strip()
            if part.startswith('(') and part.endswith(')'):
                ok = _feature_matches(part[1:-1], environment)
            else:
                ok = part in ('all', environment.get('type', 'screen'))
            if not ok:
                matched = False
                break

        if matched != negate:
            return True
    return False


# Output

def _render_declarations(declarations, indent):
    return ''.join(f'{indent}{prop}: {value};\n' for prop, value in declarations)


def _render_node(node, indent=''):
    inner = indent + '  '
    if isinstance(node, Rule):
        if not node.declarations:
            return ''
        return f"{indent}{', '.join(node.selectors)} {{\n{_render_declarations(node.declarations, inner)}{indent}}}\n"
    if isinstance(node, Conditional):
        body = ''.join(_render_node(child, inner) for child in node.children)
        if not body:
            return ''
        return f'{indent}@{node.name} {node.query} {{\n{body}{indent}}}\n'
    if isinstance(node, AtBlock):
        if node.frames is not None:
            body = ''.join(
                f'{inner}{selector} {{\n{_render_declarations(declarations, inner + "  ")}{inner}}}\n'
                for selector, declarations in node.frames
            )
        else:
            body = _render_declarations(node.declarations, inner)
        return f'{indent}{node.prelude} {{\n{body}{indent}}}\n'
    text = node.text if node.text.endswith(';') else node.text + ';'
    return f'{indent}{text}\n'


def render_nodes(nodes):
    blocks = [_render_node(node) for node in nodes]
    return '\n'.join(block for block in blocks if block)


def compile_stylesheet(source, environment=None, path=None):
    """
    Compile SCSS-style source to plain CSS.

    Args:
        source: Stylesheet source text
        environment: Optional mapping of media features used to evaluate
            ``@media`` blocks statically, e.g. ``{'prefers-color-scheme': 'dark'}``
        path: Source path, only used for error messages

    Returns:
        The compiled CSS text
    """
    try:
        return StylesheetCompiler(environment).compile(source)
    except StylesheetError as e:
        if path and e.path is None:
            raise StylesheetError(e.message, path)
        raise


def compile_stylesheet_file(filepath, environment=None):
    with open(filepath, 'r', encoding='utf-8') as f:
        source = f.read()
    return compile_stylesheet(source, environment, filepath)
