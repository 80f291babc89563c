"""Filter expression language: parsing, type checking and evaluation.

Rules are short boolean expressions over the fields of a torrent, e.g.::

    Label startsWith "permaseed"
    Ratio > 4.0 || SeedingDays >= 15.0
    TrackerName in ["beyond-hd.me", "passthepopcorn.me"] and not HasTag("keep")

An expression is parsed once into a small tree, type checked against the
torrent schema, and turned into a chain of closures. Type errors are reported
when the filter is compiled, so a rule can only fail at evaluation time on
things that depend on the data (division by zero, a dynamic regex, a value of
the wrong type coming from a client adapter).
"""

import re
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from tqm.errors import CompileError, EvalError, TqmError
from tqm.models import FilterConfig, TorrentRecord


BOOL = 'bool'
NUMBER = 'number'
STRING = 'string'
LIST = 'list'


@dataclass(frozen=True)
class EvalContext:
    """Run-wide values a rule may read besides the torrent itself.

    Built by the caller at evaluation time, so free space reflects what earlier
    hard removals in the same run gave back.
    """
    free_space_gb: float = 0.0
    free_space_set: bool = False
    unregistered: Optional[Callable[[TorrentRecord], bool]] = None


EMPTY_CONTEXT = EvalContext()

Evaluator = Callable[[TorrentRecord, EvalContext], object]


# --- Schema -----------------------------------------------------------------

FIELDS: Dict[str, Tuple[str, Evaluator]] = {}


def _register_field(rule_name: str, attr: str, type_: str) -> None:
    def getter(torrent, ctx, attr=attr):
        return getattr(torrent, attr)
    FIELDS[rule_name] = (type_, getter)
    FIELDS[attr] = (type_, getter)


for _rule_name, _attr, _type in (
    ('Hash', 'hash', STRING),
    ('Name', 'name', STRING),
    ('Path', 'path', STRING),
    ('TotalBytes', 'total_bytes', NUMBER),
    ('DownloadedBytes', 'downloaded_bytes', NUMBER),
    ('Downloaded', 'downloaded', BOOL),
    ('Seeding', 'seeding', BOOL),
    ('State', 'state', STRING),
    ('Files', 'files', LIST),
    ('Ratio', 'ratio', NUMBER),
    ('AddedSeconds', 'added_seconds', NUMBER),
    ('AddedHours', 'added_hours', NUMBER),
    ('AddedDays', 'added_days', NUMBER),
    ('SeedingSeconds', 'seeding_seconds', NUMBER),
    ('SeedingHours', 'seeding_hours', NUMBER),
    ('SeedingDays', 'seeding_days', NUMBER),
    ('Label', 'label', STRING),
    ('Tags', 'tags', LIST),
    ('Seeds', 'seeds', NUMBER),
    ('Peers', 'peers', NUMBER),
    ('TrackerName', 'tracker_name', STRING),
    ('TrackerStatus', 'tracker_status', STRING),
):
    _register_field(_rule_name, _attr, _type)

FIELDS['FreeSpaceGB'] = (NUMBER, lambda torrent, ctx: ctx.free_space_gb)
FIELDS['FreeSpaceSet'] = (BOOL, lambda torrent, ctx: ctx.free_space_set)


def _is_unregistered(torrent: TorrentRecord, ctx: EvalContext) -> bool:
    if torrent.is_unregistered():
        return True
    if ctx.unregistered is None:
        return False
    return bool(ctx.unregistered(torrent))


# name -> (accepted types per argument, result type, implementation)
FUNCTIONS: Dict[str, Tuple[Tuple[Tuple[str, ...], ...], str, Callable]] = {
    'HasTag': (((STRING,),), BOOL, lambda torrent, ctx, tag: torrent.has_tag(tag)),
    'IsUnregistered': ((), BOOL, _is_unregistered),
    'FreeSpaceGB': ((), NUMBER, lambda torrent, ctx: ctx.free_space_gb),
    'len': (((STRING, LIST),), NUMBER, lambda torrent, ctx, value: len(value)),
    'lower': (((STRING,),), STRING, lambda torrent, ctx, value: value.lower()),
    'upper': (((STRING,),), STRING, lambda torrent, ctx, value: value.upper()),
}


# --- Lexer ------------------------------------------------------------------

@dataclass(frozen=True)
class Token:
    kind: str   # number, string, name, op, eof
    value: object
    pos: int


_TOKEN_RE = re.compile(r'''
    (?P<ws>\s+)
  | (?P<number>\d+\.\d*|\.\d+|\d+)
  | (?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
  | (?P<name>[A-Za-z_][A-Za-z0-9_]*)
  | (?P<op>\|\||&&|==|!=|<=|>=|[<>!+\-*/%()\[\],])
''', re.VERBOSE)

_ESCAPES = {'n': '\n', 't': '\t', 'r': '\r', '\\': '\\', '"': '"', "'": "'"}


def _unescape(body: str) -> str:
    return re.sub(r'\\(.)', lambda m: _ESCAPES.get(m.group(1), m.group(1)), body)


def tokenize(text: str) -> List[Token]:
    tokens = []
    pos = 0
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if match is None:
            raise CompileError(f"unexpected character {text[pos]!r}", text, pos)

        kind = match.lastgroup
        raw = match.group()
        if kind == 'number':
            value = float(raw) if '.' in raw else int(raw)
            tokens.append(Token('number', value, pos))
        elif kind == 'string':
            tokens.append(Token('string', _unescape(raw[1:-1]), pos))
        elif kind in ('name', 'op'):
            tokens.append(Token(kind, raw, pos))
        pos = match.end()

    tokens.append(Token('eof', None, len(text)))
    return tokens


# --- Parser -----------------------------------------------------------------

@dataclass(frozen=True)
class Literal:
    pos: int
    type: str
    value: object


@dataclass(frozen=True)
class Name:
    pos: int
    name: str


@dataclass(frozen=True)
class ListLiteral:
    pos: int
    items: tuple


@dataclass(frozen=True)
class Unary:
    pos: int
    op: str
    operand: object


@dataclass(frozen=True)
class Binary:
    pos: int
    op: str
    left: object
    right: object


@dataclass(frozen=True)
class Call:
    pos: int
    func: str
    args: tuple


_SYMBOL_OPERATORS = {
    '||': 'or', '&&': 'and',
    '==': '==', '!=': '!=', '<': '<', '<=': '<=', '>': '>', '>=': '>=',
    '+': '+', '-': '-', '*': '*', '/': '/', '%': '%',
}

_WORD_OPERATORS = {
    'or': 'or', 'and': 'and', 'in': 'in',
    'contains': 'contains', 'startsWith': 'startsWith',
    'endsWith': 'endsWith', 'matches': 'matches',
}

_BINDING_POWER = {
    'or': 1,
    'and': 2,
    '==': 3, '!=': 3, '<': 3, '<=': 3, '>': 3, '>=': 3,
    'in': 3, 'not in': 3, 'contains': 3, 'startsWith': 3, 'endsWith': 3, 'matches': 3,
    '+': 4, '-': 4,
    '*': 5, '/': 5, '%': 5,
}

# `not a == b` negates the comparison, `not a and b` only negates `a`
_NOT_OPERAND_POWER = _BINDING_POWER['and']
_NEGATE_OPERAND_POWER = 6

_KEYWORDS = {'true', 'false', 'not'} | set(_WORD_OPERATORS)


class Parser:
    """Precedence-climbing parser producing the node tree of one expression."""

    def __init__(self, text: str):
        self.text = text
        self.tokens = tokenize(text)
        self.index = 0

    def parse(self):
        node = self._expression(0)
        token = self._peek()
        if token.kind != 'eof':
            self._fail(f"unexpected {token.value!r}", token)
        return node

    def _peek(self, offset: int = 0) -> Token:
        return self.tokens[min(self.index + offset, len(self.tokens) - 1)]

    def _advance(self) -> Token:
        token = self._peek()
        self.index += 1
        return token

    def _expect(self, value: str) -> Token:
        token = self._peek()
        if token.kind != 'op' or token.value != value:
            found = 'end of expression' if token.kind == 'eof' else repr(token.value)
            self._fail(f"expected {value!r}, found {found}", token)
        return self._advance()

    def _fail(self, message: str, token: Token):
        raise CompileError(message, self.text, token.pos)

    def _infix_operator(self) -> Tuple[Optional[str], int]:
        token = self._peek()
        if token.kind == 'op' and token.value in _SYMBOL_OPERATORS:
            return _SYMBOL_OPERATORS[token.value], 1
        if token.kind == 'name':
            if token.value == 'not':
                following = self._peek(1)
                if following.kind == 'name' and following.value == 'in':
                    return 'not in', 2
            elif token.value in _WORD_OPERATORS:
                return _WORD_OPERATORS[token.value], 1
        return None, 0

    def _expression(self, min_power: int):
        left = self._prefix()
        while True:
            op, width = self._infix_operator()
            if op is None or _BINDING_POWER[op] <= min_power:
                return left
            token = self._peek()
            self.index += width
            right = self._expression(_BINDING_POWER[op])
            left = Binary(token.pos, op, left, right)

    def _prefix(self):
        token = self._advance()

        if token.kind == 'number':
            return Literal(token.pos, NUMBER, token.value)
        if token.kind == 'string':
            return Literal(token.pos, STRING, token.value)

        if token.kind == 'op':
            if token.value == '!':
                return Unary(token.pos, 'not', self._expression(_NOT_OPERAND_POWER))
            if token.value == '-':
                return Unary(token.pos, 'neg', self._expression(_NEGATE_OPERAND_POWER))
            if token.value == '(':
                node = self._expression(0)
                self._expect(')')
                return node
            if token.value == '[':
                return self._list(token)

        if token.kind == 'name':
            if token.value in ('true', 'false'):
                return Literal(token.pos, BOOL, token.value == 'true')
            if token.value == 'not':
                return Unary(token.pos, 'not', self._expression(_NOT_OPERAND_POWER))
            if token.value in _KEYWORDS:
                self._fail(f"unexpected keyword {token.value!r}", token)
            if self._peek().kind == 'op' and self._peek().value == '(':
                return self._call(token)
            return Name(token.pos, token.value)

        if token.kind == 'eof':
            self._fail("unexpected end of expression", token)
        self._fail(f"unexpected {token.value!r}", token)

    def _arguments(self, closing: str) -> tuple:
        items = []
        if self._peek().kind == 'op' and self._peek().value == closing:
            self._advance()
            return tuple(items)
        while True:
            items.append(self._expression(0))
            if self._peek().kind == 'op' and self._peek().value == ',':
                self._advance()
                continue
            self._expect(closing)
            return tuple(items)

    def _list(self, start: Token) -> ListLiteral:
        return ListLiteral(start.pos, self._arguments(']'))

    def _call(self, name: Token) -> Call:
        self._expect('(')
        return Call(name.pos, name.value, self._arguments(')'))


# --- Compiler ---------------------------------------------------------------

def _divide(left, right):
    if right == 0:
        raise EvalError("division by zero")
    return left / right


def _modulo(left, right):
    if right == 0:
        raise EvalError("modulo by zero")
    return left % right


_ARITHMETIC = {
    '-': lambda a, b: a - b,
    '*': lambda a, b: a * b,
    '/': _divide,
    '%': _modulo,
}

_ORDERING = {
    '<': lambda a, b: a < b,
    '<=': lambda a, b: a <= b,
    '>': lambda a, b: a > b,
    '>=': lambda a, b: a >= b,
}


class Compiler:
    """Type check a node tree and build the evaluator closure for it."""

    def __init__(self, text: str):
        self.text = text

    def _fail(self, message: str, node):
        raise CompileError(message, self.text, node.pos)

    def compile(self, node) -> Tuple[str, Evaluator]:
        if isinstance(node, Literal):
            value = node.value
            return node.type, lambda torrent, ctx: value
        if isinstance(node, Name):
            return self._name(node)
        if isinstance(node, ListLiteral):
            return self._list(node)
        if isinstance(node, Unary):
            return self._unary(node)
        if isinstance(node, Binary):
            return self._binary(node)
        if isinstance(node, Call):
            return self._call(node)
        self._fail(f"unsupported node {type(node).__name__}", node)

    def _name(self, node: Name) -> Tuple[str, Evaluator]:
        if node.name in FIELDS:
            return FIELDS[node.name]
        if node.name in FUNCTIONS:
            self._fail(f"{node.name} is a function, call it as {node.name}()", node)
        self._fail(f"unknown field {node.name!r}", node)

    def _list(self, node: ListLiteral) -> Tuple[str, Evaluator]:
        items = []
        for item in node.items:
            type_, fn = self.compile(item)
            if type_ not in (STRING, NUMBER):
                self._fail(f"list items must be strings or numbers, got {type_}", item)
            items.append(fn)
        return LIST, lambda torrent, ctx: [fn(torrent, ctx) for fn in items]

    def _unary(self, node: Unary) -> Tuple[str, Evaluator]:
        type_, fn = self.compile(node.operand)
        if node.op == 'not':
            if type_ != BOOL:
                self._fail(f"'not' needs a bool operand, got {type_}", node)
            return BOOL, lambda torrent, ctx: not fn(torrent, ctx)
        if type_ != NUMBER:
            self._fail(f"unary '-' needs a number operand, got {type_}", node)
        return NUMBER, lambda torrent, ctx: -fn(torrent, ctx)

    def _binary(self, node: Binary) -> Tuple[str, Evaluator]:
        op = node.op
        left_type, left = self.compile(node.left)
        right_type, right = self.compile(node.right)

        def mismatch():
            self._fail(f"operator {op!r} not defined for {left_type} and {right_type}", node)

        if op in ('and', 'or'):
            if left_type != BOOL or right_type != BOOL:
                mismatch()
            if op == 'and':
                return BOOL, lambda torrent, ctx: left(torrent, ctx) and right(torrent, ctx)
            return BOOL, lambda torrent, ctx: left(torrent, ctx) or right(torrent, ctx)

        if op in ('==', '!='):
            if left_type != right_type or left_type == LIST:
                mismatch()
            if op == '==':
                return BOOL, lambda torrent, ctx: left(torrent, ctx) == right(torrent, ctx)
            return BOOL, lambda torrent, ctx: left(torrent, ctx) != right(torrent, ctx)

        if op in _ORDERING:
            if left_type != right_type or left_type not in (NUMBER, STRING):
                mismatch()
            compare = _ORDERING[op]
            return BOOL, lambda torrent, ctx: compare(left(torrent, ctx), right(torrent, ctx))

        if op == '+':
            if left_type != right_type or left_type not in (NUMBER, STRING):
                mismatch()
            return left_type, lambda torrent, ctx: left(torrent, ctx) + right(torrent, ctx)

        if op in _ARITHMETIC:
            if left_type != NUMBER or right_type != NUMBER:
                mismatch()
            arithmetic = _ARITHMETIC[op]
            return NUMBER, lambda torrent, ctx: arithmetic(left(torrent, ctx), right(torrent, ctx))

        if op in ('in', 'not in'):
            if right_type == LIST and left_type in (STRING, NUMBER):
                pass
            elif right_type == STRING and left_type == STRING:
                pass
            else:
                mismatch()
            if op == 'in':
                return BOOL, lambda torrent, ctx: left(torrent, ctx) in right(torrent, ctx)
            return BOOL, lambda torrent, ctx: left(torrent, ctx) not in right(torrent, ctx)

        if op == 'contains':
            if left_type == STRING and right_type == STRING:
                pass
            elif left_type == LIST and right_type in (STRING, NUMBER):
                pass
            else:
                mismatch()
            return BOOL, lambda torrent, ctx: right(torrent, ctx) in left(torrent, ctx)

        if op in ('startsWith', 'endsWith'):
            if left_type != STRING or right_type != STRING:
                mismatch()
            if op == 'startsWith':
                return BOOL, lambda torrent, ctx: left(torrent, ctx).startswith(right(torrent, ctx))
            return BOOL, lambda torrent, ctx: left(torrent, ctx).endswith(right(torrent, ctx))

        if op == 'matches':
            if left_type != STRING or right_type != STRING:
                mismatch()
            if isinstance(node.right, Literal):
                try:
                    pattern = re.compile(node.right.value)
                except re.error as e:
                    self._fail(f"invalid regular expression {node.right.value!r}: {e}", node.right)
                return BOOL, lambda torrent, ctx: pattern.search(left(torrent, ctx)) is not None
            return BOOL, lambda torrent, ctx: re.search(right(torrent, ctx), left(torrent, ctx)) is not None

        self._fail(f"unknown operator {op!r}", node)

    def _call(self, node: Call) -> Tuple[str, Evaluator]:
        if node.func not in FUNCTIONS:
            self._fail(f"unknown function {node.func!r}", node)

        params, result_type, impl = FUNCTIONS[node.func]
        if len(node.args) != len(params):
            self._fail(f"{node.func}() takes {len(params)} argument(s), got {len(node.args)}", node)

        args = []
        for arg, accepted in zip(node.args, params):
            type_, fn = self.compile(arg)
            if type_ not in accepted:
                self._fail(f"{node.func}() does not accept a {type_} argument", arg)
            args.append(fn)

        return result_type, lambda torrent, ctx: impl(torrent, ctx, *(fn(torrent, ctx) for fn in args))


class Expression:
    """A compiled boolean rule, safe to share between torrents."""

    def __init__(self, source: str, evaluator: Evaluator):
        self.source = source
        self._evaluator = evaluator

    def evaluate(self, torrent: TorrentRecord, context: EvalContext = EMPTY_CONTEXT) -> bool:
        """
        Evaluate the rule for a torrent.

        Raises:
            EvalError: If evaluation fails or does not produce a bool
        """
        try:
            result = self._evaluator(torrent, context)
        except (TypeError, ValueError, AttributeError, re.error, TqmError) as e:
            raise EvalError(f"evaluate {self.source!r}: {e}") from e

        if not isinstance(result, bool):
            raise EvalError(
                f"evaluate {self.source!r}: expected bool result, got {type(result).__name__}"
            )
        return result

    def __repr__(self) -> str:
        return f"Expression({self.source!r})"


def compile_expression(text: str) -> Expression:
    """
    Compile one rule.

    Raises:
        CompileError: If the rule does not parse, does not type check, or is not boolean
    """
    if not isinstance(text, str) or not text.strip():
        raise CompileError(f"empty expression: {text!r}")

    node = Parser(text).parse()
    type_, evaluator = Compiler(text).compile(node)
    if type_ != BOOL:
        raise CompileError(f"expression must evaluate to bool, not {type_}", text)
    return Expression(text, evaluator)


# --- Compiled filters -------------------------------------------------------

@dataclass(frozen=True)
class LabelExpression:
    name: str
    updates: Tuple[Expression, ...]


@dataclass(frozen=True)
class TagExpression:
    name: str
    mode: str
    updates: Tuple[Expression, ...]


@dataclass(frozen=True)
class CompiledExpressionSet:
    """All rules of one filter, compiled."""
    ignores: Tuple[Expression, ...] = ()
    removes: Tuple[Expression, ...] = ()
    labels: Tuple[LabelExpression, ...] = ()
    tags: Tuple[TagExpression, ...] = ()


def _compile_all(section: str, sources: Sequence[str]) -> Tuple[Expression, ...]:
    compiled = []
    for source in sources:
        try:
            compiled.append(compile_expression(source))
        except CompileError as e:
            raise CompileError(f"compile {section} expression: {e}") from e
    return tuple(compiled)


def compile_filter(filter_config: FilterConfig) -> CompiledExpressionSet:
    """
    Compile every rule of a filter.

    A single invalid rule invalidates the whole filter.

    Raises:
        CompileError: Naming the section and the offending rule
    """
    return CompiledExpressionSet(
        ignores=_compile_all('ignore', filter_config.ignore),
        removes=_compile_all('remove', filter_config.remove),
        labels=tuple(
            LabelExpression(rule.name, _compile_all(f"label {rule.name!r}", rule.update))
            for rule in filter_config.label
        ),
        tags=tuple(
            TagExpression(rule.name, rule.mode, _compile_all(f"tag {rule.name!r}", rule.update))
            for rule in filter_config.tag
        ),
    )


def check_any(expressions: Sequence[Expression], torrent: TorrentRecord,
              context: EvalContext = EMPTY_CONTEXT) -> bool:
    """True if any expression is true. Raises EvalError from the first failing one."""
    for expression in expressions:
        if expression.evaluate(torrent, context):
            return True
    return False


def check_all(expressions: Sequence[Expression], torrent: TorrentRecord,
              context: EvalContext = EMPTY_CONTEXT) -> bool:
    """True if every expression is true (vacuously true when empty)."""
    for expression in expressions:
        if not expression.evaluate(torrent, context):
            return False
    return True
