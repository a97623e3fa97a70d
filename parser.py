from __future__ import annotations
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Union

from errors import BrownParseError
from lexer import Lexer, Token


MAX_U32 = 0xFFFFFFFF


@dataclass
class SourceLocation:
    file: str
    line: int
    column: int
    statement: str


class Expression:
    pass


@dataclass
class Literal(Expression):
    value: int


@dataclass
class Var(Expression):
    name: str


@dataclass
class VarAddress(Expression):
    name: str


@dataclass
class Deref(Expression):
    address: Expression


@dataclass
class DerefByte(Expression):
    address: Expression


@dataclass
class BinaryOp(Expression):
    op: str
    left: Expression
    right: Expression


@dataclass
class FunCall(Expression):
    name: str
    args: List[Expression]


@dataclass
class VarTarget:
    name: str


@dataclass
class AddrTarget:
    address: Expression


@dataclass
class ByteAddrTarget:
    address: Expression


AssignTarget = Union[VarTarget, AddrTarget, ByteAddrTarget]


class Statement:
    pass


Block = List[Statement]


@dataclass
class Assignment(Statement):
    target: AssignTarget
    expression: Expression
    location: Optional[SourceLocation] = field(default=None, compare=False, repr=False)


@dataclass
class ForStatement(Statement):
    counter: str
    start: Expression
    end: Expression
    body: Block
    location: Optional[SourceLocation] = field(default=None, compare=False, repr=False)


@dataclass
class WhileStatement(Statement):
    condition: Expression
    body: Block
    location: Optional[SourceLocation] = field(default=None, compare=False, repr=False)


@dataclass
class IfStatement(Statement):
    condition: Expression
    then_block: Block
    else_block: Optional[Block]
    location: Optional[SourceLocation] = field(default=None, compare=False, repr=False)


@dataclass
class GotoStatement(Statement):
    label: str
    location: Optional[SourceLocation] = field(default=None, compare=False, repr=False)


@dataclass
class LabelStatement(Statement):
    name: str
    location: Optional[SourceLocation] = field(default=None, compare=False, repr=False)


@dataclass
class FuncDef(Statement):
    name: str
    params: List[str]
    body: Block
    preserve: bool = False
    location: Optional[SourceLocation] = field(default=None, compare=False, repr=False)


@dataclass
class ExpressionStatement(Statement):
    # Always a FunCall; the parser rejects any other bare expression.
    expression: Expression
    location: Optional[SourceLocation] = field(default=None, compare=False, repr=False)


@dataclass
class DataLabel:
    name: str


@dataclass
class DataBytes:
    data: bytes


DataDef = Union[DataLabel, DataBytes]


@dataclass
class SourceFile:
    data: List[DataDef]
    code: Block


# Lowest precedence first; every level is left-associative.
BINARY_PRECEDENCE = [
    {"PIPE"},
    {"CARET"},
    {"AMP"},
    {"EQ", "NE"},
    {"LT", "GT", "LE", "GE"},
    {"SHL", "SHR"},
    {"PLUS", "MINUS"},
    {"STAR", "SLASH", "PERCENT"},
]

BYTE_DEREF_PREFIX = "b"


def parse_source(text: str, filename: str) -> SourceFile:
    tokens = Lexer(text, filename).tokenize()
    return Parser(tokens, filename, text.splitlines()).parse()


class Parser:
    def __init__(self, tokens: List[Token], filename: str, source_lines: List[str]):
        self.tokens = tokens
        self.filename = filename
        self.source_lines = source_lines
        self.index = 0

    def parse(self) -> SourceFile:
        self._consume_newlines()
        data: List[DataDef] = []
        if self._peek().type == "DATA":
            data = self._parse_data_section()
        code: Block = self._parse_statements(stop_tokens={"EOF"})
        self._consume("EOF")
        return SourceFile(data=data, code=code)

    # ---- data section ----

    def _parse_data_section(self) -> List[DataDef]:
        self._consume("DATA")
        items: List[DataDef] = []
        while self._peek().type != "END":
            token = self._peek()
            if token.type == "NEWLINE":
                self.index += 1
            elif token.type == "IDENT" and self._peek_next().type == "COLON":
                self.index += 2
                items.append(DataLabel(name=token.value))
            elif token.type == "STRING":
                self.index += 1
                items.append(DataBytes(data=token.value.encode("utf-8")))
            elif token.type == "NUMBER":
                self.index += 1
                value = int(token.value)
                if value > 0xFF:
                    raise self._error(f"Byte value {value} out of range (use 'word')", token)
                items.append(DataBytes(data=bytes([value])))
            elif token.type == "WORD":
                self.index += 1
                number = self._consume("NUMBER")
                items.append(DataBytes(data=self._u32(number).to_bytes(4, "big")))
            else:
                raise self._error(f"Unexpected token {token.type} in data section", token)
        self._consume("END")
        self._expect_line_end(stop_tokens={"EOF"})
        return items

    # ---- statements ----

    def _parse_statements(self, stop_tokens: Iterable[str]) -> Block:
        stop_tokens = set(stop_tokens)
        statements: Block = []
        while self._peek().type not in stop_tokens:
            if self._match("NEWLINE"):
                continue
            if self._peek().type == "EOF":
                raise self._error("Unexpected end of file, missing 'end'", self._peek())
            statements.append(self._parse_statement())
            self._expect_line_end(stop_tokens)
        return statements

    def _parse_statement(self) -> Statement:
        token = self._peek()
        if token.type == "IF":
            return self._parse_if()
        if token.type == "WHILE":
            return self._parse_while()
        if token.type == "FOR":
            return self._parse_for()
        if token.type == "FUN":
            return self._parse_func()
        if token.type == "GOTO":
            self._consume("GOTO")
            label = self._consume("IDENT")
            return GotoStatement(label=label.value, location=self._location_from_token(token))
        if token.type == "IDENT" and self._peek_next().type == "COLON":
            self.index += 2
            return LabelStatement(name=token.value, location=self._location_from_token(token))

        expr = self._parse_expression()
        if self._match("ARROW"):
            target = self._parse_assign_target()
            return Assignment(target=target, expression=expr, location=self._location_from_token(token))
        if isinstance(expr, FunCall):
            return ExpressionStatement(expression=expr, location=self._location_from_token(token))
        raise self._error("Only function calls may be used as statements", token)

    def _parse_assign_target(self) -> AssignTarget:
        token = self._peek()
        if token.type == "LBRACKET":
            return AddrTarget(address=self._parse_bracketed())
        if self._is_byte_deref_start():
            self._consume("IDENT")
            return ByteAddrTarget(address=self._parse_bracketed())
        name = self._consume("IDENT")
        return VarTarget(name=name.value)

    def _parse_if(self) -> IfStatement:
        keyword = self._consume("IF")
        condition = self._parse_expression()
        then_block = self._parse_statements(stop_tokens={"ELSE", "END"})
        else_block: Optional[Block] = None
        if self._match("ELSE"):
            else_block = self._parse_statements(stop_tokens={"END"})
        self._consume("END")
        return IfStatement(
            condition=condition,
            then_block=then_block,
            else_block=else_block,
            location=self._location_from_token(keyword),
        )

    def _parse_while(self) -> WhileStatement:
        keyword = self._consume("WHILE")
        condition = self._parse_expression()
        body = self._parse_statements(stop_tokens={"END"})
        self._consume("END")
        return WhileStatement(condition=condition, body=body, location=self._location_from_token(keyword))

    def _parse_for(self) -> ForStatement:
        keyword = self._consume("FOR")
        counter = self._consume("IDENT")
        self._consume("FROM")
        start = self._parse_expression()
        self._consume("TO")
        end = self._parse_expression()
        body = self._parse_statements(stop_tokens={"END"})
        self._consume("END")
        return ForStatement(
            counter=counter.value,
            start=start,
            end=end,
            body=body,
            location=self._location_from_token(keyword),
        )

    def _parse_func(self) -> FuncDef:
        keyword = self._consume("FUN")
        name_token = self._consume("IDENT")
        self._consume("LPAREN")
        params: List[str] = []
        if self._peek().type != "RPAREN":
            while True:
                param = self._consume("IDENT")
                if param.value in params:
                    raise self._error(f"Duplicate parameter '{param.value}'", param)
                params.append(param.value)
                if not self._match("COMMA"):
                    break
        self._consume("RPAREN")
        preserve = self._match("PRESERVE")
        body = self._parse_statements(stop_tokens={"END"})
        self._consume("END")
        return FuncDef(
            name=name_token.value,
            params=params,
            body=body,
            preserve=preserve,
            location=self._location_from_token(keyword),
        )

    # ---- expressions ----

    def _parse_expression(self, level: int = 0) -> Expression:
        if level == len(BINARY_PRECEDENCE):
            return self._parse_primary()
        operators = BINARY_PRECEDENCE[level]
        left = self._parse_expression(level + 1)
        while self._peek().type in operators:
            op = self._peek().value
            self.index += 1
            right = self._parse_expression(level + 1)
            left = BinaryOp(op=op, left=left, right=right)
        return left

    def _parse_primary(self) -> Expression:
        token = self._peek()
        if token.type == "NUMBER":
            self.index += 1
            return Literal(value=self._u32(token))
        if token.type == "AMP":
            self.index += 1
            name = self._consume("IDENT")
            return VarAddress(name=name.value)
        if token.type == "LBRACKET":
            return Deref(address=self._parse_bracketed())
        if self._is_byte_deref_start():
            self.index += 1
            return DerefByte(address=self._parse_bracketed())
        if token.type == "IDENT":
            self.index += 1
            if self._match("LPAREN"):
                args: List[Expression] = []
                if self._peek().type != "RPAREN":
                    while True:
                        args.append(self._parse_expression())
                        if not self._match("COMMA"):
                            break
                self._consume("RPAREN")
                return FunCall(name=token.value, args=args)
            return Var(name=token.value)
        if token.type == "LPAREN":
            self.index += 1
            expr = self._parse_expression()
            self._consume("RPAREN")
            return expr
        raise self._error(f"Unexpected token {token.type} in expression", token)

    def _parse_bracketed(self) -> Expression:
        self._consume("LBRACKET")
        expr = self._parse_expression()
        self._consume("RBRACKET")
        return expr

    def _is_byte_deref_start(self) -> bool:
        token = self._peek()
        return (
            token.type == "IDENT"
            and token.value == BYTE_DEREF_PREFIX
            and self._peek_next().type == "LBRACKET"
        )

    # ---- helpers ----

    def _u32(self, token: Token) -> int:
        value = int(token.value)
        if value > MAX_U32:
            raise self._error(f"Number {value} does not fit in 32 bits", token)
        return value

    def _expect_line_end(self, stop_tokens: Iterable[str]) -> None:
        token = self._peek()
        if token.type == "NEWLINE" or token.type == "EOF" or token.type in stop_tokens:
            return
        raise self._error(f"Expected end of line but found {token.type}", token)

    def _consume(self, token_type: str) -> Token:
        token = self._peek()
        if token.type != token_type:
            raise self._error(f"Expected token {token_type} but found {token.type}", token)
        self.index += 1
        return token

    def _match(self, token_type: str) -> bool:
        if self._peek().type == token_type:
            self.index += 1
            return True
        return False

    def _consume_newlines(self) -> None:
        while self._match("NEWLINE"):
            continue

    def _peek(self) -> Token:
        return self.tokens[self.index]

    def _peek_next(self) -> Token:
        if self.index + 1 >= len(self.tokens):
            return self.tokens[-1]
        return self.tokens[self.index + 1]

    def _error(self, message: str, token: Token) -> BrownParseError:
        return BrownParseError(f"{message} at {self.filename}:{token.line}:{token.column}")

    def _location_from_token(self, token: Token) -> SourceLocation:
        line_index = token.line - 1
        statement = ""
        if 0 <= line_index < len(self.source_lines):
            statement = self.source_lines[line_index].strip()
        return SourceLocation(file=self.filename, line=token.line, column=token.column, statement=statement)
