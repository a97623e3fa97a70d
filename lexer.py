from __future__ import annotations
from dataclasses import dataclass
from typing import List

from errors import BrownParseError


@dataclass
class Token:
    type: str
    value: str
    line: int
    column: int


KEYWORDS = {
    "if": "IF",
    "else": "ELSE",
    "end": "END",
    "while": "WHILE",
    "for": "FOR",
    "from": "FROM",
    "to": "TO",
    "fun": "FUN",
    "preserve": "PRESERVE",
    "goto": "GOTO",
    "data": "DATA",
    "word": "WORD",
}

# Longest match first: two-character operators are tried before one-character ones.
OPERATORS = {
    "->": "ARROW",
    "<<": "SHL",
    ">>": "SHR",
    "<=": "LE",
    ">=": "GE",
    "==": "EQ",
    "!=": "NE",
}

SYMBOLS = {
    "(": "LPAREN",
    ")": "RPAREN",
    "[": "LBRACKET",
    "]": "RBRACKET",
    ",": "COMMA",
    ":": "COLON",
    "&": "AMP",
    "|": "PIPE",
    "^": "CARET",
    "+": "PLUS",
    "-": "MINUS",
    "*": "STAR",
    "/": "SLASH",
    "%": "PERCENT",
    "<": "LT",
    ">": "GT",
}

DIGITS = "0123456789"

ESCAPES = {
    "n": "\n",
    "t": "\t",
    "r": "\r",
    "0": "\0",
    "\\": "\\",
    "'": "'",
    '"': '"',
}


class Lexer:
    def __init__(self, text: str, filename: str) -> None:
        self.text = text
        self.filename = filename
        self.index = 0
        self.line = 1
        self.column = 1

    def tokenize(self) -> List[Token]:
        tokens: List[Token] = []
        tokens_append = tokens.append
        _advance = self._advance
        text = self.text
        n = len(text)

        while self.index < n:
            ch: str = text[self.index]
            if ch in " \t\r":
                _advance()
                continue
            # Semicolon acts as a newline-token alias
            if ch == "\n" or ch == ";":
                tokens_append(Token("NEWLINE", "\n", self.line, self.column))
                _advance()
                continue
            if ch == "#":
                self._consume_comment()
                continue
            pair = text[self.index:self.index + 2]
            if pair in OPERATORS:
                tokens_append(Token(OPERATORS[pair], pair, self.line, self.column))
                _advance()
                _advance()
                continue
            if ch in SYMBOLS:
                tokens_append(Token(SYMBOLS[ch], ch, self.line, self.column))
                _advance()
                continue
            if ch == '"':
                tokens_append(self._consume_string())
                continue
            if ch == "'":
                tokens_append(self._consume_char())
                continue
            if ch in DIGITS:
                tokens_append(self._consume_number())
                continue
            if self._is_identifier_start(ch):
                tokens_append(self._consume_identifier())
                continue
            raise BrownParseError(
                f"Unexpected character '{ch}' at {self.filename}:{self.line}:{self.column}"
            )
        tokens_append(Token("EOF", "", self.line, self.column))
        return tokens

    def _consume_comment(self) -> None:
        text = self.text
        n = len(text)
        _advance = self._advance
        while self.index < n and text[self.index] != "\n":
            _advance()

    def _consume_number(self) -> Token:
        line, col = self.line, self.column
        digits = DIGITS
        prefix = self.text[self.index:self.index + 2].lower()
        if prefix in ("0x", "0b"):
            digits = "0123456789abcdefABCDEF" if prefix == "0x" else "01"
            self._advance()
            self._advance()
        chars: List[str] = []
        while not self._eof and (self._peek() in digits or self._peek() == "_"):
            if self._peek() != "_":
                chars.append(self._peek())
            self._advance()
        if not chars:
            raise BrownParseError(f"Expected digits after '{prefix}' at {self.filename}:{line}:{col}")
        if not self._eof and self._is_identifier_part(self._peek()):
            raise BrownParseError(
                f"Invalid character '{self._peek()}' in number at {self.filename}:{self.line}:{self.column}"
            )
        base = {"0x": 16, "0b": 2}.get(prefix, 10)
        return Token("NUMBER", str(int("".join(chars), base)), line, col)

    def _consume_string(self) -> Token:
        line, col = self.line, self.column
        self._advance()  # consume opening quote
        chars: List[str] = []
        while not self._eof:
            ch = self._peek()
            if ch == '"':
                self._advance()
                return Token("STRING", "".join(chars), line, col)
            if ch == "\n":
                break
            chars.append(self._consume_escaped())
        raise BrownParseError(
            f"Unterminated string literal at {self.filename}:{line}:{col}"
        )

    def _consume_char(self) -> Token:
        line, col = self.line, self.column
        self._advance()  # consume opening quote
        if self._eof or self._peek() in "'\n":
            raise BrownParseError(f"Empty character literal at {self.filename}:{line}:{col}")
        ch = self._consume_escaped()
        if self._eof or self._peek() != "'":
            raise BrownParseError(f"Unterminated character literal at {self.filename}:{line}:{col}")
        self._advance()
        return Token("NUMBER", str(ord(ch)), line, col)

    def _consume_escaped(self) -> str:
        ch = self._peek()
        self._advance()
        if ch != "\\":
            return ch
        if self._eof or self._peek() not in ESCAPES:
            raise BrownParseError(
                f"Invalid escape sequence at {self.filename}:{self.line}:{self.column}"
            )
        escaped = ESCAPES[self._peek()]
        self._advance()
        return escaped

    def _consume_identifier(self) -> Token:
        line, col = self.line, self.column
        chars: List[str] = []
        text = self.text
        n = len(text)
        _advance = self._advance
        while self.index < n and self._is_identifier_part(text[self.index]):
            chars.append(text[self.index])
            _advance()
        value = "".join(chars)
        token_type: str = KEYWORDS.get(value, "IDENT")
        return Token(token_type, value, line, col)

    def _is_identifier_start(self, ch: str) -> bool:
        return ch == "_" or ("a" <= ch <= "z") or ("A" <= ch <= "Z")

    def _is_identifier_part(self, ch: str) -> bool:
        # "$" is reserved for internal labels.
        return self._is_identifier_start(ch) or ch in DIGITS

    @property
    def _eof(self) -> bool:
        return self.index >= len(self.text)

    def _peek(self) -> str:
        return self.text[self.index]

    def _advance(self) -> None:
        if self.text[self.index] == "\n":
            self.line += 1
            self.column = 1
        else:
            self.column += 1
        self.index += 1
