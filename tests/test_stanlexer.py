import pytest

from cpstan.lexer import lexer


def token_types(code: str) -> list[str]:
    lexer.input(code)
    return [tok.type for tok in lexer]


class TestLexer:
    def test_formula_tokens(self):
        types = token_types("y | weights(w) ~ 1 + x")
        expected_types = [
            "ID", "PIPE", "ID", "LPAREN", "ID", "RPAREN",
            "TILDE", "INT", "PLUS", "ID",
        ]
        assert types == expected_types

    def test_numbers(self):
        lexer.input("3 3.0 2e1 .5")
        toks = [(tok.type, tok.value) for tok in lexer]
        assert toks == [("INT", 3), ("REAL", 3.0), ("REAL", 20.0), ("REAL", 0.5)]

    def test_comparison_tokens(self):
        types = token_types("a <= b >= c == d != e = f < g > h")
        ops = [t for t in types if t != "ID"]
        assert ops == [
            "LESSEQUALS", "GREATEREQUALS", "EQUALS", "NOTEQUALS",
            "ASSIGN", "LESS", "GREATER",
        ]

    def test_logic_tokens(self):
        # single and double symbols are equivalent
        assert token_types("a & b && c") == ["ID", "AMP", "ID", "AMP", "ID"]
        assert token_types("a | b || c") == ["ID", "PIPE", "ID", "PIPE", "ID"]

    def test_backticks(self):
        lexer.input("`cp_1_id[a]` > 0")
        toks = [tok.value for tok in lexer]
        assert toks == ["cp_1_id", "[", "a", "]", ">", 0]

    def test_illegal_character(self):
        with pytest.raises(SyntaxError, match="Illegal character"):
            token_types("x @ y")
