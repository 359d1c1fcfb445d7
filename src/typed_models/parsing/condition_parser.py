"""Parser for the search condition language.

Grammar (informally)::

    condition : IDENTIFIER (= | != | < | <= | > | >=) value
              | IDENTIFIER [not] like STRING
              | IDENTIFIER ilike STRING
              | IDENTIFIER in ( value, ... )
              | not condition
              | condition and condition
              | condition or condition
              | ( condition )
    value     : INTEGER | FLOAT | STRING | null | true | false
"""

from __future__ import annotations

from typing import Any

import ply.yacc as yacc

from typed_models.conditions import AnyCondition, CompoundCondition, Condition
from typed_models.parsing.condition_lexer import ConditionLexer


class ConditionParser:
    """Parser for search conditions."""

    tokens = ConditionLexer.tokens

    # Operator precedence
    precedence = (
        ("left", "OR"),
        ("left", "AND"),
        ("right", "NOT"),
    )

    def __init__(self) -> None:
        self.lexer = ConditionLexer()
        self.lexer.build()
        self.parser: yacc.LRParser = None  # type: ignore

    def p_condition_comparison(self, p: yacc.YaccProduction) -> None:
        """condition : IDENTIFIER EQ value
                     | IDENTIFIER NEQ value
                     | IDENTIFIER LT value
                     | IDENTIFIER LTE value
                     | IDENTIFIER GT value
                     | IDENTIFIER GTE value"""
        op_map = {"=": "eq", "!=": "neq", "<": "lt", "<=": "lte", ">": "gt", ">=": "gte"}
        p[0] = Condition(field=p[1], operator=op_map[p[2]], value=p[3])

    def p_condition_like(self, p: yacc.YaccProduction) -> None:
        """condition : IDENTIFIER LIKE STRING
                     | IDENTIFIER ILIKE STRING"""
        p[0] = Condition(field=p[1], operator=p[2].lower(), value=p[3])

    def p_condition_not_like(self, p: yacc.YaccProduction) -> None:
        """condition : IDENTIFIER NOT LIKE STRING"""
        p[0] = Condition(field=p[1], operator="like", value=p[4], negate=True)

    def p_condition_in(self, p: yacc.YaccProduction) -> None:
        """condition : IDENTIFIER IN LPAREN value_list RPAREN"""
        p[0] = Condition(field=p[1], operator="in", value=p[4])

    def p_condition_not(self, p: yacc.YaccProduction) -> None:
        """condition : NOT condition"""
        p[0] = ~p[2]

    def p_condition_and(self, p: yacc.YaccProduction) -> None:
        """condition : condition AND condition"""
        p[0] = CompoundCondition(left=p[1], operator="and", right=p[3])

    def p_condition_or(self, p: yacc.YaccProduction) -> None:
        """condition : condition OR condition"""
        p[0] = CompoundCondition(left=p[1], operator="or", right=p[3])

    def p_condition_paren(self, p: yacc.YaccProduction) -> None:
        """condition : LPAREN condition RPAREN"""
        p[0] = p[2]

    def p_value_list_single(self, p: yacc.YaccProduction) -> None:
        """value_list : value"""
        p[0] = [p[1]]

    def p_value_list_multiple(self, p: yacc.YaccProduction) -> None:
        """value_list : value_list COMMA value"""
        p[0] = p[1] + [p[3]]

    def p_value_literal(self, p: yacc.YaccProduction) -> None:
        """value : INTEGER
                 | FLOAT
                 | STRING"""
        p[0] = p[1]

    def p_value_null(self, p: yacc.YaccProduction) -> None:
        """value : NULL"""
        p[0] = None

    def p_value_boolean(self, p: yacc.YaccProduction) -> None:
        """value : TRUE
                 | FALSE"""
        p[0] = p[1].lower() == "true"

    def p_error(self, p: yacc.YaccProduction) -> None:
        if p:
            raise SyntaxError(f"Syntax error at '{p.value}' (position {p.lexpos})")
        else:
            raise SyntaxError("Syntax error at end of input")

    def build(self, **kwargs: Any) -> None:
        """Build the parser."""
        self.parser = yacc.yacc(module=self, start="condition", **kwargs)

    def parse(self, data: str) -> AnyCondition:
        """Parse a condition string."""
        if self.parser is None:
            self.build(debug=False, write_tables=False)

        return self.parser.parse(data, lexer=self.lexer.lexer)
