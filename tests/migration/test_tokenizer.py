from gym_app.migration.pipeline.tokenizer import (
    decode_value,
    skip_quoted,
    split_tuples,
    split_values,
    tokenize,
)


def test_split_tuples_ignores_parentheses_inside_strings():
    block = "(1, 'a (b)'), (2, 'c), (d')"

    assert split_tuples(block) == ["1, 'a (b)'", "2, 'c), (d'"]


def test_split_values_keeps_commas_inside_quotes():
    assert split_values("1, 'Smith, John', NULL") == ["1", " 'Smith, John'", " NULL"]
    assert split_values("   ") == []


def test_decode_value_handles_null_numbers_and_escapes():
    assert decode_value(" NULL ") is None
    assert decode_value("null") is None
    assert decode_value(" 42 ") == "42"
    assert decode_value("'O\\'Brien'") == "O'Brien"
    assert decode_value("'O''Brien'") == "O'Brien"
    assert decode_value("'line\\nbreak'") == "line\nbreak"
    assert decode_value('"double"') == "double"
    assert decode_value("'NULL'") == "NULL"


def test_tokenize_full_values_block():
    rows = tokenize("(1, 'a;b', NULL),\n(2, 'it''s, (fine)', '')")

    assert rows == [["1", "a;b", None], ["2", "it's, (fine)", ""]]


def test_escaped_quotes_do_not_end_a_string():
    rows = tokenize("('He said \\\"hi\\\", then left', 'x')")

    assert rows == [['He said "hi", then left', "x"]]


def test_unclosed_quote_swallows_rest_of_value():
    text = "'never closed, 3"

    assert skip_quoted(text, 0, "'") == len(text)
    assert tokenize("(1, 'never closed, 3") == [["1", "never closed, 3"]]


def test_nested_function_call_is_kept_as_one_token():
    assert split_values("1, CONCAT('a', 'b'), 2") == ["1", " CONCAT('a', 'b')", " 2"]
