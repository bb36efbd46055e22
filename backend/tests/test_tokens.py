import itertools
import pytest

from errors import TokenGenerationExhausted
from tokens import TOKEN_ALPHABET, TOKEN_LENGTH, MAX_TOKEN_ATTEMPTS, generate_token, first_unique

def test_generated_token_shape():
    for _ in range(50):
        t = generate_token()
        assert len(t) == TOKEN_LENGTH == 12
        assert set(t) <= set(TOKEN_ALPHABET)
    assert len(TOKEN_ALPHABET) == 62

def test_generated_tokens_differ():
    tokens = {generate_token() for _ in range(1000)}
    assert len(tokens) == 1000

def test_first_unique_skips_taken_candidates():
    candidates = iter(["AAA", "BBB", "CCC"])
    taken = {"AAA", "BBB"}
    assert first_unique(lambda: next(candidates), taken.__contains__) == "CCC"

def test_first_unique_gives_up_after_budget():
    calls = itertools.count()
    def gen():
        next(calls)
        return "SAME"
    with pytest.raises(TokenGenerationExhausted):
        first_unique(gen, lambda t: True)
    assert next(calls) == MAX_TOKEN_ATTEMPTS

def test_first_unique_custom_budget():
    seen = []
    def gen():
        seen.append(1)
        return "X"
    with pytest.raises(TokenGenerationExhausted):
        first_unique(gen, lambda t: True, max_attempts=3)
    assert len(seen) == 3
