"""Tests for query normalization and synonym expansion."""

from assistly.normalizer import STOP_WORDS, expand_with_synonyms, extract_key_terms, normalize_query


class TestNormalizeQuery:

    def test_trims_lowercases_and_collapses_whitespace(self):
        assert normalize_query("  How many   PAID leaves?!  ") == "how many paid leaves?"

    def test_punctuation_becomes_space(self):
        """Test punctuation is replaced after whitespace is collapsed."""
        assert normalize_query("Hello, world") == "hello  world"

    def test_non_string_is_empty(self):
        assert normalize_query(None) == ""
        assert normalize_query(123) == ""


class TestExtractKeyTerms:

    def test_drops_stop_words_and_short_tokens(self):
        terms = extract_key_terms("How many paid leaves does an employee get?")

        assert terms == ["many", "paid", "leaves", "employee", "get?"]

    def test_stop_words_never_returned(self):
        terms = extract_key_terms("What should the employee do about the remote policy")

        assert not set(terms) & STOP_WORDS
        assert terms == ["employee", "remote", "policy"]


class TestExpandWithSynonyms:

    def test_synonym_in_query_appends_key(self):
        assert expand_with_synonyms("Can I work from home?") == "can i work from home? remote"

    def test_key_in_query_appends_first_synonym(self):
        assert expand_with_synonyms("What is the leave policy?") == "what is the leave policy? vacation"

    def test_expansion_is_additive(self):
        query = "How do I set up MFA for a client?"

        expanded = expand_with_synonyms(query)

        assert expanded.startswith(query.lower())
        assert expanded == query.lower() + " multi-factor authentication customer"

    def test_no_match_leaves_query_lowercased(self):
        assert expand_with_synonyms("Where is the cafeteria?") == "where is the cafeteria?"
