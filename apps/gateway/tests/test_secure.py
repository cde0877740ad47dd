import timeit

import pytest

from session_gateway.secure import compare


class TestCompare:
    def test_equal(self):
        assert compare("s3cret", "s3cret")

    def test_empty_strings_are_equal(self):
        assert compare("", "")

    @pytest.mark.parametrize("a,b", [
        ("s3cret", "s3cre"),
        ("", "x"),
        ("abc", "abcd"),
        ("key", "key "),
    ])
    def test_unequal_length_is_false(self, a, b):
        assert not compare(a, b)
        assert not compare(b, a)

    @pytest.mark.parametrize("a,b", [
        ("s3cret", "S3cret"),
        ("s3cret", "s3creT"),
        ("aaaa", "aaab"),
    ])
    def test_same_length_mismatch(self, a, b):
        assert not compare(a, b)

    def test_non_ascii(self):
        assert compare("clé", "clé")
        # Same character count, different byte length.
        assert not compare("clé", "cle")


class TestTiming:
    def test_mismatch_position_does_not_change_runtime(self):
        size = 64 * 1024
        secret = "k" * size
        early = "x" + "k" * (size - 1)
        late = "k" * (size - 1) + "x"

        def best(candidate):
            return min(timeit.repeat(lambda: compare(candidate, secret), number=200, repeat=7))

        t_early = best(early)
        t_late = best(late)
        # A short-circuiting comparison would make `late` orders of magnitude slower.
        assert 0.5 < t_late / t_early < 2.0
