from __future__ import annotations

import pytest

from default_config.src.metrics import REGISTRY
from default_config.src.password import (
    DIGITS,
    LOWERCASE,
    SYMBOLS,
    UPPERCASE,
    AdminPasswordGenerator,
)


def _fallback_count() -> float:
    return REGISTRY.get_sample_value("default_config_password_rng_fallbacks_total") or 0.0


@pytest.mark.parametrize("length", [4, 5, 14, 20, 64])
def test_password_has_requested_length_and_all_classes(length: int) -> None:
    password = AdminPasswordGenerator().generate_password(length)

    assert len(password) == length
    assert any(c in LOWERCASE for c in password)
    assert any(c in UPPERCASE for c in password)
    assert any(c in DIGITS for c in password)
    assert any(c in SYMBOLS for c in password)
    assert all(c in LOWERCASE + UPPERCASE + DIGITS + SYMBOLS for c in password)


def test_passwords_differ_between_calls() -> None:
    generator = AdminPasswordGenerator()

    passwords = {generator.generate_password(20) for _ in range(10)}

    assert len(passwords) == 10


@pytest.mark.parametrize("length", [-1, 0, 3])
def test_rejects_lengths_that_cannot_hold_every_class(length: int) -> None:
    with pytest.raises(ValueError, match="at least 4"):
        AdminPasswordGenerator().generate_password(length)


def test_shuffle_moves_mandatory_characters() -> None:
    # randbelow always returning 0 picks the first character of each class and
    # swaps every position with index 0 during the shuffle.
    generator = AdminPasswordGenerator(randbelow=lambda upper: 0)

    password = generator.generate_password(6)

    assert sorted(password) == sorted("aA0!aa")
    assert password != "aA0!aa"


def test_falls_back_to_first_class_character_when_rng_fails() -> None:
    def broken_randbelow(upper: int) -> int:
        raise OSError("no entropy")

    before = _fallback_count()

    password = AdminPasswordGenerator(randbelow=broken_randbelow).generate_password(8)

    assert password == "aA0!aaaa"
    # 8 characters picked plus 7 skipped shuffle swaps.
    assert _fallback_count() - before == 15


def test_rng_fallback_is_logged(caplog: pytest.LogCaptureFixture) -> None:
    def broken_randbelow(upper: int) -> int:
        raise OSError("no entropy")

    with caplog.at_level("WARNING"):
        AdminPasswordGenerator(randbelow=broken_randbelow).generate_password(4)

    assert "reduced entropy" in caplog.text
