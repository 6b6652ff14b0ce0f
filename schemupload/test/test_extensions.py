import pytest

from schemupload.common.extensions import AllowedExtensions, DEFAULT_EXTENSIONS


def test_defaults():
    allowed = AllowedExtensions()
    assert list(allowed) == sorted(DEFAULT_EXTENSIONS)
    assert allowed.matches('house.schematic')
    assert allowed.matches('house.litematic')
    assert not allowed.matches('house.nbt')


def test_leading_dot_is_added():
    allowed = AllowedExtensions(['schem', ' .nbt '])
    assert '.schem' in allowed
    assert '.nbt' in allowed
    assert len(allowed) == 2


def test_match_is_case_sensitive():
    allowed = AllowedExtensions(['.schem'])
    assert allowed.matches('a.schem')
    assert not allowed.matches('a.Schem')


def test_empty_set_is_rejected():
    with pytest.raises(ValueError):
        AllowedExtensions(['', '  '])


def test_immutable_and_hashable():
    allowed = AllowedExtensions(['.schem'])
    with pytest.raises(AttributeError):
        allowed._extensions = frozenset()
    assert allowed == AllowedExtensions(['schem'])
    assert hash(allowed) == hash(AllowedExtensions(['.schem']))
