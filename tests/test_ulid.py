import pytest

from medbook.shared.ulid import generate_ulid, is_ulid


def test_generated_ids_are_valid():
    value = generate_ulid()
    assert len(value) == 26
    assert is_ulid(value)
    assert is_ulid(value.lower())


@pytest.mark.parametrize("value", ["", "not-an-id", "01ARZ3NDEKTSV4RRFFQ69G5FA", "01ARZ3NDEKTSV4RRFFQ69G5FAVX"])
def test_malformed_ids_are_rejected(value):
    assert not is_ulid(value)
