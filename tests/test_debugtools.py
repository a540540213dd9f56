from modmqttd.debugtools import registers_to_str


def test_values_rendered_in_hex():
    assert registers_to_str([0x1F, 0x2]) == "[1f][2]"


def test_empty_list():
    assert registers_to_str([]) == ""


def test_long_list_is_truncated():
    data = list(range(12))
    text = registers_to_str(data)
    assert text.count("[") == 10
    assert text.endswith(f"(… and {len(data) - 10} more)")


def test_short_list_has_no_suffix():
    text = registers_to_str([1, 2, 3])
    assert "more" not in text
    assert text.count("[") == 3