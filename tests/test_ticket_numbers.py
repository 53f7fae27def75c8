import pytest

from redis_store import queue_counter_key, queue_prefix_key
from ticket_numbers import (
    TicketNumberGenerator,
    advance,
    alphabet_from_index,
    alphabet_index,
    format_ticket,
)


@pytest.mark.parametrize(
    "letters,index",
    [("A", 0), ("B", 1), ("Z", 25), ("AA", 26), ("AZ", 51), ("BA", 52), ("ZZ", 701), ("AAA", 702)],
)
def test_alphabet_index_is_bijective_base_26(letters, index):
    assert alphabet_index(letters) == index
    assert alphabet_from_index(index) == letters


def test_alphabet_round_trips_through_zz():
    for index in range(alphabet_index("ZZ") + 1):
        letters = alphabet_from_index(index)
        assert alphabet_index(letters) == index
        assert alphabet_from_index(alphabet_index(letters)) == letters


@pytest.mark.parametrize("bad", ["", "A1", "-", "É"])
def test_alphabet_index_rejects_non_letters(bad):
    with pytest.raises(ValueError):
        alphabet_index(bad)


def test_advance_rotates_only_past_999():
    assert advance("A", 998) == ("A", 998)
    assert advance("A", 999) == ("A", 999)
    assert advance("A", 1000) == ("B", 1)
    assert advance("Z", 1000) == ("AA", 1)
    assert advance("AZ", 1000) == ("BA", 1)


def test_format_pads_to_three_digits():
    assert format_ticket("A", 7) == "A-007"
    assert format_ticket("AB", 123) == "AB-123"


def test_generator_counts_up_per_location(redis_client):
    gen = TicketNumberGenerator(redis_client)
    assert gen.next("loc-1", "A") == "A-001"
    assert gen.next("loc-1", "A") == "A-002"
    assert gen.next("loc-2", "C") == "C-001"


def test_generator_rotates_and_keeps_new_letters(redis_client):
    gen = TicketNumberGenerator(redis_client)
    redis_client.set(queue_counter_key("loc-1"), 999)

    assert gen.next("loc-1", "A") == "B-001"
    assert gen.next("loc-1", "A") == "B-002"
    assert redis_client.get(queue_prefix_key("loc-1")) == "B"


def test_generator_numbers_increase_within_prefix(redis_client):
    gen = TicketNumberGenerator(redis_client)
    redis_client.set(queue_counter_key("loc-1"), 990)
    tickets = [gen.next("loc-1", "A") for _ in range(15)]

    a_numbers = [int(t.split("-")[1]) for t in tickets if t.startswith("A-")]
    b_numbers = [int(t.split("-")[1]) for t in tickets if t.startswith("B-")]
    assert a_numbers == list(range(991, 1000))
    assert b_numbers == list(range(1, 7))
