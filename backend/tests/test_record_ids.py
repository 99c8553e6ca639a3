import re

from backend.app.record_ids import LocalRef, RemoteRef, is_temp_id, new_temp_id, parse_ref, ref_of


def test_new_temp_id_format():
    ref = new_temp_id(1_700_000_000_000)
    assert isinstance(ref, LocalRef)
    assert re.fullmatch(r"temp_1700000000000_[0-9a-z]{9}", ref.value)


def test_temp_ids_are_unique():
    assert len({new_temp_id(1).value for _ in range(200)}) == 200


def test_parse_ref_distinguishes_local_and_remote():
    assert parse_ref("temp_1_abc") == LocalRef("temp_1_abc")
    assert parse_ref(" -Nabc ") == RemoteRef("-Nabc")
    assert parse_ref("") is None
    assert parse_ref(None) is None
    assert is_temp_id("temp_x") and not is_temp_id("-Nabc")


def test_ref_of_honours_temporary_flag():
    assert ref_of({"id": "abc", "is_temporary": True}) == LocalRef("abc")
    assert ref_of({"id": "abc"}) == RemoteRef("abc")
    assert ref_of("not a record") is None
