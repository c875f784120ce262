"""
Tests: versioned JSON records (tagging, legacy upgrade chain, bad input).
"""

import json

import pytest

from rfp_platform.utils.json_records import VERSION_KEY, dump_record, load_record, strip_version


def _rename(old, new):
    def step(record):
        record[new] = record.pop(old, None)
        return record
    return step


UPGRADERS = {0: _rename("a", "b"), 1: _rename("b", "c")}


@pytest.mark.unit
class TestJsonRecords:
    def test_dump_tags_version(self):
        raw = dump_record({"x": 1}, 3)
        assert json.loads(raw) == {"x": 1, VERSION_KEY: 3}

    def test_dump_does_not_mutate_payload(self):
        payload = {"x": 1}
        dump_record(payload, 1)
        assert payload == {"x": 1}

    def test_untagged_record_runs_full_chain(self):
        record = load_record('{"a": 5}', current_version=2, upgraders=UPGRADERS)
        assert record == {"c": 5, VERSION_KEY: 2}

    def test_partial_chain(self):
        record = load_record(dump_record({"b": 5}, 1), current_version=2, upgraders=UPGRADERS)
        assert strip_version(record) == {"c": 5}

    def test_newer_record_left_alone(self):
        record = load_record(dump_record({"z": 1}, 9), current_version=2, upgraders=UPGRADERS)
        assert record[VERSION_KEY] == 9
        assert record["z"] == 1

    def test_missing_upgrader_only_bumps_version(self):
        assert load_record("{}", current_version=2) == {VERSION_KEY: 2}

    @pytest.mark.parametrize("raw", [None, "", "{not json", "[1, 2]", "42"])
    def test_bad_input_yields_default(self, raw):
        assert load_record(raw, current_version=1, default={"d": True}) == {"d": True}

    def test_dict_input_is_copied(self):
        source = {"a": 1}
        record = load_record(source, current_version=1, upgraders=UPGRADERS)
        assert record == {"b": 1, VERSION_KEY: 1}
        assert source == {"a": 1}
