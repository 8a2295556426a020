# Copyright (c) 2025 Game Server Manager Contributors
#
# This file is part of Game Server Manager.
#
# Game Server Manager is dual-licensed:
#
# 1. GNU Affero General Public License v3.0 (AGPL-3.0)
#    See LICENSE file for full terms
#
# 2. Commercial License
#    For proprietary use without AGPL requirements
#    Contact: the Game Server Manager maintainers
#
# SPDX-License-Identifier: AGPL-3.0-only OR Commercial

"""Tests for the persisted running-set."""

import json

import pytest

from game_server_manager.running_set import RunningSetStore


@pytest.fixture
def store_path(tmp_path):
    return tmp_path / "last_running_servers.json"


class TestPersistence:
    """Write-through and reload behaviour."""

    def test_mark_started_writes_through(self, store_path):
        store = RunningSetStore(store_path)

        store.mark_started("Valheim")

        assert json.loads(store_path.read_text()) == ["Valheim"]

    def test_mark_stopped_writes_through(self, store_path):
        store = RunningSetStore(store_path)
        store.mark_started("Valheim")
        store.mark_started("Ark")

        store.mark_stopped("Valheim")

        assert json.loads(store_path.read_text()) == ["Ark"]

    def test_mark_stopped_unknown_name_is_harmless(self, store_path):
        store = RunningSetStore(store_path)

        store.mark_stopped("Ghost")

        assert store.names() == set()
        assert json.loads(store_path.read_text()) == []

    @pytest.mark.parametrize(
        "names",
        [set(), {"Valheim"}, {"Ark", "Valheim", "Foo Bar"}],
    )
    def test_round_trip(self, store_path, names):
        writer = RunningSetStore(store_path)
        writer.replace(names)

        reader = RunningSetStore(store_path)

        assert reader.load() == names
        assert reader.names() == names

    def test_order_independent(self, store_path):
        first = RunningSetStore(store_path)
        for name in ["b", "a", "c"]:
            first.mark_started(name)
        content_one = store_path.read_text()

        first.replace(["c", "b", "a"])

        assert store_path.read_text() == content_one

    def test_creates_parent_directory(self, tmp_path):
        store = RunningSetStore(tmp_path / "state" / "nested" / "running.json")

        store.mark_started("Ark")

        assert (tmp_path / "state" / "nested" / "running.json").exists()

    def test_no_temp_files_left_behind(self, store_path):
        store = RunningSetStore(store_path)
        store.mark_started("Ark")
        store.mark_started("Valheim")

        assert [p.name for p in store_path.parent.iterdir()] == [store_path.name]


class TestLoading:
    """Missing and damaged files."""

    def test_missing_file_is_empty(self, store_path):
        assert RunningSetStore(store_path).load() == set()

    def test_corrupt_file_is_empty(self, store_path):
        store_path.write_text("{not json")

        assert RunningSetStore(store_path).load() == set()

    def test_wrong_shape_is_empty(self, store_path):
        store_path.write_text(json.dumps({"Valheim": True}))

        assert RunningSetStore(store_path).load() == set()

    def test_non_string_entries_dropped(self, store_path):
        store_path.write_text(json.dumps(["Valheim", 3, "", None]))

        assert RunningSetStore(store_path).load() == {"Valheim"}

    def test_consume_removes_file(self, store_path):
        RunningSetStore(store_path).replace(["Valheim"])
        store = RunningSetStore(store_path)

        names = store.consume()

        assert names == {"Valheim"}
        assert not store_path.exists()

    def test_consume_without_file(self, store_path):
        assert RunningSetStore(store_path).consume() == set()
