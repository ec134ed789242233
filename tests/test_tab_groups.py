from __future__ import annotations

import json
import multiprocessing
import re
import time
from pathlib import Path

import pytest

GROUP_ID_RE = re.compile(r"^g_[0-9a-f]{16}$")


def _fork_context():  # noqa: ANN202
    try:
        return multiprocessing.get_context("fork")
    except ValueError:
        pytest.skip("fork start method unavailable")


def _add_tabs_worker(path: str, group_id: str, prefix: str, count: int) -> None:
    from mcp_servers.shared_browser.tab_groups import TabGroupStore

    store = TabGroupStore(Path(path))
    for i in range(count):
        store.add_tab(f"{prefix}-{i}", group_id)


def _critical_section_worker(lock_path: str, journal: str, rounds: int) -> None:
    import os

    from mcp_servers.shared_browser.file_locks import RegistryLock

    lock = RegistryLock(Path(lock_path), max_wait=10.0)
    for _ in range(rounds):
        with lock:
            with open(journal, "a", encoding="utf-8") as fp:
                fp.write(f"enter {os.getpid()}\n")
            time.sleep(0.005)
            with open(journal, "a", encoding="utf-8") as fp:
                fp.write(f"exit {os.getpid()}\n")


def test_create_group_ids_are_unique_and_well_formed(store) -> None:  # noqa: ANN001
    ids = {store.create_group(f"agent-{i}").group_id for i in range(50)}
    assert len(ids) == 50
    assert all(GROUP_ID_RE.match(gid) for gid in ids)


def test_create_group_normalizes_name_and_color(store) -> None:  # noqa: ANN001
    blank = store.create_group("   ", "blue")
    assert blank.name == "unnamed"
    assert blank.color == "blue"

    trimmed = store.create_group("  research  ", "magenta")
    assert trimmed.name == "research"
    assert trimmed.color is None
    assert trimmed.created_at > 0

    on_disk = json.loads(store.path.read_text(encoding="utf-8"))
    assert "color" not in on_disk["groups"][trimmed.group_id]
    assert on_disk["groups"][blank.group_id]["color"] == "blue"


def test_is_valid_color() -> None:
    from mcp_servers.shared_browser.tab_groups import VALID_COLORS, is_valid_color

    assert len(VALID_COLORS) == 8
    assert all(is_valid_color(c) for c in VALID_COLORS)
    assert not is_valid_color("Blue")
    assert not is_valid_color(None)
    assert not is_valid_color(3)


def test_alice_and_bob_scenario(store) -> None:  # noqa: ANN001
    g1 = store.create_group("alice", "blue").group_id
    g2 = store.create_group("bob", "green").group_id
    store.add_tab("t1", g1)
    store.add_tab("t2", g2)

    assert store.delete_group(g1) == ["t1"]

    groups = store.list_groups()
    assert len(groups) == 1
    assert groups[0].group.name == "bob"
    assert groups[0].tab_count == 1
    assert store.get_tabs_in_group(g1) == []
    assert store.get_group_for_tab("t1") is None
    assert store.get_group_for_tab("t2") == g2


def test_pop_group_returns_entries_in_one_step(store) -> None:  # noqa: ANN001
    g1 = store.create_group("alice", "blue").group_id
    g2 = store.create_group("bob").group_id
    store.add_tab("t1", g1, chrome_tab_id=11)
    store.add_tab("t2", g1)
    store.add_tab("t3", g2, chrome_tab_id=33)

    entries = store.pop_group(g1)
    assert sorted(entries) == ["t1", "t2"]
    assert entries["t1"].chrome_tab_id == 11
    assert entries["t2"].chrome_tab_id is None
    assert store.get_group(g1) is None
    assert store.get_group_for_tab("t1") is None
    assert store.get_chrome_tab_id("t3") == 33


def test_add_tab_to_missing_group_leaves_file_untouched(store) -> None:  # noqa: ANN001
    from mcp_servers.shared_browser.tab_groups import TabGroupNotFoundError

    gid = store.create_group("alice").group_id
    store.add_tab("t1", gid, chrome_tab_id=7)
    before = store.path.read_bytes()

    with pytest.raises(TabGroupNotFoundError) as excinfo:
        store.add_tab("x", "g_missing")
    assert "g_missing" in str(excinfo.value)
    assert store.path.read_bytes() == before
    assert not store.lock.path.exists()


def test_delete_missing_group_raises(store) -> None:  # noqa: ANN001
    from mcp_servers.shared_browser.tab_groups import TabGroupNotFoundError

    with pytest.raises(TabGroupNotFoundError, match="Tab group not found: g_nope"):
        store.delete_group("g_nope")


def test_add_tab_overwrites_and_remove_is_idempotent(store) -> None:  # noqa: ANN001
    g1 = store.create_group("a").group_id
    g2 = store.create_group("b").group_id
    store.add_tab("t1", g1, chrome_tab_id=11)
    store.add_tab("t1", g2)
    assert store.get_group_for_tab("t1") == g2
    assert store.get_chrome_tab_id("t1") is None

    store.remove_tab("t1")
    store.remove_tab("t1")
    assert store.get_tabs_in_group(g2) == []


def test_prune_stale_removes_exactly_dead_entries(store) -> None:  # noqa: ANN001
    gid = store.create_group("a").group_id
    for tid in ("t1", "t2", "t3", "t4"):
        store.add_tab(tid, gid)
    store.remove_tab("t2")
    store.add_tab("t5", gid)

    removed = store.prune_stale(["t1", "t5", "not-registered"])
    assert removed == 2
    assert sorted(store.get_tabs_in_group(gid)) == ["t1", "t5"]
    assert store.prune_stale(["t1", "t5"]) == 0


def test_chrome_group_id_is_set_once(store) -> None:  # noqa: ANN001
    gid = store.create_group("a", "red").group_id
    assert store.set_chrome_group_id(gid, 42) is True
    assert store.set_chrome_group_id(gid, 43) is False
    assert store.get_group(gid).chrome_group_id == 42
    assert store.set_chrome_group_id("g_gone", 1) is False


def test_extension_id_round_trip(store) -> None:  # noqa: ANN001
    assert store.get_extension_id() is None
    store.set_extension_id("abcdefghijklmnopabcdefghijklmnop")
    assert store.get_extension_id() == "abcdefghijklmnopabcdefghijklmnop"
    on_disk = json.loads(store.path.read_text(encoding="utf-8"))
    assert on_disk["extensionId"] == "abcdefghijklmnopabcdefghijklmnop"


def test_corrupt_or_missing_file_reads_as_empty(store) -> None:  # noqa: ANN001
    assert store.list_groups() == []

    store.path.write_text("{not json", encoding="utf-8")
    assert store.list_groups() == []

    gid = store.create_group("fresh").group_id
    on_disk = json.loads(store.path.read_text(encoding="utf-8"))
    assert list(on_disk["groups"]) == [gid]
    assert on_disk["tabs"] == {}


def test_malformed_entries_are_skipped(store) -> None:  # noqa: ANN001
    store.path.parent.mkdir(parents=True, exist_ok=True)
    store.path.write_text(
        json.dumps(
            {
                "groups": {"g_ok": {"name": "ok", "createdAt": 1}, "g_bad": "nope"},
                "tabs": {"t1": {"groupId": "g_ok", "addedAt": 2}, "t2": {"addedAt": 3}},
            }
        ),
        encoding="utf-8",
    )
    groups = store.list_groups()
    assert [g.group.group_id for g in groups] == ["g_ok"]
    assert groups[0].tab_count == 1


def test_body_exception_skips_write(store) -> None:  # noqa: ANN001
    store.create_group("keep")
    before = store.path.read_bytes()

    with pytest.raises(RuntimeError):
        with store.exclusive() as reg:
            reg.groups.clear()
            raise RuntimeError("boom")

    assert store.path.read_bytes() == before
    assert not store.lock.path.exists()


def test_with_registry_persists_and_returns(store) -> None:  # noqa: ANN001
    group = store.create_group("alice")

    def _rename(reg) -> int:  # noqa: ANN001
        reg.groups[group.group_id].name = "alice-renamed"
        return len(reg.groups)

    assert store.with_registry(_rename) == 1
    assert store.get_group(group.group_id).name == "alice-renamed"


def test_fresh_handle_sees_identical_state(tmp_path: Path) -> None:
    from mcp_servers.shared_browser.tab_groups import TabGroupStore

    path = tmp_path / "tab-groups.json"
    writer = TabGroupStore(path)
    group_ids = [writer.create_group(f"g{i}", "cyan").group_id for i in range(3)]
    for i in range(7):
        writer.add_tab(f"t{i}", group_ids[i % 3], chrome_tab_id=100 + i)

    reader = TabGroupStore(path)
    assert [s.to_dict() for s in reader.list_groups()] == [s.to_dict() for s in writer.list_groups()]
    for gid in group_ids:
        assert reader.get_tabs_in_group(gid) == writer.get_tabs_in_group(gid)
    assert reader.get_chrome_tab_id("t4") == 104


def test_concurrent_processes_lose_no_updates(tmp_path: Path) -> None:
    from mcp_servers.shared_browser.tab_groups import TabGroupStore

    ctx = _fork_context()
    path = tmp_path / "tab-groups.json"
    gid = TabGroupStore(path).create_group("shared").group_id

    procs = [ctx.Process(target=_add_tabs_worker, args=(str(path), gid, f"p{n}", 15)) for n in range(4)]
    for p in procs:
        p.start()
    for p in procs:
        p.join(timeout=60)
        assert p.exitcode == 0

    assert len(TabGroupStore(path).get_tabs_in_group(gid)) == 60


def test_lock_holders_never_overlap(tmp_path: Path) -> None:
    ctx = _fork_context()
    lock_path = tmp_path / "reg.json.lock"
    journal = tmp_path / "journal.txt"

    procs = [ctx.Process(target=_critical_section_worker, args=(str(lock_path), str(journal), 10)) for _ in range(3)]
    for p in procs:
        p.start()
    for p in procs:
        p.join(timeout=60)
        assert p.exitcode == 0

    lines = journal.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 60
    for enter, leave in zip(lines[::2], lines[1::2]):
        assert enter.startswith("enter ")
        assert leave == "exit " + enter.split()[1]
