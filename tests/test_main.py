import asyncio
import os

import pytest

from config import Config
from conftest import AutoTransport, FakeTransport, settle
from errors import ConfigurationError
from items import DirectoryItem, FileItem
from main import (
    EXIT_INTERRUPTED,
    Uploader,
    build_transport,
    check_agent_paths,
    collect_items,
    parse_args,
    run,
)
from transports.http import HttpTransport
from transports.ws import WebSocketTransport


@pytest.fixture
def tree(tmp_path):
    root = tmp_path / "photos"
    (root / "2024").mkdir(parents=True)
    (root / "empty").mkdir()
    (root / "a.jpg").write_bytes(b"a" * 10)
    (root / "2024" / "b.jpg").write_bytes(b"b" * 20)
    single = tmp_path / "readme.md"
    single.write_bytes(b"hello")
    return tmp_path


def describe(items):
    return [(type(i).__name__, i.path, i.size) for i in items]


def test_collect_items_keeps_parents_before_children(tree):
    items = collect_items([str(tree / "photos"), str(tree / "readme.md")], dest="/backup")
    assert describe(items) == [
        ("DirectoryItem", "/backup/photos", 0),
        ("FileItem", "/backup/photos/a.jpg", 10),
        ("DirectoryItem", "/backup/photos/2024", 0),
        ("FileItem", "/backup/photos/2024/b.jpg", 20),
        ("DirectoryItem", "/backup/photos/empty", 0),
        ("FileItem", "/backup/readme.md", 5),
    ]
    assert items[1].handle == os.path.join(str(tree), "photos", "a.jpg")


def test_collect_items_overwrite_flag(tree):
    items = collect_items([str(tree / "readme.md")], overwrite=True)
    assert items[0].path == "/readme.md"
    assert items[0].overwrite is True


def test_collect_items_missing_path(tmp_path):
    with pytest.raises(FileNotFoundError):
        collect_items([str(tmp_path / "nope")])


def test_build_transport():
    assert isinstance(build_transport(Config(server="http://x")), HttpTransport)
    assert isinstance(build_transport(Config(server="ws://x", transport="ws")), WebSocketTransport)
    with pytest.raises(ConfigurationError):
        build_transport(Config())


def test_agent_paths_need_a_parent_directory(tree):
    with pytest.raises(ConfigurationError):
        check_agent_paths(collect_items([str(tree / "readme.md")], dest="/"))
    with pytest.raises(ConfigurationError):
        check_agent_paths([DirectoryItem("/")])

    check_agent_paths(collect_items([str(tree / "photos"), str(tree / "readme.md")], dest="/games"))
    check_agent_paths(collect_items([str(tree / "photos")], dest="/"))


@pytest.mark.asyncio
async def test_ws_run_refuses_top_level_files_before_connecting(tree, monkeypatch):
    built = []
    monkeypatch.setattr("main.build_transport", built.append)
    config = Config(server="ws://deck:1234", transport="ws")

    with pytest.raises(ConfigurationError):
        await run(config, [str(tree / "readme.md")], "/", False, False)
    assert built == []


def test_parse_args():
    args = parse_args(["a", "b", "--dest", "/up", "--limit", "2", "--overwrite", "-t", "ws"])
    assert args.paths == ["a", "b"]
    assert args.dest == "/up"
    assert args.limit == 2
    assert args.overwrite
    assert args.transport == "ws"


@pytest.mark.asyncio
async def test_uploader_runs_to_completion(tree):
    transport = AutoTransport()
    uploader = Uploader(Config(uploads_limit=2), transport)
    items = collect_items([str(tree / "photos")], dest="/")

    code = await asyncio.wait_for(uploader.run(items), timeout=5)

    assert code == 0
    assert uploader.needs_reload
    assert not uploader.busy
    assert uploader.summary.items == 5
    assert uploader.summary.progress == 100
    assert transport.created == ["/photos", "/photos/2024", "/photos/empty"]
    assert sorted(transport.uploaded) == ["/photos/2024/b.jpg", "/photos/a.jpg"]


@pytest.mark.asyncio
async def test_uploader_reports_failures(tree):
    transport = AutoTransport(failing=("/photos/a.jpg",))
    uploader = Uploader(Config(), transport)
    items = collect_items([str(tree / "photos")], dest="/")

    code = await asyncio.wait_for(uploader.run(items), timeout=5)

    assert code == 1
    assert [f.item.path for f in uploader.errors] == ["/photos/a.jpg"]
    # partial failure still drains and finishes the session
    assert uploader.needs_reload
    assert uploader.summary.failed == 1


@pytest.mark.asyncio
async def test_nothing_to_upload():
    uploader = Uploader(Config(), AutoTransport())
    assert await uploader.run([]) == 0


@pytest.mark.asyncio
async def test_second_interrupt_aborts(tmp_path):
    transport = FakeTransport()
    uploader = Uploader(Config(), transport)
    items = [FileItem(f"/f{i}", str(tmp_path / f"f{i}"), 10) for i in range(3)]
    items.append(DirectoryItem("/d"))

    run = asyncio.ensure_future(uploader.run(items))
    await settle()

    uploader._on_interrupt()
    await settle()
    assert not run.done()
    assert not uploader.aborted

    uploader._on_interrupt()
    code = await asyncio.wait_for(run, timeout=5)

    assert code == EXIT_INTERRUPTED
    assert uploader.aborted
    assert not uploader.session.active

    for call in transport.open_calls:
        call.succeed()
    await settle()
    assert uploader.errors == []
