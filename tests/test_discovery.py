"""Tests for the DiscoveryService boundary operations."""

from __future__ import annotations

import os

import pytest
from pytest_mock import MockerFixture

from discovery import DiscoveryService, build_host_scanner, safe_upload_name
from errors import InvalidArgument, InvalidOperation, PathNotFound
from scanner import NetBiosResolver, NetViewBrowser, PingProber
from settings import Settings


def test_default_backends_follow_settings(share_root):
    settings = Settings(share_root=share_root, probe_timeout_ms=150, max_workers=5, sweep_timeout=9.0)
    scanner = build_host_scanner(settings)
    assert isinstance(scanner.prober, PingProber)
    assert scanner.prober.timeout_ms == 150
    assert isinstance(scanner.resolver, NetBiosResolver)
    assert isinstance(scanner.browser, NetViewBrowser)
    assert scanner.max_workers == 5
    assert scanner.sweep_timeout == 9.0


def test_discover_hosts_modes(service):
    assert [h.address for h in service.discover_hosts()] == ["\\\\HOST1"]
    assert [h.address for h in service.discover_hosts("")] == ["\\\\HOST1"]

    swept = {h.ip: h.name for h in service.discover_hosts("10.0.0")}
    assert swept == {"10.0.0.5": "HOST1", "10.0.0.9": "10.0.0.9"}


def test_discover_hosts_empty_segment_sweep(service):
    assert service.discover_hosts("10.1.1") == []


def test_discover_hosts_delegates_to_scan(service, mocker: MockerFixture):
    scan = mocker.spy(service.scanner, "scan")
    cancel = lambda: False  # noqa: E731

    service.discover_hosts("  ", cancel)
    service.discover_hosts("10.0.0", cancel)

    assert [c.args for c in scan.call_args_list] == [("  ", cancel), ("10.0.0", cancel)]


@pytest.mark.parametrize("value", [None, "", "   "])
def test_required_arguments(service, share_query, value):
    with pytest.raises(InvalidArgument):
        service.list_shares(value)
    with pytest.raises(InvalidArgument):
        service.list_files(value)
    with pytest.raises(InvalidArgument):
        service.fetch_file(value, "x")
    # never reaches the underlying query
    assert share_query.hosts == []


def test_list_shares_filters(service):
    assert [s.name for s in service.list_shares("\\\\HOST1")] == ["Public"]


def test_list_shares_normalizes_host(service, share_query):
    service.list_shares("//HOST1/")
    assert share_query.hosts == ["\\\\HOST1"]


@pytest.mark.parametrize("value", ["\\\\", "//", " \\/ "])
def test_list_shares_without_host_name(service, share_query, value):
    with pytest.raises(InvalidArgument):
        service.list_shares(value)
    assert share_query.hosts == []


def test_list_and_fetch_remote_share(service, sample_tree):
    assert [f.name for f in service.list_files(sample_tree)] == ["docs", "notes.txt"]
    assert [f.name for f in service.list_files(sample_tree, "docs")] == ["a.pdf"]

    with service.open_file(sample_tree, "notes.txt") as f:
        assert f.read() == b"hello world\n"


def test_fetch_directory_is_invalid_operation(service, sample_tree):
    with pytest.raises(InvalidOperation):
        service.fetch_file(sample_tree, "docs")
    with pytest.raises(PathNotFound):
        service.fetch_file(sample_tree, "ghost.txt")


def test_upload_then_fetch_round_trip(service):
    payload = bytes(range(256)) * 3
    saved = service.save_upload("inbox/2024", "报告.bin", payload)

    assert saved == os.path.join(service.share_root, "inbox", "2024", "报告.bin")
    with open(service.fetch_local_file("inbox/2024/报告.bin"), "rb") as f:
        assert f.read() == payload


def test_upload_last_write_wins(service):
    service.save_upload("", "a.txt", b"first")
    service.save_upload("", "a.txt", b"second")
    with open(service.fetch_local_file("a.txt"), "rb") as f:
        assert f.read() == b"second"


@pytest.mark.parametrize("name", ["", "  ", "..", "dir/", None])
def test_bad_upload_names(name):
    with pytest.raises(InvalidArgument):
        safe_upload_name(name)


def test_upload_name_keeps_last_component():
    assert safe_upload_name("..\\..\\evil.txt") == "evil.txt"
    assert safe_upload_name("a/b/c.txt") == "c.txt"


@pytest.mark.parametrize(
    "name,expected",
    [
        ("a.txt:hidden", "a.txthidden"),
        ("evil\tname\n.txt", "evil_name_.txt"),
        ("my report.pdf", "my_report.pdf"),
        ("CON.txt", "_CON.txt"),
        ("lpt1", "_lpt1"),
    ],
)
def test_ascii_upload_names_are_sanitized(name, expected):
    assert safe_upload_name(name) == expected


def test_non_ascii_upload_name_kept():
    assert safe_upload_name("报告.bin") == "报告.bin"
    assert safe_upload_name("docs/会议 纪要.docx") == "会议 纪要.docx"


@pytest.mark.parametrize(
    "name",
    ["报告:x.bin", "报告\t.bin", "报告\x00.bin", "报告?.bin", "报告.bin.", "报告 .", "CON.报告"],
)
def test_unsafe_non_ascii_upload_names_rejected(name):
    with pytest.raises(InvalidArgument, match="Unsafe file name"):
        safe_upload_name(name)


def test_sanitized_upload_lands_in_target_dir(service):
    saved = service.save_upload("inbox", "a.txt:hidden", b"x")
    assert saved == os.path.join(service.share_root, "inbox", "a.txthidden")
    assert os.listdir(os.path.join(service.share_root, "inbox")) == ["a.txthidden"]


def test_upload_outside_root_rejected(service):
    with pytest.raises(InvalidArgument):
        service.save_upload("../outside", "x.txt", b"x")


def test_share_root_is_per_instance(tmp_path):
    a = DiscoveryService(Settings(share_root=str(tmp_path / "a")))
    b = DiscoveryService(Settings(share_root=str(tmp_path / "b")))
    a.ensure_share_root()
    b.ensure_share_root()
    a.save_upload("", "only-a.txt", b"a")

    assert [f.name for f in a.list_local_files()] == ["only-a.txt"]
    assert b.list_local_files() == []
