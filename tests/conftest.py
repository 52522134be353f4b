"""Shared test fixtures: temporary share root, settings, fake backends, Flask client."""

from __future__ import annotations

import os

import pytest

from app import create_app
from discovery import DiscoveryService
from fakes import FakeShareQuery, make_scanner
from scanner import Host
from settings import Settings
from shares import ShareEnumerator


@pytest.fixture
def share_root(tmp_path) -> str:
    root = tmp_path / "shared-files"
    root.mkdir()
    return str(root)


@pytest.fixture
def sample_tree(share_root) -> str:
    """notes.txt (12 bytes) and docs/a.pdf"""
    with open(os.path.join(share_root, "notes.txt"), "wb") as f:
        f.write(b"hello world\n")
    os.mkdir(os.path.join(share_root, "docs"))
    with open(os.path.join(share_root, "docs", "a.pdf"), "wb") as f:
        f.write(b"%PDF-1.4")
    return share_root


@pytest.fixture
def settings(share_root) -> Settings:
    return Settings(share_root=share_root, max_upload_mb=1, sweep_timeout=5.0, max_workers=8)


@pytest.fixture
def share_query() -> FakeShareQuery:
    return FakeShareQuery(
        rows=[("Public", "Disk"), ("print$", "Disk"), ("ADMIN$", "Disk"), ("HP-Laser", "Print")]
    )


@pytest.fixture
def service(settings, share_query) -> DiscoveryService:
    scanner = make_scanner(
        alive={"10.0.0.5", "10.0.0.9"},
        names={"10.0.0.5": "HOST1"},
        browse_hosts=[Host(name="HOST1", address="\\\\HOST1")],
    )
    return DiscoveryService(settings, scanner=scanner, share_enumerator=ShareEnumerator(share_query))


@pytest.fixture
def client(settings, service):
    app = create_app(settings, service)
    app.config["TESTING"] = True
    return app.test_client()
