# discovery.py
import os
import re
from typing import BinaryIO, Callable, List, Optional

from werkzeug.utils import secure_filename

from errors import InvalidArgument, IOFailure
from listing import FileEntry, list_entries, resolve_file, resolve_within
from logging_setup import get_logger
from scanner import (
    Host,
    HostScanner,
    NetBiosResolver,
    NetViewBrowser,
    PingProber,
    guess_segment,
)
from settings import Settings
from shares import Share, ShareEnumerator, default_share_query

log = get_logger("discovery")


def build_host_scanner(settings: Settings) -> HostScanner:
    return HostScanner(
        prober=PingProber(timeout_ms=settings.probe_timeout_ms),
        resolver=NetBiosResolver(command_timeout=settings.command_timeout),
        browser=NetViewBrowser(command_timeout=settings.command_timeout),
        max_workers=settings.max_workers,
        sweep_timeout=settings.sweep_timeout,
    )


def build_share_enumerator(settings: Settings) -> ShareEnumerator:
    return ShareEnumerator(default_share_query(settings.command_timeout))


def _require(value: Optional[str], message: str) -> str:
    value = (value or "").strip()
    if not value:
        raise InvalidArgument(message)
    return value


# control characters, NTFS stream separator and the Win32 reserved set
_UNSAFE_NAME_RE = re.compile(r'[\x00-\x1f\x7f:*?"<>|]')
WINDOWS_DEVICE_NAMES = frozenset(
    ["CON", "PRN", "AUX", "NUL"]
    + [f"COM{i}" for i in range(1, 10)]
    + [f"LPT{i}" for i in range(1, 10)]
)


def _is_device_name(name: str) -> bool:
    return name.split(".")[0].strip().upper() in WINDOWS_DEVICE_NAMES


def safe_upload_name(filename: Optional[str]) -> str:
    """
    Sanitize a client-supplied upload name with werkzeug's secure_filename.

    secure_filename drops every non-ASCII character ('报告.pdf' -> 'pdf'),
    so non-ASCII names are kept verbatim instead, but only when they contain
    no control characters, ':', '*?"<>|', trailing dots/spaces or a Windows
    device stem. Device stems of ASCII names get a '_' prefix on every
    platform.
    """
    raw = (filename or "").replace("\\", "/").split("/")[-1].strip()

    if raw.isascii():
        name = secure_filename(raw)
        if name and _is_device_name(name):
            name = f"_{name}"
    else:
        name = raw
        if (
            _UNSAFE_NAME_RE.search(name)
            or name.rstrip(". ") != name
            or _is_device_name(name)
        ):
            raise InvalidArgument(f"Unsafe file name: {filename!r}")

    if not name or name in (".", ".."):
        raise InvalidArgument("A file name is required (X-File-Name header)")
    return name


class DiscoveryService:
    """
    Boundary operations over the LAN and the local share root.
    Every call re-runs its probes/queries; nothing is cached.
    """

    def __init__(
        self,
        settings: Settings,
        scanner: Optional[HostScanner] = None,
        share_enumerator: Optional[ShareEnumerator] = None,
    ):
        self.settings = settings
        self.scanner = scanner or build_host_scanner(settings)
        self.share_enumerator = share_enumerator or build_share_enumerator(settings)

    @property
    def share_root(self) -> str:
        return self.settings.share_root

    def ensure_share_root(self) -> str:
        os.makedirs(self.share_root, exist_ok=True)
        return self.share_root

    # -----------------------
    # Network
    # -----------------------
    def discover_hosts(
        self,
        segment: Optional[str] = None,
        cancel_check: Optional[Callable[[], bool]] = None,
    ) -> List[Host]:
        return self.scanner.scan(segment, cancel_check)

    def guess_segment(self) -> Optional[str]:
        return guess_segment()

    def list_shares(self, host_path: Optional[str]) -> List[Share]:
        host_path = _require(host_path, "Computer parameter is required")
        return self.share_enumerator.list_shares(host_path)

    def list_files(self, share_path: Optional[str], relative_path: Optional[str] = "") -> List[FileEntry]:
        share_path = _require(share_path, "Share parameter is required")
        return list_entries(share_path, relative_path)

    def fetch_file(self, share_path: Optional[str], relative_path: Optional[str] = "") -> str:
        share_path = _require(share_path, "Share parameter is required")
        return resolve_file(share_path, relative_path)

    def open_file(self, share_path: Optional[str], relative_path: Optional[str] = "") -> BinaryIO:
        path = self.fetch_file(share_path, relative_path)
        try:
            return open(path, "rb")
        except OSError as e:
            raise IOFailure.wrap(e)

    # -----------------------
    # Local share
    # -----------------------
    def list_local_files(self, relative_path: Optional[str] = "") -> List[FileEntry]:
        return list_entries(self.share_root, relative_path)

    def fetch_local_file(self, relative_path: Optional[str]) -> str:
        return resolve_file(self.share_root, relative_path)

    def save_upload(self, relative_dir: Optional[str], filename: Optional[str], data: bytes) -> str:
        """
        Write bytes under the share root. Concurrent writes to one path are
        last-write-wins.
        """
        name = safe_upload_name(filename)
        directory = resolve_within(self.share_root, relative_dir)
        dest = resolve_within(directory, name)

        try:
            os.makedirs(directory, exist_ok=True)
            with open(dest, "wb") as f:
                f.write(data)
        except OSError as e:
            raise IOFailure.wrap(e)

        log.info("Saved upload %s (%d bytes)", dest, len(data))
        return dest
