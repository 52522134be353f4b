# shares.py
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

from commands import IS_WINDOWS, run_command
from errors import CommandExecutionFailure, InvalidArgument
from logging_setup import get_logger

log = get_logger("shares")


# -----------------------------
# Models
# -----------------------------
@dataclass
class Share:
    name: str
    host_path: str
    path: str

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "hostPath": self.host_path, "path": self.path}


PRINTER_SHARE = "print$"
ADMIN_SHARE_SUFFIX = "$"
DISK_TYPES = ("disk", "磁盘")


def is_admin_share(name: str) -> bool:
    n = name.casefold()
    return n == PRINTER_SHARE or n.endswith(ADMIN_SHARE_SUFFIX)


def is_disk_type(share_type: str) -> bool:
    return share_type.strip().casefold() in DISK_TYPES


def normalize_host_path(host_path: str) -> str:
    """
    '\\\\HOST', '//HOST/', 'HOST' -> '\\\\HOST'
    """
    host = (host_path or "").strip().replace("/", "\\").strip("\\")
    if not host:
        raise InvalidArgument(f"Computer parameter has no host name: {host_path!r}")
    return "\\\\" + host


# -----------------------------
# Parsers (regex-based)
# -----------------------------
# "Public        Disk           Shared docs"
NET_VIEW_SHARE_RE = re.compile(r"^(?P<share>\S.*?)\s{2,}(?P<type>\S+)")
# long names can leave a single space before the type column
NET_VIEW_SHARE_LOOSE_RE = re.compile(r"^(?P<share>\S+)\s+(?P<type>\S+)")


def parse_net_view_shares(raw: str) -> List[Tuple[str, str]]:
    rows: List[Tuple[str, str]] = []
    for line in (raw or "").splitlines():
        line = line.rstrip()
        if not line:
            continue
        m = NET_VIEW_SHARE_RE.match(line) or NET_VIEW_SHARE_LOOSE_RE.match(line)
        if not m:
            continue
        rows.append((m.group("share").strip(), m.group("type")))
    return rows


def parse_smbclient_shares(raw: str) -> List[Tuple[str, str]]:
    """
    `smbclient -g -L` prints 'Disk|Public|comment' lines.
    """
    rows: List[Tuple[str, str]] = []
    for line in (raw or "").splitlines():
        parts = line.strip().split("|")
        if len(parts) < 2 or not parts[1]:
            continue
        rows.append((parts[1], parts[0]))
    return rows


# -----------------------------
# Share queries
# -----------------------------
class ShareQuery:
    """
    Returns (share name, share type) rows for a host, in command output
    order. Raises CommandExecutionFailure when the query cannot run.
    """

    def query(self, host_path: str) -> List[Tuple[str, str]]:
        raise NotImplementedError


class NetViewShareQuery(ShareQuery):
    def __init__(self, command_timeout: float = 10.0):
        self.command_timeout = command_timeout

    def query(self, host_path: str) -> List[Tuple[str, str]]:
        out = run_command(["net", "view", host_path], timeout=self.command_timeout)
        return parse_net_view_shares(out)


class SmbClientShareQuery(ShareQuery):
    def __init__(self, command_timeout: float = 10.0):
        self.command_timeout = command_timeout

    def query(self, host_path: str) -> List[Tuple[str, str]]:
        target = "//" + host_path.strip("\\")
        out = run_command(["smbclient", "-g", "-N", "-L", target], timeout=self.command_timeout)
        return parse_smbclient_shares(out)


def default_share_query(command_timeout: float = 10.0) -> ShareQuery:
    if IS_WINDOWS:
        return NetViewShareQuery(command_timeout)
    return SmbClientShareQuery(command_timeout)


# -----------------------------
# Enumerator
# -----------------------------
class ShareEnumerator:
    def __init__(self, query: ShareQuery):
        self.query = query

    def list_shares(self, host_path: str) -> List[Share]:
        """
        Disk shares of a host, administrative and printer shares removed.
        Query failures are logged and give an empty list.
        """
        host_path = normalize_host_path(host_path)
        try:
            rows = self.query.query(host_path)
        except CommandExecutionFailure as e:
            log.warning("Share listing for %s failed: %s", host_path, e)
            return []

        shares: List[Share] = []
        for name, share_type in rows:
            if not is_disk_type(share_type) or is_admin_share(name):
                continue
            shares.append(Share(name=name, host_path=host_path, path=f"{host_path}\\{name}"))

        log.info("%s exposes %d disk shares", host_path, len(shares))
        return shares
