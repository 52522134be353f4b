# scanner.py
import ipaddress
import re
import socket
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from commands import IS_MACOS, IS_WINDOWS, run_command
from errors import CommandExecutionFailure, InvalidArgument
from logging_setup import get_logger

log = get_logger("scanner")


# -----------------------------
# Models
# -----------------------------
@dataclass
class Host:
    name: str
    address: str  # UNC style, e.g. \\DESKTOP-01
    ip: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "address": self.address, "ip": self.ip}


def unc_path(name: str) -> str:
    return "\\\\" + name


# -----------------------------
# Segment expansion
# -----------------------------
MAX_SWEEP_ADDRESSES = 1024

_PREFIX_RE = re.compile(r"^\d{1,3}\.\d{1,3}\.\d{1,3}$")


def _expand_ip_range(token: str) -> List[str]:
    """
    Expand '192.168.1.10-20' or '192.168.1.10-192.168.1.20'
    """
    left, right = token.split("-", 1)
    left = left.strip()
    right = right.strip()

    start = ipaddress.IPv4Address(left)

    # short range: 192.168.1.10-20
    if re.fullmatch(r"\d{1,3}", right):
        end = ipaddress.IPv4Address(".".join(left.split(".")[:3] + [right]))
    else:
        end = ipaddress.IPv4Address(right)

    if int(end) < int(start):
        raise ValueError(f"range end < start: {token}")
    if int(end) - int(start) + 1 > MAX_SWEEP_ADDRESSES:
        raise ValueError(f"range larger than {MAX_SWEEP_ADDRESSES} addresses")

    return [str(ipaddress.IPv4Address(i)) for i in range(int(start), int(end) + 1)]


def expand_segment(segment: str) -> List[str]:
    """
    Expand a sweep target into host addresses.
    Supports:
    - /24 prefix: 192.168.1 -> 192.168.1.1 .. 192.168.1.254
    - CIDR: 192.168.1.0/24
    - Range: 192.168.1.10-20 or 192.168.1.10-192.168.1.50
    """
    segment = (segment or "").strip().rstrip(".")

    try:
        if _PREFIX_RE.match(segment):
            ipaddress.IPv4Address(segment + ".0")  # validate octets
            ips = [f"{segment}.{i}" for i in range(1, 255)]
        elif "/" in segment:
            net = ipaddress.IPv4Network(segment, strict=False)
            if net.num_addresses > MAX_SWEEP_ADDRESSES + 2:
                raise ValueError(f"network larger than {MAX_SWEEP_ADDRESSES} addresses")
            ips = [str(ip) for ip in net.hosts()]
        elif "-" in segment:
            ips = _expand_ip_range(segment)
        else:
            ips = [str(ipaddress.IPv4Address(segment))]
    except ValueError as e:
        raise InvalidArgument(f"Invalid network segment {segment!r}: {e}")

    if not ips:
        raise InvalidArgument(f"Network segment {segment!r} contains no host addresses")
    return ips


# -----------------------------
# Probes
# -----------------------------
class Prober:
    """
    Reachability check for one address. Implementations return False on
    any failure and never raise.
    """

    def probe(self, ip: str) -> bool:
        raise NotImplementedError


# English/most locales print "TTL=" or "ttl="; zh-CN Windows also prints "字节=".
LIVENESS_MARKERS = ("ttl=", "字节=")


def ping_command(ip: str, timeout_ms: int) -> List[str]:
    if IS_WINDOWS:
        return ["ping", "-n", "1", "-w", str(timeout_ms), ip]
    if IS_MACOS:
        # BSD ping: -W is milliseconds
        return ["ping", "-c", "1", "-W", str(timeout_ms), ip]
    # iputils: -W is seconds; fractions need iputils 20180629 or newer
    return ["ping", "-c", "1", "-W", f"{timeout_ms / 1000:g}", ip]


def is_alive_output(output: str) -> bool:
    low = (output or "").lower()
    return any(marker in low for marker in LIVENESS_MARKERS)


class PingProber(Prober):
    OVERHEAD_SECONDS = 1.0

    def __init__(self, timeout_ms: int = 200):
        self.timeout_ms = timeout_ms

    def probe(self, ip: str) -> bool:
        # A "Destination host unreachable" reply still exits 0 on Windows, so
        # only the liveness marker counts.
        try:
            out = run_command(
                ping_command(ip, self.timeout_ms),
                timeout=self.timeout_ms / 1000 + self.OVERHEAD_SECONDS,
                check=False,
            )
        except CommandExecutionFailure:
            return False
        return is_alive_output(out)


class TcpProber(Prober):
    """
    TCP connect to the SMB/NetBIOS session ports. A refused connection
    still means the host answered.
    """
    DEFAULT_PORTS = (445, 139)

    def __init__(self, timeout_ms: int = 200, ports=DEFAULT_PORTS):
        self.timeout = timeout_ms / 1000
        self.ports = tuple(ports)

    def probe(self, ip: str) -> bool:
        for port in self.ports:
            try:
                with socket.create_connection((ip, port), timeout=self.timeout):
                    return True
            except ConnectionRefusedError:
                return True
            except OSError:
                continue
        return False


_IPV4_RE = re.compile(r"\b(?P<ip>\d{1,3}(?:\.\d{1,3}){3})\b")
_MAC_RE = re.compile(r"\b(?P<mac>[0-9a-fA-F]{1,2}(?:[-:][0-9a-fA-F]{1,2}){5})\b")
_BROADCAST_MACS = ("ff-ff-ff-ff-ff-ff", "ff:ff:ff:ff:ff:ff")


def parse_arp_table(raw: str) -> Dict[str, str]:
    """
    Parse `arp -a` output (Windows table or BSD/Linux '? (ip) at mac' form)
    into {ip: mac}. Incomplete and broadcast entries are dropped.
    """
    table: Dict[str, str] = {}
    for line in (raw or "").splitlines():
        ip_m = _IPV4_RE.search(line)
        mac_m = _MAC_RE.search(line)
        if not ip_m or not mac_m:
            continue
        mac = mac_m.group("mac").lower()
        if mac in _BROADCAST_MACS:
            continue
        table[ip_m.group("ip")] = mac
    return table


def touch_arp(ip: str) -> None:
    """
    Send a tiny UDP packet to trigger ARP resolution (no reply needed).
    """
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.sendto(b"\x00", (ip, 9))
    except OSError:
        pass


class ArpProber(Prober):
    """
    LAN-only fallback for hosts that drop ICMP: nudge ARP, then look the
    address up in the OS ARP cache.
    """

    def __init__(self, timeout_ms: int = 200, command_timeout: float = 5.0):
        self.settle = timeout_ms / 1000
        self.command_timeout = command_timeout

    def probe(self, ip: str) -> bool:
        touch_arp(ip)
        time.sleep(self.settle)
        try:
            out = run_command(["arp", "-a"], timeout=self.command_timeout, check=False)
        except CommandExecutionFailure:
            return False
        return ip in parse_arp_table(out)


# -----------------------------
# Name resolution
# -----------------------------
class NameResolver:
    def resolve(self, ip: str) -> Optional[str]:
        raise NotImplementedError


# nbtstat:   "DESKTOP-01     <00>  UNIQUE      Registered"
# nmblookup: "DESKTOP-01      <00> -         B <ACTIVE>"
NETBIOS_NAME_RE = re.compile(
    r"^(?P<name>\S.{0,14}?)\s+<(?P<suffix>[0-9A-Fa-f]{2})>\s*(?P<rest>.*)$"
)


def parse_netbios(raw: str) -> List[Dict[str, str]]:
    results: List[Dict[str, str]] = []
    for line in (raw or "").splitlines():
        line = line.strip()
        if not line:
            continue
        m = NETBIOS_NAME_RE.match(line)
        if not m:
            continue
        rest = m.group("rest") or ""
        results.append(
            {
                "name": m.group("name").strip(),
                "suffix": m.group("suffix").upper(),
                "type": "GROUP" if "GROUP" in rest.upper() else "UNIQUE",
            }
        )
    return results


def netbios_machine_name(raw: str) -> Optional[str]:
    """
    The workstation name is the unique <00> record; the group <00> is the
    workgroup/domain.
    """
    for entry in parse_netbios(raw):
        if entry["suffix"] == "00" and entry["type"] == "UNIQUE":
            return entry["name"]
    return None


class NetBiosResolver(NameResolver):
    def __init__(self, command_timeout: float = 5.0):
        self.command_timeout = command_timeout

    def command(self, ip: str) -> List[str]:
        if IS_WINDOWS:
            return ["nbtstat", "-A", ip]
        return ["nmblookup", "-A", ip]

    def resolve(self, ip: str) -> Optional[str]:
        try:
            out = run_command(self.command(ip), timeout=self.command_timeout)
        except CommandExecutionFailure as e:
            log.debug("NetBIOS lookup for %s failed: %s", ip, e)
            return None
        return netbios_machine_name(out)


class DnsResolver(NameResolver):
    def resolve(self, ip: str) -> Optional[str]:
        try:
            hostname = socket.gethostbyaddr(ip)[0]
        except OSError:
            return None
        return hostname.split(".")[0] or None


# -----------------------------
# Passive browse list
# -----------------------------
# "\\NAME   comment" -- a server line, not "\\NAME\share"
BROWSE_LINE_RE = re.compile(r"^\s*\\\\(?P<name>[^\\\s]+)(?:\s|$)")


def parse_browse_list(raw: str) -> List[Host]:
    hosts: List[Host] = []
    seen = set()
    for line in (raw or "").splitlines():
        m = BROWSE_LINE_RE.match(line)
        if not m:
            continue
        name = m.group("name")
        address = unc_path(name)
        if address.lower() in seen:
            continue
        seen.add(address.lower())
        hosts.append(Host(name=name, address=address, ip=None))
    return hosts


class HostBrowser:
    def browse(self) -> List[Host]:
        raise NotImplementedError


class NetViewBrowser(HostBrowser):
    """
    `net view` on Windows, `smbtree -N -S` (servers only) elsewhere.
    Raises CommandExecutionFailure when the command cannot run.
    """

    def __init__(self, command_timeout: float = 10.0):
        self.command_timeout = command_timeout

    def command(self) -> List[str]:
        if IS_WINDOWS:
            return ["net", "view"]
        return ["smbtree", "-N", "-S"]

    def browse(self) -> List[Host]:
        out = run_command(self.command(), timeout=self.command_timeout)
        return parse_browse_list(out)


# -----------------------------
# Host scanner
# -----------------------------
class HostScanner:
    def __init__(
        self,
        prober: Prober,
        resolver: NameResolver,
        browser: HostBrowser,
        *,
        max_workers: int = 32,
        sweep_timeout: float = 30.0,
    ):
        self.prober = prober
        self.resolver = resolver
        self.browser = browser
        self.max_workers = max(1, max_workers)
        self.sweep_timeout = sweep_timeout

    def scan(self, segment: Optional[str] = None, cancel_check: Optional[Callable[[], bool]] = None) -> List[Host]:
        if segment and segment.strip():
            return self.sweep(segment, cancel_check)
        return self.browse()

    def browse(self) -> List[Host]:
        try:
            hosts = self.browser.browse()
        except CommandExecutionFailure as e:
            log.warning("Network browse failed: %s", e)
            return []
        log.info("Browse list returned %d hosts", len(hosts))
        return hosts

    def _probe_and_resolve(self, ip: str, cancel_check: Callable[[], bool]) -> Optional[Host]:
        if cancel_check():
            return None

        if not self.prober.probe(ip):
            return None

        name = None
        try:
            name = self.resolver.resolve(ip)
        except Exception as e:
            log.warning("Name lookup for %s raised %s: %s", ip, type(e).__name__, e)

        name = name or ip
        return Host(name=name, address=unc_path(name), ip=ip)

    def sweep(self, segment: str, cancel_check: Optional[Callable[[], bool]] = None) -> List[Host]:
        """
        Probe every address of the segment on a bounded pool and return one
        Host per reachable address, in completion order.
        """
        cancel_check = cancel_check or (lambda: False)
        ips = expand_segment(segment)
        found: Dict[str, Host] = {}
        started = time.monotonic()

        ex = ThreadPoolExecutor(max_workers=min(self.max_workers, len(ips)))
        future_to_ip = {ex.submit(self._probe_and_resolve, ip, cancel_check): ip for ip in ips}
        try:
            for fut in as_completed(future_to_ip, timeout=self.sweep_timeout):
                if cancel_check():
                    log.info("Sweep of %s cancelled", segment)
                    break

                try:
                    host = fut.result()
                except Exception as e:
                    log.warning("Probe of %s raised %s: %s", future_to_ip[fut], type(e).__name__, e)
                    continue

                if host is not None:
                    found[host.ip] = host
        except FuturesTimeoutError:
            log.warning(
                "Sweep of %s timed out after %ss, returning %d partial results",
                segment, self.sweep_timeout, len(found),
            )
        finally:
            for f in future_to_ip:
                f.cancel()
            # probes already running are bounded by their own timeout
            ex.shutdown(wait=False)

        log.info(
            "Sweep of %s: %d/%d reachable in %.1fs",
            segment, len(found), len(ips), time.monotonic() - started,
        )
        return list(found.values())


# -----------------------------
# Local network
# -----------------------------
def _usable_ipv4(ip: str) -> bool:
    try:
        addr = ipaddress.IPv4Address(ip)
    except ValueError:
        return False
    return not addr.is_loopback and not addr.is_link_local and not addr.is_unspecified


def local_ipv4_addresses() -> List[str]:
    """
    Best-effort list of this machine's non-loopback IPv4 addresses.
    """
    candidates: List[str] = []

    # route lookup; UDP connect sends nothing
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect(("10.255.255.255", 1))
            candidates.append(s.getsockname()[0])
    except OSError:
        pass

    try:
        _, _, addrs = socket.gethostbyname_ex(socket.gethostname())
        candidates.extend(addrs)
    except OSError:
        pass

    try:
        for info in socket.getaddrinfo(socket.gethostname(), None, socket.AF_INET):
            candidates.append(info[4][0])
    except OSError:
        pass

    out: List[str] = []
    for ip in candidates:
        if _usable_ipv4(ip) and ip not in out:
            out.append(ip)
    return out


def get_local_ip() -> str:
    addrs = local_ipv4_addresses()
    return addrs[0] if addrs else "localhost"


def guess_segment() -> Optional[str]:
    """
    Best-effort guess of the local /24 prefix, e.g. '192.168.1'.
    """
    addrs = local_ipv4_addresses()
    pool = [ip for ip in addrs if ipaddress.IPv4Address(ip).is_private] or addrs
    if not pool:
        return None
    return ".".join(pool[0].split(".")[:3])
