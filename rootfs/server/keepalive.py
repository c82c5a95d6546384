import logging
import subprocess
import threading
import time
import urllib.error
import urllib.request
from dataclasses import dataclass

_log = logging.getLogger("wgboot.keepalive")


@dataclass
class ActivitySample:
    has_ever_handshaken: bool
    idle: float = 0.0


@dataclass
class SessionTracker:
    connected: bool = False
    connected_since: float | None = None
    last_idle: float | None = None


def _run(cmd, timeout):
    try:
        r = subprocess.run(
            cmd, capture_output=True, text=True,
            timeout=timeout, check=True,
        )
        return r.stdout.strip()
    except subprocess.CalledProcessError as e:
        raise RuntimeError(f"Command failed: {' '.join(cmd)}: {e.stderr or e}")
    except subprocess.TimeoutExpired:
        raise RuntimeError(f"Command timed out: {' '.join(cmd)}")


def poll_handshakes(interface, timeout=5):
    out = _run(["wg", "show", interface, "latest-handshakes"], timeout)
    result = {}
    for line in out.splitlines():
        parts = line.split()
        if len(parts) != 2:
            continue
        try:
            ts = int(parts[1])
        except ValueError:
            continue
        result[parts[0]] = ts if ts > 0 else None
    return result


def sample_activity(handshakes, now):
    latest = max((ts for ts in handshakes.values() if ts), default=0)
    if not latest:
        return ActivitySample(has_ever_handshaken=False)
    return ActivitySample(has_ever_handshaken=True, idle=max(0.0, now - latest))


def ping(url, timeout=5):
    try:
        with urllib.request.urlopen(url, timeout=timeout) as resp:
            resp.read()
        return True
    except urllib.error.HTTPError as e:
        # any answer from the proxy counts as activity
        e.close()
        return True
    except (urllib.error.URLError, OSError) as e:
        _log.warning("ping failed: %s", e)
        return False


def format_duration(seconds):
    secs = max(0, int(seconds))
    days, secs = divmod(secs, 86400)
    hours, secs = divmod(secs, 3600)
    mins, secs = divmod(secs, 60)

    parts = []
    if days:
        parts.append(f"{days}d")
    if hours:
        parts.append(f"{hours}h")
    if mins:
        parts.append(f"{mins}m")
    if secs or not parts:
        parts.append(f"{secs}s")
    return "".join(parts)


class KeepaliveMonitor:
    def __init__(self, url, interface, timing, poll_fn=None, ping_fn=None,
                 clock=time.monotonic, wall=time.time):
        self.url = url
        self.interface = interface
        self.timing = timing
        self._poll = poll_fn or (lambda iface: poll_handshakes(iface, timing.ping_timeout))
        self._ping = ping_fn or (lambda u: ping(u, timing.ping_timeout))
        self._clock = clock
        self._wall = wall
        self._started = clock()
        self.session = SessionTracker()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def _send_ping(self):
        try:
            self._ping(self.url)
        except Exception as e:
            _log.warning("ping failed: %s", e)

    def _end_session(self, reason):
        if self.session.connected:
            duration = self._clock() - self.session.connected_since
            _log.info("%s; ending session duration=%s and stopping keepalive to allow suspend",
                      reason, format_duration(duration))
        else:
            _log.info("%s; stopping keepalive to allow suspend", reason)
        self.session.connected = False
        self.session.connected_since = None

    def tick(self):
        t = self.timing
        now = self._clock()

        if now - self._started <= t.startup_window:
            _log.info("tick (startup window), sending ping to %s", self.url)
            self._send_ping()
            return True

        try:
            sample = sample_activity(self._poll(self.interface), self._wall())
        except (RuntimeError, OSError) as e:
            # poll failures count as activity
            _log.warning("tick, error checking wg status: %s (still sending ping)", e)
            self._send_ping()
            return True

        if not sample.has_ever_handshaken:
            self._end_session("WireGuard has never seen a handshake")
            return False

        idle = sample.idle
        last = self.session.last_idle
        if last is not None and idle < last:
            _log.info("handshake detected, idle reset from %s to %s",
                      format_duration(last), format_duration(idle))
        self.session.last_idle = idle

        if idle > t.max_idle:
            self._end_session(
                f"tick, status=disconnected, idle={format_duration(idle)} "
                f"(max {format_duration(t.max_idle)})"
            )
            return False

        if not self.session.connected:
            self.session.connected = True
            self.session.connected_since = now
            _log.info("tick, status=connected, idle=%s (max %s); starting session",
                      format_duration(idle), format_duration(t.max_idle))
        else:
            _log.info("tick, status=connected, idle=%s (max %s); session_duration=%s; sending ping to %s",
                      format_duration(idle), format_duration(t.max_idle),
                      format_duration(now - self.session.connected_since), self.url)
        self._send_ping()
        return True

    def run(self):
        t = self.timing
        _log.info("starting loop for %s (interval=%s, startup=%s, max_idle=%s, iface=%s)",
                  self.url, format_duration(t.interval), format_duration(t.startup_window),
                  format_duration(t.max_idle), self.interface)
        while not self._stop.wait(t.interval):
            if not self.tick():
                break
        _log.info("loop stopped")

    def start(self):
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self.run, name="keepalive", daemon=True)
        self._thread.start()

    def stop(self, timeout=5):
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None


def start_from_settings(settings):
    if not settings.keepalive_url:
        _log.info("keepalive disabled: no public host configured")
        return None
    if not settings.keepalive_enabled:
        _log.info("keepalive disabled by KEEPALIVE_ENABLED=false")
        return None
    monitor = KeepaliveMonitor(settings.keepalive_url, settings.wg_interface, settings.timing)
    monitor.start()
    return monitor
