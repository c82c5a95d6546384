import io
import logging
import os
import time
from datetime import datetime, timezone
from pathlib import Path

import qrcode
from qrcode.constants import ERROR_CORRECT_M

_log = logging.getLogger("wgboot.peer")


class ConfigNotReady(Exception):
    pass


class AlreadyCompleted(Exception):
    pass


def config_exists(path):
    return Path(path).is_file()


def load_peer_config(path):
    p = Path(path)
    try:
        return p.read_bytes().decode("utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigNotReady(f"cannot read {p}: {e}") from e


def marker_exists(path):
    return Path(path).exists()


def claim_marker(path):
    try:
        fd = os.open(str(path), os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    except FileExistsError:
        raise AlreadyCompleted(f"{path} already exists")
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(datetime.now(timezone.utc).isoformat(timespec="seconds"))


def wait_for_file(path, timeout, poll=1.0):
    deadline = time.monotonic() + timeout
    while True:
        if config_exists(path):
            return True
        if time.monotonic() >= deadline:
            _log.warning("config file %s not found after %ss", path, timeout)
            return False
        time.sleep(poll)


def _split_host_port(value):
    if value.count(":") <= 1 or "[" in value or "]" in value:
        return None
    host, _, port = value.rpartition(":")
    if not host or not port:
        return None
    return host, port


def rewrite_endpoint(conf, host, port):
    lines = conf.split("\n")

    for i, line in enumerate(lines):
        trimmed = line.strip()
        if not (trimmed.startswith("Endpoint ") or trimmed.startswith("Endpoint=")):
            continue

        indent = line[:len(line) - len(line.lstrip(" \t"))]
        eol = "\r" if line.endswith("\r") else ""
        current = trimmed[len("Endpoint"):].strip().lstrip(" =")

        if host and port:
            lines[i] = f"{indent}Endpoint = {host}:{port}{eol}"
            return "\n".join(lines)

        parts = _split_host_port(current)
        if parts:
            lines[i] = f"{indent}Endpoint = [{parts[0]}]:{parts[1]}{eol}"
            return "\n".join(lines)

        return conf

    return conf


def encode_qr(config_text):
    qr = qrcode.QRCode(error_correction=ERROR_CORRECT_M, box_size=8, border=2)
    qr.add_data(config_text)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()
