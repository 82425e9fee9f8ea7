#!/usr/bin/env python3
"""
TLS Certificate Management for goldfish

- explicit mode:  operator-supplied cert/key files, validated before binding
- automatic mode: certificates issued by an ACME CA through certbot, using
                  the http-01 challenge answered by the plaintext listener
"""

import datetime
import logging
import shutil
import ssl
import subprocess
from pathlib import Path
from typing import Tuple

from cryptography import x509
from cryptography.hazmat.primitives import hashes

from ..transport import AutomaticCertificate, ExplicitCertificate

logger = logging.getLogger("goldfish.certificates")

CERTBOT_TIMEOUT = 300


class CertificateError(RuntimeError):
    """No usable certificate for the secure listener."""


def challenge_dir(cache_dir: str) -> Path:
    """Webroot served under /.well-known/acme-challenge/ by the redirect listener."""
    return Path(cache_dir) / "webroot"


def describe_certificate(cert_path: Path) -> dict:
    """Subject, expiry and SHA-256 fingerprint of a PEM certificate."""
    cert = x509.load_pem_x509_certificate(cert_path.read_bytes())
    fingerprint = cert.fingerprint(hashes.SHA256()).hex().upper()
    return {
        "subject": cert.subject.rfc4514_string(),
        "not_after": cert.not_valid_after_utc,
        "fingerprint": ":".join(fingerprint[i:i + 2] for i in range(0, len(fingerprint), 2)),
    }


def load_explicit_certificate(decision: ExplicitCertificate) -> Tuple[str, str]:
    """
    Check that the configured cert/key exist and form a usable chain.

    Returns:
        (cert_file, key_file) as given

    Raises:
        CertificateError: files missing, unreadable, or not a matching pair
    """
    cert_path = Path(decision.cert_file)
    key_path = Path(decision.key_file)
    if not cert_path.exists():
        raise CertificateError(f"certificate not found: {cert_path}")
    if not key_path.exists():
        raise CertificateError(f"key not found: {key_path}")

    ssl_context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    try:
        ssl_context.load_cert_chain(str(cert_path), str(key_path))
    except (ssl.SSLError, OSError) as e:
        raise CertificateError(f"cannot load certificate {cert_path} with key {key_path}: {e}") from e

    try:
        info = describe_certificate(cert_path)
    except ValueError as e:
        raise CertificateError(f"cannot parse certificate {cert_path}: {e}") from e

    logger.info("TLS enabled with cert=%s, key=%s", cert_path, key_path)
    logger.info("Certificate %s, fingerprint (SHA256): %s", info["subject"], info["fingerprint"])
    if info["not_after"] < datetime.datetime.now(datetime.timezone.utc):
        logger.warning("Certificate %s expired on %s", cert_path, info["not_after"].isoformat())
    return str(cert_path), str(key_path)


def certbot_command(decision: AutomaticCertificate) -> list:
    cache = Path(decision.cache_dir)
    cmd = [
        "certbot", "certonly",
        "--non-interactive", "--agree-tos", "--keep-until-expiring",
        "--webroot", "-w", str(challenge_dir(decision.cache_dir)),
        "--config-dir", str(cache / "config"),
        "--work-dir", str(cache / "work"),
        "--logs-dir", str(cache / "logs"),
        "--cert-name", decision.host_whitelist[0],
    ]
    if decision.email:
        cmd += ["-m", decision.email]
    else:
        cmd.append("--register-unsafely-without-email")
    for host in decision.host_whitelist:
        cmd += ["-d", host]
    return cmd


def live_certificate_paths(decision: AutomaticCertificate) -> Tuple[Path, Path]:
    live = Path(decision.cache_dir) / "config" / "live" / decision.host_whitelist[0]
    return live / "fullchain.pem", live / "privkey.pem"


def obtain_certificate(decision: AutomaticCertificate) -> Tuple[str, str]:
    """
    Obtain (or reuse) an ACME certificate for the whitelisted hosts.

    The plaintext redirect listener must already be serving the challenge
    directory; certbot only writes the challenge files.

    Returns:
        (cert_file, key_file)

    Raises:
        CertificateError: no host to certify, certbot missing or failing
    """
    if not decision.host_whitelist:
        raise CertificateError(
            "automatic certificates need a hostname in listener.address (or set tls_cert_file/tls_key_file)"
        )
    if shutil.which("certbot") is None:
        raise CertificateError("certbot not found in PATH; install it or provide tls_cert_file/tls_key_file")

    challenge_dir(decision.cache_dir).mkdir(parents=True, exist_ok=True)
    cmd = certbot_command(decision)
    logger.info("Requesting certificate for %s", ", ".join(decision.host_whitelist))

    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=CERTBOT_TIMEOUT)
    except subprocess.TimeoutExpired as e:
        raise CertificateError(f"certbot timed out after {CERTBOT_TIMEOUT}s") from e
    if result.returncode != 0:
        raise CertificateError(f"certificate request failed: {result.stderr.strip() or result.stdout.strip()}")

    cert_path, key_path = live_certificate_paths(decision)
    if not cert_path.exists() or not key_path.exists():
        raise CertificateError(f"certbot did not produce {cert_path} and {key_path}")

    # TODO: run `certbot renew` periodically while the listener is up
    logger.info("Using certificate %s", cert_path)
    return str(cert_path), str(key_path)
