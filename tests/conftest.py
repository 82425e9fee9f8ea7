"""Pytest configuration and shared fixtures"""
import datetime
import io
import json
import urllib.error
from unittest.mock import MagicMock

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from goldfish.core.config import ListenerConfig, VaultConfig
from goldfish.vault.client import VaultClient


def _json_response(payload):
    mock_response = MagicMock()
    mock_response.read.return_value = json.dumps(payload).encode() if payload is not None else b""
    mock_response.__enter__.return_value = mock_response
    return mock_response


def _http_error(url, code, payload):
    body = io.BytesIO(json.dumps(payload).encode())
    return urllib.error.HTTPError(url, code, "error", {}, body)


@pytest.fixture
def vault_config():
    return VaultConfig(address="http://vault.test:8200")


@pytest.fixture
def vault(vault_config):
    """Fresh vault client, not the process-wide one"""
    return VaultClient(vault_config)


@pytest.fixture
def listener():
    """Factory for listener configs with sensible defaults"""
    def make(**overrides):
        data = {"address": "goldfish.example.com:443"}
        data.update(overrides)
        return ListenerConfig(**data)
    return make


@pytest.fixture
def unwrap_response():
    return {
        "auth": {
            "client_token": "s.service-token",
            "accessor": "acc-123",
            "policies": ["default", "goldfish"],
            "lease_duration": 86400,
            "renewable": True,
        }
    }


@pytest.fixture
def cert_pair(tmp_path):
    """Self-signed certificate and key written to tmp_path"""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "goldfish.test")])
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=30))
        .sign(key, hashes.SHA256())
    )
    cert_path = tmp_path / "cert.pem"
    key_path = tmp_path / "key.pem"
    cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    key_path.write_bytes(key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ))
    return cert_path, key_path


@pytest.fixture
def json_response():
    """Mock urlopen() result returning a payload as JSON"""
    return _json_response


@pytest.fixture
def http_error():
    """urllib HTTPError carrying a vault-style JSON error body"""
    return _http_error
