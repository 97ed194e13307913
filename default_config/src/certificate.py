from __future__ import annotations

import base64
import binascii
import logging
import re
from dataclasses import dataclass
from typing import Any, Protocol

from cryptography import x509
from cryptography.x509.oid import NameOID
from kubernetes.client import ApiException, CoreV1Api
from urllib3.exceptions import HTTPError

from default_config.src.errors import CertificateError, RegistryError, is_not_found_error

ECOSYSTEM_CERTIFICATE_NAME = "ecosystem-certificate"
ECOSYSTEM_CERTIFICATE_DATA_KEY = "tls.crt"
LOCAL_ISSUER = "ces.local"

CERTIFICATE_TYPE_KEY = "certificate/type"
CERTIFICATE_SELF_SIGNED = "selfsigned"
CERTIFICATE_EXTERNAL = "external"

_PEM_BLOCK = re.compile(
    rb"-----BEGIN ([A-Z0-9 ]+)-----[ \t]*\r?\n(.*?)-----END \1-----",
    re.DOTALL,
)


@dataclass(frozen=True)
class PemBlock:
    type: str
    data: bytes


def decode_pem(data: bytes) -> PemBlock | None:
    """Return the first PEM block in *data*, or None if there is no decodable block.

    RFC 1421 header lines (``Proc-Type: ...``) inside the block are ignored.
    """
    match = _PEM_BLOCK.search(data)
    if match is None:
        return None

    body = b"".join(
        line.strip()
        for line in match.group(2).splitlines()
        if line.strip() and b":" not in line
    )
    try:
        der = base64.b64decode(body, validate=True)
    except binascii.Error:
        return None
    return PemBlock(type=match.group(1).decode("ascii"), data=der)


class CertificateParser(Protocol):
    def decode_pem(self, data: bytes) -> PemBlock | None: ...

    def issuer_organizations(self, der: bytes) -> list[str]: ...


class X509CertificateParser:
    """PEM/X.509 handling backed by ``cryptography``."""

    def decode_pem(self, data: bytes) -> PemBlock | None:
        return decode_pem(data)

    def issuer_organizations(self, der: bytes) -> list[str]:
        try:
            certificate = x509.load_der_x509_certificate(der)
        except ValueError as exc:
            raise CertificateError(f"failed to parse ecosystem certificate: {exc}") from exc
        return [
            str(attribute.value)
            for attribute in certificate.issuer.get_attributes_for_oid(NameOID.ORGANIZATION_NAME)
        ]


class CertificateTypeInferrer:
    """Classifies the ecosystem certificate as ``selfsigned`` or ``external``.

    Anything short of a parseable certificate (no secret, no ``tls.crt``
    field, no PEM certificate block) counts as self-signed.  A PEM block that
    claims to be a certificate but cannot be parsed is an error: silently
    reporting ``selfsigned`` would hide a broken external certificate.
    """

    def __init__(
        self,
        core_api: CoreV1Api,
        namespace: str,
        parser: CertificateParser | None = None,
        secret_name: str = ECOSYSTEM_CERTIFICATE_NAME,
        logger: logging.Logger | None = None,
    ) -> None:
        self.core_api = core_api
        self.namespace = namespace
        self.parser = parser or X509CertificateParser()
        self.secret_name = secret_name
        self.logger = logger or logging.getLogger(__name__)

    def infer(self) -> str:
        try:
            external = self._is_external_certificate()
        except (RegistryError, CertificateError) as exc:
            raise type(exc)(f"failed to verify external certificate: {exc}") from exc

        if external:
            return CERTIFICATE_EXTERNAL
        return CERTIFICATE_SELF_SIGNED

    def _read_certificate_bytes(self, secret: Any) -> bytes | None:
        data = getattr(secret, "data", None) or {}
        encoded = data.get(ECOSYSTEM_CERTIFICATE_DATA_KEY)
        if encoded is None:
            return None
        if isinstance(encoded, bytes):
            return encoded
        try:
            return base64.b64decode(encoded, validate=True)
        except binascii.Error:
            self.logger.debug(
                "Secret %s field %s is not valid base64",
                self.secret_name,
                ECOSYSTEM_CERTIFICATE_DATA_KEY,
            )
            return b""

    def _is_external_certificate(self) -> bool:
        try:
            secret = self.core_api.read_namespaced_secret(
                name=self.secret_name, namespace=self.namespace
            )
        except ApiException as exc:
            if is_not_found_error(exc):
                self.logger.info("No %s secret found; assuming self-signed", self.secret_name)
                return False
            raise RegistryError(
                f"failed to get secret for ecosystem certificate (status={exc.status}): {exc.reason}"
            ) from exc
        except HTTPError as exc:
            raise RegistryError(f"failed to get secret for ecosystem certificate: {exc}") from exc

        certificate_bytes = self._read_certificate_bytes(secret)
        if certificate_bytes is None:
            self.logger.info(
                "Secret %s has no %s field; assuming self-signed",
                self.secret_name,
                ECOSYSTEM_CERTIFICATE_DATA_KEY,
            )
            return False

        block = self.parser.decode_pem(certificate_bytes)
        if block is None or block.type != "CERTIFICATE":
            self.logger.info(
                "Secret %s does not hold a PEM certificate; assuming self-signed",
                self.secret_name,
            )
            return False

        organizations = self.parser.issuer_organizations(block.data)
        return LOCAL_ISSUER not in organizations
