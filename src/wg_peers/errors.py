# src/wg_peers/errors.py
from __future__ import annotations


class WireGuardError(Exception):
    """Erreur de base. `status_code` suit la sémantique HTTP pour la couche API."""

    status_code = 500

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code


class ConfigurationError(WireGuardError):
    """Missing or invalid setting (fatal at startup)."""


class NotFoundError(WireGuardError):
    status_code = 404


class ValidationError(WireGuardError):
    status_code = 400


class CapacityExhausted(WireGuardError):
    status_code = 409


class TunnelEnvironmentError(WireGuardError):
    """The host cannot run the interface (usually no kernel support)."""


class ExternalCommandError(WireGuardError):
    def __init__(self, cmd: str, returncode: int, stderr: str = ""):
        self.cmd = cmd
        self.returncode = returncode
        self.stderr = stderr
        detail = stderr.strip() or f"exit status {returncode}"
        super().__init__(f"Command failed: {cmd}: {detail}")
