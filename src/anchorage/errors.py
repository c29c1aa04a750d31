# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/anchorage/errors.py


class AnchorageError(RuntimeError):
    """Base class for every failure the CLI reports as a deployment error."""


class ConfigError(AnchorageError):
    """Raised when the deployment config cannot be loaded or validated."""


class ProvisioningError(AnchorageError):
    """Cloud resource creation or lookup failed. Aborts the run."""


class BootstrapConnectionError(AnchorageError):
    """The SSH channel to the instance could not be opened."""


class BootstrapTimeoutError(AnchorageError):
    """
    The remote probe loop ran out of attempts (or the local deadline passed)
    before the credential artifact appeared.
    """

    def __init__(self, message: str, *, exit_code: int | None = None, diagnostic: str = ""):
        super().__init__(message)
        self.exit_code = exit_code
        self.diagnostic = diagnostic


class BootstrapCancelledError(AnchorageError):
    """The caller cancelled the probe while it was still waiting."""


class LoopbackEndpointNotFoundError(AnchorageError):
    """The fetched kubeconfig does not mention the expected loopback endpoint."""


class ApplyError(AnchorageError):
    """A resource in the dependency graph failed to apply; the rest is skipped."""

    def __init__(self, resource: str, cause: Exception):
        super().__init__(f"Applying '{resource}' failed: {cause}")
        self.resource = resource
        self.cause = cause
