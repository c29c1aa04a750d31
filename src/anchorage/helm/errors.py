# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/anchorage/helm/errors.py

from anchorage.errors import AnchorageError


class HelmError(AnchorageError):
    """A helm invocation exited non-zero."""

    def __init__(self, message: str, *, argv=None, returncode: int | None = None, stderr: str = ""):
        super().__init__(message)
        self.argv = list(argv or [])
        self.returncode = returncode
        self.stderr = stderr
