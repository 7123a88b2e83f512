# sandbox.py
# Path confinement for filesystem capabilities.
#
# Every user-supplied path is resolved against a fixed workspace root and
# rejected if it lands anywhere else. Pure string arithmetic: the guard never
# touches the filesystem, so it works for paths that do not exist yet.

import os

from tool_relay.registry import CapabilityError


class SandboxViolation(CapabilityError):
    """Raised when a resolved path falls outside the confinement root."""

    def __init__(self, user_path: str) -> None:
        super().__init__(f"Path escapes sandbox: {user_path}")
        self.user_path = user_path


class PathGuard:
    """
    Resolves relative paths inside a single root directory.

    The root is canonicalised once. A candidate is accepted only if it equals
    the root or starts with the root followed by the path separator, so a
    root of /a/workspace never admits /a/workspace2.
    """

    def __init__(self, root: str | os.PathLike) -> None:
        self._root = os.path.abspath(root)

    @property
    def root(self) -> str:
        return self._root

    def resolve(self, user_path: str) -> str:
        """Return the absolute confined path, or raise SandboxViolation."""
        resolved = os.path.abspath(os.path.join(self._root, user_path))
        if resolved == self._root or resolved.startswith(self._root + os.sep):
            return resolved
        raise SandboxViolation(user_path)
