# host.py
# Capability host process. Config and wiring only. No logic lives here.
#
# stdin/stdout carry the line-delimited wire protocol; everything the host
# prints for humans goes to stderr via display.py.
#
#   python -m tool_relay.host

import sys

from tool_relay import display
from tool_relay.capabilities import build_registry
from tool_relay.config import Settings
from tool_relay.registry import CapabilityInvoker
from tool_relay.store import open_store
from tool_relay.transport import serve


def main() -> None:
    settings = Settings()
    settings.ensure_dirs()

    conn = open_store(settings.resolved_db_path)
    try:
        invoker = CapabilityInvoker(build_registry(settings, conn))
        display.host_started(
            str(settings.resolved_workspace_dir),
            settings.resolved_db_path,
            len(invoker.registry),
        )
        serve(invoker, sys.stdin, sys.stdout)
        display.host_stopped()
    finally:
        conn.close()


if __name__ == "__main__":
    main()
