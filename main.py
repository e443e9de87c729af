import sys

from agent.logger import log
from cli.commands import main

if __name__ == "__main__":
    log.debug("=" * 50)
    log.debug("🚀 STARTING NEW SPLICE SESSION")
    log.debug("=" * 50)
    sys.exit(main(sys.argv[1:] or ["ui"]))
