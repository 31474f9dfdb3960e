# =============================================================================
# LDUI Entry Point for `python -m ldui`
# =============================================================================
# Equivalent to running the 'ldui' command after installation.
# =============================================================================

import sys

from ldui.app import main

if __name__ == "__main__":
    sys.exit(main())
