"""
Moltbot-Lark bridge launcher, equivalent to ``python -m moltbot_lark``
"""

import sys

from moltbot_lark.main import main

if __name__ == "__main__":
    sys.exit(main())
