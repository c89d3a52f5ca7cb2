"""!
@brief Allow ``python -m ps_linux_installer``.
"""
from __future__ import annotations

import sys

from .main import main

sys.exit(main())
