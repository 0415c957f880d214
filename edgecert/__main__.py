#!/usr/bin/env python3
#
# edgecert/__main__.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

import sys

from .cli import main

sys.exit(main())
