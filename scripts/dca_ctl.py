#!/usr/bin/env python3
from __future__ import annotations

from dca_engine.runtime.cli import main

if __name__ == "__main__":
    main()
