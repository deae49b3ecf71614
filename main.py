#!/usr/bin/env python3
"""Entry point for the Polymer prover control tool.

Equivalent to the installed ``proverctl`` script; run ``python main.py --help``
for the available commands.
"""

import asyncio
import sys

from src.polymer_prover.cli import main


if __name__ == "__main__":
    # Run the main async function
    sys.exit(asyncio.run(main()))
