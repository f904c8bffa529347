"""Allow ``python -m l2h``."""

from l2h.cli import main

main()
