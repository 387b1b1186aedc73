"""
CLI Subpackage.

Modules:
    - ``__main__``: The argparse definition and dispatcher.
    - ``commands``: Command handlers (check, transform, run, cache-clear).
"""
