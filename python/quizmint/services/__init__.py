"""Card set, ledger, billing and generation logic behind the routes.

Each route calls one function from here. Import the submodule you need,
e.g. ``from quizmint.services import ledger``.
"""
