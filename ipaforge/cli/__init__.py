"""ipaforge CLI: Typer-based operator interface.

Provides the ``ipaforge`` command with subcommands for uploading and
editing IPAs, managing certificates, signing, and publishing the
repository manifest. All output uses Rich for formatted terminal display.
"""
