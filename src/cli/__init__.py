"""Command-line tools for knowchat.

``python -m src.cli`` ingests files and directories, answers questions,
runs the repair and reconcile passes and prints corpus statistics.  The
CLI builds the same components as the web app from the same settings.
"""
