"""Allow `python -m orama_answer ask "..."`."""

from orama_answer.interfaces.cli import main_sync

main_sync()
