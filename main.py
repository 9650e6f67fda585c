"""Repo entrypoint.

Keep this file tiny so `python main.py` works, while the real
implementation lives in the `storybook_gate` package.
"""

from storybook_gate.main import main


if __name__ == "__main__":
    raise SystemExit(main())
