"""Module entrypoint for `python -m gcdeploy`."""

from gcdeploy.cli import run

if __name__ == "__main__":
    raise SystemExit(run())
