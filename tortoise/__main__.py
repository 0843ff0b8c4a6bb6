import sys

if __name__ == "__main__":
    try:
        from tortoise.app import run
    except ModuleNotFoundError as e:
        if e.name in ("textual", "rich", "requests"):
            print(f"Missing dependency {e.name!r}. Install the project first: pip install -e .", file=sys.stderr)
            sys.exit(1)
        raise
    run(sys.argv[1:])
