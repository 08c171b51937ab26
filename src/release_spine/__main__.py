"""``python -m release_spine``"""

from release_spine.cli.app import app

if __name__ == "__main__":
    app()
