import sys
from pathlib import Path

import pytest


def _add_src_to_path() -> None:
    root = Path(__file__).resolve().parents[1]
    src_path = root / "src"
    if str(src_path) not in sys.path:
        sys.path.insert(0, str(src_path))


_add_src_to_path()


@pytest.fixture
def whitelist_root(tmp_path: Path) -> Path:
    """Return an empty whitelist folder with its known-good script directory."""
    root = tmp_path / "Whitelist"
    (root / "Scripts_To_Whitelist").mkdir(parents=True)
    return root
