from pathlib import Path
from typing import Dict, Union

import pytest


def write_tree(root: Path, files: Dict[str, Union[str, bytes]]) -> Path:
    root.mkdir(parents=True, exist_ok=True)
    for relative, content in files.items():
        target = root / relative
        if relative.endswith("/"):
            target.mkdir(parents=True, exist_ok=True)
            continue
        target.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, bytes):
            target.write_bytes(content)
        else:
            target.write_text(content, encoding="utf-8")
    return root


@pytest.fixture
def make_tree(tmp_path):
    def _make(files: Dict[str, Union[str, bytes]], name: str = "project") -> Path:
        return write_tree(tmp_path / name, files)

    return _make


PYTHON_AND_UNTAGGED = """# Notes

```python
print("a")
```

```
plain
```
"""

TWO_BASH = """# Script

```bash
echo one
```

Then:

```bash
echo two
```
"""
